"""
Data models for the storefront service.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PaymentMethod(str, Enum):
    """Supported payment methods."""
    COD = "cod"
    CARD = "card"


class PaymentStatus(str, Enum):
    """Payment status, tracked independently of the order status."""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class OrderStatus(str, Enum):
    """Order statuses the service itself assigns.

    Admins may set any free-text status; comparisons are case-insensitive.
    """
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    RETURNED = "returned"


class DistributorStatus(str, Enum):
    """Distributor application review states."""
    SUBMITTED = "Submitted"
    APPROVED = "Approved"
    REJECTED = "Rejected"


@dataclass(frozen=True)
class SessionUser:
    """Caller identity taken from a verified session token."""

    id: str
    email: str = ""
    user_name: str = ""
    role: str = "user"
    claims: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def sanitize_number(value: Any) -> Any:
    """Accept "1,299" style strings for numeric fields."""
    if isinstance(value, str):
        cleaned = value.replace(",", "").strip()
        return cleaned or None
    return value


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ProductCreateRequest(_CamelModel):
    """Admin request to add a product."""
    images: List[str] = Field(..., description="Image URLs, at least one")
    title: str = Field(..., min_length=1)
    description: str = ""
    category_id: str = Field(..., alias="categoryId", min_length=1)
    brand_id: str = Field(..., alias="brandId", min_length=1)
    price: float = Field(..., ge=0)
    sale_price: Optional[float] = Field(0, alias="salePrice", ge=0)
    total_stock: int = Field(0, alias="totalStock", ge=0)
    is_on_sale: bool = Field(False, alias="isOnSale")

    sanitize_numbers = field_validator("price", "sale_price", "total_stock", mode="before")(sanitize_number)


class ProductUpdateRequest(_CamelModel):
    """Admin request to edit a product; omitted fields are left unchanged."""
    images: List[str] = Field(..., description="Image URLs, at least one")
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    category_id: Optional[str] = Field(None, alias="categoryId")
    brand_id: Optional[str] = Field(None, alias="brandId")
    price: Optional[float] = Field(None, ge=0)
    sale_price: Optional[float] = Field(None, alias="salePrice", ge=0)
    total_stock: Optional[int] = Field(None, alias="totalStock", ge=0)
    is_on_sale: Optional[bool] = Field(None, alias="isOnSale")

    sanitize_numbers = field_validator("price", "sale_price", "total_stock", mode="before")(sanitize_number)


class CategoryCreateRequest(_CamelModel):
    name: str = Field(..., min_length=1)
    icon: str = ""
    image: str = ""


class BrandCreateRequest(_CamelModel):
    name: str = Field(..., min_length=1)
    icon: str = ""
    logo: str = ""


class BrandUpdateRequest(_CamelModel):
    name: Optional[str] = Field(None, min_length=1)
    icon: Optional[str] = None
    logo: Optional[str] = None


class FeatureImageRequest(_CamelModel):
    image: str = Field(..., min_length=1)


class ReviewRequest(_CamelModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class CartItemRequest(_CamelModel):
    product_id: str = Field(..., alias="productId", min_length=1)
    quantity: int = Field(..., gt=0)


class AddressRequest(_CamelModel):
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    pincode: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    notes: str = ""


class AddressUpdateRequest(_CamelModel):
    address: Optional[str] = Field(None, min_length=1)
    city: Optional[str] = Field(None, min_length=1)
    pincode: Optional[str] = Field(None, min_length=1)
    phone: Optional[str] = Field(None, min_length=1)
    notes: Optional[str] = None


class OrderLineRequest(_CamelModel):
    """One requested line; price and title are snapshotted from the product."""
    product_id: str = Field(..., alias="productId", min_length=1)
    quantity: int = Field(..., gt=0)


class AddressInfo(_CamelModel):
    address_id: Optional[str] = Field(None, alias="addressId")
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    pincode: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    notes: str = ""

    def to_document(self) -> Dict[str, Any]:
        return {
            "addressId": self.address_id,
            "address": self.address,
            "city": self.city,
            "pincode": self.pincode,
            "phone": self.phone,
            "notes": self.notes,
        }


class CreateOrderRequest(_CamelModel):
    """Checkout request. Client-supplied totals are ignored."""
    cart_id: Optional[str] = Field(None, alias="cartId")
    cart_items: List[OrderLineRequest] = Field(..., alias="cartItems", min_length=1)
    address_info: AddressInfo = Field(..., alias="addressInfo")
    payment_method: PaymentMethod = Field(..., alias="paymentMethod")


class VerifyPaymentRequest(_CamelModel):
    order_id: Optional[str] = Field(None, alias="orderId")
    session_id: Optional[str] = Field(None, alias="session_id")


class OrderStatusUpdateRequest(_CamelModel):
    order_status: str = Field(..., alias="orderStatus", min_length=1)


class PaymentStatusUpdateRequest(_CamelModel):
    payment_status: Union[str, None] = Field(None, alias="paymentStatus")


class DistributorApplicationRequest(_CamelModel):
    company: str = Field(..., min_length=1)
    contact_name: str = Field(..., alias="contactName", min_length=1)
    title: str = ""
    phone: str = Field(..., min_length=1)
    markets: str = Field(..., min_length=1)


class DistributorStatusUpdateRequest(_CamelModel):
    status: DistributorStatus
