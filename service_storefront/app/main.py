"""
Storefront service: catalog, cart, checkout, orders, feature images and admin dashboard.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from fastapi import Depends, Query, Request, Response

from shared.base_service import BaseService
from shared.config import ServiceConfig

from .addresses.service import AddressService
from .analytics.service import AnalyticsService
from .auth.session import SessionVerifier
from .cache import CacheStore, build_cache_store
from .cache.read_through import ReadThroughCache
from .cart.service import CartService
from .catalog.admin import CatalogAdminService
from .catalog.invalidation import CacheInvalidator
from .catalog.query import ListingQuery, parse_flag
from .catalog.service import CatalogService
from .distributors.service import DistributorService
from .features.service import FeatureService
from .models import (
    AddressRequest,
    AddressUpdateRequest,
    BrandCreateRequest,
    BrandUpdateRequest,
    CartItemRequest,
    CategoryCreateRequest,
    CreateOrderRequest,
    DistributorApplicationRequest,
    DistributorStatusUpdateRequest,
    FeatureImageRequest,
    OrderStatusUpdateRequest,
    PaymentStatusUpdateRequest,
    ProductCreateRequest,
    ProductUpdateRequest,
    ReviewRequest,
    SessionUser,
    VerifyPaymentRequest,
)
from .notifications.email import EmailSender
from .orders.service import OrderService
from .payments.stripe_gateway import StripeGateway
from .persistence.mongo import MongoPersistence
from .reviews.service import ReviewService


def ok(data: Any = None, **extra) -> Dict[str, Any]:
    return {"success": True, "data": data, **extra}


class StorefrontService(BaseService):
    """Storefront service implementation.

    Every external collaborator can be injected, which is how the tests run
    the full HTTP surface against in-memory fakes.
    """

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        persistence: Optional[MongoPersistence] = None,
        cache_store: Optional[CacheStore] = None,
        payments: Optional[StripeGateway] = None,
        email: Optional[EmailSender] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__("storefront", 8000, config)

        self.persistence = persistence or MongoPersistence(self.config.mongo_uri, self.config.mongo_database)
        self.cache_store = cache_store or build_cache_store(self.config, self.persistence.db)
        self.payments = payments or StripeGateway(
            self.config.stripe_secret_key,
            self.config.stripe_webhook_secret,
            currency=self.config.checkout_currency,
        )
        self.email = email or EmailSender(
            self.config.sendgrid_api_key,
            self.config.email_sender,
            sender_name=self.config.email_sender_name,
        )
        self.sessions = SessionVerifier(
            self.config.jwt_secret,
            algorithm=self.config.jwt_algorithm,
            cookie_name=self.config.auth_cookie_name,
        )

        cache = ReadThroughCache(
            self.cache_store,
            self.config.catalog_cache_ttl_seconds,
            metrics=self.metrics,
            clock=clock,
        )
        self.invalidator = CacheInvalidator(self.cache_store, metrics=self.metrics)
        self.catalog = CatalogService(self.persistence, cache)
        self.catalog_admin = CatalogAdminService(self.persistence, self.catalog, self.invalidator)
        self.reviews = ReviewService(self.persistence, self.catalog, self.invalidator)
        self.carts = CartService(self.persistence)
        self.addresses = AddressService(self.persistence)
        self.orders = OrderService(
            self.persistence,
            self.invalidator,
            self.payments,
            self.email,
            metrics=self.metrics,
            success_url=self.config.checkout_success_url,
            cancel_url=self.config.checkout_cancel_url,
            clock=clock,
        )
        self.analytics = AnalyticsService(
            self.persistence,
            cache,
            ttl_seconds=self.config.analytics_cache_ttl_seconds,
            clock=clock,
        )
        self.distributors = DistributorService(self.persistence)
        self.features = FeatureService(self.persistence)

        self._setup_catalog_routes()
        self._setup_cart_routes()
        self._setup_order_routes()
        self._setup_admin_routes()
        self._setup_distributor_routes()
        self._setup_feature_routes()

    def _setup_catalog_routes(self):
        """Shop catalog and review routes."""
        current_user = self.sessions.current_user

        @self.app.get("/api/shop/products/get")
        async def list_products(
            category: Optional[List[str]] = Query(None),
            brand: Optional[List[str]] = Query(None),
            is_on_sale: Optional[str] = Query(None, alias="isOnSale"),
            min_price: Optional[str] = Query(None, alias="minPrice"),
            max_price: Optional[str] = Query(None, alias="maxPrice"),
            min_rating: Optional[str] = Query(None, alias="minRating"),
            sort_by: Optional[str] = Query(None, alias="sortBy"),
            page: Optional[str] = Query(None),
            limit: Optional[str] = Query(None),
        ):
            """Filtered, sorted and paginated product listing."""
            query = ListingQuery.from_params(
                category=category,
                brand=brand,
                on_sale=is_on_sale,
                min_price=min_price,
                max_price=max_price,
                min_rating=min_rating,
                sort_by=sort_by,
                page=page,
                limit=limit,
                default_limit=self.config.default_page_size,
                max_limit=self.config.max_page_size,
            )
            result = await self.catalog.list_products(query)
            return ok(result["products"], pagination=result["pagination"])

        @self.app.get("/api/shop/products/get/{product_id}")
        async def get_product(product_id: str):
            return ok(await self.catalog.get_product(product_id))

        @self.app.get("/api/shop/categories")
        async def list_categories():
            return ok(await self.catalog.list_categories())

        @self.app.get("/api/shop/brands")
        async def list_brands():
            return ok(await self.catalog.list_brands())

        @self.app.get("/api/shop/products/{product_id}/reviews")
        async def list_reviews(product_id: str):
            return ok(await self.reviews.list_reviews(product_id))

        @self.app.post("/api/shop/products/{product_id}/reviews", status_code=201)
        async def add_review(product_id: str, request: ReviewRequest, user: SessionUser = Depends(current_user)):
            return ok(await self.reviews.add_review(product_id, user, request), message="Review saved")

        @self.app.delete("/api/shop/products/{product_id}/reviews/{review_id}")
        async def delete_review(product_id: str, review_id: str, user: SessionUser = Depends(current_user)):
            return ok(await self.reviews.delete_review(product_id, review_id, user), message="Review deleted")

    def _setup_cart_routes(self):
        """Cart and address book routes for the signed-in user."""
        current_user = self.sessions.current_user

        @self.app.post("/api/shop/cart/add")
        async def add_to_cart(request: CartItemRequest, user: SessionUser = Depends(current_user)):
            return ok(await self.carts.add_item(user.id, request.product_id, request.quantity))

        @self.app.get("/api/shop/cart/get")
        async def get_cart(user: SessionUser = Depends(current_user)):
            return ok(await self.carts.get_cart(user.id))

        @self.app.put("/api/shop/cart/update-cart")
        async def update_cart(request: CartItemRequest, user: SessionUser = Depends(current_user)):
            return ok(await self.carts.update_item(user.id, request.product_id, request.quantity))

        @self.app.delete("/api/shop/cart/{product_id}")
        async def delete_cart_item(product_id: str, user: SessionUser = Depends(current_user)):
            return ok(await self.carts.delete_item(user.id, product_id))

        @self.app.delete("/api/shop/cart")
        async def clear_cart(user: SessionUser = Depends(current_user)):
            await self.carts.clear(user.id)
            return {"success": True, "message": "Cart cleared"}

        @self.app.post("/api/shop/address/add", status_code=201)
        async def add_address(request: AddressRequest, user: SessionUser = Depends(current_user)):
            return ok(await self.addresses.add(user.id, request))

        @self.app.get("/api/shop/address/get")
        async def list_addresses(user: SessionUser = Depends(current_user)):
            return ok(await self.addresses.list(user.id))

        @self.app.put("/api/shop/address/update/{address_id}")
        async def edit_address(address_id: str, request: AddressUpdateRequest, user: SessionUser = Depends(current_user)):
            return ok(await self.addresses.edit(user.id, address_id, request))

        @self.app.delete("/api/shop/address/delete/{address_id}")
        async def delete_address(address_id: str, user: SessionUser = Depends(current_user)):
            await self.addresses.delete(user.id, address_id)
            return {"success": True, "message": "Address deleted successfully"}

    def _setup_order_routes(self):
        """Checkout, payment confirmation and order history."""
        current_user = self.sessions.current_user

        @self.app.post("/api/shop/order/create", status_code=201)
        async def create_order(request: CreateOrderRequest, user: SessionUser = Depends(current_user)):
            result = await self.orders.create_order(user, request)
            order = result["order"]
            return {
                "success": True,
                "orderId": order["_id"],
                "approvalURL": result["url"],
                "data": order,
            }

        @self.app.post("/api/shop/order/webhook")
        async def payment_webhook(request: Request):
            """Card payment provider callback; the signature is checked against the raw body."""
            payload = await request.body()
            signature = request.headers.get("stripe-signature", "")
            return await self.orders.handle_webhook(payload, signature)

        @self.app.post("/api/shop/order/verify-payment")
        async def verify_payment(request: VerifyPaymentRequest):
            return await self.orders.verify_payment(request.order_id, request.session_id)

        @self.app.get("/api/shop/order/list")
        async def list_orders(user: SessionUser = Depends(current_user)):
            return ok(await self.orders.list_user_orders(user))

        @self.app.get("/api/shop/order/details/{order_id}")
        async def order_details(order_id: str, user: SessionUser = Depends(current_user)):
            return ok(await self.orders.get_order(order_id, user))

        @self.app.put("/api/shop/order/cancel/{order_id}")
        async def cancel_order(order_id: str, user: SessionUser = Depends(current_user)):
            return ok(await self.orders.cancel_order(order_id, user), message="Order cancelled successfully")

        @self.app.put("/api/shop/order/return/{order_id}")
        async def return_order(order_id: str, user: SessionUser = Depends(current_user)):
            return ok(await self.orders.return_order(order_id, user), message="Return processed successfully")

    def _setup_admin_routes(self):
        """Admin catalog, order, dashboard and cache routes."""
        admin = [Depends(self.sessions.current_admin)]

        @self.app.post("/api/admin/products/add", status_code=201, dependencies=admin)
        async def add_product(request: ProductCreateRequest):
            return ok(await self.catalog_admin.add_product(request))

        @self.app.put("/api/admin/products/edit/{product_id}", dependencies=admin)
        async def edit_product(product_id: str, request: ProductUpdateRequest):
            return ok(await self.catalog_admin.edit_product(product_id, request))

        @self.app.delete("/api/admin/products/delete/{product_id}", dependencies=admin)
        async def delete_product(product_id: str):
            await self.catalog_admin.delete_product(product_id)
            return {"success": True, "message": "Product delete successfully"}

        @self.app.get("/api/admin/products/get", dependencies=admin)
        async def admin_list_products(
            category_id: Optional[str] = Query(None, alias="categoryId"),
            brand_id: Optional[str] = Query(None, alias="brandId"),
            is_on_sale: Optional[str] = Query(None, alias="isOnSale"),
            page: int = Query(1, ge=1),
            limit: int = Query(20, ge=1, le=100),
        ):
            result = await self.catalog_admin.list_products(
                category_id=category_id,
                brand_id=brand_id,
                is_on_sale=parse_flag(is_on_sale),
                page=page,
                limit=limit,
            )
            return ok(result["products"], pagination=result["pagination"])

        @self.app.post("/api/admin/categories", status_code=201, dependencies=admin)
        async def create_category(request: CategoryCreateRequest):
            return ok(await self.catalog_admin.create_category(request))

        @self.app.get("/api/admin/categories", dependencies=admin)
        async def admin_list_categories():
            return ok(await self.catalog.list_categories())

        @self.app.delete("/api/admin/categories/{category_id}", dependencies=admin)
        async def delete_category(category_id: str):
            await self.catalog_admin.delete_category(category_id)
            return {"success": True, "message": "Category deleted"}

        @self.app.post("/api/admin/brands", status_code=201, dependencies=admin)
        async def create_brand(request: BrandCreateRequest):
            return ok(await self.catalog_admin.create_brand(request))

        @self.app.get("/api/admin/brands", dependencies=admin)
        async def admin_list_brands():
            return ok(await self.catalog.list_brands())

        @self.app.put("/api/admin/brands/{brand_id}", dependencies=admin)
        async def edit_brand(brand_id: str, request: BrandUpdateRequest):
            return ok(await self.catalog_admin.edit_brand(brand_id, request))

        @self.app.delete("/api/admin/brands/{brand_id}", dependencies=admin)
        async def delete_brand(brand_id: str):
            await self.catalog_admin.delete_brand(brand_id)
            return {"success": True, "message": "Brand deleted"}

        @self.app.get("/api/admin/orders/get", dependencies=admin)
        async def admin_list_orders(
            sort_by: str = Query("date-desc", alias="sortBy"),
            page: int = Query(1, ge=1),
            limit: int = Query(10, ge=1, le=100),
        ):
            result = await self.orders.admin_list_orders(sort_by, page, limit)
            return ok(result["orders"], pagination=result["pagination"])

        @self.app.get("/api/admin/orders/details/{order_id}", dependencies=admin)
        async def admin_order_details(order_id: str):
            return ok(await self.orders.admin_get_order(order_id))

        @self.app.put("/api/admin/orders/update/{order_id}", dependencies=admin)
        async def update_order_status(order_id: str, request: OrderStatusUpdateRequest):
            order = await self.orders.update_order_status(order_id, request.order_status)
            return ok(order, message="Order status is updated successfully!")

        @self.app.put("/api/admin/orders/{order_id}/payment-status", dependencies=admin)
        async def update_payment_status(order_id: str, request: PaymentStatusUpdateRequest):
            order = await self.orders.update_payment_status(order_id, request.payment_status)
            return ok(order, message="Payment status updated successfully")

        @self.app.get("/api/admin/orders/stats", dependencies=admin)
        async def order_stats():
            return ok(await self.analytics.order_stats())

        @self.app.get("/api/admin/orders/sales-overview", dependencies=admin)
        async def sales_overview():
            return ok(await self.analytics.sales_overview())

        @self.app.delete("/api/admin/cache", dependencies=admin)
        async def clear_cache():
            removed = await self.invalidator.clear_all()
            return {"success": True, "message": "Cache cleared", "removed": removed}

        @self.app.delete("/api/admin/cache/analytics", dependencies=admin)
        async def clear_analytics_cache():
            removed = await self.invalidator.clear_analytics()
            return {"success": True, "message": "Dashboard cache cleared", "removed": removed}

    def _setup_distributor_routes(self):
        """Distributor application routes."""
        current_user = self.sessions.current_user
        admin = [Depends(self.sessions.current_admin)]

        @self.app.post("/api/distributors", status_code=201)
        async def apply(request: DistributorApplicationRequest, user: SessionUser = Depends(current_user)):
            return ok(await self.distributors.apply(user, request))

        @self.app.get("/api/distributors/status")
        async def application_status(user: SessionUser = Depends(current_user)):
            return ok(await self.distributors.status(user))

        @self.app.get("/api/distributors", dependencies=admin)
        async def list_applications():
            return ok(await self.distributors.list_applications())

        @self.app.put("/api/distributors/{application_id}/status", dependencies=admin)
        async def update_application_status(application_id: str, request: DistributorStatusUpdateRequest):
            return ok(await self.distributors.update_status(application_id, request.status))

        @self.app.get("/api/distributors/export/csv", dependencies=admin)
        async def export_applications():
            return Response(
                content=await self.distributors.export_csv(),
                media_type="text/csv",
                headers={"Content-Disposition": 'attachment; filename="distributors.csv"'},
            )

        @self.app.delete("/api/distributors/admin/{application_id}", dependencies=admin)
        async def delete_application(application_id: str):
            await self.distributors.delete(application_id)
            return {"success": True, "message": "Distributor application deleted successfully"}

        @self.app.delete("/api/distributors/{application_id}")
        async def withdraw_application(application_id: str, user: SessionUser = Depends(current_user)):
            await self.distributors.withdraw(application_id, user)
            return {"success": True, "message": "Application withdrawn successfully"}

    def _setup_feature_routes(self):
        """Home page feature image routes."""
        admin = [Depends(self.sessions.current_admin)]

        @self.app.post("/api/common/feature/add", status_code=201, dependencies=admin)
        async def add_feature_image(request: FeatureImageRequest):
            return ok(await self.features.add(request))

        @self.app.get("/api/common/feature/get")
        async def list_feature_images():
            return ok(await self.features.list())

        @self.app.delete("/api/common/feature/delete/{feature_id}", dependencies=admin)
        async def delete_feature_image(feature_id: str):
            await self.features.delete(feature_id)
            return {"success": True, "message": "Feature image deleted"}

    async def _check_dependencies(self):
        """Check storefront dependencies."""
        dependencies = {}

        try:
            dependencies["mongodb"] = "ok" if await self.persistence.ping() else "error"
        except Exception:
            dependencies["mongodb"] = "error"

        try:
            dependencies["cache"] = "ok" if await self.cache_store.ping() else "error"
        except Exception:
            dependencies["cache"] = "error"

        return dependencies

    async def start(self):
        """Start storefront components."""
        await self.persistence.start()
        await self.cache_store.start()
        self.logger.info("Storefront service started", cache_backend=self.config.cache_backend)

    async def stop(self):
        """Stop storefront components."""
        await self.orders.drain_notifications()
        await self.email.close()
        await self.cache_store.close()
        await self.persistence.close()
        self.logger.info("Storefront service stopped")


def create_app():
    """Create storefront service application."""
    service = StorefrontService()
    return service.app


if __name__ == "__main__":
    service = StorefrontService()
    service.run()
