"""
Normalised product listing parameters.

Every listing request is reduced to a :class:`ListingQuery` before it touches
the cache or the database, so equivalent requests share one cache entry.
"""

from dataclasses import dataclass
from math import ceil, isfinite
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from shared.errors import ValidationError

from ..cache.store import TAG_BRAND, TAG_CATEGORY, TAG_PRODUCT_LIST, CacheKey


LISTING_NAMESPACE = "products"
DEFAULT_SORT = "price-lowtohigh"

SORT_OPTIONS: Dict[str, List[Tuple[str, int]]] = {
    "price-lowtohigh": [("price", 1)],
    "price-hightolow": [("price", -1)],
    "title-atoz": [("title", 1)],
    "title-ztoa": [("title", -1)],
    "newest": [("createdAt", -1)],
}

RawIds = Union[None, str, Iterable[str]]


def normalize_ids(raw: RawIds) -> Tuple[str, ...]:
    """Accept "a,b", ["a", "b"] or ["a,b"]; trim, drop blanks, dedupe, sort."""
    if raw is None:
        return ()
    values = [raw] if isinstance(raw, str) else list(raw)
    ids = set()
    for value in values:
        for part in str(value).split(","):
            part = part.strip()
            if part:
                ids.add(part)
    return tuple(sorted(ids))


def parse_flag(raw: Any) -> Optional[bool]:
    if raw is None or isinstance(raw, bool):
        return raw
    text = str(raw).strip().lower()
    if text in ("true", "1", "yes"):
        return True
    if text in ("false", "0", "no"):
        return False
    return None


def parse_number(raw: Any, name: str, minimum: Optional[float] = None, maximum: Optional[float] = None) -> Optional[float]:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return None
    try:
        value = float(str(raw).replace(",", "").strip())
    except ValueError:
        raise ValidationError(f"{name} must be a number", {"field": name, "value": raw})
    if not isfinite(value):
        raise ValidationError(f"{name} must be a number", {"field": name, "value": raw})
    if minimum is not None and value < minimum:
        raise ValidationError(f"{name} must be at least {format_number(minimum)}", {"field": name})
    if maximum is not None and value > maximum:
        raise ValidationError(f"{name} must be at most {format_number(maximum)}", {"field": name})
    return value


def parse_positive_int(raw: Any, default: int) -> int:
    try:
        value = int(str(raw).strip()) if raw is not None else default
    except ValueError:
        return default
    return value if value >= 1 else default


def format_number(value: Optional[float]) -> str:
    """Render 100, 100.0 and "100" identically."""
    if value is None:
        return ""
    if value == int(value):
        return str(int(value))
    return repr(value)


@dataclass(frozen=True)
class ListingQuery:
    """A filter, sort and page request over the product collection."""

    category_ids: Tuple[str, ...] = ()
    brand_ids: Tuple[str, ...] = ()
    on_sale: Optional[bool] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    min_rating: Optional[float] = None
    sort_by: str = DEFAULT_SORT
    page: int = 1
    limit: int = 12

    @classmethod
    def from_params(
        cls,
        category: RawIds = None,
        brand: RawIds = None,
        on_sale: Any = None,
        min_price: Any = None,
        max_price: Any = None,
        min_rating: Any = None,
        sort_by: Optional[str] = None,
        page: Any = None,
        limit: Any = None,
        *,
        default_limit: int = 12,
        max_limit: int = 100,
    ) -> "ListingQuery":
        low = parse_number(min_price, "minPrice", minimum=0)
        high = parse_number(max_price, "maxPrice", minimum=0)
        if low is not None and high is not None and low > high:
            raise ValidationError("minPrice cannot exceed maxPrice", {"minPrice": low, "maxPrice": high})

        sort_key = (sort_by or "").strip()
        return cls(
            category_ids=normalize_ids(category),
            brand_ids=normalize_ids(brand),
            on_sale=parse_flag(on_sale),
            min_price=low,
            max_price=high,
            min_rating=parse_number(min_rating, "minRating", minimum=0, maximum=5),
            sort_by=sort_key if sort_key in SORT_OPTIONS else DEFAULT_SORT,
            page=parse_positive_int(page, 1),
            limit=min(parse_positive_int(limit, default_limit), max_limit),
        )

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit

    def cache_key(self) -> CacheKey:
        """Parameters in a fixed order; absent values render as empty strings."""
        flag = "" if self.on_sale is None else str(self.on_sale).lower()
        return CacheKey(
            namespace=LISTING_NAMESPACE,
            params=(
                ("category", ",".join(self.category_ids)),
                ("brand", ",".join(self.brand_ids)),
                ("onSale", flag),
                ("minPrice", format_number(self.min_price)),
                ("maxPrice", format_number(self.max_price)),
                ("minRating", format_number(self.min_rating)),
                ("sort", self.sort_by),
                ("page", str(self.page)),
                ("limit", str(self.limit)),
            ),
            tags=(TAG_PRODUCT_LIST, TAG_CATEGORY, TAG_BRAND),
        )

    def to_mongo_filter(self) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if self.category_ids:
            query["categoryId"] = {"$in": list(self.category_ids)}
        if self.brand_ids:
            query["brandId"] = {"$in": list(self.brand_ids)}
        if self.on_sale is not None:
            query["isOnSale"] = self.on_sale

        price: Dict[str, float] = {}
        if self.min_price is not None:
            price["$gte"] = self.min_price
        if self.max_price is not None:
            price["$lte"] = self.max_price
        if price:
            query["price"] = price

        if self.min_rating is not None:
            query["averageReview"] = {"$gte": self.min_rating}
        return query

    def to_mongo_sort(self) -> List[Tuple[str, int]]:
        # _id breaks ties so pages never overlap
        return SORT_OPTIONS[self.sort_by] + [("_id", 1)]

    def pagination(self, total: int) -> Dict[str, int]:
        return {
            "total": total,
            "currentPage": self.page,
            "totalPages": ceil(total / self.limit) if total else 0,
            "limit": self.limit,
        }
