"""
Admin dashboard analytics over the orders collection.

Both reports are cached under the ``analytics`` tag with their own TTL; the
admin cache endpoint can drop them on demand. Weeks start on Sunday and all
ranges are computed in UTC.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from shared.logging import get_logger

from ..cache.read_through import ReadThroughCache
from ..cache.store import TAG_ANALYTICS, CacheKey
from ..models import OrderStatus, PaymentStatus
from ..persistence.mongo import MongoPersistence


ORDER_STATS_KEY = CacheKey("admin:order_stats", tags=(TAG_ANALYTICS,))
SALES_OVERVIEW_KEY = CacheKey("admin:sales_overview", tags=(TAG_ANALYTICS,))

SALES_WINDOW_DAYS = 30
TOP_PRODUCTS = 5


def week_start(now: datetime) -> datetime:
    """Midnight of the most recent Sunday."""
    days_since_sunday = (now.weekday() + 1) % 7
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight - timedelta(days=days_since_sunday)


def month_start(now: datetime, months_back: int = 0) -> datetime:
    year, month = now.year, now.month - months_back
    while month < 1:
        month += 12
        year -= 1
    return now.replace(year=year, month=month, day=1, hour=0, minute=0, second=0, microsecond=0)


def change(current: float, previous: float) -> Dict[str, float]:
    diff = current - previous
    percentage = round(diff / previous * 100, 2) if previous > 0 else 0
    return {"value": diff, "percentage": percentage}


class AnalyticsService:
    def __init__(
        self,
        persistence: MongoPersistence,
        cache: ReadThroughCache,
        ttl_seconds: float = 600,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.persistence = persistence
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = get_logger("storefront.analytics")

    async def order_stats(self) -> Dict[str, Any]:
        return await self.cache.fetch(ORDER_STATS_KEY, self._compute_order_stats, ttl_seconds=self.ttl_seconds)

    async def sales_overview(self):
        return await self.cache.fetch(SALES_OVERVIEW_KEY, self._compute_sales_overview, ttl_seconds=self.ttl_seconds)

    async def _compute_order_stats(self) -> Dict[str, Any]:
        now = self.clock()
        this_week = {"orderDate": {"$gte": week_start(now)}}
        last_week = {"orderDate": {"$gte": week_start(now) - timedelta(days=7), "$lt": week_start(now)}}

        async def weekly(extra: Dict[str, Any]):
            current = await self.persistence.count_orders({**this_week, **extra})
            previous = await self.persistence.count_orders({**last_week, **extra})
            return current, change(current, previous)

        total_orders, orders_change = await weekly({})
        pending_orders, pending_change = await weekly({"orderStatus": OrderStatus.PENDING.value})
        delivered_orders, delivered_change = await weekly({"orderStatus": OrderStatus.DELIVERED.value})

        customers = await self.persistence.distinct_order_customers(this_week)
        previous_customers = await self.persistence.distinct_order_customers(last_week)

        paid = {
            "paymentStatus": PaymentStatus.PAID.value,
            "orderStatus": {"$in": [OrderStatus.CONFIRMED.value, OrderStatus.DELIVERED.value]},
        }
        revenue = await self.persistence.sum_order_totals({**paid, "orderDate": {"$gte": month_start(now)}})
        last_month_revenue = await self.persistence.sum_order_totals({
            **paid,
            "orderDate": {"$gte": month_start(now, 1), "$lt": month_start(now)},
        })

        stats = {
            "totalOrders": total_orders,
            "totalRevenue": revenue,
            "pendingOrders": pending_orders,
            "deliveredOrders": delivered_orders,
            "totalCustomers": customers,
            "revenueGrowthPercentage": change(revenue, last_month_revenue)["percentage"],
            "topProducts": await self.persistence.top_products(TOP_PRODUCTS),
            "ordersChange": orders_change,
            "pendingChange": pending_change,
            "deliveredChange": delivered_change,
            "customersChange": change(customers, previous_customers),
        }
        self.logger.info("Order stats computed", total_orders=total_orders, revenue=revenue)
        return stats

    async def _compute_sales_overview(self):
        since = self.clock() - timedelta(days=SALES_WINDOW_DAYS)
        rows = await self.persistence.daily_sales(since)

        overview = []
        for row in rows:
            day = datetime.strptime(row["day"], "%Y-%m-%d")
            overview.append({
                "date": f"{day.day}/{day.month}",
                "revenue": row["revenue"],
                "orders": row["orders"],
            })
        return overview
