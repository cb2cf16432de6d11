"""
Tests for admin dashboard analytics.
"""

from datetime import datetime, timezone

import pytest

from service_storefront.app.analytics.service import AnalyticsService, change, month_start, week_start
from service_storefront.app.cache.read_through import ReadThroughCache
from service_storefront.app.catalog.invalidation import CacheInvalidator


def seed_order(persistence, day, user_id, total, order_status="confirmed", payment_status="pending", product="p1"):
    persistence.orders.insert({
        "userId": user_id,
        "orderDate": datetime(2026, day[0], day[1], 9, tzinfo=timezone.utc),
        "orderStatus": order_status,
        "paymentStatus": payment_status,
        "paymentMethod": "card",
        "totalAmount": total,
        "cartItems": [{"productId": product, "title": product.upper(), "image": "", "price": total, "quantity": 1}],
    })


@pytest.fixture
def analytics(persistence, cache_store, clock):
    return AnalyticsService(persistence, ReadThroughCache(cache_store, 600, clock=clock), ttl_seconds=600, clock=clock)


@pytest.fixture
def seeded(persistence):
    # The test clock is Wednesday 14 October 2026
    seed_order(persistence, (10, 12), "u1", 100, order_status="pending")
    seed_order(persistence, (10, 13), "u2", 200, order_status="delivered", payment_status="paid", product="p2")
    seed_order(persistence, (10, 14), "u1", 300, payment_status="paid", product="p2")
    seed_order(persistence, (10, 5), "u3", 50, order_status="pending")
    seed_order(persistence, (10, 6), "u3", 150, order_status="delivered", payment_status="paid")
    seed_order(persistence, (9, 20), "u4", 250, order_status="delivered", payment_status="paid", product="p3")
    return persistence


class TestDateRanges:
    """Test cases for week and month boundaries."""

    def test_week_starts_on_sunday(self):
        """Test the week boundary is the previous Sunday at midnight."""
        assert week_start(datetime(2026, 10, 14, 12, tzinfo=timezone.utc)) == datetime(2026, 10, 11, tzinfo=timezone.utc)
        assert week_start(datetime(2026, 10, 11, 8, tzinfo=timezone.utc)) == datetime(2026, 10, 11, tzinfo=timezone.utc)

    def test_month_start_wraps_year(self):
        """Test the previous month of January is December."""
        now = datetime(2026, 1, 15, tzinfo=timezone.utc)
        assert month_start(now, 1) == datetime(2025, 12, 1, tzinfo=timezone.utc)

    def test_change_without_baseline(self):
        """Test percentage change is 0 when the previous value is 0."""
        assert change(4, 0) == {"value": 4, "percentage": 0}
        assert change(3, 2) == {"value": 1, "percentage": 50.0}


class TestAnalyticsService:
    """Test cases for AnalyticsService."""

    @pytest.mark.asyncio
    async def test_order_stats(self, analytics, seeded):
        """Test weekly counts, monthly revenue growth and top products."""
        stats = await analytics.order_stats()

        assert stats["totalOrders"] == 3
        assert stats["ordersChange"] == {"value": 1, "percentage": 50.0}
        assert stats["pendingOrders"] == 1
        assert stats["pendingChange"] == {"value": 0, "percentage": 0.0}
        assert stats["deliveredOrders"] == 1
        assert stats["totalCustomers"] == 2
        assert stats["customersChange"] == {"value": 1, "percentage": 100.0}
        assert stats["totalRevenue"] == 650
        assert stats["revenueGrowthPercentage"] == 160.0
        assert stats["topProducts"][0] == {"_id": "p1", "title": "P1", "image": "", "totalQty": 3}

    @pytest.mark.asyncio
    async def test_order_stats_cached_until_cleared(self, analytics, seeded, cache_store):
        """Test stats are served from cache until the analytics entries are cleared."""
        await analytics.order_stats()
        seed_order(seeded, (10, 14), "u9", 10)

        assert (await analytics.order_stats())["totalOrders"] == 3

        await CacheInvalidator(cache_store).clear_analytics()
        assert (await analytics.order_stats())["totalOrders"] == 4

    @pytest.mark.asyncio
    async def test_sales_overview(self, analytics, seeded):
        """Test daily totals for the last 30 days formatted as day/month."""
        overview = await analytics.sales_overview()

        assert overview[0] == {"date": "20/9", "revenue": 250, "orders": 1}
        assert [row["date"] for row in overview] == ["20/9", "5/10", "6/10", "12/10", "13/10", "14/10"]
