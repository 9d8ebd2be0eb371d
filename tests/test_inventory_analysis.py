"""
Inventory insight classification and the analysis caching rules.

Classification tests are pure; the service tests use fake adapters and a
private cache.
"""
import asyncio
from datetime import datetime

import pytest

from app.services.credential_store import CredentialStore
from app.services.inventory_analysis_service import (
    PROMOTION_CANDIDATE,
    STOCKOUT_RISK,
    InventoryAnalysisService,
    Thresholds,
    classify,
    correlate,
)
from app.services.traffic_adapter import TrafficRow
from app.utils.cache import CacheAside

START = datetime(2025, 4, 14)
END = datetime(2025, 4, 20, 23, 59, 59)
DEFAULTS = Thresholds(low_stock=10, high_stock=100, high_traffic=50, low_traffic=5)


def _run(coro):
    """Run an async coroutine in a sync test."""
    return asyncio.run(coro)


# ────────────────────────────────────────────
# CLASSIFICATION
# ────────────────────────────────────────────


class TestClassify:
    """Threshold boundaries are inclusive on both rules."""

    @pytest.mark.parametrize("stock, views, expected", [
        (10, 50, STOCKOUT_RISK),
        (0, 500, STOCKOUT_RISK),
        (11, 50, None),
        (10, 49, None),
        (100, 5, PROMOTION_CANDIDATE),
        (250, 0, PROMOTION_CANDIDATE),
        (99, 5, None),
        (100, 6, None),
        (50, 20, None),
    ])
    def test_boundaries(self, stock, views, expected):
        assert classify(stock, views, DEFAULTS) == expected

    def test_thresholds_follow_settings(self):
        assert Thresholds.from_settings() == DEFAULTS


class TestCorrelate:

    def test_keeps_traffic_rank_order_and_messages(self):
        rows = [
            TrafficRow("1", "Hot Item", 300),
            TrafficRow("2", "Balanced", 40),
            TrafficRow("3", "Dusty Item", 2),
        ]
        insights = correlate(rows, {"1": 4, "2": 40, "3": 180}, DEFAULTS)

        assert [(i.product_id, i.status) for i in insights] == [
            ("1", STOCKOUT_RISK),
            ("3", PROMOTION_CANDIDATE),
        ]
        assert insights[0].message == "Low stock (4) with high interest (300 views)."
        assert insights[1].message == "High stock (180) with low interest (2 views)."
        assert insights[0].to_dict() == {
            "product_id": "1",
            "product_name": "Hot Item",
            "status": STOCKOUT_RISK,
            "stock": 4,
            "views": 300,
            "message": "Low stock (4) with high interest (300 views).",
        }

    def test_duplicate_rows_evaluated_once(self):
        rows = [TrafficRow("1", "Hot Item", 300), TrafficRow("1", "Hot Item (copy)", 1)]
        insights = correlate(rows, {"1": 0}, DEFAULTS)
        assert len(insights) == 1
        assert insights[0].views == 300

    def test_products_missing_from_catalog_skipped(self):
        insights = correlate([TrafficRow("404", "Deleted", 900)], {}, DEFAULTS)
        assert insights == []

    def test_repeated_runs_give_identical_order(self):
        rows = [
            TrafficRow("9", "Dusty Item", 1),
            TrafficRow("1", "Hot Item", 300),
            TrafficRow("9", "Dusty Item", 1),
            TrafficRow("4", "Also Hot", 75),
        ]
        inventory = {"9": 500, "1": 2, "4": 10}

        first = [i.to_dict() for i in correlate(rows, inventory, DEFAULTS)]
        second = [i.to_dict() for i in correlate(rows, inventory, DEFAULTS)]

        assert first == second
        assert [i["product_id"] for i in first] == ["9", "1", "4"]

    def test_present_zero_stock_is_not_missing(self):
        insights = correlate([TrafficRow("7", "Sold Out", 60)], {"7": 0}, DEFAULTS)
        assert insights[0].status == STOCKOUT_RISK


# ────────────────────────────────────────────
# SERVICE
# ────────────────────────────────────────────


class FakeTraffic:
    def __init__(self, rows):
        self.rows = rows
        self.calls = 0
        self.limits = []

    async def get_product_views(self, connection, start_date, end_date, limit=None):
        self.calls += 1
        self.limits.append(limit)
        return self.rows


class FakeCommerce:
    def __init__(self, inventory):
        self.inventory = inventory
        self.calls = []

    async def get_inventory_levels(self, connection, product_ids):
        self.calls.append(list(product_ids))
        return self.inventory


def _connect(db, merchant, property_id="properties/1"):
    store = CredentialStore(db)
    store.upsert_commerce(merchant.id, "demo.myshopify.com", "shpat")
    store.upsert_traffic(merchant.id, "ga-access", None, "ga-refresh")
    if property_id:
        store.set_property_id(merchant.id, property_id)
    return store


def _service(store, traffic, commerce, cache=None):
    return InventoryAnalysisService(store, commerce, traffic, cache=cache or CacheAside(), thresholds=DEFAULTS)


class TestInventoryAnalysisService:

    def test_full_analysis(self, db, merchant):
        store = _connect(db, merchant)
        traffic = FakeTraffic([
            TrafficRow("1", "Hot Item", 300),
            TrafficRow("SKU-X", "Odd Id", 12),
            TrafficRow("1", "Hot Item", 300),
            TrafficRow("3", "Dusty Item", 2),
        ])
        commerce = FakeCommerce({"1": 4, "3": 180})

        insights = _run(_service(store, traffic, commerce).analyze(merchant, START, END))

        assert [i["product_id"] for i in insights] == ["1", "3"]
        # Distinct ids, first-seen order
        assert commerce.calls == [["1", "SKU-X", "3"]]
        assert traffic.limits == [100]

    def test_result_is_cached(self, db, merchant):
        store = _connect(db, merchant)
        traffic = FakeTraffic([TrafficRow("1", "Hot Item", 300)])
        commerce = FakeCommerce({"1": 4})
        service = _service(store, traffic, commerce)

        first = _run(service.analyze(merchant, START, END))
        second = _run(service.analyze(merchant, START, END))

        assert first == second
        assert traffic.calls == 1
        assert len(commerce.calls) == 1

    def test_missing_connections_cache_empty(self, db, merchant):
        store = _connect(db, merchant, property_id=None)
        traffic = FakeTraffic([TrafficRow("1", "Hot Item", 300)])
        cache = CacheAside()
        service = _service(store, traffic, FakeCommerce({}), cache=cache)

        assert _run(service.analyze(merchant, START, END)) == []

        # Property set afterwards: the negative entry is still served until it expires
        store.set_property_id(merchant.id, "properties/1")
        assert _run(service.analyze(merchant, START, END)) == []
        assert traffic.calls == 0

    def test_traffic_failure_not_cached(self, db, merchant):
        store = _connect(db, merchant)
        traffic = FakeTraffic(None)
        commerce = FakeCommerce({"1": 4})
        service = _service(store, traffic, commerce)

        assert _run(service.analyze(merchant, START, END)) == []

        traffic.rows = [TrafficRow("1", "Hot Item", 300)]
        assert len(_run(service.analyze(merchant, START, END))) == 1
        assert traffic.calls == 2

    def test_inventory_failure_not_cached(self, db, merchant):
        store = _connect(db, merchant)
        traffic = FakeTraffic([TrafficRow("1", "Hot Item", 300)])
        commerce = FakeCommerce(None)
        service = _service(store, traffic, commerce)

        assert _run(service.analyze(merchant, START, END)) == []

        commerce.inventory = {"1": 2}
        assert len(_run(service.analyze(merchant, START, END))) == 1

    def test_no_views_is_cached_empty(self, db, merchant):
        store = _connect(db, merchant)
        traffic = FakeTraffic([])
        commerce = FakeCommerce({})
        service = _service(store, traffic, commerce)

        assert _run(service.analyze(merchant, START, END)) == []
        assert _run(service.analyze(merchant, START, END)) == []
        assert traffic.calls == 1
        assert commerce.calls == []

    def test_periods_cached_separately(self, db, merchant):
        store = _connect(db, merchant)
        traffic = FakeTraffic([TrafficRow("1", "Hot Item", 300)])
        service = _service(store, traffic, FakeCommerce({"1": 4}))

        _run(service.analyze(merchant, START, END))
        _run(service.analyze(merchant, datetime(2025, 3, 1), datetime(2025, 3, 31, 23, 59, 59)))

        assert traffic.calls == 2
