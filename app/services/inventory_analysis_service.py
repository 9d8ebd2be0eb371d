"""
Inventory Analysis Service

Joins GA4 product views against Shopify stock levels and flags products where
the two disagree: little stock with heavy interest (stockout risk) or lots of
stock nobody looks at (promotion candidate).

Results are cached per merchant and date range. Missing connections cache an
empty list; provider failures return an empty list without caching so the
next request tries again.
"""
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.config import get_settings
from app.models.merchant import Merchant
from app.services.commerce_adapter import CommerceAdapter
from app.services.credential_store import CredentialStore
from app.services.traffic_adapter import TrafficAdapter, TrafficRow
from app.utils.cache import CacheAside, cache_aside, cache_key
from app.utils.helpers import unique_preserving_order
from app.utils.logger import log

STOCKOUT_RISK = "stockout_risk"
PROMOTION_CANDIDATE = "promotion_candidate"


class InsightUnavailable(Exception):
    """A provider failed mid-analysis; the empty result must not be cached."""


@dataclass(frozen=True)
class Thresholds:
    low_stock: int
    high_stock: int
    high_traffic: int
    low_traffic: int

    @classmethod
    def from_settings(cls) -> "Thresholds":
        settings = get_settings()
        return cls(
            low_stock=settings.low_stock_threshold,
            high_stock=settings.high_stock_threshold,
            high_traffic=settings.high_traffic_threshold,
            low_traffic=settings.low_traffic_threshold,
        )


@dataclass
class Insight:
    product_id: str
    product_name: str
    status: str
    stock: int
    views: int
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def classify(stock: int, views: int, thresholds: Thresholds) -> Optional[str]:
    """Status for one product, or None when stock and interest are in balance"""
    if stock <= thresholds.low_stock and views >= thresholds.high_traffic:
        return STOCKOUT_RISK
    if stock >= thresholds.high_stock and views <= thresholds.low_traffic:
        return PROMOTION_CANDIDATE
    return None


def correlate(
    rows: List[TrafficRow],
    inventory: Dict[str, int],
    thresholds: Thresholds,
) -> List[Insight]:
    """
    Classify traffic rows against inventory, keeping traffic-rank order.

    Repeated product ids are evaluated once. Products missing from inventory
    are skipped; they are no longer in the catalog.
    """
    insights: List[Insight] = []
    processed = set()

    for row in rows:
        if row.product_id in processed:
            continue
        processed.add(row.product_id)

        stock = inventory.get(row.product_id)
        if stock is None:
            log.debug(f"Product {row.product_id} not found in inventory, skipping")
            continue

        status = classify(stock, row.view_count, thresholds)
        if status is None:
            continue

        if status == STOCKOUT_RISK:
            message = f"Low stock ({stock}) with high interest ({row.view_count} views)."
        else:
            message = f"High stock ({stock}) with low interest ({row.view_count} views)."

        log.debug(f"Product {row.product_id}: {status} (stock={stock}, views={row.view_count})")
        insights.append(Insight(
            product_id=row.product_id,
            product_name=row.product_name,
            status=status,
            stock=stock,
            views=row.view_count,
            message=message,
        ))

    return insights


class InventoryAnalysisService:
    """Stock vs. interest insights for one merchant"""

    def __init__(
        self,
        store: CredentialStore,
        commerce: CommerceAdapter,
        traffic: TrafficAdapter,
        cache: Optional[CacheAside] = None,
        thresholds: Optional[Thresholds] = None,
    ):
        self.store = store
        self.commerce = commerce
        self.traffic = traffic
        self.cache = cache or cache_aside
        self.thresholds = thresholds or Thresholds.from_settings()
        self.settings = get_settings()

    async def analyze(
        self,
        merchant: Merchant,
        start_date: datetime,
        end_date: datetime,
    ) -> List[Dict[str, Any]]:
        """
        Insights for the date range, as dicts in traffic-rank order.

        Never raises for provider failures; those yield [] (uncached).
        """
        period = f"{start_date:%Y-%m-%d}_{end_date:%Y-%m-%d}"
        key = cache_key("inventory_analysis", merchant.id, period)

        async def compute() -> List[Dict[str, Any]]:
            return [i.to_dict() for i in await self._run(merchant, start_date, end_date)]

        try:
            return await self.cache.get_or_compute(key, self.settings.inventory_cache_ttl, compute)
        except InsightUnavailable as e:
            log.warning(f"[Merchant:{merchant.id}] Inventory analysis not cached: {e}")
            return []

    async def _run(self, merchant: Merchant, start_date: datetime, end_date: datetime) -> List[Insight]:
        commerce_conn = self.store.get_commerce(merchant.id)
        traffic_conn = self.store.get_traffic(merchant.id)
        if commerce_conn is None or traffic_conn is None or not traffic_conn.property_configured:
            log.info(f"[Merchant:{merchant.id}] Inventory analysis skipped: Shopify or GA4 property not connected")
            return []

        rows = await self.traffic.get_product_views(
            traffic_conn, start_date, end_date, limit=self.settings.product_limit_for_analysis
        )
        if rows is None:
            raise InsightUnavailable("GA4 product views unavailable")
        if not rows:
            log.info(f"[Merchant:{merchant.id}] No product views in range")
            return []

        product_ids = unique_preserving_order([row.product_id for row in rows])
        inventory = await self.commerce.get_inventory_levels(commerce_conn, product_ids)
        if inventory is None:
            raise InsightUnavailable("Shopify inventory unavailable")

        insights = correlate(rows, inventory, self.thresholds)
        log.info(
            f"[Merchant:{merchant.id}] Inventory analysis: {len(insights)} insights "
            f"from {len(product_ids)} products"
        )
        return insights
