"""
Dashboard Service

Builds the merchant dashboard for a period: Shopify sales and orders, GA4
sessions and channels, the derived conversion rate and inventory insights.

Shopify and GA4 are fetched concurrently, each under its own timeout, so one
slow or failing provider never holds back the other. Inventory analysis only
starts once both have finished, runs under the same timeout and is isolated
from the rest: if it fails or times out the dashboard still renders, with no
insights. A dashboard that could not be assembled at all comes back with an
"error" key and is not cached.
"""
import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.config import get_settings
from app.connectors.errors import FailureKind
from app.models.connections import CommerceConnection, TrafficConnection
from app.models.merchant import Merchant
from app.services.commerce_adapter import CommerceAdapter
from app.services.credential_store import CredentialStore
from app.services.inventory_analysis_service import InventoryAnalysisService
from app.services.traffic_adapter import TrafficAdapter
from app.utils.cache import CacheAside, cache_aside, cache_key
from app.utils.helpers import safe_divide
from app.utils.logger import log
from app.utils.periods import DEFAULT_PERIOD, PeriodSpec, resolve_period

DASHBOARD_ERROR_MESSAGE = "Failed to fetch dashboard data. Please try again later."


class DashboardUnavailable(Exception):
    """Carries the error payload out of the cached computation."""

    def __init__(self, payload: Dict[str, Any]):
        super().__init__(payload.get("error"))
        self.payload = payload


class DashboardService:
    """Aggregates Shopify, GA4 and inventory insights per merchant and period"""

    def __init__(
        self,
        store: CredentialStore,
        commerce: CommerceAdapter,
        traffic: TrafficAdapter,
        inventory: InventoryAnalysisService,
        cache: Optional[CacheAside] = None,
    ):
        self.store = store
        self.commerce = commerce
        self.traffic = traffic
        self.inventory = inventory
        self.cache = cache or cache_aside
        self.settings = get_settings()

    async def get_dashboard(
        self,
        merchant: Merchant,
        period_identifier: str = DEFAULT_PERIOD,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Get dashboard data for a merchant.

        Args:
            merchant: Authenticated merchant
            period_identifier: One of 7d, 30d, this_month, last_month
            timeout: Per-step timeout in seconds for the Shopify, GA4 and
                inventory steps (defaults to settings)

        Returns:
            Dashboard dict. Carries an "error" key when assembly failed.

        Raises:
            PeriodError: unknown period identifier (before any provider call)
        """
        period = resolve_period(period_identifier)
        key = cache_key("dashboard", merchant.id, f"{period.label}_{period.cache_fragment}")
        timeout = timeout or self.settings.provider_timeout_seconds

        try:
            return await self.cache.get_or_compute(
                key,
                self.settings.dashboard_cache_ttl,
                lambda: self._build(merchant, period, timeout),
            )
        except DashboardUnavailable as e:
            return e.payload

    async def _build(self, merchant: Merchant, period: PeriodSpec, timeout: float) -> Dict[str, Any]:
        log.info(
            f"[Merchant:{merchant.id}] Building dashboard for {period.label} "
            f"({period.start_date} to {period.end_date})"
        )
        commerce_conn: Optional[CommerceConnection] = None
        traffic_conn: Optional[TrafficConnection] = None

        try:
            commerce_conn = self.store.get_commerce(merchant.id)
            traffic_conn = self.store.get_traffic(merchant.id)
            traffic_ready = traffic_conn is not None and traffic_conn.property_configured

            if commerce_conn is None:
                log.info(f"[Merchant:{merchant.id}] No Shopify connection")
            if traffic_conn is None:
                log.info(f"[Merchant:{merchant.id}] No GA4 connection")
            elif not traffic_ready:
                log.error(f"[Merchant:{merchant.id}] GA4 connected but no property selected")

            commerce_metrics, traffic_metrics = await asyncio.gather(
                self._with_timeout(
                    merchant, "shopify", timeout,
                    self._fetch_commerce_metrics(commerce_conn, period) if commerce_conn else None,
                ),
                self._with_timeout(
                    merchant, "ga4", timeout,
                    self._fetch_traffic_metrics(traffic_conn, period) if traffic_ready else None,
                ),
            )

            calculated = None
            if commerce_metrics and traffic_metrics:
                calculated = self._calculate_combined_metrics(commerce_metrics, traffic_metrics)

            insights: List[Dict[str, Any]] = []
            if commerce_metrics is not None and traffic_ready:
                insights = await self._inventory_insights(merchant, period.start, period.end, timeout)

        except Exception as e:
            log.exception(f"[Merchant:{merchant.id}] Dashboard build failed: {e}")
            raise DashboardUnavailable(self._format_response(
                period, commerce_conn, traffic_conn,
                None, None, None, None,
                error=DASHBOARD_ERROR_MESSAGE,
            )) from e

        return self._format_response(
            period, commerce_conn, traffic_conn,
            commerce_metrics, traffic_metrics, calculated, insights,
        )

    async def _with_timeout(self, merchant: Merchant, source: str, timeout: float, coro) -> Optional[Dict[str, Any]]:
        if coro is None:
            return None
        try:
            return await asyncio.wait_for(coro, timeout=timeout)
        except asyncio.TimeoutError:
            log.error(
                f"[Merchant:{merchant.id}] {source} metrics failed "
                f"({FailureKind.TIMEOUT.value}) after {timeout}s"
            )
            return None

    async def _fetch_commerce_metrics(self, connection: CommerceConnection, period: PeriodSpec) -> Dict[str, Any]:
        log.info(f"[Merchant:{connection.merchant_id}] Fetching Shopify metrics for {connection.shop_domain}")
        start, end = period.start, period.end

        shop, paid_sales, paid_orders, total_orders, trend = await asyncio.gather(
            self.commerce.get_shop_summary(connection),
            self.commerce.get_total_sales(connection, start, end),
            self.commerce.get_orders_count(connection, start, end, status="any", financial_status="paid"),
            self.commerce.get_orders_count(connection, start, end, status="any"),
            self.commerce.get_sales_trend(connection, start, end),
        )

        aov = None
        if paid_sales is not None and paid_orders is not None:
            aov = round(safe_divide(paid_sales, paid_orders), 2)

        return {
            "shop_name": (shop or {}).get("name") or connection.shop_domain,
            "total_orders_period": total_orders,
            "paid_orders_period": paid_orders,
            "paid_sales_period": paid_sales,
            "aov_period": aov,
            "sales_trend_period": trend,
        }

    async def _fetch_traffic_metrics(self, connection: TrafficConnection, period: PeriodSpec) -> Dict[str, Any]:
        log.info(f"[Merchant:{connection.merchant_id}] Fetching GA4 metrics for {connection.property_id}")
        basic, channels = await asyncio.gather(
            self.traffic.get_basic_metrics(connection, period.start, period.end),
            self.traffic.get_sessions_by_channel(connection, period.start, period.end),
        )
        basic = basic or {}
        return {
            "sessions_period": basic.get("sessions"),
            "active_users_period": basic.get("active_users"),
            "traffic_sources_period": channels,
        }

    def _calculate_combined_metrics(
        self,
        commerce_metrics: Dict[str, Any],
        traffic_metrics: Dict[str, Any],
    ) -> Dict[str, Any]:
        orders = commerce_metrics.get("total_orders_period")
        sessions = traffic_metrics.get("sessions_period")
        conversion_rate = None
        if orders is not None and sessions is not None:
            conversion_rate = round(safe_divide(orders, sessions) * 100, 2)
        return {"conversion_rate_period": conversion_rate}

    async def _inventory_insights(
        self, merchant: Merchant, start: datetime, end: datetime, timeout: float
    ) -> List[Dict[str, Any]]:
        try:
            insights = await asyncio.wait_for(self.inventory.analyze(merchant, start, end), timeout=timeout)
        except asyncio.TimeoutError:
            log.error(
                f"[Merchant:{merchant.id}] Inventory analysis failed "
                f"({FailureKind.TIMEOUT.value}) after {timeout}s, dashboard continues without it"
            )
            return []
        except Exception as e:
            log.error(f"[Merchant:{merchant.id}] Inventory analysis failed, dashboard continues without it: {e}")
            return []
        log.info(f"[Merchant:{merchant.id}] Inventory analysis returned {len(insights)} insights")
        return insights

    def _format_response(
        self,
        period: PeriodSpec,
        commerce_conn: Optional[CommerceConnection],
        traffic_conn: Optional[TrafficConnection],
        commerce_metrics: Optional[Dict[str, Any]],
        traffic_metrics: Optional[Dict[str, Any]],
        calculated_metrics: Optional[Dict[str, Any]],
        insights: Optional[List[Dict[str, Any]]],
        error: Optional[str] = None,
    ) -> Dict[str, Any]:
        response = {
            "connections": {
                "commerce_connected": commerce_conn is not None,
                "traffic_connected": traffic_conn is not None,
                "property_configured": bool(traffic_conn and traffic_conn.property_configured),
            },
            "commerce_metrics": commerce_metrics or {},
            "traffic_metrics": traffic_metrics or {},
            "calculated_metrics": calculated_metrics or {},
            "insights": insights or [],
            "period": period.to_dict(),
        }
        if error:
            response["error"] = error
        return response
