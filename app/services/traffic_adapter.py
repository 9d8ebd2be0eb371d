"""
Traffic Adapter

Domain queries over a merchant's GA4 property: session totals, sessions by
acquisition channel and top-viewed products. Reports run through the
ResilientReportFetcher with the merchant's OAuth token; failures come back as
None, successful-but-empty reports as zeros or empty lists.
"""
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from google.analytics.data_v1beta.types import RunReportRequest, RunReportResponse

from app.config import get_settings
from app.connectors.ga4 import GA4Connector
from app.models.connections import TrafficConnection
from app.services.report_fetcher import FetchRequest, ResilientReportFetcher
from app.utils.logger import log

UNKNOWN_PRODUCT_NAME = "Unknown Name"


@dataclass
class TrafficRow:
    """Views for one product, as reported by GA4"""
    product_id: str
    product_name: str
    view_count: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class TrafficAdapter:
    """GA4 Data API queries for one merchant's property"""

    def __init__(self, fetcher: ResilientReportFetcher, ga4: Optional[GA4Connector] = None):
        self.fetcher = fetcher
        self.ga4 = ga4 or GA4Connector()
        self.settings = get_settings()

    async def _run_report(
        self,
        connection: TrafficConnection,
        label: str,
        request: RunReportRequest,
    ) -> Optional[RunReportResponse]:
        result = await self.fetcher.execute(
            connection,
            FetchRequest(label=label, call=lambda token: self.ga4.run_report(token, request)),
        )
        if not result.ok:
            log.error(
                f"[Merchant:{connection.merchant_id}] GA4 {label} unavailable "
                f"({result.failure.value}): {result.error}"
            )
            return None
        return result.value

    def _property_id(self, connection: TrafficConnection, label: str) -> Optional[str]:
        if not connection.property_id:
            log.error(f"[Merchant:{connection.merchant_id}] GA4 {label}: no property configured")
            return None
        return connection.property_id

    async def get_basic_metrics(
        self,
        connection: TrafficConnection,
        start_date: datetime,
        end_date: datetime,
    ) -> Optional[Dict[str, int]]:
        """
        Sessions and active users for the range

        Returns:
            {"sessions": int, "active_users": int}, zeros when GA4 returns no rows
        """
        property_id = self._property_id(connection, "basic_metrics")
        if not property_id:
            return None

        request = self.ga4.build_report_request(
            property_id, start_date, end_date, metrics=["sessions", "activeUsers"]
        )
        response = await self._run_report(connection, "basic_metrics", request)
        if response is None:
            return None

        metrics = {"sessions": 0, "active_users": 0}
        if response.rows:
            values = response.rows[0].metric_values
            metrics["sessions"] = _to_int(values[0].value) if len(values) > 0 else 0
            metrics["active_users"] = _to_int(values[1].value) if len(values) > 1 else 0
        return metrics

    async def get_sessions_by_channel(
        self,
        connection: TrafficConnection,
        start_date: datetime,
        end_date: datetime,
    ) -> Optional[List[Dict[str, Any]]]:
        """Sessions per default channel group, most sessions first"""
        property_id = self._property_id(connection, "sessions_by_channel")
        if not property_id:
            return None

        request = self.ga4.build_report_request(
            property_id, start_date, end_date,
            metrics=["sessions"],
            dimensions=["sessionDefaultChannelGroup"],
            order_by_metric="sessions",
        )
        response = await self._run_report(connection, "sessions_by_channel", request)
        if response is None:
            return None

        channels = []
        for row in response.rows:
            channels.append({
                "channel": row.dimension_values[0].value if row.dimension_values else "",
                "sessions": _to_int(row.metric_values[0].value) if row.metric_values else 0,
            })
        return channels

    async def get_product_views(
        self,
        connection: TrafficConnection,
        start_date: datetime,
        end_date: datetime,
        limit: Optional[int] = None,
    ) -> Optional[List[TrafficRow]]:
        """
        Top-viewed products (itemsViewed by itemId/itemName), most viewed first

        Rows without an item id are dropped.
        """
        property_id = self._property_id(connection, "product_views")
        if not property_id:
            return None

        limit = limit or self.settings.top_products_default_limit
        request = self.ga4.build_report_request(
            property_id, start_date, end_date,
            metrics=["itemsViewed"],
            dimensions=["itemId", "itemName"],
            order_by_metric="itemsViewed",
            limit=limit,
        )
        response = await self._run_report(connection, "product_views", request)
        if response is None:
            return None

        rows: List[TrafficRow] = []
        for row in response.rows:
            dims = [d.value for d in row.dimension_values]
            product_id = dims[0] if dims else ""
            if not product_id:
                continue
            rows.append(TrafficRow(
                product_id=product_id,
                product_name=(dims[1] if len(dims) > 1 else "") or UNKNOWN_PRODUCT_NAME,
                view_count=_to_int(row.metric_values[0].value) if row.metric_values else 0,
            ))

        log.info(f"[Merchant:{connection.merchant_id}] GA4 product views: {len(rows)} products")
        return rows

    async def get_multiple_reports(
        self,
        connection: TrafficConnection,
        start_date: datetime,
        end_date: datetime,
        definitions: Dict[str, Dict[str, Any]],
    ) -> Optional[Dict[str, List[Dict[str, List[str]]]]]:
        """
        Run several reports in one batchRunReports call

        Args:
            definitions: {key: {"metrics": [...], "dimensions": [...],
                         "order_by": metric, "desc": bool, "limit": int}}

        Returns:
            {key: [{"dimensions": [...], "metrics": [...]}, ...]}; keys the
            response does not cover map to []. None if the batch call fails.
        """
        property_id = self._property_id(connection, "batch_reports")
        if not property_id:
            return None
        if not definitions:
            return {}

        keys = list(definitions.keys())
        requests = [
            self.ga4.build_report_request(
                property_id, start_date, end_date,
                metrics=definition["metrics"],
                dimensions=definition.get("dimensions"),
                order_by_metric=definition.get("order_by"),
                desc=definition.get("desc", True),
                limit=definition.get("limit"),
            )
            for definition in definitions.values()
        ]
        # The batch request carries the property; individual reports must not
        for request in requests:
            request.property = ""

        result = await self.fetcher.execute(
            connection,
            FetchRequest(
                label=f"batch_reports({', '.join(keys)})",
                call=lambda token: self.ga4.batch_run_reports(token, property_id, requests),
            ),
        )
        if not result.ok:
            log.error(
                f"[Merchant:{connection.merchant_id}] GA4 batch reports unavailable "
                f"({result.failure.value}): {result.error}"
            )
            return None

        reports: Dict[str, List[Dict[str, List[str]]]] = {}
        for index, report in enumerate(result.value.reports):
            if index >= len(keys):
                break
            reports[keys[index]] = [
                {
                    "dimensions": [d.value for d in row.dimension_values],
                    "metrics": [m.value for m in row.metric_values],
                }
                for row in report.rows
            ]

        for key in keys:
            if key not in reports:
                log.warning(f"[Merchant:{connection.merchant_id}] GA4 batch response has no report for '{key}'")
                reports[key] = []
        return reports


def _to_int(value: Any) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0
