"""
Commerce Adapter

Domain queries over a merchant's Shopify store. Every call goes through the
ResilientReportFetcher; provider failures are absorbed here and surface as
None ("no data"), never as exceptions.
"""
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from dateutil import parser as date_parser

from app.config import get_settings
from app.connectors.shopify import ShopifyConnector
from app.models.connections import CommerceConnection
from app.services.report_fetcher import FetchRequest, ResilientReportFetcher
from app.utils.helpers import chunk_list
from app.utils.logger import log


class CommerceAdapter:
    """Shop summary, sales, order counts, sales trend and inventory levels"""

    def __init__(
        self,
        fetcher: ResilientReportFetcher,
        connector_factory: Optional[Callable[[str, str], ShopifyConnector]] = None,
    ):
        self.fetcher = fetcher
        self.connector_factory = connector_factory or (
            lambda domain, token: ShopifyConnector(domain, token)
        )
        self.settings = get_settings()

    async def _fetch(self, connection: CommerceConnection, label: str, operation: Callable):
        """Run operation(connector) through the fetcher; None on failure."""
        async def call(token: str):
            return await operation(self.connector_factory(connection.shop_domain, token))

        result = await self.fetcher.execute(connection, FetchRequest(label=label, call=call))
        if not result.ok:
            log.error(
                f"[Merchant:{connection.merchant_id}] Shopify {label} unavailable "
                f"({result.failure.value}): {result.error}"
            )
            return None
        return result.value

    async def get_shop_summary(self, connection: CommerceConnection) -> Optional[Dict[str, Any]]:
        """Shop metadata (name, currency, domain...)"""
        return await self._fetch(connection, "shop", lambda c: c.get_shop())

    async def get_orders_count(
        self,
        connection: CommerceConnection,
        start_date: datetime,
        end_date: datetime,
        status: str = "any",
        financial_status: Optional[str] = None,
        fulfillment_status: Optional[str] = None,
    ) -> Optional[int]:
        return await self._fetch(
            connection,
            f"orders_count(status={status}, financial_status={financial_status})",
            lambda c: c.count_orders(
                start_date, end_date,
                status=status,
                financial_status=financial_status,
                fulfillment_status=fulfillment_status,
            ),
        )

    async def get_total_sales(
        self,
        connection: CommerceConnection,
        start_date: datetime,
        end_date: datetime,
    ) -> Optional[float]:
        """Sum of total_price over paid orders in the range"""
        async def operation(connector: ShopifyConnector) -> float:
            total = 0.0
            async for orders in connector.iter_orders(start_date, end_date, fields="total_price"):
                for order in orders:
                    price = _to_float(order.get("total_price"))
                    if price is not None:
                        total += price
            return total

        total = await self._fetch(connection, "paid_sales", operation)
        if total is not None:
            log.info(f"[Merchant:{connection.merchant_id}] Paid sales {start_date.date()}..{end_date.date()}: {total:.2f}")
        return total

    async def get_sales_trend(
        self,
        connection: CommerceConnection,
        start_date: datetime,
        end_date: datetime,
    ) -> Optional[List[Dict[str, Any]]]:
        """
        Paid sales per day, one entry for every day in the range

        Returns:
            [{"date": "YYYY-MM-DD", "sales": float}, ...] in date order
        """
        async def operation(connector: ShopifyConnector) -> List[Dict[str, Any]]:
            daily: Dict[str, Dict[str, Any]] = {}
            day = start_date.date()
            while day <= end_date.date():
                daily[day.isoformat()] = {"date": day.isoformat(), "sales": 0.0}
                day += timedelta(days=1)

            async for orders in connector.iter_orders(start_date, end_date, fields="created_at,total_price"):
                for order in orders:
                    price = _to_float(order.get("total_price"))
                    created_at = order.get("created_at")
                    if price is None or not created_at:
                        continue
                    try:
                        order_day = date_parser.isoparse(created_at).date().isoformat()
                    except ValueError:
                        continue
                    if order_day in daily:
                        daily[order_day]["sales"] += price

            return list(daily.values())

        return await self._fetch(connection, "sales_trend", operation)

    async def get_inventory_levels(
        self,
        connection: CommerceConnection,
        product_ids: List[str],
    ) -> Optional[Dict[str, int]]:
        """
        Total stock per product (sum of variant inventory_quantity)

        IDs are fetched in chunks of at most shopify_ids_per_request. If any
        chunk fails the whole lookup returns None; a partial result would make
        missing products look like zero stock.

        Returns:
            {product_id: stock}; products Shopify does not return are absent
        """
        numeric_ids = [str(pid) for pid in product_ids if str(pid).isdigit()]
        if not numeric_ids:
            if product_ids:
                log.warning(f"[Merchant:{connection.merchant_id}] No numeric product ids in {len(product_ids)} requested")
            return {}

        chunks = chunk_list(numeric_ids, self.settings.shopify_ids_per_request)
        log.info(
            f"[Merchant:{connection.merchant_id}] Fetching inventory for "
            f"{len(numeric_ids)} products in {len(chunks)} chunk(s)"
        )

        inventory: Dict[str, int] = {}
        for index, chunk in enumerate(chunks, start=1):
            products = await self._fetch(
                connection,
                f"inventory chunk {index}/{len(chunks)}",
                lambda c, ids=chunk: c.get_products(ids),
            )
            if products is None:
                log.error(f"[Merchant:{connection.merchant_id}] Inventory chunk {index} failed, aborting lookup")
                return None

            for product in products:
                product_id = product.get("id")
                if product_id is None:
                    continue
                stock = 0
                for variant in product.get("variants") or []:
                    qty = variant.get("inventory_quantity")
                    if isinstance(qty, (int, float)) and not isinstance(qty, bool):
                        stock += int(qty)
                inventory[str(product_id)] = stock

        log.info(f"[Merchant:{connection.merchant_id}] Inventory found for {len(inventory)} products")
        return inventory


def _to_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
