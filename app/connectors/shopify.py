"""
Shopify Connector

Read-only access to the Shopify Admin REST API for one store.
Source of truth for orders and per-product inventory.
"""
import asyncio
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from app.config import get_settings
from app.connectors.base import BaseConnector
from app.connectors.errors import FailureKind, ProviderError, is_rate_limited
from app.utils.logger import log
from app.utils.retry import RetryContext


class ShopifyConnector(BaseConnector):
    """
    Connector for Shopify Admin API

    Every request retries a 429 with a fixed delay, up to a capped number of
    attempts. All other failures surface immediately as ProviderError.
    """

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        api_version: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep=asyncio.sleep,
    ):
        """
        Initialize Shopify connector

        Args:
            shop_domain: Shopify store domain (e.g., "your-store.myshopify.com")
            access_token: Shopify Admin API access token
            api_version: API version to use (defaults to settings)
            transport: Optional httpx transport (used by tests)
            sleep: Awaitable sleep used between rate-limit retries
        """
        super().__init__(source_name="shopify", source_type="ecommerce")

        settings = get_settings()
        self.settings = settings
        self.shop_domain = shop_domain.replace('https://', '').replace('http://', '').rstrip('/')
        self.access_token = access_token
        self.api_version = api_version or settings.shopify_api_version
        self.base_url = f"https://{self.shop_domain}/admin/api/{self.api_version}"
        self.transport = transport
        self.sleep = sleep

    async def get_shop(self) -> Dict[str, Any]:
        """GET /shop.json"""
        response = await self._get(f"{self.base_url}/shop.json", None, "shop")
        data = self._json(response, "shop")
        shop = data.get("shop") if isinstance(data, dict) else None
        if not isinstance(shop, dict):
            raise ProviderError(FailureKind.MALFORMED_RESPONSE, "shop.json missing 'shop'", source=self.source_name)
        return shop

    async def count_orders(
        self,
        start_date: datetime,
        end_date: datetime,
        status: str = "any",
        financial_status: Optional[str] = None,
        fulfillment_status: Optional[str] = None,
    ) -> int:
        """
        Count orders created in a date range

        Args:
            start_date: Start of range
            end_date: End of range
            status: 'any', 'open', 'closed' or 'cancelled'
            financial_status: e.g. 'paid', 'pending', 'refunded' (None = no filter)
            fulfillment_status: e.g. 'shipped', 'unshipped' (None = no filter)

        Returns:
            Order count
        """
        params = {
            "status": status,
            "created_at_min": start_date.isoformat(),
            "created_at_max": end_date.isoformat(),
        }
        if financial_status is not None:
            params["financial_status"] = financial_status
        if fulfillment_status is not None:
            params["fulfillment_status"] = fulfillment_status

        response = await self._get(f"{self.base_url}/orders/count.json", params, "orders/count")
        data = self._json(response, "orders/count")
        count = data.get("count") if isinstance(data, dict) else None
        if not isinstance(count, (int, float)) or isinstance(count, bool):
            raise ProviderError(
                FailureKind.MALFORMED_RESPONSE, f"orders/count returned {count!r}", source=self.source_name
            )
        return int(count)

    async def iter_orders(
        self,
        start_date: datetime,
        end_date: datetime,
        fields: str,
        financial_status: Optional[str] = "paid",
        status: str = "any",
    ) -> AsyncIterator[List[Dict[str, Any]]]:
        """
        Yield pages of orders, following the Link header cursor

        Args:
            start_date: Start of range (created_at)
            end_date: End of range (created_at)
            fields: Comma-separated order fields to return
            financial_status: Financial status filter (None = no filter)
            status: Order status filter

        Yields:
            List of order dicts per page
        """
        url: Optional[str] = f"{self.base_url}/orders.json"
        params: Optional[Dict[str, Any]] = {
            "status": status,
            "created_at_min": start_date.isoformat(),
            "created_at_max": end_date.isoformat(),
            "limit": self.settings.shopify_page_size,
            "fields": fields,
        }
        if financial_status is not None:
            params["financial_status"] = financial_status

        pages = 0
        while url:
            response = await self._get(url, params, "orders")
            data = self._json(response, "orders")
            orders = data.get("orders") if isinstance(data, dict) else None
            if not isinstance(orders, list):
                raise ProviderError(FailureKind.MALFORMED_RESPONSE, "orders.json missing 'orders'", source=self.source_name)

            pages += 1
            yield orders

            # Get next page from Link header
            url = self._get_next_page_url(response.headers.get("Link"))
            params = None  # Params are in the URL for subsequent pages

        log.debug(f"Fetched {pages} order page(s) from {self.shop_domain}")

    async def get_products(self, product_ids: List[str]) -> List[Dict[str, Any]]:
        """
        Fetch products (with variants) for one batch of IDs

        Args:
            product_ids: At most shopify_ids_per_request numeric IDs

        Returns:
            List of product dicts with id, title, variants
        """
        if len(product_ids) > self.settings.shopify_ids_per_request:
            raise ValueError(
                f"At most {self.settings.shopify_ids_per_request} product ids per request, got {len(product_ids)}"
            )

        params = {
            "ids": ",".join(product_ids),
            "fields": "id,title,variants",
            "limit": self.settings.shopify_ids_per_request,
        }
        response = await self._get(f"{self.base_url}/products.json", params, "products")
        data = self._json(response, "products")
        products = data.get("products") if isinstance(data, dict) else None
        if not isinstance(products, list):
            raise ProviderError(FailureKind.MALFORMED_RESPONSE, "products.json missing 'products'", source=self.source_name)
        return products

    async def _get(self, url: str, params: Optional[Dict[str, Any]], context: str) -> httpx.Response:
        retry = RetryContext(
            max_attempts=self.settings.shopify_rate_limit_max_attempts,
            base_delay=self.settings.shopify_rate_limit_delay_seconds,
            is_retryable=is_rate_limited,
            sleep=self.sleep,
        )
        try:
            return await retry.execute(self._get_once, url, params, context)
        except ProviderError as e:
            if is_rate_limited(e):
                log.error(f"Shopify {context} still rate limited for {self.shop_domain}: {retry.stats.to_dict()}")
            raise

    async def _get_once(self, url: str, params: Optional[Dict[str, Any]], context: str) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                transport=self.transport,
                timeout=self.settings.shopify_request_timeout,
            ) as client:
                response = await client.get(url, params=params, headers=self._get_headers())
        except httpx.HTTPError as e:
            raise self._transport_error(e, context)

        if response.status_code == 429:
            self._handle_rate_limit(response.headers.get("Retry-After"))

        self._raise_for_status(response, context)
        return response

    def _get_headers(self) -> Dict[str, str]:
        """Get HTTP headers for Shopify API requests"""
        return {
            "X-Shopify-Access-Token": self.access_token,
            "Accept": "application/json",
        }

    def _get_next_page_url(self, link_header: Optional[str]) -> Optional[str]:
        """
        Parse next page URL from Link header

        Shopify uses cursor-based pagination with Link headers:
        <https://...page_info=abc>; rel="next", <...>; rel="previous"

        Returns:
            Next page URL or None
        """
        if not link_header:
            return None

        for link in link_header.split(","):
            parts = link.split(";")
            if len(parts) >= 2 and any('rel="next"' in p for p in parts[1:]):
                return parts[0].strip().strip("<>")

        return None
