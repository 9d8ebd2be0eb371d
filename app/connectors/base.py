"""
Base Connector Class

All provider connectors inherit from this base class.
Provides common functionality for HTTP error classification and date handling.
"""
from datetime import date, datetime
from typing import Any, Optional, Union

import httpx

from app.connectors.errors import FailureKind, ProviderError, kind_for_status
from app.utils.logger import log


class BaseConnector:
    """
    Base class for all provider connectors

    Implements common patterns:
    - Mapping HTTP/transport failures onto FailureKind
    - Rate limit logging
    - Date normalization
    """

    def __init__(self, source_name: str, source_type: str):
        """
        Initialize connector

        Args:
            source_name: Name of provider (e.g., 'shopify', 'ga4')
            source_type: Type of provider (e.g., 'ecommerce', 'analytics')
        """
        self.source_name = source_name
        self.source_type = source_type

    def _raise_for_status(self, response: httpx.Response, context: str) -> None:
        """Raise ProviderError for any non-2xx response."""
        if response.is_success:
            return

        kind = kind_for_status(response.status_code)
        log.error(
            f"{self.source_name} {context} failed: {response.status_code} - {response.text[:300]}"
        )
        raise ProviderError(
            kind,
            f"{context} returned HTTP {response.status_code}",
            status_code=response.status_code,
            source=self.source_name,
        )

    def _transport_error(self, error: Exception, context: str) -> ProviderError:
        """Translate an httpx exception into a ProviderError."""
        if isinstance(error, httpx.TimeoutException):
            kind = FailureKind.TIMEOUT
        else:
            kind = FailureKind.TRANSIENT_TRANSPORT
        log.error(f"{self.source_name} {context} transport error: {type(error).__name__}: {error}")
        return ProviderError(kind, f"{context}: {error}", source=self.source_name)

    def _json(self, response: httpx.Response, context: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(
                FailureKind.MALFORMED_RESPONSE,
                f"{context} returned invalid JSON: {e}",
                status_code=response.status_code,
                source=self.source_name,
            )

    def _handle_rate_limit(self, retry_after: Optional[str]):
        """
        Log a rate limit response

        Args:
            retry_after: Retry-After header value, if the provider sent one
        """
        log.warning(f"{self.source_name} rate limited (Retry-After: {retry_after or 'n/a'})")

    def _format_date(self, value: Union[date, datetime]) -> str:
        """Format a date for provider query strings (YYYY-MM-DD)"""
        return value.strftime("%Y-%m-%d")
