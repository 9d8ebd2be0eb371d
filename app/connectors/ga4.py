"""
Google Analytics 4 connector
OAuth2 token grants plus the GA4 Data API report calls, per merchant.

Unlike a service-account setup, every call here runs with the merchant's own
OAuth access token, so token rotation is handled by the caller
(TokenLifecycleManager) and this class stays stateless.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlencode

import httpx
from google.analytics.data_v1beta import BetaAnalyticsDataAsyncClient
from google.analytics.data_v1beta.types import (
    BatchRunReportsRequest,
    BatchRunReportsResponse,
    DateRange,
    Dimension,
    Metric,
    OrderBy,
    RunReportRequest,
    RunReportResponse,
)
from google.api_core import exceptions as google_exceptions
from google.oauth2.credentials import Credentials

from app.config import get_settings
from app.connectors.base import BaseConnector
from app.connectors.errors import (
    FailureKind,
    ProviderError,
    RefreshRejectedError,
    kind_for_status,
)
from app.utils.logger import log

# OAuth error codes that mean the refresh token itself is no longer usable
_REVOKED_GRANT_ERRORS = {"invalid_grant", "unauthorized_client"}


@dataclass
class OAuthToken:
    """Token endpoint response"""
    access_token: str
    expires_in: Optional[int] = None
    refresh_token: Optional[str] = None


def _default_client_factory(access_token: str):
    return BetaAnalyticsDataAsyncClient(credentials=Credentials(token=access_token))


class GA4Connector(BaseConnector):
    """Connector for Google OAuth2 and the GA4 Data API"""

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        client_factory: Optional[Callable[[str], Any]] = None,
    ):
        """
        Args:
            transport: Optional httpx transport for the OAuth token endpoint (tests)
            client_factory: Builds a Data API client from an access token
        """
        super().__init__(source_name="ga4", source_type="analytics")
        self.settings = get_settings()
        self.transport = transport
        self.client_factory = client_factory or _default_client_factory

    # ── OAuth2 ───────────────────────────────────────────────

    def authorization_url(self, state: str) -> str:
        """Build the consent URL (offline access so Google issues a refresh token)"""
        params = {
            "client_id": self.settings.google_client_id,
            "redirect_uri": self.settings.google_redirect_uri,
            "response_type": "code",
            "scope": self.settings.google_scopes,
            "access_type": "offline",
            "prompt": "consent",
            "include_granted_scopes": "true",
            "state": state,
        }
        return f"{self.settings.google_auth_url}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> OAuthToken:
        """Authorization-code grant"""
        return await self._token_request({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.settings.google_redirect_uri,
        }, "authorization_code")

    async def refresh_access_token(self, refresh_token: str) -> OAuthToken:
        """
        Refresh-token grant

        Raises:
            RefreshRejectedError: Google reports the refresh token as invalid/revoked
            ProviderError: any other failure
        """
        return await self._token_request({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }, "refresh_token")

    async def _token_request(self, form: Dict[str, str], grant: str) -> OAuthToken:
        form = {
            **form,
            "client_id": self.settings.google_client_id,
            "client_secret": self.settings.google_client_secret,
        }
        context = f"token ({grant})"
        try:
            async with httpx.AsyncClient(
                transport=self.transport,
                timeout=self.settings.ga4_request_timeout,
            ) as client:
                response = await client.post(self.settings.google_token_url, data=form)
        except httpx.HTTPError as e:
            raise self._transport_error(e, context)

        if response.status_code in (400, 401):
            error_code = self._oauth_error_code(response)
            if error_code in _REVOKED_GRANT_ERRORS:
                log.error(f"Google rejected {grant} grant: {error_code}")
                raise RefreshRejectedError(f"{grant} rejected: {error_code}", source=self.source_name)

        self._raise_for_status(response, context)
        data = self._json(response, context)

        access_token = data.get("access_token") if isinstance(data, dict) else None
        if not access_token:
            raise ProviderError(FailureKind.MALFORMED_RESPONSE, f"{context} response has no access_token", source=self.source_name)

        expires_in = data.get("expires_in")
        return OAuthToken(
            access_token=access_token,
            expires_in=int(expires_in) if expires_in else None,
            refresh_token=data.get("refresh_token") or None,
        )

    def _oauth_error_code(self, response: httpx.Response) -> Optional[str]:
        try:
            data = response.json()
        except ValueError:
            return None
        return data.get("error") if isinstance(data, dict) else None

    # ── Data API ─────────────────────────────────────────────

    def build_report_request(
        self,
        property_id: str,
        start_date: datetime,
        end_date: datetime,
        metrics: List[str],
        dimensions: Optional[List[str]] = None,
        order_by_metric: Optional[str] = None,
        desc: bool = True,
        limit: Optional[int] = None,
    ) -> RunReportRequest:
        """Build a RunReportRequest for one date range"""
        request = RunReportRequest(
            property=self._property_path(property_id),
            date_ranges=[DateRange(
                start_date=self._format_date(start_date),
                end_date=self._format_date(end_date),
            )],
            metrics=[Metric(name=m) for m in metrics],
            dimensions=[Dimension(name=d) for d in dimensions or []],
        )
        if order_by_metric:
            request.order_bys = [OrderBy(
                metric=OrderBy.MetricOrderBy(metric_name=order_by_metric),
                desc=desc,
            )]
        if limit:
            request.limit = limit
        return request

    async def run_report(self, access_token: str, request: RunReportRequest) -> RunReportResponse:
        """runReport with the merchant's token"""
        client = self.client_factory(access_token)
        try:
            return await client.run_report(request=request)
        except google_exceptions.GoogleAPIError as e:
            raise self._api_error(e, "runReport")
        finally:
            await self._close(client)

    async def batch_run_reports(
        self,
        access_token: str,
        property_id: str,
        requests: List[RunReportRequest],
    ) -> BatchRunReportsResponse:
        """batchRunReports (the API accepts up to 5 reports per call)"""
        client = self.client_factory(access_token)
        batch = BatchRunReportsRequest(
            property=self._property_path(property_id),
            requests=requests,
        )
        try:
            return await client.batch_run_reports(request=batch)
        except google_exceptions.GoogleAPIError as e:
            raise self._api_error(e, "batchRunReports")
        finally:
            await self._close(client)

    def _api_error(self, error: Exception, context: str) -> ProviderError:
        if isinstance(error, (google_exceptions.DeadlineExceeded, google_exceptions.RetryError)):
            kind = FailureKind.TIMEOUT
            status = None
        else:
            status = getattr(error, "code", None)
            kind = kind_for_status(int(status)) if isinstance(status, int) else FailureKind.TRANSIENT_TRANSPORT
        log.error(f"GA4 {context} failed ({kind.value}): {error}")
        return ProviderError(kind, f"{context}: {error}", status_code=status, source=self.source_name)

    async def _close(self, client: Any) -> None:
        transport = getattr(client, "transport", None)
        close = getattr(transport, "close", None)
        if close is not None:
            await close()

    def _property_path(self, property_id: str) -> str:
        return property_id if property_id.startswith("properties/") else f"properties/{property_id}"
