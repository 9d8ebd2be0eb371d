"""
Resilient Report Fetcher

Runs one logical read against a provider with a valid token. An
authorization rejection triggers at most one forced refresh and exactly one
retry; the retry's outcome is final. No other failure is retried here.
"""
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar, Union

from app.connectors.errors import FailureKind, ProviderError
from app.models.connections import CommerceConnection, TrafficConnection
from app.services.token_manager import FetchContext, TokenLifecycleManager
from app.utils.logger import log

T = TypeVar("T")


@dataclass
class FetchRequest(Generic[T]):
    """A provider call parameterized by access token."""
    label: str
    call: Callable[[str], Awaitable[T]]


@dataclass
class FetchResult(Generic[T]):
    value: Optional[T] = None
    failure: Optional[FailureKind] = None
    error: Optional[str] = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value: T, attempts: int) -> "FetchResult[T]":
        return cls(value=value, attempts=attempts)

    @classmethod
    def failed(cls, kind: FailureKind, error: str = "", attempts: int = 0) -> "FetchResult[Any]":
        return cls(failure=kind, error=error, attempts=attempts)


class ResilientReportFetcher:
    """Applies the retry-at-most-once-on-auth-failure policy"""

    def __init__(self, tokens: TokenLifecycleManager):
        self.tokens = tokens

    async def execute(
        self,
        connection: Union[CommerceConnection, TrafficConnection],
        request: FetchRequest[T],
        ctx: Optional[FetchContext] = None,
    ) -> FetchResult[T]:
        """
        Execute a provider call.

        Args:
            connection: Commerce or traffic connection to authenticate with
            request: The call to make, given an access token
            ctx: Operation-scoped state (a fresh one is created per call if omitted)

        Returns:
            FetchResult with either a value or a failure kind
        """
        ctx = ctx or FetchContext(merchant_id=connection.merchant_id)
        prefix = f"[Merchant:{connection.merchant_id}] {request.label}"

        token = await self.tokens.get_valid_access_token(connection, ctx)
        if not token:
            log.error(f"{prefix}: no valid access token")
            return FetchResult.failed(FailureKind.NO_CREDENTIAL, "no valid access token")

        try:
            log.info(f"{prefix}: attempt 1")
            return FetchResult.success(await request.call(token), attempts=1)
        except ProviderError as e:
            if not e.is_auth_rejected:
                log.error(f"{prefix}: failed ({e.kind.value}), not retrying")
                return FetchResult.failed(e.kind, str(e), attempts=1)
            if ctx.already_refreshed:
                log.error(f"{prefix}: rejected with a token refreshed in this operation")
                return FetchResult.failed(FailureKind.AUTH_EXHAUSTED, str(e), attempts=1)

        log.warning(f"{prefix}: 401 on attempt 1, forcing token refresh")
        new_token = await self.tokens.refresh(connection, ctx)
        if not new_token:
            log.error(f"{prefix}: 401 and token refresh failed")
            return FetchResult.failed(FailureKind.AUTH_REJECTED, "refresh unavailable", attempts=1)

        try:
            log.info(f"{prefix}: attempt 2 (post-refresh)")
            return FetchResult.success(await request.call(new_token), attempts=2)
        except ProviderError as e:
            kind = FailureKind.AUTH_EXHAUSTED if e.is_auth_rejected else e.kind
            log.error(f"{prefix}: attempt 2 failed ({kind.value})")
            return FetchResult.failed(kind, str(e), attempts=2)
