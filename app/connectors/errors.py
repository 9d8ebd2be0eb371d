"""
Provider failure taxonomy shared by connectors, the report fetcher and adapters.
"""
from enum import Enum
from typing import Optional


class FailureKind(str, Enum):
    NO_CREDENTIAL = "no_credential"
    AUTH_REJECTED = "auth_rejected"  # 401 before the single retry
    AUTH_EXHAUSTED = "auth_exhausted"  # still 401 after the retry
    RATE_LIMITED = "rate_limited"
    TRANSIENT_TRANSPORT = "transient_transport"
    MALFORMED_RESPONSE = "malformed_response"
    PRECONDITION_UNMET = "precondition_unmet"
    TIMEOUT = "timeout"
    INTERNAL_FAILURE = "internal_failure"


class ProviderError(Exception):
    """Raised by connectors when a provider call does not succeed."""

    def __init__(
        self,
        kind: FailureKind,
        message: str = "",
        status_code: Optional[int] = None,
        source: str = "",
    ):
        super().__init__(message or kind.value)
        self.kind = kind
        self.status_code = status_code
        self.source = source

    @property
    def is_auth_rejected(self) -> bool:
        return self.kind == FailureKind.AUTH_REJECTED

    def __repr__(self) -> str:
        return f"ProviderError({self.source}:{self.kind.value}, status={self.status_code})"


class RefreshRejectedError(ProviderError):
    """The provider reports the refresh credential as invalid or revoked."""

    def __init__(self, message: str = "", source: str = ""):
        super().__init__(FailureKind.AUTH_EXHAUSTED, message, status_code=400, source=source)


def kind_for_status(status_code: int) -> FailureKind:
    """Map an HTTP status from a provider to a failure kind."""
    if status_code == 401:
        return FailureKind.AUTH_REJECTED
    if status_code == 429:
        return FailureKind.RATE_LIMITED
    if status_code in (408, 500, 502, 503, 504):
        return FailureKind.TRANSIENT_TRANSPORT
    return FailureKind.MALFORMED_RESPONSE


def is_rate_limited(error: Exception) -> bool:
    return isinstance(error, ProviderError) and error.kind == FailureKind.RATE_LIMITED
