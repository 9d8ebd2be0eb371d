"""
Token Lifecycle Manager

Decides whether a stored access token is still usable and refreshes it
through Google when it is not. Refreshes for one connection are serialized
by a per-connection asyncio.Lock and written with a compare-and-set on
token_version, so two concurrent requests can never both refresh and
clobber each other's refresh_token.
"""
import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Union

from app.config import get_settings
from app.connectors.errors import ProviderError, RefreshRejectedError
from app.connectors.ga4 import GA4Connector
from app.models.connections import CommerceConnection, TrafficConnection
from app.services.credential_store import CredentialStore
from app.utils.logger import log


def utcnow() -> datetime:
    """Naive UTC now, matching how expires_at is stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class FetchContext:
    """
    State scoped to one logical fetch operation.

    already_refreshed suppresses a second refresh within the same operation.
    """
    merchant_id: Optional[int] = None
    already_refreshed: bool = False


class RefreshLockRegistry:
    """One asyncio.Lock per traffic connection id."""

    def __init__(self):
        self._locks: Dict[int, asyncio.Lock] = {}

    def for_connection(self, connection_id: int) -> asyncio.Lock:
        lock = self._locks.get(connection_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[connection_id] = lock
        return lock


# Shared by every request handled in this process
refresh_locks = RefreshLockRegistry()


class TokenLifecycleManager:
    """Hands out usable access tokens for commerce and traffic connections"""

    def __init__(
        self,
        store: CredentialStore,
        oauth_client: GA4Connector,
        locks: Optional[RefreshLockRegistry] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.oauth_client = oauth_client
        self.locks = locks or RefreshLockRegistry()
        self.clock = clock
        self.leeway = timedelta(seconds=get_settings().token_expiry_leeway_seconds)

    async def get_valid_access_token(
        self,
        connection: Union[CommerceConnection, TrafficConnection],
        ctx: FetchContext,
    ) -> Optional[str]:
        """
        Return a usable access token, or None when none can be obtained.

        Shopify tokens do not expire and are returned as stored. A GA4 token
        is reused while it is non-empty and expires more than the leeway from
        now; otherwise a refresh is attempted if a refresh token exists.
        """
        if isinstance(connection, CommerceConnection):
            return self.store.read_plain(connection, "access_token")

        merchant_id = connection.merchant_id
        if connection.needs_reauth:
            log.warning(f"[Merchant:{merchant_id}] Traffic connection needs re-authorization, not refreshing")
            return None

        current = self.store.read_plain(connection, "access_token")
        if current and self._is_fresh(connection):
            log.debug(f"[Merchant:{merchant_id}] Using stored GA4 access token")
            return current

        if self.store.read_encrypted_raw(connection, "refresh_token") is None:
            log.error(f"[Merchant:{merchant_id}] GA4 token expired and no refresh token is stored")
            return None

        log.info(f"[Merchant:{merchant_id}] GA4 access token missing or expiring, refreshing")
        return await self.refresh(connection, ctx)

    async def refresh(
        self,
        connection: Union[CommerceConnection, TrafficConnection],
        ctx: FetchContext,
    ) -> Optional[str]:
        """
        Force a refresh exchange for a traffic connection.

        Returns:
            The new access token, or None when the refresh is not possible
        """
        if isinstance(connection, CommerceConnection):
            # Shopify offline tokens cannot be refreshed
            return None

        merchant_id = connection.merchant_id
        seen_version = connection.token_version

        async with self.locks.for_connection(connection.id):
            self.store.reload(connection)

            if connection.needs_reauth:
                return None

            # Another request refreshed while we waited on the lock
            if connection.token_version != seen_version and self._is_fresh(connection):
                token = self.store.read_plain(connection, "access_token")
                if token:
                    log.info(f"[Merchant:{merchant_id}] Reusing token refreshed by a concurrent request")
                    ctx.already_refreshed = True
                    return token

            refresh_token = self.store.read_plain(connection, "refresh_token")
            if not refresh_token:
                log.error(f"[Merchant:{merchant_id}] No usable refresh token stored")
                return None

            version = connection.token_version
            try:
                issued = await self.oauth_client.refresh_access_token(refresh_token)
            except RefreshRejectedError as e:
                log.error(f"[Merchant:{merchant_id}] Refresh token invalid or revoked: {e}")
                self.store.mark_needs_reauth(connection)
                return None
            except ProviderError as e:
                log.error(f"[Merchant:{merchant_id}] Token refresh failed ({e.kind.value}): {e}")
                return None

            expires_at = self.clock() + timedelta(seconds=issued.expires_in) if issued.expires_in else None
            won = self.store.store_refreshed_tokens(
                connection,
                expected_version=version,
                access_token=issued.access_token,
                expires_at=expires_at,
                refresh_token=issued.refresh_token,
            )
            ctx.already_refreshed = True

            if not won:
                # Another process wrote first; use whatever it stored
                token = self.store.read_plain(connection, "access_token")
                return token if token and self._is_fresh(connection) else None

            log.info(f"[Merchant:{merchant_id}] GA4 token refreshed (version {connection.token_version})")
            return issued.access_token

    def _is_fresh(self, connection: TrafficConnection) -> bool:
        # No expiry recorded means the provider issued a non-expiring token
        if connection.expires_at is None:
            return True
        return connection.expires_at > self.clock() + self.leeway
