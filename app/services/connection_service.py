"""
Connection Service

Links a merchant to Shopify (admin API token) and Google Analytics (OAuth
authorization-code flow plus the GA4 property to report on). Any saved
connection change drops the merchant's cached dashboards and insights.
"""
import secrets
from datetime import timedelta
from typing import Optional

from app.config import get_settings
from app.connectors.ga4 import GA4Connector
from app.models.connections import CommerceConnection, TrafficConnection
from app.services.credential_store import CredentialStore
from app.services.token_manager import utcnow
from app.utils.cache import CacheAside, cache_aside
from app.utils.crypto import InvalidToken, TokenCipher
from app.utils.logger import log


class OAuthStateError(ValueError):
    """The OAuth state is missing, tampered with, expired or for another merchant."""


class ConnectionService:
    def __init__(
        self,
        store: CredentialStore,
        ga4: Optional[GA4Connector] = None,
        cache: Optional[CacheAside] = None,
        cipher: Optional[TokenCipher] = None,
    ):
        self.store = store
        self.ga4 = ga4 or GA4Connector()
        self.cache = cache or cache_aside
        self.cipher = cipher or store.cipher
        self.settings = get_settings()

    def save_shopify_token(self, merchant_id: int, shop_domain: str, access_token: str) -> CommerceConnection:
        connection = self.store.upsert_commerce(merchant_id, shop_domain.strip().lower(), access_token)
        self._invalidate(merchant_id)
        return connection

    # ── Google OAuth ─────────────────────────────────────────

    def google_authorization_url(self, merchant_id: int) -> str:
        """Consent URL whose state is bound to this merchant"""
        state = self.cipher.encrypt(f"{merchant_id}:{secrets.token_urlsafe(16)}").decode()
        log.info(f"[Merchant:{merchant_id}] Google authorization URL issued")
        return self.ga4.authorization_url(state)

    def verify_state(self, merchant_id: int, state: str) -> None:
        """
        Raises:
            OAuthStateError: state not issued to this merchant within oauth_state_ttl_seconds
        """
        if not state:
            raise OAuthStateError("Missing OAuth state")
        try:
            payload = self.cipher.decrypt(state, ttl=self.settings.oauth_state_ttl_seconds)
        except InvalidToken:
            raise OAuthStateError("Invalid or expired OAuth state")

        owner, _, _ = payload.partition(":")
        if owner != str(merchant_id):
            log.warning(f"[Merchant:{merchant_id}] OAuth state belongs to another merchant")
            raise OAuthStateError("OAuth state does not match this merchant")

    async def handle_google_callback(self, merchant_id: int, code: str, state: str) -> TrafficConnection:
        """
        Exchange an authorization code and store the resulting tokens.

        Raises:
            OAuthStateError: state check failed (nothing is exchanged)
            ProviderError: Google refused the code or could not be reached
        """
        self.verify_state(merchant_id, state)

        log.info(f"[Merchant:{merchant_id}] Exchanging Google authorization code")
        issued = await self.ga4.exchange_code(code)
        expires_at = utcnow() + timedelta(seconds=issued.expires_in) if issued.expires_in else None

        connection = self.store.upsert_traffic(
            merchant_id,
            access_token=issued.access_token,
            expires_at=expires_at,
            refresh_token=issued.refresh_token,
        )
        self._invalidate(merchant_id)
        return connection

    def save_property_id(self, merchant_id: int, property_id: str) -> Optional[TrafficConnection]:
        """None when the merchant has not connected Google yet"""
        connection = self.store.set_property_id(merchant_id, property_id)
        if connection is None:
            log.warning(f"[Merchant:{merchant_id}] GA4 property save attempted without a Google connection")
            return None
        self._invalidate(merchant_id)
        return connection

    def _invalidate(self, merchant_id: int) -> None:
        removed = self.cache.invalidate_merchant(merchant_id)
        if removed:
            log.info(f"[Merchant:{merchant_id}] Dropped {removed} cached results after connection change")
