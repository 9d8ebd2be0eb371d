"""
Credential Store

Reads and writes merchant provider connections. Secrets are encrypted with
Fernet before they touch the database. Callers choose explicitly between
read_plain() (decrypted secret) and read_encrypted_raw() (ciphertext bytes).
"""
import logging
from datetime import datetime
from typing import Optional, Union

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.models.connections import CommerceConnection, TrafficConnection
from app.utils.crypto import InvalidToken, TokenCipher

logger = logging.getLogger(__name__)

Connection = Union[CommerceConnection, TrafficConnection]

SECRET_FIELDS = ("access_token", "refresh_token")


class CredentialStore:
    """Per-request access to connection records, bound to one DB session."""

    def __init__(self, db: Session, cipher: Optional[TokenCipher] = None):
        self.db = db
        self.cipher = cipher or TokenCipher()

    # ── Lookups ──────────────────────────────────────────────

    def get_commerce(self, merchant_id: int) -> Optional[CommerceConnection]:
        return self.db.query(CommerceConnection).filter(
            CommerceConnection.merchant_id == merchant_id
        ).first()

    def get_traffic(self, merchant_id: int) -> Optional[TrafficConnection]:
        return self.db.query(TrafficConnection).filter(
            TrafficConnection.merchant_id == merchant_id
        ).first()

    def reload(self, connection: Connection) -> Connection:
        """Re-read a connection so concurrent token writes become visible."""
        self.db.refresh(connection)
        return connection

    # ── Secret access ────────────────────────────────────────

    def read_encrypted_raw(self, connection: Connection, field: str) -> Optional[bytes]:
        """Return the stored ciphertext for a secret field, without decrypting."""
        if field not in SECRET_FIELDS:
            raise ValueError(f"Unknown secret field: {field}")
        return getattr(connection, f"{field}_enc", None)

    def read_plain(self, connection: Connection, field: str) -> Optional[str]:
        """
        Return the decrypted secret for a field.

        A value that cannot be decrypted (rotated key, corrupt row) is
        treated as absent.
        """
        raw = self.read_encrypted_raw(connection, field)
        if raw is None:
            return None
        try:
            return self.cipher.decrypt(raw)
        except InvalidToken:
            logger.error(
                f"[Merchant:{connection.merchant_id}] Could not decrypt {field} "
                f"on {type(connection).__name__} {connection.id}"
            )
            return None

    # ── Writes ───────────────────────────────────────────────

    def upsert_commerce(self, merchant_id: int, shop_domain: str, access_token: str) -> CommerceConnection:
        connection = self.get_commerce(merchant_id)
        if connection is None:
            connection = CommerceConnection(merchant_id=merchant_id)
            self.db.add(connection)

        connection.shop_domain = shop_domain
        connection.access_token_enc = self.cipher.encrypt(access_token)
        self.db.commit()
        self.db.refresh(connection)
        logger.info(f"[Merchant:{merchant_id}] Commerce connection saved for {shop_domain}")
        return connection

    def upsert_traffic(
        self,
        merchant_id: int,
        access_token: str,
        expires_at: Optional[datetime],
        refresh_token: Optional[str] = None,
    ) -> TrafficConnection:
        """
        Store tokens from a completed authorization.

        A missing refresh_token keeps the one already stored. A new
        authorization always clears needs_reauth.
        """
        connection = self.get_traffic(merchant_id)
        if connection is None:
            connection = TrafficConnection(merchant_id=merchant_id, token_version=0)
            self.db.add(connection)

        connection.access_token_enc = self.cipher.encrypt(access_token)
        connection.expires_at = expires_at
        if refresh_token:
            connection.refresh_token_enc = self.cipher.encrypt(refresh_token)
        connection.needs_reauth = False
        connection.token_version = (connection.token_version or 0) + 1
        self.db.commit()
        self.db.refresh(connection)

        if connection.refresh_token_enc is None:
            logger.warning(f"[Merchant:{merchant_id}] Traffic connection has no refresh token")
        logger.info(f"[Merchant:{merchant_id}] Traffic connection saved (id={connection.id})")
        return connection

    def set_property_id(self, merchant_id: int, property_id: str) -> Optional[TrafficConnection]:
        """Attach a GA4 property to an existing traffic connection. None if not connected."""
        connection = self.get_traffic(merchant_id)
        if connection is None:
            return None
        connection.property_id = property_id
        self.db.commit()
        self.db.refresh(connection)
        logger.info(f"[Merchant:{merchant_id}] GA4 property set to {property_id}")
        return connection

    def store_refreshed_tokens(
        self,
        connection: TrafficConnection,
        expected_version: int,
        access_token: str,
        expires_at: Optional[datetime],
        refresh_token: Optional[str] = None,
    ) -> bool:
        """
        Compare-and-set the token fields of a traffic connection.

        The write only applies if token_version still equals expected_version.
        refresh_token is written only when the provider returned a new one.

        Returns:
            True if this call won the write
        """
        values = {
            "access_token_enc": self.cipher.encrypt(access_token),
            "expires_at": expires_at,
            "token_version": expected_version + 1,
        }
        if refresh_token:
            values["refresh_token_enc"] = self.cipher.encrypt(refresh_token)

        result = self.db.execute(
            update(TrafficConnection)
            .where(
                TrafficConnection.id == connection.id,
                TrafficConnection.token_version == expected_version,
            )
            .values(**values)
        )
        self.db.commit()
        self.db.refresh(connection)

        if result.rowcount != 1:
            logger.warning(
                f"[Merchant:{connection.merchant_id}] Token write lost a race "
                f"(expected version {expected_version}, now {connection.token_version})"
            )
            return False
        return True

    def mark_needs_reauth(self, connection: TrafficConnection) -> None:
        connection.needs_reauth = True
        self.db.commit()
        logger.warning(f"[Merchant:{connection.merchant_id}] Traffic connection marked as needing re-authorization")
