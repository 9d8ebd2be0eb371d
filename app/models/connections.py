"""
Provider connection records

Secrets are stored as Fernet ciphertext. Nothing on these models decrypts
implicitly: read secrets through CredentialStore.read_plain() or
CredentialStore.read_encrypted_raw().
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, LargeBinary
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.models.base import Base


class CommerceConnection(Base):
    """
    Shopify store credential

    Created on the first successful token exchange, updated when the token is
    reissued, never deleted automatically.
    """
    __tablename__ = "commerce_connections"

    id = Column(Integer, primary_key=True, index=True)
    merchant_id = Column(
        Integer, ForeignKey("merchants.id", ondelete="CASCADE"),
        unique=True, index=True, nullable=False
    )
    shop_domain = Column(String, unique=True, nullable=False)  # your-store.myshopify.com
    access_token_enc = Column(LargeBinary, nullable=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    merchant = relationship("Merchant", back_populates="commerce_connection")


class TrafficConnection(Base):
    """
    Google Analytics 4 OAuth credential

    access_token/expires_at rotate on every refresh. refresh_token only changes
    when Google returns a new one; an existing value is never overwritten with
    an absent one.
    """
    __tablename__ = "traffic_connections"

    id = Column(Integer, primary_key=True, index=True)
    merchant_id = Column(
        Integer, ForeignKey("merchants.id", ondelete="CASCADE"),
        unique=True, index=True, nullable=False
    )
    property_id = Column(String, nullable=True)  # properties/123456789, set after OAuth

    access_token_enc = Column(LargeBinary, nullable=True)
    refresh_token_enc = Column(LargeBinary, nullable=True)
    expires_at = Column(DateTime, nullable=True)  # naive UTC; None = non-expiring

    # Set when Google rejects the refresh token; cleared by a new authorization
    needs_reauth = Column(Boolean, default=False, nullable=False)
    # Bumped on every token write, used for compare-and-set updates
    token_version = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    merchant = relationship("Merchant", back_populates="traffic_connection")

    @property
    def property_configured(self) -> bool:
        return bool(self.property_id)
