"""Merchant authentication: password hashing, API sessions, merchant accounts"""
import logging
import secrets
from datetime import datetime, timedelta

from passlib.context import CryptContext
from sqlalchemy.orm import Session

from app.config import get_settings
from app.models.merchant import Merchant, MerchantSession

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(plain: str) -> str:
    return pwd_context.hash(plain)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def create_merchant(db: Session, email: str, password: str, name: str | None = None) -> Merchant:
    """Create a new merchant account."""
    email = email.lower().strip()
    if db.query(Merchant).filter(Merchant.email == email).first():
        raise ValueError(f"A merchant with email {email} already exists")

    merchant = Merchant(email=email, password_hash=hash_password(password), name=name)
    db.add(merchant)
    db.commit()
    db.refresh(merchant)
    logger.info(f"Created merchant {merchant.id} ({email})")
    return merchant


def create_session(db: Session, merchant_id: int) -> str:
    """Create a new session token for the merchant."""
    settings = get_settings()
    token = secrets.token_hex(32)
    session = MerchantSession(
        merchant_id=merchant_id,
        token=token,
        expires_at=datetime.utcnow() + timedelta(hours=settings.session_duration_hours),
    )
    db.add(session)
    db.commit()
    return token


def validate_session(db: Session, token: str) -> Merchant | None:
    """Return the merchant for a valid, non-expired session token."""
    session = (
        db.query(MerchantSession)
        .filter(MerchantSession.token == token, MerchantSession.expires_at > datetime.utcnow())
        .first()
    )
    if not session:
        return None
    return db.query(Merchant).filter(Merchant.id == session.merchant_id, Merchant.is_active == True).first()


def delete_session(db: Session, token: str) -> None:
    """Remove a session (logout)."""
    db.query(MerchantSession).filter(MerchantSession.token == token).delete()
    db.commit()


def cleanup_expired(db: Session) -> int:
    """Delete expired sessions. Returns count removed."""
    count = db.query(MerchantSession).filter(MerchantSession.expires_at <= datetime.utcnow()).delete()
    db.commit()
    return count
