"""Merchant accounts and session tokens."""
from datetime import datetime, timedelta

import pytest

from app.models.merchant import MerchantSession
from app.services import auth_service


def test_password_is_hashed(merchant):
    assert merchant.password_hash != "s3cret-pass"
    assert auth_service.verify_password("s3cret-pass", merchant.password_hash)
    assert not auth_service.verify_password("wrong", merchant.password_hash)


def test_duplicate_email_rejected(db, merchant):
    with pytest.raises(ValueError):
        auth_service.create_merchant(db, "Owner@Example-Store.com ", "another")


def test_session_lifecycle(db, merchant):
    token = auth_service.create_session(db, merchant.id)
    assert auth_service.validate_session(db, token).id == merchant.id

    auth_service.delete_session(db, token)
    assert auth_service.validate_session(db, token) is None


def test_inactive_merchant_session_rejected(db, merchant):
    token = auth_service.create_session(db, merchant.id)
    merchant.is_active = False
    db.commit()
    assert auth_service.validate_session(db, token) is None


def test_expired_sessions_cleaned_up(db, merchant):
    live = auth_service.create_session(db, merchant.id)
    expired = auth_service.create_session(db, merchant.id)
    db.query(MerchantSession).filter(MerchantSession.token == expired).update(
        {"expires_at": datetime.utcnow() - timedelta(minutes=1)}
    )
    db.commit()

    assert auth_service.validate_session(db, expired) is None
    assert auth_service.cleanup_expired(db) == 1
    assert auth_service.validate_session(db, live).id == merchant.id
