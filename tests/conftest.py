"""
Test configuration.

Settings are read once at import time, so the environment is prepared here
before anything under app/ is imported: a throwaway SQLite file, a fresh
Fernet key and console-only logging.
"""
import os
import tempfile

from cryptography.fernet import Fernet

_TMP_DIR = tempfile.mkdtemp(prefix="storefront-insights-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["ENCRYPTION_KEY"] = Fernet.generate_key().decode()
os.environ["LOG_TO_FILE"] = "false"
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["GOOGLE_CLIENT_ID"] = "test-client-id"
os.environ["GOOGLE_CLIENT_SECRET"] = "test-client-secret"
os.environ["GOOGLE_REDIRECT_URI"] = "http://localhost:3000/connect/google/callback"
os.environ["TIMEZONE"] = "UTC"

import pytest

from app.models.base import Base, SessionLocal, engine, init_db
from app.services import auth_service
from app.utils.cache import cache_aside

init_db()


@pytest.fixture
def db():
    """DB session; every table is emptied after the test."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        with engine.begin() as conn:
            for table in reversed(Base.metadata.sorted_tables):
                conn.execute(table.delete())
        cache_aside.clear()


@pytest.fixture
def merchant(db):
    return auth_service.create_merchant(db, "owner@example-store.com", "s3cret-pass", "Example Store")
