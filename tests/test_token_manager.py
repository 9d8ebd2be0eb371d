"""
Token Lifecycle Manager: when a stored GA4 token is reused, when it is
refreshed, and what happens when Google refuses the refresh.
"""
import asyncio
from datetime import datetime, timedelta

from app.connectors.errors import FailureKind, ProviderError, RefreshRejectedError
from app.connectors.ga4 import OAuthToken
from app.services.credential_store import CredentialStore
from app.services.token_manager import FetchContext, RefreshLockRegistry, TokenLifecycleManager

NOW = datetime(2025, 4, 20, 12, 0, 0)


def _run(coro):
    """Run an async coroutine in a sync test."""
    return asyncio.run(coro)


class FakeOAuth:
    """Stands in for GA4Connector's refresh grant."""

    def __init__(self, result=None, error=None, delay=0.0):
        self.result = result or OAuthToken(access_token="access-refreshed", expires_in=3600)
        self.error = error
        self.delay = delay
        self.calls = []

    async def refresh_access_token(self, refresh_token):
        self.calls.append(refresh_token)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.result


def _manager(db, oauth, locks=None):
    return TokenLifecycleManager(CredentialStore(db), oauth, locks=locks, clock=lambda: NOW)


def _traffic(db, merchant, expires_at, refresh_token="refresh-1"):
    return CredentialStore(db).upsert_traffic(
        merchant.id, access_token="access-stored", expires_at=expires_at, refresh_token=refresh_token
    )


class TestReuse:

    def test_fresh_token_returned_without_network(self, db, merchant):
        conn = _traffic(db, merchant, NOW + timedelta(minutes=10))
        oauth = FakeOAuth()

        token = _run(_manager(db, oauth).get_valid_access_token(conn, FetchContext()))

        assert token == "access-stored"
        assert oauth.calls == []

    def test_null_expiry_is_non_expiring(self, db, merchant):
        conn = _traffic(db, merchant, None)
        oauth = FakeOAuth()

        assert _run(_manager(db, oauth).get_valid_access_token(conn, FetchContext())) == "access-stored"
        assert oauth.calls == []

    def test_commerce_token_returned_as_stored(self, db, merchant):
        conn = CredentialStore(db).upsert_commerce(merchant.id, "demo.myshopify.com", "shpat_abc")
        manager = _manager(db, FakeOAuth())

        assert _run(manager.get_valid_access_token(conn, FetchContext())) == "shpat_abc"
        assert _run(manager.refresh(conn, FetchContext())) is None


class TestRefresh:

    def test_token_inside_leeway_is_refreshed(self, db, merchant):
        conn = _traffic(db, merchant, NOW + timedelta(seconds=30))
        oauth = FakeOAuth()
        ctx = FetchContext()

        token = _run(_manager(db, oauth).get_valid_access_token(conn, ctx))

        assert token == "access-refreshed"
        assert oauth.calls == ["refresh-1"]
        assert ctx.already_refreshed
        assert conn.expires_at == NOW + timedelta(seconds=3600)
        store = CredentialStore(db)
        assert store.read_plain(conn, "access_token") == "access-refreshed"
        # Google sent no new refresh token: the old one is kept
        assert store.read_plain(conn, "refresh_token") == "refresh-1"

    def test_new_refresh_token_replaces_old(self, db, merchant):
        conn = _traffic(db, merchant, NOW - timedelta(minutes=5))
        oauth = FakeOAuth(OAuthToken(access_token="a2", expires_in=None, refresh_token="refresh-2"))

        assert _run(_manager(db, oauth).get_valid_access_token(conn, FetchContext())) == "a2"
        assert conn.expires_at is None
        assert CredentialStore(db).read_plain(conn, "refresh_token") == "refresh-2"

    def test_stale_without_refresh_token_gives_up(self, db, merchant):
        conn = _traffic(db, merchant, NOW - timedelta(minutes=5), refresh_token=None)
        oauth = FakeOAuth()

        assert _run(_manager(db, oauth).get_valid_access_token(conn, FetchContext())) is None
        assert oauth.calls == []

    def test_transient_refresh_failure_returns_none(self, db, merchant):
        conn = _traffic(db, merchant, NOW - timedelta(minutes=5))
        oauth = FakeOAuth(error=ProviderError(FailureKind.TRANSIENT_TRANSPORT, "503"))

        assert _run(_manager(db, oauth).get_valid_access_token(conn, FetchContext())) is None
        assert conn.needs_reauth is False
        assert CredentialStore(db).read_plain(conn, "access_token") == "access-stored"


class TestRevokedRefreshToken:

    def test_rejection_marks_connection_and_stops_retrying(self, db, merchant):
        conn = _traffic(db, merchant, NOW - timedelta(minutes=5))
        oauth = FakeOAuth(error=RefreshRejectedError("invalid_grant"))
        manager = _manager(db, oauth)

        assert _run(manager.get_valid_access_token(conn, FetchContext())) is None
        assert conn.needs_reauth is True
        assert len(oauth.calls) == 1

        # Later requests do not call Google again
        assert _run(manager.get_valid_access_token(conn, FetchContext())) is None
        assert _run(manager.refresh(conn, FetchContext())) is None
        assert len(oauth.calls) == 1

    def test_reauthorization_restores_refresh(self, db, merchant):
        conn = _traffic(db, merchant, NOW - timedelta(minutes=5))
        _run(_manager(db, FakeOAuth(error=RefreshRejectedError("invalid_grant"))).get_valid_access_token(conn, FetchContext()))

        conn = _traffic(db, merchant, NOW - timedelta(minutes=5), refresh_token="refresh-new")
        oauth = FakeOAuth()
        assert _run(_manager(db, oauth).get_valid_access_token(conn, FetchContext())) == "access-refreshed"
        assert oauth.calls == ["refresh-new"]


def test_concurrent_requests_refresh_once(db, merchant):
    conn = _traffic(db, merchant, NOW - timedelta(minutes=5))
    oauth = FakeOAuth(
        OAuthToken(access_token="access-refreshed", expires_in=3600, refresh_token="refresh-2"),
        delay=0.01,
    )
    manager = _manager(db, oauth, locks=RefreshLockRegistry())

    async def both():
        return await asyncio.gather(
            manager.get_valid_access_token(conn, FetchContext()),
            manager.get_valid_access_token(conn, FetchContext()),
        )

    tokens = _run(both())

    assert tokens == ["access-refreshed", "access-refreshed"]
    assert oauth.calls == ["refresh-1"]
    assert CredentialStore(db).read_plain(conn, "refresh_token") == "refresh-2"
