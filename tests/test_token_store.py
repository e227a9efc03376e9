from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import anyio
import httpx
import pytest

import connectors.dropbox.auth as dropbox_auth
from config.settings import settings
from connectors.base import IntegrationCredential
from connectors.catalog import Provider
from connectors.token_store import TokenStore
from infra.db.stores import CredentialStore

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


class RecordingWriter:
    def __init__(self) -> None:
        self.updates: list[dict] = []
        self.thread: int | None = None

    def update_tokens(self, credential_id, *, access_token, token_expires_at, refresh_token=None):
        self.thread = threading.get_ident()
        self.updates.append(
            {
                "id": credential_id,
                "access_token": access_token,
                "token_expires_at": token_expires_at,
                "refresh_token": refresh_token,
            }
        )


class FakeConnector:
    def __init__(self, result=None, error: Exception | None = None) -> None:
        self.calls = 0
        self.result = result
        self.error = error

    async def refresh_tokens_async(self, *, client_id, client_secret, refresh_token):
        self.calls += 1
        assert (client_id, client_secret) == ("cid", "csecret")
        if self.error:
            raise self.error
        return self.result


@pytest.fixture(autouse=True)
def dropbox_client(monkeypatch):
    monkeypatch.setattr(settings, "DROPBOX_CLIENT_ID", "cid")
    monkeypatch.setattr(settings, "DROPBOX_CLIENT_SECRET", "csecret")


def _credential(expires_at, refresh_token: str | None = "old_refresh") -> IntegrationCredential:
    return IntegrationCredential(
        id="int_1",
        organization_id="org_1",
        provider=Provider.DROPBOX,
        status="CONNECTED",
        access_token="stored",
        refresh_token=refresh_token,
        token_expires_at=expires_at,
    )


def _store(connector: FakeConnector, writer=None) -> TokenStore:
    return TokenStore(writer or RecordingWriter(), clock=lambda: NOW, connector_factory=lambda p: connector)


def test_fresh_token_is_returned_without_network():
    connector = FakeConnector()
    token = anyio.run(_store(connector).get_valid_access_token, _credential(NOW + timedelta(minutes=6)))
    assert token == "stored"
    assert connector.calls == 0


def test_token_without_expiry_is_used_as_is():
    connector = FakeConnector()
    assert anyio.run(_store(connector).get_valid_access_token, _credential(None)) == "stored"
    assert connector.calls == 0


def test_token_inside_margin_is_refreshed_once():
    connector = FakeConnector(result={"access_token": "new", "refresh_token": None, "expires_in": 3600})
    writer = RecordingWriter()
    token = anyio.run(_store(connector, writer).get_valid_access_token, _credential(NOW + timedelta(minutes=4)))
    assert token == "new"
    assert connector.calls == 1
    assert writer.updates == [
        {"id": "int_1", "access_token": "new", "token_expires_at": NOW + timedelta(seconds=3600), "refresh_token": None}
    ]


def test_refresh_failure_returns_none():
    request = httpx.Request("POST", dropbox_auth.TOKEN_URL)
    error = httpx.HTTPStatusError("bad", request=request, response=httpx.Response(400, request=request))
    connector = FakeConnector(error=error)
    writer = RecordingWriter()
    token = anyio.run(_store(connector, writer).get_valid_access_token, _credential(NOW - timedelta(minutes=1)))
    assert token is None
    assert connector.calls == 1
    assert writer.updates == []


def test_transport_error_returns_none():
    connector = FakeConnector(error=httpx.ConnectTimeout("timed out"))
    assert anyio.run(_store(connector).get_valid_access_token, _credential(NOW - timedelta(minutes=1))) is None


def test_expired_without_refresh_token_returns_stored():
    connector = FakeConnector()
    token = anyio.run(
        _store(connector).get_valid_access_token, _credential(NOW - timedelta(minutes=1), refresh_token=None)
    )
    assert token == "stored"
    assert connector.calls == 0


def test_missing_expires_in_clears_expiry():
    connector = FakeConnector(result={"access_token": "new"})
    writer = RecordingWriter()
    anyio.run(_store(connector, writer).get_valid_access_token, _credential(NOW - timedelta(minutes=1)))
    assert writer.updates[0]["token_expires_at"] is None


@pytest.mark.parametrize("expires_in", ["soon", {"seconds": 60}, "12.5"])
def test_malformed_expires_in_returns_none(expires_in):
    connector = FakeConnector(result={"access_token": "new", "expires_in": expires_in})
    writer = RecordingWriter()
    token = anyio.run(_store(connector, writer).get_valid_access_token, _credential(NOW - timedelta(minutes=1)))
    assert token is None
    assert writer.updates == []


def test_numeric_string_expires_in_is_accepted():
    connector = FakeConnector(result={"access_token": "new", "expires_in": "3600"})
    writer = RecordingWriter()
    anyio.run(_store(connector, writer).get_valid_access_token, _credential(NOW - timedelta(minutes=1)))
    assert writer.updates[0]["token_expires_at"] == NOW + timedelta(seconds=3600)


def test_refreshed_token_is_persisted_off_the_event_loop():
    connector = FakeConnector(result={"access_token": "new", "expires_in": 3600})
    writer = RecordingWriter()

    async def refresh() -> int:
        await _store(connector, writer).get_valid_access_token(_credential(NOW - timedelta(minutes=1)))
        return threading.get_ident()

    loop_thread = anyio.run(refresh)
    assert writer.thread is not None
    assert writer.thread != loop_thread


def test_unconfigured_client_returns_none(monkeypatch):
    monkeypatch.setattr(settings, "DROPBOX_CLIENT_SECRET", None)
    connector = FakeConnector()
    assert anyio.run(_store(connector).get_valid_access_token, _credential(NOW - timedelta(minutes=1))) is None
    assert connector.calls == 0


def test_refresh_persists_through_dropbox_endpoint(db, connect, integration_row, mock_http):
    """Expired credential, real Dropbox refresh request, row updated in place."""
    integration_id = connect(Provider.DROPBOX, access_token="old", expires_at=NOW - timedelta(minutes=1))

    def handler(request: httpx.Request) -> httpx.Response:
        assert str(request.url) == dropbox_auth.TOKEN_URL
        body = dict(httpx.QueryParams(request.content.decode()))
        assert body["grant_type"] == "refresh_token"
        assert body["refresh_token"] == "refresh"
        return httpx.Response(200, json={"access_token": "new", "expires_in": 3600, "token_type": "bearer"})

    seen = mock_http(handler, dropbox_auth)
    credentials = CredentialStore(db)
    store = TokenStore(credentials, clock=lambda: NOW)
    token = anyio.run(store.get_valid_access_token, credentials.get("org_1", Provider.DROPBOX))

    assert token == "new"
    assert len(seen) == 1
    row = integration_row(integration_id)
    assert row.access_token == "new"
    assert row.refresh_token == "refresh"
    assert row.token_expires_at.replace(tzinfo=timezone.utc) == NOW + timedelta(seconds=3600)
