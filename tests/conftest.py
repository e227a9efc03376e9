from __future__ import annotations

from datetime import datetime, timedelta

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from connectors.catalog import Provider
from infra.db import models
from infra.db.engine import init_db_schema
from infra.db.stores import CredentialStore


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, expire_on_commit=False)()
    yield session
    session.close()


@pytest.fixture
def mock_http(monkeypatch):
    """Route ``build_client()`` in the given modules through an ``httpx.MockTransport``.

    Returns the list of requests seen, so tests can assert on what was sent.
    """
    seen: list[httpx.Request] = []

    def install(handler, *modules):
        def recording(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return handler(request)

        for module in modules:
            monkeypatch.setattr(module, "build_client", lambda: httpx.AsyncClient(transport=httpx.MockTransport(recording)))
        return seen

    return install


@pytest.fixture
def connect(db):
    """Insert a CONNECTED integration row and return its id."""

    def _connect(
        provider: Provider = Provider.DROPBOX,
        *,
        organization_id: str = "org_1",
        access_token: str = "tok",
        refresh_token: str | None = "refresh",
        expires_at: datetime | None = None,
    ) -> str:
        if expires_at is None:
            expires_at = models.utcnow() + timedelta(hours=1)
        integration_id = CredentialStore(db).upsert_connected(
            organization_id=organization_id,
            user_id="user_1",
            provider=provider,
            name=provider.value.title(),
            access_token=access_token,
            refresh_token=refresh_token,
            token_expires_at=expires_at,
        )
        db.commit()
        return integration_id

    return _connect


@pytest.fixture
def integration_row(db):
    """Fresh read of an integration row, bypassing the identity map."""

    def _load(integration_id: str) -> models.Integration:
        db.expire_all()
        return db.get(models.Integration, integration_id)

    return _load
