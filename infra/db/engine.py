from __future__ import annotations
from functools import lru_cache
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

from config.settings import settings
from infra.db import models


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    # Created on first use so importing the app does not require a DB driver.
    return create_engine(settings.DATABASE_URL, pool_pre_ping=True, future=True)


@lru_cache(maxsize=1)
def _session_factory() -> sessionmaker:
    return sessionmaker(bind=get_engine(), autoflush=False, autocommit=False, expire_on_commit=False, future=True)


def get_session() -> Generator[Session, None, None]:
    """Request-scoped session: one transaction per request, committed only if the handler succeeds."""
    db: Session = _session_factory()()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db_schema(engine: Engine | None = None) -> None:
    """Create the integration, document and audit_log tables that are missing."""
    models.Base.metadata.create_all(bind=engine or get_engine())
