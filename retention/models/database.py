"""
Engine / session factory.
"""
from datetime import timedelta
from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from retention.core.config import get_settings
from retention.store.sql import SqlStore


@lru_cache
def get_engine() -> Engine:
    return create_engine(get_settings().database_url, pool_pre_ping=True)


def get_session_factory() -> sessionmaker:
    return sessionmaker(bind=get_engine(), expire_on_commit=False)


def get_store() -> SqlStore:
    """FastAPI dependency: one SqlStore per request."""
    return SqlStore(
        get_session_factory(),
        claim_timeout=timedelta(minutes=get_settings().claim_timeout_minutes),
    )
