"""
Shared fixtures: an in-memory SQLite database behind a real SqlStore,
row builders for the records the membership sync owns, and a fixed clock.
"""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from retention.models.tables import Base, CommunityRow, MemberRow
from retention.schemas.playbook import Playbook
from retention.store.sql import SqlStore

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, hours: float) -> None:
        self.now = self.now + timedelta(hours=hours)


class Seeder:
    """Writes community / member rows straight to the tables."""

    def __init__(self, session_factory: sessionmaker, store: SqlStore):
        self.session_factory = session_factory
        self.store = store

    def community(self, id: str = "c1", **overrides) -> str:
        values = {
            "id": id,
            "name": "Test Community",
            "plan_tier": "growth",
            "discord_bot_installed": False,
            "telegram_bot_installed": False,
            "whop_chat_enabled": False,
            "settings": {},
        }
        values.update(overrides)
        with self.session_factory() as s:
            s.add(CommunityRow(**values))
            s.commit()
        return id

    def member(self, id: str = "m1", community_id: str = "c1", **overrides) -> str:
        values = {
            "id": id,
            "community_id": community_id,
            "email": f"{id}@example.com",
            "subscription_status": "active",
            "tenure_days": 120,
            "previous_cancellations": 0,
            "recent_payment_failures": 0,
            "cancel_at_period_end": False,
            "has_engagement_data": False,
        }
        values.update(overrides)
        with self.session_factory() as s:
            s.add(MemberRow(**values))
            s.commit()
        return id

    def playbook(self, community_id: str = "c1", **overrides) -> str:
        values = {
            "community_id": community_id,
            "name": "Check-in",
            "trigger_conditions": [],
            "steps": [
                {"step_number": 1, "type": "email", "delay_hours": 0, "subject": "Hi", "content": "Hello"},
                {"step_number": 2, "type": "wait", "delay_hours": 48},
                {"step_number": 3, "type": "email", "delay_hours": 0, "subject": "Again", "content": "Still there?"},
            ],
        }
        values.update(overrides)
        return self.store.add_playbook(Playbook(**values))


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return SqlStore(session_factory)


@pytest.fixture
def seed(session_factory, store):
    return Seeder(session_factory, store)


@pytest.fixture
def clock():
    return FixedClock()
