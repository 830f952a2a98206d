"""Shared fixtures: in-memory SQLite database, seeded catalog, frozen clock"""
import os

os.environ["DATABASE_URL"] = "sqlite://"

import uuid
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401  registers every table on Base.metadata
from app.db.session import Base
from app.models.module import Module
from app.schemas.subscription import CreateSubscriptionRequest
from app.services.module_catalog import seed_module_catalog
from app.services.subscription_service import SubscriptionService

NOW = datetime(2026, 1, 15, 12, 0, 0)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    session = TestingSessionLocal()
    seed_module_catalog(session)
    session.commit()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def service(db, clock):
    return SubscriptionService(db, clock=clock)


@pytest.fixture
def org_id():
    return uuid.uuid4()


@pytest.fixture
def modules(db):
    """Catalog rows keyed by code."""
    return {m.code: m for m in db.query(Module).all()}


@pytest.fixture
def trial_subscription(service, org_id):
    return service.create_subscription(org_id, CreateSubscriptionRequest(cabinet_id=uuid.uuid4()))


@pytest.fixture
def active_subscription(service, org_id):
    return service.create_subscription(
        org_id,
        CreateSubscriptionRequest(cabinet_id=uuid.uuid4(), auto_start_trial=False),
    )
