# crave/conftest.py
from datetime import date, timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from crave.core.database import build_engine, create_all_tables
from crave.core.metrics import METRICS


class FixedClock:
    """Reward-zone 'today' that only moves when a test moves it."""

    def __init__(self, day: date):
        self.day = day

    def __call__(self) -> date:
        return self.day

    def advance(self, days: int = 1) -> date:
        self.day = self.day + timedelta(days=days)
        return self.day


@pytest.fixture(autouse=True)
def reset_metrics():
    METRICS.reset()
    yield
    METRICS.reset()


@pytest.fixture
def db_engine(tmp_path):
    """A fresh sqlite database file per test, with tables created."""
    engine = build_engine(f"sqlite:///{tmp_path / 'crave.db'}")
    create_all_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    from crave.features.catalog.service import seed_catalog

    factory = sessionmaker(bind=db_engine, autoflush=False)
    seed_catalog(factory)
    return factory


@pytest.fixture
def clock():
    return FixedClock(date(2024, 1, 10))


@pytest.fixture
def store(session_factory):
    from crave.features.store.ledger_store import LedgerStore

    return LedgerStore(
        session_factory,
        lock_timeout=2.0,
        retry_attempts=3,
        retry_backoff=0.0,
        sleep=lambda _: None,
    )


@pytest.fixture
def catalog(session_factory):
    from crave.features.catalog.service import CatalogService

    return CatalogService(session_factory, ttl_seconds=60)


@pytest.fixture
def streaks(store, clock):
    from crave.features.streaks.service import StreakController

    return StreakController(store, today_provider=clock)


@pytest.fixture
def engine(store, catalog, streaks, clock):
    from crave.features.economy.service import EconomyEngine

    return EconomyEngine(store, catalog, streaks, today_provider=clock)


@pytest.fixture
def make_account(store):
    """Onboard a user. Returns the created UserAccount."""
    from crave.features.accounts.service import create_account

    def _make(user_id: str = "user-1", **kwargs):
        return create_account(store, user_id, **kwargs)

    return _make


@pytest.fixture
def client(engine):
    from fastapi.testclient import TestClient

    from crave.features.economy.service import get_economy_engine
    from crave.main import app

    app.dependency_overrides[get_economy_engine] = lambda: engine
    try:
        yield TestClient(app, raise_server_exceptions=False)
    finally:
        app.dependency_overrides.pop(get_economy_engine, None)
