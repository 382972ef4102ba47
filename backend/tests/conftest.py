from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from microgrid.database import Base
import microgrid.models  # noqa: F401
from microgrid.services.aggregator import Aggregator, BucketCache
from microgrid.services.facade import MetricsFacade
from microgrid.services.pattern_registry import PatternRegistry
from microgrid.services.prediction_ledger import PredictionLedger
from microgrid.services.sample_store import SampleStore

NOW = datetime(2026, 3, 10, 12, 30)


class FrozenClock:
    """Clock that only moves when a test tells it to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def file_session_factory(tmp_path):
    """Sessions on separate connections to one SQLite file, for interleaving and threads."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'metrics.db'}",
        connect_args={"check_same_thread": False, "timeout": 15},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def clock():
    return FrozenClock(NOW)


@pytest.fixture
def cache():
    return BucketCache()


@pytest.fixture
def store(db, clock):
    return SampleStore(db, clock=clock)


@pytest.fixture
def aggregator(store, cache, clock):
    return Aggregator(store, cache=cache, clock=clock, grid_tariff=1.2, co2_factor=0.7)


@pytest.fixture
def ledger(db, aggregator, clock):
    return PredictionLedger(db, aggregator=aggregator, clock=clock)


@pytest.fixture
def registry(db, clock):
    return PatternRegistry(db, clock=clock)


@pytest.fixture
def facade(store, aggregator, ledger, registry):
    return MetricsFacade(store, aggregator, ledger, registry, lookback_hours=24)
