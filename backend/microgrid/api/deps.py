from typing import Callable, Optional, Tuple
from datetime import datetime, timedelta

from fastapi import Depends
from sqlalchemy.orm import Session

from microgrid.database import get_db
from microgrid.services.aggregator import Aggregator, BucketCache, bucket_cache
from microgrid.services.facade import MetricsFacade
from microgrid.services.pattern_registry import PatternRegistry
from microgrid.services.prediction_ledger import PredictionLedger
from microgrid.services.sample_store import SampleStore
from microgrid.timeutils import Granularity, as_utc, utcnow

# Range used when a query leaves out start
DEFAULT_SPANS = {
    Granularity.HOURLY: timedelta(hours=24),
    Granularity.DAILY: timedelta(days=30),
    Granularity.MONTHLY: timedelta(days=365),
}


def get_clock() -> Callable[[], datetime]:
    return utcnow


def get_bucket_cache() -> BucketCache:
    return bucket_cache


def get_store(
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> SampleStore:
    return SampleStore(db, clock=clock)


def get_aggregator(
    store: SampleStore = Depends(get_store),
    cache: BucketCache = Depends(get_bucket_cache),
) -> Aggregator:
    return Aggregator(store, cache=cache, clock=store.clock)


def get_ledger(
    db: Session = Depends(get_db),
    aggregator: Aggregator = Depends(get_aggregator),
) -> PredictionLedger:
    return PredictionLedger(db, aggregator=aggregator, clock=aggregator.clock)


def get_registry(
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> PatternRegistry:
    return PatternRegistry(db, clock=clock)


def get_facade(
    store: SampleStore = Depends(get_store),
    aggregator: Aggregator = Depends(get_aggregator),
    ledger: PredictionLedger = Depends(get_ledger),
    registry: PatternRegistry = Depends(get_registry),
) -> MetricsFacade:
    """Read side for the dashboard. Writes go to the store, ledger and registry directly."""
    return MetricsFacade(store, aggregator, ledger, registry)


def resolve_range(
    start: Optional[datetime],
    end: Optional[datetime],
    granularity: Granularity,
    clock: Callable[[], datetime],
) -> Tuple[datetime, datetime]:
    end = as_utc(end) if end else clock()
    start = as_utc(start) if start else end - DEFAULT_SPANS[granularity]
    return start, end
