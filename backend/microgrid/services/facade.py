from typing import Iterable, Optional
from datetime import datetime, timedelta
import logging

from microgrid.config import settings
from microgrid.models import Source
from microgrid.services.aggregator import Aggregator, percent_change
from microgrid.services.pattern_registry import PatternRegistry
from microgrid.services.prediction_ledger import PredictionLedger
from microgrid.services.sample_store import SampleStore
from microgrid.timeutils import Granularity, as_utc, floor_to, next_boundary

logger = logging.getLogger(__name__)


class MetricsFacade:
    """
    The single read contract for the dashboard.
    Only delegates to the store, aggregator, ledger and registry and shapes their results.
    """

    def __init__(
        self,
        store: SampleStore,
        aggregator: Aggregator,
        ledger: PredictionLedger,
        registry: PatternRegistry,
        lookback_hours: Optional[int] = None,
    ):
        self.store = store
        self.aggregator = aggregator
        self.ledger = ledger
        self.registry = registry
        self.lookback = timedelta(hours=settings.snapshot_lookback_hours if lookback_hours is None else lookback_hours)

    def current_snapshot(self) -> dict:
        """
        Latest complete hourly bucket per source with its change against the hour
        before, and the latest defined efficiency.
        """
        now = self.aggregator.clock()
        current_hour = floor_to(now, Granularity.HOURLY)
        buckets = self.aggregator.buckets(
            list(Source),
            Granularity.HOURLY,
            current_hour - self.lookback,
            next_boundary(current_hour, Granularity.HOURLY),
        )

        latest = {}
        changes = {}
        for source, series in buckets.items():
            index = next((i for i in range(len(series) - 1, -1, -1) if not series[i].provisional), None)
            if index is None:
                latest[source] = None
                changes[source] = None
                continue
            latest[source] = series[index]
            previous = series[index - 1] if index > 0 else None
            changes[source] = percent_change(series[index].avg_kw, previous.avg_kw if previous else None)

        efficiency = next(
            (r for r in reversed(self.aggregator.efficiency_from_buckets(buckets)) if r.defined),
            None,
        )
        return {"as_of": now, "sources": latest, "changes": changes, "efficiency": efficiency}

    def series(self, sources: Iterable, granularity: Granularity, from_ts: datetime, to_ts: datetime) -> dict:
        buckets = self.aggregator.buckets(sources, granularity, from_ts, to_ts)
        return {
            "granularity": Granularity(granularity),
            "start": from_ts,
            "end": to_ts,
            "series": {
                source: [
                    {
                        "timestamp": b.bucket_start,
                        "value": b.avg_kw,
                        "sum_kwh": b.sum_kwh,
                        "min_kw": b.min_kw,
                        "max_kw": b.max_kw,
                        "sample_count": b.sample_count,
                        "provisional": b.provisional,
                    }
                    for b in source_buckets
                ]
                for source, source_buckets in buckets.items()
            },
        }

    def efficiency_history(self, granularity: Granularity, from_ts: datetime, to_ts: datetime) -> list:
        """Efficiency per window; the window before from_ts is read too so the first row has a change."""
        granularity = Granularity(granularity)
        from_ts, to_ts = as_utc(from_ts), as_utc(to_ts)
        if to_ts <= from_ts:
            return []
        previous = floor_to(floor_to(from_ts, granularity) - timedelta(seconds=1), granularity)
        return self.aggregator.efficiency(granularity, previous, to_ts)[1:]

    def accuracy_trend(self, granularity: Granularity, from_ts: datetime, to_ts: datetime) -> list:
        return self.ledger.accuracy_series(granularity, from_ts, to_ts)

    def confidence_decay(self, from_ts: datetime, to_ts: datetime) -> list:
        return self.ledger.confidence_decay(from_ts, to_ts)

    def prediction_comparison(self, from_ts: datetime, to_ts: datetime) -> dict:
        """Resolved entries as predicted/actual pairs; pending ones listed separately as unverified forecast."""
        entries = self.ledger.entries(from_ts, to_ts)
        return {
            "points": [
                {
                    "timestamp": e.timestamp,
                    "predicted": e.predicted_kw,
                    "actual": e.actual_kw,
                    "confidence": e.confidence_pct,
                }
                for e in entries if e.is_resolved
            ],
            "forecast": [
                {
                    "timestamp": e.timestamp,
                    "predicted": e.predicted_kw,
                    "confidence": e.confidence_pct,
                }
                for e in entries if not e.is_resolved
            ],
            "accuracy": self.ledger.accuracy(from_ts, to_ts),
            "peak": self.ledger.peak(from_ts, to_ts),
        }

    def patterns(self, sort_by: str = "frequency") -> list:
        return self.registry.list(sort_by=sort_by)
