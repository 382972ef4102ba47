from typing import Callable, Dict, List, Optional
from datetime import datetime
import logging
import math

import numpy as np
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from microgrid.exceptions import DuplicatePrediction, InvalidPrediction, UnknownOrResolvedPrediction
from microgrid.models import PredictionEntry, Source
from microgrid.services.aggregator import Aggregator
from microgrid.services.guard import storage_guard
from microgrid.timeutils import Granularity, as_utc, floor_to, utcnow, windows

logger = logging.getLogger(__name__)


def _check_kw(name: str, value) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise InvalidPrediction(f"{name} must be a number, got {value!r}")
    if not math.isfinite(value) or value < 0:
        raise InvalidPrediction(f"{name} must be a finite, non-negative number (got {value})")
    return value


def _error_stats(entries: List[PredictionEntry]) -> dict:
    """MAPE over entries with a usable actual. Zero actuals have no defined percent error."""
    errors = [e.absolute_percent_error for e in entries]
    errors = [err for err in errors if err is not None]
    if not errors:
        return {
            "insufficient_data": True,
            "sample_count": 0,
            "mean_absolute_percent_error": None,
            "accuracy_pct": None,
        }
    mape = float(np.mean(errors))
    return {
        "insufficient_data": False,
        "sample_count": len(errors),
        "mean_absolute_percent_error": round(mape, 4),
        "accuracy_pct": round(max(0.0, 100.0 - mape), 4),
    }


class PredictionLedger:
    """
    Owns forecast entries from the load predictor and pairs them with actual load.

    Entries start pending and are resolved exactly once, either explicitly through
    ``resolve`` or by ``reconcile`` reading realized load from the Aggregator.
    """

    def __init__(
        self,
        db: Session,
        aggregator: Optional[Aggregator] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.aggregator = aggregator
        self.clock = clock

    def submit(self, timestamp: datetime, predicted_kw: float, confidence_pct: float) -> PredictionEntry:
        if not isinstance(timestamp, datetime):
            raise InvalidPrediction(f"Timestamp must be a datetime, got {timestamp!r}")
        timestamp = as_utc(timestamp)
        predicted_kw = _check_kw("predicted_kw", predicted_kw)
        try:
            confidence_pct = float(confidence_pct)
        except (TypeError, ValueError):
            raise InvalidPrediction(f"confidence_pct must be a number, got {confidence_pct!r}")
        if not 0 <= confidence_pct <= 100:
            raise InvalidPrediction(f"confidence_pct must be within [0, 100] (got {confidence_pct})")

        with storage_guard(self.db, "submit prediction"):
            if self.get(timestamp) is not None:
                raise DuplicatePrediction(f"A prediction for {timestamp.isoformat()} already exists")

            entry = PredictionEntry(
                timestamp=timestamp,
                predicted_kw=predicted_kw,
                confidence_pct=confidence_pct,
                submitted_at=self.clock(),
            )
            self.db.add(entry)
            try:
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                raise DuplicatePrediction(f"A prediction for {timestamp.isoformat()} already exists")
            self.db.refresh(entry)

        return entry

    def resolve(self, timestamp: datetime, actual_kw: float) -> PredictionEntry:
        """Record the realized load for a pending entry. Fails if missing or already resolved."""
        timestamp = as_utc(timestamp)
        actual_kw = _check_kw("actual_kw", actual_kw)

        with storage_guard(self.db, "resolve prediction"):
            # Conditional update so two resolvers cannot both win
            updated = self.db.query(PredictionEntry).filter(
                PredictionEntry.timestamp == timestamp,
                PredictionEntry.resolved_at.is_(None),
            ).update(
                {"actual_kw": actual_kw, "resolved_at": self.clock()},
                synchronize_session=False,
            )
            self.db.commit()

            if updated != 1:
                raise UnknownOrResolvedPrediction(
                    f"No pending prediction for {timestamp.isoformat()}"
                )
            return self.get(timestamp)

    def get(self, timestamp: datetime) -> Optional[PredictionEntry]:
        with storage_guard(self.db, "get prediction"):
            return self.db.query(PredictionEntry).filter(
                PredictionEntry.timestamp == as_utc(timestamp)
            ).first()

    def is_pending(self, timestamp: datetime) -> bool:
        entry = self.get(timestamp)
        return entry is not None and not entry.is_resolved

    def entries(self, from_ts: datetime, to_ts: datetime, resolved: Optional[bool] = None) -> List[PredictionEntry]:
        from_ts, to_ts = as_utc(from_ts), as_utc(to_ts)
        if to_ts <= from_ts:
            return []
        with storage_guard(self.db, "list predictions"):
            query = self.db.query(PredictionEntry).filter(
                PredictionEntry.timestamp >= from_ts,
                PredictionEntry.timestamp < to_ts,
            )
            if resolved is True:
                query = query.filter(PredictionEntry.is_resolved)
            elif resolved is False:
                query = query.filter(PredictionEntry.resolved_at.is_(None))
            return query.order_by(PredictionEntry.timestamp).all()

    def reconcile(self, now: Optional[datetime] = None, batch_size: int = 1000) -> int:
        """
        Resolve pending entries whose hourly load window has closed and has readings.

        Every pending entry is visited once per pass, oldest first, one page of
        ``batch_size`` at a time. Entries whose hour never got load readings are
        stepped over, so they cannot hold back later entries.
        Returns the number of entries resolved in this pass.
        """
        if self.aggregator is None:
            raise RuntimeError("reconcile needs an Aggregator to read actual load")

        now = now or self.clock()
        closed_before = floor_to(now, Granularity.HOURLY)

        resolved = 0
        visited = 0
        after = None
        while True:
            with storage_guard(self.db, "reconcile"):
                query = self.db.query(PredictionEntry.timestamp).filter(
                    PredictionEntry.resolved_at.is_(None),
                    PredictionEntry.timestamp < closed_before,
                )
                if after is not None:
                    query = query.filter(PredictionEntry.timestamp > after)
                stamps = [row.timestamp for row in query.order_by(PredictionEntry.timestamp).limit(batch_size).all()]

            if not stamps:
                break
            visited += len(stamps)
            after = stamps[-1]

            for ts in stamps:
                bucket = self.aggregator.bucket_at(Source.LOAD, Granularity.HOURLY, ts)
                if bucket.provisional:
                    continue
                try:
                    self.resolve(ts, bucket.avg_kw)
                    resolved += 1
                except UnknownOrResolvedPrediction:
                    logger.info(f"Prediction at {ts.isoformat()} was resolved by another caller")

        if visited:
            logger.info(f"Reconciled {resolved} of {visited} pending predictions")
        return resolved

    def accuracy(self, from_ts: datetime, to_ts: datetime) -> dict:
        """Accuracy over resolved entries in range. Pending entries are counted, never scored."""
        entries = self.entries(from_ts, to_ts)
        resolved = [e for e in entries if e.is_resolved]
        stats = _error_stats(resolved)
        stats.update({
            "resolved_count": len(resolved),
            "pending_count": len(entries) - len(resolved),
            "mean_confidence_pct": round(float(np.mean([e.confidence_pct for e in resolved])), 4) if resolved else None,
        })
        return stats

    def accuracy_series(self, granularity: Granularity, from_ts: datetime, to_ts: datetime) -> List[dict]:
        """Accuracy per aligned window, for the learning-progress chart."""
        granularity = Granularity(granularity)
        entries = self.entries(from_ts, to_ts, resolved=True)

        series = []
        for start, end in windows(as_utc(from_ts), as_utc(to_ts), granularity):
            in_window = [e for e in entries if start <= e.timestamp < end]
            series.append({"bucket_start": start, "bucket_end": end, **_error_stats(in_window)})
        return series

    def confidence_decay(self, from_ts: datetime, to_ts: datetime) -> List[dict]:
        """
        Group entries by forecast lead time (whole hours between submission and target)
        and report mean confidence and realized error per lead.
        """
        groups: Dict[int, List[PredictionEntry]] = {}
        for entry in self.entries(from_ts, to_ts):
            lead = max(0, int((entry.timestamp - entry.submitted_at).total_seconds() // 3600))
            groups.setdefault(lead, []).append(entry)

        rows = []
        for lead in sorted(groups):
            group = groups[lead]
            stats = _error_stats([e for e in group if e.is_resolved])
            rows.append({
                "lead_hours": lead,
                "count": len(group),
                "mean_confidence_pct": round(float(np.mean([e.confidence_pct for e in group])), 4),
                "mean_absolute_percent_error": stats["mean_absolute_percent_error"],
                "scored_count": stats["sample_count"],
            })
        return rows

    def peak(self, from_ts: datetime, to_ts: datetime) -> Optional[PredictionEntry]:
        """Highest predicted load in range, earliest first on ties."""
        entries = self.entries(from_ts, to_ts)
        if not entries:
            return None
        return max(entries, key=lambda e: (e.predicted_kw, -e.timestamp.timestamp()))
