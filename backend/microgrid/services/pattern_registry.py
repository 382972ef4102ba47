from typing import Callable, List, Optional
from datetime import datetime
import logging
import math

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from microgrid.exceptions import InvalidFrequency, InvalidPattern
from microgrid.models import Impact, PatternRecord
from microgrid.services.guard import storage_guard
from microgrid.timeutils import as_utc, utcnow

logger = logging.getLogger(__name__)

SORT_KEYS = ("frequency", "impact")


def parse_impact(value) -> Impact:
    if isinstance(value, Impact):
        return value
    for impact in Impact:
        if str(value).strip().lower() == impact.value.lower():
            return impact
    raise InvalidPattern(f"Unknown impact: {value!r} (expected Low, Medium or High)")


class PatternRegistry:
    """Learned consumption patterns, one record per exact (case-sensitive) name."""

    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    def upsert(self, name: str, frequency_pct: float, impact, seen_at: Optional[datetime] = None) -> PatternRecord:
        """
        Record an observation of a pattern.
        An existing name has its frequency, impact and last_seen_at replaced.
        """
        if not isinstance(name, str) or not name.strip():
            raise InvalidPattern("Pattern name must not be empty")
        try:
            frequency_pct = float(frequency_pct)
        except (TypeError, ValueError):
            raise InvalidFrequency(f"frequency_pct must be a number, got {frequency_pct!r}")
        if not math.isfinite(frequency_pct) or not 0 <= frequency_pct <= 100:
            raise InvalidFrequency(f"frequency_pct must be within [0, 100] (got {frequency_pct})")
        impact = parse_impact(impact)
        seen_at = as_utc(seen_at) if seen_at else self.clock()

        with storage_guard(self.db, "upsert pattern"):
            record = self.get(name)
            if record is None:
                record = PatternRecord(
                    name=name,
                    frequency_pct=frequency_pct,
                    impact=impact,
                    last_seen_at=seen_at,
                    first_seen_at=seen_at,
                    observation_count=1,
                )
                self.db.add(record)
                try:
                    self.db.commit()
                    self.db.refresh(record)
                    logger.info(f"New pattern '{name}' ({frequency_pct}%, {impact.value})")
                    return record
                except IntegrityError:
                    # Inserted concurrently under the same name; fall through to update it
                    self.db.rollback()
                    record = self.get(name)

            record.frequency_pct = frequency_pct
            record.impact = impact
            record.last_seen_at = seen_at
            record.observation_count = (record.observation_count or 0) + 1
            self.db.commit()
            self.db.refresh(record)

        return record

    def get(self, name: str) -> Optional[PatternRecord]:
        with storage_guard(self.db, "get pattern"):
            return self.db.query(PatternRecord).filter(PatternRecord.name == name).first()

    def list(self, sort_by: str = "frequency") -> List[PatternRecord]:
        """
        Snapshot ordered descending by frequency or impact.
        Ties go to the most recently seen pattern, then to name order.
        """
        if sort_by not in SORT_KEYS:
            raise ValueError(f"sort_by must be one of {', '.join(SORT_KEYS)}")

        with storage_guard(self.db, "list patterns"):
            records = self.db.query(PatternRecord).all()

        if sort_by == "frequency":
            primary = lambda r: r.frequency_pct
        else:
            primary = lambda r: r.impact.rank

        # Stable sorts: name ascending survives as the final tie-breaker
        records = sorted(records, key=lambda r: r.name)
        return sorted(records, key=lambda r: (primary(r), r.last_seen_at), reverse=True)
