from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple
from datetime import datetime, timedelta
from contextlib import ExitStack
import csv
import io
import logging
import math
import threading

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from microgrid.config import settings
from microgrid.exceptions import InvalidReading
from microgrid.models import Reading, Source
from microgrid.services.guard import storage_guard
from microgrid.timeutils import utcnow, as_utc

logger = logging.getLogger(__name__)

# One writer per source timeline; readers never take these
_source_locks: Dict[Source, threading.Lock] = {source: threading.Lock() for source in Source}

# Readings are never updated, so a window changes only by gaining or losing rows
Watermark = Tuple[int, Optional[int]]

TIME_ALIASES = ['t', 'Time', 'time', 'timestamp', 'Timestamp', 'Read Date']
VALUE_ALIASES = ['kw', 'kW', 'value_kw', 'Value', 'value', 'power']
SOURCE_ALIASES = ['source', 'Source', 'channel', 'Channel']
DATE_FORMATS = [
    '%Y-%m-%d %H:%M:%S',
    '%m/%d/%Y %H:%M:%S',
    '%m/%d/%Y %H:%M',
    '%Y-%m-%d %H:%M',
]


def parse_source(value) -> Source:
    if isinstance(value, Source):
        return value
    try:
        return Source(str(value).strip().lower())
    except ValueError:
        raise InvalidReading(f"Unknown source: {value!r}")


def parse_timestamp(value: str) -> Optional[datetime]:
    value = value.strip().strip('"')
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    try:
        return as_utc(datetime.fromisoformat(value.replace('Z', '+00:00')))
    except ValueError:
        return None


class SampleStore:
    """
    Append-only store of raw per-source readings.

    Readings are validated on the way in and never updated afterwards.
    Retention is applied lazily by ``compact``; inserts never purge.
    """

    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = utcnow,
        skew_seconds: Optional[int] = None,
        retention_days: Optional[int] = None,
    ):
        self.db = db
        self.clock = clock
        self.skew = timedelta(seconds=settings.clock_skew_seconds if skew_seconds is None else skew_seconds)
        self.retention = timedelta(days=settings.retention_days if retention_days is None else retention_days)

    def validate(self, source, timestamp: datetime, value_kw) -> Tuple[Source, datetime, float]:
        source = parse_source(source)
        if not isinstance(timestamp, datetime):
            raise InvalidReading(f"Timestamp must be a datetime, got {timestamp!r}")
        timestamp = as_utc(timestamp)

        try:
            value_kw = float(value_kw)
        except (TypeError, ValueError):
            raise InvalidReading(f"value_kw must be a number, got {value_kw!r}")
        if not math.isfinite(value_kw):
            raise InvalidReading("value_kw must be finite")
        if value_kw < 0:
            raise InvalidReading(f"value_kw must not be negative (got {value_kw})")

        now = self.clock()
        if timestamp > now + self.skew:
            raise InvalidReading(
                f"Timestamp {timestamp.isoformat()} is more than {int(self.skew.total_seconds())}s ahead of {now.isoformat()}"
            )
        return source, timestamp, value_kw

    def append(self, source, timestamp: datetime, value_kw: float) -> Reading:
        """
        Store a single reading.
        Re-submitting an identical reading returns the stored one; a different value
        for an already stored (source, timestamp) is rejected.
        """
        try:
            source, timestamp, value_kw = self.validate(source, timestamp, value_kw)
        except InvalidReading as e:
            logger.warning(f"Rejected reading: {e.message}")
            raise

        with _source_locks[source], storage_guard(self.db, "append"):
            existing = self._find(source, timestamp)
            if existing:
                return self._check_same(existing, value_kw)

            reading = Reading(
                source=source,
                timestamp=timestamp,
                value_kw=value_kw,
                received_at=self.clock(),
            )
            self.db.add(reading)
            try:
                self.db.commit()
            except IntegrityError:
                # Another process stored the same (source, timestamp) first
                self.db.rollback()
                return self._check_same(self._find(source, timestamp), value_kw)
            self.db.refresh(reading)

        return reading

    def append_many(self, rows: Iterable[dict]) -> dict:
        """
        Bulk ingest rows of {'source', 'timestamp', 'value_kw'}.
        Invalid rows are rejected individually; valid ones are committed together.
        Identical resubmissions are skipped, a different value for a stored or
        already batched (source, timestamp) is rejected.
        """
        accepted: Dict[Tuple[Source, datetime], Tuple[float, int]] = {}
        rejected = []
        skipped_count = 0
        total = 0
        for row in rows:
            total += 1
            try:
                source, ts, value = self.validate(row.get('source'), row.get('timestamp'), row.get('value_kw'))
            except InvalidReading as e:
                rejected.append({"row": total, "error": e.message})
                continue

            batched = accepted.get((source, ts))
            if batched is None:
                accepted[(source, ts)] = (value, total)
            elif batched[0] == value:
                skipped_count += 1
            else:
                rejected.append({
                    "row": total,
                    "error": f"Conflicts with row {batched[1]}: {source.value} at {ts.isoformat()} "
                             f"is {batched[0]} kW, got {value} kW",
                })

        new_count = 0
        sources = sorted({source for source, _ in accepted}, key=lambda s: s.value)

        with ExitStack() as stack:
            for source in sources:
                stack.enter_context(_source_locks[source])

            with storage_guard(self.db, "append_many"):
                received_at = self.clock()
                for source in sources:
                    stamps = [ts for s, ts in accepted if s == source]
                    stored = dict(self.db.query(Reading.timestamp, Reading.value_kw).filter(
                        Reading.source == source,
                        Reading.timestamp >= min(stamps),
                        Reading.timestamp <= max(stamps),
                    ).all())
                    for ts in sorted(stamps):
                        value, row_number = accepted[(source, ts)]
                        if ts in stored:
                            if stored[ts] == value:
                                skipped_count += 1
                            else:
                                rejected.append({
                                    "row": row_number,
                                    "error": f"A {source.value} reading for {ts.isoformat()} is already stored "
                                             f"with value {stored[ts]} kW; readings are immutable",
                                })
                            continue
                        self.db.add(Reading(
                            source=source,
                            timestamp=ts,
                            value_kw=value,
                            received_at=received_at,
                        ))
                        new_count += 1
                try:
                    self.db.commit()
                except IntegrityError:
                    self.db.rollback()
                    raise InvalidReading("Batch conflicts with readings stored concurrently; retry the upload")

        rejected.sort(key=lambda r: r["row"])
        if rejected:
            logger.warning(f"Bulk ingest rejected {len(rejected)} of {total} rows")
        logger.info(f"Bulk ingest: {new_count} new, {skipped_count} duplicates, {len(rejected)} rejected")
        return {
            "new_readings": new_count,
            "skipped_duplicates": skipped_count,
            "rejected": rejected,
            "total_processed": total,
        }

    def process_readings_csv(self, file_content: str, source: Optional[str] = None) -> dict:
        """
        Import readings from CSV content.
        Each row needs a timestamp and a kW value column; the source comes from a
        source column or from the ``source`` argument.
        """
        reader = csv.DictReader(io.StringIO(file_content))

        rows = []
        unparsed = 0
        for row in reader:
            ts_key = next((k for k in TIME_ALIASES if k in row), None)
            val_key = next((k for k in VALUE_ALIASES if k in row), None)
            src_key = next((k for k in SOURCE_ALIASES if k in row), None)

            if not ts_key or not val_key:
                unparsed += 1
                continue

            ts = parse_timestamp(row[ts_key] or '')
            if ts is None:
                unparsed += 1
                continue

            rows.append({
                'source': row[src_key] if src_key and row[src_key] else source,
                'timestamp': ts,
                'value_kw': row[val_key],
            })

        if not rows:
            return {
                "message": "No valid readings found",
                "new_readings": 0,
                "skipped_duplicates": 0,
                "rejected": [],
                "unparsed_rows": unparsed,
                "total_processed": 0,
            }

        result = self.append_many(rows)
        return {"message": "Upload complete", "unparsed_rows": unparsed, **result}

    def query(self, source, from_ts: datetime, to_ts: datetime) -> Iterator[Reading]:
        """Readings for one source in [from_ts, to_ts), oldest first. Lazy and finite."""
        source = parse_source(source)
        from_ts, to_ts = as_utc(from_ts), as_utc(to_ts)
        if to_ts <= from_ts:
            return iter(())
        return self._scan(source, from_ts, to_ts)

    def _scan(self, source: Source, from_ts: datetime, to_ts: datetime) -> Iterator[Reading]:
        with storage_guard(self.db, "query"):
            rows = self.db.query(Reading).filter(
                Reading.source == source,
                Reading.timestamp >= from_ts,
                Reading.timestamp < to_ts,
            ).order_by(Reading.timestamp).yield_per(settings.ingest_batch_size)
            for reading in rows:
                yield reading

    def latest(self, source) -> Optional[Reading]:
        source = parse_source(source)
        with storage_guard(self.db, "latest"):
            return self.db.query(Reading).filter(
                Reading.source == source
            ).order_by(Reading.timestamp.desc()).first()

    def latest_received_at(self, source, from_ts: datetime, to_ts: datetime) -> Optional[datetime]:
        """When a reading inside [from_ts, to_ts) last arrived."""
        source = parse_source(source)
        with storage_guard(self.db, "latest_received_at"):
            return self.db.query(func.max(Reading.received_at)).filter(
                Reading.source == source,
                Reading.timestamp >= from_ts,
                Reading.timestamp < to_ts,
            ).scalar()

    def window_watermark(self, source, from_ts: datetime, to_ts: datetime) -> Watermark:
        """(row count, highest id) of the committed readings in [from_ts, to_ts)."""
        source = parse_source(source)
        with storage_guard(self.db, "window_watermark"):
            count, max_id = self.db.query(func.count(Reading.id), func.max(Reading.id)).filter(
                Reading.source == source,
                Reading.timestamp >= from_ts,
                Reading.timestamp < to_ts,
            ).one()
        return int(count or 0), max_id

    def compact(self, now: Optional[datetime] = None) -> int:
        """Purge readings older than the retention window. Returns the number removed."""
        cutoff = (now or self.clock()) - self.retention
        with storage_guard(self.db, "compact"):
            removed = self.db.query(Reading).filter(
                Reading.timestamp < cutoff
            ).delete(synchronize_session=False)
            self.db.commit()
        logger.info(f"Compaction removed {removed} readings older than {cutoff.isoformat()}")
        return removed

    def _find(self, source: Source, timestamp: datetime) -> Optional[Reading]:
        return self.db.query(Reading).filter(
            Reading.source == source,
            Reading.timestamp == timestamp,
        ).first()

    def _check_same(self, existing: Reading, value_kw: float) -> Reading:
        if existing.value_kw != value_kw:
            raise InvalidReading(
                f"A {existing.source.value} reading for {existing.timestamp.isoformat()} is already stored "
                f"with value {existing.value_kw} kW; readings are immutable"
            )
        return existing
