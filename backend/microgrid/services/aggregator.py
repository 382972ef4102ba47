from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple
import logging
import threading

import numpy as np

from microgrid.config import settings
from microgrid.models import Source
from microgrid.services.sample_store import SampleStore, Watermark, parse_source
from microgrid.timeutils import Granularity, as_utc, floor_to, hours_between, next_boundary, windows

logger = logging.getLogger(__name__)

BucketKey = Tuple[Source, Granularity, datetime]


@dataclass(frozen=True)
class Bucket:
    """Aggregated statistics for one source over one aligned window."""
    source: Source
    granularity: Granularity
    bucket_start: datetime
    bucket_end: datetime
    sample_count: int
    computed_at: datetime
    sum_kwh: Optional[float] = None
    avg_kw: Optional[float] = None
    min_kw: Optional[float] = None
    max_kw: Optional[float] = None
    # Rows the bucket was folded from, compared on reuse
    watermark: Watermark = (0, None)

    @property
    def provisional(self) -> bool:
        # No readings yet, which is not the same as readings of zero
        return self.sample_count == 0

    @property
    def key(self) -> BucketKey:
        return (self.source, self.granularity, self.bucket_start)


@dataclass(frozen=True)
class EfficiencyRecord:
    granularity: Granularity
    bucket_start: datetime
    bucket_end: datetime
    generation_kwh: Optional[float]
    grid_import_kwh: Optional[float]
    battery_kwh: Optional[float]
    load_kwh: Optional[float]
    efficiency: Optional[float]  # None means undefined, rendered as "no data"
    self_sufficiency: Optional[float]
    savings: Optional[float]
    co2_avoided_kg: Optional[float]
    net_flow_kwh: Optional[float]
    # Relative to the preceding window of the same series
    generation_change_pct: Optional[float] = None
    load_change_pct: Optional[float] = None
    efficiency_change_pct: Optional[float] = None

    @property
    def defined(self) -> bool:
        return self.efficiency is not None


class BucketCache:
    """
    Advisory, process-wide cache of closed-window buckets.
    Entries may be stale at any time; the Aggregator revalidates before use.
    """

    def __init__(self):
        self._entries: Dict[BucketKey, Bucket] = {}
        self._lock = threading.Lock()

    def get(self, key: BucketKey) -> Optional[Bucket]:
        with self._lock:
            return self._entries.get(key)

    def put(self, bucket: Bucket) -> None:
        with self._lock:
            self._entries[bucket.key] = bucket

    def discard(self, key: BucketKey) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def evict_before(self, cutoff: datetime) -> int:
        """Drop entries whose window starts before cutoff (used after compaction)."""
        with self._lock:
            stale = [k for k, b in self._entries.items() if b.bucket_start < cutoff]
            for k in stale:
                del self._entries[k]
            return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


bucket_cache = BucketCache()


def percent_change(current: Optional[float], previous: Optional[float]) -> Optional[float]:
    """Change from previous to current in percent. Undefined without both values or from zero."""
    if current is None or previous is None or previous == 0:
        return None
    return round((current - previous) / previous * 100, 4)


def _clamp_ratio(numerator: float, denominator: float) -> Optional[float]:
    if denominator <= 0:
        return None
    return min(1.0, max(0.0, numerator / denominator))


class Aggregator:
    """
    Resamples raw readings into hourly/daily/monthly buckets on demand.
    Read-only with respect to the Sample Store.
    """

    def __init__(
        self,
        store: SampleStore,
        cache: Optional[BucketCache] = None,
        clock: Optional[Callable[[], datetime]] = None,
        grid_tariff: Optional[float] = None,
        co2_factor: Optional[float] = None,
    ):
        self.store = store
        self.cache = bucket_cache if cache is None else cache
        self.clock = clock or store.clock
        self.grid_tariff = settings.grid_tariff_per_kwh if grid_tariff is None else grid_tariff
        self.co2_factor = settings.co2_factor_kg_per_kwh if co2_factor is None else co2_factor

    def buckets(
        self,
        sources: Iterable,
        granularity: Granularity,
        from_ts: datetime,
        to_ts: datetime,
    ) -> Dict[Source, List[Bucket]]:
        """
        One bucket per source per aligned window covering [from_ts, to_ts).
        Windows without readings are kept as provisional buckets.
        """
        granularity = Granularity(granularity)
        sources = [parse_source(s) for s in sources]
        from_ts, to_ts = as_utc(from_ts), as_utc(to_ts)
        now = self.clock()

        result: Dict[Source, List[Bucket]] = {source: [] for source in sources}
        for start, end in windows(from_ts, to_ts, granularity):
            for source in sources:
                result[source].append(self._bucket_for_window(source, granularity, start, end, now))
        return result

    def bucket_at(self, source, granularity: Granularity, ts: datetime) -> Bucket:
        """The bucket whose window contains ts."""
        granularity = Granularity(granularity)
        start = floor_to(as_utc(ts), granularity)
        return self._bucket_for_window(
            parse_source(source), granularity, start, next_boundary(start, granularity), self.clock()
        )

    def efficiency(self, granularity: Granularity, from_ts: datetime, to_ts: datetime) -> List[EfficiencyRecord]:
        return self.efficiency_from_buckets(self.buckets(list(Source), granularity, from_ts, to_ts))

    def efficiency_from_buckets(self, buckets: Dict[Source, List[Bucket]]) -> List[EfficiencyRecord]:
        """Derive per-window efficiency from already aggregated Solar/Grid/Battery/Load buckets."""
        missing = [s.value for s in Source if s not in buckets]
        if missing:
            raise ValueError(f"Efficiency needs buckets for every source, missing: {', '.join(missing)}")

        records = []
        previous = None
        for solar, grid, battery, load in zip(
            buckets[Source.SOLAR], buckets[Source.GRID], buckets[Source.BATTERY], buckets[Source.LOAD]
        ):
            record = self._derive(solar, grid, battery, load)
            if previous is not None:
                record = replace(
                    record,
                    generation_change_pct=percent_change(record.generation_kwh, previous.generation_kwh),
                    load_change_pct=percent_change(record.load_kwh, previous.load_kwh),
                    efficiency_change_pct=percent_change(record.efficiency, previous.efficiency),
                )
            records.append(record)
            previous = record
        return records

    def _derive(self, solar: Bucket, grid: Bucket, battery: Bucket, load: Bucket) -> EfficiencyRecord:
        generation = solar.sum_kwh
        grid_import = grid.sum_kwh

        efficiency = None
        if generation is not None and grid_import is not None:
            efficiency = _clamp_ratio(generation, generation + grid_import)

        self_sufficiency = None
        if generation is not None and load.sum_kwh is not None:
            self_sufficiency = _clamp_ratio(generation, load.sum_kwh)

        net_flow = None
        if all(b.sum_kwh is not None for b in (solar, grid, battery, load)):
            net_flow = generation + grid_import + battery.sum_kwh - load.sum_kwh

        return EfficiencyRecord(
            granularity=solar.granularity,
            bucket_start=solar.bucket_start,
            bucket_end=solar.bucket_end,
            generation_kwh=generation,
            grid_import_kwh=grid_import,
            battery_kwh=battery.sum_kwh,
            load_kwh=load.sum_kwh,
            efficiency=efficiency,
            self_sufficiency=self_sufficiency,
            savings=generation * self.grid_tariff if generation is not None else None,
            co2_avoided_kg=generation * self.co2_factor if generation is not None else None,
            net_flow_kwh=net_flow,
        )

    def _bucket_for_window(
        self,
        source: Source,
        granularity: Granularity,
        start: datetime,
        end: datetime,
        now: datetime,
    ) -> Bucket:
        key = (source, granularity, start)
        cached = self.cache.get(key)
        if cached is not None and self._is_fresh(cached):
            return cached

        bucket = self._fold(source, granularity, start, end, now)
        if end <= now:
            self.cache.put(bucket)
        elif cached is not None:
            self.cache.discard(key)
        return bucket

    def _is_fresh(self, cached: Bucket) -> bool:
        current = self.store.window_watermark(cached.source, cached.bucket_start, cached.bucket_end)
        if current != cached.watermark:
            logger.debug(
                f"Recomputing {cached.source.value} {cached.granularity.value} bucket at "
                f"{cached.bucket_start.isoformat()}: window rows changed from {cached.watermark} to {current}"
            )
            return False
        return True

    def _fold(self, source: Source, granularity: Granularity, start: datetime, end: datetime, now: datetime) -> Bucket:
        rows = np.array(
            [(r.id, r.value_kw) for r in self.store.query(source, start, end)],
            dtype=float,
        ).reshape(-1, 2)

        if rows.shape[0] == 0:
            return Bucket(
                source=source,
                granularity=granularity,
                bucket_start=start,
                bucket_end=end,
                sample_count=0,
                computed_at=now,
            )

        values = rows[:, 1]
        avg_kw = float(np.mean(values))
        # Mean power over the elapsed part of the window. A window that has not
        # started yet only holds skew-tolerated readings and has no energy figure.
        covered_hours = hours_between(start, min(end, now))

        return Bucket(
            source=source,
            granularity=granularity,
            bucket_start=start,
            bucket_end=end,
            sample_count=int(values.size),
            computed_at=now,
            sum_kwh=avg_kw * covered_hours if covered_hours > 0 else None,
            avg_kw=avg_kw,
            min_kw=float(np.min(values)),
            max_kw=float(np.max(values)),
            watermark=(int(values.size), int(rows[:, 0].max())),
        )
