from pydantic import BaseModel, field_serializer
from datetime import datetime
from typing import Dict, List, Optional

from microgrid.models import Source
from microgrid.schemas.common import serialize_utc
from microgrid.timeutils import Granularity


class BucketResponse(BaseModel):
    source: Source
    granularity: Granularity
    bucket_start: datetime
    bucket_end: datetime
    sample_count: int
    provisional: bool
    sum_kwh: Optional[float] = None
    avg_kw: Optional[float] = None
    min_kw: Optional[float] = None
    max_kw: Optional[float] = None
    computed_at: datetime

    @field_serializer('bucket_start', 'bucket_end', 'computed_at')
    def serialize_dt(self, dt: datetime, _info):
        return serialize_utc(dt)

    class Config:
        from_attributes = True


class EfficiencyRecordResponse(BaseModel):
    granularity: Granularity
    bucket_start: datetime
    bucket_end: datetime
    generation_kwh: Optional[float] = None
    grid_import_kwh: Optional[float] = None
    battery_kwh: Optional[float] = None
    load_kwh: Optional[float] = None
    efficiency: Optional[float] = None  # null when undefined
    defined: bool
    self_sufficiency: Optional[float] = None
    savings: Optional[float] = None
    co2_avoided_kg: Optional[float] = None
    net_flow_kwh: Optional[float] = None
    generation_change_pct: Optional[float] = None
    load_change_pct: Optional[float] = None
    efficiency_change_pct: Optional[float] = None

    @field_serializer('bucket_start', 'bucket_end')
    def serialize_dt(self, dt: datetime, _info):
        return serialize_utc(dt)

    class Config:
        from_attributes = True


class SnapshotResponse(BaseModel):
    as_of: datetime
    sources: Dict[Source, Optional[BucketResponse]]
    changes: Dict[Source, Optional[float]] = {}  # percent vs the hour before
    efficiency: Optional[EfficiencyRecordResponse] = None

    @field_serializer('as_of')
    def serialize_dt(self, dt: datetime, _info):
        return serialize_utc(dt)


class SeriesPoint(BaseModel):
    timestamp: datetime
    value: Optional[float] = None
    sum_kwh: Optional[float] = None
    min_kw: Optional[float] = None
    max_kw: Optional[float] = None
    sample_count: int
    provisional: bool

    @field_serializer('timestamp')
    def serialize_dt(self, dt: datetime, _info):
        return serialize_utc(dt)


class SeriesResponse(BaseModel):
    granularity: Granularity
    start: datetime
    end: datetime
    series: Dict[Source, List[SeriesPoint]]

    @field_serializer('start', 'end')
    def serialize_dt(self, dt: datetime, _info):
        return serialize_utc(dt)
