from pydantic import BaseModel, field_serializer
from datetime import datetime
from typing import List, Optional

from microgrid.schemas.common import serialize_utc


class PredictionBase(BaseModel):
    timestamp: datetime
    predicted_kw: float
    confidence_pct: float


class PredictionCreate(PredictionBase):
    pass


class PredictionResolve(BaseModel):
    timestamp: datetime
    actual_kw: float


class PredictionResponse(PredictionBase):
    id: int
    actual_kw: Optional[float] = None
    status: str
    submitted_at: datetime
    resolved_at: Optional[datetime] = None

    @field_serializer('timestamp', 'submitted_at', 'resolved_at')
    def serialize_dt(self, dt: Optional[datetime], _info):
        return serialize_utc(dt)

    class Config:
        from_attributes = True


class ComparisonPoint(BaseModel):
    timestamp: datetime
    predicted: float
    actual: float
    confidence: float

    @field_serializer('timestamp')
    def serialize_dt(self, dt: datetime, _info):
        return serialize_utc(dt)


class ForecastPoint(BaseModel):
    """A prediction whose actual load is not known yet."""
    timestamp: datetime
    predicted: float
    confidence: float

    @field_serializer('timestamp')
    def serialize_dt(self, dt: datetime, _info):
        return serialize_utc(dt)


class AccuracyReport(BaseModel):
    insufficient_data: bool
    sample_count: int
    mean_absolute_percent_error: Optional[float] = None
    accuracy_pct: Optional[float] = None
    resolved_count: int
    pending_count: int
    mean_confidence_pct: Optional[float] = None


class AccuracyPoint(BaseModel):
    bucket_start: datetime
    bucket_end: datetime
    insufficient_data: bool
    sample_count: int
    mean_absolute_percent_error: Optional[float] = None
    accuracy_pct: Optional[float] = None

    @field_serializer('bucket_start', 'bucket_end')
    def serialize_dt(self, dt: datetime, _info):
        return serialize_utc(dt)


class PredictionComparisonResponse(BaseModel):
    points: List[ComparisonPoint]
    forecast: List[ForecastPoint]
    accuracy: AccuracyReport
    peak: Optional[PredictionResponse] = None


class ConfidenceDecayRow(BaseModel):
    lead_hours: int
    count: int
    mean_confidence_pct: float
    mean_absolute_percent_error: Optional[float] = None
    scored_count: int


class ReconcileResult(BaseModel):
    resolved: int
