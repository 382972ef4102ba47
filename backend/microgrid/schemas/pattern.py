from pydantic import BaseModel, field_serializer
from datetime import datetime
from typing import Optional

from microgrid.models import Impact
from microgrid.schemas.common import serialize_utc


class PatternBase(BaseModel):
    name: str
    frequency_pct: float
    impact: str


class PatternCreate(PatternBase):
    seen_at: Optional[datetime] = None


class PatternResponse(BaseModel):
    name: str
    frequency_pct: float
    impact: Impact
    last_seen_at: datetime
    first_seen_at: datetime
    observation_count: int

    @field_serializer('last_seen_at', 'first_seen_at')
    def serialize_dt(self, dt: datetime, _info):
        return serialize_utc(dt)

    class Config:
        from_attributes = True
