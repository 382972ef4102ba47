from pydantic import BaseModel, field_serializer
from datetime import datetime
from typing import List

from microgrid.models import Source
from microgrid.schemas.common import serialize_utc


class ReadingBase(BaseModel):
    source: Source
    timestamp: datetime
    value_kw: float


class ReadingCreate(ReadingBase):
    pass


class ReadingResponse(ReadingBase):
    id: int
    received_at: datetime

    @field_serializer('timestamp', 'received_at')
    def serialize_dt(self, dt: datetime, _info):
        return serialize_utc(dt)

    class Config:
        from_attributes = True


class RejectedRow(BaseModel):
    row: int
    error: str


class ReadingUploadResult(BaseModel):
    message: str
    new_readings: int
    skipped_duplicates: int
    rejected: List[RejectedRow] = []
    unparsed_rows: int = 0
    total_processed: int
