from fastapi import APIRouter, Depends, UploadFile, File, Query
from datetime import datetime
from typing import List, Optional

from microgrid.api.deps import get_store
from microgrid.models import Source
from microgrid.schemas import ReadingCreate, ReadingResponse, ReadingUploadResult
from microgrid.services.sample_store import SampleStore

router = APIRouter()


@router.post("", response_model=ReadingResponse, status_code=201)
async def submit_reading(
    reading: ReadingCreate,
    store: SampleStore = Depends(get_store)
):
    """Store one raw reading. Late data is accepted; clock-skewed future data is not."""
    return store.append(reading.source, reading.timestamp, reading.value_kw)


@router.post("/upload", response_model=ReadingUploadResult)
async def upload_readings(
    file: UploadFile = File(...),
    source: Optional[Source] = Query(None, description="Source for files without a source column"),
    store: SampleStore = Depends(get_store)
):
    """
    Upload meter readings as CSV.
    Expected columns: timestamp, kw (and optionally source).
    Readings already stored with the same value are skipped; a different value is rejected.
    """
    content = await file.read()
    text = content.decode('utf-8-sig')
    return store.process_readings_csv(text, source=source.value if source else None)


@router.get("", response_model=List[ReadingResponse])
async def list_readings(
    source: Source = Query(...),
    start: datetime = Query(...),
    end: datetime = Query(...),
    limit: int = Query(5000, le=50000),
    store: SampleStore = Depends(get_store)
):
    """Raw readings for one source in [start, end), oldest first."""
    readings = []
    for reading in store.query(source, start, end):
        if len(readings) >= limit:
            break
        readings.append(reading)
    return readings
