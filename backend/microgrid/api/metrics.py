from fastapi import APIRouter, Depends, Query
from datetime import datetime
from typing import Callable, List, Optional

from microgrid.api.deps import get_clock, get_facade, resolve_range
from microgrid.models import Source
from microgrid.schemas import BucketResponse, EfficiencyRecordResponse, SeriesResponse, SnapshotResponse
from microgrid.services.facade import MetricsFacade
from microgrid.timeutils import Granularity

router = APIRouter()


@router.get("/current", response_model=SnapshotResponse)
async def get_current_metrics(facade: MetricsFacade = Depends(get_facade)):
    """Latest complete hourly bucket per source plus the latest defined efficiency."""
    snapshot = facade.current_snapshot()
    efficiency = snapshot["efficiency"]
    return SnapshotResponse(
        as_of=snapshot["as_of"],
        sources={
            source: BucketResponse.model_validate(bucket) if bucket else None
            for source, bucket in snapshot["sources"].items()
        },
        changes=snapshot["changes"],
        efficiency=EfficiencyRecordResponse.model_validate(efficiency) if efficiency else None,
    )


@router.get("/series", response_model=SeriesResponse)
async def get_series(
    sources: List[Source] = Query(list(Source)),
    granularity: Granularity = Query(Granularity.HOURLY),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    facade: MetricsFacade = Depends(get_facade),
    clock: Callable[[], datetime] = Depends(get_clock)
):
    """Bucketed series for charting. Windows without data come back provisional with a null value."""
    start, end = resolve_range(start, end, granularity, clock)
    return facade.series(sources, granularity, start, end)


@router.get("/efficiency", response_model=List[EfficiencyRecordResponse])
async def get_efficiency_history(
    granularity: Granularity = Query(Granularity.MONTHLY),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    facade: MetricsFacade = Depends(get_facade),
    clock: Callable[[], datetime] = Depends(get_clock)
):
    """Consumption, generation, savings and efficiency per window for the history view."""
    start, end = resolve_range(start, end, granularity, clock)
    return [
        EfficiencyRecordResponse.model_validate(record)
        for record in facade.efficiency_history(granularity, start, end)
    ]
