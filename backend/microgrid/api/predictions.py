from fastapi import APIRouter, Depends, Query
from datetime import datetime
from typing import Callable, List, Optional

from microgrid.api.deps import get_clock, get_facade, get_ledger, resolve_range
from microgrid.schemas import (
    AccuracyPoint, ConfidenceDecayRow, PredictionComparisonResponse, PredictionCreate,
    PredictionResolve, PredictionResponse, ReconcileResult,
)
from microgrid.services.facade import MetricsFacade
from microgrid.services.prediction_ledger import PredictionLedger
from microgrid.timeutils import Granularity

router = APIRouter()


@router.post("", response_model=PredictionResponse, status_code=201)
async def submit_prediction(
    prediction: PredictionCreate,
    ledger: PredictionLedger = Depends(get_ledger)
):
    """Record a forecast point. Each timestamp can be predicted only once."""
    return ledger.submit(prediction.timestamp, prediction.predicted_kw, prediction.confidence_pct)


@router.post("/resolve", response_model=PredictionResponse)
async def resolve_prediction(
    resolution: PredictionResolve,
    ledger: PredictionLedger = Depends(get_ledger)
):
    """Attach the realized load to a pending prediction."""
    return ledger.resolve(resolution.timestamp, resolution.actual_kw)


@router.post("/reconcile", response_model=ReconcileResult)
async def reconcile_predictions(ledger: PredictionLedger = Depends(get_ledger)):
    """Resolve pending predictions from recorded load now instead of waiting for the scheduled pass."""
    return {"resolved": ledger.reconcile()}


@router.get("/comparison", response_model=PredictionComparisonResponse)
async def get_prediction_comparison(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    facade: MetricsFacade = Depends(get_facade),
    clock: Callable[[], datetime] = Depends(get_clock)
):
    """Predicted vs actual load, with pending forecasts listed separately."""
    start, end = resolve_range(start, end, Granularity.HOURLY, clock)
    comparison = facade.prediction_comparison(start, end)
    peak = comparison["peak"]
    return {
        **comparison,
        "peak": PredictionResponse.model_validate(peak) if peak else None,
    }


@router.get("/accuracy", response_model=List[AccuracyPoint])
async def get_accuracy_trend(
    granularity: Granularity = Query(Granularity.DAILY),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    facade: MetricsFacade = Depends(get_facade),
    clock: Callable[[], datetime] = Depends(get_clock)
):
    """Forecast accuracy per window."""
    start, end = resolve_range(start, end, granularity, clock)
    return facade.accuracy_trend(granularity, start, end)


@router.get("/confidence-decay", response_model=List[ConfidenceDecayRow])
async def get_confidence_decay(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    facade: MetricsFacade = Depends(get_facade),
    clock: Callable[[], datetime] = Depends(get_clock)
):
    """Confidence and realized error grouped by how far ahead the forecast was made."""
    start, end = resolve_range(start, end, Granularity.DAILY, clock)
    return facade.confidence_decay(start, end)
