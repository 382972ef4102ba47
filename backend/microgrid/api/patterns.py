from fastapi import APIRouter, Depends, Query
from typing import List, Literal

from microgrid.api.deps import get_facade, get_registry
from microgrid.schemas import PatternCreate, PatternResponse
from microgrid.services.facade import MetricsFacade
from microgrid.services.pattern_registry import PatternRegistry

router = APIRouter()


@router.post("", response_model=PatternResponse)
async def submit_pattern(
    pattern: PatternCreate,
    registry: PatternRegistry = Depends(get_registry)
):
    """Record a pattern observation. An existing name is updated in place."""
    return registry.upsert(pattern.name, pattern.frequency_pct, pattern.impact, seen_at=pattern.seen_at)


@router.get("", response_model=List[PatternResponse])
async def list_patterns(
    sort_by: Literal["frequency", "impact"] = Query("frequency"),
    facade: MetricsFacade = Depends(get_facade)
):
    """Learned patterns, highest first."""
    return facade.patterns(sort_by=sort_by)
