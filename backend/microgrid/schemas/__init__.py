from microgrid.schemas.reading import ReadingCreate, ReadingResponse, ReadingUploadResult
from microgrid.schemas.metrics import BucketResponse, EfficiencyRecordResponse, SnapshotResponse, SeriesPoint, SeriesResponse
from microgrid.schemas.prediction import (
    PredictionCreate, PredictionResolve, PredictionResponse, PredictionComparisonResponse,
    AccuracyReport, AccuracyPoint, ConfidenceDecayRow, ReconcileResult,
)
from microgrid.schemas.pattern import PatternCreate, PatternResponse

__all__ = [
    "ReadingCreate", "ReadingResponse", "ReadingUploadResult",
    "BucketResponse", "EfficiencyRecordResponse", "SnapshotResponse", "SeriesPoint", "SeriesResponse",
    "PredictionCreate", "PredictionResolve", "PredictionResponse", "PredictionComparisonResponse",
    "AccuracyReport", "AccuracyPoint", "ConfidenceDecayRow", "ReconcileResult",
    "PatternCreate", "PatternResponse",
]
