from microgrid.models.reading import Reading, Source
from microgrid.models.prediction import PredictionEntry
from microgrid.models.pattern import PatternRecord, Impact

__all__ = [
    "Reading",
    "Source",
    "PredictionEntry",
    "PatternRecord",
    "Impact",
]
