from sqlalchemy import Column, Integer, Float, DateTime
from sqlalchemy.ext.hybrid import hybrid_property

from microgrid.database import Base
from microgrid.timeutils import utcnow


class PredictionEntry(Base):
    """
    One forecast point from the load predictor.
    Pending until an actual load is recorded for its timestamp, then resolved exactly once.
    """
    __tablename__ = "prediction_entries"

    id = Column(Integer, primary_key=True, index=True)
    timestamp = Column(DateTime, nullable=False, unique=True, index=True)
    predicted_kw = Column(Float, nullable=False)
    confidence_pct = Column(Float, nullable=False)
    actual_kw = Column(Float, nullable=True)

    submitted_at = Column(DateTime, nullable=False, default=utcnow)
    resolved_at = Column(DateTime, nullable=True)

    @hybrid_property
    def is_resolved(self):
        return self.resolved_at is not None

    @is_resolved.expression
    def is_resolved(cls):
        return cls.resolved_at.isnot(None)

    @property
    def status(self) -> str:
        return "resolved" if self.is_resolved else "pending"

    @property
    def absolute_percent_error(self):
        if not self.is_resolved or not self.actual_kw:
            return None
        return abs(self.predicted_kw - self.actual_kw) / abs(self.actual_kw) * 100

    def __repr__(self):
        return f"<PredictionEntry(timestamp='{self.timestamp}', predicted_kw={self.predicted_kw}, status='{self.status}')>"
