from sqlalchemy import Column, Integer, String, Float, DateTime, Enum
import enum

from microgrid.database import Base
from microgrid.timeutils import utcnow


class Impact(str, enum.Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"

    @property
    def rank(self) -> int:
        return IMPACT_RANK[self]


IMPACT_RANK = {Impact.LOW: 0, Impact.MEDIUM: 1, Impact.HIGH: 2}


class PatternRecord(Base):
    """A consumption pattern reported by the learning model. One row per name."""
    __tablename__ = "pattern_records"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, nullable=False, index=True)
    frequency_pct = Column(Float, nullable=False)
    impact = Column(Enum(Impact), nullable=False)
    last_seen_at = Column(DateTime, nullable=False)

    first_seen_at = Column(DateTime, nullable=False, default=utcnow)
    observation_count = Column(Integer, nullable=False, default=1)

    def __repr__(self):
        return f"<PatternRecord(name='{self.name}', frequency_pct={self.frequency_pct}, impact='{self.impact.value}')>"
