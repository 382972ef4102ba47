from sqlalchemy import Column, Integer, Float, DateTime, Enum, Index, UniqueConstraint
import enum

from microgrid.database import Base
from microgrid.timeutils import utcnow


class Source(str, enum.Enum):
    SOLAR = "solar"
    GRID = "grid"
    BATTERY = "battery"
    LOAD = "load"


class Reading(Base):
    """A raw power sample from a meter, inverter or battery controller. Never updated."""
    __tablename__ = "readings"

    id = Column(Integer, primary_key=True, index=True)
    source = Column(Enum(Source), nullable=False)
    timestamp = Column(DateTime, nullable=False)  # UTC
    value_kw = Column(Float, nullable=False)

    # Ingestion time
    received_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint('source', 'timestamp', name='uq_readings_source_timestamp'),
        Index('ix_readings_source_timestamp', 'source', 'timestamp'),
        Index('ix_readings_source_received_at', 'source', 'received_at'),
    )

    def __repr__(self):
        return f"<Reading(source='{self.source.value}', timestamp='{self.timestamp}', value_kw={self.value_kw})>"
