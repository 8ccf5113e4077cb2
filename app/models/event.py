# SQLAlchemy models

from sqlalchemy import BigInteger, Column, DateTime, Index, Integer, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class MachineEventRow(Base):
    __tablename__ = "machine_events"

    event_id = Column(String, primary_key=True)
    machine_id = Column(String, nullable=False)
    event_time = Column(DateTime(timezone=True), nullable=False, index=True)
    received_time = Column(DateTime(timezone=True), nullable=False)
    duration_ms = Column(BigInteger, nullable=False)
    defect_count = Column(Integer, nullable=False)

    __table_args__ = (
        # Stats queries filter by machine within a time window
        Index('idx_machine_event_time', 'machine_id', 'event_time'),
    )
