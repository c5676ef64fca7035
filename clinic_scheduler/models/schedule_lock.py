"""Schedule lock model definitions."""

from sqlalchemy import Column, Date, Integer
from clinic_scheduler.database import Base


class ScheduleLock(Base):
    """Row locked FOR UPDATE to serialize bookings of one doctor on one date."""
    __tablename__ = "schedule_locks"

    doctor_id = Column(Integer, primary_key=True)
    date = Column(Date, primary_key=True)
