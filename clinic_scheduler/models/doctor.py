"""Doctor and working hours model definitions."""

from sqlalchemy import Boolean, Column, ForeignKey, Index, Integer, Numeric, String, Time, text
from clinic_scheduler.database import Base


class Doctor(Base):
    """Represents a doctor that can be booked."""
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    name = Column(String, nullable=False)
    specialty = Column(String, nullable=False, index=True)
    consultation_duration = Column(Integer, nullable=False, default=30)  # minutes
    buffer_interval = Column(Integer, nullable=False, default=0)  # minutes
    consultation_price = Column(Numeric(10, 2), nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=True)


class WorkingHours(Base):
    """Recurring weekly working window; weekday 0 is Sunday."""
    __tablename__ = "working_hours"
    __table_args__ = (
        Index(
            "uq_working_hours_active_weekday",
            "doctor_id",
            "weekday",
            unique=True,
            sqlite_where=text("active"),
            postgresql_where=text("active"),
        ),
    )

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)
    weekday = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=True)
