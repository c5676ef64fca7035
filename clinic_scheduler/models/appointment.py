"""Appointment model definitions."""

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Time, func, text
from clinic_scheduler.database import Base


class Appointment(Base):
    """Represents a booked appointment. Rows are never deleted."""
    __tablename__ = "appointments"
    __table_args__ = (
        Index(
            "uq_appointments_active_slot",
            "doctor_id",
            "date",
            "start_time",
            unique=True,
            sqlite_where=text("status IN ('scheduled', 'confirmed')"),
            postgresql_where=text("status IN ('scheduled', 'confirmed')"),
        ),
        Index("idx_appointments_doctor_date", "doctor_id", "date", "status"),
    )

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=True)
    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    status = Column(String, nullable=False, default="scheduled")
    urgency = Column(Integer, nullable=False, default=3)
    consultation_type = Column(String)
    notes = Column(String)
    price = Column(Numeric(10, 2))
    cancellation_reason = Column(String)
    rebooked_from_id = Column(Integer, ForeignKey("appointments.id"), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
