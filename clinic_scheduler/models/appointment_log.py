"""Appointment audit log model definitions."""

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, func
from clinic_scheduler.database import Base


class AppointmentLog(Base):
    """One row per ledger action, written in the same transaction."""
    __tablename__ = "appointment_logs"

    id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)
    action = Column(String, nullable=False)
    details = Column(JSON)
    created_at = Column(DateTime, server_default=func.now())
