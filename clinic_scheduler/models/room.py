"""Room model definitions."""

from sqlalchemy import Boolean, Column, Integer, String
from clinic_scheduler.database import Base


class Room(Base):
    """Represents a consultation room."""
    __tablename__ = "rooms"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    capacity = Column(Integer, nullable=False, default=1)
    active = Column(Boolean, nullable=False, default=True)
