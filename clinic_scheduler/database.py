import os
from dotenv import load_dotenv
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from clinic_scheduler.core import config


load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./clinic_scheduler.db")

engine = create_engine(DATABASE_URL, echo=config.SQL_ECHO, pool_pre_ping=True)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_scheduling_schema_checked = False

ACTIVE_SLOT_INDEX = (
    "CREATE UNIQUE INDEX IF NOT EXISTS uq_appointments_active_slot "
    "ON appointments(doctor_id, date, start_time) "
    "WHERE status IN ('scheduled', 'confirmed')"
)
ACTIVE_WORKING_HOURS_INDEX = (
    "CREATE UNIQUE INDEX IF NOT EXISTS uq_working_hours_active_weekday "
    "ON working_hours(doctor_id, weekday) "
    "WHERE active"
)


def ensure_scheduling_schema(bind=None) -> None:
    """Create the partial unique indexes on existing tables if they are missing."""
    global _scheduling_schema_checked

    if _scheduling_schema_checked and bind is None:
        return

    target = bind or engine

    with _schema_lock:
        if _scheduling_schema_checked and bind is None:
            return

        inspector = inspect(target)
        table_names = inspector.get_table_names()

        with target.begin() as connection:
            if 'appointments' in table_names:
                connection.execute(text(ACTIVE_SLOT_INDEX))
                connection.execute(
                    text('CREATE INDEX IF NOT EXISTS idx_appointments_doctor_date ON appointments(doctor_id, date, status)')
                )

            if 'working_hours' in table_names:
                connection.execute(text(ACTIVE_WORKING_HOURS_INDEX))

        if bind is None:
            _scheduling_schema_checked = True


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
