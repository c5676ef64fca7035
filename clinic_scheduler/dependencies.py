from functools import lru_cache

from clinic_scheduler.scheduling.events import LoggingEventSink
from clinic_scheduler.scheduling.service import SchedulingService
from clinic_scheduler.scheduling.sql_repository import SqlAlchemyRepository


@lru_cache(maxsize=1)
def get_scheduling_service() -> SchedulingService:
    return SchedulingService(SqlAlchemyRepository(), event_sink=LoggingEventSink())
