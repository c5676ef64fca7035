from datetime import time

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_scheduler.auth.dependencies import get_current_user, require_staff
from clinic_scheduler.database import ensure_scheduling_schema, get_db
from clinic_scheduler.models.doctor import Doctor, WorkingHours
from clinic_scheduler.models.room import Room
from clinic_scheduler.models.user import User

router = APIRouter(tags=['doctors'])

WEEKDAY_NAMES = ['Sunday', 'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday']


class CreateWorkingHoursRequest(BaseModel):
    weekday: int
    start_time: time
    end_time: time
    room_id: int | None = None

    @field_validator('weekday')
    @classmethod
    def validate_weekday(cls, value: int) -> int:
        if not 0 <= value <= 6:
            raise ValueError('Weekday must be between 0 (Sunday) and 6 (Saturday).')
        return value

    @model_validator(mode='after')
    def validate_range(self) -> 'CreateWorkingHoursRequest':
        if self.start_time >= self.end_time:
            raise ValueError('start_time must be before end_time.')
        return self


class WorkingHoursResponse(BaseModel):
    id: int
    doctor_id: int
    weekday: int
    weekday_name: str
    start_time: time
    end_time: time
    active: bool
    room_id: int | None = None


def working_hours_response(working_hours: WorkingHours) -> WorkingHoursResponse:
    return WorkingHoursResponse(
        id=working_hours.id,
        doctor_id=working_hours.doctor_id,
        weekday=working_hours.weekday,
        weekday_name=WEEKDAY_NAMES[working_hours.weekday],
        start_time=working_hours.start_time,
        end_time=working_hours.end_time,
        active=bool(working_hours.active),
        room_id=working_hours.room_id,
    )


def ensure_database_ready() -> None:
    try:
        ensure_scheduling_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Database unavailable. Verify DATABASE_URL and Postgres credentials.',
        ) from exc


@router.get('/{doctor_id}/working-hours', response_model=list[WorkingHoursResponse])
def list_working_hours(
    doctor_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    del current_user
    ensure_database_ready()

    try:
        rows = db.query(WorkingHours).filter(
            WorkingHours.doctor_id == doctor_id,
            WorkingHours.active.is_(True),
        ).order_by(WorkingHours.weekday.asc()).all()

        return [working_hours_response(row) for row in rows]
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Database unavailable. Verify DATABASE_URL and Postgres credentials.',
        ) from exc


@router.post('/{doctor_id}/working-hours', response_model=WorkingHoursResponse, status_code=status.HTTP_201_CREATED)
def create_working_hours(
    doctor_id: int,
    data: CreateWorkingHoursRequest,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        doctor = db.get(Doctor, doctor_id)
        if not doctor:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Doctor not found.',
            )

        if (current_user.role or '').lower() != 'admin' and doctor.user_id != current_user.id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='Only admins or the doctor can change these working hours.',
            )

        if data.room_id is not None:
            room = db.get(Room, data.room_id)
            if not room or not room.active:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail='Room not found.',
                )

        existing = db.query(WorkingHours).filter(
            WorkingHours.doctor_id == doctor_id,
            WorkingHours.weekday == data.weekday,
            WorkingHours.active.is_(True),
        ).first()
        if existing:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='Working hours already exist for this weekday.',
            )

        working_hours = WorkingHours(
            doctor_id=doctor_id,
            weekday=data.weekday,
            start_time=data.start_time,
            end_time=data.end_time,
            active=True,
            room_id=data.room_id,
        )
        db.add(working_hours)
        db.commit()
        db.refresh(working_hours)

        return working_hours_response(working_hours)
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail='Working hours already exist for this weekday.',
        ) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Database unavailable. Verify DATABASE_URL and Postgres credentials.',
        ) from exc
