from datetime import date, datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy import case, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from carepulse.auth.dependencies import require_admin
from carepulse.models.appointment import Appointment
from carepulse.routes.common import database_unavailable, ensure_database_ready, get_db

router = APIRouter(tags=['analytics'])

UNKNOWN_DOCTOR = 'Unknown'
CANCELLED_STATUS = 'cancelled'


class DoctorAnalyticsResponse(BaseModel):
    doctor: str
    appointments: int
    cancellations: int


class AdminAnalyticsResponse(BaseModel):
    total_appointments: int
    total_cancellations: int
    doctor_stats: list[DoctorAnalyticsResponse]


def summarize_by_doctor(rows: list[tuple[str | None, int, int]], doctor: str | None = None) -> AdminAnalyticsResponse:
    totals: dict[str, list[int]] = {}
    for doctor_name, appointments, cancellations in rows:
        name = doctor_name or UNKNOWN_DOCTOR
        if doctor and name != doctor:
            continue
        counts = totals.setdefault(name, [0, 0])
        counts[0] += int(appointments or 0)
        counts[1] += int(cancellations or 0)

    doctor_stats = [
        DoctorAnalyticsResponse(doctor=name, appointments=counts[0], cancellations=counts[1])
        for name, counts in sorted(totals.items())
    ]
    return AdminAnalyticsResponse(
        total_appointments=sum(stat.appointments for stat in doctor_stats),
        total_cancellations=sum(stat.cancellations for stat in doctor_stats),
        doctor_stats=doctor_stats,
    )


@router.get('', response_model=AdminAnalyticsResponse)
def get_admin_analytics(
    doctor: str | None = Query(default=None),
    start_date: date | None = Query(default=None, alias='startDate'),
    end_date: date | None = Query(default=None, alias='endDate'),
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
):
    if start_date and end_date and end_date < start_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='endDate must not be before startDate.',
        )

    ensure_database_ready()

    try:
        is_cancelled = Appointment.status == CANCELLED_STATUS
        query = db.query(
            Appointment.primary_physician,
            func.sum(case((is_cancelled, 0), else_=1)),
            func.sum(case((is_cancelled, 1), else_=0)),
        )
        # Both bounds are whole days, end inclusive.
        if start_date:
            query = query.filter(Appointment.schedule >= datetime.combine(start_date, datetime.min.time()))
        if end_date:
            end_exclusive = datetime.combine(end_date + timedelta(days=1), datetime.min.time())
            query = query.filter(Appointment.schedule < end_exclusive)
        rows = query.group_by(Appointment.primary_physician).all()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return summarize_by_doctor(rows, (doctor or '').strip() or None)
