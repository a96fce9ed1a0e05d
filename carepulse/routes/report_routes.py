import logging
from datetime import datetime

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from carepulse.models.appointment import Appointment
from carepulse.models.report import Report
from carepulse.routes.common import (
    database_unavailable,
    ensure_database_ready,
    get_db,
    storage_unavailable,
    view_url_or_none,
)
from carepulse.services import storage

router = APIRouter(tags=['reports'])

logger = logging.getLogger(__name__)

DEFAULT_REPORT_TYPE = 'Other'
MAX_REPORT_TYPE_LENGTH = 60


class ReportResponse(BaseModel):
    id: int
    appointment_id: int
    file_name: str | None = None
    type: str
    content_type: str | None = None
    url: str | None = None
    uploaded_at: datetime


class ReportUpdateItem(BaseModel):
    id: int
    type: str | None = None
    file_name: str | None = None

    @field_validator('type')
    @classmethod
    def validate_type(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        if len(normalized) > MAX_REPORT_TYPE_LENGTH:
            raise ValueError(f'Report type must be {MAX_REPORT_TYPE_LENGTH} characters or fewer.')
        return normalized or DEFAULT_REPORT_TYPE


class UpdateReportsRequest(BaseModel):
    reports: list[ReportUpdateItem]


def to_report_response(report: Report) -> ReportResponse:
    return ReportResponse(
        id=report.id,
        appointment_id=report.appointment_id,
        file_name=report.file_name,
        type=report.report_type or DEFAULT_REPORT_TYPE,
        content_type=report.content_type,
        url=view_url_or_none(report.storage_key),
        uploaded_at=report.uploaded_at,
    )


def list_reports_for(appointment_id: int, db: Session) -> list[ReportResponse]:
    reports = db.query(Report).filter(
        Report.appointment_id == appointment_id,
    ).order_by(Report.uploaded_at.asc(), Report.id.asc()).all()
    return [to_report_response(report) for report in reports]


def ensure_appointment_exists(appointment_id: int, db: Session) -> None:
    exists = db.query(Appointment.id).filter(Appointment.id == appointment_id).first()
    if not exists:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Appointment not found.',
        )


def delete_stored_files(keys: list[str]) -> None:
    # Call only after the rows referencing these keys are committed away.
    for key in keys:
        try:
            storage.delete_file(key)
        except storage.StorageError:
            logger.warning('Could not delete stored file %s', key)


def delete_reports_for_appointments(appointment_ids: list[int], db: Session) -> list[str]:
    """Delete the report rows for ``appointment_ids`` and return their storage keys."""
    if not appointment_ids:
        return []

    reports = db.query(Report).filter(Report.appointment_id.in_(appointment_ids)).all()
    for report in reports:
        db.delete(report)
    return [report.storage_key for report in reports if report.storage_key]


@router.post('/{appointment_id}/reports', response_model=list[ReportResponse], status_code=status.HTTP_201_CREATED)
def upload_report(
    appointment_id: int,
    file: UploadFile | None = File(default=None),
    report_type: str | None = Form(default=None, alias='type'),
    db: Session = Depends(get_db),
):
    if file is None or not file.filename:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='No file provided.',
        )

    ensure_database_ready()

    try:
        ensure_appointment_exists(appointment_id, db)

        try:
            key = storage.upload_file(
                file.file.read(),
                storage.build_object_key(f'reports/{appointment_id}', file.filename),
                file.content_type,
            )
        except storage.StorageError as exc:
            raise storage_unavailable() from exc

        report = Report(
            appointment_id=appointment_id,
            storage_key=key,
            file_name=file.filename,
            report_type=(report_type or '').strip()[:MAX_REPORT_TYPE_LENGTH] or DEFAULT_REPORT_TYPE,
            content_type=file.content_type,
        )
        db.add(report)
        db.commit()

        logger.info('Uploaded report %s for appointment %s', report.id, appointment_id)
        return list_reports_for(appointment_id, db)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/{appointment_id}/reports', response_model=list[ReportResponse])
def list_reports(appointment_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        ensure_appointment_exists(appointment_id, db)
        return list_reports_for(appointment_id, db)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.put('/{appointment_id}/reports', response_model=list[ReportResponse])
def update_reports(appointment_id: int, data: UpdateReportsRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        ensure_appointment_exists(appointment_id, db)

        existing = {
            report.id: report
            for report in db.query(Report).filter(Report.appointment_id == appointment_id).all()
        }
        unknown_ids = sorted({item.id for item in data.reports} - existing.keys())
        if unknown_ids:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f'Unknown report ids: {unknown_ids}',
            )

        kept_ids = set()
        for item in data.reports:
            report = existing[item.id]
            if item.type is not None:
                report.report_type = item.type
            if item.file_name is not None and item.file_name.strip():
                report.file_name = item.file_name.strip()
            kept_ids.add(item.id)

        removed_keys = []
        for report_id, report in existing.items():
            if report_id not in kept_ids:
                if report.storage_key:
                    removed_keys.append(report.storage_key)
                db.delete(report)

        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    delete_stored_files(removed_keys)

    try:
        return list_reports_for(appointment_id, db)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
