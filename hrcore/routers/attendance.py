from datetime import date, time

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from hrcore.clock import local_today
from hrcore.db import get_db
from hrcore.models import AttendanceRecord, EmployeeRole
from hrcore.schemas import (
    AttendanceCheckoutResponse,
    AttendanceMarkResponse,
    AttendanceOverviewResponse,
    AttendanceRecordRead,
    GeoReadingRequest,
    NotificationRead,
    TeamAttendanceRead,
    TeamWorkHoursRead,
)
from hrcore.security import Principal, ensure_self_or_admin, get_current_principal, require_roles
from hrcore.services.attendance import (
    get_attendance,
    list_team_attendance,
    list_team_work_hours,
    mark_attendance,
    mark_checkout,
)
from hrcore.services.location import GeoReading
from hrcore.services.notifications import list_notifications
from hrcore.settings import CoreConfig, get_core_config

router = APIRouter(tags=["attendance"])

require_team_viewer = require_roles(EmployeeRole.MANAGER, EmployeeRole.HR, EmployeeRole.ADMIN)


def _hhmm(value: time | None) -> str | None:
    if value is None:
        return None
    return value.strftime("%H:%M")


def _record_read(record: AttendanceRecord) -> AttendanceRecordRead:
    return AttendanceRecordRead(
        id=record.id,
        user_id=record.user_id,
        attendance_date=record.attendance_date,
        status=record.status,
        check_in=_hhmm(record.check_in_time),
        check_out=_hhmm(record.check_out_time),
        marked_with_geo=bool(record.marked_with_geo),
    )


def _reading(payload: GeoReadingRequest) -> GeoReading:
    return GeoReading(latitude=payload.latitude, longitude=payload.longitude, accuracy=payload.accuracy)


@router.post("/api/employees/{user_id}/attendance/mark", response_model=AttendanceMarkResponse)
def mark(
    user_id: int,
    payload: GeoReadingRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    config: CoreConfig = Depends(get_core_config),
    db: Session = Depends(get_db),
) -> AttendanceMarkResponse:
    ensure_self_or_admin(principal, user_id)
    request.state.employee_id = user_id
    record = mark_attendance(
        db,
        user_id=user_id,
        reading=_reading(payload),
        config=config,
        actor_id=principal.id,
        request_id=getattr(request.state, "request_id", None),
    )
    return AttendanceMarkResponse(ok=True, record=_record_read(record))


@router.post("/api/employees/{user_id}/attendance/checkout", response_model=AttendanceCheckoutResponse)
def checkout(
    user_id: int,
    payload: GeoReadingRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    config: CoreConfig = Depends(get_core_config),
    db: Session = Depends(get_db),
) -> AttendanceCheckoutResponse:
    ensure_self_or_admin(principal, user_id)
    request.state.employee_id = user_id
    record, hours = mark_checkout(
        db,
        user_id=user_id,
        reading=_reading(payload),
        config=config,
        actor_id=principal.id,
        request_id=getattr(request.state, "request_id", None),
    )
    return AttendanceCheckoutResponse(
        ok=True,
        record=_record_read(record),
        total_hours=float(hours.total_hours),
        duration=hours.duration_label,
        is_late=hours.is_late,
        is_left_early=hours.is_left_early,
    )


@router.get("/api/employees/{user_id}/attendance", response_model=AttendanceOverviewResponse)
def attendance_overview(
    user_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> AttendanceOverviewResponse:
    ensure_self_or_admin(principal, user_id)
    today_record, records = get_attendance(db, user_id=user_id, today=local_today())
    return AttendanceOverviewResponse(
        user_id=user_id,
        today=_record_read(today_record) if today_record is not None else None,
        history=[_record_read(item) for item in records],
    )


@router.get("/api/employees/{user_id}/notifications", response_model=list[NotificationRead])
def notifications_feed(
    user_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> list[NotificationRead]:
    ensure_self_or_admin(principal, user_id)
    return [NotificationRead.model_validate(item) for item in list_notifications(db, user_id=user_id)]


@router.get("/api/team/attendance", response_model=list[TeamAttendanceRead])
def team_attendance(
    since: date | None = Query(default=None, alias="from"),
    until: date | None = Query(default=None, alias="to"),
    principal: Principal = Depends(require_team_viewer),
    db: Session = Depends(get_db),
) -> list[TeamAttendanceRead]:
    items = list_team_attendance(db, viewer=principal, since=since, until=until)
    return [
        TeamAttendanceRead(
            **_record_read(item.record).model_dump(),
            employee_name=item.employee_name,
            employee_email=item.employee_email,
        )
        for item in items
    ]


@router.get("/api/team/work-hours", response_model=list[TeamWorkHoursRead])
def team_work_hours(
    since: date | None = Query(default=None, alias="from"),
    until: date | None = Query(default=None, alias="to"),
    principal: Principal = Depends(require_team_viewer),
    db: Session = Depends(get_db),
) -> list[TeamWorkHoursRead]:
    return [
        TeamWorkHoursRead(
            attendance_id=item.work_hours.attendance_id,
            user_id=item.work_hours.user_id,
            employee_name=item.employee_name,
            employee_email=item.employee_email,
            work_date=item.work_hours.work_date,
            check_in=_hhmm(item.work_hours.check_in_time) or "",
            check_out=_hhmm(item.work_hours.check_out_time) or "",
            total_hours=float(item.work_hours.total_hours),
            overtime_hours=float(item.overtime_hours),
            is_late=bool(item.work_hours.is_late),
            is_left_early=bool(item.work_hours.is_left_early),
        )
        for item in list_team_work_hours(db, viewer=principal, since=since, until=until)
    ]
