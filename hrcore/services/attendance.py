from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hrcore.audit import log_audit
from hrcore.clock import local_now
from hrcore.errors import ApiError, ConflictError, NotFoundError, UnauthorizedError
from hrcore.models import AttendanceRecord, AttendanceStatus, Employee, EmployeeRole, LeaveType, WorkHoursRecord
from hrcore.security import Principal
from hrcore.services.leaves import ORG_WIDE_REVIEWER_ROLES, find_approved_leave_covering
from hrcore.services.location import GeoReading, validate_reading
from hrcore.services.work_hours import WorkHoursResult, upsert_work_hours
from hrcore.settings import CoreConfig

ATTENDANCE_HISTORY_DAYS = 30
STANDARD_WORKDAY_HOURS = Decimal("8")


@dataclass(frozen=True, slots=True)
class TeamAttendanceItem:
    record: AttendanceRecord
    employee_name: str
    employee_email: str


@dataclass(frozen=True, slots=True)
class TeamWorkHoursItem:
    work_hours: WorkHoursRecord
    employee_name: str
    employee_email: str

    @property
    def overtime_hours(self) -> Decimal:
        return max(Decimal("0.00"), Decimal(str(self.work_hours.total_hours)) - STANDARD_WORKDAY_HOURS)


def _resolve_active_employee(db: Session, user_id: int) -> Employee:
    employee = db.get(Employee, user_id)
    if employee is None:
        raise NotFoundError(code="EMPLOYEE_NOT_FOUND", message="Employee not found.")
    if not employee.is_active:
        raise UnauthorizedError(
            code="EMPLOYEE_INACTIVE",
            message="Inactive employee cannot perform attendance actions.",
        )
    return employee


def _record_for_day(db: Session, *, user_id: int, day: date) -> AttendanceRecord | None:
    return db.scalar(
        select(AttendanceRecord).where(
            AttendanceRecord.user_id == user_id,
            AttendanceRecord.attendance_date == day,
        )
    )


def _already_marked_error() -> ConflictError:
    return ConflictError(code="ALREADY_MARKED", message="Attendance already marked for today.")


def is_remote_exempt(db: Session, *, user_id: int, day: date) -> bool:
    return (
        find_approved_leave_covering(
            db,
            user_id=user_id,
            day=day,
            leave_type=LeaveType.WORK_FROM_HOME,
        )
        is not None
    )


def mark_attendance(
    db: Session,
    *,
    user_id: int,
    reading: GeoReading,
    config: CoreConfig,
    now: datetime | None = None,
    actor_id: int | None = None,
    request_id: str | None = None,
) -> AttendanceRecord:
    now_local = now or local_now()
    today = now_local.date()
    _resolve_active_employee(db, user_id)

    if _record_for_day(db, user_id=user_id, day=today) is not None:
        raise _already_marked_error()

    remote_exempt = is_remote_exempt(db, user_id=user_id, day=today)
    geofence = validate_reading(reading, config, remote_exempt=remote_exempt)

    record = AttendanceRecord(
        user_id=user_id,
        attendance_date=today,
        status=AttendanceStatus.PRESENT,
        check_in_time=now_local.time().replace(microsecond=0, tzinfo=None),
        latitude=reading.latitude,
        longitude=reading.longitude,
        geo_accuracy=reading.accuracy,
        marked_with_geo=True,
    )
    db.add(record)
    try:
        db.commit()
    except IntegrityError:
        # Concurrent check-in for the same day won the unique constraint.
        db.rollback()
        raise _already_marked_error()

    log_audit(
        db,
        actor_id=actor_id if actor_id is not None else user_id,
        action="attendance_marked",
        details={
            "user_id": user_id,
            "attendance_id": record.id,
            "date": today.isoformat(),
            "check_in": record.check_in_time.isoformat() if record.check_in_time else None,
            "distance_m": round(geofence.distance_m, 2),
            "remote_exempt": remote_exempt,
        },
        request_id=request_id,
    )
    return record


def mark_checkout(
    db: Session,
    *,
    user_id: int,
    reading: GeoReading,
    config: CoreConfig,
    now: datetime | None = None,
    actor_id: int | None = None,
    request_id: str | None = None,
) -> tuple[AttendanceRecord, WorkHoursResult]:
    now_local = now or local_now()
    today = now_local.date()
    _resolve_active_employee(db, user_id)

    record = _record_for_day(db, user_id=user_id, day=today)
    if record is None:
        raise NotFoundError(code="NO_CHECK_IN_FOUND", message="No check-in found for today.")
    if record.check_out_time is not None:
        raise ConflictError(code="ALREADY_CHECKED_OUT", message="Already checked out for today.")
    if record.check_in_time is None:
        raise NotFoundError(code="MISSING_CHECK_IN", message="Attendance record has no check-in time.")

    remote_exempt = is_remote_exempt(db, user_id=user_id, day=today)
    geofence = validate_reading(reading, config, remote_exempt=remote_exempt)

    checkout_time = now_local.time().replace(microsecond=0, tzinfo=None)
    try:
        result = db.execute(
            update(AttendanceRecord)
            .where(
                AttendanceRecord.id == record.id,
                AttendanceRecord.check_out_time.is_(None),
            )
            .values(check_out_time=checkout_time)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ConflictError(code="ALREADY_CHECKED_OUT", message="Already checked out for today.")
        db.refresh(record)
        _, hours = upsert_work_hours(db, record=record, config=config)
        db.commit()
    except ApiError:
        db.rollback()
        raise

    log_audit(
        db,
        actor_id=actor_id if actor_id is not None else user_id,
        action="attendance_checkout",
        details={
            "user_id": user_id,
            "attendance_id": record.id,
            "date": today.isoformat(),
            "check_out": checkout_time.isoformat(),
            "total_hours": str(hours.total_hours),
            "is_late": hours.is_late,
            "is_left_early": hours.is_left_early,
            "distance_m": round(geofence.distance_m, 2),
        },
        request_id=request_id,
    )
    return record, hours


def get_attendance(
    db: Session,
    *,
    user_id: int,
    today: date,
    days: int = ATTENDANCE_HISTORY_DAYS,
) -> tuple[AttendanceRecord | None, list[AttendanceRecord]]:
    since = today - timedelta(days=days)
    records = list(
        db.scalars(
            select(AttendanceRecord)
            .where(
                AttendanceRecord.user_id == user_id,
                AttendanceRecord.attendance_date >= since,
            )
            .order_by(AttendanceRecord.attendance_date.desc())
        ).all()
    )
    today_record = next((item for item in records if item.attendance_date == today), None)
    return today_record, records


def _team_scope_clause(viewer: Principal):
    if viewer.role in ORG_WIDE_REVIEWER_ROLES:
        return None
    if viewer.role == EmployeeRole.MANAGER:
        return Employee.manager_id == viewer.id
    raise UnauthorizedError(code="FORBIDDEN", message="Insufficient permissions.")


def list_team_attendance(
    db: Session,
    *,
    viewer: Principal,
    since: date | None = None,
    until: date | None = None,
) -> list[TeamAttendanceItem]:
    """Attendance of a manager's direct reports, or of everyone for hr and admin."""
    stmt = (
        select(AttendanceRecord, Employee)
        .join(Employee, AttendanceRecord.user_id == Employee.id)
        .order_by(AttendanceRecord.attendance_date.desc(), Employee.name.asc(), AttendanceRecord.id.asc())
    )
    scope_clause = _team_scope_clause(viewer)
    if scope_clause is not None:
        stmt = stmt.where(scope_clause)
    if since is not None:
        stmt = stmt.where(AttendanceRecord.attendance_date >= since)
    if until is not None:
        stmt = stmt.where(AttendanceRecord.attendance_date <= until)
    return [
        TeamAttendanceItem(record=record, employee_name=employee.name, employee_email=employee.email)
        for record, employee in db.execute(stmt).all()
    ]


def list_team_work_hours(
    db: Session,
    *,
    viewer: Principal,
    since: date | None = None,
    until: date | None = None,
) -> list[TeamWorkHoursItem]:
    stmt = (
        select(WorkHoursRecord, Employee)
        .join(Employee, WorkHoursRecord.user_id == Employee.id)
        .order_by(WorkHoursRecord.work_date.desc(), Employee.name.asc(), WorkHoursRecord.id.asc())
    )
    scope_clause = _team_scope_clause(viewer)
    if scope_clause is not None:
        stmt = stmt.where(scope_clause)
    if since is not None:
        stmt = stmt.where(WorkHoursRecord.work_date >= since)
    if until is not None:
        stmt = stmt.where(WorkHoursRecord.work_date <= until)
    return [
        TeamWorkHoursItem(work_hours=work_hours, employee_name=employee.name, employee_email=employee.email)
        for work_hours, employee in db.execute(stmt).all()
    ]
