from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from hrcore.errors import ValidationError
from hrcore.models import AttendanceRecord, WorkHoursRecord
from hrcore.settings import CoreConfig

_HOURS_QUANTUM = Decimal("0.01")


@dataclass(frozen=True, slots=True)
class WorkHoursResult:
    total_minutes: int
    total_hours: Decimal
    is_late: bool
    is_left_early: bool

    @property
    def duration_label(self) -> str:
        return f"{self.total_minutes // 60:02d}:{self.total_minutes % 60:02d}"


def calculate_work_hours(
    work_date: date,
    check_in: time,
    check_out: time,
    *,
    late_cutoff: time,
    early_cutoff: time,
) -> WorkHoursResult:
    start = datetime.combine(work_date, check_in)
    end = datetime.combine(work_date, check_out)
    if end < start:
        raise ValidationError(
            code="INVALID_TIME_RANGE",
            message="Check-out time cannot be earlier than check-in time.",
            details={"check_in": check_in.isoformat(), "check_out": check_out.isoformat()},
        )

    total_minutes = int((end - start).total_seconds() // 60)
    total_hours = (Decimal(total_minutes) / Decimal(60)).quantize(_HOURS_QUANTUM, rounding=ROUND_HALF_UP)
    return WorkHoursResult(
        total_minutes=total_minutes,
        total_hours=total_hours,
        is_late=check_in > late_cutoff,
        is_left_early=check_out < early_cutoff,
    )


def upsert_work_hours(
    db: Session,
    *,
    record: AttendanceRecord,
    config: CoreConfig,
) -> tuple[WorkHoursRecord, WorkHoursResult]:
    """Derive and stage the work-hours row for a checked-out record. Caller commits."""
    if record.check_in_time is None or record.check_out_time is None:
        raise ValidationError(
            code="INVALID_TIME_RANGE",
            message="Both check-in and check-out are required to compute work hours.",
        )

    result = calculate_work_hours(
        record.attendance_date,
        record.check_in_time,
        record.check_out_time,
        late_cutoff=config.late_cutoff,
        early_cutoff=config.early_cutoff,
    )

    work_hours = db.scalar(select(WorkHoursRecord).where(WorkHoursRecord.attendance_id == record.id))
    if work_hours is None:
        work_hours = WorkHoursRecord(
            user_id=record.user_id,
            attendance_id=record.id,
            work_date=record.attendance_date,
        )
        db.add(work_hours)

    work_hours.check_in_time = record.check_in_time
    work_hours.check_out_time = record.check_out_time
    work_hours.total_hours = result.total_hours
    work_hours.is_late = result.is_late
    work_hours.is_left_early = result.is_left_early
    return work_hours, result
