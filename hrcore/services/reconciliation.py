from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from hrcore.audit import log_audit
from hrcore.errors import ApiError
from hrcore.models import AttendanceRecord, AttendanceStatus, Employee, EmployeeRole
from hrcore.services.leaves import find_approved_leave_covering, list_approved_leaves_covering
from hrcore.services.notifications import notify
from hrcore.services.work_hours import upsert_work_hours
from hrcore.settings import CoreConfig

logger = logging.getLogger("hrcore.reconciliation")

FORCED_CHECKOUT_STATUSES = (AttendanceStatus.PRESENT, AttendanceStatus.REMOTE)


@dataclass(slots=True)
class SweepResult:
    job: str
    run_date: date
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    affected_user_ids: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "job": self.job,
            "run_date": self.run_date.isoformat(),
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "affected_user_ids": list(self.affected_user_ids),
        }


def _tracked_roles(config: CoreConfig) -> list[EmployeeRole]:
    roles: list[EmployeeRole] = []
    for raw_role in config.tracked_roles:
        try:
            roles.append(EmployeeRole(raw_role))
        except ValueError:
            logger.warning("absenteeism_unknown_role_ignored", extra={"role": raw_role})
    return roles


def _has_record(db: Session, *, user_id: int, day: date) -> bool:
    existing_id = db.scalar(
        select(AttendanceRecord.id).where(
            AttendanceRecord.user_id == user_id,
            AttendanceRecord.attendance_date == day,
        )
    )
    return existing_id is not None


def run_absenteeism_sweep(db: Session, *, today: date, config: CoreConfig) -> SweepResult:
    """Mark tracked employees absent when they have neither a record nor approved leave."""
    result = SweepResult(job="absenteeism", run_date=today)
    employees = db.scalars(
        select(Employee)
        .where(
            Employee.is_active.is_(True),
            Employee.role.in_(_tracked_roles(config)),
        )
        .order_by(Employee.id.asc())
    ).all()

    for employee in employees:
        try:
            if _has_record(db, user_id=employee.id, day=today):
                result.skipped += 1
                continue
            if find_approved_leave_covering(db, user_id=employee.id, day=today) is not None:
                result.skipped += 1
                continue

            db.add(
                AttendanceRecord(
                    user_id=employee.id,
                    attendance_date=today,
                    status=AttendanceStatus.ABSENT,
                    check_in_time=None,
                    check_out_time=None,
                )
            )
            db.commit()
        except IntegrityError:
            # A check-in landed between the re-check and the insert.
            db.rollback()
            result.skipped += 1
            continue
        except SQLAlchemyError:
            db.rollback()
            result.failed += 1
            logger.exception(
                "absenteeism_item_failed",
                extra={"user_id": employee.id, "run_date": today.isoformat()},
            )
            continue

        result.processed += 1
        result.affected_user_ids.append(employee.id)
        log_audit(
            db,
            actor_id=None,
            action="auto_absent_marked",
            details={
                "user_id": employee.id,
                "date": today.isoformat(),
                "reason": "No attendance marked and not on leave",
            },
        )

    logger.info("absenteeism_sweep_completed", extra=result.to_dict())
    return result


def run_forced_checkout_sweep(db: Session, *, today: date, config: CoreConfig) -> SweepResult:
    """Close open records for ``today`` at the configured checkout cutoff."""
    result = SweepResult(job="forced_checkout", run_date=today)
    records = db.scalars(
        select(AttendanceRecord)
        .where(
            AttendanceRecord.attendance_date == today,
            AttendanceRecord.check_in_time.is_not(None),
            AttendanceRecord.check_out_time.is_(None),
            AttendanceRecord.status.in_(FORCED_CHECKOUT_STATUSES),
        )
        .order_by(AttendanceRecord.id.asc())
    ).all()

    checkout_time = config.forced_checkout_time
    for record in records:
        try:
            update_result = db.execute(
                update(AttendanceRecord)
                .where(
                    AttendanceRecord.id == record.id,
                    AttendanceRecord.check_out_time.is_(None),
                )
                .values(check_out_time=checkout_time)
                .execution_options(synchronize_session=False)
            )
            if update_result.rowcount == 0:
                db.rollback()
                result.skipped += 1
                continue
            db.refresh(record)
            _, hours = upsert_work_hours(db, record=record, config=config)
            db.commit()
        except (SQLAlchemyError, ApiError):
            # Check-ins after the cutoff cannot be closed at the cutoff.
            db.rollback()
            result.failed += 1
            logger.exception(
                "forced_checkout_item_failed",
                extra={"user_id": record.user_id, "attendance_id": record.id, "run_date": today.isoformat()},
            )
            continue

        result.processed += 1
        result.affected_user_ids.append(record.user_id)
        log_audit(
            db,
            actor_id=None,
            action="auto_checkout_marked",
            details={
                "user_id": record.user_id,
                "attendance_id": record.id,
                "date": today.isoformat(),
                "check_out": checkout_time.isoformat(),
                "total_hours": str(hours.total_hours),
                "is_late": hours.is_late,
                "is_left_early": hours.is_left_early,
            },
        )

    logger.info("forced_checkout_sweep_completed", extra=result.to_dict())
    return result


def absence_recipient_ids(db: Session, *, applicant: Employee) -> set[int]:
    """Manager, direct reports and peers of ``applicant``; active only, applicant excluded."""
    clauses = [Employee.manager_id == applicant.id]
    if applicant.manager_id is not None:
        clauses.append(Employee.id == applicant.manager_id)
        clauses.append(Employee.manager_id == applicant.manager_id)

    recipients: set[int] = set()
    for clause in clauses:
        recipients.update(
            db.scalars(select(Employee.id).where(clause, Employee.is_active.is_(True))).all()
        )
    recipients.discard(applicant.id)
    return recipients


def run_absence_notification_sweep(db: Session, *, today: date, config: CoreConfig) -> SweepResult:
    result = SweepResult(job="absence_notification", run_date=today)
    for leave in list_approved_leaves_covering(db, day=today):
        try:
            applicant = db.get(Employee, leave.user_id)
            if applicant is None:
                result.skipped += 1
                continue
            recipients = absence_recipient_ids(db, applicant=applicant)
        except SQLAlchemyError:
            db.rollback()
            result.failed += 1
            logger.exception(
                "absence_notification_item_failed",
                extra={"leave_id": leave.id, "run_date": today.isoformat()},
            )
            continue

        leave_label = leave.type.value.replace("_", " ")
        message = (
            f"{applicant.name} is on {leave_label} leave today ({today.isoformat()}) "
            f"until {leave.end_date.isoformat()}."
        )
        for recipient_id in sorted(recipients):
            created = notify(
                db,
                user_id=recipient_id,
                message=message,
                dedupe_key=f"absence:{leave.id}:{today.isoformat()}:{recipient_id}",
            )
            if created:
                result.processed += 1
                result.affected_user_ids.append(recipient_id)
            else:
                result.skipped += 1

    logger.info("absence_notification_sweep_completed", extra=result.to_dict())
    return result
