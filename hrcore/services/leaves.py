from __future__ import annotations

from datetime import date, datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from hrcore.audit import log_audit
from hrcore.errors import ConflictError, NotFoundError, UnauthorizedError, ValidationError
from hrcore.models import Employee, EmployeeRole, Holiday, LeaveBalance, LeaveRequest, LeaveStatus, LeaveType
from hrcore.security import Principal

INACTIVE_LEAVE_STATUSES = (LeaveStatus.REJECTED, LeaveStatus.CANCELLED)
ORG_WIDE_REVIEWER_ROLES = (EmployeeRole.HR, EmployeeRole.ADMIN)


def _coerce_date(value: date | str | None, *, field_name: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value or "").strip()[:10])
    except ValueError as exc:
        raise ValidationError(
            code="INVALID_DATE_RANGE",
            message=f"{field_name} is not a valid date.",
        ) from exc


def _span_days(start: date, end: date) -> int:
    return (end - start).days + 1


def leave_charge_days(leave: LeaveRequest) -> int:
    """Days an approved request draws from its balance: the full calendar span.

    Holidays inside the range still count here even though ``days`` excludes
    them, so stored and computed balances move by the same amount.
    """
    return _span_days(leave.start_date, leave.end_date)


def count_holidays(db: Session, *, start: date, end: date) -> int:
    return int(
        db.scalar(
            select(func.count(Holiday.id)).where(
                Holiday.holiday_date >= start,
                Holiday.holiday_date <= end,
            )
        )
        or 0
    )


def find_overlapping_request(
    db: Session,
    *,
    user_id: int,
    start: date,
    end: date,
) -> LeaveRequest | None:
    return db.scalar(
        select(LeaveRequest)
        .where(
            LeaveRequest.user_id == user_id,
            LeaveRequest.status.not_in(INACTIVE_LEAVE_STATUSES),
            LeaveRequest.start_date <= end,
            LeaveRequest.end_date >= start,
        )
        .order_by(LeaveRequest.start_date.asc(), LeaveRequest.id.asc())
    )


def find_approved_leave_covering(
    db: Session,
    *,
    user_id: int,
    day: date,
    leave_type: LeaveType | None = None,
) -> LeaveRequest | None:
    stmt = select(LeaveRequest).where(
        LeaveRequest.user_id == user_id,
        LeaveRequest.status == LeaveStatus.APPROVED,
        LeaveRequest.start_date <= day,
        LeaveRequest.end_date >= day,
    )
    if leave_type is not None:
        stmt = stmt.where(LeaveRequest.type == leave_type)
    return db.scalar(stmt.order_by(LeaveRequest.id.asc()))


def list_approved_leaves_covering(db: Session, *, day: date) -> list[LeaveRequest]:
    return list(
        db.scalars(
            select(LeaveRequest)
            .where(
                LeaveRequest.status == LeaveStatus.APPROVED,
                LeaveRequest.start_date <= day,
                LeaveRequest.end_date >= day,
            )
            .order_by(LeaveRequest.id.asc())
        ).all()
    )


def create_leave_request(
    db: Session,
    *,
    user_id: int,
    leave_type: LeaveType,
    start_date: date | str,
    end_date: date | str,
    reason: str,
    working_start_date: date | str | None = None,
    working_end_date: date | str | None = None,
    document_url: str | None = None,
    actor_id: int | None = None,
    request_id: str | None = None,
) -> LeaveRequest:
    employee = db.get(Employee, user_id)
    if employee is None:
        raise NotFoundError(code="EMPLOYEE_NOT_FOUND", message="Employee not found.")

    if not (reason or "").strip():
        raise ValidationError(code="MISSING_LEAVE_DETAILS", message="Missing leave details.")

    start = _coerce_date(start_date, field_name="start_date")
    end = _coerce_date(end_date, field_name="end_date")
    if end < start:
        raise ValidationError(
            code="INVALID_DATE_RANGE",
            message="end_date must be greater than or equal to start_date.",
        )

    total_days = _span_days(start, end)
    days = max(0, total_days - count_holidays(db, start=start, end=end))

    working_start: date | None = None
    working_end: date | None = None
    if leave_type == LeaveType.COMP_OFF:
        if working_start_date is None or working_end_date is None:
            raise ValidationError(
                code="MISSING_WORKING_DATES",
                message="Comp-off requests require the worked start and end dates.",
            )
        working_start = _coerce_date(working_start_date, field_name="working_start_date")
        working_end = _coerce_date(working_end_date, field_name="working_end_date")
        if working_end < working_start:
            raise ValidationError(
                code="INVALID_DATE_RANGE",
                message="working_end_date must be greater than or equal to working_start_date.",
            )
        working_total_days = _span_days(working_start, working_end)
        if total_days != working_total_days:
            raise ValidationError(
                code="DURATION_MISMATCH",
                message=(
                    f"Comp-off duration ({total_days} days) must match the worked duration "
                    f"({working_total_days} days)."
                ),
                details={"total_days": total_days, "working_total_days": working_total_days},
            )
    elif days == 0:
        raise ValidationError(
            code="ALL_HOLIDAY_RANGE",
            message="Selected dates fall entirely on holidays.",
        )

    overlapping = find_overlapping_request(db, user_id=user_id, start=start, end=end)
    if overlapping is not None:
        raise ConflictError(
            code="OVERLAPPING_REQUEST",
            message="A leave request already exists for an overlapping period.",
            details={"overlapping_leave_id": overlapping.id},
        )

    leave = LeaveRequest(
        user_id=user_id,
        type=leave_type,
        start_date=start,
        end_date=end,
        days=days,
        reason=reason.strip(),
        document_url=document_url,
        working_start_date=working_start,
        working_end_date=working_end,
        status=LeaveStatus.PENDING,
    )
    db.add(leave)
    db.commit()
    db.refresh(leave)

    log_audit(
        db,
        actor_id=actor_id if actor_id is not None else user_id,
        action="leave_requested",
        details={
            "leave_id": leave.id,
            "user_id": user_id,
            "type": leave_type.value,
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "days": days,
        },
        request_id=request_id,
    )
    return leave


def cancel_leave_request(
    db: Session,
    *,
    requester: Principal,
    leave_id: int,
    request_id: str | None = None,
) -> LeaveRequest:
    leave = db.get(LeaveRequest, leave_id)
    if leave is None or (leave.user_id != requester.id and not requester.is_admin):
        raise NotFoundError(code="LEAVE_NOT_FOUND", message="Leave request not found.")
    if leave.status != LeaveStatus.PENDING:
        raise ConflictError(code="NOT_PENDING", message="Only pending leave requests can be cancelled.")

    result = db.execute(
        update(LeaveRequest)
        .where(
            LeaveRequest.id == leave_id,
            LeaveRequest.status == LeaveStatus.PENDING,
        )
        .values(status=LeaveStatus.CANCELLED)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        raise ConflictError(code="NOT_PENDING", message="Only pending leave requests can be cancelled.")
    db.commit()
    db.refresh(leave)

    log_audit(
        db,
        actor_id=requester.id,
        action="leave_cancelled",
        details={"leave_id": leave_id, "user_id": leave.user_id},
        request_id=request_id,
    )
    return leave


def _review_scope_clause(reviewer: Principal):
    if reviewer.role in ORG_WIDE_REVIEWER_ROLES:
        return None
    if reviewer.role == EmployeeRole.MANAGER:
        return LeaveRequest.user_id.in_(select(Employee.id).where(Employee.manager_id == reviewer.id))
    raise UnauthorizedError(code="FORBIDDEN", message="Insufficient permissions.")


def _apply_approved_usage(db: Session, leave: LeaveRequest) -> None:
    if leave.type == LeaveType.COMP_OFF:
        return
    days = leave_charge_days(leave)
    # Incremented in SQL; concurrent approvals must not overwrite each other.
    db.execute(
        update(LeaveBalance)
        .where(
            LeaveBalance.user_id == leave.user_id,
            LeaveBalance.leave_type == leave.type,
            LeaveBalance.year == leave.start_date.year,
        )
        .values(
            used_days=LeaveBalance.used_days + days,
            remaining_days=LeaveBalance.total_days - (LeaveBalance.used_days + days),
        )
        .execution_options(synchronize_session="fetch")
    )


def review_leave_request(
    db: Session,
    *,
    reviewer: Principal,
    leave_id: int,
    approve: bool,
    request_id: str | None = None,
) -> LeaveRequest:
    """Approve or reject a pending request in one conditional update.

    Missing, already reviewed and out-of-scope requests are reported with the
    same not-found error so team membership does not leak.
    """
    new_status = LeaveStatus.APPROVED if approve else LeaveStatus.REJECTED
    stmt = (
        update(LeaveRequest)
        .where(
            LeaveRequest.id == leave_id,
            LeaveRequest.status == LeaveStatus.PENDING,
        )
        .values(
            status=new_status,
            reviewed_by=reviewer.id,
            reviewed_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    scope_clause = _review_scope_clause(reviewer)
    if scope_clause is not None:
        stmt = stmt.where(scope_clause)

    result = db.execute(stmt)
    if result.rowcount == 0:
        db.rollback()
        raise UnauthorizedError(
            status_code=404,
            code="LEAVE_NOT_FOUND",
            message="Leave not found, not pending, or not in your team.",
        )

    leave = db.get(LeaveRequest, leave_id, populate_existing=True)
    if approve and leave is not None:
        _apply_approved_usage(db, leave)
    db.commit()

    log_audit(
        db,
        actor_id=reviewer.id,
        action="leave_approved" if approve else "leave_rejected",
        details={
            "leave_id": leave_id,
            "user_id": leave.user_id if leave is not None else None,
            "reviewer_role": reviewer.role.value,
        },
        request_id=request_id,
    )
    return leave


def purge_leave_request(
    db: Session,
    *,
    actor: Principal,
    leave_id: int,
    request_id: str | None = None,
) -> None:
    if not actor.is_admin:
        raise UnauthorizedError(code="FORBIDDEN", message="Insufficient permissions.")
    leave = db.get(LeaveRequest, leave_id)
    if leave is None:
        raise NotFoundError(code="LEAVE_NOT_FOUND", message="Leave request not found.")

    details = {
        "leave_id": leave_id,
        "user_id": leave.user_id,
        "status": leave.status.value,
        "type": leave.type.value,
    }
    db.delete(leave)
    db.commit()
    log_audit(db, actor_id=actor.id, action="leave_purged", details=details, request_id=request_id)


def list_leave_history(db: Session, *, user_id: int) -> list[LeaveRequest]:
    return list(
        db.scalars(
            select(LeaveRequest)
            .where(LeaveRequest.user_id == user_id)
            .order_by(LeaveRequest.created_at.desc(), LeaveRequest.id.desc())
        ).all()
    )


def list_reviewable_leaves(
    db: Session,
    *,
    reviewer: Principal,
    status: LeaveStatus | None = None,
) -> list[LeaveRequest]:
    stmt = select(LeaveRequest).order_by(LeaveRequest.created_at.desc(), LeaveRequest.id.desc())
    scope_clause = _review_scope_clause(reviewer)
    if scope_clause is not None:
        stmt = stmt.where(scope_clause)
    if status is not None:
        stmt = stmt.where(LeaveRequest.status == status)
    return list(db.scalars(stmt).all())
