from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from sqlalchemy import distinct, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from hrcore.audit import log_audit
from hrcore.errors import ConflictError, NotFoundError, UnauthorizedError, ValidationError
from hrcore.models import Employee, EmployeeRole, LeaveBalance, LeavePolicy, LeaveRequest, LeaveStatus, LeaveType
from hrcore.security import Principal
from hrcore.services.leaves import leave_charge_days
from hrcore.services.notifications import notify
from hrcore.settings import CoreConfig

logger = logging.getLogger("hrcore.leave_balances")

CARRY_FORWARD_TYPES: tuple[LeaveType, ...] = (LeaveType.SICK, LeaveType.CASUAL, LeaveType.PAID)
DEFAULT_PAID_POLICY_DAYS = 12


@dataclass(frozen=True, slots=True)
class LeaveBalanceView:
    user_id: int
    year: int
    source: str
    balances: dict[str, int]
    policies: dict[str, int]
    carried_forward: dict[str, int] = field(default_factory=dict)
    used: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "year": self.year,
            "source": self.source,
            "balances": dict(self.balances),
            "policies": dict(self.policies),
            "carried_forward": dict(self.carried_forward),
            "used": dict(self.used),
        }


@dataclass(frozen=True, slots=True)
class CarryForwardOverride:
    employee_id: int
    sick: int | None = None
    casual: int | None = None
    paid: int | None = None

    def amount_for(self, leave_type: LeaveType) -> int | None:
        return {
            LeaveType.SICK: self.sick,
            LeaveType.CASUAL: self.casual,
            LeaveType.PAID: self.paid,
        }.get(leave_type)


@dataclass(frozen=True, slots=True)
class CarryForwardPreviewItem:
    employee_id: int
    employee_name: str
    employee_email: str
    remaining: dict[str, int]
    carried: dict[str, int]


@dataclass(frozen=True, slots=True)
class CarryForwardOutcome:
    from_year: int
    to_year: int
    employees_processed: int
    employees_skipped: int
    failed_employee_ids: list[int]


def load_policy_map(db: Session) -> dict[LeaveType, int]:
    policies = db.scalars(select(LeavePolicy).order_by(LeavePolicy.id.asc())).all()
    return {policy.type: int(policy.total_days or 0) for policy in policies}


def _approved_requests(db: Session, *, user_id: int) -> list[LeaveRequest]:
    return list(
        db.scalars(
            select(LeaveRequest).where(
                LeaveRequest.user_id == user_id,
                LeaveRequest.status == LeaveStatus.APPROVED,
                LeaveRequest.type != LeaveType.COMP_OFF,
            )
        ).all()
    )


def _sum_usage(requests: Iterable[LeaveRequest]) -> dict[LeaveType, int]:
    usage: dict[LeaveType, int] = {}
    for request in requests:
        usage[request.type] = usage.get(request.type, 0) + leave_charge_days(request)
    return usage


def approved_usage_since(db: Session, *, user_id: int, cutover_year: int) -> dict[LeaveType, int]:
    cutover = date(cutover_year, 1, 1)
    return _sum_usage(item for item in _approved_requests(db, user_id=user_id) if item.start_date >= cutover)


def approved_usage_in_year(db: Session, *, user_id: int, year: int) -> dict[LeaveType, int]:
    return _sum_usage(
        item
        for item in _approved_requests(db, user_id=user_id)
        if item.start_date.year == year or item.end_date.year == year
    )


def _stored_rows(db: Session, *, user_id: int, year: int) -> list[LeaveBalance]:
    return list(
        db.scalars(
            select(LeaveBalance).where(
                LeaveBalance.user_id == user_id,
                LeaveBalance.year == year,
            )
        ).all()
    )


def get_leave_balance(
    db: Session,
    *,
    user_id: int,
    year: int,
    config: CoreConfig,
) -> LeaveBalanceView:
    """Displayed balance per leave type for one year.

    Stored rows re-apply the current policy total on every read, so a policy
    change also moves balances of carried years. Without stored rows the
    balance is derived from approved usage since the cutover year and may go
    negative.
    """
    if db.get(Employee, user_id) is None:
        raise NotFoundError(code="EMPLOYEE_NOT_FOUND", message="Employee not found.")

    policies = load_policy_map(db)
    policy_view = {leave_type.value: total for leave_type, total in policies.items()}
    rows = _stored_rows(db, user_id=user_id, year=year)

    if rows:
        by_type = {row.leave_type: row for row in rows}
        balances: dict[str, int] = {}
        carried: dict[str, int] = {}
        used: dict[str, int] = {}
        for leave_type in list(policies) + [item for item in by_type if item not in policies]:
            row = by_type.get(leave_type)
            carried_days = int(row.carried_forward or 0) if row is not None else 0
            used_days = int(row.used_days or 0) if row is not None else 0
            balances[leave_type.value] = policies.get(leave_type, 0) + carried_days - used_days
            carried[leave_type.value] = carried_days
            used[leave_type.value] = used_days
        return LeaveBalanceView(
            user_id=user_id,
            year=year,
            source="stored",
            balances=balances,
            policies=policy_view,
            carried_forward=carried,
            used=used,
        )

    usage = approved_usage_since(db, user_id=user_id, cutover_year=config.carry_forward_cutover_year)
    balances = {}
    used = {}
    for leave_type, total in policies.items():
        used_days = usage.get(leave_type, 0)
        balances[leave_type.value] = total - used_days
        used[leave_type.value] = used_days
    return LeaveBalanceView(
        user_id=user_id,
        year=year,
        source="computed",
        balances=balances,
        policies=policy_view,
        used=used,
    )


def resolve_remaining_balances(
    db: Session,
    *,
    user_id: int,
    year: int,
    policies: dict[LeaveType, int],
) -> dict[LeaveType, int]:
    remaining = {leave_type: 0 for leave_type in CARRY_FORWARD_TYPES}
    rows = _stored_rows(db, user_id=user_id, year=year)
    if rows:
        for row in rows:
            if row.leave_type in remaining:
                remaining[row.leave_type] = int(row.remaining_days or 0)
        return remaining

    usage = approved_usage_in_year(db, user_id=user_id, year=year)
    for leave_type in CARRY_FORWARD_TYPES:
        remaining[leave_type] = max(0, policies.get(leave_type, 0) - usage.get(leave_type, 0))
    return remaining


def _validate_year_pair(from_year: int, to_year: int) -> None:
    if to_year != from_year + 1:
        raise ValidationError(code="INVALID_YEAR_PAIR", message="toYear must be fromYear + 1.")


def _carry_forward_employees(db: Session) -> list[Employee]:
    return list(
        db.scalars(
            select(Employee)
            .where(
                Employee.is_active.is_(True),
                Employee.role != EmployeeRole.ADMIN,
            )
            .order_by(Employee.name.asc(), Employee.id.asc())
        ).all()
    )


def _as_type_map(values: dict[LeaveType, int]) -> dict[str, int]:
    return {leave_type.value: int(values.get(leave_type, 0)) for leave_type in CARRY_FORWARD_TYPES}


def preview_carry_forward(db: Session, *, from_year: int, to_year: int) -> list[CarryForwardPreviewItem]:
    _validate_year_pair(from_year, to_year)
    policies = load_policy_map(db)

    items: list[CarryForwardPreviewItem] = []
    for employee in _carry_forward_employees(db):
        remaining = resolve_remaining_balances(db, user_id=employee.id, year=from_year, policies=policies)
        items.append(
            CarryForwardPreviewItem(
                employee_id=employee.id,
                employee_name=employee.name,
                employee_email=employee.email,
                remaining=_as_type_map(remaining),
                carried=_as_type_map({key: max(0, value) for key, value in remaining.items()}),
            )
        )
    return items


def _carried_employee_ids(db: Session, *, year: int) -> set[int]:
    return set(db.scalars(select(distinct(LeaveBalance.user_id)).where(LeaveBalance.year == year)).all())


def _upsert_year_balance(
    db: Session,
    *,
    user_id: int,
    leave_type: LeaveType,
    year: int,
    total_days: int,
    carried_amount: int,
) -> None:
    row = db.scalar(
        select(LeaveBalance).where(
            LeaveBalance.user_id == user_id,
            LeaveBalance.leave_type == leave_type,
            LeaveBalance.year == year,
        )
    )
    if row is None:
        row = LeaveBalance(user_id=user_id, leave_type=leave_type, year=year)
        db.add(row)
    row.total_days = total_days
    row.used_days = 0
    row.remaining_days = total_days
    row.carried_forward = carried_amount


def confirm_carry_forward(
    db: Session,
    *,
    actor: Principal,
    from_year: int,
    to_year: int,
    overrides: Iterable[CarryForwardOverride] = (),
    request_id: str | None = None,
) -> CarryForwardOutcome:
    """Write next-year balances for every active non-admin employee.

    Each employee is committed as one unit. Employees that already have
    ``to_year`` rows are skipped, so an interrupted run can be confirmed again
    and only finishes the remainder; a complete run is rejected.
    """
    if not actor.is_admin:
        raise UnauthorizedError(code="FORBIDDEN", message="Insufficient permissions.")
    _validate_year_pair(from_year, to_year)

    employees = _carry_forward_employees(db)
    done_ids = _carried_employee_ids(db, year=to_year)
    pending = [employee for employee in employees if employee.id not in done_ids]
    if done_ids and not pending:
        raise ConflictError(
            code="ALREADY_CARRIED",
            message=f"Carry forward already completed for year {to_year}.",
            details={"existing_employee_count": len(done_ids)},
        )

    policies = load_policy_map(db)
    override_map = {item.employee_id: item for item in overrides}

    processed = 0
    failed_ids: list[int] = []
    for employee in pending:
        remaining = resolve_remaining_balances(db, user_id=employee.id, year=from_year, policies=policies)
        override = override_map.get(employee.id)
        carried: dict[LeaveType, int] = {}
        for leave_type in CARRY_FORWARD_TYPES:
            override_amount = override.amount_for(leave_type) if override is not None else None
            amount = override_amount if override_amount is not None else remaining[leave_type]
            carried[leave_type] = max(0, int(amount))

        try:
            for leave_type, base_days in policies.items():
                carried_amount = carried.get(leave_type, 0)
                _upsert_year_balance(
                    db,
                    user_id=employee.id,
                    leave_type=leave_type,
                    year=to_year,
                    total_days=base_days + carried_amount,
                    carried_amount=carried_amount,
                )
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.warning(
                "carry_forward_employee_conflict",
                extra={"employee_id": employee.id, "to_year": to_year},
            )
            continue
        except SQLAlchemyError:
            db.rollback()
            failed_ids.append(employee.id)
            logger.exception(
                "carry_forward_employee_failed",
                extra={"employee_id": employee.id, "to_year": to_year},
            )
            continue

        processed += 1
        total_carried = sum(carried.values())
        if total_carried > 0:
            notify(
                db,
                user_id=employee.id,
                message=(
                    f"Leaves carried forward to {to_year}: Sick({carried[LeaveType.SICK]}), "
                    f"Casual({carried[LeaveType.CASUAL]}), Paid({carried[LeaveType.PAID]})."
                ),
            )

    log_audit(
        db,
        actor_id=actor.id,
        action="leave_carry_forward_completed",
        details={
            "from_year": from_year,
            "to_year": to_year,
            "employees_processed": processed,
            "employees_skipped": len(employees) - len(pending),
            "failed_employee_ids": failed_ids,
            "admin_id": actor.id,
        },
        request_id=request_id,
    )
    return CarryForwardOutcome(
        from_year=from_year,
        to_year=to_year,
        employees_processed=processed,
        employees_skipped=len(employees) - len(pending),
        failed_employee_ids=failed_ids,
    )


def get_carry_forward_status(db: Session, *, to_year: int) -> dict[str, Any]:
    employee_count, total_carried, last_updated = db.execute(
        select(
            func.count(distinct(LeaveBalance.user_id)),
            func.coalesce(func.sum(LeaveBalance.carried_forward), 0),
            func.max(LeaveBalance.updated_at),
        ).where(
            LeaveBalance.year == to_year,
            LeaveBalance.carried_forward > 0,
        )
    ).one()

    active_ids = {employee.id for employee in _carry_forward_employees(db)}
    done_ids = _carried_employee_ids(db, year=to_year)
    pending_count = len(active_ids - done_ids)
    return {
        "completed": int(employee_count or 0) > 0,
        "is_complete": bool(done_ids) and pending_count == 0,
        "year": to_year,
        "employee_count": int(employee_count or 0),
        "total_carried_days": int(total_carried or 0),
        "pending_employee_count": pending_count,
        "last_updated": last_updated.isoformat() if isinstance(last_updated, datetime) else last_updated,
    }


def update_employee_carry_forward(
    db: Session,
    *,
    actor: Principal,
    employee_id: int,
    year: int,
    amount: int,
    request_id: str | None = None,
) -> LeaveBalance:
    if not actor.is_admin:
        raise UnauthorizedError(code="FORBIDDEN", message="Insufficient permissions.")

    carried_amount = max(0, int(amount))
    base_paid = load_policy_map(db).get(LeaveType.PAID, DEFAULT_PAID_POLICY_DAYS)
    row = db.scalar(
        select(LeaveBalance).where(
            LeaveBalance.user_id == employee_id,
            LeaveBalance.leave_type == LeaveType.PAID,
            LeaveBalance.year == year,
        )
    )
    if row is None:
        raise NotFoundError(
            code="BALANCE_NOT_FOUND",
            message=f"No paid leave balance recorded for employee {employee_id} in {year}.",
        )

    row.carried_forward = carried_amount
    row.total_days = base_paid + carried_amount
    row.remaining_days = row.total_days - int(row.used_days or 0)
    db.commit()

    log_audit(
        db,
        actor_id=actor.id,
        action="leave_carry_forward_manual_update",
        details={
            "employee_id": employee_id,
            "year": year,
            "new_amount": carried_amount,
            "admin_id": actor.id,
        },
        request_id=request_id,
    )
    return row
