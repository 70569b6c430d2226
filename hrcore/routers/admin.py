from datetime import date

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from hrcore.clock import local_today
from hrcore.db import get_db
from hrcore.errors import NotFoundError
from hrcore.models import EmployeeRole
from hrcore.scheduler import SWEEPS
from hrcore.schemas import (
    CarryForwardConfirmRequest,
    CarryForwardConfirmResponse,
    CarryForwardEmployeeUpdateRequest,
    CarryForwardEmployeeUpdateResponse,
    CarryForwardPreviewItemRead,
    CarryForwardPreviewResponse,
    CarryForwardStatusResponse,
    LeavePurgeResponse,
    ReconciliationRunRequest,
    SweepResultRead,
)
from hrcore.security import Principal, require_roles
from hrcore.services.leave_balances import (
    CarryForwardOverride,
    confirm_carry_forward,
    get_carry_forward_status,
    preview_carry_forward,
    update_employee_carry_forward,
)
from hrcore.services.leaves import purge_leave_request
from hrcore.settings import CoreConfig, get_core_config

router = APIRouter(tags=["admin"])

require_admin = require_roles(EmployeeRole.ADMIN)


def _default_years(from_year: int | None, to_year: int | None) -> tuple[int, int]:
    current_year = local_today().year
    resolved_from = from_year if from_year is not None else current_year - 1
    resolved_to = to_year if to_year is not None else resolved_from + 1
    return resolved_from, resolved_to


@router.delete("/api/admin/leaves/{leave_id}", response_model=LeavePurgeResponse)
def purge_leave(
    leave_id: int,
    request: Request,
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
) -> LeavePurgeResponse:
    purge_leave_request(
        db,
        actor=principal,
        leave_id=leave_id,
        request_id=getattr(request.state, "request_id", None),
    )
    return LeavePurgeResponse(ok=True, id=leave_id)


@router.get("/api/admin/carry-forward/preview", response_model=CarryForwardPreviewResponse)
def carry_forward_preview(
    from_year: int | None = None,
    to_year: int | None = None,
    _principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
) -> CarryForwardPreviewResponse:
    resolved_from, resolved_to = _default_years(from_year, to_year)
    items = preview_carry_forward(db, from_year=resolved_from, to_year=resolved_to)
    return CarryForwardPreviewResponse(
        from_year=resolved_from,
        to_year=resolved_to,
        employees=[
            CarryForwardPreviewItemRead(
                employee_id=item.employee_id,
                employee_name=item.employee_name,
                employee_email=item.employee_email,
                remaining=item.remaining,
                carried=item.carried,
            )
            for item in items
        ],
    )


@router.get("/api/admin/carry-forward/status", response_model=CarryForwardStatusResponse)
def carry_forward_status(
    year: int | None = None,
    _principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
) -> CarryForwardStatusResponse:
    to_year = year if year is not None else local_today().year
    return CarryForwardStatusResponse(**get_carry_forward_status(db, to_year=to_year))


@router.post("/api/admin/carry-forward/confirm", response_model=CarryForwardConfirmResponse)
def carry_forward_confirm(
    payload: CarryForwardConfirmRequest,
    request: Request,
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
) -> CarryForwardConfirmResponse:
    outcome = confirm_carry_forward(
        db,
        actor=principal,
        from_year=payload.from_year,
        to_year=payload.to_year,
        overrides=[
            CarryForwardOverride(
                employee_id=item.employee_id,
                sick=item.sick,
                casual=item.casual,
                paid=item.paid,
            )
            for item in payload.overrides
        ],
        request_id=getattr(request.state, "request_id", None),
    )
    return CarryForwardConfirmResponse(
        ok=True,
        from_year=outcome.from_year,
        to_year=outcome.to_year,
        employees_processed=outcome.employees_processed,
        employees_skipped=outcome.employees_skipped,
        failed_employee_ids=outcome.failed_employee_ids,
    )


@router.put(
    "/api/admin/carry-forward/employees/{employee_id}",
    response_model=CarryForwardEmployeeUpdateResponse,
)
def carry_forward_employee_update(
    employee_id: int,
    payload: CarryForwardEmployeeUpdateRequest,
    request: Request,
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
) -> CarryForwardEmployeeUpdateResponse:
    row = update_employee_carry_forward(
        db,
        actor=principal,
        employee_id=employee_id,
        year=payload.year,
        amount=payload.amount,
        request_id=getattr(request.state, "request_id", None),
    )
    return CarryForwardEmployeeUpdateResponse(
        ok=True,
        employee_id=employee_id,
        year=row.year,
        carried_forward=row.carried_forward,
        total_days=row.total_days,
        remaining_days=row.remaining_days,
    )


@router.post("/api/admin/reconciliation/{job}", response_model=SweepResultRead)
def run_reconciliation(
    job: str,
    payload: ReconciliationRunRequest,
    _principal: Principal = Depends(require_admin),
    config: CoreConfig = Depends(get_core_config),
    db: Session = Depends(get_db),
) -> SweepResultRead:
    sweep = SWEEPS.get(job)
    if sweep is None:
        raise NotFoundError(code="UNKNOWN_JOB", message=f"Unknown reconciliation job: {job}.")

    run_date: date = payload.run_date or local_today()
    result = sweep(db, today=run_date, config=config)
    return SweepResultRead(**result.to_dict())
