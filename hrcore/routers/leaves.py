from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from hrcore.clock import local_today
from hrcore.db import get_db
from hrcore.models import EmployeeRole, LeaveStatus
from hrcore.schemas import LeaveBalanceResponse, LeaveCreateRequest, LeaveRead
from hrcore.security import Principal, ensure_self_or_admin, get_current_principal, require_roles
from hrcore.services.leave_balances import get_leave_balance
from hrcore.services.leaves import (
    cancel_leave_request,
    create_leave_request,
    list_leave_history,
    list_reviewable_leaves,
    review_leave_request,
)
from hrcore.settings import CoreConfig, get_core_config

router = APIRouter(tags=["leaves"])

require_reviewer = require_roles(EmployeeRole.MANAGER, EmployeeRole.HR, EmployeeRole.ADMIN)


@router.post(
    "/api/employees/{user_id}/leaves",
    response_model=LeaveRead,
    status_code=status.HTTP_201_CREATED,
)
def request_leave(
    user_id: int,
    payload: LeaveCreateRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> LeaveRead:
    ensure_self_or_admin(principal, user_id)
    request.state.employee_id = user_id
    leave = create_leave_request(
        db,
        user_id=user_id,
        leave_type=payload.type,
        start_date=payload.start_date,
        end_date=payload.end_date,
        reason=payload.reason,
        working_start_date=payload.working_start_date,
        working_end_date=payload.working_end_date,
        document_url=payload.document_url,
        actor_id=principal.id,
        request_id=getattr(request.state, "request_id", None),
    )
    return LeaveRead.model_validate(leave)


@router.get("/api/employees/{user_id}/leaves", response_model=list[LeaveRead])
def leave_history(
    user_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> list[LeaveRead]:
    ensure_self_or_admin(principal, user_id)
    return [LeaveRead.model_validate(item) for item in list_leave_history(db, user_id=user_id)]


@router.get("/api/employees/{user_id}/leave-balance", response_model=LeaveBalanceResponse)
def leave_balance(
    user_id: int,
    year: int | None = None,
    principal: Principal = Depends(get_current_principal),
    config: CoreConfig = Depends(get_core_config),
    db: Session = Depends(get_db),
) -> LeaveBalanceResponse:
    ensure_self_or_admin(principal, user_id)
    view = get_leave_balance(
        db,
        user_id=user_id,
        year=year if year is not None else local_today().year,
        config=config,
    )
    return LeaveBalanceResponse(**view.to_dict())


@router.post("/api/leaves/{leave_id}/cancel", response_model=LeaveRead)
def cancel_leave(
    leave_id: int,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> LeaveRead:
    leave = cancel_leave_request(
        db,
        requester=principal,
        leave_id=leave_id,
        request_id=getattr(request.state, "request_id", None),
    )
    return LeaveRead.model_validate(leave)


@router.get("/api/leaves/review-queue", response_model=list[LeaveRead])
def review_queue(
    status_filter: LeaveStatus | None = Query(default=None, alias="status"),
    principal: Principal = Depends(require_reviewer),
    db: Session = Depends(get_db),
) -> list[LeaveRead]:
    return [
        LeaveRead.model_validate(item)
        for item in list_reviewable_leaves(db, reviewer=principal, status=status_filter)
    ]


@router.post("/api/leaves/{leave_id}/approve", response_model=LeaveRead)
def approve_leave(
    leave_id: int,
    request: Request,
    principal: Principal = Depends(require_reviewer),
    db: Session = Depends(get_db),
) -> LeaveRead:
    leave = review_leave_request(
        db,
        reviewer=principal,
        leave_id=leave_id,
        approve=True,
        request_id=getattr(request.state, "request_id", None),
    )
    return LeaveRead.model_validate(leave)


@router.post("/api/leaves/{leave_id}/reject", response_model=LeaveRead)
def reject_leave(
    leave_id: int,
    request: Request,
    principal: Principal = Depends(require_reviewer),
    db: Session = Depends(get_db),
) -> LeaveRead:
    leave = review_leave_request(
        db,
        reviewer=principal,
        leave_id=leave_id,
        approve=False,
        request_id=getattr(request.state, "request_id", None),
    )
    return LeaveRead.model_validate(leave)
