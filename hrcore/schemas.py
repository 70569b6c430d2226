from datetime import date, datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from hrcore.models import AttendanceStatus, LeaveStatus, LeaveType


class GeoReadingRequest(BaseModel):
    latitude: float | None = None
    longitude: float | None = None
    accuracy: float | None = Field(default=None, ge=0)


class AttendanceRecordRead(BaseModel):
    id: int
    user_id: int
    attendance_date: date
    status: AttendanceStatus
    check_in: str | None = None
    check_out: str | None = None
    marked_with_geo: bool = False


class AttendanceMarkResponse(BaseModel):
    ok: bool
    record: AttendanceRecordRead


class AttendanceCheckoutResponse(BaseModel):
    ok: bool
    record: AttendanceRecordRead
    total_hours: float
    duration: str
    is_late: bool
    is_left_early: bool


class AttendanceOverviewResponse(BaseModel):
    user_id: int
    today: AttendanceRecordRead | None = None
    history: list[AttendanceRecordRead] = Field(default_factory=list)


class TeamAttendanceRead(AttendanceRecordRead):
    employee_name: str
    employee_email: str


class TeamWorkHoursRead(BaseModel):
    attendance_id: int
    user_id: int
    employee_name: str
    employee_email: str
    work_date: date
    check_in: str
    check_out: str
    total_hours: float
    overtime_hours: float
    is_late: bool
    is_left_early: bool


class LeaveCreateRequest(BaseModel):
    type: LeaveType
    start_date: date
    end_date: date
    reason: str = ""
    working_start_date: date | None = None
    working_end_date: date | None = None
    document_url: str | None = Field(default=None, max_length=1024)


class LeaveRead(BaseModel):
    id: int
    user_id: int
    type: LeaveType
    start_date: date
    end_date: date
    days: int
    reason: str
    document_url: str | None = None
    working_start_date: date | None = None
    working_end_date: date | None = None
    status: LeaveStatus
    reviewed_by: int | None = None
    reviewed_at: datetime | None = None
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class LeavePurgeResponse(BaseModel):
    ok: bool
    id: int


class LeaveBalanceResponse(BaseModel):
    user_id: int
    year: int
    source: str
    balances: dict[str, int]
    policies: dict[str, int]
    carried_forward: dict[str, int] = Field(default_factory=dict)
    used: dict[str, int] = Field(default_factory=dict)


class NotificationRead(BaseModel):
    id: int
    user_id: int
    message: str
    is_read: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CarryForwardPreviewItemRead(BaseModel):
    employee_id: int
    employee_name: str
    employee_email: str
    remaining: dict[str, int]
    carried: dict[str, int]


class CarryForwardPreviewResponse(BaseModel):
    from_year: int
    to_year: int
    employees: list[CarryForwardPreviewItemRead] = Field(default_factory=list)


class CarryForwardOverrideItem(BaseModel):
    employee_id: int = Field(ge=1)
    sick: int | None = None
    casual: int | None = None
    # Older clients send the paid carry as "planned".
    paid: int | None = Field(default=None, validation_alias=AliasChoices("paid", "planned"))


class CarryForwardConfirmRequest(BaseModel):
    from_year: int = Field(ge=2000, le=9998)
    to_year: int = Field(ge=2001, le=9999)
    overrides: list[CarryForwardOverrideItem] = Field(default_factory=list)


class CarryForwardConfirmResponse(BaseModel):
    ok: bool
    from_year: int
    to_year: int
    employees_processed: int
    employees_skipped: int
    failed_employee_ids: list[int] = Field(default_factory=list)


class CarryForwardStatusResponse(BaseModel):
    completed: bool
    is_complete: bool
    year: int
    employee_count: int
    total_carried_days: int
    pending_employee_count: int
    last_updated: str | None = None


class CarryForwardEmployeeUpdateRequest(BaseModel):
    year: int = Field(ge=2000, le=9999)
    amount: int


class CarryForwardEmployeeUpdateResponse(BaseModel):
    ok: bool
    employee_id: int
    year: int
    carried_forward: int
    total_days: int
    remaining_days: int


class ReconciliationRunRequest(BaseModel):
    run_date: date | None = None


class SweepResultRead(BaseModel):
    job: str
    run_date: date
    processed: int
    skipped: int
    failed: int
    affected_user_ids: list[int] = Field(default_factory=list)
