from __future__ import annotations

from datetime import date

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from hrcore import models  # noqa: F401
from hrcore.db import Base
from hrcore.models import Employee, EmployeeRole, Holiday, LeaveBalance, LeavePolicy, LeaveRequest, LeaveStatus, LeaveType
from hrcore.services.location import GeoReading
from hrcore.settings import CoreConfig

OFFICE_LAT = 19.108139
OFFICE_LON = 73.019611

TEST_CONFIG = CoreConfig(
    office_latitude=OFFICE_LAT,
    office_longitude=OFFICE_LON,
    geofence_max_distance_m=1000.0,
    geofence_max_accuracy_m=50.0,
    carry_forward_cutover_year=2024,
)

AT_OFFICE = GeoReading(latitude=OFFICE_LAT, longitude=OFFICE_LON, accuracy=10.0)
FAR_AWAY = GeoReading(latitude=OFFICE_LAT + 0.1, longitude=OFFICE_LON, accuracy=10.0)


def make_session_factory() -> sessionmaker:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def add_employee(
    db: Session,
    name: str,
    *,
    role: EmployeeRole = EmployeeRole.EMPLOYEE,
    manager_id: int | None = None,
    is_active: bool = True,
) -> Employee:
    employee = Employee(
        name=name,
        email=f"{name.lower().replace(' ', '.')}@example.com",
        role=role,
        manager_id=manager_id,
        is_active=is_active,
    )
    db.add(employee)
    db.commit()
    return employee


def add_policy(db: Session, leave_type: LeaveType, total_days: int) -> LeavePolicy:
    policy = LeavePolicy(type=leave_type, total_days=total_days)
    db.add(policy)
    db.commit()
    return policy


def add_default_policies(db: Session) -> None:
    add_policy(db, LeaveType.SICK, 8)
    add_policy(db, LeaveType.CASUAL, 6)
    add_policy(db, LeaveType.PAID, 12)
    add_policy(db, LeaveType.EMERGENCY, 2)


def add_holiday(db: Session, day: date, name: str = "Holiday") -> Holiday:
    holiday = Holiday(holiday_date=day, name=name)
    db.add(holiday)
    db.commit()
    return holiday


def add_leave(
    db: Session,
    *,
    user_id: int,
    leave_type: LeaveType,
    start: date,
    end: date,
    status: LeaveStatus = LeaveStatus.APPROVED,
) -> LeaveRequest:
    leave = LeaveRequest(
        user_id=user_id,
        type=leave_type,
        start_date=start,
        end_date=end,
        days=(end - start).days + 1,
        reason="seeded",
        status=status,
    )
    db.add(leave)
    db.commit()
    return leave


def add_balance(
    db: Session,
    *,
    user_id: int,
    leave_type: LeaveType,
    year: int,
    total_days: int,
    used_days: int = 0,
    carried_forward: int = 0,
) -> LeaveBalance:
    balance = LeaveBalance(
        user_id=user_id,
        leave_type=leave_type,
        year=year,
        total_days=total_days,
        used_days=used_days,
        remaining_days=total_days - used_days,
        carried_forward=carried_forward,
    )
    db.add(balance)
    db.commit()
    return balance
