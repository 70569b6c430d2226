from __future__ import annotations

import unittest
from datetime import date

from sqlalchemy import func, select

from hrcore.errors import ConflictError, NotFoundError, UnauthorizedError, ValidationError
from hrcore.models import EmployeeRole, LeaveBalance, LeaveRequest, LeaveStatus, LeaveType
from hrcore.security import Principal
from hrcore.services.leaves import (
    cancel_leave_request,
    create_leave_request,
    list_reviewable_leaves,
    purge_leave_request,
    review_leave_request,
)
from tests._support import add_balance, add_employee, add_holiday, add_leave, make_session_factory


class LeaveRequestServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session_factory = make_session_factory()
        self.db = self.session_factory()
        self.manager = add_employee(self.db, "Meera Manager", role=EmployeeRole.MANAGER)
        self.employee = add_employee(self.db, "Ravi Kumar", manager_id=self.manager.id)
        self.outsider = add_employee(self.db, "Other Team")
        self.hr = add_employee(self.db, "Helen Hr", role=EmployeeRole.HR)

    def tearDown(self) -> None:
        self.db.close()

    def _principal(self, employee, role: EmployeeRole | None = None) -> Principal:  # type: ignore[no-untyped-def]
        return Principal(id=employee.id, role=role or employee.role, manager_id=employee.manager_id)

    def _create(self, **overrides):  # type: ignore[no-untyped-def]
        params = {
            "user_id": self.employee.id,
            "leave_type": LeaveType.CASUAL,
            "start_date": date(2025, 3, 3),
            "end_date": date(2025, 3, 7),
            "reason": "family function",
        }
        params.update(overrides)
        return create_leave_request(self.db, **params)

    def test_days_exclude_holidays_in_range(self) -> None:
        add_holiday(self.db, date(2025, 3, 5), "Festival")

        leave = self._create()

        self.assertEqual(leave.days, 4)
        self.assertEqual(leave.status, LeaveStatus.PENDING)

    def test_string_dates_are_accepted(self) -> None:
        leave = self._create(start_date="2025-03-03", end_date="2025-03-04")
        self.assertEqual(leave.days, 2)

    def test_range_of_only_holidays_is_rejected(self) -> None:
        add_holiday(self.db, date(2025, 3, 3))
        add_holiday(self.db, date(2025, 3, 4))

        with self.assertRaises(ValidationError) as ctx:
            self._create(end_date=date(2025, 3, 4))
        self.assertEqual(ctx.exception.code, "ALL_HOLIDAY_RANGE")

    def test_end_before_start_is_rejected(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self._create(start_date=date(2025, 3, 7), end_date=date(2025, 3, 3))
        self.assertEqual(ctx.exception.code, "INVALID_DATE_RANGE")

    def test_unparseable_date_is_rejected(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self._create(start_date="03/03/2025")
        self.assertEqual(ctx.exception.code, "INVALID_DATE_RANGE")

    def test_blank_reason_is_rejected(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self._create(reason="   ")
        self.assertEqual(ctx.exception.code, "MISSING_LEAVE_DETAILS")

    def test_overlapping_active_request_conflicts(self) -> None:
        self._create()

        with self.assertRaises(ConflictError) as ctx:
            self._create(start_date=date(2025, 3, 7), end_date=date(2025, 3, 10))
        self.assertEqual(ctx.exception.code, "OVERLAPPING_REQUEST")

    def test_rejected_and_cancelled_requests_do_not_block(self) -> None:
        add_leave(
            self.db,
            user_id=self.employee.id,
            leave_type=LeaveType.SICK,
            start=date(2025, 3, 3),
            end=date(2025, 3, 4),
            status=LeaveStatus.REJECTED,
        )
        add_leave(
            self.db,
            user_id=self.employee.id,
            leave_type=LeaveType.SICK,
            start=date(2025, 3, 5),
            end=date(2025, 3, 5),
            status=LeaveStatus.CANCELLED,
        )

        leave = self._create()
        self.assertEqual(leave.days, 5)

    def test_comp_off_requires_working_dates(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self._create(leave_type=LeaveType.COMP_OFF)
        self.assertEqual(ctx.exception.code, "MISSING_WORKING_DATES")

    def test_comp_off_duration_must_match_worked_days(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self._create(
                leave_type=LeaveType.COMP_OFF,
                start_date=date(2025, 3, 10),
                end_date=date(2025, 3, 11),
                working_start_date=date(2025, 3, 1),
                working_end_date=date(2025, 3, 1),
            )
        self.assertEqual(ctx.exception.code, "DURATION_MISMATCH")

    def test_comp_off_counts_calendar_days_for_match(self) -> None:
        add_holiday(self.db, date(2025, 3, 11))

        leave = self._create(
            leave_type=LeaveType.COMP_OFF,
            start_date=date(2025, 3, 10),
            end_date=date(2025, 3, 11),
            working_start_date=date(2025, 3, 1),
            working_end_date=date(2025, 3, 2),
        )

        self.assertEqual(leave.days, 1)
        self.assertEqual(leave.working_start_date, date(2025, 3, 1))

    def test_cancel_moves_pending_request_to_cancelled(self) -> None:
        leave = self._create()

        cancelled = cancel_leave_request(self.db, requester=self._principal(self.employee), leave_id=leave.id)

        self.assertEqual(cancelled.status, LeaveStatus.CANCELLED)
        self.assertEqual(self.db.scalar(select(func.count(LeaveRequest.id))), 1)

    def test_cancel_of_reviewed_request_is_rejected(self) -> None:
        leave = self._create()
        review_leave_request(self.db, reviewer=self._principal(self.manager), leave_id=leave.id, approve=True)

        with self.assertRaises(ConflictError) as ctx:
            cancel_leave_request(self.db, requester=self._principal(self.employee), leave_id=leave.id)
        self.assertEqual(ctx.exception.code, "NOT_PENDING")

    def test_cancel_of_someone_elses_request_is_not_found(self) -> None:
        leave = self._create()

        with self.assertRaises(NotFoundError):
            cancel_leave_request(self.db, requester=self._principal(self.outsider), leave_id=leave.id)

    def test_manager_approves_direct_report(self) -> None:
        leave = self._create()

        reviewed = review_leave_request(self.db, reviewer=self._principal(self.manager), leave_id=leave.id, approve=True)

        self.assertEqual(reviewed.status, LeaveStatus.APPROVED)
        self.assertEqual(reviewed.reviewed_by, self.manager.id)
        self.assertIsNotNone(reviewed.reviewed_at)

    def test_manager_cannot_review_outside_team(self) -> None:
        leave = self._create(user_id=self.outsider.id)

        with self.assertRaises(UnauthorizedError) as ctx:
            review_leave_request(self.db, reviewer=self._principal(self.manager), leave_id=leave.id, approve=True)

        self.assertEqual(ctx.exception.status_code, 404)
        self.assertEqual(ctx.exception.code, "LEAVE_NOT_FOUND")
        self.db.expire_all()
        self.assertEqual(self.db.get(LeaveRequest, leave.id).status, LeaveStatus.PENDING)

    def test_second_review_fails_once_decided(self) -> None:
        leave = self._create()
        review_leave_request(self.db, reviewer=self._principal(self.manager), leave_id=leave.id, approve=False)

        with self.assertRaises(UnauthorizedError):
            review_leave_request(self.db, reviewer=self._principal(self.hr), leave_id=leave.id, approve=True)
        self.db.expire_all()
        self.assertEqual(self.db.get(LeaveRequest, leave.id).status, LeaveStatus.REJECTED)

    def test_hr_reviews_org_wide(self) -> None:
        leave = self._create(user_id=self.outsider.id)

        reviewed = review_leave_request(self.db, reviewer=self._principal(self.hr), leave_id=leave.id, approve=True)
        self.assertEqual(reviewed.status, LeaveStatus.APPROVED)

    def test_plain_employee_cannot_review(self) -> None:
        leave = self._create(user_id=self.outsider.id)

        with self.assertRaises(UnauthorizedError) as ctx:
            review_leave_request(self.db, reviewer=self._principal(self.employee), leave_id=leave.id, approve=True)
        self.assertEqual(ctx.exception.code, "FORBIDDEN")

    def test_approval_updates_stored_balance_row(self) -> None:
        add_balance(self.db, user_id=self.employee.id, leave_type=LeaveType.CASUAL, year=2025, total_days=8)
        leave = self._create()

        review_leave_request(self.db, reviewer=self._principal(self.manager), leave_id=leave.id, approve=True)

        self.db.expire_all()
        balance = self.db.scalar(select(LeaveBalance).where(LeaveBalance.user_id == self.employee.id))
        self.assertEqual(balance.used_days, 5)
        self.assertEqual(balance.remaining_days, 3)

    def test_approvals_from_separate_sessions_both_count_against_the_balance(self) -> None:
        add_balance(self.db, user_id=self.employee.id, leave_type=LeaveType.CASUAL, year=2025, total_days=8)
        first = self._create()
        second = self._create(start_date=date(2025, 3, 10), end_date=date(2025, 3, 11))
        other_db = self.session_factory()
        self.addCleanup(other_db.close)
        stale = other_db.scalar(select(LeaveBalance).where(LeaveBalance.user_id == self.employee.id))
        self.assertEqual(stale.used_days, 0)

        review_leave_request(self.db, reviewer=self._principal(self.manager), leave_id=first.id, approve=True)
        review_leave_request(other_db, reviewer=self._principal(self.manager), leave_id=second.id, approve=True)

        self.db.expire_all()
        balance = self.db.scalar(select(LeaveBalance).where(LeaveBalance.user_id == self.employee.id))
        self.assertEqual(balance.used_days, 7)
        self.assertEqual(balance.remaining_days, 1)

    def test_review_queue_is_scoped_for_managers(self) -> None:
        own_team = self._create()
        self._create(user_id=self.outsider.id)

        manager_queue = list_reviewable_leaves(self.db, reviewer=self._principal(self.manager))
        hr_queue = list_reviewable_leaves(self.db, reviewer=self._principal(self.hr), status=LeaveStatus.PENDING)

        self.assertEqual([item.id for item in manager_queue], [own_team.id])
        self.assertEqual(len(hr_queue), 2)

    def test_purge_is_admin_only(self) -> None:
        admin = add_employee(self.db, "Root Admin", role=EmployeeRole.ADMIN)
        leave = self._create()

        with self.assertRaises(UnauthorizedError):
            purge_leave_request(self.db, actor=self._principal(self.hr), leave_id=leave.id)

        purge_leave_request(self.db, actor=self._principal(admin), leave_id=leave.id)
        self.assertEqual(self.db.scalar(select(func.count(LeaveRequest.id))), 0)


if __name__ == "__main__":
    unittest.main()
