from __future__ import annotations

import unittest
from datetime import date, time
from decimal import Decimal
from unittest.mock import patch

from sqlalchemy import func, select

from hrcore.models import (
    AttendanceRecord,
    AttendanceStatus,
    AuditLog,
    EmployeeRole,
    LeaveType,
    Notification,
    WorkHoursRecord,
)
from hrcore.services.reconciliation import (
    absence_recipient_ids,
    run_absence_notification_sweep,
    run_absenteeism_sweep,
    run_forced_checkout_sweep,
)
from tests._support import TEST_CONFIG, add_employee, add_leave, make_session_factory

TODAY = date(2025, 3, 3)
LEAVE_END = date(2025, 3, 7)


def _add_record(db, user_id: int, *, check_in: time | None, check_out: time | None = None, status=AttendanceStatus.PRESENT):  # type: ignore[no-untyped-def]
    record = AttendanceRecord(
        user_id=user_id,
        attendance_date=TODAY,
        status=status,
        check_in_time=check_in,
        check_out_time=check_out,
    )
    db.add(record)
    db.commit()
    return record


class AbsenteeismSweepTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.present = add_employee(self.db, "Present Person")
        self.on_leave = add_employee(self.db, "On Leave")
        self.missing = add_employee(self.db, "No Show", role=EmployeeRole.HR)
        add_employee(self.db, "Admin User", role=EmployeeRole.ADMIN)
        add_employee(self.db, "Inactive User", is_active=False)
        _add_record(self.db, self.present.id, check_in=time(9, 0))
        add_leave(self.db, user_id=self.on_leave.id, leave_type=LeaveType.SICK, start=date(2025, 3, 1), end=date(2025, 3, 4))

    def tearDown(self) -> None:
        self.db.close()

    def _absent_user_ids(self) -> list[int]:
        return list(
            self.db.scalars(
                select(AttendanceRecord.user_id).where(AttendanceRecord.status == AttendanceStatus.ABSENT)
            ).all()
        )

    def test_marks_only_tracked_employees_without_record_or_leave(self) -> None:
        result = run_absenteeism_sweep(self.db, today=TODAY, config=TEST_CONFIG)

        self.assertEqual(result.processed, 1)
        self.assertEqual(result.affected_user_ids, [self.missing.id])
        self.assertEqual(self._absent_user_ids(), [self.missing.id])
        absent = self.db.scalar(select(AttendanceRecord).where(AttendanceRecord.user_id == self.missing.id))
        self.assertIsNone(absent.check_in_time)
        self.assertIsNone(absent.check_out_time)

    def test_rerun_is_idempotent(self) -> None:
        run_absenteeism_sweep(self.db, today=TODAY, config=TEST_CONFIG)
        second = run_absenteeism_sweep(self.db, today=TODAY, config=TEST_CONFIG)

        self.assertEqual(second.processed, 0)
        self.assertEqual(self._absent_user_ids(), [self.missing.id])
        audit_count = self.db.scalar(select(func.count(AuditLog.id)).where(AuditLog.action == "auto_absent_marked"))
        self.assertEqual(audit_count, 1)

    def test_insert_losing_unique_constraint_is_skipped(self) -> None:
        with patch("hrcore.services.reconciliation._has_record", return_value=False):
            result = run_absenteeism_sweep(self.db, today=TODAY, config=TEST_CONFIG)

        self.assertEqual(result.processed, 1)
        self.assertEqual(result.skipped, 2)
        self.assertEqual(result.failed, 0)
        present_rows = self.db.scalars(select(AttendanceRecord).where(AttendanceRecord.user_id == self.present.id)).all()
        self.assertEqual(len(present_rows), 1)
        self.assertEqual(present_rows[0].status, AttendanceStatus.PRESENT)


class ForcedCheckoutSweepTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.open_employee = add_employee(self.db, "Forgot Checkout")
        self.closed_employee = add_employee(self.db, "Checked Out")
        self.absent_employee = add_employee(self.db, "Absent")
        self.open_record = _add_record(self.db, self.open_employee.id, check_in=time(10, 30))
        self.closed_record = _add_record(self.db, self.closed_employee.id, check_in=time(9, 0), check_out=time(17, 0))
        _add_record(self.db, self.absent_employee.id, check_in=None, status=AttendanceStatus.ABSENT)

    def tearDown(self) -> None:
        self.db.close()

    def test_closes_open_records_at_cutoff(self) -> None:
        result = run_forced_checkout_sweep(self.db, today=TODAY, config=TEST_CONFIG)

        self.assertEqual(result.processed, 1)
        self.db.expire_all()
        record = self.db.get(AttendanceRecord, self.open_record.id)
        self.assertEqual(record.check_out_time, time(19, 0))
        hours = self.db.scalar(select(WorkHoursRecord).where(WorkHoursRecord.attendance_id == record.id))
        self.assertEqual(Decimal(str(hours.total_hours)), Decimal("8.50"))
        self.assertTrue(hours.is_late)
        self.assertFalse(hours.is_left_early)
        self.assertEqual(self.db.get(AttendanceRecord, self.closed_record.id).check_out_time, time(17, 0))

    def test_rerun_does_nothing(self) -> None:
        run_forced_checkout_sweep(self.db, today=TODAY, config=TEST_CONFIG)
        second = run_forced_checkout_sweep(self.db, today=TODAY, config=TEST_CONFIG)

        self.assertEqual(second.processed, 0)
        self.assertEqual(self.db.scalar(select(func.count(WorkHoursRecord.id))), 1)

    def test_checkin_after_cutoff_is_reported_and_left_open(self) -> None:
        late_employee = add_employee(self.db, "Night Owl")
        late_record = _add_record(self.db, late_employee.id, check_in=time(19, 30))

        result = run_forced_checkout_sweep(self.db, today=TODAY, config=TEST_CONFIG)

        self.assertEqual(result.processed, 1)
        self.assertEqual(result.failed, 1)
        self.db.expire_all()
        self.assertIsNone(self.db.get(AttendanceRecord, late_record.id).check_out_time)


class AbsenceNotificationSweepTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.manager = add_employee(self.db, "Team Manager", role=EmployeeRole.MANAGER)
        self.applicant = add_employee(self.db, "Applicant", manager_id=self.manager.id)
        self.peer = add_employee(self.db, "Peer", manager_id=self.manager.id)
        self.report = add_employee(self.db, "Direct Report", manager_id=self.applicant.id)
        add_employee(self.db, "Inactive Peer", manager_id=self.manager.id, is_active=False)
        add_employee(self.db, "Stranger")
        add_leave(self.db, user_id=self.applicant.id, leave_type=LeaveType.CASUAL, start=TODAY, end=LEAVE_END)

    def tearDown(self) -> None:
        self.db.close()

    def test_recipients_are_manager_reports_and_peers(self) -> None:
        recipients = absence_recipient_ids(self.db, applicant=self.applicant)
        self.assertEqual(recipients, {self.manager.id, self.peer.id, self.report.id})

    def test_notifies_each_recipient_once_across_reruns(self) -> None:
        first = run_absence_notification_sweep(self.db, today=TODAY, config=TEST_CONFIG)
        second = run_absence_notification_sweep(self.db, today=TODAY, config=TEST_CONFIG)

        self.assertEqual(first.processed, 3)
        self.assertEqual(second.processed, 0)
        notified = sorted(self.db.scalars(select(Notification.user_id)).all())
        self.assertEqual(notified, sorted([self.manager.id, self.peer.id, self.report.id]))
        message = self.db.scalar(select(Notification.message).where(Notification.user_id == self.peer.id))
        self.assertIn("Applicant", message)
        self.assertIn(f"until {LEAVE_END.isoformat()}", message)

    def test_no_leave_means_no_notifications(self) -> None:
        result = run_absence_notification_sweep(self.db, today=date(2025, 3, 10), config=TEST_CONFIG)

        self.assertEqual(result.processed, 0)
        self.assertEqual(self.db.scalar(select(func.count(Notification.id))), 0)


if __name__ == "__main__":
    unittest.main()
