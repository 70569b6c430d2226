from __future__ import annotations

import unittest
from datetime import date, datetime, time

from sqlalchemy import select

from hrcore.models import AttendanceRecord, AttendanceStatus
from hrcore.scheduler import (
    JOB_ABSENCE_NOTIFICATION,
    JOB_ABSENTEEISM,
    JOB_FORCED_CHECKOUT,
    DailyTrigger,
    due_jobs,
    run_job,
)
from tests._support import TEST_CONFIG, add_employee, make_session_factory

TRIGGERS = [
    DailyTrigger(JOB_ABSENCE_NOTIFICATION, time(9, 0)),
    DailyTrigger(JOB_ABSENTEEISM, time(19, 0)),
    DailyTrigger(JOB_FORCED_CHECKOUT, time(19, 5)),
]


class DueJobsTests(unittest.TestCase):
    def test_nothing_due_before_first_trigger(self) -> None:
        self.assertEqual(due_jobs(datetime(2025, 3, 3, 8, 59), {}, TRIGGERS), [])

    def test_jobs_become_due_once_their_time_passes(self) -> None:
        self.assertEqual(due_jobs(datetime(2025, 3, 3, 9, 0), {}, TRIGGERS), [JOB_ABSENCE_NOTIFICATION])
        self.assertEqual(
            due_jobs(datetime(2025, 3, 3, 19, 6), {}, TRIGGERS),
            [JOB_ABSENCE_NOTIFICATION, JOB_ABSENTEEISM, JOB_FORCED_CHECKOUT],
        )

    def test_jobs_already_run_today_are_skipped(self) -> None:
        last_runs = {
            JOB_ABSENCE_NOTIFICATION: date(2025, 3, 3),
            JOB_ABSENTEEISM: date(2025, 3, 2),
        }
        self.assertEqual(
            due_jobs(datetime(2025, 3, 3, 19, 1), last_runs, TRIGGERS),
            [JOB_ABSENTEEISM],
        )


class RunJobTests(unittest.TestCase):
    def test_run_job_uses_injected_session_factory(self) -> None:
        session_factory = make_session_factory()
        with session_factory() as db:
            employee = add_employee(db, "Skipped Day")

        result = run_job(JOB_ABSENTEEISM, date(2025, 3, 3), config=TEST_CONFIG, session_factory=session_factory)

        self.assertEqual(result.processed, 1)
        with session_factory() as db:
            record = db.scalar(select(AttendanceRecord).where(AttendanceRecord.user_id == employee.id))
        self.assertEqual(record.status, AttendanceStatus.ABSENT)

    def test_unknown_job_raises(self) -> None:
        with self.assertRaises(KeyError):
            run_job("payroll", date(2025, 3, 3), config=TEST_CONFIG, session_factory=make_session_factory())


if __name__ == "__main__":
    unittest.main()
