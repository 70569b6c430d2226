from __future__ import annotations

import unittest
from unittest.mock import MagicMock

from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from hrcore.audit import log_audit
from hrcore.models import AuditLog, Notification
from hrcore.services.notifications import list_notifications, notify
from tests._support import add_employee, make_session_factory


class NotificationSinkTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.employee = add_employee(self.db, "Inbox Owner")

    def tearDown(self) -> None:
        self.db.close()

    def test_dedupe_key_prevents_duplicates(self) -> None:
        self.assertTrue(notify(self.db, user_id=self.employee.id, message="hello", dedupe_key="k-1"))
        self.assertFalse(notify(self.db, user_id=self.employee.id, message="hello", dedupe_key="k-1"))

        self.assertEqual(self.db.scalar(select(func.count(Notification.id))), 1)

    def test_feed_is_limited_and_newest_first(self) -> None:
        for index in range(30):
            notify(self.db, user_id=self.employee.id, message=f"message {index}")

        feed = list_notifications(self.db, user_id=self.employee.id)

        self.assertEqual(len(feed), 25)
        self.assertEqual(feed[0].message, "message 29")

    def test_write_failure_is_swallowed(self) -> None:
        fake_db = MagicMock()
        fake_db.commit.side_effect = OperationalError("INSERT", {}, Exception("down"))

        self.assertFalse(notify(fake_db, user_id=1, message="x"))
        fake_db.rollback.assert_called_once()


class AuditSinkTests(unittest.TestCase):
    def test_audit_row_is_written(self) -> None:
        db = make_session_factory()()
        self.addCleanup(db.close)

        log_audit(db, actor_id=None, action="auto_absent_marked", details={"user_id": 4})

        row = db.scalar(select(AuditLog))
        self.assertIsNone(row.actor_id)
        self.assertEqual(row.details, {"user_id": 4})

    def test_audit_failure_is_logged_not_raised(self) -> None:
        fake_db = MagicMock()
        fake_db.commit.side_effect = OperationalError("INSERT", {}, Exception("down"))

        with self.assertLogs("hrcore.audit", level="ERROR") as logs:
            log_audit(fake_db, actor_id=1, action="leave_requested")

        fake_db.rollback.assert_called_once()
        self.assertTrue(any("audit_log_write_failed" in line for line in logs.output))


if __name__ == "__main__":
    unittest.main()
