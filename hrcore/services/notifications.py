from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hrcore.models import Notification

logger = logging.getLogger("hrcore.notifications")

NOTIFICATION_FEED_LIMIT = 25


def _has_notification(db: Session, *, dedupe_key: str) -> bool:
    existing_id = db.scalar(select(Notification.id).where(Notification.dedupe_key == dedupe_key))
    return existing_id is not None


def notify(
    db: Session,
    *,
    user_id: int,
    message: str,
    dedupe_key: str | None = None,
) -> bool:
    """Store an in-app notification. Returns False when skipped or failed.

    Delivery is best-effort: errors are logged and swallowed so the calling
    operation is never aborted by the notification channel.
    """
    try:
        if dedupe_key is not None and _has_notification(db, dedupe_key=dedupe_key):
            return False
        db.add(Notification(user_id=user_id, message=message, dedupe_key=dedupe_key))
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(
            "notification_duplicate_skipped",
            extra={"user_id": user_id, "dedupe_key": dedupe_key},
        )
        return False
    except Exception:
        db.rollback()
        logger.exception(
            "notification_write_failed",
            extra={"user_id": user_id, "dedupe_key": dedupe_key},
        )
        return False
    return True


def list_notifications(db: Session, *, user_id: int, limit: int = NOTIFICATION_FEED_LIMIT) -> list[Notification]:
    return list(
        db.scalars(
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(limit)
        ).all()
    )
