from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from hrcore.models import AuditLog

logger = logging.getLogger("hrcore.audit")


def log_audit(
    db: Session,
    *,
    actor_id: int | None,
    action: str,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> None:
    """Best-effort audit write; failures are logged and never raised.

    Callers commit their own work first, so the rollback on failure only
    discards the audit row.
    """
    audit = AuditLog(
        ts_utc=datetime.now(timezone.utc),
        actor_id=actor_id,
        action=action,
        details=details or {},
    )
    try:
        db.add(audit)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(
            "audit_log_write_failed",
            extra={
                "request_id": request_id,
                "action": action,
                "actor_id": actor_id,
            },
        )
        return

    logger.info(
        "audit_event",
        extra={
            "request_id": request_id,
            "action": action,
            "actor_id": actor_id,
            "details": details or {},
        },
    )
