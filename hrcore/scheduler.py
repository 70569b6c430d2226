from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, time

from sqlalchemy.orm import Session

from hrcore.db import SessionLocal
from hrcore.services.reconciliation import (
    SweepResult,
    run_absence_notification_sweep,
    run_absenteeism_sweep,
    run_forced_checkout_sweep,
)
from hrcore.settings import CoreConfig, get_core_config, get_settings, parse_hhmm

logger = logging.getLogger("hrcore.reconciliation_worker")

SweepFn = Callable[..., SweepResult]

JOB_ABSENCE_NOTIFICATION = "absence_notification"
JOB_ABSENTEEISM = "absenteeism"
JOB_FORCED_CHECKOUT = "forced_checkout"

SWEEPS: dict[str, SweepFn] = {
    JOB_ABSENCE_NOTIFICATION: run_absence_notification_sweep,
    JOB_ABSENTEEISM: run_absenteeism_sweep,
    JOB_FORCED_CHECKOUT: run_forced_checkout_sweep,
}


@dataclass(frozen=True, slots=True)
class DailyTrigger:
    job: str
    at: time


def configured_triggers() -> list[DailyTrigger]:
    settings = get_settings()
    triggers = [
        DailyTrigger(JOB_ABSENCE_NOTIFICATION, parse_hhmm(settings.absence_notice_sweep_local, time(9, 0))),
        DailyTrigger(JOB_ABSENTEEISM, parse_hhmm(settings.absenteeism_sweep_local, time(19, 0))),
        DailyTrigger(JOB_FORCED_CHECKOUT, parse_hhmm(settings.forced_checkout_sweep_local, time(19, 5))),
    ]
    return sorted(triggers, key=lambda item: item.at)


def due_jobs(
    now_local: datetime,
    last_runs: dict[str, date],
    triggers: list[DailyTrigger] | None = None,
) -> list[str]:
    """Jobs whose trigger time has passed today and that have not run today."""
    today = now_local.date()
    current = now_local.time().replace(tzinfo=None)
    due: list[str] = []
    for trigger in triggers if triggers is not None else configured_triggers():
        if current < trigger.at:
            continue
        if last_runs.get(trigger.job) == today:
            continue
        due.append(trigger.job)
    return due


def run_job(
    job: str,
    today: date,
    *,
    config: CoreConfig | None = None,
    session_factory: Callable[[], Session] = SessionLocal,
) -> SweepResult:
    sweep = SWEEPS.get(job)
    if sweep is None:
        raise KeyError(job)

    db = session_factory()
    try:
        return sweep(db, today=today, config=config or get_core_config())
    finally:
        db.close()
