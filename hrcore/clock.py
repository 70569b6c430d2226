from __future__ import annotations

from datetime import date, datetime, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo

from hrcore.settings import get_settings


@lru_cache
def attendance_timezone() -> ZoneInfo:
    raw_name = (get_settings().attendance_timezone or "").strip() or "Asia/Kolkata"
    try:
        return ZoneInfo(raw_name)
    except Exception:
        return ZoneInfo("Asia/Kolkata")


def local_now() -> datetime:
    return datetime.now(timezone.utc).astimezone(attendance_timezone())


def local_today() -> date:
    return local_now().date()
