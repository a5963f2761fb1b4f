from datetime import datetime, timedelta, timezone
from typing import Protocol

import pytz


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """실제 UTC 시각"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """테스트/시뮬레이션용 고정 시계. advance() 로 시간을 진행시킬 수 있습니다."""

    def __init__(self, current: datetime):
        self._current = as_utc(current)

    def now(self) -> datetime:
        return self._current

    def advance(self, **kwargs) -> None:
        self._current = self._current + timedelta(**kwargs)


def as_utc(value: datetime | None) -> datetime | None:
    """
    naive datetime 은 UTC 로 간주합니다.
    (SQLite 는 timezone 정보를 저장하지 않음)
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def business_date_key(now: datetime, tz_name: str) -> str:
    """업무 시간대 기준 달력 날짜 (YYYY-MM-DD)"""
    tz = pytz.timezone(tz_name)
    return as_utc(now).astimezone(tz).date().isoformat()
