from __future__ import annotations

from datetime import datetime, timezone


class TimeProvider:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def utcnow_naive(self) -> datetime:
        """UTC wall clock without tzinfo, matching the naive DateTime columns."""
        return self.now().replace(tzinfo=None)

    def epoch_ms(self) -> int:
        return int(self.now().timestamp() * 1000)


def ensure_aware(dt: datetime) -> datetime:
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        raise ValueError('Naive datetime not allowed in business logic')
    return dt


default_time_provider = TimeProvider()
