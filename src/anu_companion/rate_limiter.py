from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Protocol

from loguru import logger

from anu_companion.memory.session_store import SessionStore
from anu_companion.models import RateLimitRecord, RateLimitStatus

LOW_REMAINING_THRESHOLD = 5
WARNING_PERCENT = 80
CRITICAL_PERCENT = 90


class QuotaSource(Protocol):
    def daily_limit(self) -> int: ...


class TierQuotaSource:
    """Daily quota resolved from the current subscription tier."""

    def __init__(self, limits: dict[str, int], tier: str = "free"):
        self._limits = dict(limits)
        self._tier = tier

    @property
    def tier(self) -> str:
        return self._tier

    @property
    def tiers(self) -> list[str]:
        return sorted(self._limits)

    def set_tier(self, tier: str) -> None:
        self._tier = tier.strip().lower()

    def daily_limit(self) -> int:
        if self._tier in self._limits:
            return self._limits[self._tier]
        return self._limits.get("free", 0)


@dataclass(frozen=True)
class UsageSummary:
    used: int
    total: int
    percentage: int
    message: str


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'' if count == 1 else 's'}"


def _reached(status: RateLimitStatus, percent: int) -> bool:
    """Exact usage threshold check; the displayed percentage is rounded."""
    if status.limit <= 0:
        return True
    return status.count * 100 >= percent * status.limit


class RateLimiter:
    """Daily message quota backed by the session store's rate-limit record.

    Every read and write compares the stored date key to ``today()`` first and
    resets the count on rollover. The quota itself is re-read from the quota
    source on every check so mid-day tier changes apply immediately.
    """

    def __init__(
        self,
        store: SessionStore,
        quota_source: QuotaSource,
        *,
        today: Callable[[], date] = date.today,
    ):
        self._store = store
        self._quota_source = quota_source
        self._today = today

    def _date_key(self) -> str:
        return self._today().isoformat()

    def can_proceed(self) -> RateLimitStatus:
        limit = self._quota_source.daily_limit()
        try:
            record = self._store.get_rate_limit_record()
            today = self._date_key()
            changed = False
            if record.date_key != today:
                logger.info(f"Rate limit day rollover: {record.date_key} -> {today}")
                record = RateLimitRecord(date_key=today, request_count=0, request_limit=limit)
                changed = True
            if record.request_limit != limit:
                record.request_limit = limit
                changed = True
            if changed:
                self._store.save_rate_limit_record(record)
        except Exception as ex:
            logger.warning(f"Rate limit check failed, allowing request: {ex}")
            return RateLimitStatus(count=0, limit=limit, remaining=limit, limit_reached=False)

        remaining = max(0, record.request_limit - record.request_count)
        return RateLimitStatus(
            count=record.request_count,
            limit=record.request_limit,
            remaining=remaining,
            limit_reached=record.request_count >= record.request_limit,
        )

    def record_success(self) -> None:
        """Count one confirmed successful completion. Storage errors are logged, never raised."""
        try:
            record = self._store.get_rate_limit_record()
            today = self._date_key()
            if record.date_key != today:
                record = RateLimitRecord(
                    date_key=today,
                    request_count=0,
                    request_limit=self._quota_source.daily_limit(),
                )
            record.request_count += 1
            record.date_key = today
            self._store.save_rate_limit_record(record)
            logger.debug(f"Rate limit recorded: {record.request_count}/{record.request_limit}")
        except Exception as ex:
            logger.warning(f"Failed to record rate-limited request: {ex}")

    def reset(self) -> None:
        record = self._store.get_rate_limit_record()
        self._store.save_rate_limit_record(
            RateLimitRecord(
                date_key=self._date_key(),
                request_count=0,
                request_limit=record.request_limit or self._quota_source.daily_limit(),
            )
        )

    def status(self) -> UsageSummary:
        status = self.can_proceed()
        return UsageSummary(
            used=status.count,
            total=status.limit,
            percentage=self._percentage(status),
            message=self.limit_message(status),
        )

    def limit_message(self, status: RateLimitStatus) -> str:
        if status.limit_reached:
            return (
                f"You've reached your daily limit of {status.limit} messages. "
                "Your messages will reset tomorrow at midnight. 🌙\n\n"
                "Take this as an opportunity to pause and reflect on our conversations today. 🌿"
            )
        if status.remaining <= LOW_REMAINING_THRESHOLD:
            return f"You have {status.remaining} messages remaining today. They'll reset tomorrow! 🌅"
        return f"{status.remaining} messages remaining today"

    def should_show_warning(self, status: RateLimitStatus) -> bool:
        return _reached(status, WARNING_PERCENT)

    def warning_message(self, status: RateLimitStatus) -> str:
        if _reached(status, CRITICAL_PERCENT):
            return f"Almost at your daily limit! Only {_plural(status.remaining, 'message')} left. 🌙"
        if _reached(status, WARNING_PERCENT):
            return (
                f"You're at {self._percentage(status)}% of your daily message limit. "
                f"{status.remaining} remaining. 📊"
            )
        return ""

    def time_until_reset(self, now: datetime | None = None) -> str:
        now = now or datetime.now()
        midnight = datetime.combine(now.date() + timedelta(days=1), datetime.min.time(), tzinfo=now.tzinfo)
        seconds = (midnight - now).total_seconds()
        hours = math.ceil(seconds / 3600)
        if hours <= 1:
            return _plural(max(1, math.ceil(seconds / 60)), "minute")
        return _plural(hours, "hour")

    def _percentage(self, status: RateLimitStatus) -> int:
        if status.limit <= 0:
            return 100
        return round(status.count / status.limit * 100)
