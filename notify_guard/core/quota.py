"""
Sliding-window quota enforcement over the usage ledger.

A metered operation follows a fixed order:
1. check() - refuse when the trailing window is already at the ceiling
2. run the operation
3. record_usage() - append what it actually cost

Check and record are not atomic. Two concurrent requests from the same
subject can both pass the check, so a window may overshoot its ceiling by
up to (concurrent requests - 1) operations. No lock is taken.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

import structlog

from notify_guard.storage.models import UsageRecord

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class QuotaPolicy:
    """Ceiling for one operation over a trailing window.

    unit_cost is the fixed charge per operation; None means the operation
    is charged by the tokens it reports.
    """
    operation_name: str
    ceiling: float
    window: timedelta
    unit_cost: Optional[float] = None

    def __post_init__(self):
        """Validate policy values."""
        if not self.operation_name:
            raise ValueError("operation_name is required")
        if self.ceiling <= 0:
            raise ValueError("ceiling must be > 0")
        if self.window <= timedelta(0):
            raise ValueError("window must be positive")
        if self.unit_cost is not None and self.unit_cost < 0:
            raise ValueError("unit_cost must be >= 0")


AI_CHAT_POLICY = QuotaPolicy("ai-chat", ceiling=1000, window=timedelta(hours=2))
REVIEW_SUBMIT_POLICY = QuotaPolicy(
    "review-submit", ceiling=5, window=timedelta(hours=24), unit_cost=1
)

DEFAULT_POLICIES: Dict[str, QuotaPolicy] = {
    AI_CHAT_POLICY.operation_name: AI_CHAT_POLICY,
    REVIEW_SUBMIT_POLICY.operation_name: REVIEW_SUBMIT_POLICY,
}


@dataclass(frozen=True)
class QuotaStatus:
    """Consumption of one subject against one policy."""
    used: float
    ceiling: float
    window: timedelta
    resets_in: Optional[timedelta] = None

    @property
    def remaining(self) -> float:
        return max(self.ceiling - self.used, 0)

    @property
    def exceeded(self) -> bool:
        return self.used >= self.ceiling


def _format_duration(value: timedelta) -> str:
    minutes = int(value.total_seconds() // 60)
    hours, minutes = divmod(minutes, 60)
    if hours and minutes:
        return f"{hours}h {minutes}m"
    if hours:
        return f"{hours}h"
    return f"{max(minutes, 1)}m"


def _format_units(value: float) -> str:
    return f"{value:g}"


class QuotaExceededError(Exception):
    """Raised when a subject has used up an operation's window.

    Not a fault: carries what an end user needs to see.
    """

    def __init__(self, operation_name: str, status: QuotaStatus):
        resets = status.resets_in if status.resets_in is not None else status.window
        message = (
            f"Limit reached for {operation_name}. You have used "
            f"{_format_units(status.used)} of {_format_units(status.ceiling)}. "
            f"Resets in {_format_duration(resets)}."
        )
        super().__init__(message)
        self.operation_name = operation_name
        self.used = status.used
        self.ceiling = status.ceiling
        self.window = status.window
        self.resets_in = resets


class QuotaLedger:
    """Records consumption and answers trailing-window questions.

    Args:
        store: Ledger store with append(), sum_units() and oldest_since()
        clock: Returns the current timezone-aware time
    """

    def __init__(self, store, clock: Callable[[], datetime] = _utcnow):
        self.store = store
        self.clock = clock

    def record_usage(self, subject_id: str, operation_name: str, units_consumed: float) -> UsageRecord:
        """Append a usage record stamped with the current time.

        Raises:
            ValueError: If units_consumed is negative or not finite
            StorageError: If the ledger cannot be written
        """
        if not math.isfinite(units_consumed):
            raise ValueError("units_consumed must be a finite number")
        if units_consumed < 0:
            raise ValueError("units_consumed must be >= 0")

        record = UsageRecord(
            subject_id=subject_id,
            operation_name=operation_name,
            units_consumed=units_consumed,
            occurred_at=self.clock()
        )
        self.store.append(record)
        logger.debug(
            "usage_recorded",
            subject_id=subject_id,
            operation=operation_name,
            units=units_consumed,
        )
        return record

    def consumed_in_window(self, subject_id: str, operation_name: str, window: timedelta) -> float:
        """Sum of units recorded at or after now - window. 0 when empty."""
        since = self.clock() - window
        return self.store.sum_units(subject_id, operation_name, since)

    def status(self, subject_id: str, policy: QuotaPolicy) -> QuotaStatus:
        """Current consumption against a policy, without enforcing it.

        resets_in is the time until the oldest record in the window
        leaves it; None when the window is empty.
        """
        now = self.clock()
        since = now - policy.window
        used = self.store.sum_units(subject_id, policy.operation_name, since)

        resets_in = None
        oldest = self.store.oldest_since(subject_id, policy.operation_name, since)
        if oldest is not None:
            resets_in = max(oldest + policy.window - now, timedelta(0))

        return QuotaStatus(
            used=used,
            ceiling=policy.ceiling,
            window=policy.window,
            resets_in=resets_in
        )

    def check(self, subject_id: str, policy: QuotaPolicy) -> QuotaStatus:
        """Compare a subject's window against the policy ceiling.

        Returns:
            QuotaStatus when the subject may proceed

        Raises:
            QuotaExceededError: If used >= ceiling
            StorageError: If the ledger cannot be read; callers must not
                treat this as "unlimited"
        """
        status = self.status(subject_id, policy)
        if status.exceeded:
            logger.warning(
                "quota_exceeded",
                subject_id=subject_id,
                operation=policy.operation_name,
                used=status.used,
                ceiling=policy.ceiling,
            )
            raise QuotaExceededError(policy.operation_name, status)
        return status
