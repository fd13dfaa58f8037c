"""
Notification fan-out across subjects and their devices.

Every (subject, endpoint) pair is an independent attempt on a bounded
worker pool. A failing endpoint never stops the others; the only
batch-fatal condition is missing VAPID configuration, checked before
anything is sent.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Union

import structlog

from notify_guard.config.loader import ConfigurationError
from notify_guard.storage.models import PushSubscription
from .dispatcher import (
    DEFAULT_TTL_SECONDS,
    DispatchOutcome,
    DispatchResult,
    PushDispatcher,
)
from .vapid import VapidCredential

logger = structlog.get_logger(__name__)

WEB_DELIVERY = "web"
EXPIRED_STATUSES = (404, 410)


@dataclass
class FanOutResult:
    """All attempts of one batch plus summary counts."""
    results: List[DispatchResult] = field(default_factory=list)
    skipped_subjects: List[str] = field(default_factory=list)

    @property
    def delivered_count(self) -> int:
        return sum(1 for r in self.results if r.outcome is DispatchOutcome.DELIVERED)

    @property
    def not_delivered_count(self) -> int:
        return len(self.results) - self.delivered_count

    @property
    def stale_endpoints(self) -> List[DispatchResult]:
        """Rejected attempts whose subscriptions may be removed by the caller."""
        return [r for r in self.results if r.outcome is DispatchOutcome.REJECTED]

    @property
    def expired_endpoints(self) -> List[DispatchResult]:
        """Rejections meaning the subscription no longer exists (404, 410)."""
        return [r for r in self.stale_endpoints if r.http_status in EXPIRED_STATUSES]


def _require_credential(credential: Optional[VapidCredential]) -> None:
    if credential is None or not credential.is_complete():
        raise ConfigurationError("Push service not configured: VAPID keys are missing")


def _safe_dispatch(
    dispatcher: PushDispatcher,
    subscription: PushSubscription,
    payload: Union[bytes, str],
    ttl_seconds: int
) -> DispatchResult:
    try:
        return dispatcher.dispatch(subscription, payload, ttl_seconds=ttl_seconds)
    except Exception as e:
        logger.exception(
            "push_dispatch_failed",
            subject_id=subscription.subject_id,
        )
        return DispatchResult(
            subject_id=subscription.subject_id,
            endpoint=subscription.endpoint,
            outcome=DispatchOutcome.ERROR,
            detail=repr(e)
        )


def fan_out(
    subjects: Iterable[str],
    payload_builder: Callable[[str], Union[bytes, str]],
    credential: Optional[VapidCredential],
    subscriptions,
    dispatcher: Optional[PushDispatcher] = None,
    max_workers: int = 8,
    ttl_seconds: int = DEFAULT_TTL_SECONDS,
    recipient_filter: Optional[Callable[[str], bool]] = None
) -> FanOutResult:
    """Deliver one logical notification to every device of every subject.

    Args:
        subjects: Subject ids to notify
        payload_builder: Called once per notified subject for its payload
        credential: VAPID credential; incomplete credentials fail the batch
        subscriptions: Store with list_for_subject(subject_id)
        dispatcher: Optional dispatcher; one is created and closed otherwise
        max_workers: Upper bound on concurrent deliveries
        ttl_seconds: TTL header for every message
        recipient_filter: Optional predicate; False skips the subject

    Returns:
        FanOutResult with one DispatchResult per attempted endpoint

    Raises:
        ConfigurationError: If the credential is missing or incomplete
        StorageError: If subscriptions cannot be listed
    """
    _require_credential(credential)
    if max_workers <= 0:
        raise ValueError("max_workers must be > 0")

    owns_dispatcher = dispatcher is None
    if dispatcher is None:
        dispatcher = PushDispatcher(credential)

    outcome = FanOutResult()
    try:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            futures = []
            for subject_id in subjects:
                if recipient_filter is not None and not recipient_filter(subject_id):
                    outcome.skipped_subjects.append(subject_id)
                    continue

                targets = [
                    s for s in subscriptions.list_for_subject(subject_id)
                    if s.delivery_type == WEB_DELIVERY
                ]
                if not targets:
                    logger.debug("no_push_subscriptions", subject_id=subject_id)
                    continue

                try:
                    payload = payload_builder(subject_id)
                except Exception as e:
                    logger.exception("push_payload_failed", subject_id=subject_id)
                    outcome.results.extend(
                        DispatchResult(
                            subject_id=subject_id,
                            endpoint=s.endpoint,
                            outcome=DispatchOutcome.ERROR,
                            detail=repr(e)
                        )
                        for s in targets
                    )
                    continue

                for subscription in targets:
                    futures.append(pool.submit(
                        _safe_dispatch, dispatcher, subscription, payload, ttl_seconds
                    ))

            outcome.results.extend(future.result() for future in futures)
    finally:
        if owns_dispatcher:
            dispatcher.close()

    logger.info(
        "fan_out_complete",
        attempted=len(outcome.results),
        delivered=outcome.delivered_count,
        not_delivered=outcome.not_delivered_count,
        skipped_subjects=len(outcome.skipped_subjects),
    )
    return outcome
