"""
Web Push delivery to a single subscriber endpoint (RFC 8030).

Delivery failures are returned as data, never raised:

    2xx                          -> DELIVERED
    4xx (404/410 gone, ...)      -> REJECTED, endpoint is stale
    anything else, I/O, signing  -> ERROR, safe to retry later

No retry happens here.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

import httpx
import structlog

from notify_guard.storage.models import PushSubscription
from .vapid import (
    KeyImportError,
    SigningError,
    VapidCredential,
    endpoint_origin,
    sign_vapid_token,
)

logger = structlog.get_logger(__name__)

DEFAULT_TTL_SECONDS = 86400
DEFAULT_TIMEOUT_SECONDS = 10.0


class DispatchOutcome(Enum):
    """Result of one delivery attempt."""
    DELIVERED = "delivered"
    REJECTED = "rejected"
    ERROR = "error"


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of one (subject, endpoint) attempt. Not persisted."""
    subject_id: str
    endpoint: str
    outcome: DispatchOutcome
    http_status: Optional[int] = None
    detail: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return self.outcome is DispatchOutcome.DELIVERED


def classify_status(status_code: int) -> DispatchOutcome:
    """Map a push service HTTP status to an outcome."""
    if 200 <= status_code < 300:
        return DispatchOutcome.DELIVERED
    if 400 <= status_code < 500:
        return DispatchOutcome.REJECTED
    return DispatchOutcome.ERROR


def _validate_subscription(subscription: PushSubscription) -> None:
    missing = [
        name for name in ("endpoint", "p256dh", "auth")
        if not getattr(subscription, name, None)
    ]
    if missing:
        raise ValueError(f"Push subscription is missing required fields: {missing}")


class PushDispatcher:
    """Sends signed Web Push requests.

    The credential is injected and read-only, so one dispatcher can be
    shared by many worker threads. httpx.Client is thread-safe.

    Args:
        credential: VAPID key pair and contact
        client: Optional preconfigured httpx client (tests pass one
            with a MockTransport)
        timeout: Per-request timeout in seconds, used when no client is given
    """

    def __init__(
        self,
        credential: VapidCredential,
        client: Optional[httpx.Client] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS
    ):
        self.credential = credential
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def __enter__(self) -> "PushDispatcher":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def build_headers(self, token: str, ttl_seconds: int) -> dict:
        """Headers required by the push service, in their canonical casing."""
        return {
            "Content-Type": "application/octet-stream",
            "Content-Encoding": "aes128gcm",
            "TTL": str(ttl_seconds),
            "Authorization": f"vapid t={token}, k={self.credential.public_key}",
            "Urgency": "normal",
        }

    def dispatch(
        self,
        subscription: PushSubscription,
        payload: Union[bytes, str],
        ttl_seconds: int = DEFAULT_TTL_SECONDS
    ) -> DispatchResult:
        """Deliver one payload to one endpoint.

        The body is sent as given. The aes128gcm header is set, but no
        RFC 8291 encryption against p256dh/auth is performed.

        Raises:
            ValueError: If the subscription is malformed
        """
        _validate_subscription(subscription)
        audience = endpoint_origin(subscription.endpoint)
        body = payload.encode("utf-8") if isinstance(payload, str) else payload

        def result(outcome, http_status=None, detail=None) -> DispatchResult:
            return DispatchResult(
                subject_id=subscription.subject_id,
                endpoint=subscription.endpoint,
                outcome=outcome,
                http_status=http_status,
                detail=detail
            )

        try:
            token = sign_vapid_token(
                audience, self.credential.private_key, self.credential.contact
            )
        except (KeyImportError, SigningError) as e:
            logger.error("push_signing_failed", subject_id=subscription.subject_id, error=str(e))
            return result(DispatchOutcome.ERROR, detail=str(e))

        try:
            response = self.client.post(
                subscription.endpoint,
                content=body,
                headers=self.build_headers(token, ttl_seconds)
            )
        except httpx.HTTPError as e:
            logger.warning(
                "push_transport_error",
                subject_id=subscription.subject_id,
                origin=audience,
                error=repr(e),
            )
            return result(DispatchOutcome.ERROR, detail=repr(e))

        outcome = classify_status(response.status_code)
        if outcome is DispatchOutcome.DELIVERED:
            logger.debug(
                "push_dispatched",
                subject_id=subscription.subject_id,
                origin=audience,
                status=response.status_code,
            )
            return result(outcome, http_status=response.status_code)

        logger.warning(
            "push_not_delivered",
            subject_id=subscription.subject_id,
            origin=audience,
            status=response.status_code,
            outcome=outcome.value,
        )
        return result(outcome, http_status=response.status_code, detail=response.reason_phrase)
