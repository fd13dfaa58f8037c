"""
Unit tests for single-endpoint Web Push dispatch.
"""

import json

import httpx
import pytest

from notify_guard.core.dispatcher import (
    DispatchOutcome,
    PushDispatcher,
    classify_status,
)
from notify_guard.core.vapid import VapidCredential, b64url_decode
from notify_guard.storage.models import PushSubscription

ENDPOINT = "https://updates.push.services.mozilla.com/wpush/v2/gAAAA"


def make_subscription(endpoint=ENDPOINT, subject_id="user-1", **overrides):
    fields = dict(subject_id=subject_id, endpoint=endpoint, p256dh="BPk3", auth="c2VjcmV0")
    fields.update(overrides)
    return PushSubscription(**fields)


def make_dispatcher(credential, handler):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return PushDispatcher(credential, client=client)


class TestStatusClassification:
    """Test mapping of push service responses to outcomes."""

    @pytest.mark.parametrize("status,outcome", [
        (200, DispatchOutcome.DELIVERED),
        (201, DispatchOutcome.DELIVERED),
        (400, DispatchOutcome.REJECTED),
        (404, DispatchOutcome.REJECTED),
        (410, DispatchOutcome.REJECTED),
        (302, DispatchOutcome.ERROR),
        (500, DispatchOutcome.ERROR),
        (503, DispatchOutcome.ERROR),
    ])
    def test_classify(self, status, outcome):
        assert classify_status(status) is outcome


class TestDispatch:
    """Test dispatch against a mocked push service."""

    def test_created_is_delivered(self, credential):
        dispatcher = make_dispatcher(credential, lambda request: httpx.Response(201))

        result = dispatcher.dispatch(make_subscription(), b"hello")

        assert result.outcome is DispatchOutcome.DELIVERED
        assert result.http_status == 201
        assert result.subject_id == "user-1"
        assert result.endpoint == ENDPOINT

    def test_gone_is_rejected(self, credential):
        dispatcher = make_dispatcher(credential, lambda request: httpx.Response(410))

        result = dispatcher.dispatch(make_subscription(), b"hello")

        assert result.outcome is DispatchOutcome.REJECTED
        assert result.http_status == 410

    def test_unavailable_is_error(self, credential):
        dispatcher = make_dispatcher(credential, lambda request: httpx.Response(503))

        result = dispatcher.dispatch(make_subscription(), b"hello")

        assert result.outcome is DispatchOutcome.ERROR
        assert result.http_status == 503

    def test_network_error_is_returned_not_raised(self, credential):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        result = make_dispatcher(credential, handler).dispatch(make_subscription(), b"hello")

        assert result.outcome is DispatchOutcome.ERROR
        assert result.http_status is None
        assert "ConnectError" in result.detail

    def test_timeout_is_error(self, credential):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        result = make_dispatcher(credential, handler).dispatch(make_subscription(), b"hello")

        assert result.outcome is DispatchOutcome.ERROR


class TestRequestFormat:
    """Test the outgoing Web Push request."""

    def capture(self, credential, payload=b'{"title": "Hi"}', ttl_seconds=86400, endpoint=ENDPOINT):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(201)

        make_dispatcher(credential, handler).dispatch(
            make_subscription(endpoint=endpoint), payload, ttl_seconds=ttl_seconds
        )
        assert len(seen) == 1
        return seen[0]

    def test_posts_payload_to_endpoint(self, credential):
        request = self.capture(credential)

        assert request.method == "POST"
        assert str(request.url) == ENDPOINT
        assert request.content == b'{"title": "Hi"}'

    def test_headers_with_exact_names(self, credential):
        request = self.capture(credential, ttl_seconds=3600)

        raw = dict(request.headers.raw)
        assert raw[b"Content-Type"] == b"application/octet-stream"
        assert raw[b"Content-Encoding"] == b"aes128gcm"
        assert raw[b"TTL"] == b"3600"
        assert raw[b"Urgency"] == b"normal"
        assert b"Authorization" in raw

    def test_authorization_carries_token_and_public_key(self, credential):
        request = self.capture(credential)

        authorization = request.headers["Authorization"]
        assert authorization.startswith("vapid t=")
        assert authorization.endswith(f", k={credential.public_key}")

        token = authorization[len("vapid t="):authorization.index(", k=")]
        payload = json.loads(b64url_decode(token.split(".")[1]))
        assert payload["aud"] == "https://updates.push.services.mozilla.com"
        assert payload["sub"] == "mailto:ops@example.com"

    def test_audience_is_normalized_origin(self, credential):
        request = self.capture(credential, endpoint="https://Push.Example.com:443/send/abc")

        authorization = request.headers["Authorization"]
        token = authorization[len("vapid t="):authorization.index(", k=")]
        payload = json.loads(b64url_decode(token.split(".")[1]))
        assert payload["aud"] == "https://push.example.com"

    def test_str_payload_utf8_encoded(self, credential):
        request = self.capture(credential, payload="Zeit für dein Review")

        assert request.content == "Zeit für dein Review".encode("utf-8")


class TestDispatchFailures:
    """Test per-attempt failures that never reach the network."""

    def test_bad_private_key_is_error_without_request(self, credential):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(201)

        broken = VapidCredential(
            public_key=credential.public_key,
            private_key="AAAA",
            contact=credential.contact
        )
        result = make_dispatcher(broken, handler).dispatch(make_subscription(), b"hello")

        assert result.outcome is DispatchOutcome.ERROR
        assert "32 bytes" in result.detail
        assert calls == []

    def test_missing_keys_raise(self, credential):
        dispatcher = make_dispatcher(credential, lambda request: httpx.Response(201))

        with pytest.raises(ValueError, match="p256dh"):
            dispatcher.dispatch(make_subscription(p256dh=""), b"hello")

    def test_relative_endpoint_raises(self, credential):
        dispatcher = make_dispatcher(credential, lambda request: httpx.Response(201))

        with pytest.raises(ValueError, match="absolute URL"):
            dispatcher.dispatch(make_subscription(endpoint="/wpush/v2/x"), b"hello")
