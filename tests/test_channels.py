"""Tests for channel handlers, the send contract and provider clients."""

import httpx
import pytest

from notification_engine.channels.providers import (
    HttpEmailProvider,
    HttpPushProvider,
    with_provider_retry,
)
from notification_engine.channels.registry import ChannelDispatcher
from notification_engine.errors import InvalidStateError, ProviderError, ValidationError
from notification_engine.models.notification import (
    Notification,
    NotificationStatus,
    NotificationType,
)


def _email(**overrides) -> Notification:
    values = {
        "type": NotificationType.EMAIL,
        "recipient_email": "ana@example.com",
        "subject": "Hello",
        "title": "Hello",
        "content": "Body",
    }
    values.update(overrides)
    return Notification(**values)


# ============================================================================
# ChannelDispatcher
# ============================================================================

class TestChannelDispatcher:
    """Tests for the per-attempt send contract."""

    def test_success_marks_sent(self, registry, provider):
        notification = _email()

        ChannelDispatcher(registry).dispatch(notification)

        assert notification.status == NotificationStatus.SENT
        assert notification.email_message_id == "email-1"
        assert len(provider.sent) == 1

    def test_in_app_success_marks_delivered(self, registry):
        notification = Notification(type=NotificationType.IN_APP, title="Hi", content="There")

        ChannelDispatcher(registry).dispatch(notification)

        assert notification.status == NotificationStatus.DELIVERED

    def test_provider_error_marks_failed(self, registry, provider):
        provider.fail_for("ana@example.com")
        notification = _email()

        with pytest.raises(ProviderError):
            ChannelDispatcher(registry).dispatch(notification, "RETRY_ERROR")

        assert notification.status == NotificationStatus.FAILED
        assert notification.retry_count == 1
        assert notification.error_code == "RETRY_ERROR"
        assert notification.error_message == "Gateway rejected message"

    def test_unexpected_error_is_wrapped(self, registry, provider):
        provider.failures["ana@example.com"] = RuntimeError("socket closed")
        notification = _email()

        with pytest.raises(ProviderError) as exc_info:
            ChannelDispatcher(registry).dispatch(notification)

        assert "socket closed" in str(exc_info.value)
        assert notification.status == NotificationStatus.FAILED

    def test_missing_subject_marks_validation_failure(self, registry, provider):
        notification = _email(subject=None)

        with pytest.raises(ValidationError) as exc_info:
            ChannelDispatcher(registry).dispatch(notification)

        assert exc_info.value.field == "subject"
        assert notification.error_code == "VALIDATION_ERROR"
        assert provider.sent == []

    def test_terminal_notification_is_rejected(self, registry):
        notification = _email()
        notification.mark_cancelled()

        with pytest.raises(InvalidStateError):
            ChannelDispatcher(registry).dispatch(notification)

    def test_push_requires_platform(self, registry):
        notification = Notification(
            type=NotificationType.PUSH, push_token="tok", title="Hi", content="There"
        )

        with pytest.raises(ValidationError) as exc_info:
            registry.validate(notification)

        assert exc_info.value.field == "platform"


# ============================================================================
# Provider retry
# ============================================================================

class TestProviderRetry:
    """Tests for with_provider_retry."""

    def test_retryable_error_is_retried(self):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ProviderError("Busy", error_code="HTTP_503")
            return "msg-1"

        assert with_provider_retry(flaky, attempts=3, wait_seconds=0) == "msg-1"
        assert len(calls) == 3

    def test_last_error_is_reraised(self):
        def down():
            raise ProviderError("Busy", error_code="HTTP_503")

        with pytest.raises(ProviderError) as exc_info:
            with_provider_retry(down, attempts=2, wait_seconds=0)

        assert exc_info.value.error_code == "HTTP_503"

    def test_non_retryable_error_fails_fast(self):
        calls = []

        def rejected():
            calls.append(1)
            raise ProviderError("Bad request", is_retryable=False)

        with pytest.raises(ProviderError):
            with_provider_retry(rejected, attempts=5, wait_seconds=0)

        assert len(calls) == 1


# ============================================================================
# HTTP gateway providers
# ============================================================================

def _with_transport(provider, handler):
    provider._client = httpx.Client(
        base_url=provider.base_url,
        transport=httpx.MockTransport(handler),
    )
    return provider


class TestHttpProviders:
    """Tests for gateway response mapping."""

    def test_email_success_returns_message_id(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            return httpx.Response(200, json={"message_id": "gw-42"})

        provider = _with_transport(HttpEmailProvider("https://gateway.test", from_address="shop@test"), handler)

        assert provider.send_email("ana@example.com", "Hi", "Body") == "gw-42"
        assert seen["path"] == "/emails"

    def test_server_error_is_retryable(self):
        provider = _with_transport(
            HttpEmailProvider("https://gateway.test"),
            lambda request: httpx.Response(503, json={"message": "Maintenance"}),
        )

        with pytest.raises(ProviderError) as exc_info:
            provider.send_email("ana@example.com", "Hi", "Body")

        assert exc_info.value.is_retryable is True
        assert exc_info.value.error_code == "HTTP_503"
        assert str(exc_info.value) == "Maintenance"

    def test_client_error_is_not_retryable(self):
        provider = _with_transport(
            HttpEmailProvider("https://gateway.test"),
            lambda request: httpx.Response(400, text="Bad address"),
        )

        with pytest.raises(ProviderError) as exc_info:
            provider.send_email("not-an-address", "Hi", "Body")

        assert exc_info.value.is_retryable is False
        assert exc_info.value.invalid_endpoint is False

    def test_gone_push_endpoint_is_flagged_invalid(self):
        provider = _with_transport(
            HttpPushProvider("https://gateway.test"),
            lambda request: httpx.Response(410, json={"message": "Endpoint disabled"}),
        )

        with pytest.raises(ProviderError) as exc_info:
            provider.send_push("endpoint/ios/tok", "Hi", "Body")

        assert exc_info.value.invalid_endpoint is True

    def test_connection_error_maps_to_provider_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        provider = _with_transport(HttpPushProvider("https://gateway.test"), handler)

        with pytest.raises(ProviderError) as exc_info:
            provider.send_push("endpoint/ios/tok", "Hi", "Body")

        assert exc_info.value.error_code == "CONNECTION_ERROR"

    def test_missing_message_id_is_rejected(self):
        provider = _with_transport(
            HttpPushProvider("https://gateway.test"),
            lambda request: httpx.Response(200, json={}),
        )

        with pytest.raises(ProviderError) as exc_info:
            provider.send_push("endpoint/ios/tok", "Hi", "Body")

        assert exc_info.value.error_code == "BAD_RESPONSE"
