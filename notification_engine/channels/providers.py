"""Delivery provider capabilities.

Each channel talks to a provider through a narrow interface. The HTTP
providers post JSON to a configured gateway with a bounded timeout; the
simulated provider only logs and is used when no gateway is configured.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, TypeVar
from uuid import uuid4

import httpx
from tenacity import (
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

from notification_engine.config import get_settings
from notification_engine.errors import ProviderError

logger = logging.getLogger(__name__)

R = TypeVar("R")

# Gateway responses that mean the push endpoint will never accept messages
INVALID_ENDPOINT_STATUSES = (404, 410)


class EmailProvider(ABC):
    @abstractmethod
    def send_email(
        self,
        recipient: str,
        subject: str,
        text_body: str,
        html_body: str | None = None,
    ) -> str:
        """Send an email and return the provider message id."""


class SmsProvider(ABC):
    @abstractmethod
    def send_sms(self, recipient: str, body: str) -> str:
        """Send a text message and return the provider message id."""


class PushProvider(ABC):
    @abstractmethod
    def send_push(
        self,
        endpoint: str,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> str:
        """Send a push message and return the provider message id."""

    @abstractmethod
    def register_endpoint(self, device_token: str, platform: str) -> str:
        """Create a provider endpoint for a device token."""

    @abstractmethod
    def get_endpoint_status(self, endpoint: str) -> bool:
        """True if the endpoint can still receive messages."""

    @abstractmethod
    def delete_endpoint(self, endpoint: str) -> None:
        """Remove a provider endpoint."""


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, ProviderError) and error.is_retryable


def with_provider_retry(
    fn: Callable[[], R],
    attempts: int | None = None,
    wait_seconds: float | None = None,
) -> R:
    """Call fn, retrying retryable ProviderErrors with a fixed wait.

    The last error is re-raised once attempts are used up. Non-retryable
    errors propagate on the first occurrence.
    """
    settings = get_settings()
    attempts = attempts if attempts is not None else settings.PROVIDER_RETRY_ATTEMPTS
    wait_seconds = wait_seconds if wait_seconds is not None else settings.PROVIDER_RETRY_WAIT_SECONDS

    retryer = Retrying(
        stop=stop_after_attempt(max(attempts, 1)),
        wait=wait_fixed(wait_seconds),
        retry=retry_if_exception(_is_retryable),
        reraise=True,
    )
    return retryer(fn)


# =============================================================================
# HTTP gateway providers
# =============================================================================


class HttpGatewayProvider:
    """JSON-over-HTTP client for a delivery gateway."""

    def __init__(self, base_url: str, api_key: str = "", timeout: float = 10.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._client: httpx.Client | None = None

    @property
    def client(self) -> httpx.Client:
        """Lazy-initialize HTTP client."""
        if self._client is None:
            headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
            self._client = httpx.Client(base_url=self.base_url, timeout=self.timeout, headers=headers)
        return self._client

    def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        try:
            response = self.client.request(method, path, json=payload)
        except httpx.TimeoutException as e:
            logger.warning(f"Gateway timeout for {method} {path}: {e}")
            raise ProviderError(f"Gateway timeout: {e}", error_code="TIMEOUT") from e
        except httpx.RequestError as e:
            logger.warning(f"Gateway connection error for {method} {path}: {e}")
            raise ProviderError(f"Gateway unreachable: {e}", error_code="CONNECTION_ERROR") from e

        if response.is_success:
            return response.json() if response.content else {}

        try:
            message = response.json().get("message", response.text)
        except ValueError:
            message = response.text or "Unknown gateway error"

        logger.error(
            f"Gateway error {response.status_code}: {message}",
            extra={"status_code": response.status_code, "path": path},
        )
        raise ProviderError(
            message,
            error_code=f"HTTP_{response.status_code}",
            is_retryable=response.status_code == 429 or response.status_code >= 500,
            invalid_endpoint=response.status_code in INVALID_ENDPOINT_STATUSES,
        )

    def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        return self._request("POST", path, payload)

    @staticmethod
    def _message_id(data: dict[str, Any]) -> str:
        message_id = data.get("message_id") or data.get("id")
        if not message_id:
            raise ProviderError("Gateway response has no message id", error_code="BAD_RESPONSE")
        return str(message_id)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None


class HttpEmailProvider(HttpGatewayProvider, EmailProvider):
    def __init__(self, base_url: str, api_key: str = "", from_address: str = "", timeout: float = 10.0) -> None:
        super().__init__(base_url, api_key, timeout)
        self.from_address = from_address

    def send_email(self, recipient, subject, text_body, html_body=None):
        data = self._post(
            "/emails",
            {
                "from": self.from_address,
                "to": recipient,
                "subject": subject,
                "text": text_body,
                "html": html_body,
            },
        )
        return self._message_id(data)


class HttpSmsProvider(HttpGatewayProvider, SmsProvider):
    def __init__(self, base_url: str, api_key: str = "", from_number: str = "", timeout: float = 10.0) -> None:
        super().__init__(base_url, api_key, timeout)
        self.from_number = from_number

    def send_sms(self, recipient, body):
        data = self._post("/messages", {"from": self.from_number, "to": recipient, "body": body})
        return self._message_id(data)


class HttpPushProvider(HttpGatewayProvider, PushProvider):
    def send_push(self, endpoint, title, body, data=None):
        response = self._post(
            "/push",
            {"endpoint": endpoint, "title": title, "body": body, "data": data or {}},
        )
        return self._message_id(response)

    def register_endpoint(self, device_token, platform):
        data = self._post("/endpoints", {"token": device_token, "platform": platform})
        endpoint = data.get("endpoint")
        if not endpoint:
            raise ProviderError("Gateway did not return an endpoint", error_code="BAD_RESPONSE")
        return str(endpoint)

    def get_endpoint_status(self, endpoint):
        data = self._request("GET", f"/endpoints/{endpoint}")
        return bool(data.get("enabled", False))

    def delete_endpoint(self, endpoint):
        self._request("DELETE", f"/endpoints/{endpoint}")


# =============================================================================
# Simulated provider
# =============================================================================


class SimulatedProvider(EmailProvider, SmsProvider, PushProvider):
    """Provider that logs deliveries instead of sending them."""

    def _accept(self, channel: str, recipient: str, **fields: Any) -> str:
        message_id = f"sim-{uuid4().hex}"
        logger.info(
            f"[SIMULATED] Delivering {channel} message",
            extra={"channel": channel, "recipient": recipient, "message_id": message_id, **fields},
        )
        return message_id

    def send_email(self, recipient, subject, text_body, html_body=None):
        return self._accept("email", recipient, subject=subject)

    def send_sms(self, recipient, body):
        return self._accept("sms", recipient, length=len(body))

    def send_push(self, endpoint, title, body, data=None):
        return self._accept("push", endpoint, title=title)

    def register_endpoint(self, device_token, platform):
        return f"sim-endpoint/{platform.lower()}/{device_token}"

    def get_endpoint_status(self, endpoint):
        return True

    def delete_endpoint(self, endpoint):
        logger.info("[SIMULATED] Endpoint deleted", extra={"endpoint": endpoint})


def build_providers() -> tuple[EmailProvider, SmsProvider, PushProvider]:
    """Build providers from settings; channels without a gateway are simulated."""
    settings = get_settings()
    simulated = SimulatedProvider()
    timeout = settings.PROVIDER_TIMEOUT_SECONDS

    email: EmailProvider = simulated
    sms: SmsProvider = simulated
    push: PushProvider = simulated
    if settings.EMAIL_GATEWAY_URL:
        email = HttpEmailProvider(
            settings.EMAIL_GATEWAY_URL, settings.PROVIDER_API_KEY, settings.EMAIL_FROM_ADDRESS, timeout
        )
    if settings.SMS_GATEWAY_URL:
        sms = HttpSmsProvider(
            settings.SMS_GATEWAY_URL, settings.PROVIDER_API_KEY, settings.SMS_FROM_NUMBER, timeout
        )
    if settings.PUSH_GATEWAY_URL:
        push = HttpPushProvider(settings.PUSH_GATEWAY_URL, settings.PROVIDER_API_KEY, timeout)
    return email, sms, push
