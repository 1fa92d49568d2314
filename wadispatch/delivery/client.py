from __future__ import annotations

import asyncio
import time
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, Self

import httpx

from ..core.enums import HealthCheckStatus
from ..logger import get_logger
from ..queue.rate_gate import RateGate, TokenBucketRateGate
from ..resilience import BeforeSleepCallback, Retry, RetryConfig, log_before_sleep
from .exceptions import DeliveryError, DeliveryNotConfiguredError, RetryableDeliveryError
from .models import DeliveryMetrics, DeliveryResult, MediaUploadResult
from .phone import normalize_phone_number

if TYPE_CHECKING:
    from types import TracebackType

    from structlog.stdlib import BoundLogger

    from .config import DeliveryConfig

logger: BoundLogger = get_logger(__name__)

MAX_BUTTONS = 3
BUTTON_TITLE_LIMIT = 20
ROW_TITLE_LIMIT = 24
ROW_DESCRIPTION_LIMIT = 72
DEFAULT_LIST_BUTTON = "Ver opciones"


def _error_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text or None


def _error_message(response: httpx.Response, body: Any) -> str:
    if isinstance(body, Mapping):
        error = body.get("error")
        if isinstance(error, Mapping) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
    return f"HTTP {response.status_code}"


class DeliveryClient:
    """Async client for the 360Dialog WhatsApp Business API.

    Every send is a POST to ``/messages`` authenticated with the
    ``D360-API-KEY`` header. Transport errors, HTTP 5xx and HTTP 429 are
    retried with jittered exponential backoff; once attempts run out the last
    :class:`RetryableDeliveryError` propagates. Any other non-2xx response
    raises :class:`DeliveryError` immediately.

    Parameters
    ----------
    config : DeliveryConfig
        Credentials, timeouts and payload limits.
    transport : httpx.AsyncBaseTransport | None
        Custom transport, e.g. ``httpx.MockTransport`` in tests.
    rate_gate : RateGate | None
        Gate used with ``config.recipient_rate_limit``, keyed by recipient.
    before_sleep : BeforeSleepCallback | None
        Hook invoked before each backoff sleep.

    Examples
    --------
    >>> async with DeliveryClient(DeliveryConfig(api_key="...")) as client:
    ...     result = await client.send_text("3001234567", "Hola")
    ...     result.message_id
    'wamid.HBgM...'
    """

    def __init__(
        self,
        config: DeliveryConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        rate_gate: RateGate | None = None,
        before_sleep: BeforeSleepCallback | None = log_before_sleep,
    ) -> None:
        self.config = config
        self._transport = transport
        self._rate_gate: RateGate = rate_gate if rate_gate is not None else TokenBucketRateGate()
        self._client: httpx.AsyncClient | None = None
        self._init_lock = asyncio.Lock()
        self._metrics = DeliveryMetrics()

        self._retry_config = RetryConfig(
            max_attempts=config.retry_max_attempts,
            multiplier=config.retry_multiplier,
            wait_max=config.retry_wait_max,
            retry_on_exceptions=(RetryableDeliveryError,),
        )
        self._request = Retry(self._retry_config, before_sleep=before_sleep)(self._request_once)

    async def __aenter__(self) -> Self:
        await self.ainitialize()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def ainitialize(self) -> None:
        async with self._init_lock:
            if self._client is not None:
                return

            headers = {"Accept": "application/json"}
            if self.config.api_key is not None:
                headers["D360-API-KEY"] = self.config.api_key.get_secret_value()

            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                headers=headers,
                timeout=httpx.Timeout(self.config.timeout_seconds),
                transport=self._transport,
            )

            if self.config.configured:
                logger.info(
                    "Delivery client initialized",
                    base_url=self.config.base_url,
                    phone_number_id=self.config.phone_number_id,
                )
            else:
                logger.warning("Delivery client initialized without an API key, sends will fail")

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("Delivery client closed")

    async def ahealth_check(self) -> HealthCheckStatus:
        if self._client is None:
            return HealthCheckStatus.INITIALIZING
        if not self.config.configured:
            return HealthCheckStatus.DEGRADED
        return HealthCheckStatus.HEALTHY

    def get_metrics(self) -> DeliveryMetrics:
        return self._metrics.model_copy()

    def normalize(self, phone: str | None) -> str:
        return normalize_phone_number(phone, self.config.default_country_code, self.config.local_prefixes)

    def _require_client(self) -> httpx.AsyncClient:
        if not self.config.configured:
            raise DeliveryNotConfiguredError()
        if self._client is None:
            raise RuntimeError("DeliveryClient not initialized. Call ainitialize() first.")
        return self._client

    async def _request_once(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        client = self._require_client()
        try:
            response = await client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise RetryableDeliveryError(f"Transport error: {e}", code="TRANSPORT_ERROR") from e

        if response.is_success:
            return response

        body = _error_body(response)
        message = _error_message(response, body)
        logger.warning(
            "360Dialog request failed",
            method=method,
            path=path,
            status_code=response.status_code,
            error=message,
        )
        if response.status_code >= 500 or response.status_code == 429:
            raise RetryableDeliveryError(message, "HTTP_ERROR", response.status_code, body)
        raise DeliveryError(message, "SEND_MESSAGE_ERROR", response.status_code, body)

    def _envelope(self, to: str, kind: str) -> dict[str, Any]:
        return {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": self.normalize(to),
            "type": kind,
        }

    async def send_message(self, message: Mapping[str, Any]) -> DeliveryResult:
        """POST a fully built message object to ``/messages``.

        Raises
        ------
        DeliveryError
            ``RATE_LIMIT_EXCEEDED`` when the recipient is throttled locally,
            ``INVALID_RESPONSE`` when the body lacks ``messages[0].id``, or the
            HTTP failure after retries.
        """
        recipient = str(message.get("to") or "")
        if recipient and not self._rate_gate.admit(recipient, self.config.recipient_rate_limit):
            self._metrics.record_error()
            raise DeliveryError("Rate limit exceeded", code="RATE_LIMIT_EXCEEDED")

        started = time.perf_counter()
        try:
            response = await self._request("POST", "/messages", json=dict(message))
            result = self._parse_send_response(response)
        except DeliveryError:
            self._metrics.record_error()
            raise

        elapsed_ms = (time.perf_counter() - started) * 1000
        self._metrics.record_success(elapsed_ms)
        logger.info(
            "Message sent",
            to=recipient,
            type=message.get("type"),
            message_id=result.message_id,
            response_time_ms=round(elapsed_ms, 1),
        )
        return result

    @staticmethod
    def _parse_send_response(response: httpx.Response) -> DeliveryResult:
        try:
            body = response.json()
        except ValueError as e:
            raise DeliveryError("Response is not JSON", "INVALID_RESPONSE", response.status_code, response.text) from e

        messages = body.get("messages") if isinstance(body, Mapping) else None
        if isinstance(messages, list) and messages and isinstance(messages[0], Mapping) and messages[0].get("id"):
            first = messages[0]
            return DeliveryResult(
                message_id=str(first["id"]),
                status=first.get("message_status"),
                data=dict(body),
            )
        raise DeliveryError("Invalid response format", "INVALID_RESPONSE", response.status_code, body)

    async def send_text(self, to: str, text: str, *, preview_url: bool = False) -> DeliveryResult:
        if not text or not text.strip():
            raise DeliveryError("Text message cannot be empty", code="INVALID_TEXT")
        if len(text) > self.config.max_text_length:
            raise DeliveryError(
                f"Text message too long (max {self.config.max_text_length} characters)",
                code="TEXT_TOO_LONG",
            )

        message = self._envelope(to, "text")
        message["text"] = {"body": text.strip(), "preview_url": preview_url}
        return await self.send_message(message)

    async def send_template(
        self,
        to: str,
        name: str,
        *,
        language: str | None = None,
        components: Sequence[Mapping[str, Any]] | None = None,
    ) -> DeliveryResult:
        if not name or not name.strip():
            raise DeliveryError("Template name cannot be empty", code="INVALID_TEMPLATE")

        template: dict[str, Any] = {
            "name": name,
            "language": {"code": language or self.config.default_language},
        }
        if components:
            template["components"] = [dict(c) for c in components]

        message = self._envelope(to, "template")
        message["template"] = template
        return await self.send_message(message)

    async def _send_media(
        self,
        kind: str,
        to: str,
        media_id: str | None,
        link: str | None,
        caption: str | None,
    ) -> DeliveryResult:
        if bool(media_id) == bool(link):
            raise DeliveryError(f"Provide exactly one of media_id or link for {kind}", code="INVALID_MEDIA")

        media: dict[str, Any] = {"id": media_id} if media_id else {"link": link}
        if caption:
            media["caption"] = caption

        message = self._envelope(to, kind)
        message[kind] = media
        return await self.send_message(message)

    async def send_image(
        self,
        to: str,
        *,
        media_id: str | None = None,
        link: str | None = None,
        caption: str | None = None,
    ) -> DeliveryResult:
        return await self._send_media("image", to, media_id, link, caption)

    async def send_video(
        self,
        to: str,
        *,
        media_id: str | None = None,
        link: str | None = None,
        caption: str | None = None,
    ) -> DeliveryResult:
        return await self._send_media("video", to, media_id, link, caption)

    async def send_interactive_buttons(
        self,
        to: str,
        text: str,
        buttons: Sequence[Mapping[str, Any]],
    ) -> DeliveryResult:
        """Send up to three reply buttons. Titles are cut to 20 characters."""
        if not buttons:
            raise DeliveryError("Buttons array is required", code="INVALID_BUTTONS")
        if len(buttons) > MAX_BUTTONS:
            raise DeliveryError(f"Maximum {MAX_BUTTONS} buttons allowed", code="TOO_MANY_BUTTONS")

        message = self._envelope(to, "interactive")
        message["interactive"] = {
            "type": "button",
            "body": {"text": text},
            "action": {
                "buttons": [
                    {
                        "type": "reply",
                        "reply": {
                            "id": str(button.get("id") or f"btn_{index}"),
                            "title": str(button["title"])[:BUTTON_TITLE_LIMIT],
                        },
                    }
                    for index, button in enumerate(buttons)
                ]
            },
        }
        return await self.send_message(message)

    async def send_interactive_list(
        self,
        to: str,
        text: str,
        sections: Sequence[Mapping[str, Any]],
        *,
        button_text: str | None = None,
    ) -> DeliveryResult:
        """Send a list message. Row titles are cut to 24 characters, descriptions to 72."""
        if not sections:
            raise DeliveryError("Sections array is required", code="INVALID_SECTIONS")

        built_sections = []
        for section in sections:
            rows = []
            for row in section.get("rows", []):
                built_row = {"id": str(row["id"]), "title": str(row["title"])[:ROW_TITLE_LIMIT]}
                if row.get("description"):
                    built_row["description"] = str(row["description"])[:ROW_DESCRIPTION_LIMIT]
                rows.append(built_row)
            built_sections.append({"title": section.get("title"), "rows": rows})

        message = self._envelope(to, "interactive")
        message["interactive"] = {
            "type": "list",
            "body": {"text": text},
            "action": {"button": button_text or DEFAULT_LIST_BUTTON, "sections": built_sections},
        }
        return await self.send_message(message)

    async def upload_media(self, content: bytes, mime_type: str, filename: str) -> MediaUploadResult:
        """Upload a file to ``/media`` and return the id to reference it in sends."""
        try:
            response = await self._request(
                "POST",
                "/media",
                data={"messaging_product": "whatsapp"},
                files={"file": (filename, content, mime_type)},
                timeout=self.config.upload_timeout_seconds,
            )
            body = response.json()
        except DeliveryError:
            self._metrics.record_error()
            raise
        except ValueError as e:
            self._metrics.record_error()
            raise DeliveryError("Media upload response is not JSON", code="INVALID_MEDIA_RESPONSE") from e

        if not isinstance(body, Mapping) or not body.get("id"):
            self._metrics.record_error()
            raise DeliveryError("Invalid media upload response", "INVALID_MEDIA_RESPONSE", response.status_code, body)

        logger.info("Media uploaded", media_id=body["id"], filename=filename, mime_type=mime_type, size=len(content))
        return MediaUploadResult(media_id=str(body["id"]), url=body.get("url"))
