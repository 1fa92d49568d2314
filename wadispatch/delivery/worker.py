"""Bridge between queued payloads and :class:`DeliveryClient` sends.

A queued payload is a JSON object with a recipient and a ``type``::

    {"to": "3001234567", "type": "text", "text": "Hola"}
    {"to": "...", "type": "template", "name": "order_update", "language": "es_CO", "components": [...]}
    {"to": "...", "type": "image", "media_id": "...", "caption": "..."}
    {"to": "...", "type": "video", "link": "https://..."}
    {"to": "...", "type": "buttons", "text": "...", "buttons": [{"id": "yes", "title": "Si"}]}
    {"to": "...", "type": "list", "text": "...", "button_text": "...", "sections": [...]}
    {"type": "raw", "message": {...}}

``type`` defaults to ``text``.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from typing import TYPE_CHECKING, Any

from ..logger import get_logger
from .exceptions import DeliveryError

if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger

    from .client import DeliveryClient
    from .models import DeliveryResult

logger: BoundLogger = get_logger(__name__)

type DeliveryWorker = Callable[[Any, dict[str, Any]], Awaitable[DeliveryResult]]


def _require(payload: Mapping[str, Any], key: str) -> Any:
    value = payload.get(key)
    if value is None or value == "":
        raise DeliveryError(f"Payload is missing {key!r}", code="INVALID_PAYLOAD", details=dict(payload))
    return value


async def dispatch_payload(client: DeliveryClient, payload: Mapping[str, Any]) -> DeliveryResult:
    """Send ``payload`` with the matching client method.

    Raises
    ------
    DeliveryError
        ``INVALID_PAYLOAD`` for a malformed payload, ``UNSUPPORTED_PAYLOAD``
        for an unknown ``type``, or whatever the send raised.
    """
    kind = str(payload.get("type") or "text")

    if kind == "raw":
        return await client.send_message(_require(payload, "message"))

    to = _require(payload, "to")
    match kind:
        case "text":
            return await client.send_text(to, _require(payload, "text"), preview_url=bool(payload.get("preview_url")))
        case "template":
            return await client.send_template(
                to,
                _require(payload, "name"),
                language=payload.get("language"),
                components=payload.get("components"),
            )
        case "image":
            return await client.send_image(
                to, media_id=payload.get("media_id"), link=payload.get("link"), caption=payload.get("caption")
            )
        case "video":
            return await client.send_video(
                to, media_id=payload.get("media_id"), link=payload.get("link"), caption=payload.get("caption")
            )
        case "buttons" | "interactive_buttons":
            return await client.send_interactive_buttons(to, _require(payload, "text"), _require(payload, "buttons"))
        case "list" | "interactive_list":
            return await client.send_interactive_list(
                to,
                _require(payload, "text"),
                _require(payload, "sections"),
                button_text=payload.get("button_text"),
            )
        case _:
            raise DeliveryError(f"Unsupported payload type {kind!r}", code="UNSUPPORTED_PAYLOAD")


def build_whatsapp_worker(client: DeliveryClient) -> DeliveryWorker:
    """Return a queue worker that delivers each payload through ``client``."""

    async def whatsapp_worker(payload: Any, metadata: dict[str, Any]) -> DeliveryResult:
        if not isinstance(payload, Mapping):
            raise DeliveryError(
                f"Payload must be a mapping, got {type(payload).__name__}",
                code="INVALID_PAYLOAD",
            )
        result = await dispatch_payload(client, payload)
        logger.debug(
            "Queued message delivered",
            message_id=result.message_id,
            type=payload.get("type") or "text",
            campaign=metadata.get("campaign"),
        )
        return result

    return whatsapp_worker
