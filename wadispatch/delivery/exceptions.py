from __future__ import annotations

from typing import Any


class DeliveryError(Exception):
    """A send to the WhatsApp API failed.

    Parameters
    ----------
    message : str
        Human readable description.
    code : str
        Stable machine code, e.g. ``INVALID_TEXT`` or ``SEND_MESSAGE_ERROR``.
    status_code : int | None
        HTTP status when the failure came from a response.
    details : Any
        Decoded error body, if any.
    """

    def __init__(
        self,
        message: str,
        code: str = "DELIVERY_ERROR",
        status_code: int | None = None,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status_code = status_code
        self.details = details

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self)!r}, code={self.code!r}, status_code={self.status_code!r})"


class RetryableDeliveryError(DeliveryError):
    """Transport failure, HTTP 5xx or HTTP 429. Retried at the request level."""


class DeliveryNotConfiguredError(DeliveryError):
    """No API key is configured."""

    def __init__(self, message: str = "360Dialog API key is not configured") -> None:
        super().__init__(message, code="NOT_CONFIGURED")
