from __future__ import annotations

from .client import DeliveryClient
from .config import DeliveryConfig
from .exceptions import DeliveryError, DeliveryNotConfiguredError, RetryableDeliveryError
from .models import DeliveryMetrics, DeliveryResult, MediaUploadResult
from .phone import normalize_phone_number
from .worker import build_whatsapp_worker, dispatch_payload

__all__ = [
    "DeliveryClient",
    "DeliveryConfig",
    "DeliveryError",
    "DeliveryMetrics",
    "DeliveryNotConfiguredError",
    "DeliveryResult",
    "MediaUploadResult",
    "RetryableDeliveryError",
    "build_whatsapp_worker",
    "dispatch_payload",
    "normalize_phone_number",
]
