from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..queue.domain import utcnow


class DeliveryResult(BaseModel):
    """Accepted send, as reported by the API's ``messages[0]`` entry."""

    model_config = ConfigDict(frozen=True)

    success: bool = True
    message_id: str
    status: str | None = Field(default=None, description="``message_status`` when the API reports one")
    data: dict[str, Any] = Field(default_factory=dict, description="Full decoded response body")
    timestamp: datetime = Field(default_factory=utcnow)


class MediaUploadResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    media_id: str
    url: str | None = None


class DeliveryMetrics(BaseModel):
    messages_sent: int = 0
    errors: int = 0
    avg_response_time_ms: float = 0.0
    last_activity: datetime | None = None

    def record_success(self, response_time_ms: float) -> None:
        self.messages_sent += 1
        # Rolling mean over every successful send.
        self.avg_response_time_ms += (response_time_ms - self.avg_response_time_ms) / self.messages_sent
        self.last_activity = utcnow()

    def record_error(self) -> None:
        self.errors += 1
        self.last_activity = utcnow()
