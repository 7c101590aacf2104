import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel


class NotificationResponse(BaseModel):
    id: uuid.UUID
    type: str
    title: str
    body: str
    # booking_id and the booking status it reports
    data: dict[str, Any] | None = None
    is_read: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class NotificationInbox(BaseModel):
    items: list[NotificationResponse]
    unread_count: int


class ReadAllResult(BaseModel):
    marked_read: int
