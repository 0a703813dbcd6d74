from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from tradeflow.models.domain import NotificationType


class NotificationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    deal_id: Optional[int] = None
    type: NotificationType
    title: str
    message: str
    action_url: Optional[str] = None
    read: bool
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
