from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from mobifaktura.models.notification import NotificationType


class NotificationResponse(BaseModel):
    id: str
    type: NotificationType
    title: str
    message: str
    read: bool
    invoice_id: Optional[str] = None
    company_id: Optional[str] = None
    created_at: datetime
    read_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class NotificationListResponse(BaseModel):
    total: int
    items: list[NotificationResponse]


class UnreadCountResponse(BaseModel):
    count: int


class AffectedResponse(BaseModel):
    affected: int
