from pydantic import BaseModel
from datetime import datetime
from typing import Optional

from modules.notifications.models.notification import DeliveryStatus, NotificationKind

class NotificationDeliveryResponse(BaseModel):
    id: int
    contract_id: str
    kind: NotificationKind
    recipient_email: str
    status: DeliveryStatus
    error: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
