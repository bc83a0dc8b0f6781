from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from modules.notifications.models.notification import (
    DeliveryStatus,
    NotificationDelivery,
    NotificationKind,
)

class NotificationRepository:
    def __init__(self, db_session: Session):
        self.db = db_session

    def save(self, delivery: NotificationDelivery) -> NotificationDelivery:
        self.db.add(delivery)
        self.db.commit()
        self.db.refresh(delivery)
        return delivery

    def find_by_contract_id(self, contract_id: str) -> List[NotificationDelivery]:
        return (
            self.db
            .query(NotificationDelivery)
            .filter(NotificationDelivery.contract_id == contract_id)
            .order_by(NotificationDelivery.created_at.desc(), NotificationDelivery.id.desc())
            .all()
        )

    def find_by_dedupe_key(self, dedupe_key: str) -> Optional[NotificationDelivery]:
        return (
            self.db
            .query(NotificationDelivery)
            .filter(NotificationDelivery.dedupe_key == dedupe_key)
            .execution_options(populate_existing=True)
            .first()
        )

    def claim(
        self,
        contract_id: str,
        kind: NotificationKind,
        recipient_email: str,
        dedupe_key: str,
    ) -> Tuple[NotificationDelivery, bool]:
        """
        Reserve the right to send a deduplicated notification.

        Returns the delivery row and whether this caller owns the send.
        A failed delivery can be re-claimed; a sending or sent one cannot.
        """
        existing = self.find_by_dedupe_key(dedupe_key)
        if existing is None:
            delivery = NotificationDelivery(
                contract_id=contract_id,
                kind=kind,
                recipient_email=recipient_email,
                status=DeliveryStatus.SENDING,
                dedupe_key=dedupe_key,
            )
            try:
                return self.save(delivery), True
            except IntegrityError:
                self.db.rollback()
                return self.find_by_dedupe_key(dedupe_key), False

        if existing.status != DeliveryStatus.FAILED:
            return existing, False

        reclaimed = (
            self.db.query(NotificationDelivery)
            .filter(
                NotificationDelivery.id == existing.id,
                NotificationDelivery.status == DeliveryStatus.FAILED,
            )
            .update(
                {
                    NotificationDelivery.status: DeliveryStatus.SENDING,
                    NotificationDelivery.recipient_email: recipient_email,
                    NotificationDelivery.error: None,
                    NotificationDelivery.updated_at: datetime.utcnow(),
                },
                synchronize_session=False,
            )
        )
        self.db.commit()
        self.db.refresh(existing)
        return existing, reclaimed == 1

    def update(self, delivery_id: int, data: dict) -> Optional[NotificationDelivery]:
        delivery = self.db.get(NotificationDelivery, delivery_id)
        if not delivery:
            return None
        for field, value in data.items():
            setattr(delivery, field, value)
        self.db.commit()
        self.db.refresh(delivery)
        return delivery
