from datetime import datetime
from enum import Enum as PyEnum
from sqlalchemy import Column, Integer, String, DateTime, Enum, Text

from database import Base

class NotificationKind(PyEnum):
    CONTRACT_REQUEST = "contract_request"
    CONTRACT_FINALIZED = "contract_finalized"

class DeliveryStatus(PyEnum):
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"

class NotificationDelivery(Base):
    __tablename__ = 'notifications'

    id = Column(Integer, primary_key=True)
    contract_id = Column(String(36), nullable=False, index=True)
    kind = Column(Enum(NotificationKind), nullable=False)
    recipient_email = Column(String(1024), nullable=False)
    status = Column(Enum(DeliveryStatus), nullable=False, default=DeliveryStatus.SENDING)
    error = Column(Text, nullable=True)
    # One finalized email per contract and address; NULL for signature requests
    dedupe_key = Column(String(320), unique=True, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
