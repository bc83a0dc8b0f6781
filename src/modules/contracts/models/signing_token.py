from datetime import datetime
from sqlalchemy import Boolean, Column, DateTime, Integer, String
from database import Base

class SigningToken(Base):
    __tablename__ = 'signing_tokens'

    id = Column(Integer, primary_key=True)
    token = Column(String(128), unique=True, nullable=False, index=True)
    contract_id = Column(String(36), nullable=False, index=True)
    recipient_email = Column(String, nullable=False)
    party = Column(String(64), nullable=False)

    # Swept by the background job once past
    expires_at = Column(DateTime, nullable=False, index=True)

    used = Column(Boolean, nullable=False, default=False)
    used_at = Column(DateTime, nullable=True)
    ip_address = Column(String(64), nullable=True)

    revoked = Column(Boolean, nullable=False, default=False)
    revoked_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at
