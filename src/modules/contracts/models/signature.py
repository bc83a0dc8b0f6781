from sqlalchemy import Column, Integer, DateTime, String, Text
from datetime import datetime
from database import Base

class Signature(Base):
    __tablename__ = "signatures"

    id = Column(Integer, primary_key=True)
    # Weak reference: signatures outlive edits to the contract row
    contract_id    = Column(String(36), nullable=False, index=True)
    party_email    = Column(String, nullable=False)
    party_role     = Column(String(64), nullable=False)
    signature_data = Column(Text, nullable=False)
    ip_address     = Column(String(64), nullable=True)
    timestamp      = Column(DateTime, default=datetime.utcnow, nullable=False)
