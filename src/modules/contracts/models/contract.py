import uuid
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    JSON, Boolean, Column, DateTime, Enum, ForeignKey, Integer, String, Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base


def new_contract_id() -> str:
    return str(uuid.uuid4())


class ContractStatus(PyEnum):
    DRAFT = "draft"
    PENDING = "pending"
    COMPLETED = "completed"


class Contract(Base):
    __tablename__ = 'contracts'

    id = Column(String(36), primary_key=True, default=new_contract_id)
    title = Column(String(255), nullable=False)
    type = Column(String(64), nullable=False, default="custom")
    requirements = Column(Text, nullable=True)
    blocks = Column(JSON, nullable=False, default=list)
    unknowns = Column(JSON, nullable=False, default=list)
    status = Column(Enum(ContractStatus), nullable=False, default=ContractStatus.DRAFT)

    # Bumped on every write; guards optimistic updates
    version = Column(Integer, nullable=False, default=1)

    created_by = Column(Integer, ForeignKey('users.id', ondelete="SET NULL"), nullable=True)
    created_by_email = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    creator = relationship("User", back_populates="contracts")
    parties = relationship(
        "ContractParty",
        back_populates="contract",
        order_by="ContractParty.position",
        cascade="all, delete-orphan",
    )

    @property
    def created_by_name(self):
        return self.creator.name if self.creator is not None else None

    @property
    def roles(self) -> list[str]:
        return [party.role for party in self.parties]

    @property
    def has_signatures(self) -> bool:
        return any(party.signed for party in self.parties)

    def party_for_role(self, role: str):
        for party in self.parties:
            if party.role == role:
                return party
        return None

    def party_for_email(self, email: str):
        wanted = email.strip().lower()
        for party in self.parties:
            if party.email and party.email.strip().lower() == wanted:
                return party
        return None

    def to_json(self) -> dict:
        """Document shape handed to the mailer and the PDF renderer."""
        document = {
            "id": self.id,
            "title": self.title,
            "type": self.type,
            "blocks": self.blocks or [],
            "unknowns": self.unknowns or [],
            "parties": [party.to_json() for party in self.parties],
        }
        return self.with_signature_images(document)

    def with_signature_images(self, document: dict) -> dict:
        """Fill empty signature placeholders with the images captured at signing."""
        images = {
            party.role: party.signature.signature_data
            for party in self.parties
            if party.signed and party.signature is not None
        }
        blocks = []
        for block in document.get("blocks") or []:
            placeholders = []
            for placeholder in block.get("signatures") or []:
                placeholder = dict(placeholder)
                if not placeholder.get("img_url") and placeholder.get("party") in images:
                    placeholder["img_url"] = images[placeholder["party"]]
                placeholders.append(placeholder)
            blocks.append({**block, "signatures": placeholders})
        return {**document, "blocks": blocks}


class ContractParty(Base):
    __tablename__ = 'contract_parties'
    __table_args__ = (
        UniqueConstraint("contract_id", "role", name="uq_contract_party_role"),
    )

    id = Column(Integer, primary_key=True)
    contract_id = Column(String(36), ForeignKey('contracts.id', ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    role = Column(String(64), nullable=False)
    signed = Column(Boolean, nullable=False, default=False)
    signature_id = Column(Integer, ForeignKey('signatures.id'), nullable=True, unique=True)

    contract = relationship("Contract", back_populates="parties")
    signature = relationship("Signature")

    def to_json(self) -> dict:
        return {
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "signed": bool(self.signed),
            "signatureId": self.signature_id,
        }
