from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from modules.contracts.models.contract import ContractStatus


class CamelModel(BaseModel):
    """Request and response bodies use camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# --- Contract document ---

class SignaturePlaceholder(CamelModel):
    party: str
    index: int = 0
    name: Optional[str] = None
    date: Optional[str] = None
    img_url: Optional[str] = Field(default=None, alias="img_url")


class ContractBlock(CamelModel):
    text: str = ""
    signatures: List[SignaturePlaceholder] = []


class PartyIn(CamelModel):
    name: str = Field(min_length=1)
    email: Optional[EmailStr] = None
    role: str = Field(min_length=1)


class ContractJson(CamelModel):
    title: Optional[str] = None
    type: Optional[str] = None
    blocks: Optional[List[ContractBlock]] = None
    unknowns: Optional[List[str]] = None
    parties: Optional[List[PartyIn]] = None


class ContractCreate(CamelModel):
    title: str = Field(min_length=1, max_length=255)
    type: str = "custom"
    requirements: Optional[str] = None
    blocks: List[ContractBlock] = []
    unknowns: List[str] = []
    parties: List[PartyIn] = []


class ContractUpdate(CamelModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    type: Optional[str] = None
    requirements: Optional[str] = None
    blocks: Optional[List[ContractBlock]] = None
    unknowns: Optional[List[str]] = None
    parties: Optional[List[PartyIn]] = None
    expected_version: Optional[int] = None


class PartyResponse(CamelModel):
    name: str
    email: Optional[str] = None
    role: str
    signed: bool
    signature_id: Optional[int] = None


class ContractResponse(CamelModel):
    id: str
    title: str
    type: str
    requirements: Optional[str] = None
    blocks: List[dict] = []
    unknowns: List[str] = []
    status: ContractStatus
    parties: List[PartyResponse] = []
    created_by: Optional[int] = None
    created_by_email: Optional[str] = None
    version: int
    created_at: datetime
    updated_at: datetime


class ContractSummary(CamelModel):
    id: str
    title: str
    status: ContractStatus
    parties: List[PartyResponse] = []
    created_by_email: Optional[str] = None
    updated_at: datetime


class AdminContractItem(CamelModel):
    id: str
    title: str
    type: str
    status: ContractStatus
    created_by_name: Optional[str] = None
    created_by_email: Optional[str] = None
    parties: List[PartyResponse] = []
    created_at: datetime
    updated_at: datetime


class AdminContractPage(CamelModel):
    contracts: List[AdminContractItem]
    total: int
    page: int
    total_pages: int


class ContractStatsResponse(CamelModel):
    total: int
    draft: int
    pending: int
    completed: int
    recent_activity: List[ContractSummary]
    awaiting_signature: List[ContractSummary]


# --- Send / finalize ---

class SendContractRequest(CamelModel):
    contract_json: ContractJson
    recipient_email: EmailStr
    party: Optional[str] = None


class SendContractResponse(CamelModel):
    success: bool = True
    contract_id: str
    status: ContractStatus
    party: str
    expires_at: datetime
    delivery_status: str


class FinalizeContractRequest(CamelModel):
    contract_json: ContractJson
    recipient_email: EmailStr


class FinalizeContractResponse(CamelModel):
    success: bool = True
    contract_id: str
    delivery_status: str


# --- Tokens and signing ---

class IssueTokenRequest(CamelModel):
    recipient_email: EmailStr
    party: str = Field(min_length=1)


class SigningTokenResponse(CamelModel):
    id: int
    token: str
    contract_id: str
    recipient_email: str
    party: str
    expires_at: datetime
    created_at: datetime


class TokenStateResponse(CamelModel):
    id: int
    contract_id: str
    party: str
    used: bool
    used_at: Optional[datetime] = None
    revoked: bool
    revoked_at: Optional[datetime] = None
    expires_at: datetime


class ValidateTokenRequest(CamelModel):
    token: str = Field(min_length=1)


class ValidateTokenResponse(CamelModel):
    valid: bool = True
    contract_id: str
    party: str
    recipient_email: str
    expires_at: datetime
    contract: ContractResponse


class SignRequest(CamelModel):
    token: str = Field(min_length=1)
    signature_data: str = Field(min_length=1)
    ip_address: Optional[str] = None


class SignResponse(CamelModel):
    success: bool = True
    contract_id: str
    signature_id: int
    status: ContractStatus
    completed: bool
    notification_status: Optional[str] = None
