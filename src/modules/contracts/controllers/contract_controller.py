from typing import List, Optional

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.orm import Session

from database import get_db
from errors import NotFoundError
from modules.auth.dependencies import get_current_user
from modules.auth.models.user import User
from modules.contracts.models.contract import Contract
from modules.contracts.repositories.token_repository import TokenRepository
from modules.contracts.schemas import (
    ContractCreate,
    ContractResponse,
    ContractUpdate,
    FinalizeContractRequest,
    FinalizeContractResponse,
    IssueTokenRequest,
    SendContractRequest,
    SendContractResponse,
    SignRequest,
    SignResponse,
    SigningTokenResponse,
    TokenStateResponse,
    ValidateTokenRequest,
    ValidateTokenResponse,
)
from modules.contracts.services import ContractService, SigningService, TokenService
from modules.contracts.services.contract_service import parse_contract_id
from modules.notifications.controllers.notification_controller import get_notification_service
from modules.notifications.services.notification_service import NotificationService

router = APIRouter(prefix="/contracts", tags=["contracts"])


def client_ip(request: Request, explicit: Optional[str] = None) -> Optional[str]:
    if explicit:
        return explicit
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded.split(",")[0].strip():
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def _load_contract(
    db: Session,
    contract_id: str,
    user: User,
    dispatcher: NotificationService,
    manage: bool = False,
) -> Contract:
    contract = ContractService.get_contract(db, contract_id, dispatcher)
    ContractService.check_access(contract, user, manage=manage)
    return contract


@router.post("", response_model=ContractResponse, status_code=status.HTTP_201_CREATED)
def create_contract(
    payload: ContractCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return ContractService.create_contract(db, payload.model_dump(), current_user)


@router.get("", response_model=List[ContractResponse])
def list_contracts(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return ContractService.list_contracts(db, current_user)


@router.post("/validate-token", response_model=ValidateTokenResponse)
def validate_token(payload: ValidateTokenRequest, db: Session = Depends(get_db)):
    """Check a signing link before showing the signing page. Changes nothing."""
    signing_token, contract = TokenService.validate(db, payload.token)
    return ValidateTokenResponse(
        contract_id=contract.id,
        party=signing_token.party,
        recipient_email=signing_token.recipient_email,
        expires_at=signing_token.expires_at,
        contract=ContractResponse.model_validate(contract),
    )


@router.post("/sign", response_model=SignResponse)
def sign_contract(
    payload: SignRequest,
    request: Request,
    db: Session = Depends(get_db),
    dispatcher: NotificationService = Depends(get_notification_service),
):
    """
    Redeem a signing token.

    The signature is committed before any email goes out; a failed finalized
    email shows up as ``notificationStatus: failed`` and can be retried via
    ``/contracts/{id}/finalize``.
    """
    result = SigningService.consume(
        db,
        payload.token,
        payload.signature_data,
        client_ip(request, payload.ip_address),
        dispatcher=dispatcher,
    )
    return SignResponse(
        contract_id=result.contract.id,
        signature_id=result.signature.id,
        status=result.contract.status,
        completed=result.completed,
        notification_status=result.notification.status.value if result.notification else None,
    )


@router.post("/tokens/{token_id}/revoke", response_model=TokenStateResponse)
def revoke_token(
    token_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    dispatcher: NotificationService = Depends(get_notification_service),
):
    signing_token = TokenRepository(db).get(token_id)
    if signing_token is None:
        raise NotFoundError("Signing token not found")
    _load_contract(db, signing_token.contract_id, current_user, dispatcher, manage=True)
    return TokenService.revoke(db, token_id)


@router.get("/{contract_id}", response_model=ContractResponse)
def get_contract(
    contract_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    dispatcher: NotificationService = Depends(get_notification_service),
):
    return _load_contract(db, contract_id, current_user, dispatcher)


@router.put("/{contract_id}", response_model=ContractResponse)
def update_contract(
    contract_id: str,
    payload: ContractUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    dispatcher: NotificationService = Depends(get_notification_service),
):
    _load_contract(db, contract_id, current_user, dispatcher, manage=True)
    changes = payload.model_dump(exclude_unset=True, exclude={"expected_version"})
    return ContractService.update_contract(db, contract_id, changes, payload.expected_version)


@router.delete("/{contract_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_contract(
    contract_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ContractService.delete_contract(db, contract_id, current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{contract_id}/send", response_model=SendContractResponse)
def send_contract(
    contract_id: str,
    payload: SendContractRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    dispatcher: NotificationService = Depends(get_notification_service),
):
    _load_contract(db, contract_id, current_user, dispatcher, manage=True)
    result = ContractService.send_contract(
        db,
        contract_id,
        payload.contract_json.model_dump(exclude_none=True),
        payload.recipient_email,
        dispatcher,
        party=payload.party,
    )
    return SendContractResponse(
        contract_id=result.contract.id,
        status=result.contract.status,
        party=result.token.party,
        expires_at=result.token.expires_at,
        delivery_status=result.delivery.status.value,
    )


@router.post("/{contract_id}/finalize", response_model=FinalizeContractResponse)
def finalize_contract(
    contract_id: str,
    payload: FinalizeContractRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    dispatcher: NotificationService = Depends(get_notification_service),
):
    _load_contract(db, contract_id, current_user, dispatcher)
    dispatch = ContractService.finalize_contract(
        db,
        contract_id,
        payload.contract_json.model_dump(exclude_none=True),
        payload.recipient_email,
        dispatcher,
    )
    return FinalizeContractResponse(contract_id=parse_contract_id(contract_id), delivery_status=dispatch.status.value)


@router.post(
    "/{contract_id}/tokens",
    response_model=SigningTokenResponse,
    status_code=status.HTTP_201_CREATED,
)
def issue_token(
    contract_id: str,
    payload: IssueTokenRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    dispatcher: NotificationService = Depends(get_notification_service),
):
    """Issue a signing link without emailing it, for hand delivery."""
    contract = _load_contract(db, contract_id, current_user, dispatcher, manage=True)
    return TokenService.issue(db, contract.id, payload.recipient_email, payload.party)


@router.get("/{contract_id}/pdf", response_class=Response)
def download_contract_pdf(
    contract_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    dispatcher: NotificationService = Depends(get_notification_service),
):
    contract = _load_contract(db, contract_id, current_user, dispatcher)
    return Response(
        content=ContractService.render_pdf(contract),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="contract-{contract.id}.pdf"'},
    )
