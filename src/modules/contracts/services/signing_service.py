import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import settings
from errors import (
    AlreadyUsedError,
    ExpiredError,
    NotFoundError,
    RevokedError,
    StateConflictError,
    ValidationError,
)
from modules.contracts.models.contract import Contract, ContractStatus
from modules.contracts.models.signature import Signature
from modules.contracts.repositories.contract_repository import ContractRepository
from modules.contracts.repositories.signature_repository import SignatureRepository
from modules.contracts.repositories.token_repository import TokenRepository
from modules.contracts.services.contract_state_service import ContractStateService
from modules.contracts.services.token_service import TokenService, token_hint
from modules.notifications.services.notification_service import FinalizedDispatch, NotificationService

logger = logging.getLogger(__name__)


@dataclass
class SigningResult:
    contract: Contract
    signature: Signature
    completed: bool
    notification: Optional[FinalizedDispatch] = None


class SigningService:

    @staticmethod
    def _validate_input(token: str, signature_data: str):
        if not token:
            raise ValidationError("Token is required")
        if not signature_data:
            raise ValidationError("signatureData is required")
        if len(signature_data) > settings.max_signature_bytes:
            raise ValidationError(
                f"signatureData exceeds {settings.max_signature_bytes} bytes"
            )

    @staticmethod
    def _token_failure(tokens: TokenRepository, token_id: int, now: datetime):
        """
        Re-read the token and return the error explaining why it cannot be used,
        or None if it still looks usable.
        """
        try:
            TokenService.check_usable(tokens.reload(token_id), now)
        except (NotFoundError, AlreadyUsedError, RevokedError, ExpiredError) as exc:
            return exc
        return None

    @staticmethod
    def _reject(tokens: TokenRepository, token_id: int, now: datetime, message: str):
        """
        Contract-side rejection. A replayed token reports AlreadyUsed rather
        than the state conflict its earlier redemption caused.
        """
        return SigningService._token_failure(tokens, token_id, now) or StateConflictError(message)

    @staticmethod
    def consume(
        session: Session,
        token: str,
        signature_data: str,
        ip_address: Optional[str],
        dispatcher: Optional[NotificationService] = None,
        now: Optional[datetime] = None,
    ) -> SigningResult:
        """
        Redeem a signing token and record the signature.

        Token, signature and party updates commit together. Completion is
        evaluated afterwards against the committed party list; if that step
        fails the contract is repaired on its next read.
        """
        SigningService._validate_input(token, signature_data)
        now = now or datetime.utcnow()

        tokens = TokenRepository(session)
        contracts = ContractRepository(session)
        signatures = SignatureRepository(session)

        # Unknown, used, revoked, expired
        signing_token = TokenService.check_usable(tokens.get_by_token(token), now)
        token_id = signing_token.id
        role = signing_token.party
        recipient_email = signing_token.recipient_email

        # The contract must still accept this role's signature
        contract = contracts.get(signing_token.contract_id)
        if contract is None:
            raise SigningService._reject(tokens, token_id, now, "Contract no longer exists")
        if contract.status == ContractStatus.COMPLETED:
            raise SigningService._reject(tokens, token_id, now, "Contract is already completed")
        party = contract.party_for_role(role)
        if party is None:
            raise SigningService._reject(tokens, token_id, now, f"Contract has no party '{role}'")
        if party.signed:
            raise SigningService._reject(tokens, token_id, now, f"Party '{role}' has already signed")

        contract_id = contract.id
        party_id = party.id
        try:
            if not tokens.mark_used(token_id, ip_address, now):
                session.rollback()
                raise SigningService._token_failure(tokens, token_id, now) or AlreadyUsedError(
                    "This signing link has already been used"
                )

            signature = signatures.add(Signature(
                contract_id=contract_id,
                party_email=recipient_email,
                party_role=role,
                signature_data=signature_data,
                ip_address=ip_address,
                timestamp=now,
            ))

            if not contracts.mark_party_signed(party_id, signature.id):
                session.rollback()
                raise StateConflictError(f"Party '{role}' has already signed")

            # A redeemed link proves the request reached the signer
            if not contracts.transition_status(contract_id, [ContractStatus.DRAFT], ContractStatus.PENDING, now):
                contracts.touch(contract_id, now)
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            logger.exception("Signing transaction failed for contract %s", contract_id)
            raise

        logger.info("Contract %s signed by role %s with token %s", contract_id, role, token_hint(token))

        completed = False
        notification = None
        try:
            completed = ContractStateService.evaluate_completion(session, contract_id, now=now)
        except SQLAlchemyError:
            session.rollback()
            logger.exception(
                "Completion check failed for contract %s; status will be reconciled on next read",
                contract_id,
            )

        contract = contracts.get(contract_id, fresh=True)
        if completed and dispatcher is not None:
            notification = ContractStateService.notify_completion(contract, dispatcher, recipient_email)

        session.refresh(signature)
        return SigningResult(
            contract=contract,
            signature=signature,
            completed=completed,
            notification=notification,
        )
