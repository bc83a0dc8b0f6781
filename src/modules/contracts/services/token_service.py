import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import settings
from errors import (
    AlreadyUsedError,
    ExpiredError,
    NotFoundError,
    RevokedError,
    StateConflictError,
    TokenConflictError,
    ValidationError,
)
from modules.contracts.models.contract import Contract, ContractStatus
from modules.contracts.models.signing_token import SigningToken
from modules.contracts.repositories.contract_repository import ContractRepository
from modules.contracts.repositories.token_repository import TokenRepository

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32


def generate_token() -> str:
    """256 bits from the OS CSPRNG, hex encoded."""
    return secrets.token_hex(TOKEN_BYTES)


def token_hint(token: str) -> str:
    """Loggable prefix of a token; the full value is a bearer credential."""
    return f"{token[:8]}..."


class TokenService:

    @staticmethod
    def issue(
        session: Session,
        contract_id: str,
        recipient_email: str,
        party: str,
        now: Optional[datetime] = None,
    ) -> SigningToken:
        """
        Create a signing token bound to one contract, one recipient and one role.

        Prior unconsumed tokens for the same (contract, role) are revoked in the
        same transaction, so at most one link per signer is live.
        """
        recipient_email = (recipient_email or "").strip()
        party = (party or "").strip()
        if not recipient_email:
            raise ValidationError("recipientEmail is required")
        if not party:
            raise ValidationError("party is required")

        contract = ContractRepository(session).get(contract_id)
        if contract is None:
            raise NotFoundError("Contract not found")
        TokenService._check_issuable(contract, party)

        tokens = TokenRepository(session)
        for attempt in range(1, settings.token_issue_attempts + 1):
            issued_at = now or datetime.utcnow()
            revoked = tokens.revoke_outstanding(contract_id, party, issued_at)
            signing_token = SigningToken(
                token=generate_token(),
                contract_id=contract_id,
                recipient_email=recipient_email,
                party=party,
                expires_at=issued_at + timedelta(hours=settings.token_ttl_hours),
                created_at=issued_at,
            )
            try:
                tokens.add(signing_token)
                session.commit()
            except IntegrityError:
                session.rollback()
                logger.warning(
                    "Signing token collision for contract %s (attempt %d/%d)",
                    contract_id, attempt, settings.token_issue_attempts,
                )
                continue

            if revoked:
                logger.info("Revoked %d outstanding token(s) for contract %s role %s", revoked, contract_id, party)
            logger.info(
                "Issued signing token %s for contract %s role %s (expires %s)",
                token_hint(signing_token.token), contract_id, party, signing_token.expires_at.isoformat(),
            )
            return signing_token

        raise TokenConflictError("Could not generate a unique signing token")

    @staticmethod
    def _check_issuable(contract: Contract, party: str):
        if contract.status == ContractStatus.COMPLETED:
            raise StateConflictError("Contract is already completed")
        target = contract.party_for_role(party)
        if target is None:
            raise ValidationError(
                f"Unknown party '{party}'",
                details={'allowedParties': contract.roles},
            )
        if target.signed:
            raise StateConflictError(f"Party '{party}' has already signed")

    @staticmethod
    def check_usable(token: Optional[SigningToken], now: datetime) -> SigningToken:
        """Fail-fast token checks in the order the signer needs to see them."""
        if token is None:
            raise NotFoundError("Signing token not found")
        if token.used:
            raise AlreadyUsedError("This signing link has already been used")
        if token.revoked:
            raise RevokedError("This signing link has been revoked; request a new one")
        if token.is_expired(now):
            raise ExpiredError("This signing link has expired; request a new one")
        return token

    @staticmethod
    def validate(
        session: Session,
        token: str,
        now: Optional[datetime] = None,
    ) -> Tuple[SigningToken, Contract]:
        """Read-only check of a presented token and its contract."""
        if not token:
            raise ValidationError("Token is required")
        signing_token = TokenService.check_usable(
            TokenRepository(session).get_by_token(token), now or datetime.utcnow()
        )
        contract = ContractRepository(session).get(signing_token.contract_id)
        if contract is None:
            raise StateConflictError("Contract no longer exists")
        if contract.status == ContractStatus.COMPLETED:
            raise StateConflictError("Contract is already completed")
        party = contract.party_for_role(signing_token.party)
        if party is None or party.signed:
            raise StateConflictError(f"Party '{signing_token.party}' cannot sign this contract")
        return signing_token, contract

    @staticmethod
    def revoke(session: Session, token_id: int, now: Optional[datetime] = None) -> SigningToken:
        tokens = TokenRepository(session)
        signing_token = tokens.get(token_id)
        if signing_token is None:
            raise NotFoundError("Signing token not found")
        if signing_token.used:
            raise AlreadyUsedError("Signing token has already been used")

        if tokens.revoke(token_id, now or datetime.utcnow()):
            session.commit()
            logger.info("Revoked signing token %s for contract %s", token_id, signing_token.contract_id)
        else:
            session.rollback()
            # Lost to a concurrent consume or revoke
            signing_token = tokens.reload(token_id)
            if signing_token is None:
                raise NotFoundError("Signing token not found")
            if signing_token.used:
                raise AlreadyUsedError("Signing token has already been used")
        session.refresh(signing_token)
        return signing_token
