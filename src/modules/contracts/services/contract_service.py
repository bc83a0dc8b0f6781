import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional
from urllib.parse import urlencode

from sqlalchemy.orm import Session

from config import settings
from errors import (
    DispatchError,
    ForbiddenError,
    NotFoundError,
    RenderError,
    StateConflictError,
    ValidationError,
)
from modules.auth.models.user import User, UserRole
from modules.contracts.models.contract import Contract, ContractParty, ContractStatus
from modules.contracts.models.signing_token import SigningToken
from modules.contracts.repositories.contract_repository import ContractRepository
from modules.contracts.services.contract_state_service import ContractStateService
from modules.contracts.services.token_service import TokenService
from modules.notifications.models.notification import NotificationDelivery
from modules.notifications.services.notification_service import FinalizedDispatch, NotificationService
from modules.notifications.services.pdf import render_contract_pdf

logger = logging.getLogger(__name__)

CONTENT_FIELDS = ("title", "type", "requirements", "blocks", "unknowns")


@dataclass
class SendResult:
    contract: Contract
    token: SigningToken
    delivery: NotificationDelivery


def parse_contract_id(contract_id: str) -> str:
    try:
        return str(uuid.UUID(str(contract_id)))
    except ValueError:
        raise ValidationError("Invalid contract ID format")


def normalize_parties(parties: List[dict]) -> List[dict]:
    normalized = []
    seen_roles = set()
    for party in parties:
        name = (party.get("name") or "").strip()
        role = (party.get("role") or "").strip()
        email = (party.get("email") or "").strip().lower() or None
        if not name or not role:
            raise ValidationError("Every party needs a name and a role")
        if role in seen_roles:
            raise ValidationError(f"Duplicate party role '{role}'")
        seen_roles.add(role)
        normalized.append({"name": name, "email": email, "role": role})
    return normalized


def sign_url_for(token: str) -> str:
    return f"{settings.public_base_url.rstrip('/')}/contracts/sign?{urlencode({'token': token})}"


class ContractService:

    @staticmethod
    def create_contract(session: Session, data: dict, creator: Optional[User] = None) -> Contract:
        title = (data.get("title") or "").strip()
        if not title:
            raise ValidationError("title is required")

        contract = Contract(
            title=title,
            type=data.get("type") or "custom",
            requirements=data.get("requirements"),
            blocks=data.get("blocks") or [],
            unknowns=data.get("unknowns") or [],
            status=ContractStatus.DRAFT,
            created_by=creator.id if creator else None,
            created_by_email=creator.email if creator else None,
        )
        contract.parties = [
            ContractParty(position=position, **party)
            for position, party in enumerate(normalize_parties(data.get("parties") or []))
        ]
        ContractRepository(session).add(contract)
        session.commit()
        logger.info("Created contract %s with %d parties", contract.id, len(contract.parties))
        return ContractRepository(session).get(contract.id, fresh=True)

    @staticmethod
    def get_contract(
        session: Session,
        contract_id: str,
        dispatcher: NotificationService,
    ) -> Contract:
        """Load a contract, repairing its status if a signing request was interrupted."""
        contract = ContractRepository(session).get(parse_contract_id(contract_id))
        if contract is None:
            raise NotFoundError("Contract not found")
        return ContractStateService.reconcile(session, contract, dispatcher)

    @staticmethod
    def check_access(contract: Contract, user: User, manage: bool = False):
        """Creators and admins manage a contract; parties may also read it."""
        if user.role == UserRole.ADMIN or contract.created_by == user.id:
            return
        if not manage and contract.party_for_email(user.email) is not None:
            return
        raise ForbiddenError("You do not have access to this contract")

    @staticmethod
    def list_contracts(session: Session, user: User) -> List[Contract]:
        return ContractRepository(session).find_for_user(user.id, user.email)

    @staticmethod
    def update_contract(
        session: Session,
        contract_id: str,
        changes: dict,
        expected_version: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Contract:
        """
        Edit content and parties while nobody has signed.

        The write is conditional on the version read here (or the one the client
        supplied), so a concurrent signature or edit makes it fail instead of
        being overwritten.
        """
        contract_id = parse_contract_id(contract_id)
        repo = ContractRepository(session)
        contract = repo.get(contract_id)
        if contract is None:
            raise NotFoundError("Contract not found")
        if contract.status == ContractStatus.COMPLETED:
            raise StateConflictError("Cannot edit completed contracts")

        values = {
            field: changes[field]
            for field in CONTENT_FIELDS
            if field in changes
            and (changes[field] is not None or field == "requirements")
            and changes[field] != getattr(contract, field)
        }
        if "title" in values and not (values["title"] or "").strip():
            raise ValidationError("title cannot be empty")
        parties = None
        if changes.get("parties") is not None:
            parties = normalize_parties(changes["parties"])
            if parties == ContractService._party_identity(contract):
                parties = None

        if not values and parties is None:
            return contract
        if contract.has_signatures:
            raise StateConflictError("Cannot edit a contract with existing signatures")

        version = expected_version if expected_version is not None else contract.version
        if not repo.update_content(contract_id, version, values, now or datetime.utcnow()):
            session.rollback()
            raise StateConflictError("Contract was modified concurrently; reload and retry")
        if parties is not None:
            repo.replace_parties(contract_id, parties)
        session.commit()
        logger.info("Updated contract %s (%s)", contract_id, ", ".join(sorted(values) + (["parties"] if parties is not None else [])))
        return repo.get(contract_id, fresh=True)

    @staticmethod
    def delete_contract(session: Session, contract_id: str, user: User):
        contract = ContractRepository(session).get(parse_contract_id(contract_id))
        if contract is None:
            raise NotFoundError("Contract not found")
        ContractService.check_access(contract, user, manage=True)
        if contract.has_signatures:
            raise StateConflictError("Cannot delete a contract with existing signatures")
        ContractRepository(session).delete(contract)
        session.commit()
        logger.info("Deleted contract %s", contract_id)

    @staticmethod
    def _party_identity(contract: Contract) -> List[dict]:
        return [
            {"name": party.name, "email": party.email, "role": party.role}
            for party in contract.parties
        ]

    @staticmethod
    def _changes_from_json(contract_json: dict) -> dict:
        return {
            field: contract_json[field]
            for field in CONTENT_FIELDS + ("parties",)
            if contract_json.get(field) is not None
        }

    @staticmethod
    def _resolve_party(session: Session, contract: Contract, recipient_email: str, role: Optional[str]) -> str:
        """Pick the role the recipient signs as, binding the email to an open slot if needed."""
        repo = ContractRepository(session)
        if role:
            target = contract.party_for_role(role)
            if target is None:
                raise ValidationError(f"Unknown party '{role}'", details={'allowedParties': contract.roles})
            if target.email and target.email.lower() != recipient_email.lower():
                raise ValidationError(f"Party '{role}' is bound to a different email")
        else:
            target = contract.party_for_email(recipient_email) or next(
                (party for party in contract.parties if not party.signed and not party.email), None
            )
            if target is None:
                raise ValidationError("Recipient is not a party to this contract")

        if target.email is None:
            if not repo.set_party_email(target.id, recipient_email.lower()):
                session.rollback()
                raise StateConflictError("Party was updated concurrently; reload and retry")
            session.commit()
        return target.role

    @staticmethod
    def send_contract(
        session: Session,
        contract_id: str,
        contract_json: dict,
        recipient_email: str,
        dispatcher: NotificationService,
        party: Optional[str] = None,
    ) -> SendResult:
        """
        Issue a signing link for the recipient, email it, then mark the contract pending.

        If the email fails the new token is revoked and the contract keeps its
        previous status.
        """
        contract_id = parse_contract_id(contract_id)
        recipient_email = (recipient_email or "").strip()
        if not recipient_email or contract_json is None:
            raise ValidationError("Missing required fields")

        contract = ContractRepository(session).get(contract_id)
        if contract is None:
            raise NotFoundError("Contract not found")
        if contract.status == ContractStatus.COMPLETED:
            raise StateConflictError("Contract is already completed")

        # Once someone has signed the stored document is authoritative
        changes = ContractService._changes_from_json(contract_json)
        if changes and not contract.has_signatures:
            contract = ContractService.update_contract(session, contract_id, changes)

        role = ContractService._resolve_party(session, contract, recipient_email, party)
        token = TokenService.issue(session, contract_id, recipient_email, role)

        contract = ContractRepository(session).get(contract_id, fresh=True)
        try:
            delivery = dispatcher.send_contract_email(
                contract_id, contract.to_json(), recipient_email, sign_url_for(token.token)
            )
        except DispatchError:
            TokenService.revoke(session, token.id)
            logger.error("Signature request for contract %s not sent; token %s revoked", contract_id, token.id)
            raise

        ContractStateService.mark_sent(session, contract_id)
        return SendResult(
            contract=ContractRepository(session).get(contract_id, fresh=True),
            token=token,
            delivery=delivery,
        )

    @staticmethod
    def finalize_contract(
        session: Session,
        contract_id: str,
        contract_json: dict,
        recipient_email: str,
        dispatcher: NotificationService,
    ) -> FinalizedDispatch:
        """Send (or confirm already sent) the executed contract for a completed contract."""
        contract_id = parse_contract_id(contract_id)
        recipient_email = (recipient_email or "").strip()
        if not recipient_email or contract_json is None:
            raise ValidationError("Missing required fields: contractJson and recipientEmail")

        contract = ContractService.get_contract(session, contract_id, dispatcher)
        if contract.status != ContractStatus.COMPLETED:
            raise StateConflictError("Contract is not signed by all parties yet")

        document = contract.with_signature_images({**contract.to_json(), **contract_json})
        return dispatcher.send_finalized_contract_email(
            contract_id, document, recipient_email, contract.created_by_email
        )

    @staticmethod
    def stats(session: Session, limit: int = 5) -> dict:
        repo = ContractRepository(session)
        counts = repo.count_by_status()
        return {
            "total": sum(counts.values()),
            "draft": counts[ContractStatus.DRAFT],
            "pending": counts[ContractStatus.PENDING],
            "completed": counts[ContractStatus.COMPLETED],
            "recent_activity": repo.recent(limit),
            "awaiting_signature": repo.recent(limit, status=ContractStatus.PENDING),
        }

    @staticmethod
    def render_pdf(contract: Contract) -> bytes:
        try:
            return render_contract_pdf(contract.to_json(), contract.id)
        except Exception as exc:
            logger.exception("PDF rendering failed for contract %s", contract.id)
            raise RenderError("Failed to generate PDF") from exc

    @staticmethod
    def search_contracts(
        session: Session,
        page: int = 1,
        per_page: int = 10,
        search: Optional[str] = None,
        status: Optional[ContractStatus] = None,
    ) -> dict:
        """One page of every contract, newest first, for the admin console."""
        contracts, total = ContractRepository(session).search(
            offset=(page - 1) * per_page, limit=per_page, title=search, status=status
        )
        return {
            "contracts": contracts,
            "total": total,
            "page": page,
            "total_pages": math.ceil(total / per_page),
        }
