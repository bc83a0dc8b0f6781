import logging
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from errors import DispatchError, StateConflictError, ValidationError
from modules.contracts.models.contract import Contract, ContractParty, ContractStatus
from modules.contracts.repositories.contract_repository import ContractRepository
from modules.notifications.services.notification_service import FinalizedDispatch, NotificationService

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    ContractStatus.DRAFT: {ContractStatus.PENDING},
    ContractStatus.PENDING: {ContractStatus.COMPLETED},
    ContractStatus.COMPLETED: set(),
}


class ContractStateService:
    """
    draft -> pending -> completed, with completed terminal.

    Completion is never stored independently of the parties: it is recomputed
    from the persisted party list and written with a status-guarded UPDATE,
    so only one caller ever observes the transition.
    """

    @staticmethod
    def can_transition(current: ContractStatus, new_state: ContractStatus) -> bool:
        return new_state in ALLOWED_TRANSITIONS[current]

    @staticmethod
    def sources_of(target: ContractStatus) -> list[ContractStatus]:
        return [state for state, targets in ALLOWED_TRANSITIONS.items() if target in targets]

    @staticmethod
    def all_parties_signed(parties: Iterable[ContractParty]) -> bool:
        signed = [bool(party.signed) for party in parties]
        return bool(signed) and all(signed)

    @staticmethod
    def compute_status(current: ContractStatus, parties: Iterable[ContractParty]) -> ContractStatus:
        """Status implied by the party list; never moves backwards."""
        if current == ContractStatus.COMPLETED:
            return current
        if (
            ContractStateService.can_transition(current, ContractStatus.COMPLETED)
            and ContractStateService.all_parties_signed(parties)
        ):
            return ContractStatus.COMPLETED
        return current

    @staticmethod
    def mark_sent(session: Session, contract_id: str, now: Optional[datetime] = None) -> bool:
        """
        Move a draft to pending once a signature request went out.

        Returns True when this call made the transition, False when the
        contract was already pending.
        """
        repo = ContractRepository(session)
        contract = repo.get(contract_id, fresh=True)
        if contract is None:
            raise StateConflictError("Contract no longer exists")
        if contract.status == ContractStatus.COMPLETED:
            raise StateConflictError("Contract is already completed")
        if not any(party.email for party in contract.parties):
            raise ValidationError("At least one party needs an email before sending")

        moved = repo.transition_status(
            contract_id, [ContractStatus.DRAFT], ContractStatus.PENDING, now or datetime.utcnow()
        )
        session.commit()
        if moved:
            logger.info("Contract %s changed from draft to pending", contract_id)
        return moved

    @staticmethod
    def evaluate_completion(
        session: Session,
        contract_id: str,
        dispatcher: Optional[NotificationService] = None,
        recipient_email: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Complete the contract if every party has signed.

        Returns True only for the caller whose conditional UPDATE made the
        transition; that caller alone dispatches the finalized email.
        """
        repo = ContractRepository(session)
        parties = repo.fresh_parties(contract_id)
        if not ContractStateService.all_parties_signed(parties):
            return False

        completed = repo.transition_status(
            contract_id,
            ContractStateService.sources_of(ContractStatus.COMPLETED),
            ContractStatus.COMPLETED,
            now or datetime.utcnow(),
        )
        session.commit()
        if not completed:
            return False

        logger.info("Contract %s completed: all %d parties signed", contract_id, len(parties))
        if dispatcher is not None:
            contract = repo.get(contract_id, fresh=True)
            ContractStateService.notify_completion(contract, dispatcher, recipient_email)
        return True

    @staticmethod
    def notify_completion(
        contract: Contract,
        dispatcher: NotificationService,
        recipient_email: Optional[str] = None,
    ) -> Optional[FinalizedDispatch]:
        """
        Send the executed contract to every party and the creator.

        A failed send is logged and the per-address deliveries are returned;
        the failed addresses can be retried through finalize.
        """
        party_emails = [party.email for party in contract.parties if party.email]
        recipient = recipient_email or next(iter(party_emails), None)
        if recipient is None:
            logger.warning("Contract %s completed without any party email; no notification", contract.id)
            return None
        try:
            return dispatcher.send_finalized_contract_email(
                contract.id,
                contract.to_json(),
                recipient,
                contract.created_by_email,
                also_notify=party_emails,
            )
        except DispatchError as exc:
            # The signature and completion are durable; the delivery rows say failed
            logger.error("Finalized email for contract %s not delivered: %s", contract.id, exc.message)
            return dispatcher.get_finalized_dispatch(contract.id)

    @staticmethod
    def reconcile(
        session: Session,
        contract: Contract,
        dispatcher: NotificationService,
    ) -> Contract:
        """
        Repair a status left behind by an interrupted signing request.

        The read that wins the completion is the only one that sends the
        finalized email.
        """
        expected = ContractStateService.compute_status(contract.status, contract.parties)
        if expected == contract.status:
            return contract
        logger.warning(
            "Contract %s stored as %s but parties imply %s; reconciling",
            contract.id, contract.status.value, expected.value,
        )
        ContractStateService.evaluate_completion(session, contract.id, dispatcher)
        return ContractRepository(session).get(contract.id, fresh=True)
