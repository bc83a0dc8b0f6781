from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from modules.contracts.models.contract import Contract, ContractParty, ContractStatus

class ContractRepository:
    def __init__(self, db_session: Session):
        self.db = db_session

    def add(self, contract: Contract) -> Contract:
        self.db.add(contract)
        self.db.flush()
        return contract

    def get(self, contract_id: str, fresh: bool = False) -> Optional[Contract]:
        """Load a contract with its parties; ``fresh`` bypasses the identity map."""
        query = (
            self.db.query(Contract)
            .options(selectinload(Contract.parties))
            .filter(Contract.id == contract_id)
        )
        if fresh:
            query = query.execution_options(populate_existing=True)
        return query.first()

    def delete(self, contract: Contract):
        self.db.delete(contract)

    def find_for_user(self, user_id: int, email: str) -> List[Contract]:
        party_match = select(ContractParty.contract_id).where(
            func.lower(ContractParty.email) == email.lower()
        )
        return (
            self.db.query(Contract)
            .options(selectinload(Contract.parties))
            .filter(or_(Contract.created_by == user_id, Contract.id.in_(party_match)))
            .order_by(Contract.created_at.desc())
            .all()
        )

    def fresh_parties(self, contract_id: str) -> List[ContractParty]:
        """Read-after-write view of the party list, never a cached snapshot."""
        return (
            self.db.query(ContractParty)
            .filter(ContractParty.contract_id == contract_id)
            .order_by(ContractParty.position)
            .execution_options(populate_existing=True)
            .all()
        )

    def transition_status(
        self,
        contract_id: str,
        expected: Iterable[ContractStatus],
        new_status: ContractStatus,
        now: datetime,
    ) -> bool:
        """Conditional status write guarded by the expected prior status."""
        updated = (
            self.db.query(Contract)
            .filter(Contract.id == contract_id, Contract.status.in_(list(expected)))
            .update(
                {
                    Contract.status: new_status,
                    Contract.version: Contract.version + 1,
                    Contract.updated_at: now,
                },
                synchronize_session=False,
            )
        )
        return updated == 1

    def mark_party_signed(self, party_id: int, signature_id: int) -> bool:
        updated = (
            self.db.query(ContractParty)
            .filter(ContractParty.id == party_id, ContractParty.signed.is_(False))
            .update(
                {ContractParty.signed: True, ContractParty.signature_id: signature_id},
                synchronize_session=False,
            )
        )
        return updated == 1

    def touch(self, contract_id: str, now: datetime):
        self.db.query(Contract).filter(Contract.id == contract_id).update(
            {Contract.version: Contract.version + 1, Contract.updated_at: now},
            synchronize_session=False,
        )

    def update_content(
        self,
        contract_id: str,
        expected_version: int,
        values: Dict,
        now: datetime,
    ) -> bool:
        """Optimistic write of plain columns; loses if anyone wrote since ``expected_version``."""
        changes = {getattr(Contract, field): value for field, value in values.items()}
        changes[Contract.version] = expected_version + 1
        changes[Contract.updated_at] = now
        updated = (
            self.db.query(Contract)
            .filter(
                Contract.id == contract_id,
                Contract.version == expected_version,
                Contract.status != ContractStatus.COMPLETED,
            )
            .update(changes, synchronize_session=False)
        )
        return updated == 1

    def replace_parties(self, contract_id: str, parties: List[dict]):
        """Swap the party rows; only valid while nobody has signed."""
        self.db.query(ContractParty).filter(ContractParty.contract_id == contract_id).delete(
            synchronize_session=False
        )
        self.db.add_all(
            ContractParty(contract_id=contract_id, position=position, **party)
            for position, party in enumerate(parties)
        )
        self.db.flush()

    def set_party_email(self, party_id: int, email: str) -> bool:
        updated = (
            self.db.query(ContractParty)
            .filter(
                ContractParty.id == party_id,
                ContractParty.email.is_(None),
                ContractParty.signed.is_(False),
            )
            .update({ContractParty.email: email}, synchronize_session=False)
        )
        return updated == 1

    def count_by_status(self) -> Dict[ContractStatus, int]:
        rows = self.db.query(Contract.status, func.count(Contract.id)).group_by(Contract.status).all()
        counts = {status: 0 for status in ContractStatus}
        counts.update({status: count for status, count in rows})
        return counts

    def recent(self, limit: int = 10, status: Optional[ContractStatus] = None) -> List[Contract]:
        query = self.db.query(Contract).options(selectinload(Contract.parties))
        if status is not None:
            query = query.filter(Contract.status == status)
        return query.order_by(Contract.updated_at.desc()).limit(limit).all()

    def search(
        self,
        offset: int = 0,
        limit: int = 10,
        title: Optional[str] = None,
        status: Optional[ContractStatus] = None,
    ) -> Tuple[List[Contract], int]:
        query = self.db.query(Contract)
        if title:
            query = query.filter(Contract.title.ilike(f"%{title}%"))
        if status is not None:
            query = query.filter(Contract.status == status)
        total = query.count()
        contracts = (
            query.options(selectinload(Contract.parties), selectinload(Contract.creator))
            .order_by(Contract.created_at.desc(), Contract.id)
            .offset(offset)
            .limit(limit)
            .all()
        )
        return contracts, total
