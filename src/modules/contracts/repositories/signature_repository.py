from typing import List, Optional

from sqlalchemy.orm import Session

from modules.contracts.models.signature import Signature

class SignatureRepository:
    def __init__(self, db_session: Session):
        self.db = db_session

    def add(self, signature: Signature) -> Signature:
        """Insert and flush so the new id can be referenced in the same transaction."""
        self.db.add(signature)
        self.db.flush()
        return signature

    def get(self, signature_id: int) -> Optional[Signature]:
        return self.db.get(Signature, signature_id)

    def find_by_contract(self, contract_id: str) -> List[Signature]:
        return (
            self.db.query(Signature)
            .filter(Signature.contract_id == contract_id)
            .order_by(Signature.timestamp, Signature.id)
            .all()
        )
