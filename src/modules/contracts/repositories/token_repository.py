from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from modules.contracts.models.signing_token import SigningToken

class TokenRepository:
    def __init__(self, db_session: Session):
        self.db = db_session

    def add(self, token: SigningToken) -> SigningToken:
        """Stage a new token; the caller commits and handles unique collisions."""
        self.db.add(token)
        self.db.flush()
        return token

    def get(self, token_id: int) -> Optional[SigningToken]:
        return self.db.get(SigningToken, token_id)

    def get_by_token(self, token: str) -> Optional[SigningToken]:
        return self.db.query(SigningToken).filter(SigningToken.token == token).first()

    def reload(self, token_id: int) -> Optional[SigningToken]:
        """Re-read a token row, or None if it was swept meanwhile."""
        return (
            self.db.query(SigningToken)
            .filter(SigningToken.id == token_id)
            .execution_options(populate_existing=True)
            .first()
        )

    def find_by_contract(self, contract_id: str) -> List[SigningToken]:
        return (
            self.db.query(SigningToken)
            .filter(SigningToken.contract_id == contract_id)
            .order_by(SigningToken.created_at.desc(), SigningToken.id.desc())
            .all()
        )

    def mark_used(self, token_id: int, ip_address: Optional[str], now: datetime) -> bool:
        """
        Compare-and-swap on the ``used`` flag.

        Succeeds only if the token is still unused, unrevoked and unexpired
        at the time of the UPDATE, so concurrent consumers get one winner.
        """
        updated = (
            self.db.query(SigningToken)
            .filter(
                SigningToken.id == token_id,
                SigningToken.used.is_(False),
                SigningToken.revoked.is_(False),
                SigningToken.expires_at > now,
            )
            .update(
                {
                    SigningToken.used: True,
                    SigningToken.used_at: now,
                    SigningToken.ip_address: ip_address,
                },
                synchronize_session=False,
            )
        )
        return updated == 1

    def revoke(self, token_id: int, now: datetime) -> bool:
        updated = (
            self.db.query(SigningToken)
            .filter(
                SigningToken.id == token_id,
                SigningToken.used.is_(False),
                SigningToken.revoked.is_(False),
            )
            .update(
                {SigningToken.revoked: True, SigningToken.revoked_at: now},
                synchronize_session=False,
            )
        )
        return updated == 1

    def revoke_outstanding(self, contract_id: str, party: str, now: datetime) -> int:
        """Revoke every unconsumed token for one (contract, party) pair."""
        return (
            self.db.query(SigningToken)
            .filter(
                SigningToken.contract_id == contract_id,
                SigningToken.party == party,
                SigningToken.used.is_(False),
                SigningToken.revoked.is_(False),
            )
            .update(
                {SigningToken.revoked: True, SigningToken.revoked_at: now},
                synchronize_session=False,
            )
        )

    def delete_expired(self, now: datetime) -> int:
        return (
            self.db.query(SigningToken)
            .filter(SigningToken.expires_at <= now)
            .delete(synchronize_session=False)
        )
