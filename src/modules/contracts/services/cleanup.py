import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from modules.contracts.repositories.token_repository import TokenRepository

logger = logging.getLogger(__name__)

def delete_expired_tokens(session: Session, now: Optional[datetime] = None) -> int:
    """
    Storage reclamation only: consumption rejects expired tokens on its own,
    so a lagging sweep never lets an expired link through.
    """
    deleted = TokenRepository(session).delete_expired(now or datetime.utcnow())
    session.commit()
    if deleted:
        logger.info("Deleted %d expired signing token(s)", deleted)
    return deleted
