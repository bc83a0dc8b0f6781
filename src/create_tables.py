# create_tables.py
import logging

from database import Base, engine
# Import every model so it registers with Base
from modules.auth.models.user import User  # noqa: F401
from modules.contracts.models import Contract, ContractParty, Signature, SigningToken  # noqa: F401
from modules.notifications.models.notification import NotificationDelivery  # noqa: F401

logger = logging.getLogger(__name__)


def create_tables(bind=None):
    """Create any missing tables."""
    logger.info("Ensuring tables: %s", ", ".join(Base.metadata.tables.keys()))
    Base.metadata.create_all(bind=bind or engine)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    create_tables()
