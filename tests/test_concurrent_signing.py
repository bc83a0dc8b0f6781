import threading

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from conftest import SIGNATURE_PNG, FakeSMTP, create_contract, create_user
from database import Base
from errors import AlreadyUsedError
from modules.contracts.models.contract import ContractStatus
from modules.contracts.repositories import ContractRepository, SignatureRepository
from modules.contracts.services import SigningService, TokenService
from modules.notifications.repositories.notification_repository import NotificationRepository
from modules.notifications.services.notification_service import NotificationService


@pytest.fixture
def file_sessions(tmp_path):
    """Sessions on a real database file, so each thread gets its own connection."""
    file_engine = create_engine(
        f"sqlite:///{tmp_path / 'signing.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=file_engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=file_engine)
    file_engine.dispose()


@pytest.fixture
def shared_contract(file_sessions):
    with file_sessions() as db:
        owner = create_user(db)
        return create_contract(db, owner).id


def run_together(count, target):
    barrier = threading.Barrier(count)
    outcomes = [None] * count

    def worker(index):
        barrier.wait()
        outcomes[index] = target(index)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return outcomes


def test_one_token_one_winner_across_threads(file_sessions, shared_contract):
    with file_sessions() as db:
        token = TokenService.issue(db, shared_contract, "alice@example.com", "client").token

    def attempt(_):
        with file_sessions() as db:
            try:
                SigningService.consume(db, token, SIGNATURE_PNG, None)
                return "ok"
            except AlreadyUsedError:
                return "used"
            except Exception as exc:
                return repr(exc)

    outcomes = run_together(8, attempt)

    assert sorted(outcomes) == ["ok"] + ["used"] * 7
    with file_sessions() as db:
        assert len(SignatureRepository(db).find_by_contract(shared_contract)) == 1


@pytest.mark.parametrize("attempt", range(3))
def test_concurrent_last_signers_complete_once(file_sessions, shared_contract, mailer, attempt):
    with file_sessions() as db:
        tokens = [
            TokenService.issue(db, shared_contract, "alice@example.com", "client").token,
            TokenService.issue(db, shared_contract, "bob@example.com", "provider").token,
        ]

    def sign(index):
        with file_sessions() as db:
            dispatcher = NotificationService(NotificationRepository(db), mailer)
            try:
                return SigningService.consume(db, tokens[index], SIGNATURE_PNG, None, dispatcher).completed
            except Exception as exc:
                return repr(exc)

    outcomes = run_together(2, sign)

    assert sorted(outcomes, key=str) == [False, True]
    with file_sessions() as db:
        contract = ContractRepository(db).get(shared_contract, fresh=True)
        assert contract.status == ContractStatus.COMPLETED
        assert all(party.signed for party in contract.parties)
    assert sorted(FakeSMTP.recipients()) == ["alice@example.com", "bob@example.com", "owner@example.com"]
