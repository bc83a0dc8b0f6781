import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["ENABLE_TOKEN_SWEEP"] = "false"
os.environ.setdefault("SECRET_KEY", "test-secret")

import smtplib
from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import create_tables  # noqa: F401  registers every model with Base
from database import Base, get_db
from modules.auth.models.user import User, UserRole
from modules.auth.services.auth_service import AuthService
from modules.contracts.services import ContractService
from modules.notifications.repositories.notification_repository import NotificationRepository
from modules.notifications.services.mailer import SmtpConfig, SmtpMailer
from modules.notifications.services.notification_service import NotificationService

SIGNATURE_PNG = (
    "data:image/png;base64,"
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeSMTP:
    """Stands in for smtplib.SMTP; records messages and can refuse recipients."""

    sent: list = []
    refuse: set = set()
    open_connections: int = 0

    def __init__(self, host: str = "", port: int = 25, **kwargs):
        self.host = host
        self.port = port
        FakeSMTP.open_connections += 1

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.quit()

    def starttls(self):
        pass

    def login(self, user: str, password: str):
        pass

    def sendmail(self, from_addr: str, to_addrs: list, msg: str):
        for address in to_addrs:
            if address in FakeSMTP.refuse:
                raise smtplib.SMTPRecipientsRefused({address: (550, b"mailbox unavailable")})
        FakeSMTP.sent.append((from_addr, list(to_addrs), msg))

    def quit(self):
        FakeSMTP.open_connections -= 1

    @classmethod
    def reset(cls):
        cls.sent = []
        cls.refuse = set()
        cls.open_connections = 0

    @classmethod
    def recipients(cls) -> list:
        return [to for _, to_addrs, _ in cls.sent for to in to_addrs]


@pytest.fixture(autouse=True)
def clean_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def fake_smtp(monkeypatch):
    FakeSMTP.reset()
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    yield FakeSMTP
    FakeSMTP.reset()


@pytest.fixture
def session(clean_db):
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def mailer():
    return SmtpMailer(SmtpConfig(host="smtp.test", port=25, use_tls=False, from_email="noreply@test.dev"))


@pytest.fixture
def dispatcher(session, mailer):
    return NotificationService(NotificationRepository(session), mailer)


def create_user(session, email="owner@example.com", role=UserRole.USER, password="password123"):
    user = User(
        name=email.split("@")[0].title(),
        email=email,
        password_hash=AuthService.get_password_hash(password),
        role=role,
        is_active=True,
        created_at=datetime.utcnow(),
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def contract_data(parties=None, title="Service Agreement"):
    return {
        "title": title,
        "type": "service",
        "blocks": [
            {"text": "The provider delivers the services described herein.", "signatures": []},
            {
                "text": "Signed by the parties.",
                "signatures": [
                    {"party": "client", "index": 0, "name": "Alice"},
                    {"party": "provider", "index": 1, "name": "Bob"},
                ],
            },
        ],
        "unknowns": [],
        "parties": parties if parties is not None else [
            {"name": "Alice", "email": "alice@example.com", "role": "client"},
            {"name": "Bob", "email": "bob@example.com", "role": "provider"},
        ],
    }


def create_contract(session, creator=None, parties=None):
    return ContractService.create_contract(session, contract_data(parties), creator)


@pytest.fixture
def owner(session):
    return create_user(session)


@pytest.fixture
def contract(session, owner):
    return create_contract(session, owner)


def auth_headers(user):
    token = AuthService.create_access_token(data={"sub": user.email})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(clean_db, mailer):
    from main import app
    from modules.notifications.controllers.notification_controller import get_mailer

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_mailer] = lambda: mailer
    # No context manager: the lifespan would touch the configured database
    yield TestClient(app)
    app.dependency_overrides.clear()
