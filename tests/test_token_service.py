import re
from datetime import datetime, timedelta

import pytest

from conftest import SIGNATURE_PNG, create_contract
from errors import (
    AlreadyUsedError,
    ExpiredError,
    NotFoundError,
    RevokedError,
    StateConflictError,
    TokenConflictError,
    ValidationError,
)
from modules.contracts.models.contract import ContractStatus
from modules.contracts.repositories.token_repository import TokenRepository
from modules.contracts.services import SigningService, TokenService
from modules.contracts.services import token_service as token_service_module
from modules.contracts.services.token_service import generate_token, token_hint


def test_generate_token_is_256_bit_hex():
    token = generate_token()
    assert re.fullmatch(r"[0-9a-f]{64}", token)
    assert generate_token() != token


def test_token_hint_hides_the_secret():
    token = generate_token()
    assert token_hint(token) == token[:8] + "..."
    assert token[8:] not in token_hint(token)


def test_issue_binds_contract_party_and_ttl(session, contract):
    now = datetime(2024, 1, 1, 12, 0, 0)
    token = TokenService.issue(session, contract.id, "alice@example.com", "client", now=now)

    assert token.id is not None
    assert token.contract_id == contract.id
    assert token.party == "client"
    assert token.recipient_email == "alice@example.com"
    assert token.expires_at == now + timedelta(hours=72)
    assert token.used is False
    assert token.revoked is False


def test_issue_unknown_contract(session):
    with pytest.raises(NotFoundError):
        TokenService.issue(session, "8f14e45f-ceea-4e1a-9f4b-2a1b7c0d9e11", "alice@example.com", "client")


def test_issue_unknown_party_lists_allowed_roles(session, contract):
    with pytest.raises(ValidationError) as exc:
        TokenService.issue(session, contract.id, "alice@example.com", "witness")
    assert exc.value.details == {'allowedParties': ["client", "provider"]}


def test_issue_requires_recipient(session, contract):
    with pytest.raises(ValidationError):
        TokenService.issue(session, contract.id, "  ", "client")


def test_issue_rejects_party_that_already_signed(session, contract):
    token = TokenService.issue(session, contract.id, "alice@example.com", "client")
    SigningService.consume(session, token.token, SIGNATURE_PNG, "10.0.0.1")

    with pytest.raises(StateConflictError):
        TokenService.issue(session, contract.id, "alice@example.com", "client")


def test_issue_rejects_completed_contract(session, contract):
    for email, role in [("alice@example.com", "client"), ("bob@example.com", "provider")]:
        token = TokenService.issue(session, contract.id, email, role)
        SigningService.consume(session, token.token, SIGNATURE_PNG, None)

    with pytest.raises(StateConflictError):
        TokenService.issue(session, contract.id, "alice@example.com", "client")


def test_reissue_revokes_outstanding_token(session, contract):
    first = TokenService.issue(session, contract.id, "alice@example.com", "client")
    first_value = first.token
    second = TokenService.issue(session, contract.id, "alice@example.com", "client")

    old = TokenRepository(session).reload(first.id)
    assert old.revoked is True
    assert old.revoked_at is not None
    assert second.revoked is False

    with pytest.raises(RevokedError):
        SigningService.consume(session, first_value, SIGNATURE_PNG, None)
    result = SigningService.consume(session, second.token, SIGNATURE_PNG, None)
    assert result.contract.party_for_role("client").signed is True


def test_reissue_leaves_other_parties_tokens_alone(session, contract):
    provider = TokenService.issue(session, contract.id, "bob@example.com", "provider")
    TokenService.issue(session, contract.id, "alice@example.com", "client")
    TokenService.issue(session, contract.id, "alice@example.com", "client")

    assert TokenRepository(session).reload(provider.id).revoked is False


def test_issue_retries_on_token_collision(session, contract, monkeypatch):
    existing = TokenService.issue(session, contract.id, "alice@example.com", "client")
    values = iter([existing.token, "f" * 64])
    monkeypatch.setattr(token_service_module, "generate_token", lambda: next(values))

    token = TokenService.issue(session, contract.id, "bob@example.com", "provider")

    assert token.token == "f" * 64
    assert len(TokenRepository(session).find_by_contract(contract.id)) == 2


def test_issue_gives_up_after_repeated_collisions(session, contract, monkeypatch):
    taken = TokenService.issue(session, contract.id, "alice@example.com", "client").token
    monkeypatch.setattr(token_service_module, "generate_token", lambda: taken)

    with pytest.raises(TokenConflictError):
        TokenService.issue(session, contract.id, "bob@example.com", "provider")


def test_check_usable_order(session, contract):
    now = datetime.utcnow()
    token = TokenService.issue(session, contract.id, "alice@example.com", "client", now=now - timedelta(hours=80))

    with pytest.raises(NotFoundError):
        TokenService.check_usable(None, now)
    with pytest.raises(ExpiredError):
        TokenService.check_usable(token, now)

    # Used wins over revoked and expired
    token.used = True
    token.revoked = True
    with pytest.raises(AlreadyUsedError):
        TokenService.check_usable(token, now)
    token.used = False
    with pytest.raises(RevokedError):
        TokenService.check_usable(token, now)
    session.rollback()


def test_validate_does_not_consume(session, contract):
    token = TokenService.issue(session, contract.id, "alice@example.com", "client")

    signing_token, loaded = TokenService.validate(session, token.token)
    assert signing_token.id == token.id
    assert loaded.id == contract.id
    assert loaded.status == ContractStatus.DRAFT
    assert TokenRepository(session).reload(token.id).used is False


def test_validate_rejects_unknown_and_used(session, contract):
    token = TokenService.issue(session, contract.id, "alice@example.com", "client")
    value = token.token
    SigningService.consume(session, value, SIGNATURE_PNG, None)

    with pytest.raises(ValidationError):
        TokenService.validate(session, "")
    with pytest.raises(NotFoundError):
        TokenService.validate(session, "0" * 64)
    with pytest.raises(AlreadyUsedError):
        TokenService.validate(session, value)


def test_revoke(session, contract):
    token = TokenService.issue(session, contract.id, "alice@example.com", "client")

    revoked = TokenService.revoke(session, token.id)
    assert revoked.revoked is True
    assert revoked.revoked_at is not None

    # Revoking twice is harmless
    assert TokenService.revoke(session, token.id).revoked is True


def test_revoke_unknown_or_used(session, contract):
    token = TokenService.issue(session, contract.id, "alice@example.com", "client")
    SigningService.consume(session, token.token, SIGNATURE_PNG, None)

    with pytest.raises(NotFoundError):
        TokenService.revoke(session, 9999)
    with pytest.raises(AlreadyUsedError):
        TokenService.revoke(session, token.id)


def test_three_party_contract_accepts_any_role(session, owner):
    contract = create_contract(session, owner, parties=[
        {"name": "Alice", "email": "alice@example.com", "role": "client"},
        {"name": "Bob", "email": "bob@example.com", "role": "provider"},
        {"name": "Carol", "email": "carol@example.com", "role": "guarantor"},
    ])

    token = TokenService.issue(session, contract.id, "carol@example.com", "guarantor")
    assert token.party == "guarantor"
