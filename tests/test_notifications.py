import io
import smtplib
from email import message_from_string

import pytest
from PyPDF2 import PdfReader

from conftest import SIGNATURE_PNG, FakeSMTP
from errors import DispatchError
from modules.notifications.models.notification import DeliveryStatus, NotificationKind
from modules.notifications.services import notification_service as notification_module
from modules.notifications.services.mailer import Attachment, SmtpConfig, SmtpMailer
from modules.notifications.services.notification_service import (
    ContractRequestEmail,
    finalized_dedupe_key,
)
from modules.notifications.services.pdf import render_contract_pdf

CONTRACT_ID = "8f14e45f-ceea-4e1a-9f4b-2a1b7c0d9e11"

DOCUMENT = {
    "title": "Consulting Agreement",
    "blocks": [
        {"text": "The consultant advises the client on data architecture.", "signatures": []},
        {"text": "Signatures", "signatures": [
            {"party": "client", "index": 0, "name": "Alice", "img_url": SIGNATURE_PNG},
            {"party": "provider", "index": 1, "name": "Bob", "date": "2024-03-01"},
        ]},
    ],
    "parties": [
        {"name": "Alice", "role": "client"},
        {"name": "Bob", "role": "provider"},
    ],
}


def attachments_of(raw_message):
    message = message_from_string(raw_message)
    return [
        part for part in message.walk()
        if part.get_content_disposition() == "attachment"
    ]


def test_render_contract_pdf_contains_the_document():
    pdf_bytes = render_contract_pdf(DOCUMENT, CONTRACT_ID)

    reader = PdfReader(io.BytesIO(pdf_bytes))
    text = "".join(page.extract_text() for page in reader.pages)
    assert "CONSULTING AGREEMENT" in text
    assert CONTRACT_ID in text
    assert "data architecture" in text
    assert "Bob (provider)" in text


def test_render_contract_pdf_paginates_long_documents():
    long_document = {"title": "Long", "blocks": [{"text": "Clause text. " * 80}] * 20}

    reader = PdfReader(io.BytesIO(render_contract_pdf(long_document, CONTRACT_ID)))
    assert len(reader.pages) > 1


def test_render_contract_pdf_skips_unreadable_images():
    document = {"title": "Broken", "blocks": [{"text": "x", "signatures": [
        {"party": "client", "img_url": "data:image/png;base64,not-really-base64!"},
    ]}]}

    assert render_contract_pdf(document, CONTRACT_ID).startswith(b"%PDF")


def test_mailer_sends_multipart_with_attachment(mailer):
    sent = mailer.send(
        "alice@example.com",
        "Hello",
        "<p>Hi</p>",
        attachments=[Attachment(filename="contract.pdf", content=b"%PDF-1.4 test")],
    )

    assert sent is True
    from_addr, to_addrs, raw = FakeSMTP.sent[0]
    assert from_addr == "noreply@test.dev"
    assert to_addrs == ["alice@example.com"]
    parts = attachments_of(raw)
    assert [part.get_filename() for part in parts] == ["contract.pdf"]
    assert parts[0].get_payload(decode=True) == b"%PDF-1.4 test"


def test_mailer_reports_refused_recipient(mailer):
    FakeSMTP.refuse = {"alice@example.com"}
    assert mailer.send("alice@example.com", "Hello", "<p>Hi</p>") is False
    assert FakeSMTP.open_connections == 0


def test_mailer_closes_connection_when_login_fails(monkeypatch):
    def reject(self, user, password):
        raise smtplib.SMTPAuthenticationError(535, b"bad credentials")

    monkeypatch.setattr(FakeSMTP, "login", reject)
    mailer = SmtpMailer(SmtpConfig(host="smtp.test", username="relay", password="wrong"))

    assert mailer.send("alice@example.com", "Hello", "<p>Hi</p>") is False
    assert FakeSMTP.open_connections == 0
    assert FakeSMTP.sent == []


def test_mailer_reports_connection_failure(monkeypatch, mailer):
    def unreachable(*args, **kwargs):
        raise ConnectionRefusedError("connection refused")

    monkeypatch.setattr(smtplib, "SMTP", unreachable)
    assert mailer.send("alice@example.com", "Hello", "<p>Hi</p>") is False


def test_mailer_without_host_does_not_connect():
    assert SmtpMailer(SmtpConfig(host="")).send("alice@example.com", "Hello", "<p>Hi</p>") is False
    assert FakeSMTP.sent == []


def test_request_email_renders_link():
    template = ContractRequestEmail("Consulting Agreement", "https://app.test/contracts/sign?token=abc")
    html = template.render()

    assert "https://app.test/contracts/sign?token=abc" in html
    assert "Consulting Agreement" in html


def test_send_contract_email_records_delivery(dispatcher):
    delivery = dispatcher.send_contract_email(
        CONTRACT_ID, DOCUMENT, "bob@example.com", "https://app.test/contracts/sign?token=abc"
    )

    assert delivery.status == DeliveryStatus.SENT
    assert delivery.kind == NotificationKind.CONTRACT_REQUEST
    assert delivery.dedupe_key is None
    assert FakeSMTP.recipients() == ["bob@example.com"]


def test_send_contract_email_failure(dispatcher):
    FakeSMTP.refuse = {"bob@example.com"}

    with pytest.raises(DispatchError):
        dispatcher.send_contract_email(CONTRACT_ID, DOCUMENT, "bob@example.com", "https://app.test/x")

    [delivery] = dispatcher.get_deliveries(CONTRACT_ID)
    assert delivery.status == DeliveryStatus.FAILED
    assert "bob@example.com" in delivery.error


def test_finalized_email_goes_to_recipient_and_creator_once(dispatcher):
    first = dispatcher.send_finalized_contract_email(
        CONTRACT_ID, DOCUMENT, "bob@example.com", "owner@example.com"
    )
    second = dispatcher.send_finalized_contract_email(
        CONTRACT_ID, DOCUMENT, "bob@example.com", "owner@example.com"
    )

    assert first.status == DeliveryStatus.SENT
    assert [d.dedupe_key for d in first.deliveries] == [
        finalized_dedupe_key(CONTRACT_ID, "bob@example.com"),
        finalized_dedupe_key(CONTRACT_ID, "owner@example.com"),
    ]
    assert [d.id for d in second.deliveries] == [d.id for d in first.deliveries]
    assert sorted(FakeSMTP.recipients()) == ["bob@example.com", "owner@example.com"]
    for _, _, raw in FakeSMTP.sent:
        [pdf] = attachments_of(raw)
        assert pdf.get_filename() == f"contract-{CONTRACT_ID}.pdf"
        assert pdf.get_payload(decode=True).startswith(b"%PDF")


def test_finalized_email_reaches_every_extra_address_once(dispatcher):
    dispatch = dispatcher.send_finalized_contract_email(
        CONTRACT_ID, DOCUMENT, "bob@example.com", "owner@example.com",
        also_notify=["alice@example.com", "BOB@example.com", None],
    )

    assert [d.recipient_email for d in dispatch.deliveries] == [
        "bob@example.com", "owner@example.com", "alice@example.com",
    ]
    assert sorted(FakeSMTP.recipients()) == ["alice@example.com", "bob@example.com", "owner@example.com"]


def test_partial_failure_retry_skips_delivered_addresses(dispatcher):
    FakeSMTP.refuse = {"bob@example.com"}
    with pytest.raises(DispatchError) as excinfo:
        dispatcher.send_finalized_contract_email(CONTRACT_ID, DOCUMENT, "bob@example.com", "owner@example.com")
    assert excinfo.value.details["failedRecipients"] == ["bob@example.com"]
    assert FakeSMTP.recipients() == ["owner@example.com"]

    FakeSMTP.reset()
    retried = dispatcher.send_finalized_contract_email(
        CONTRACT_ID, DOCUMENT, "bob@example.com", "owner@example.com"
    )

    assert retried.status == DeliveryStatus.SENT
    assert FakeSMTP.recipients() == ["bob@example.com"]
    assert len(dispatcher.get_deliveries(CONTRACT_ID)) == 2


def test_finalized_email_same_address_sent_once(dispatcher):
    dispatcher.send_finalized_contract_email(CONTRACT_ID, DOCUMENT, "Owner@Example.com", "owner@example.com")

    assert FakeSMTP.recipients() == ["Owner@Example.com"]


def test_failed_finalized_email_can_be_retried(dispatcher):
    FakeSMTP.refuse = {"bob@example.com"}
    with pytest.raises(DispatchError):
        dispatcher.send_finalized_contract_email(CONTRACT_ID, DOCUMENT, "bob@example.com")

    FakeSMTP.reset()
    retried = dispatcher.send_finalized_contract_email(CONTRACT_ID, DOCUMENT, "bob@example.com")

    assert retried.status == DeliveryStatus.SENT
    assert retried.error is None
    assert FakeSMTP.recipients() == ["bob@example.com"]
    assert len(dispatcher.get_deliveries(CONTRACT_ID)) == 1


def test_pdf_failure_is_recorded(dispatcher, monkeypatch):
    def broken(*args, **kwargs):
        raise ValueError("bad layout")

    monkeypatch.setattr(notification_module, "render_contract_pdf", broken)

    with pytest.raises(DispatchError):
        dispatcher.send_finalized_contract_email(CONTRACT_ID, DOCUMENT, "bob@example.com")

    [delivery] = dispatcher.get_deliveries(CONTRACT_ID)
    assert delivery.status == DeliveryStatus.FAILED
    assert "bad layout" in delivery.error
    assert FakeSMTP.sent == []
