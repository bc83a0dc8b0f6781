# modules/notifications/services/notification_service.py
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from config import settings
from errors import DispatchError
from modules.notifications.models.notification import (
    DeliveryStatus,
    NotificationDelivery,
    NotificationKind,
)
from modules.notifications.repositories.notification_repository import NotificationRepository
from modules.notifications.services.mailer import Attachment, SmtpMailer
from modules.notifications.services.pdf import render_contract_pdf

logger = logging.getLogger(__name__)

TEMPLATE_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "templates")

_environment = Environment(
    loader=FileSystemLoader(TEMPLATE_DIR),
    autoescape=select_autoescape(["html"]),
)


class EmailTemplate:
    template_name = "base.html"

    def __init__(self, subject: str, **context):
        self.subject = subject
        self.context = context

    def to_dict(self):
        return {
            'company_name': settings.company_name,
            'base_url': settings.public_base_url,
            'year': datetime.utcnow().year,
            'title': self.subject,
            **self.context,
        }

    def render(self) -> str:
        return _environment.get_template(self.template_name).render(**self.to_dict())


class ContractRequestEmail(EmailTemplate):
    template_name = "contract_request.html"

    def __init__(self, contract_title: str, sign_url: str):
        super().__init__(
            "Action Required: Contract Signature Request",
            contract_title=contract_title,
            sign_url=sign_url,
            ttl_hours=settings.token_ttl_hours,
        )


class ContractFinalizedEmail(EmailTemplate):
    template_name = "contract_finalized.html"

    def __init__(self, contract_title: str, contract_id: str):
        super().__init__(
            "Contract Successfully Finalized: Save for Your Records",
            contract_title=contract_title,
            contract_id=contract_id,
        )


def finalized_dedupe_key(contract_id: str, email: str) -> str:
    return f"finalized:{contract_id}:{email.strip().lower()}"


@dataclass
class FinalizedDispatch:
    """The per-recipient deliveries of one executed-contract mailing."""

    contract_id: str
    deliveries: List[NotificationDelivery] = field(default_factory=list)

    @property
    def status(self) -> DeliveryStatus:
        statuses = {delivery.status for delivery in self.deliveries}
        if DeliveryStatus.FAILED in statuses:
            return DeliveryStatus.FAILED
        if DeliveryStatus.SENDING in statuses:
            return DeliveryStatus.SENDING
        return DeliveryStatus.SENT

    @property
    def error(self) -> Optional[str]:
        errors = [delivery.error for delivery in self.deliveries if delivery.error]
        return "; ".join(errors) or None

    @property
    def failed_recipients(self) -> List[str]:
        return [
            delivery.recipient_email for delivery in self.deliveries
            if delivery.status == DeliveryStatus.FAILED
        ]


class NotificationService:
    """Sends the transactional contract emails and records each delivery."""

    def __init__(self, repository: NotificationRepository, mailer: Optional[SmtpMailer] = None):
        self.notification_repository = repository
        self.mailer = mailer or SmtpMailer.from_settings()

    def send_contract_email(
        self,
        contract_id: str,
        contract_json: dict,
        recipient_email: str,
        sign_url: str,
    ) -> NotificationDelivery:
        """Signature request carrying the tokenized link. Raises DispatchError on failure."""
        template = ContractRequestEmail(contract_json.get("title") or "Contract", sign_url)
        delivery = self.notification_repository.save(NotificationDelivery(
            contract_id=contract_id,
            kind=NotificationKind.CONTRACT_REQUEST,
            recipient_email=recipient_email,
            status=DeliveryStatus.SENDING,
        ))
        sent = self.mailer.send(recipient_email, template.subject, template.render())
        return self._finish(delivery, sent, recipient_email)

    def send_finalized_contract_email(
        self,
        contract_id: str,
        contract_json: dict,
        recipient_email: str,
        sender_email: Optional[str] = None,
        also_notify: Iterable[Optional[str]] = (),
    ) -> FinalizedDispatch:
        """
        Mail the executed contract PDF to the recipient, the creator and any
        address in ``also_notify``.

        Deduplicated per contract and address: an address whose finalized email
        is sending or sent is skipped, so a retry only reaches the addresses
        that failed. Raises DispatchError when any address this call claimed
        could not be reached.
        """
        recipients = self._distinct_recipients([recipient_email, sender_email, *also_notify])
        dispatch = FinalizedDispatch(contract_id)
        claimed = []
        for email in recipients:
            delivery, owned = self.notification_repository.claim(
                contract_id,
                NotificationKind.CONTRACT_FINALIZED,
                email,
                finalized_dedupe_key(contract_id, email),
            )
            dispatch.deliveries.append(delivery)
            if owned:
                claimed.append(delivery)
            else:
                logger.info(
                    "Finalized email for contract %s to %s already %s; not sending again",
                    contract_id, email, delivery.status.value,
                )
        if not claimed:
            return dispatch

        template = ContractFinalizedEmail(contract_json.get("title") or "Contract", contract_id)
        try:
            pdf_bytes = render_contract_pdf(contract_json, contract_id)
        except Exception as exc:
            for delivery in claimed:
                self._record_failure(delivery, f"PDF rendering failed: {exc}")
            raise DispatchError(
                "Failed to render the finalized contract", details={'contractId': contract_id}
            ) from exc
        attachment = Attachment(filename=f"contract-{contract_id}.pdf", content=pdf_bytes)

        # One message per address so no recipient sees the others
        for delivery in claimed:
            email = delivery.recipient_email
            if self.mailer.send(email, template.subject, template.render(), attachments=[attachment]):
                self.notification_repository.update(delivery.id, {'status': DeliveryStatus.SENT})
            else:
                self._record_failure(delivery, f"Delivery to {email} failed")

        if dispatch.failed_recipients:
            raise DispatchError(
                "Failed to send contract_finalized email",
                details={'contractId': contract_id, 'failedRecipients': dispatch.failed_recipients},
            )
        return dispatch

    def get_finalized_dispatch(self, contract_id: str) -> FinalizedDispatch:
        deliveries = [
            delivery for delivery in self.get_deliveries(contract_id)
            if delivery.kind == NotificationKind.CONTRACT_FINALIZED
        ]
        return FinalizedDispatch(contract_id, list(reversed(deliveries)))

    def get_deliveries(self, contract_id: str) -> List[NotificationDelivery]:
        return self.notification_repository.find_by_contract_id(contract_id)

    def _finish(self, delivery: NotificationDelivery, sent: bool, target: str) -> NotificationDelivery:
        if sent:
            return self.notification_repository.update(delivery.id, {'status': DeliveryStatus.SENT})
        self._record_failure(delivery, f"Delivery to {target} failed")
        raise DispatchError(
            f"Failed to send {delivery.kind.value} email",
            details={'contractId': delivery.contract_id, 'deliveryId': delivery.id},
        )

    def _record_failure(self, delivery: NotificationDelivery, error: str):
        logger.error("Notification %s for contract %s failed: %s", delivery.id, delivery.contract_id, error)
        self.notification_repository.update(delivery.id, {'status': DeliveryStatus.FAILED, 'error': error})

    @staticmethod
    def _distinct_recipients(emails: List[Optional[str]]) -> List[str]:
        seen = []
        for email in emails:
            if email and email.strip().lower() not in [s.lower() for s in seen]:
                seen.append(email.strip())
        return seen
