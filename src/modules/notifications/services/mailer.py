import logging
import smtplib
from dataclasses import dataclass
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Optional

from config import Settings, settings as app_settings

logger = logging.getLogger(__name__)


@dataclass
class Attachment:
    filename: str
    content: bytes
    content_type: str = "application/pdf"


@dataclass
class SmtpConfig:
    host: str
    port: int = 587
    username: Optional[str] = None
    password: Optional[str] = None
    use_tls: bool = True
    use_ssl: bool = False
    timeout: int = 30
    from_email: str = "noreply@example.com"
    from_name: str = "Contract Management"

    @classmethod
    def from_settings(cls, settings: Settings) -> "SmtpConfig":
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_user,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            use_ssl=settings.smtp_use_ssl,
            timeout=settings.smtp_timeout,
            from_email=settings.from_email,
            from_name=settings.company_name,
        )


class SmtpMailer:
    """Thin SMTP client. ``send`` reports failure with ``False`` instead of raising."""

    def __init__(self, config: SmtpConfig):
        self.config = config

    @classmethod
    def from_settings(cls, settings: Settings = app_settings) -> "SmtpMailer":
        return cls(SmtpConfig.from_settings(settings))

    def _create_client(self):
        if self.config.use_ssl:
            return smtplib.SMTP_SSL(self.config.host, self.config.port, timeout=self.config.timeout)
        return smtplib.SMTP(self.config.host, self.config.port, timeout=self.config.timeout)

    def build_message(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
        attachments: Optional[List[Attachment]] = None,
    ) -> MIMEMultipart:
        msg = MIMEMultipart("mixed")
        msg["Subject"] = subject
        msg["From"] = f"{self.config.from_name} <{self.config.from_email}>"
        msg["To"] = to_email

        body = MIMEMultipart("alternative")
        if body_text:
            body.attach(MIMEText(body_text, "plain"))
        body.attach(MIMEText(body_html, "html"))
        msg.attach(body)

        for attachment in attachments or []:
            _, subtype = attachment.content_type.split("/", 1)
            part = MIMEApplication(attachment.content, _subtype=subtype)
            part.add_header("Content-Disposition", "attachment", filename=attachment.filename)
            msg.attach(part)
        return msg

    def send(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
        attachments: Optional[List[Attachment]] = None,
    ) -> bool:
        if not self.config.host:
            logger.error("SMTP host is not configured; cannot send to %s", to_email)
            return False

        msg = self.build_message(to_email, subject, body_html, body_text, attachments)
        try:
            with self._create_client() as server:
                if self.config.use_tls and not self.config.use_ssl:
                    server.starttls()
                if self.config.username and self.config.password:
                    server.login(self.config.username, self.config.password)
                server.sendmail(self.config.from_email, [to_email], msg.as_string())
        except smtplib.SMTPAuthenticationError as exc:
            logger.error("SMTP authentication failed for %s: %s", to_email, exc)
            return False
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send email to %s: %s", to_email, exc)
            return False

        logger.info("Email '%s' sent to %s", subject, to_email)
        return True
