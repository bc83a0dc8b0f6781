from .mailer import Attachment, SmtpMailer
from .notification_service import NotificationService

__all__ = ['Attachment', 'SmtpMailer', 'NotificationService']
