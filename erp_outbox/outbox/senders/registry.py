from __future__ import annotations

import logging
from dataclasses import dataclass

from erp_outbox.core.config import Settings
from erp_outbox.core.errors import DeliveryError
from erp_outbox.models.tables import NotificationChannel, NotificationOutboxItem
from erp_outbox.outbox.senders.base import EmailMessage, EmailSender, SmsMessage, SmsSender
from erp_outbox.outbox.senders.null import NullEmailSender, NullSmsSender
from erp_outbox.outbox.senders.smtp import SmtpEmailOptions, SmtpEmailSender
from erp_outbox.outbox.senders.twilio import TwilioSmsOptions, TwilioSmsSender

log = logging.getLogger("outbox.senders")

DEFAULT_EMAIL_SUBJECT = "Notification"


@dataclass(frozen=True)
class SenderRegistry:
    email: EmailSender
    sms: SmsSender

    def deliver(self, item: NotificationOutboxItem) -> None:
        """Send one outbox item through its channel. Raises DeliveryError on failure."""

        if item.channel == NotificationChannel.EMAIL:
            self.email.send(EmailMessage(to=item.recipient, subject=item.subject or DEFAULT_EMAIL_SUBJECT, body=item.body))
        elif item.channel == NotificationChannel.SMS:
            self.sms.send(SmsMessage(to=item.recipient, body=item.body))
        else:
            raise DeliveryError(f"Unsupported channel: {item.channel}")


def get_email_sender(s: Settings) -> EmailSender:
    if not s.SMTP_HOST.strip():
        return NullEmailSender()
    return SmtpEmailSender(
        SmtpEmailOptions(
            host=s.SMTP_HOST.strip(),
            port=s.SMTP_PORT,
            user=s.SMTP_USER,
            password=s.SMTP_PASSWORD,
            use_starttls=s.SMTP_USE_STARTTLS,
            from_email=s.SMTP_FROM_EMAIL,
            from_name=s.SMTP_FROM_NAME,
            timeout_s=s.SMTP_TIMEOUT_S,
        )
    )


def get_sms_sender(s: Settings) -> SmsSender:
    if not s.TWILIO_ACCOUNT_SID.strip():
        return NullSmsSender()
    return TwilioSmsSender(
        TwilioSmsOptions(
            account_sid=s.TWILIO_ACCOUNT_SID.strip(),
            auth_token=s.TWILIO_AUTH_TOKEN,
            from_number=s.TWILIO_FROM,
            api_base=s.TWILIO_API_BASE,
            timeout_s=s.TWILIO_TIMEOUT_S,
        )
    )


def build_senders(s: Settings) -> SenderRegistry:
    registry = SenderRegistry(email=get_email_sender(s), sms=get_sms_sender(s))
    log.info(
        "Notification senders: email=%s sms=%s",
        type(registry.email).__name__,
        type(registry.sms).__name__,
    )
    return registry
