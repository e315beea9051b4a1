from __future__ import annotations

import logging
from dataclasses import dataclass

from erp_outbox.outbox.senders.base import EmailMessage, SmsMessage

log = logging.getLogger("outbox.senders")


@dataclass(frozen=True)
class NullEmailSender:
    def send(self, message: EmailMessage) -> None:
        log.info("Email notifications disabled. Dropping email to %s with subject %s", message.to, message.subject)


@dataclass(frozen=True)
class NullSmsSender:
    def send(self, message: SmsMessage) -> None:
        log.info("SMS notifications disabled. Dropping SMS to %s", message.to)
