from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from email.message import EmailMessage as MimeMessage
from email.utils import formataddr, parseaddr

import aiosmtplib

from erp_outbox.core.errors import DeliveryError
from erp_outbox.outbox.senders.base import EmailMessage, truncate

log = logging.getLogger("outbox.senders.smtp")


@dataclass(frozen=True)
class SmtpEmailOptions:
    host: str = ""
    port: int = 587
    user: str = ""
    password: str = ""
    use_starttls: bool = True
    from_email: str = ""
    from_name: str = "ISS ERP"
    timeout_s: float = 30.0


def _parse_recipient(to: str) -> str:
    _, addr = parseaddr(to or "")
    if not addr or "@" not in addr or addr.startswith("@") or addr.endswith("@"):
        raise DeliveryError(f"Invalid email recipient: {to!r}", provider="smtp")
    return addr


@dataclass(frozen=True)
class SmtpEmailSender:
    options: SmtpEmailOptions

    def send(self, message: EmailMessage) -> None:
        o = self.options
        if not o.host or not o.from_email:
            raise DeliveryError("SMTP email is not configured.", provider="smtp")

        mime = MimeMessage()
        mime["From"] = formataddr((o.from_name, o.from_email))
        mime["To"] = _parse_recipient(message.to)
        mime["Subject"] = message.subject
        mime.set_content(message.body)

        try:
            asyncio.run(self._send(mime))
        except aiosmtplib.SMTPException as e:
            raise DeliveryError(f"smtp:{type(e).__name__}:{truncate(str(e), 500)}", provider="smtp") from e
        except (OSError, asyncio.TimeoutError) as e:
            raise DeliveryError(f"smtp_transport:{type(e).__name__}:{truncate(str(e), 500)}", provider="smtp") from e

    async def _send(self, mime: MimeMessage) -> None:
        o = self.options
        implicit_tls = o.port == 465
        errors, response = await aiosmtplib.send(
            mime,
            hostname=o.host,
            port=o.port,
            username=o.user or None,
            password=o.password if o.user else None,
            use_tls=implicit_tls,
            # None: STARTTLS when the server offers it.
            start_tls=None if (o.use_starttls and not implicit_tls) else False,
            timeout=o.timeout_s,
        )
        if errors:
            raise DeliveryError(f"smtp_rejected:{errors}", provider="smtp")
        log.debug("SMTP accepted message for %s: %s", mime["To"], response)
