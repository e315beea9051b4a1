from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from erp_outbox.core.errors import DeliveryError
from erp_outbox.outbox.senders.base import SmsMessage, truncate

log = logging.getLogger("outbox.senders.twilio")


@dataclass(frozen=True)
class TwilioSmsOptions:
    account_sid: str = ""
    auth_token: str = ""
    from_number: str = ""
    api_base: str = "https://api.twilio.com"
    timeout_s: float = 10.0


class TwilioSmsSender:
    def __init__(self, options: TwilioSmsOptions, *, client: httpx.Client | None = None) -> None:
        self.options = options
        # Injected client (tests, connection reuse); otherwise one client per send.
        self._client = client

    def send(self, message: SmsMessage) -> None:
        o = self.options
        if not o.account_sid or not o.auth_token or not o.from_number:
            raise DeliveryError("Twilio SMS is not configured.", provider="twilio")

        to = (message.to or "").strip()
        if not to:
            raise DeliveryError("Invalid SMS recipient: empty", provider="twilio")

        url = f"{o.api_base.rstrip('/')}/2010-04-01/Accounts/{o.account_sid}/Messages.json"
        data = {"To": to, "From": o.from_number, "Body": message.body}

        try:
            if self._client is not None:
                resp = self._client.post(url, data=data, auth=(o.account_sid, o.auth_token), timeout=o.timeout_s)
            else:
                with httpx.Client(timeout=o.timeout_s) as client:
                    resp = client.post(url, data=data, auth=(o.account_sid, o.auth_token))
        except httpx.HTTPError as e:
            raise DeliveryError(f"twilio_transport:{type(e).__name__}:{truncate(str(e), 500)}", provider="twilio") from e

        if resp.status_code >= 400:
            log.warning("Twilio SMS send failed (%s): %s", resp.status_code, truncate(resp.text, 500))
            raise DeliveryError(
                f"twilio_http_{resp.status_code}:{truncate(resp.text, 500)}",
                provider="twilio",
                status_code=resp.status_code,
            )
