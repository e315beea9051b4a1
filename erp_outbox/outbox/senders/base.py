from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    body: str


@dataclass(frozen=True)
class SmsMessage:
    to: str
    body: str


class EmailSender(Protocol):
    """Deliver one e-mail. Raises DeliveryError on any transport or provider rejection."""

    def send(self, message: EmailMessage) -> None: ...


class SmsSender(Protocol):
    """Deliver one SMS. Raises DeliveryError on any transport or provider rejection."""

    def send(self, message: SmsMessage) -> None: ...


def truncate(s: str, n: int = 200) -> str:
    s = s or ""
    return s if len(s) <= n else s[:n] + "…"
