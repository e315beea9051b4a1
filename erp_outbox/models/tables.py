from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from erp_outbox.models.base import Base

RECIPIENT_MAX = 256
SUBJECT_MAX = 256
BODY_MAX = 8000
LAST_ERROR_MAX = 2000
REFERENCE_TYPE_MAX = 64


class NotificationChannel(str, enum.Enum):
    EMAIL = "EMAIL"
    SMS = "SMS"


class NotificationStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SENT = "SENT"
    FAILED = "FAILED"


class NotificationOutboxItem(Base):
    __tablename__ = "notification_outbox_items"
    __table_args__ = (
        Index("ix_notification_outbox_status_next_attempt", "status", "next_attempt_at"),
        Index("ix_notification_outbox_reference", "reference_type", "reference_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    channel: Mapped[str] = mapped_column(String(20), nullable=False)  # EMAIL/SMS
    recipient: Mapped[str] = mapped_column(String(RECIPIENT_MAX), nullable=False)
    subject: Mapped[str | None] = mapped_column(String(SUBJECT_MAX), nullable=True)
    body: Mapped[str] = mapped_column(String(BODY_MAX), nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False)  # PENDING/PROCESSING/SENT/FAILED
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_attempt_at: Mapped[datetime] = mapped_column(nullable=False)
    last_attempt_at: Mapped[datetime | None] = mapped_column(nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_error: Mapped[str | None] = mapped_column(String(LAST_ERROR_MAX), nullable=True)

    # Traceability only (e.g. "PO" + purchase order id); never used for dispatch logic.
    reference_type: Mapped[str | None] = mapped_column(String(REFERENCE_TYPE_MAX), nullable=True)
    reference_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<NotificationOutboxItem {self.id} {self.channel} {self.status} attempts={self.attempts}>"
