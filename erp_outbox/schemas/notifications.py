from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from erp_outbox.models.tables import (
    BODY_MAX,
    RECIPIENT_MAX,
    REFERENCE_TYPE_MAX,
    SUBJECT_MAX,
    NotificationChannel,
    NotificationStatus,
)


class EnqueueRequest(BaseModel):
    """Validated enqueue input. Blank optionals collapse to None."""

    model_config = ConfigDict(str_strip_whitespace=True)

    channel: NotificationChannel
    recipient: str = Field(min_length=1, max_length=RECIPIENT_MAX)
    subject: str | None = Field(default=None, max_length=SUBJECT_MAX)
    body: str = Field(min_length=1, max_length=BODY_MAX)
    reference_type: str | None = Field(default=None, max_length=REFERENCE_TYPE_MAX)
    reference_id: UUID | str | None = None

    @field_validator("subject", "reference_type", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("reference_id", mode="after")
    @classmethod
    def _reference_id_str(cls, v):
        if v is None:
            return None
        v = str(v)
        if len(v) > 36:
            raise ValueError("reference_id must be at most 36 characters")
        return v


class NotificationDto(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    channel: NotificationChannel
    recipient: str
    subject: str | None
    body: str
    status: NotificationStatus
    attempts: int
    next_attempt_at: datetime
    last_attempt_at: datetime | None
    sent_at: datetime | None
    last_error: str | None
    reference_type: str | None
    reference_id: str | None
    created_at: datetime


class ReferenceTypes:
    """Business document codes used as reference_type."""

    PURCHASE_ORDER = "PO"
    DIRECT_DISPATCH = "DDN"
    DIRECT_PURCHASE = "DPR"
    CUSTOMER_RETURN = "CRTN"
    SERVICE_ESTIMATE = "SE"
    SERVICE_HANDOVER = "SH"
    GOODS_RECEIPT = "GRN"
    SUPPLIER_INVOICE = "SINV"
    SUPPLIER_RETURN = "SR"
    DISPATCH_NOTE = "DN"
    SALES_INVOICE = "INV"
    MATERIAL_REQUISITION = "MR"
    STOCK_ADJUSTMENT = "ADJ"
    STOCK_TRANSFER = "TRF"
    PAYMENT = "PAY"
    CREDIT_NOTE = "CN"
    DEBIT_NOTE = "DBN"
