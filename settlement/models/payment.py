"""Local mirror of gateway-hosted payments and the webhook event log."""
import uuid
from datetime import datetime, date, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, Date, Integer, Text, Index
from sqlalchemy.orm import Mapped, mapped_column

from settlement.database import Base
from settlement.db_types import UUIDType, JSONType, MoneyType


class LocalPaymentStatus(str, Enum):
    """Payment status as tracked locally. Only moves forward."""
    PENDING = "PENDING"
    OVERDUE = "OVERDUE"
    RECEIVED = "RECEIVED"
    CANCELLED = "CANCELLED"


class WebhookOutcome(str, Enum):
    """How a webhook delivery was handled."""
    PROCESSED = "PROCESSED"     # Side effects applied
    DUPLICATE = "DUPLICATE"     # Event id already processed
    IGNORED = "IGNORED"         # Event type not handled
    FAILED = "FAILED"           # Side effects failed, eligible for reprocessing


class PaymentMirror(Base):
    """
    Gateway payment as last seen locally.

    Keyed by gateway_payment_id. Never deleted. local_status never
    regresses; a stale update only refreshes last_synced_at.
    """
    __tablename__ = "payment_mirrors"
    __table_args__ = (
        Index("ix_payment_mirrors_status_synced", "local_status", "last_synced_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    gateway_payment_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    external_reference: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        index=True,
        comment="Billable event / booking id the charge belongs to"
    )
    customer_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    billing_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    value: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    payment_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    gateway_status: Mapped[str] = mapped_column(String(50), nullable=False)
    local_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=LocalPaymentStatus.PENDING.value
    )
    raw_last_payload: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    # Last local_status the client was told about
    notified_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    last_synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self) -> str:
        return f"<PaymentMirror {self.gateway_payment_id} {self.local_status}>"


class WebhookEventLog(Base):
    """Every webhook delivery, keyed by the gateway event id."""
    __tablename__ = "webhook_event_logs"
    __table_args__ = (
        Index("ix_webhook_event_logs_processed", "processed", "attempts"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    gateway_event_id: Mapped[str] = mapped_column(
        String(128),
        unique=True,
        nullable=False,
        comment="Provider event id, or a digest of the payload when absent"
    )
    event_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    gateway_payment_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False)

    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    processed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    outcome: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    processing_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
