"""Billable events: revenue, expense and commission entries of the financial ledger."""
from datetime import datetime, date, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, Date, Text, Index
from sqlalchemy.orm import Mapped, mapped_column

from settlement.database import Base
from settlement.db_types import MoneyType


class BillableEventKind(str, Enum):
    """Ledger entry kind."""
    REVENUE = "REVENUE"         # Service paid by a client
    EXPENSE = "EXPENSE"
    COMMISSION = "COMMISSION"   # Audit entry written when a commission is settled


class BillableEvent(Base):
    """
    A financial ledger entry.

    Only confirmed REVENUE entries are eligible for commission settlement.
    COMMISSION entries are written by the settlement engine and point back
    to the revenue entry through source_event_id.
    """
    __tablename__ = "billable_events"
    __table_args__ = (
        Index("ix_billable_events_barber_kind", "barber_id", "kind"),
    )

    # Usually the booking id, also used as payment externalReference
    id: Mapped[str] = mapped_column(String(100), primary_key=True)

    barber_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    service_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    booking_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    kind: Mapped[str] = mapped_column(String(20), nullable=False, default=BillableEventKind.REVENUE.value)
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    occurred_on: Mapped[date] = mapped_column(Date, nullable=False)
    confirmed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    source_event_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        index=True,
        comment="Revenue event a COMMISSION entry was derived from"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    @property
    def is_settleable(self) -> bool:
        return self.kind == BillableEventKind.REVENUE.value and self.confirmed

    def __repr__(self) -> str:
        return f"<BillableEvent {self.id} {self.kind} {self.amount}>"
