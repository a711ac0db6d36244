"""Commission models for barber settlement.

Supports:
- Per barber commission policies, general or per service
- One commission record per confirmed revenue event
- Append-only manual adjustments (bonus, discount, correction)
- Operator queue for events that could not be settled
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, List

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, Text
from sqlalchemy import UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement.database import Base
from settlement.db_types import UUIDType, JSONType, MoneyType, PercentType


GENERAL_SCOPE = "*"


class CommissionStatus(str, Enum):
    """Commission record lifecycle."""
    CALCULATED = "CALCULATED"   # Amount computed, settlement not yet committed
    SETTLED = "SETTLED"         # Final, adjustable
    CANCELLED = "CANCELLED"     # Voided, e.g. payment refunded


class AdjustmentKind(str, Enum):
    """Manual adjustment kind."""
    BONUS = "BONUS"             # Adds |delta|
    DISCOUNT = "DISCOUNT"       # Subtracts |delta|, never below zero
    CORRECTION = "CORRECTION"   # Replaces amount with |delta|


class CommissionPolicy(Base):
    """
    Commission percentage and bounds for a barber.

    service_id NULL is the barber's general policy. scope_key mirrors
    service_id ("*" for general) so the unique constraint also covers
    the general policy.
    """
    __tablename__ = "commission_policies"
    __table_args__ = (
        UniqueConstraint("barber_id", "scope_key", name="uq_commission_policy_scope"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    barber_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    service_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    scope_key: Mapped[str] = mapped_column(String(64), nullable=False, default=GENERAL_SCOPE)

    percentage: Mapped[Decimal] = mapped_column(
        PercentType,
        nullable=False,
        comment="Commission % of the gross service amount"
    )
    min_amount: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)
    max_amount: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

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
    def is_general(self) -> bool:
        return self.service_id is None

    def __repr__(self) -> str:
        return f"<CommissionPolicy {self.barber_id}/{self.scope_key} {self.percentage}%>"


class CommissionRecord(Base):
    """
    Commission owed to a barber for one confirmed revenue event.

    calculated_amount is the value derived from the policy and never
    changes. commission_amount is the current value after adjustments.
    """
    __tablename__ = "commission_records"
    __table_args__ = (
        Index("ix_commission_records_barber_status", "barber_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    billable_event_id: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
        comment="At most one commission per billable event"
    )
    barber_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    service_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Derivation snapshot
    policy_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("commission_policies.id", ondelete="SET NULL"),
        nullable=True
    )
    gross_service_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    applied_percentage: Mapped[Decimal] = mapped_column(PercentType, nullable=False)
    min_amount: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)
    max_amount: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)

    calculated_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    commission_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=CommissionStatus.CALCULATED.value,
        index=True
    )
    settled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    adjustments: Mapped[List["CommissionAdjustment"]] = relationship(
        "CommissionAdjustment",
        back_populates="record",
        order_by="CommissionAdjustment.sequence",
        lazy="selectin",
    )

    @property
    def is_cancelled(self) -> bool:
        return self.status == CommissionStatus.CANCELLED.value

    def __repr__(self) -> str:
        return f"<CommissionRecord {self.billable_event_id} {self.status} {self.commission_amount}>"


class CommissionAdjustment(Base):
    """Manual change to a commission record. Append-only."""
    __tablename__ = "commission_adjustments"
    __table_args__ = (
        UniqueConstraint("record_id", "sequence", name="uq_commission_adjustment_sequence"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    record_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("commission_records.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False, comment="1-based application order")

    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    delta: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    approved_by: Mapped[str] = mapped_column(String(100), nullable=False)

    amount_before: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    amount_after: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)

    applied_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )

    record: Mapped["CommissionRecord"] = relationship("CommissionRecord", back_populates="adjustments")


class SettlementFailure(Base):
    """Revenue event that could not be settled, waiting for an operator."""
    __tablename__ = "settlement_failures"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    billable_event_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    barber_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    error_type: Mapped[str] = mapped_column(String(50), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    first_failed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    last_failed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
