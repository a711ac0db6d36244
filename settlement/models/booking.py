"""Booking reference model.

Owned by the booking subsystem. Settlement only reads it to find the
barber and service behind a payment.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from settlement.database import Base
from settlement.db_types import MoneyType


class Booking(Base):
    """Client appointment with a barber."""
    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    barber_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    service_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    client_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    total_amount: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)
    scheduled_for: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
