"""
Contract model — agreements with vendors.

State machine: DRAFT → ACTIVE → TERMINATED / RENEWED / EXPIRED
               DRAFT → REJECTED
"""

import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from procurement.database import Base

CONTRACT_DRAFT = "DRAFT"
CONTRACT_ACTIVE = "ACTIVE"
CONTRACT_EXPIRED = "EXPIRED"
CONTRACT_TERMINATED = "TERMINATED"
CONTRACT_REJECTED = "REJECTED"
CONTRACT_RENEWED = "RENEWED"


class Contract(Base):
    __tablename__ = "contracts"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    contract_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    vendor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("vendors.id"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default=CONTRACT_DRAFT)
    value_cents: Mapped[Optional[int]] = mapped_column(BigInteger)
    # Contract period, end exclusive
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    terms_conditions: Mapped[Optional[str]] = mapped_column(Text)
    renewal_terms: Mapped[Optional[str]] = mapped_column(Text)
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True))
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    approval_comments: Mapped[Optional[str]] = mapped_column(Text)
    rejected_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True))
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    rejection_comments: Mapped[Optional[str]] = mapped_column(Text)
    terminated_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True))
    terminated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    termination_reason: Mapped[Optional[str]] = mapped_column(Text)
    renewed_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True))
    renewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        CheckConstraint("start_date < end_date", name="chk_contract_dates"),
        CheckConstraint(
            "status IN ('DRAFT','ACTIVE','EXPIRED','TERMINATED','REJECTED','RENEWED')",
            name="chk_contract_status",
        ),
        Index("idx_contracts_vendor", "vendor_id"),
        Index("idx_contracts_status", "status"),
        Index("idx_contracts_end_date", "end_date"),
    )
