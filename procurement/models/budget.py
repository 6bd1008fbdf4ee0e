import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String,
    BigInteger,
    Integer,
    DateTime,
    Text,
    Uuid,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
)
from sqlalchemy.orm import Mapped, mapped_column

from procurement.database import Base

BUDGET_ACTIVE = "ACTIVE"
BUDGET_EXHAUSTED = "EXHAUSTED"
BUDGET_CLOSED = "CLOSED"


class Budget(Base):
    """Budget envelope: one per department and fiscal year."""

    __tablename__ = "budgets"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    department_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("departments.id"), nullable=False
    )
    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False)
    total_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    allocated_cents: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    remaining_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=BUDGET_ACTIVE)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "department_id",
            "fiscal_year",
            name="uq_budget_dept_year",
        ),
        CheckConstraint("total_cents >= 0", name="chk_budget_total"),
        CheckConstraint("allocated_cents >= 0", name="chk_budget_allocated"),
        CheckConstraint("remaining_cents >= 0", name="chk_budget_remaining"),
        CheckConstraint(
            "remaining_cents = total_cents - allocated_cents",
            name="chk_budget_balance",
        ),
        CheckConstraint(
            "status IN ('ACTIVE', 'EXHAUSTED', 'CLOSED')",
            name="chk_budget_status",
        ),
        Index("idx_budgets_dept", "department_id", "fiscal_year"),
    )


class BudgetAllocation(Base):
    __tablename__ = "budget_allocations"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    budget_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False
    )
    department_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("departments.id"), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="chk_allocation_positive"),
        Index("idx_allocations_budget", "budget_id"),
    )


class BudgetTransfer(Base):
    __tablename__ = "budget_transfers"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    from_department_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("departments.id"), nullable=False
    )
    to_department_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("departments.id"), nullable=False
    )
    from_budget_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False
    )
    to_budget_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False
    )
    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="chk_transfer_positive"),
        CheckConstraint(
            "from_department_id <> to_department_id", name="chk_transfer_distinct"
        ),
        Index("idx_transfers_from", "from_department_id", "fiscal_year"),
        Index("idx_transfers_to", "to_department_id", "fiscal_year"),
    )
