import uuid
from datetime import datetime, date
from typing import Optional

from sqlalchemy import (
    String,
    BigInteger,
    Integer,
    DateTime,
    Date,
    Text,
    Uuid,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procurement.database import Base

PO_DRAFT = "DRAFT"
PO_PENDING = "PENDING"
PO_APPROVED = "APPROVED"
PO_REJECTED = "REJECTED"
PO_COMPLETED = "COMPLETED"


class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    po_number: Mapped[str] = mapped_column(
        String(50), unique=True, nullable=False
    )
    vendor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("vendors.id"), nullable=False
    )
    contract_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("contracts.id")
    )
    department_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("departments.id"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), default=PO_DRAFT)
    total_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    delivery_date: Mapped[Optional[date]] = mapped_column(Date)
    delivery_address: Mapped[Optional[str]] = mapped_column(Text)
    special_instructions: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True))
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True))
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    approval_comments: Mapped[Optional[str]] = mapped_column(Text)
    rejected_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True))
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    rejection_comments: Mapped[Optional[str]] = mapped_column(Text)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    line_items: Mapped[list["PoLineItem"]] = relationship(
        "PoLineItem",
        order_by="PoLineItem.line_number",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("total_cents > 0", name="chk_po_total_positive"),
        CheckConstraint(
            "status IN ('DRAFT', 'PENDING', 'APPROVED', 'REJECTED', 'COMPLETED')",
            name="chk_po_status",
        ),
        Index("idx_po_vendor", "vendor_id"),
        Index("idx_po_status", "status"),
        Index("idx_po_dept_created", "department_id", "created_at"),
    )

    @property
    def fiscal_year(self) -> int:
        """Fiscal year of the envelope this order is charged to."""
        return self.created_at.year


class PoLineItem(Base):
    __tablename__ = "po_line_items"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    po_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("purchase_orders.id", ondelete="CASCADE"),
        nullable=False,
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (
        UniqueConstraint("po_id", "line_number", name="uq_po_line_item"),
        CheckConstraint("quantity > 0", name="chk_po_line_qty"),
        CheckConstraint(
            "unit_price_cents > 0", name="chk_po_line_price"
        ),
        Index("idx_po_items_po", "po_id"),
    )
