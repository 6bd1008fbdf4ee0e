import uuid
from datetime import datetime

from sqlalchemy import String, DateTime, Uuid, Index
from sqlalchemy.orm import Mapped, mapped_column

from procurement.database import Base

VENDOR_ACTIVE = "ACTIVE"
VENDOR_INACTIVE = "INACTIVE"


class Vendor(Base):
    __tablename__ = "vendors"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    company_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(50), default=VENDOR_ACTIVE)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        Index("idx_vendors_status", "status"),
        Index("idx_vendors_email", "email"),
    )
