import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime, Uuid, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from procurement.database import Base


class Department(Base):
    __tablename__ = "departments"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    code: Mapped[Optional[str]] = mapped_column(String(50))
    # Recipient of budget notifications
    head_email: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint("code", name="uq_department_code"),
    )
