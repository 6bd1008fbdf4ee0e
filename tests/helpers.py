import uuid
from typing import Optional

from sqlalchemy import func, select

from procurement.models.audit_log import AuditLog
from procurement.models.budget import Budget
from procurement.services import budget_service
from procurement.services.ledger import get_current_fiscal_year, run_ledger_operation
from procurement.services.purchase_order_service import LineItemInput


async def create_envelope(session_factory, department_id, total_cents: int, fiscal_year: Optional[int] = None):
    result = await run_ledger_operation(
        session_factory,
        budget_service.create_envelope,
        department_id=department_id,
        fiscal_year=fiscal_year or get_current_fiscal_year(),
        total_cents=total_cents,
        notes=None,
        actor_id=None,
    )
    assert result.success, result.message
    return result.data


async def read_envelope(session_factory, department_id, fiscal_year: Optional[int] = None) -> Optional[Budget]:
    async with session_factory() as session:
        result = await session.execute(
            select(Budget).where(
                Budget.department_id == department_id,
                Budget.fiscal_year == (fiscal_year or get_current_fiscal_year()),
            )
        )
        return result.scalar_one_or_none()


async def count_audit_rows(session_factory, event_type: str) -> int:
    async with session_factory() as session:
        result = await session.execute(
            select(func.count(AuditLog.id)).where(AuditLog.event_type == event_type)
        )
        return int(result.scalar() or 0)


def single_item(total_cents: int, description: str = "Laptops") -> list[LineItemInput]:
    return [LineItemInput(description=description, quantity=1, unit_price_cents=total_cents)]


def actor() -> uuid.UUID:
    return uuid.uuid4()
