"""
Budget service — envelope creation, allocation, transfer, pessimistic locking.

All functions use the caller's session (no commit); run them through
run_ledger_operation(), which owns the transaction.

Every envelope mutation happens on a row read with SELECT ... FOR UPDATE in
the same transaction, and goes through apply_envelope_delta(), which re-checks
remaining >= 0 and keeps remaining == total - allocated.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Union

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from procurement.models.budget import (
    BUDGET_ACTIVE,
    BUDGET_CLOSED,
    BUDGET_EXHAUSTED,
    Budget,
    BudgetAllocation,
    BudgetTransfer,
)
from procurement.models.department import Department
from procurement.models.purchase_order import (
    PO_APPROVED,
    PO_COMPLETED,
    PO_DRAFT,
    PO_PENDING,
    PurchaseOrder,
)
from procurement.services.audit_service import create_audit_log
from procurement.services.ledger import (
    LedgerErrorKind,
    LedgerResult,
    Notification,
    conflict,
    get_current_fiscal_year,
    insufficient_funds,
    invalid,
    not_found,
    parse_uuid,
)

logger = structlog.get_logger()

MIN_FISCAL_YEAR = 2000
MAX_FISCAL_YEAR = 2100

HISTORY_ALLOCATION = "ALLOCATION"
HISTORY_TRANSFER_IN = "TRANSFER_IN"
HISTORY_TRANSFER_OUT = "TRANSFER_OUT"

IdLike = Union[uuid.UUID, str]


@dataclass
class BudgetCheckResult:
    success: bool
    available_cents: int
    requested_cents: int
    budget: Optional[Budget] = None
    error_code: Optional[str] = None
    message: Optional[str] = None

    def to_ledger_result(self) -> LedgerResult:
        if self.error_code == "BUDGET_NOT_FOUND":
            return not_found(self.error_code, self.message)
        if self.error_code == "BUDGET_CLOSED":
            return conflict(self.error_code, self.message)
        return insufficient_funds(self.available_cents, self.requested_cents)


@dataclass
class BudgetHistoryEntry:
    entry_type: str
    entry_id: uuid.UUID
    fiscal_year: int
    amount_cents: int
    counterpart_department_id: Optional[uuid.UUID]
    note: Optional[str]
    created_by: Optional[uuid.UUID]
    created_at: datetime


@dataclass
class BudgetUtilization:
    budget_id: uuid.UUID
    department_id: uuid.UUID
    fiscal_year: int
    status: str
    total_cents: int
    allocated_cents: int
    remaining_cents: int
    utilization_percentage: float
    total_purchase_orders: int
    draft_cents: int
    pending_cents: int
    approved_cents: int
    completed_cents: int


def _fiscal_year_bounds(fiscal_year: int) -> tuple[datetime, datetime]:
    return datetime(fiscal_year, 1, 1), datetime(fiscal_year + 1, 1, 1)


def _refresh_status(budget: Budget) -> None:
    if budget.status == BUDGET_CLOSED:
        return
    budget.status = BUDGET_EXHAUSTED if budget.remaining_cents == 0 else BUDGET_ACTIVE


def utilization_percentage(total_cents: int, remaining_cents: int) -> float:
    if total_cents <= 0:
        return 0.0
    return round((total_cents - remaining_cents) / total_cents * 100, 2)


# ---------------------------------------------------------------------------
# Locked reads
# ---------------------------------------------------------------------------


async def lock_envelope(
    session: AsyncSession, department_id: uuid.UUID, fiscal_year: int
) -> Optional[Budget]:
    """SELECT FOR UPDATE on the envelope row for department/year."""
    result = await session.execute(
        select(Budget)
        .where(
            Budget.department_id == department_id,
            Budget.fiscal_year == fiscal_year,
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def lock_envelopes(
    session: AsyncSession, department_ids: Iterable[uuid.UUID], fiscal_year: int
) -> dict[uuid.UUID, Optional[Budget]]:
    """Lock several envelopes in ascending department-id order."""
    locked: dict[uuid.UUID, Optional[Budget]] = {}
    for department_id in sorted(set(department_ids)):
        locked[department_id] = await lock_envelope(session, department_id, fiscal_year)
    return locked


async def lock_envelope_by_id(session: AsyncSession, budget_id: uuid.UUID) -> Optional[Budget]:
    result = await session.execute(
        select(Budget)
        .where(Budget.id == budget_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def check_budget_availability(
    session: AsyncSession,
    department_id: uuid.UUID,
    amount_cents: int,
    fiscal_year: int,
    budget: Optional[Budget] = None,
) -> BudgetCheckResult:
    """
    Lock the envelope (unless the caller already holds it) and check that
    amount_cents fits into its remaining balance.
    """
    if budget is None:
        budget = await lock_envelope(session, department_id, fiscal_year)

    if not budget:
        return BudgetCheckResult(
            success=False,
            available_cents=0,
            requested_cents=amount_cents,
            error_code="BUDGET_NOT_FOUND",
            message=f"No budget found for department in fiscal year {fiscal_year}",
        )

    if budget.status == BUDGET_CLOSED:
        return BudgetCheckResult(
            success=False,
            available_cents=budget.remaining_cents,
            requested_cents=amount_cents,
            budget=budget,
            error_code="BUDGET_CLOSED",
            message=f"Budget for fiscal year {fiscal_year} is closed",
        )

    if amount_cents > budget.remaining_cents:
        return BudgetCheckResult(
            success=False,
            available_cents=budget.remaining_cents,
            requested_cents=amount_cents,
            budget=budget,
            error_code="BUDGET_EXCEEDED",
            message=(
                f"Insufficient budget: requested {amount_cents} cents, "
                f"available {budget.remaining_cents} cents"
            ),
        )

    return BudgetCheckResult(
        success=True,
        available_cents=budget.remaining_cents,
        requested_cents=amount_cents,
        budget=budget,
    )


# ---------------------------------------------------------------------------
# Envelope mutation
# ---------------------------------------------------------------------------


def apply_envelope_delta(budget: Budget, delta_cents: int) -> Optional[LedgerResult]:
    """
    Commit (delta > 0) or release (delta < 0) funds on a locked envelope.

    Returns a failed LedgerResult and leaves the envelope untouched when the
    change would drive remaining or allocated below zero.
    """
    if delta_cents > 0 and delta_cents > budget.remaining_cents:
        return insufficient_funds(budget.remaining_cents, delta_cents)
    if delta_cents < 0 and -delta_cents > budget.allocated_cents:
        return conflict(
            "BUDGET_INCONSISTENT",
            f"Cannot release {-delta_cents} cents; only {budget.allocated_cents} cents allocated",
        )

    budget.allocated_cents += delta_cents
    budget.remaining_cents -= delta_cents
    budget.updated_at = datetime.utcnow()
    _refresh_status(budget)
    return None


def debit_envelope(budget: Budget, amount_cents: int) -> Optional[LedgerResult]:
    error = apply_envelope_delta(budget, amount_cents)
    if error is None:
        logger.info(
            "budget_debited",
            budget_id=str(budget.id),
            amount_cents=amount_cents,
            remaining_cents=budget.remaining_cents,
        )
    return error


def credit_envelope(budget: Budget, amount_cents: int) -> Optional[LedgerResult]:
    error = apply_envelope_delta(budget, -amount_cents)
    if error is None:
        logger.info(
            "budget_credited",
            budget_id=str(budget.id),
            amount_cents=amount_cents,
            remaining_cents=budget.remaining_cents,
        )
    return error


async def department_head_emails(
    session: AsyncSession, department_ids: Iterable[uuid.UUID]
) -> list[str]:
    ids = list(set(department_ids))
    if not ids:
        return []
    result = await session.execute(
        select(Department.head_email).where(Department.id.in_(ids))
    )
    return [row[0] for row in result.all() if row[0]]


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


async def create_envelope(
    session: AsyncSession,
    department_id: IdLike,
    fiscal_year: int,
    total_cents: int,
    notes: Optional[str],
    actor_id: Optional[IdLike],
) -> LedgerResult:
    dept_id = parse_uuid(department_id)
    if dept_id is None:
        return invalid("INVALID_DEPARTMENT_ID", "department_id must be a valid UUID")
    if total_cents is None or total_cents <= 0:
        return invalid("INVALID_AMOUNT", "Budget total must be greater than zero")
    if not MIN_FISCAL_YEAR <= fiscal_year <= MAX_FISCAL_YEAR:
        return invalid("INVALID_FISCAL_YEAR", f"Fiscal year {fiscal_year} is out of range")

    department = await session.get(Department, dept_id)
    if not department:
        return not_found("DEPARTMENT_NOT_FOUND", "Department not found")

    existing = await session.execute(
        select(Budget.id).where(
            Budget.department_id == dept_id,
            Budget.fiscal_year == fiscal_year,
        )
    )
    if existing.scalar_one_or_none():
        return conflict(
            "BUDGET_ALREADY_EXISTS",
            "Budget already exists for this department and fiscal year",
        )

    budget = Budget(
        department_id=dept_id,
        fiscal_year=fiscal_year,
        total_cents=total_cents,
        allocated_cents=0,
        remaining_cents=total_cents,
        status=BUDGET_ACTIVE,
        notes=notes,
        created_by=parse_uuid(actor_id),
    )
    session.add(budget)
    await session.flush()

    await create_audit_log(
        session,
        event_type="BUDGET_CREATION",
        entity_type="budget",
        entity_id=budget.id,
        description=f"Budget created for department {dept_id} - FY {fiscal_year}",
        actor_id=actor_id,
    )

    logger.info(
        "budget_created",
        budget_id=str(budget.id),
        department_id=str(dept_id),
        fiscal_year=fiscal_year,
        total_cents=total_cents,
    )

    notifications = []
    if department.head_email:
        notifications.append(Notification(
            template_id="budget_allocated",
            recipient_emails=[department.head_email],
            context={
                "department_name": department.name,
                "fiscal_year": fiscal_year,
                "amount_cents": total_cents,
            },
        ))
    return LedgerResult.ok(budget, notifications)


async def allocate(
    session: AsyncSession,
    department_id: IdLike,
    amount_cents: int,
    notes: Optional[str],
    actor_id: Optional[IdLike],
) -> LedgerResult:
    """Commit part of the department's current-year envelope."""
    dept_id = parse_uuid(department_id)
    if dept_id is None:
        return invalid("INVALID_DEPARTMENT_ID", "department_id must be a valid UUID")
    if amount_cents is None or amount_cents <= 0:
        return invalid("INVALID_AMOUNT", "Allocation amount must be greater than zero")

    fiscal_year = get_current_fiscal_year()
    check = await check_budget_availability(session, dept_id, amount_cents, fiscal_year)
    if not check.success:
        return check.to_ledger_result()

    budget = check.budget
    error = debit_envelope(budget, amount_cents)
    if error:
        return error

    allocation = BudgetAllocation(
        budget_id=budget.id,
        department_id=dept_id,
        amount_cents=amount_cents,
        notes=notes,
        created_by=parse_uuid(actor_id),
    )
    session.add(allocation)
    await session.flush()

    await create_audit_log(
        session,
        event_type="BUDGET_ALLOCATION",
        entity_type="budget",
        entity_id=budget.id,
        description=f"Allocated {amount_cents} cents for department {dept_id} - FY {fiscal_year}",
        actor_id=actor_id,
    )

    logger.info(
        "budget_allocated",
        budget_id=str(budget.id),
        allocation_id=str(allocation.id),
        amount_cents=amount_cents,
        remaining_cents=budget.remaining_cents,
    )
    return LedgerResult.ok(budget)


async def transfer(
    session: AsyncSession,
    from_department_id: IdLike,
    to_department_id: IdLike,
    amount_cents: int,
    reason: Optional[str],
    actor_id: Optional[IdLike],
) -> LedgerResult:
    """
    Move envelope size between two departments for the current fiscal year.

    Both rows are locked in ascending department-id order, so concurrent
    opposite-direction transfers cannot deadlock.
    """
    source_id = parse_uuid(from_department_id)
    target_id = parse_uuid(to_department_id)
    if source_id is None or target_id is None:
        return invalid("INVALID_DEPARTMENT_ID", "Department ids must be valid UUIDs")
    if source_id == target_id:
        return invalid("TRANSFER_SAME_DEPARTMENT", "Cannot transfer budget to the same department")
    if amount_cents is None or amount_cents <= 0:
        return invalid("INVALID_AMOUNT", "Transfer amount must be greater than zero")

    fiscal_year = get_current_fiscal_year()
    locked = await lock_envelopes(session, [source_id, target_id], fiscal_year)
    source, target = locked[source_id], locked[target_id]

    if not source:
        return not_found("BUDGET_NOT_FOUND", f"Source department has no budget for fiscal year {fiscal_year}")
    if not target:
        return not_found("BUDGET_NOT_FOUND", f"Target department has no budget for fiscal year {fiscal_year}")
    if source.status == BUDGET_CLOSED or target.status == BUDGET_CLOSED:
        return conflict("BUDGET_CLOSED", "Cannot transfer to or from a closed budget")

    check = await check_budget_availability(session, source_id, amount_cents, fiscal_year, budget=source)
    if not check.success:
        return check.to_ledger_result()

    now = datetime.utcnow()
    source.total_cents -= amount_cents
    source.remaining_cents -= amount_cents
    source.updated_at = now
    target.total_cents += amount_cents
    target.remaining_cents += amount_cents
    target.updated_at = now
    _refresh_status(source)
    _refresh_status(target)

    record = BudgetTransfer(
        from_department_id=source_id,
        to_department_id=target_id,
        from_budget_id=source.id,
        to_budget_id=target.id,
        fiscal_year=fiscal_year,
        amount_cents=amount_cents,
        reason=reason,
        created_by=parse_uuid(actor_id),
    )
    session.add(record)
    await session.flush()

    await create_audit_log(
        session,
        event_type="BUDGET_TRANSFER",
        entity_type="budget_transfer",
        entity_id=record.id,
        description=(
            f"Transferred {amount_cents} cents from department {source_id} "
            f"to department {target_id} - FY {fiscal_year}"
        ),
        actor_id=actor_id,
    )

    logger.info(
        "budget_transferred",
        transfer_id=str(record.id),
        from_budget_id=str(source.id),
        to_budget_id=str(target.id),
        amount_cents=amount_cents,
    )

    recipients = await department_head_emails(session, [source_id, target_id])
    notifications = []
    if recipients:
        notifications.append(Notification(
            template_id="budget_transfer",
            recipient_emails=recipients,
            context={
                "from_department_id": str(source_id),
                "to_department_id": str(target_id),
                "fiscal_year": fiscal_year,
                "amount_cents": amount_cents,
            },
        ))
    return LedgerResult.ok(record, notifications)


async def update_envelope(
    session: AsyncSession,
    budget_id: IdLike,
    total_cents: Optional[int],
    notes: Optional[str],
    actor_id: Optional[IdLike],
) -> LedgerResult:
    """Resize an envelope; the new total must still cover what is allocated."""
    b_id = parse_uuid(budget_id)
    if b_id is None:
        return invalid("INVALID_BUDGET_ID", "budget_id must be a valid UUID")
    if total_cents is not None and total_cents <= 0:
        return invalid("INVALID_AMOUNT", "Budget total must be greater than zero")

    budget = await lock_envelope_by_id(session, b_id)
    if not budget:
        return not_found("BUDGET_NOT_FOUND", "Budget not found")

    before_total = budget.total_cents
    if total_cents is not None:
        if total_cents < budget.allocated_cents:
            return LedgerResult.fail(
                LedgerErrorKind.INSUFFICIENT_FUNDS,
                "BUDGET_BELOW_ALLOCATED",
                f"New total {total_cents} cents is below the {budget.allocated_cents} cents already allocated",
            )
        budget.total_cents = total_cents
        budget.remaining_cents = total_cents - budget.allocated_cents
    if notes is not None:
        budget.notes = notes
    budget.updated_at = datetime.utcnow()
    _refresh_status(budget)
    await session.flush()

    await create_audit_log(
        session,
        event_type="BUDGET_UPDATE",
        entity_type="budget",
        entity_id=budget.id,
        description=f"Budget total changed from {before_total} to {budget.total_cents} cents",
        actor_id=actor_id,
    )
    logger.info("budget_updated", budget_id=str(budget.id), total_cents=budget.total_cents)
    return LedgerResult.ok(budget)


async def close_envelope(
    session: AsyncSession, budget_id: IdLike, actor_id: Optional[IdLike]
) -> LedgerResult:
    b_id = parse_uuid(budget_id)
    if b_id is None:
        return invalid("INVALID_BUDGET_ID", "budget_id must be a valid UUID")

    budget = await lock_envelope_by_id(session, b_id)
    if not budget:
        return not_found("BUDGET_NOT_FOUND", "Budget not found")
    if budget.status == BUDGET_CLOSED:
        return conflict("BUDGET_CLOSED", "Budget is already closed")

    budget.status = BUDGET_CLOSED
    budget.updated_at = datetime.utcnow()
    await session.flush()

    await create_audit_log(
        session,
        event_type="BUDGET_CLOSURE",
        entity_type="budget",
        entity_id=budget.id,
        description=f"Budget closed for department {budget.department_id} - FY {budget.fiscal_year}",
        actor_id=actor_id,
    )
    logger.info("budget_closed", budget_id=str(budget.id))
    return LedgerResult.ok(budget)


async def delete_envelope(
    session: AsyncSession, budget_id: IdLike, actor_id: Optional[IdLike]
) -> LedgerResult:
    """Administrative delete; refused while purchase orders still charge the envelope."""
    b_id = parse_uuid(budget_id)
    if b_id is None:
        return invalid("INVALID_BUDGET_ID", "budget_id must be a valid UUID")

    budget = await lock_envelope_by_id(session, b_id)
    if not budget:
        return not_found("BUDGET_NOT_FOUND", "Budget not found")

    start, end = _fiscal_year_bounds(budget.fiscal_year)
    linked = await session.execute(
        select(func.count(PurchaseOrder.id)).where(
            PurchaseOrder.department_id == budget.department_id,
            PurchaseOrder.created_at >= start,
            PurchaseOrder.created_at < end,
        )
    )
    linked_count = int(linked.scalar() or 0)
    if linked_count:
        return conflict(
            "BUDGET_HAS_PURCHASE_ORDERS",
            f"Budget is referenced by {linked_count} purchase orders",
        )

    description = f"Budget deleted for department {budget.department_id} - FY {budget.fiscal_year}"
    await session.delete(budget)
    await session.flush()

    await create_audit_log(
        session,
        event_type="BUDGET_DELETION",
        entity_type="budget",
        entity_id=b_id,
        description=description,
        actor_id=actor_id,
    )
    logger.info("budget_deleted", budget_id=str(b_id))
    return LedgerResult.ok({"id": b_id})


async def _purchase_order_totals(
    session: AsyncSession, fiscal_year: int, department_ids: Optional[list[uuid.UUID]] = None
) -> dict[uuid.UUID, tuple]:
    start, end = _fiscal_year_bounds(fiscal_year)

    def _sum_status(status: str):
        return func.coalesce(
            func.sum(case((PurchaseOrder.status == status, PurchaseOrder.total_cents), else_=0)),
            0,
        )

    q = (
        select(
            PurchaseOrder.department_id,
            func.count(PurchaseOrder.id),
            _sum_status(PO_DRAFT),
            _sum_status(PO_PENDING),
            _sum_status(PO_APPROVED),
            _sum_status(PO_COMPLETED),
        )
        .where(PurchaseOrder.created_at >= start, PurchaseOrder.created_at < end)
        .group_by(PurchaseOrder.department_id)
    )
    if department_ids is not None:
        q = q.where(PurchaseOrder.department_id.in_(department_ids))

    result = await session.execute(q)
    return {row[0]: tuple(int(v or 0) for v in row[1:]) for row in result.all()}


def _to_utilization(budget: Budget, totals: tuple) -> BudgetUtilization:
    count, draft, pending, approved, completed = totals
    return BudgetUtilization(
        budget_id=budget.id,
        department_id=budget.department_id,
        fiscal_year=budget.fiscal_year,
        status=budget.status,
        total_cents=budget.total_cents,
        allocated_cents=budget.allocated_cents,
        remaining_cents=budget.remaining_cents,
        utilization_percentage=utilization_percentage(budget.total_cents, budget.remaining_cents),
        total_purchase_orders=count,
        draft_cents=draft,
        pending_cents=pending,
        approved_cents=approved,
        completed_cents=completed,
    )


async def get_utilization(
    session: AsyncSession, department_id: IdLike, fiscal_year: Optional[int] = None
) -> LedgerResult:
    """Read-only utilization summary for one envelope."""
    dept_id = parse_uuid(department_id)
    if dept_id is None:
        return invalid("INVALID_DEPARTMENT_ID", "department_id must be a valid UUID")
    fiscal_year = fiscal_year or get_current_fiscal_year()

    result = await session.execute(
        select(Budget).where(
            Budget.department_id == dept_id,
            Budget.fiscal_year == fiscal_year,
        )
    )
    budget = result.scalar_one_or_none()
    if not budget:
        return not_found("BUDGET_NOT_FOUND", "Budget utilization data not found")

    totals = await _purchase_order_totals(session, fiscal_year, [dept_id])
    return LedgerResult.ok(_to_utilization(budget, totals.get(dept_id, (0, 0, 0, 0, 0))))


async def get_fiscal_year_report(session: AsyncSession, fiscal_year: int) -> LedgerResult:
    """Utilization of every envelope in a fiscal year."""
    result = await session.execute(
        select(Budget).where(Budget.fiscal_year == fiscal_year).order_by(Budget.department_id)
    )
    budgets = list(result.scalars().all())
    totals = await _purchase_order_totals(session, fiscal_year)
    rows = [_to_utilization(b, totals.get(b.department_id, (0, 0, 0, 0, 0))) for b in budgets]
    return LedgerResult.ok(rows)


async def get_budget_history(
    session: AsyncSession, department_id: IdLike, fiscal_year: Optional[int] = None
) -> LedgerResult:
    """
    Allocations and transfers touching one department's envelope, newest first.

    Transfers appear once per side: TRANSFER_OUT for the source department,
    TRANSFER_IN for the target, with the other department as counterpart.
    """
    dept_id = parse_uuid(department_id)
    if dept_id is None:
        return invalid("INVALID_DEPARTMENT_ID", "department_id must be a valid UUID")
    fiscal_year = fiscal_year or get_current_fiscal_year()

    allocations = await session.execute(
        select(BudgetAllocation)
        .join(Budget, Budget.id == BudgetAllocation.budget_id)
        .where(
            BudgetAllocation.department_id == dept_id,
            Budget.fiscal_year == fiscal_year,
        )
    )
    transfers = await session.execute(
        select(BudgetTransfer).where(
            BudgetTransfer.fiscal_year == fiscal_year,
            (BudgetTransfer.from_department_id == dept_id) | (BudgetTransfer.to_department_id == dept_id),
        )
    )

    entries = [
        BudgetHistoryEntry(
            entry_type=HISTORY_ALLOCATION,
            entry_id=a.id,
            fiscal_year=fiscal_year,
            amount_cents=a.amount_cents,
            counterpart_department_id=None,
            note=a.notes,
            created_by=a.created_by,
            created_at=a.created_at,
        )
        for a in allocations.scalars().all()
    ]
    for t in transfers.scalars().all():
        outgoing = t.from_department_id == dept_id
        entries.append(BudgetHistoryEntry(
            entry_type=HISTORY_TRANSFER_OUT if outgoing else HISTORY_TRANSFER_IN,
            entry_id=t.id,
            fiscal_year=t.fiscal_year,
            amount_cents=t.amount_cents,
            counterpart_department_id=t.to_department_id if outgoing else t.from_department_id,
            note=t.reason,
            created_by=t.created_by,
            created_at=t.created_at,
        ))

    entries.sort(key=lambda e: e.created_at, reverse=True)
    return LedgerResult.ok(entries)
