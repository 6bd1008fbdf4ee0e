"""
Purchase order service — creation, amendment and settlement against budget envelopes.

A PO that is not REJECTED holds a claim of ``total_cents`` on its department's
envelope for the fiscal year it was created in. Every path that changes that
claim locks the PO row first, then the envelope rows in ascending department-id
order, and adjusts the envelope in the same transaction as the PO.
"""

import uuid
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Sequence, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from procurement.models.contract import Contract
from procurement.models.purchase_order import (
    PO_APPROVED,
    PO_COMPLETED,
    PO_DRAFT,
    PO_PENDING,
    PO_REJECTED,
    PoLineItem,
    PurchaseOrder,
)
from procurement.models.vendor import VENDOR_ACTIVE, Vendor
from procurement.services.audit_service import create_audit_log
from procurement.services.budget_service import (
    check_budget_availability,
    credit_envelope,
    debit_envelope,
    lock_envelope,
    lock_envelopes,
)
from procurement.services.ledger import (
    LedgerResult,
    Notification,
    conflict,
    invalid,
    not_found,
    parse_uuid,
)
from procurement.services.sequence_service import PO_PREFIX, next_document_number

logger = structlog.get_logger()

IdLike = Union[uuid.UUID, str]

EDITABLE_STATUSES = (PO_DRAFT, PO_PENDING)


@dataclass
class LineItemInput:
    description: str
    quantity: int
    unit_price_cents: int

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents


def validate_po_amounts(
    items: Sequence[LineItemInput], total_cents: Optional[int]
) -> Optional[LedgerResult]:
    """Check line items and that the declared total matches them."""
    if total_cents is None or total_cents <= 0:
        return invalid("INVALID_AMOUNT", "Purchase order total must be greater than zero")
    if not items:
        return invalid("NO_LINE_ITEMS", "Purchase order must have at least one line item")

    for number, item in enumerate(items, start=1):
        if not item.description or not item.description.strip():
            return invalid("INVALID_LINE_ITEM", f"Line {number}: description is required")
        if item.quantity is None or item.quantity <= 0:
            return invalid("INVALID_LINE_ITEM", f"Line {number}: quantity must be greater than zero")
        if item.unit_price_cents is None or item.unit_price_cents <= 0:
            return invalid("INVALID_LINE_ITEM", f"Line {number}: unit price must be greater than zero")

    computed = sum(item.line_total_cents for item in items)
    if computed != total_cents:
        return invalid(
            "TOTAL_MISMATCH",
            f"Total {total_cents} cents does not match line items ({computed} cents)",
        )
    return None


def _build_line_items(items: Sequence[LineItemInput]) -> list[PoLineItem]:
    return [
        PoLineItem(
            line_number=number,
            description=item.description.strip(),
            quantity=item.quantity,
            unit_price_cents=item.unit_price_cents,
        )
        for number, item in enumerate(items, start=1)
    ]


async def _check_references(
    session: AsyncSession, vendor_id: uuid.UUID, contract_id: Optional[uuid.UUID]
) -> tuple[Optional[Vendor], Optional[LedgerResult]]:
    vendor = await session.get(Vendor, vendor_id)
    if not vendor:
        return None, not_found("VENDOR_NOT_FOUND", "Vendor not found")
    if vendor.status != VENDOR_ACTIVE:
        return vendor, conflict("VENDOR_INACTIVE", f"Vendor is {vendor.status} and cannot receive orders")
    if contract_id is not None:
        contract = await session.get(Contract, contract_id)
        if not contract:
            return vendor, not_found("CONTRACT_NOT_FOUND", "Contract not found")
    return vendor, None


async def _lock_purchase_order(session: AsyncSession, po_id: uuid.UUID) -> Optional[PurchaseOrder]:
    result = await session.execute(
        select(PurchaseOrder)
        .where(PurchaseOrder.id == po_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _vendor_notification(
    session: AsyncSession, po: PurchaseOrder, template_id: str, **context
) -> list[Notification]:
    vendor = await session.get(Vendor, po.vendor_id)
    if not vendor or not vendor.email:
        return []
    return [Notification(
        template_id=template_id,
        recipient_emails=[vendor.email],
        context={"po_number": po.po_number, "amount_cents": po.total_cents, **context},
    )]


def _invalid_transition(po: PurchaseOrder, target: str) -> LedgerResult:
    return conflict(
        "INVALID_STATE_TRANSITION",
        f"Cannot move purchase order from {po.status} to {target}",
    )


# ---------------------------------------------------------------------------
# Create / update / delete
# ---------------------------------------------------------------------------


async def create_purchase_order(
    session: AsyncSession,
    vendor_id: IdLike,
    department_id: IdLike,
    items: Sequence[LineItemInput],
    total_cents: int,
    contract_id: Optional[IdLike] = None,
    delivery_date: Optional[date] = None,
    delivery_address: Optional[str] = None,
    special_instructions: Optional[str] = None,
    actor_id: Optional[IdLike] = None,
) -> LedgerResult:
    """Create a DRAFT purchase order and debit the department envelope."""
    v_id = parse_uuid(vendor_id)
    dept_id = parse_uuid(department_id)
    c_id = parse_uuid(contract_id)
    if v_id is None or dept_id is None:
        return invalid("INVALID_ID", "vendor_id and department_id must be valid UUIDs")
    if contract_id is not None and c_id is None:
        return invalid("INVALID_ID", "contract_id must be a valid UUID")

    error = validate_po_amounts(items, total_cents)
    if error:
        return error

    vendor, error = await _check_references(session, v_id, c_id)
    if error:
        return error

    now = datetime.utcnow()
    fiscal_year = now.year

    check = await check_budget_availability(session, dept_id, total_cents, fiscal_year)
    if not check.success:
        logger.warning(
            "po_budget_check_failed",
            department_id=str(dept_id),
            error_code=check.error_code,
            requested_cents=total_cents,
            available_cents=check.available_cents,
        )
        return check.to_ledger_result()

    po_number = await next_document_number(session, PO_PREFIX, fiscal_year)

    po = PurchaseOrder(
        po_number=po_number,
        vendor_id=v_id,
        contract_id=c_id,
        department_id=dept_id,
        status=PO_DRAFT,
        total_cents=total_cents,
        delivery_date=delivery_date,
        delivery_address=delivery_address,
        special_instructions=special_instructions,
        created_by=parse_uuid(actor_id),
        created_at=now,
        updated_at=now,
        line_items=_build_line_items(items),
    )
    session.add(po)

    error = debit_envelope(check.budget, total_cents)
    if error:
        return error
    await session.flush()

    await create_audit_log(
        session,
        event_type="PO_CREATION",
        entity_type="purchase_order",
        entity_id=po.id,
        description=f"Purchase order {po_number} created for {total_cents} cents",
        actor_id=actor_id,
    )

    logger.info(
        "po_created",
        po_id=str(po.id),
        po_number=po_number,
        department_id=str(dept_id),
        total_cents=total_cents,
        remaining_cents=check.budget.remaining_cents,
    )

    notifications = []
    if vendor.email:
        notifications.append(Notification(
            template_id="po_created",
            recipient_emails=[vendor.email],
            context={"po_number": po_number, "amount_cents": total_cents},
        ))
    return LedgerResult.ok(po, notifications)


async def update_purchase_order(
    session: AsyncSession,
    po_id: IdLike,
    vendor_id: IdLike,
    department_id: IdLike,
    items: Sequence[LineItemInput],
    total_cents: int,
    contract_id: Optional[IdLike] = None,
    delivery_date: Optional[date] = None,
    delivery_address: Optional[str] = None,
    special_instructions: Optional[str] = None,
    actor_id: Optional[IdLike] = None,
) -> LedgerResult:
    """
    Replace a DRAFT or PENDING order's contents and move its envelope claim.

    The claim stays in the fiscal year the order was created in. On a
    department change the old envelope is credited in full and the new one
    must cover the whole new total.
    """
    p_id = parse_uuid(po_id)
    v_id = parse_uuid(vendor_id)
    dept_id = parse_uuid(department_id)
    c_id = parse_uuid(contract_id)
    if p_id is None:
        return invalid("INVALID_PO_ID", "po_id must be a valid UUID")
    if v_id is None or dept_id is None:
        return invalid("INVALID_ID", "vendor_id and department_id must be valid UUIDs")
    if contract_id is not None and c_id is None:
        return invalid("INVALID_ID", "contract_id must be a valid UUID")

    po = await _lock_purchase_order(session, p_id)
    if not po:
        return not_found("PO_NOT_FOUND", "Purchase order not found")
    if po.status not in EDITABLE_STATUSES:
        return conflict(
            "PO_NOT_EDITABLE",
            f"Purchase order in status {po.status} cannot be updated",
        )

    error = validate_po_amounts(items, total_cents)
    if error:
        return error
    _, error = await _check_references(session, v_id, c_id)
    if error:
        return error

    fiscal_year = po.fiscal_year
    old_dept_id = po.department_id
    old_total = po.total_cents
    envelopes = await lock_envelopes(session, [old_dept_id, dept_id], fiscal_year)

    if old_dept_id == dept_id:
        envelope = envelopes[dept_id]
        if not envelope:
            return not_found("BUDGET_NOT_FOUND", f"No budget found for department in fiscal year {fiscal_year}")
        delta = total_cents - old_total
        error = None
        if delta > 0:
            check = await check_budget_availability(session, dept_id, delta, fiscal_year, budget=envelope)
            if not check.success:
                return check.to_ledger_result()
            error = debit_envelope(envelope, delta)
        elif delta < 0:
            error = credit_envelope(envelope, -delta)
        if error:
            return error
    else:
        old_envelope, new_envelope = envelopes[old_dept_id], envelopes[dept_id]
        if not new_envelope:
            return not_found("BUDGET_NOT_FOUND", f"No budget found for department in fiscal year {fiscal_year}")
        check = await check_budget_availability(session, dept_id, total_cents, fiscal_year, budget=new_envelope)
        if not check.success:
            return check.to_ledger_result()
        if old_envelope:
            error = credit_envelope(old_envelope, old_total)
            if error:
                return error
        else:
            logger.warning(
                "po_previous_budget_missing",
                po_id=str(po.id),
                department_id=str(old_dept_id),
                fiscal_year=fiscal_year,
            )
        error = debit_envelope(new_envelope, total_cents)
        if error:
            return error

    po.line_items.clear()
    await session.flush()
    po.line_items.extend(_build_line_items(items))

    po.vendor_id = v_id
    po.contract_id = c_id
    po.department_id = dept_id
    po.total_cents = total_cents
    po.delivery_date = delivery_date
    po.delivery_address = delivery_address
    po.special_instructions = special_instructions
    po.updated_at = datetime.utcnow()
    await session.flush()

    await create_audit_log(
        session,
        event_type="PO_UPDATE",
        entity_type="purchase_order",
        entity_id=po.id,
        description=f"Purchase order {po.po_number} updated: {old_total} -> {total_cents} cents",
        actor_id=actor_id,
    )

    logger.info(
        "po_updated",
        po_id=str(po.id),
        old_total_cents=old_total,
        new_total_cents=total_cents,
        department_changed=old_dept_id != dept_id,
    )
    return LedgerResult.ok(po)


async def delete_purchase_order(
    session: AsyncSession, po_id: IdLike, actor_id: Optional[IdLike] = None
) -> LedgerResult:
    """Delete an order and release its claim; a REJECTED order has none left."""
    p_id = parse_uuid(po_id)
    if p_id is None:
        return invalid("INVALID_PO_ID", "po_id must be a valid UUID")

    po = await _lock_purchase_order(session, p_id)
    if not po:
        return not_found("PO_NOT_FOUND", "Purchase order not found")

    if po.status != PO_REJECTED:
        envelope = await lock_envelope(session, po.department_id, po.fiscal_year)
        if envelope:
            error = credit_envelope(envelope, po.total_cents)
            if error:
                return error
        else:
            logger.warning(
                "po_budget_missing_on_delete",
                po_id=str(po.id),
                department_id=str(po.department_id),
                fiscal_year=po.fiscal_year,
            )

    po_number, total_cents = po.po_number, po.total_cents
    await session.delete(po)
    await session.flush()

    await create_audit_log(
        session,
        event_type="PO_DELETION",
        entity_type="purchase_order",
        entity_id=p_id,
        description=f"Purchase order {po_number} deleted ({total_cents} cents)",
        actor_id=actor_id,
    )
    logger.info("po_deleted", po_id=str(p_id), po_number=po_number)
    return LedgerResult.ok({"id": p_id, "po_number": po_number})


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------


async def submit_purchase_order(
    session: AsyncSession, po_id: IdLike, actor_id: Optional[IdLike] = None
) -> LedgerResult:
    p_id = parse_uuid(po_id)
    if p_id is None:
        return invalid("INVALID_PO_ID", "po_id must be a valid UUID")
    po = await _lock_purchase_order(session, p_id)
    if not po:
        return not_found("PO_NOT_FOUND", "Purchase order not found")
    if po.status != PO_DRAFT:
        return _invalid_transition(po, PO_PENDING)

    po.status = PO_PENDING
    po.updated_at = datetime.utcnow()
    await session.flush()

    await create_audit_log(
        session,
        event_type="PO_SUBMISSION",
        entity_type="purchase_order",
        entity_id=po.id,
        description=f"Purchase order {po.po_number} submitted for approval",
        actor_id=actor_id,
    )
    logger.info("po_submitted", po_id=str(po.id))
    return LedgerResult.ok(po)


async def approve_purchase_order(
    session: AsyncSession,
    po_id: IdLike,
    comments: Optional[str] = None,
    actor_id: Optional[IdLike] = None,
) -> LedgerResult:
    p_id = parse_uuid(po_id)
    if p_id is None:
        return invalid("INVALID_PO_ID", "po_id must be a valid UUID")
    po = await _lock_purchase_order(session, p_id)
    if not po:
        return not_found("PO_NOT_FOUND", "Purchase order not found")
    if po.status not in EDITABLE_STATUSES:
        return _invalid_transition(po, PO_APPROVED)

    now = datetime.utcnow()
    po.status = PO_APPROVED
    po.approved_by = parse_uuid(actor_id)
    po.approved_at = now
    po.approval_comments = comments
    po.updated_at = now
    await session.flush()

    await create_audit_log(
        session,
        event_type="PO_APPROVAL",
        entity_type="purchase_order",
        entity_id=po.id,
        description=f"Purchase order {po.po_number} approved",
        actor_id=actor_id,
    )
    logger.info("po_approved", po_id=str(po.id), approved_by=str(actor_id) if actor_id else None)
    return LedgerResult.ok(po, await _vendor_notification(session, po, "po_approved"))


async def reject_purchase_order(
    session: AsyncSession,
    po_id: IdLike,
    comments: Optional[str] = None,
    actor_id: Optional[IdLike] = None,
) -> LedgerResult:
    """Reject a DRAFT or PENDING order and refund its total to the envelope."""
    p_id = parse_uuid(po_id)
    if p_id is None:
        return invalid("INVALID_PO_ID", "po_id must be a valid UUID")
    po = await _lock_purchase_order(session, p_id)
    if not po:
        return not_found("PO_NOT_FOUND", "Purchase order not found")
    if po.status not in EDITABLE_STATUSES:
        return _invalid_transition(po, PO_REJECTED)

    envelope = await lock_envelope(session, po.department_id, po.fiscal_year)
    if envelope:
        error = credit_envelope(envelope, po.total_cents)
        if error:
            return error
    else:
        logger.warning(
            "po_budget_missing_on_reject",
            po_id=str(po.id),
            department_id=str(po.department_id),
            fiscal_year=po.fiscal_year,
        )

    now = datetime.utcnow()
    po.status = PO_REJECTED
    po.rejected_by = parse_uuid(actor_id)
    po.rejected_at = now
    po.rejection_comments = comments
    po.updated_at = now
    await session.flush()

    await create_audit_log(
        session,
        event_type="PO_REJECTION",
        entity_type="purchase_order",
        entity_id=po.id,
        description=f"Purchase order {po.po_number} rejected; {po.total_cents} cents released",
        actor_id=actor_id,
    )
    logger.info("po_rejected", po_id=str(po.id), refunded_cents=po.total_cents)
    notifications = await _vendor_notification(
        session, po, "po_rejected", reason=comments or "No reason given"
    )
    return LedgerResult.ok(po, notifications)


async def complete_purchase_order(
    session: AsyncSession, po_id: IdLike, actor_id: Optional[IdLike] = None
) -> LedgerResult:
    p_id = parse_uuid(po_id)
    if p_id is None:
        return invalid("INVALID_PO_ID", "po_id must be a valid UUID")
    po = await _lock_purchase_order(session, p_id)
    if not po:
        return not_found("PO_NOT_FOUND", "Purchase order not found")
    if po.status != PO_APPROVED:
        return _invalid_transition(po, PO_COMPLETED)

    now = datetime.utcnow()
    po.status = PO_COMPLETED
    po.completed_at = now
    po.updated_at = now
    await session.flush()

    await create_audit_log(
        session,
        event_type="PO_COMPLETION",
        entity_type="purchase_order",
        entity_id=po.id,
        description=f"Purchase order {po.po_number} completed",
        actor_id=actor_id,
    )
    logger.info("po_completed", po_id=str(po.id))
    return LedgerResult.ok(po, await _vendor_notification(session, po, "po_completed"))


async def get_purchase_order(session: AsyncSession, po_id: IdLike) -> LedgerResult:
    p_id = parse_uuid(po_id)
    if p_id is None:
        return invalid("INVALID_PO_ID", "po_id must be a valid UUID")
    po = await session.get(PurchaseOrder, p_id)
    if not po:
        return not_found("PO_NOT_FOUND", "Purchase order not found")
    return LedgerResult.ok(po)
