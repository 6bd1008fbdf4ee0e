"""
Contract service — vendor contract lifecycle.

    DRAFT → ACTIVE → TERMINATED | RENEWED | EXPIRED
    DRAFT → REJECTED

Each transition locks the contract row, writes its audit entry in the same
transaction and plans a vendor notification. Contracts never touch budget
envelopes.
"""

import uuid
from datetime import date, datetime, timedelta
from typing import Any, Optional, Union

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from procurement.models.contract import (
    CONTRACT_ACTIVE,
    CONTRACT_DRAFT,
    CONTRACT_EXPIRED,
    CONTRACT_REJECTED,
    CONTRACT_RENEWED,
    CONTRACT_TERMINATED,
    Contract,
)
from procurement.models.purchase_order import PurchaseOrder
from procurement.models.vendor import VENDOR_ACTIVE, Vendor
from procurement.services.audit_service import create_audit_log
from procurement.services.ledger import (
    LedgerResult,
    Notification,
    conflict,
    invalid,
    not_found,
    parse_uuid,
)
from procurement.services.sequence_service import CONTRACT_PREFIX, next_document_number

logger = structlog.get_logger()

IdLike = Union[uuid.UUID, str]

UPDATABLE_FIELDS = {
    "title",
    "description",
    "start_date",
    "end_date",
    "value_cents",
    "terms_conditions",
    "renewal_terms",
}


async def _lock_contract(session: AsyncSession, contract_id: uuid.UUID) -> Optional[Contract]:
    result = await session.execute(
        select(Contract)
        .where(Contract.id == contract_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _load_for_transition(
    session: AsyncSession, contract_id: IdLike
) -> tuple[Optional[Contract], Optional[LedgerResult]]:
    c_id = parse_uuid(contract_id)
    if c_id is None:
        return None, invalid("INVALID_CONTRACT_ID", "contract_id must be a valid UUID")
    contract = await _lock_contract(session, c_id)
    if not contract:
        return None, not_found("CONTRACT_NOT_FOUND", "Contract not found")
    return contract, None


def _invalid_transition(contract: Contract, target: str) -> LedgerResult:
    return conflict(
        "INVALID_STATE_TRANSITION",
        f"Cannot move contract from {contract.status} to {target}",
    )


async def _vendor_notification(
    session: AsyncSession, contract: Contract, template_id: str, **context
) -> list[Notification]:
    vendor = await session.get(Vendor, contract.vendor_id)
    if not vendor or not vendor.email:
        return []
    return [Notification(
        template_id=template_id,
        recipient_emails=[vendor.email],
        context={
            "contract_number": contract.contract_number,
            "title": contract.title,
            "end_date": contract.end_date.isoformat(),
            **context,
        },
    )]


async def create_contract(
    session: AsyncSession,
    vendor_id: IdLike,
    title: str,
    start_date: date,
    end_date: date,
    description: Optional[str] = None,
    value_cents: Optional[int] = None,
    terms_conditions: Optional[str] = None,
    renewal_terms: Optional[str] = None,
    actor_id: Optional[IdLike] = None,
) -> LedgerResult:
    v_id = parse_uuid(vendor_id)
    if v_id is None:
        return invalid("INVALID_VENDOR_ID", "vendor_id must be a valid UUID")
    if not title or not title.strip():
        return invalid("INVALID_TITLE", "Contract title is required")
    if start_date is None or end_date is None or start_date >= end_date:
        return invalid("INVALID_DATE_RANGE", "Contract start date must be before its end date")
    if value_cents is not None and value_cents < 0:
        return invalid("INVALID_AMOUNT", "Contract value cannot be negative")

    vendor = await session.get(Vendor, v_id)
    if not vendor:
        return not_found("VENDOR_NOT_FOUND", "Vendor not found")
    if vendor.status != VENDOR_ACTIVE:
        return conflict("VENDOR_INACTIVE", f"Vendor is {vendor.status} and cannot take new contracts")

    now = datetime.utcnow()
    contract_number = await next_document_number(session, CONTRACT_PREFIX, now.year)

    contract = Contract(
        contract_number=contract_number,
        vendor_id=v_id,
        title=title.strip(),
        description=description,
        status=CONTRACT_DRAFT,
        value_cents=value_cents,
        start_date=start_date,
        end_date=end_date,
        terms_conditions=terms_conditions,
        renewal_terms=renewal_terms,
        created_by=parse_uuid(actor_id),
        created_at=now,
        updated_at=now,
    )
    session.add(contract)
    await session.flush()

    await create_audit_log(
        session,
        event_type="CONTRACT_CREATION",
        entity_type="contract",
        entity_id=contract.id,
        description=f"Contract {contract_number} created: {contract.title}",
        actor_id=actor_id,
    )
    logger.info(
        "contract_created",
        contract_id=str(contract.id),
        contract_number=contract_number,
        vendor_id=str(v_id),
    )
    return LedgerResult.ok(contract, await _vendor_notification(session, contract, "contract_created"))


async def update_contract(
    session: AsyncSession,
    contract_id: IdLike,
    changes: dict[str, Any],
    actor_id: Optional[IdLike] = None,
) -> LedgerResult:
    """Apply field changes to a DRAFT or ACTIVE contract."""
    contract, error = await _load_for_transition(session, contract_id)
    if error:
        return error
    if contract.status not in (CONTRACT_DRAFT, CONTRACT_ACTIVE):
        return conflict(
            "CONTRACT_NOT_EDITABLE",
            f"Contract in status {contract.status} cannot be updated",
        )

    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        return invalid("INVALID_FIELDS", f"Fields cannot be updated: {', '.join(sorted(unknown))}")
    if "title" in changes and (not changes["title"] or not changes["title"].strip()):
        return invalid("INVALID_TITLE", "Contract title is required")
    if changes.get("value_cents") is not None and changes["value_cents"] < 0:
        return invalid("INVALID_AMOUNT", "Contract value cannot be negative")

    start = changes.get("start_date") or contract.start_date
    end = changes.get("end_date") or contract.end_date
    if start >= end:
        return invalid("INVALID_DATE_RANGE", "Contract start date must be before its end date")

    for field, value in changes.items():
        if field in ("start_date", "end_date") and value is None:
            continue
        setattr(contract, field, value)
    contract.updated_at = datetime.utcnow()
    await session.flush()

    await create_audit_log(
        session,
        event_type="CONTRACT_UPDATE",
        entity_type="contract",
        entity_id=contract.id,
        description=f"Contract {contract.contract_number} updated: {', '.join(sorted(changes))}",
        actor_id=actor_id,
    )
    logger.info("contract_updated", contract_id=str(contract.id), fields=sorted(changes))
    return LedgerResult.ok(contract)


async def approve_contract(
    session: AsyncSession,
    contract_id: IdLike,
    approver_id: Optional[IdLike],
    comments: Optional[str],
) -> LedgerResult:
    if not comments or not comments.strip():
        return invalid("COMMENTS_REQUIRED", "Approval comments are required")

    contract, error = await _load_for_transition(session, contract_id)
    if error:
        return error
    if contract.status != CONTRACT_DRAFT:
        return _invalid_transition(contract, CONTRACT_ACTIVE)

    now = datetime.utcnow()
    contract.status = CONTRACT_ACTIVE
    contract.approved_by = parse_uuid(approver_id)
    contract.approved_at = now
    contract.approval_comments = comments.strip()
    contract.updated_at = now
    await session.flush()

    await create_audit_log(
        session,
        event_type="CONTRACT_APPROVAL",
        entity_type="contract",
        entity_id=contract.id,
        description=f"Contract {contract.contract_number} approved",
        actor_id=approver_id,
    )
    logger.info("contract_approved", contract_id=str(contract.id))
    return LedgerResult.ok(contract, await _vendor_notification(session, contract, "contract_approved"))


async def reject_contract(
    session: AsyncSession,
    contract_id: IdLike,
    comments: Optional[str] = None,
    actor_id: Optional[IdLike] = None,
) -> LedgerResult:
    contract, error = await _load_for_transition(session, contract_id)
    if error:
        return error
    if contract.status != CONTRACT_DRAFT:
        return _invalid_transition(contract, CONTRACT_REJECTED)

    now = datetime.utcnow()
    contract.status = CONTRACT_REJECTED
    contract.rejected_by = parse_uuid(actor_id)
    contract.rejected_at = now
    contract.rejection_comments = comments
    contract.updated_at = now
    await session.flush()

    await create_audit_log(
        session,
        event_type="CONTRACT_REJECTION",
        entity_type="contract",
        entity_id=contract.id,
        description=f"Contract {contract.contract_number} rejected",
        actor_id=actor_id,
    )
    logger.info("contract_rejected", contract_id=str(contract.id))
    notifications = await _vendor_notification(
        session, contract, "contract_rejected", reason=comments or "No reason given"
    )
    return LedgerResult.ok(contract, notifications)


async def terminate_contract(
    session: AsyncSession,
    contract_id: IdLike,
    reason: Optional[str] = None,
    actor_id: Optional[IdLike] = None,
) -> LedgerResult:
    contract, error = await _load_for_transition(session, contract_id)
    if error:
        return error
    if contract.status != CONTRACT_ACTIVE:
        return _invalid_transition(contract, CONTRACT_TERMINATED)

    now = datetime.utcnow()
    contract.status = CONTRACT_TERMINATED
    contract.terminated_by = parse_uuid(actor_id)
    contract.terminated_at = now
    contract.termination_reason = reason
    contract.updated_at = now
    await session.flush()

    await create_audit_log(
        session,
        event_type="CONTRACT_TERMINATION",
        entity_type="contract",
        entity_id=contract.id,
        description=f"Contract {contract.contract_number} terminated",
        actor_id=actor_id,
    )
    logger.info("contract_terminated", contract_id=str(contract.id), reason=reason)
    notifications = await _vendor_notification(
        session, contract, "contract_terminated", reason=reason or "No reason given"
    )
    return LedgerResult.ok(contract, notifications)


async def renew_contract(
    session: AsyncSession,
    contract_id: IdLike,
    renewal_terms: Optional[str] = None,
    new_end_date: Optional[date] = None,
    actor_id: Optional[IdLike] = None,
) -> LedgerResult:
    """Mark an ACTIVE contract RENEWED, optionally extending its end date."""
    contract, error = await _load_for_transition(session, contract_id)
    if error:
        return error
    if contract.status != CONTRACT_ACTIVE:
        return _invalid_transition(contract, CONTRACT_RENEWED)
    if new_end_date is not None and new_end_date <= contract.end_date:
        return invalid(
            "INVALID_DATE_RANGE",
            "Renewed end date must be after the current end date",
        )

    now = datetime.utcnow()
    contract.status = CONTRACT_RENEWED
    if renewal_terms is not None:
        contract.renewal_terms = renewal_terms
    if new_end_date is not None:
        contract.end_date = new_end_date
    contract.renewed_by = parse_uuid(actor_id)
    contract.renewed_at = now
    contract.updated_at = now
    await session.flush()

    await create_audit_log(
        session,
        event_type="CONTRACT_RENEWAL",
        entity_type="contract",
        entity_id=contract.id,
        description=f"Contract {contract.contract_number} renewed until {contract.end_date.isoformat()}",
        actor_id=actor_id,
    )
    logger.info("contract_renewed", contract_id=str(contract.id), end_date=contract.end_date.isoformat())
    return LedgerResult.ok(contract, await _vendor_notification(session, contract, "contract_renewed"))


async def delete_contract(
    session: AsyncSession, contract_id: IdLike, actor_id: Optional[IdLike] = None
) -> LedgerResult:
    contract, error = await _load_for_transition(session, contract_id)
    if error:
        return error
    if contract.status not in (CONTRACT_DRAFT, CONTRACT_REJECTED):
        return conflict(
            "CONTRACT_NOT_DELETABLE",
            f"Contract in status {contract.status} cannot be deleted",
        )

    linked = await session.execute(
        select(func.count(PurchaseOrder.id)).where(PurchaseOrder.contract_id == contract.id)
    )
    linked_count = int(linked.scalar() or 0)
    if linked_count:
        return conflict(
            "CONTRACT_HAS_PURCHASE_ORDERS",
            f"Contract is referenced by {linked_count} purchase orders",
        )

    c_id, number = contract.id, contract.contract_number
    await session.delete(contract)
    await session.flush()

    await create_audit_log(
        session,
        event_type="CONTRACT_DELETION",
        entity_type="contract",
        entity_id=c_id,
        description=f"Contract {number} deleted",
        actor_id=actor_id,
    )
    logger.info("contract_deleted", contract_id=str(c_id))
    return LedgerResult.ok({"id": c_id, "contract_number": number})


async def get_contract(session: AsyncSession, contract_id: IdLike) -> LedgerResult:
    c_id = parse_uuid(contract_id)
    if c_id is None:
        return invalid("INVALID_CONTRACT_ID", "contract_id must be a valid UUID")
    contract = await session.get(Contract, c_id)
    if not contract:
        return not_found("CONTRACT_NOT_FOUND", "Contract not found")
    return LedgerResult.ok(contract)


async def get_expiring_contracts(
    session: AsyncSession, within_days: int = 30, today: Optional[date] = None
) -> LedgerResult:
    """ACTIVE contracts still running today whose end date falls within ``within_days`` days."""
    if within_days is None or within_days < 0:
        return invalid("INVALID_WINDOW", "within_days cannot be negative")
    today = today or datetime.utcnow().date()
    result = await session.execute(
        select(Contract)
        .where(
            Contract.status == CONTRACT_ACTIVE,
            Contract.end_date > today,
            Contract.end_date <= today + timedelta(days=within_days),
        )
        .order_by(Contract.end_date.asc())
    )
    return LedgerResult.ok(list(result.scalars().all()))


async def expire_contracts(session: AsyncSession, today: Optional[date] = None) -> LedgerResult:
    """Move ACTIVE contracts past their end date to EXPIRED."""
    today = today or datetime.utcnow().date()
    result = await session.execute(
        select(Contract)
        .where(Contract.status == CONTRACT_ACTIVE, Contract.end_date <= today)
        .with_for_update()
    )
    expired = list(result.scalars().all())

    now = datetime.utcnow()
    for contract in expired:
        contract.status = CONTRACT_EXPIRED
        contract.updated_at = now
        await create_audit_log(
            session,
            event_type="CONTRACT_EXPIRY",
            entity_type="contract",
            entity_id=contract.id,
            description=f"Contract {contract.contract_number} expired on {contract.end_date.isoformat()}",
            actor_id=None,
        )

    if expired:
        logger.info("contracts_expired", count=len(expired), as_of=today.isoformat())
    return LedgerResult.ok(expired)
