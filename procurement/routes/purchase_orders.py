from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from procurement.database import get_db, get_session_factory
from procurement.middleware.auth import get_current_user
from procurement.middleware.authorization import (
    APPROVER_ROLES,
    INTERNAL_ROLES,
    PURCHASING_ROLES,
    check_department_scope,
    require_roles,
)
from procurement.models.purchase_order import PurchaseOrder
from procurement.schemas.purchase_order import (
    PoLineItemResponse,
    PurchaseOrderActionRequest,
    PurchaseOrderCreate,
    PurchaseOrderResponse,
    PurchaseOrderUpdate,
)
from procurement.services import purchase_order_service as po_service
from procurement.services.ledger import run_ledger_operation
from procurement.services.purchase_order_service import LineItemInput
from procurement.routes.common import iso, settle, str_or_none

router = APIRouter()


def _to_response(po: PurchaseOrder) -> PurchaseOrderResponse:
    return PurchaseOrderResponse(
        id=str(po.id),
        po_number=po.po_number,
        vendor_id=str(po.vendor_id),
        contract_id=str_or_none(po.contract_id),
        department_id=str(po.department_id),
        status=po.status,
        total_cents=po.total_cents,
        delivery_date=iso(po.delivery_date),
        delivery_address=po.delivery_address,
        special_instructions=po.special_instructions,
        approved_by=str_or_none(po.approved_by),
        approved_at=iso(po.approved_at),
        approval_comments=po.approval_comments,
        rejected_by=str_or_none(po.rejected_by),
        rejected_at=iso(po.rejected_at),
        rejection_comments=po.rejection_comments,
        completed_at=iso(po.completed_at),
        line_items=[
            PoLineItemResponse(
                id=str(li.id),
                line_number=li.line_number,
                description=li.description,
                quantity=li.quantity,
                unit_price_cents=li.unit_price_cents,
            )
            for li in po.line_items
        ],
        created_at=iso(po.created_at) or "",
        updated_at=iso(po.updated_at) or "",
    )


def _line_items(data: PurchaseOrderCreate) -> list[LineItemInput]:
    return [
        LineItemInput(
            description=item.description,
            quantity=item.quantity,
            unit_price_cents=item.unit_price_cents,
        )
        for item in data.items
    ]


async def _check_existing_scope(
    session_factory: async_sessionmaker[AsyncSession], current_user: dict, po_id: str
) -> None:
    """Scope check against the department the order currently belongs to."""
    # short-lived session: its transaction must end before the ledger operation opens one
    async with session_factory() as session:
        po = settle(await po_service.get_purchase_order(session, po_id))
        department_id = str(po.department_id)
    check_department_scope(current_user, department_id)


@router.post("", response_model=PurchaseOrderResponse, status_code=status.HTTP_201_CREATED)
async def create_purchase_order(
    data: PurchaseOrderCreate,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*PURCHASING_ROLES)),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Create a DRAFT PO and commit its total against the department budget."""
    check_department_scope(current_user, data.department_id)
    result = await run_ledger_operation(
        session_factory,
        po_service.create_purchase_order,
        vendor_id=data.vendor_id,
        department_id=data.department_id,
        items=_line_items(data),
        total_cents=data.total_cents,
        contract_id=data.contract_id,
        delivery_date=data.delivery_date,
        delivery_address=data.delivery_address,
        special_instructions=data.special_instructions,
        actor_id=current_user["user_id"],
    )
    return _to_response(settle(result, background_tasks))


@router.get("/{po_id}", response_model=PurchaseOrderResponse)
async def get_purchase_order(
    po_id: str,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*INTERNAL_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    po = settle(await po_service.get_purchase_order(db, po_id))
    check_department_scope(current_user, str(po.department_id))
    return _to_response(po)


@router.put("/{po_id}", response_model=PurchaseOrderResponse)
async def update_purchase_order(
    po_id: str,
    data: PurchaseOrderUpdate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*PURCHASING_ROLES)),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    await _check_existing_scope(session_factory, current_user, po_id)
    check_department_scope(current_user, data.department_id)
    result = await run_ledger_operation(
        session_factory,
        po_service.update_purchase_order,
        po_id=po_id,
        vendor_id=data.vendor_id,
        department_id=data.department_id,
        items=_line_items(data),
        total_cents=data.total_cents,
        contract_id=data.contract_id,
        delivery_date=data.delivery_date,
        delivery_address=data.delivery_address,
        special_instructions=data.special_instructions,
        actor_id=current_user["user_id"],
    )
    return _to_response(settle(result))


@router.delete("/{po_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_purchase_order(
    po_id: str,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles("admin", "finance_head", "procurement_lead")),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    result = await run_ledger_operation(
        session_factory,
        po_service.delete_purchase_order,
        po_id=po_id,
        actor_id=current_user["user_id"],
    )
    settle(result)


@router.post("/{po_id}/submit", response_model=PurchaseOrderResponse)
async def submit_purchase_order(
    po_id: str,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*PURCHASING_ROLES)),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    await _check_existing_scope(session_factory, current_user, po_id)
    result = await run_ledger_operation(
        session_factory,
        po_service.submit_purchase_order,
        po_id=po_id,
        actor_id=current_user["user_id"],
    )
    return _to_response(settle(result))


@router.post("/{po_id}/approve", response_model=PurchaseOrderResponse)
async def approve_purchase_order(
    po_id: str,
    data: PurchaseOrderActionRequest,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*APPROVER_ROLES)),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    result = await run_ledger_operation(
        session_factory,
        po_service.approve_purchase_order,
        po_id=po_id,
        comments=data.comments,
        actor_id=current_user["user_id"],
    )
    return _to_response(settle(result, background_tasks))


@router.post("/{po_id}/reject", response_model=PurchaseOrderResponse)
async def reject_purchase_order(
    po_id: str,
    data: PurchaseOrderActionRequest,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*APPROVER_ROLES)),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Reject the PO and release its total back to the budget."""
    result = await run_ledger_operation(
        session_factory,
        po_service.reject_purchase_order,
        po_id=po_id,
        comments=data.comments,
        actor_id=current_user["user_id"],
    )
    return _to_response(settle(result, background_tasks))


@router.post("/{po_id}/complete", response_model=PurchaseOrderResponse)
async def complete_purchase_order(
    po_id: str,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*PURCHASING_ROLES)),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    await _check_existing_scope(session_factory, current_user, po_id)
    result = await run_ledger_operation(
        session_factory,
        po_service.complete_purchase_order,
        po_id=po_id,
        actor_id=current_user["user_id"],
    )
    return _to_response(settle(result, background_tasks))
