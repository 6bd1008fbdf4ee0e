from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from procurement.database import get_db, get_session_factory
from procurement.middleware.auth import get_current_user
from procurement.middleware.authorization import (
    BUDGET_ADMINS,
    FINANCE_ROLES,
    INTERNAL_ROLES,
    check_department_scope,
    require_roles,
)
from procurement.models.budget import Budget, BudgetTransfer
from procurement.schemas.budget import (
    BudgetAllocateRequest,
    BudgetCreate,
    BudgetHistoryEntryResponse,
    BudgetHistoryResponse,
    BudgetResponse,
    BudgetTransferRequest,
    BudgetTransferResponse,
    BudgetUpdate,
    BudgetUtilizationResponse,
    FiscalYearReportResponse,
)
from procurement.services import budget_service
from procurement.services.budget_service import BudgetUtilization
from procurement.services.ledger import get_current_fiscal_year, run_ledger_operation
from procurement.routes.common import iso, settle, str_or_none

router = APIRouter()


def _to_response(b: Budget) -> BudgetResponse:
    return BudgetResponse(
        id=str(b.id),
        department_id=str(b.department_id),
        fiscal_year=b.fiscal_year,
        total_cents=b.total_cents,
        allocated_cents=b.allocated_cents,
        remaining_cents=b.remaining_cents,
        status=b.status,
        notes=b.notes,
        created_at=iso(b.created_at) or "",
        updated_at=iso(b.updated_at) or "",
    )


def _utilization_response(u: BudgetUtilization) -> BudgetUtilizationResponse:
    return BudgetUtilizationResponse(
        budget_id=str(u.budget_id),
        department_id=str(u.department_id),
        fiscal_year=u.fiscal_year,
        status=u.status,
        total_cents=u.total_cents,
        allocated_cents=u.allocated_cents,
        remaining_cents=u.remaining_cents,
        utilization_percentage=u.utilization_percentage,
        total_purchase_orders=u.total_purchase_orders,
        draft_cents=u.draft_cents,
        pending_cents=u.pending_cents,
        approved_cents=u.approved_cents,
        completed_cents=u.completed_cents,
    )


@router.post("", response_model=BudgetResponse, status_code=status.HTTP_201_CREATED)
async def create_budget(
    data: BudgetCreate,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*BUDGET_ADMINS)),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    result = await run_ledger_operation(
        session_factory,
        budget_service.create_envelope,
        department_id=data.department_id,
        fiscal_year=data.fiscal_year,
        total_cents=data.total_cents,
        notes=data.notes,
        actor_id=current_user["user_id"],
    )
    return _to_response(settle(result, background_tasks))


@router.post("/allocate", response_model=BudgetResponse)
async def allocate_budget(
    data: BudgetAllocateRequest,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*FINANCE_ROLES)),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    result = await run_ledger_operation(
        session_factory,
        budget_service.allocate,
        department_id=data.department_id,
        amount_cents=data.amount_cents,
        notes=data.notes,
        actor_id=current_user["user_id"],
    )
    return _to_response(settle(result))


@router.post("/transfer", response_model=BudgetTransferResponse)
async def transfer_budget(
    data: BudgetTransferRequest,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*BUDGET_ADMINS)),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    result = await run_ledger_operation(
        session_factory,
        budget_service.transfer,
        from_department_id=data.from_department_id,
        to_department_id=data.to_department_id,
        amount_cents=data.amount_cents,
        reason=data.reason,
        actor_id=current_user["user_id"],
    )
    t: BudgetTransfer = settle(result, background_tasks)
    return BudgetTransferResponse(
        id=str(t.id),
        from_department_id=str(t.from_department_id),
        to_department_id=str(t.to_department_id),
        fiscal_year=t.fiscal_year,
        amount_cents=t.amount_cents,
        reason=t.reason,
        created_at=iso(t.created_at) or "",
    )


@router.get("/utilization/{department_id}", response_model=BudgetUtilizationResponse)
async def get_budget_utilization(
    department_id: str,
    fiscal_year: Optional[int] = Query(None, ge=2000, le=2100),
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*INTERNAL_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    check_department_scope(current_user, department_id)
    result = await budget_service.get_utilization(db, department_id, fiscal_year)
    return _utilization_response(settle(result))


@router.get("/history/{department_id}", response_model=BudgetHistoryResponse)
async def get_budget_history(
    department_id: str,
    fiscal_year: Optional[int] = Query(None, ge=2000, le=2100),
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*INTERNAL_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Allocations and transfers for a department envelope, newest first."""
    check_department_scope(current_user, department_id)
    fiscal_year = fiscal_year or get_current_fiscal_year()
    entries = settle(await budget_service.get_budget_history(db, department_id, fiscal_year))
    return BudgetHistoryResponse(
        department_id=department_id,
        fiscal_year=fiscal_year,
        entries=[
            BudgetHistoryEntryResponse(
                entry_type=e.entry_type,
                id=str(e.entry_id),
                fiscal_year=e.fiscal_year,
                amount_cents=e.amount_cents,
                counterpart_department_id=str_or_none(e.counterpart_department_id),
                note=e.note,
                created_by=str_or_none(e.created_by),
                created_at=iso(e.created_at) or "",
            )
            for e in entries
        ],
    )


@router.get("/reports/{fiscal_year}", response_model=FiscalYearReportResponse)
async def get_fiscal_year_report(
    fiscal_year: int,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*FINANCE_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    result = await budget_service.get_fiscal_year_report(db, fiscal_year)
    rows = settle(result)
    return FiscalYearReportResponse(
        fiscal_year=fiscal_year,
        departments=[_utilization_response(u) for u in rows],
    )


@router.patch("/{budget_id}", response_model=BudgetResponse)
async def update_budget(
    budget_id: str,
    data: BudgetUpdate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*BUDGET_ADMINS)),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    result = await run_ledger_operation(
        session_factory,
        budget_service.update_envelope,
        budget_id=budget_id,
        total_cents=data.total_cents,
        notes=data.notes,
        actor_id=current_user["user_id"],
    )
    return _to_response(settle(result))


@router.post("/{budget_id}/close", response_model=BudgetResponse)
async def close_budget(
    budget_id: str,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*BUDGET_ADMINS)),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    result = await run_ledger_operation(
        session_factory,
        budget_service.close_envelope,
        budget_id=budget_id,
        actor_id=current_user["user_id"],
    )
    return _to_response(settle(result))


@router.delete("/{budget_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_budget(
    budget_id: str,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles("admin")),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    result = await run_ledger_operation(
        session_factory,
        budget_service.delete_envelope,
        budget_id=budget_id,
        actor_id=current_user["user_id"],
    )
    settle(result)
