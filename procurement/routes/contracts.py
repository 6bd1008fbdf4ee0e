"""
Contract management — /api/v1/contracts

Lifecycle:
  DRAFT → ACTIVE → TERMINATED / RENEWED / EXPIRED
  DRAFT → REJECTED
"""

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from procurement.database import get_db, get_session_factory
from procurement.middleware.auth import get_current_user
from procurement.middleware.authorization import (
    CONTRACT_APPROVERS,
    CONTRACT_ROLES,
    INTERNAL_ROLES,
    require_roles,
)
from procurement.models.contract import Contract
from procurement.schemas.contract import (
    ContractApproveRequest,
    ContractCreate,
    ContractRejectRequest,
    ContractRenewRequest,
    ContractResponse,
    ContractTerminateRequest,
    ContractUpdate,
)
from procurement.services import contract_service
from procurement.services.ledger import run_ledger_operation
from procurement.routes.common import iso, settle, str_or_none

router = APIRouter()


def _to_response(c: Contract) -> ContractResponse:
    return ContractResponse(
        id=str(c.id),
        contract_number=c.contract_number,
        vendor_id=str(c.vendor_id),
        title=c.title,
        description=c.description,
        status=c.status,
        value_cents=c.value_cents,
        start_date=iso(c.start_date),
        end_date=iso(c.end_date),
        terms_conditions=c.terms_conditions,
        renewal_terms=c.renewal_terms,
        approved_by=str_or_none(c.approved_by),
        approved_at=iso(c.approved_at),
        terminated_at=iso(c.terminated_at),
        termination_reason=c.termination_reason,
        renewed_at=iso(c.renewed_at),
        created_at=iso(c.created_at) or "",
        updated_at=iso(c.updated_at) or "",
    )


@router.post("", response_model=ContractResponse, status_code=status.HTTP_201_CREATED)
async def create_contract(
    data: ContractCreate,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*CONTRACT_ROLES)),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    result = await run_ledger_operation(
        session_factory,
        contract_service.create_contract,
        vendor_id=data.vendor_id,
        title=data.title,
        start_date=data.start_date,
        end_date=data.end_date,
        description=data.description,
        value_cents=data.value_cents,
        terms_conditions=data.terms_conditions,
        renewal_terms=data.renewal_terms,
        actor_id=current_user["user_id"],
    )
    return _to_response(settle(result, background_tasks))


@router.get("/expiring", response_model=list[ContractResponse])
async def list_expiring_contracts(
    days: int = Query(30, ge=0, le=365),
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*INTERNAL_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """ACTIVE contracts ending within the next ``days`` days."""
    contracts = settle(await contract_service.get_expiring_contracts(db, days))
    return [_to_response(c) for c in contracts]


@router.get("/{contract_id}", response_model=ContractResponse)
async def get_contract(
    contract_id: str,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*INTERNAL_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    return _to_response(settle(await contract_service.get_contract(db, contract_id)))


@router.patch("/{contract_id}", response_model=ContractResponse)
async def update_contract(
    contract_id: str,
    data: ContractUpdate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*CONTRACT_ROLES)),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    result = await run_ledger_operation(
        session_factory,
        contract_service.update_contract,
        contract_id=contract_id,
        changes=data.model_dump(exclude_unset=True),
        actor_id=current_user["user_id"],
    )
    return _to_response(settle(result))


@router.post("/{contract_id}/approve", response_model=ContractResponse)
async def approve_contract(
    contract_id: str,
    data: ContractApproveRequest,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*CONTRACT_APPROVERS)),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    result = await run_ledger_operation(
        session_factory,
        contract_service.approve_contract,
        contract_id=contract_id,
        approver_id=current_user["user_id"],
        comments=data.comments,
    )
    return _to_response(settle(result, background_tasks))


@router.post("/{contract_id}/reject", response_model=ContractResponse)
async def reject_contract(
    contract_id: str,
    data: ContractRejectRequest,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*CONTRACT_APPROVERS)),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    result = await run_ledger_operation(
        session_factory,
        contract_service.reject_contract,
        contract_id=contract_id,
        comments=data.comments,
        actor_id=current_user["user_id"],
    )
    return _to_response(settle(result, background_tasks))


@router.post("/{contract_id}/terminate", response_model=ContractResponse)
async def terminate_contract(
    contract_id: str,
    data: ContractTerminateRequest,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*CONTRACT_APPROVERS)),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    result = await run_ledger_operation(
        session_factory,
        contract_service.terminate_contract,
        contract_id=contract_id,
        reason=data.reason,
        actor_id=current_user["user_id"],
    )
    return _to_response(settle(result, background_tasks))


@router.post("/{contract_id}/renew", response_model=ContractResponse)
async def renew_contract(
    contract_id: str,
    data: ContractRenewRequest,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*CONTRACT_APPROVERS)),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    result = await run_ledger_operation(
        session_factory,
        contract_service.renew_contract,
        contract_id=contract_id,
        renewal_terms=data.renewal_terms,
        new_end_date=data.new_end_date,
        actor_id=current_user["user_id"],
    )
    return _to_response(settle(result, background_tasks))


@router.delete("/{contract_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_contract(
    contract_id: str,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*CONTRACT_APPROVERS)),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    result = await run_ledger_operation(
        session_factory,
        contract_service.delete_contract,
        contract_id=contract_id,
        actor_id=current_user["user_id"],
    )
    settle(result)
