"""
Scheduled jobs triggered by an external scheduler calling internal endpoints.

Jobs:
  - expire-contracts: daily, moves ACTIVE contracts past their end date to EXPIRED
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
import structlog

from procurement.config import settings
from procurement.database import get_session_factory
from procurement.services.contract_service import expire_contracts
from procurement.services.ledger import run_ledger_operation
from procurement.routes.common import settle

logger = structlog.get_logger()
router = APIRouter()


async def _require_internal_auth(request: Request):
    """Check the X-Internal-Secret header against INTERNAL_JOB_SECRET."""
    secret = settings.INTERNAL_JOB_SECRET
    if not secret:
        if settings.DEBUG:
            return
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="INTERNAL_JOB_SECRET is not configured",
        )
    provided = request.headers.get("X-Internal-Secret")
    if not provided or provided != secret:
        logger.warning("internal_auth_failed", path=request.url.path)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")


@router.post("/expire-contracts")
async def run_contract_expiry(
    as_of: Optional[date] = Query(None),
    _auth: None = Depends(_require_internal_auth),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    result = await run_ledger_operation(session_factory, expire_contracts, today=as_of)
    expired = settle(result)
    logger.info("job_expire_contracts_done", expired=len(expired))
    return {
        "expired": len(expired),
        "contract_numbers": [c.contract_number for c in expired],
    }
