"""Audit logging service — records ledger and contract events."""

from typing import Optional, Union
from datetime import datetime
import uuid

from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from procurement.models.audit_log import AuditLog

logger = structlog.get_logger()


def _to_uuid(value: Union[uuid.UUID, str, None], field_name: str, required: bool = False) -> Optional[uuid.UUID]:
    if value is None:
        if required:
            raise ValueError(f"{field_name} is required")
        return None
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        if required:
            raise ValueError(f"{field_name} must be a valid UUID")
        logger.warning("audit_invalid_uuid", field=field_name, value=str(value))
        return None


async def create_audit_log(
    session: AsyncSession,
    event_type: str,
    entity_type: str,
    entity_id: Union[uuid.UUID, str],
    description: str,
    actor_id: Union[uuid.UUID, str, None],
) -> AuditLog:
    """
    Append an audit log entry.

    Uses session.flush(); the caller owns the transaction, so a failed state
    change takes its audit row down with it.
    """
    audit = AuditLog(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=_to_uuid(entity_id, "entity_id", required=True),
        description=description,
        actor_id=_to_uuid(actor_id, "actor_id"),
        created_at=datetime.utcnow(),
    )
    session.add(audit)
    await session.flush()

    logger.info(
        "audit_log_created",
        event_type=event_type,
        entity_type=entity_type,
        entity_id=str(entity_id),
        actor_id=str(actor_id) if actor_id else None,
    )
    return audit
