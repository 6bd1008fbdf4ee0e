"""Shared helpers for routes that run ledger operations."""

from datetime import date, datetime
from typing import Optional, Union
import uuid

from fastapi import BackgroundTasks, HTTPException, status

from procurement.services.ledger import LedgerErrorKind, LedgerResult
from procurement.services.notification_service import dispatch_notifications

STATUS_BY_ERROR = {
    LedgerErrorKind.INVALID_INPUT: status.HTTP_400_BAD_REQUEST,
    LedgerErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    LedgerErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    LedgerErrorKind.INSUFFICIENT_FUNDS: status.HTTP_422_UNPROCESSABLE_ENTITY,
    LedgerErrorKind.TRANSACTION_FAILURE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def raise_for_result(result: LedgerResult) -> None:
    """Translate a failed ledger result into the structured HTTP error body."""
    if result.success:
        return
    raise HTTPException(
        status_code=STATUS_BY_ERROR.get(result.error, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail={
            "error": {
                "code": result.error_code,
                "message": result.message,
            }
        },
    )


def settle(result: LedgerResult, background_tasks: Optional[BackgroundTasks] = None):
    """Raise on failure; otherwise schedule planned notifications and return the data."""
    raise_for_result(result)
    if background_tasks is not None and result.notifications:
        background_tasks.add_task(dispatch_notifications, result.notifications)
    return result.data


def iso(value: Union[date, datetime, None]) -> Optional[str]:
    return value.isoformat() if value else None


def str_or_none(value: Optional[uuid.UUID]) -> Optional[str]:
    return str(value) if value else None
