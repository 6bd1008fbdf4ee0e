"""
Ledger transaction runner — one transaction per operation, result-driven commit.

Operations receive the session, do their locked reads and writes, and return
a LedgerResult. The runner commits only a successful result; a failed result,
a store error or a timeout rolls back everything the operation wrote,
including its audit row. Notifications planned by the operation are returned
to the caller for dispatch after commit.
"""

import asyncio
import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Union

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
import structlog

from procurement.config import settings
from procurement.database import apply_transaction_timeouts

logger = structlog.get_logger()


class LedgerErrorKind(str, enum.Enum):
    INVALID_INPUT = "INVALID_INPUT"
    CONFLICT = "CONFLICT"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    NOT_FOUND = "NOT_FOUND"
    TRANSACTION_FAILURE = "TRANSACTION_FAILURE"


@dataclass
class Notification:
    template_id: str
    recipient_emails: list[str]
    context: dict


@dataclass
class LedgerResult:
    success: bool
    data: Any = None
    error: Optional[LedgerErrorKind] = None
    error_code: Optional[str] = None
    message: Optional[str] = None
    notifications: list[Notification] = field(default_factory=list)

    @classmethod
    def ok(cls, data: Any = None, notifications: Optional[list[Notification]] = None) -> "LedgerResult":
        return cls(success=True, data=data, notifications=notifications or [])

    @classmethod
    def fail(cls, error: LedgerErrorKind, error_code: str, message: str) -> "LedgerResult":
        return cls(success=False, error=error, error_code=error_code, message=message)


def invalid(error_code: str, message: str) -> LedgerResult:
    return LedgerResult.fail(LedgerErrorKind.INVALID_INPUT, error_code, message)


def not_found(error_code: str, message: str) -> LedgerResult:
    return LedgerResult.fail(LedgerErrorKind.NOT_FOUND, error_code, message)


def conflict(error_code: str, message: str) -> LedgerResult:
    return LedgerResult.fail(LedgerErrorKind.CONFLICT, error_code, message)


def insufficient_funds(available_cents: int, requested_cents: int) -> LedgerResult:
    return LedgerResult.fail(
        LedgerErrorKind.INSUFFICIENT_FUNDS,
        "BUDGET_EXCEEDED",
        (
            f"Insufficient budget: requested {requested_cents} cents, "
            f"available {available_cents} cents"
        ),
    )


def parse_uuid(value: Union[uuid.UUID, str, None]) -> Optional[uuid.UUID]:
    """Normalize an id argument; None for missing or malformed values."""
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        return None


def get_current_fiscal_year() -> int:
    """Fiscal year of the current UTC date."""
    return datetime.utcnow().year


Operation = Callable[..., Awaitable[LedgerResult]]


async def run_ledger_operation(
    session_factory: async_sessionmaker[AsyncSession],
    operation: Operation,
    *args,
    timeout: Optional[float] = None,
    **kwargs,
) -> LedgerResult:
    """Run ``operation(session, *args, **kwargs)`` in its own transaction."""
    op_name = getattr(operation, "__name__", "operation")
    timeout = settings.LEDGER_OPERATION_TIMEOUT_SECONDS if timeout is None else timeout

    async with session_factory() as session:
        try:
            await apply_transaction_timeouts(session)
            result = await asyncio.wait_for(operation(session, *args, **kwargs), timeout)
        except IntegrityError as exc:
            await session.rollback()
            logger.warning("ledger_integrity_conflict", operation=op_name, error=str(exc.orig))
            return conflict("INTEGRITY_CONFLICT", "Concurrent change conflicts with an existing record")
        except (OperationalError, DBAPIError) as exc:
            await session.rollback()
            logger.error("ledger_transaction_aborted", operation=op_name, error=str(exc.orig))
            return LedgerResult.fail(
                LedgerErrorKind.TRANSACTION_FAILURE,
                "TRANSACTION_ABORTED",
                "The transaction was aborted by the data store; retry the operation",
            )
        except asyncio.TimeoutError:
            await session.rollback()
            logger.error("ledger_transaction_timeout", operation=op_name, timeout=timeout)
            return LedgerResult.fail(
                LedgerErrorKind.TRANSACTION_FAILURE,
                "TRANSACTION_TIMEOUT",
                f"The operation did not complete within {timeout} seconds; retry the operation",
            )
        except Exception:
            await session.rollback()
            raise

        if not result.success:
            await session.rollback()
            logger.info(
                "ledger_operation_failed",
                operation=op_name,
                error=result.error.value if result.error else None,
                error_code=result.error_code,
            )
            return result

        try:
            await session.commit()
        except IntegrityError as exc:
            await session.rollback()
            logger.warning("ledger_commit_conflict", operation=op_name, error=str(exc.orig))
            return conflict("INTEGRITY_CONFLICT", "Concurrent change conflicts with an existing record")
        except (OperationalError, DBAPIError) as exc:
            await session.rollback()
            logger.error("ledger_commit_failed", operation=op_name, error=str(exc.orig))
            return LedgerResult.fail(
                LedgerErrorKind.TRANSACTION_FAILURE,
                "TRANSACTION_ABORTED",
                "The transaction could not be committed; retry the operation",
            )

        logger.debug("ledger_operation_committed", operation=op_name)
        return result
