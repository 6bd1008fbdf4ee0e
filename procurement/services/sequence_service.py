"""
Document sequence service — collision-safe PO and contract numbers.

Numbers have the form ``<PREFIX>-<year>-<seq:05d>``. The sequence value is
held in a ``document_sequences`` row per (prefix, year); allocation locks that
row, so concurrent creations in the same year serialize on it. The increment
is part of the caller's transaction and is returned on rollback.
"""

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from procurement.models.sequence import DocumentSequence

logger = structlog.get_logger()

PO_PREFIX = "PO"
CONTRACT_PREFIX = "CNT"


def format_document_number(prefix: str, year: int, value: int) -> str:
    return f"{prefix}-{year}-{value:05d}"


async def _lock_counter(session: AsyncSession, prefix: str, year: int):
    result = await session.execute(
        select(DocumentSequence)
        .where(DocumentSequence.prefix == prefix, DocumentSequence.year == year)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _ensure_counter_row(session: AsyncSession, prefix: str, year: int) -> None:
    """Insert the counter row unless another transaction already has."""
    dialect = session.bind.dialect.name if session.bind is not None else "postgresql"
    insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
    stmt = (
        insert(DocumentSequence)
        .values(prefix=prefix, year=year, current_value=0)
        .on_conflict_do_nothing(index_elements=["prefix", "year"])
    )
    await session.execute(stmt)


async def next_sequence_value(session: AsyncSession, prefix: str, year: int) -> int:
    counter = await _lock_counter(session, prefix, year)
    if counter is None:
        await _ensure_counter_row(session, prefix, year)
        counter = await _lock_counter(session, prefix, year)

    counter.current_value += 1
    await session.flush()

    logger.debug(
        "document_sequence_allocated",
        prefix=prefix,
        year=year,
        value=counter.current_value,
    )
    return counter.current_value


async def next_document_number(session: AsyncSession, prefix: str, year: int) -> str:
    value = await next_sequence_value(session, prefix, year)
    return format_document_number(prefix, year, value)
