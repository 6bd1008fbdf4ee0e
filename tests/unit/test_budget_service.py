"""
Unit tests for procurement/services/budget_service.py

Uses AsyncMock to isolate from the database.
Tests: check_budget_availability, apply_envelope_delta, input validation of
       create_envelope / allocate / transfer, utilization_percentage,
       get_current_fiscal_year.
"""

import uuid
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from procurement.models.budget import BUDGET_ACTIVE, BUDGET_CLOSED, BUDGET_EXHAUSTED
from procurement.services.budget_service import (
    allocate,
    apply_envelope_delta,
    check_budget_availability,
    create_envelope,
    credit_envelope,
    debit_envelope,
    transfer,
    utilization_percentage,
)
from procurement.services.ledger import LedgerErrorKind, get_current_fiscal_year


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_budget(total_cents: int = 10_000_00, allocated_cents: int = 0, status: str = BUDGET_ACTIVE):
    b = MagicMock()
    b.id = uuid.uuid4()
    b.department_id = uuid.uuid4()
    b.total_cents = total_cents
    b.allocated_cents = allocated_cents
    b.remaining_cents = total_cents - allocated_cents
    b.status = status
    return b


def _mock_session() -> AsyncMock:
    session = AsyncMock()
    session.flush = AsyncMock()
    session.add = MagicMock()
    return session


def _execute_result(scalar_value):
    result = MagicMock()
    result.scalar.return_value = scalar_value
    result.scalar_one_or_none.return_value = scalar_value
    return result


# ---------------------------------------------------------------------------
# get_current_fiscal_year
# ---------------------------------------------------------------------------


def test_fiscal_year_is_calendar_year():
    with patch("procurement.services.ledger.datetime") as mock_dt:
        mock_dt.utcnow.return_value = datetime(2026, 12, 31, 23, 59)
        assert get_current_fiscal_year() == 2026


# ---------------------------------------------------------------------------
# check_budget_availability
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_check_availability_no_budget():
    session = _mock_session()
    session.execute.return_value = _execute_result(None)

    result = await check_budget_availability(session, uuid.uuid4(), 100_00, 2026)

    assert result.success is False
    assert result.error_code == "BUDGET_NOT_FOUND"
    assert result.available_cents == 0
    assert result.to_ledger_result().error == LedgerErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_check_availability_sufficient():
    budget = _make_budget(total_cents=1_000_00, allocated_cents=200_00)
    session = _mock_session()
    session.execute.return_value = _execute_result(budget)

    result = await check_budget_availability(session, budget.department_id, 500_00, 2026)

    assert result.success is True
    assert result.available_cents == 800_00
    assert result.budget is budget


@pytest.mark.asyncio
async def test_check_availability_exceeded():
    budget = _make_budget(total_cents=1_000_00, allocated_cents=900_00)
    session = _mock_session()
    session.execute.return_value = _execute_result(budget)

    result = await check_budget_availability(session, budget.department_id, 200_00, 2026)

    assert result.success is False
    assert result.error_code == "BUDGET_EXCEEDED"
    assert result.available_cents == 100_00
    ledger_result = result.to_ledger_result()
    assert ledger_result.error == LedgerErrorKind.INSUFFICIENT_FUNDS


@pytest.mark.asyncio
async def test_check_availability_exact_amount_passes():
    budget = _make_budget(total_cents=1_000_00, allocated_cents=500_00)
    session = _mock_session()
    session.execute.return_value = _execute_result(budget)

    result = await check_budget_availability(session, budget.department_id, 500_00, 2026)

    assert result.success is True


@pytest.mark.asyncio
async def test_check_availability_closed_budget_conflicts():
    budget = _make_budget(status=BUDGET_CLOSED)
    session = _mock_session()

    result = await check_budget_availability(session, budget.department_id, 1, 2026, budget=budget)

    assert result.success is False
    assert result.error_code == "BUDGET_CLOSED"
    assert result.to_ledger_result().error == LedgerErrorKind.CONFLICT
    # A pre-locked budget is not re-read
    session.execute.assert_not_called()


# ---------------------------------------------------------------------------
# apply_envelope_delta / debit / credit
# ---------------------------------------------------------------------------


def test_debit_moves_remaining_to_allocated():
    budget = _make_budget(total_cents=10_000, allocated_cents=1_000)

    assert debit_envelope(budget, 4_000) is None

    assert budget.allocated_cents == 5_000
    assert budget.remaining_cents == 5_000
    assert budget.status == BUDGET_ACTIVE


def test_debit_to_zero_marks_exhausted():
    budget = _make_budget(total_cents=10_000, allocated_cents=6_000)

    assert debit_envelope(budget, 4_000) is None

    assert budget.remaining_cents == 0
    assert budget.status == BUDGET_EXHAUSTED


def test_debit_beyond_remaining_leaves_budget_untouched():
    budget = _make_budget(total_cents=10_000, allocated_cents=6_000)

    error = apply_envelope_delta(budget, 4_001)

    assert error.error == LedgerErrorKind.INSUFFICIENT_FUNDS
    assert budget.allocated_cents == 6_000
    assert budget.remaining_cents == 4_000


def test_credit_reactivates_exhausted_budget():
    budget = _make_budget(total_cents=10_000, allocated_cents=10_000, status=BUDGET_EXHAUSTED)

    assert credit_envelope(budget, 2_500) is None

    assert budget.allocated_cents == 7_500
    assert budget.remaining_cents == 2_500
    assert budget.status == BUDGET_ACTIVE


def test_credit_keeps_closed_status():
    budget = _make_budget(total_cents=10_000, allocated_cents=3_000, status=BUDGET_CLOSED)

    assert credit_envelope(budget, 3_000) is None

    assert budget.remaining_cents == 10_000
    assert budget.status == BUDGET_CLOSED


def test_credit_more_than_allocated_is_refused():
    budget = _make_budget(total_cents=10_000, allocated_cents=1_000)

    error = credit_envelope(budget, 1_001)

    assert error.error == LedgerErrorKind.CONFLICT
    assert error.error_code == "BUDGET_INCONSISTENT"
    assert budget.allocated_cents == 1_000


# ---------------------------------------------------------------------------
# Input validation (no database access)
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_envelope_rejects_bad_department_id():
    session = _mock_session()

    result = await create_envelope(session, "not-a-uuid", 2026, 1_000, None, None)

    assert result.error == LedgerErrorKind.INVALID_INPUT
    session.execute.assert_not_called()


@pytest.mark.asyncio
async def test_create_envelope_rejects_fiscal_year_out_of_range():
    session = _mock_session()

    result = await create_envelope(session, uuid.uuid4(), 1999, 1_000, None, None)

    assert result.error_code == "INVALID_FISCAL_YEAR"


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [0, -5])
async def test_allocate_rejects_non_positive_amount(amount):
    session = _mock_session()

    result = await allocate(session, uuid.uuid4(), amount, None, None)

    assert result.error == LedgerErrorKind.INVALID_INPUT
    session.execute.assert_not_called()


@pytest.mark.asyncio
async def test_transfer_rejects_same_department():
    session = _mock_session()
    dept = uuid.uuid4()

    result = await transfer(session, dept, str(dept), 100, None, None)

    assert result.error_code == "TRANSFER_SAME_DEPARTMENT"
    session.execute.assert_not_called()


@pytest.mark.asyncio
async def test_allocate_locks_and_debits_current_year_envelope():
    budget = _make_budget(total_cents=1_000, allocated_cents=0)
    session = _mock_session()
    session.execute.return_value = _execute_result(budget)

    with patch("procurement.services.budget_service.create_audit_log", new=AsyncMock()) as audit:
        result = await allocate(session, budget.department_id, 400, "note", None)

    assert result.success
    assert budget.remaining_cents == 600
    audit.assert_awaited_once()
    assert audit.await_args.kwargs["event_type"] == "BUDGET_ALLOCATION"
    session.add.assert_called_once()


# ---------------------------------------------------------------------------
# utilization_percentage
# ---------------------------------------------------------------------------


def test_utilization_percentage_rounds_to_two_places():
    assert utilization_percentage(3_000, 2_000) == 33.33
    assert utilization_percentage(10_000, 10_000) == 0.0
    assert utilization_percentage(0, 0) == 0.0
