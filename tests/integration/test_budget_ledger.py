"""
Budget envelope ledger against a real database.

Checks remaining == total - allocated after every operation, that failed
operations leave the envelope untouched, and that audit rows commit or roll
back with the change they describe.
"""

import uuid
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select

from procurement.models.budget import (
    BUDGET_ACTIVE,
    BUDGET_CLOSED,
    BUDGET_EXHAUSTED,
    BudgetAllocation,
)
from procurement.services import budget_service, purchase_order_service as po_service
from procurement.services.ledger import (
    LedgerErrorKind,
    get_current_fiscal_year,
    run_ledger_operation,
)

from helpers import count_audit_rows, create_envelope, read_envelope, single_item


def _assert_balanced(budget):
    assert budget.remaining_cents == budget.total_cents - budget.allocated_cents
    assert budget.remaining_cents >= 0


# ---------------------------------------------------------------------------
# create_envelope
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_envelope_starts_unallocated(session_factory, seed):
    budget = await create_envelope(session_factory, seed.engineering.id, 10_000)

    assert budget.total_cents == 10_000
    assert budget.allocated_cents == 0
    assert budget.remaining_cents == 10_000
    assert budget.status == BUDGET_ACTIVE
    assert await count_audit_rows(session_factory, "BUDGET_CREATION") == 1


@pytest.mark.asyncio
async def test_create_envelope_plans_head_notification(session_factory, seed):
    result = await run_ledger_operation(
        session_factory,
        budget_service.create_envelope,
        department_id=seed.engineering.id,
        fiscal_year=get_current_fiscal_year(),
        total_cents=5_000,
        notes="FY budget",
        actor_id=None,
    )

    assert result.success
    assert len(result.notifications) == 1
    assert result.notifications[0].template_id == "budget_allocated"
    assert result.notifications[0].recipient_emails == ["eng-head@example.com"]


@pytest.mark.asyncio
async def test_duplicate_envelope_conflicts_and_keeps_first(session_factory, seed):
    await create_envelope(session_factory, seed.engineering.id, 10_000)

    result = await run_ledger_operation(
        session_factory,
        budget_service.create_envelope,
        department_id=seed.engineering.id,
        fiscal_year=get_current_fiscal_year(),
        total_cents=99_000,
        notes=None,
        actor_id=None,
    )

    assert result.success is False
    assert result.error == LedgerErrorKind.CONFLICT
    budget = await read_envelope(session_factory, seed.engineering.id)
    assert budget.total_cents == 10_000
    assert await count_audit_rows(session_factory, "BUDGET_CREATION") == 1


@pytest.mark.asyncio
async def test_create_envelope_unknown_department(session_factory, seed):
    result = await run_ledger_operation(
        session_factory,
        budget_service.create_envelope,
        department_id=uuid.uuid4(),
        fiscal_year=2026,
        total_cents=1_000,
        notes=None,
        actor_id=None,
    )

    assert result.error == LedgerErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_create_envelope_rejects_non_positive_total(session_factory, seed):
    result = await run_ledger_operation(
        session_factory,
        budget_service.create_envelope,
        department_id=seed.engineering.id,
        fiscal_year=2026,
        total_cents=0,
        notes=None,
        actor_id=None,
    )

    assert result.error == LedgerErrorKind.INVALID_INPUT
    assert await read_envelope(session_factory, seed.engineering.id, 2026) is None


# ---------------------------------------------------------------------------
# allocate
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_allocate_debits_envelope(session_factory, seed):
    await create_envelope(session_factory, seed.engineering.id, 10_000)

    result = await run_ledger_operation(
        session_factory,
        budget_service.allocate,
        department_id=seed.engineering.id,
        amount_cents=2_500,
        notes="Q1 hardware",
        actor_id=None,
    )

    assert result.success
    budget = await read_envelope(session_factory, seed.engineering.id)
    assert budget.allocated_cents == 2_500
    assert budget.remaining_cents == 7_500
    _assert_balanced(budget)
    assert await count_audit_rows(session_factory, "BUDGET_ALLOCATION") == 1


@pytest.mark.asyncio
async def test_allocate_beyond_remaining_leaves_envelope_unchanged(session_factory, seed):
    await create_envelope(session_factory, seed.engineering.id, 1_000)

    result = await run_ledger_operation(
        session_factory,
        budget_service.allocate,
        department_id=seed.engineering.id,
        amount_cents=1_001,
        notes=None,
        actor_id=None,
    )

    assert result.error == LedgerErrorKind.INSUFFICIENT_FUNDS
    assert result.error_code == "BUDGET_EXCEEDED"
    budget = await read_envelope(session_factory, seed.engineering.id)
    assert budget.allocated_cents == 0
    assert budget.remaining_cents == 1_000
    assert await count_audit_rows(session_factory, "BUDGET_ALLOCATION") == 0


@pytest.mark.asyncio
async def test_allocate_whole_envelope_marks_exhausted(session_factory, seed):
    await create_envelope(session_factory, seed.engineering.id, 1_000)

    result = await run_ledger_operation(
        session_factory,
        budget_service.allocate,
        department_id=seed.engineering.id,
        amount_cents=1_000,
        notes=None,
        actor_id=None,
    )

    assert result.success
    budget = await read_envelope(session_factory, seed.engineering.id)
    assert budget.remaining_cents == 0
    assert budget.status == BUDGET_EXHAUSTED


@pytest.mark.asyncio
async def test_allocate_without_envelope_is_not_found(session_factory, seed):
    result = await run_ledger_operation(
        session_factory,
        budget_service.allocate,
        department_id=seed.engineering.id,
        amount_cents=100,
        notes=None,
        actor_id=None,
    )

    assert result.error == LedgerErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_closed_envelope_rejects_allocation(session_factory, seed):
    budget = await create_envelope(session_factory, seed.engineering.id, 1_000)
    closed = await run_ledger_operation(
        session_factory, budget_service.close_envelope, budget_id=budget.id, actor_id=None
    )
    assert closed.success
    assert closed.data.status == BUDGET_CLOSED

    result = await run_ledger_operation(
        session_factory,
        budget_service.allocate,
        department_id=seed.engineering.id,
        amount_cents=100,
        notes=None,
        actor_id=None,
    )

    assert result.error == LedgerErrorKind.CONFLICT
    assert result.error_code == "BUDGET_CLOSED"


# ---------------------------------------------------------------------------
# transfer
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_transfer_preserves_sum_of_remaining(session_factory, seed):
    await create_envelope(session_factory, seed.engineering.id, 10_000)
    await create_envelope(session_factory, seed.operations.id, 4_000)
    await run_ledger_operation(
        session_factory,
        budget_service.allocate,
        department_id=seed.engineering.id,
        amount_cents=3_000,
        notes=None,
        actor_id=None,
    )

    result = await run_ledger_operation(
        session_factory,
        budget_service.transfer,
        from_department_id=seed.engineering.id,
        to_department_id=seed.operations.id,
        amount_cents=2_000,
        reason="Re-plan",
        actor_id=None,
    )

    assert result.success
    source = await read_envelope(session_factory, seed.engineering.id)
    target = await read_envelope(session_factory, seed.operations.id)
    assert source.remaining_cents == 5_000
    assert target.remaining_cents == 6_000
    assert source.remaining_cents + target.remaining_cents == 7_000 + 4_000
    assert source.allocated_cents == 3_000
    _assert_balanced(source)
    _assert_balanced(target)
    assert {n.template_id for n in result.notifications} == {"budget_transfer"}
    assert sorted(result.notifications[0].recipient_emails) == [
        "eng-head@example.com",
        "ops-head@example.com",
    ]


@pytest.mark.asyncio
async def test_transfer_more_than_remaining_fails(session_factory, seed):
    await create_envelope(session_factory, seed.engineering.id, 1_000)
    await create_envelope(session_factory, seed.operations.id, 1_000)

    result = await run_ledger_operation(
        session_factory,
        budget_service.transfer,
        from_department_id=seed.engineering.id,
        to_department_id=seed.operations.id,
        amount_cents=1_500,
        reason=None,
        actor_id=None,
    )

    assert result.error == LedgerErrorKind.INSUFFICIENT_FUNDS
    assert (await read_envelope(session_factory, seed.engineering.id)).remaining_cents == 1_000
    assert (await read_envelope(session_factory, seed.operations.id)).remaining_cents == 1_000


@pytest.mark.asyncio
async def test_transfer_to_same_department_is_invalid(session_factory, seed):
    await create_envelope(session_factory, seed.engineering.id, 1_000)

    result = await run_ledger_operation(
        session_factory,
        budget_service.transfer,
        from_department_id=seed.engineering.id,
        to_department_id=seed.engineering.id,
        amount_cents=100,
        reason=None,
        actor_id=None,
    )

    assert result.error == LedgerErrorKind.INVALID_INPUT


@pytest.mark.asyncio
async def test_transfer_requires_both_envelopes(session_factory, seed):
    await create_envelope(session_factory, seed.engineering.id, 1_000)

    result = await run_ledger_operation(
        session_factory,
        budget_service.transfer,
        from_department_id=seed.engineering.id,
        to_department_id=seed.operations.id,
        amount_cents=100,
        reason=None,
        actor_id=None,
    )

    assert result.error == LedgerErrorKind.NOT_FOUND
    assert (await read_envelope(session_factory, seed.engineering.id)).remaining_cents == 1_000


# ---------------------------------------------------------------------------
# update / delete / reports
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_update_envelope_recomputes_remaining(session_factory, seed):
    budget = await create_envelope(session_factory, seed.engineering.id, 10_000)
    await run_ledger_operation(
        session_factory,
        budget_service.allocate,
        department_id=seed.engineering.id,
        amount_cents=4_000,
        notes=None,
        actor_id=None,
    )

    result = await run_ledger_operation(
        session_factory,
        budget_service.update_envelope,
        budget_id=budget.id,
        total_cents=6_000,
        notes=None,
        actor_id=None,
    )

    assert result.success
    assert result.data.remaining_cents == 2_000
    _assert_balanced(result.data)


@pytest.mark.asyncio
async def test_update_envelope_below_allocated_fails(session_factory, seed):
    budget = await create_envelope(session_factory, seed.engineering.id, 10_000)
    await run_ledger_operation(
        session_factory,
        budget_service.allocate,
        department_id=seed.engineering.id,
        amount_cents=4_000,
        notes=None,
        actor_id=None,
    )

    result = await run_ledger_operation(
        session_factory,
        budget_service.update_envelope,
        budget_id=budget.id,
        total_cents=3_000,
        notes=None,
        actor_id=None,
    )

    assert result.error == LedgerErrorKind.INSUFFICIENT_FUNDS
    assert (await read_envelope(session_factory, seed.engineering.id)).total_cents == 10_000


@pytest.mark.asyncio
async def test_delete_envelope_refused_while_purchase_orders_exist(session_factory, seed):
    budget = await create_envelope(session_factory, seed.engineering.id, 10_000)
    created = await run_ledger_operation(
        session_factory,
        po_service.create_purchase_order,
        vendor_id=seed.vendor.id,
        department_id=seed.engineering.id,
        items=single_item(1_000),
        total_cents=1_000,
    )
    assert created.success

    result = await run_ledger_operation(
        session_factory, budget_service.delete_envelope, budget_id=budget.id, actor_id=None
    )

    assert result.error == LedgerErrorKind.CONFLICT
    assert result.error_code == "BUDGET_HAS_PURCHASE_ORDERS"
    assert await read_envelope(session_factory, seed.engineering.id) is not None


@pytest.mark.asyncio
async def test_delete_unused_envelope(session_factory, seed):
    budget = await create_envelope(session_factory, seed.engineering.id, 10_000)

    result = await run_ledger_operation(
        session_factory, budget_service.delete_envelope, budget_id=budget.id, actor_id=None
    )

    assert result.success
    assert await read_envelope(session_factory, seed.engineering.id) is None
    assert await count_audit_rows(session_factory, "BUDGET_DELETION") == 1


@pytest.mark.asyncio
async def test_utilization_sums_purchase_orders_by_status(session_factory, seed):
    await create_envelope(session_factory, seed.engineering.id, 10_000)
    first = await run_ledger_operation(
        session_factory,
        po_service.create_purchase_order,
        vendor_id=seed.vendor.id,
        department_id=seed.engineering.id,
        items=single_item(2_000),
        total_cents=2_000,
    )
    await run_ledger_operation(
        session_factory,
        po_service.create_purchase_order,
        vendor_id=seed.vendor.id,
        department_id=seed.engineering.id,
        items=single_item(500),
        total_cents=500,
    )
    await run_ledger_operation(
        session_factory, po_service.approve_purchase_order, po_id=first.data.id, comments="ok"
    )

    async with session_factory() as session:
        result = await budget_service.get_utilization(session, seed.engineering.id)

    assert result.success
    u = result.data
    assert u.total_cents == 10_000
    assert u.remaining_cents == 7_500
    assert u.utilization_percentage == 25.0
    assert u.total_purchase_orders == 2
    assert u.approved_cents == 2_000
    assert u.draft_cents == 500
    assert u.pending_cents == 0


@pytest.mark.asyncio
async def test_utilization_without_envelope_is_not_found(session_factory, seed):
    async with session_factory() as session:
        result = await budget_service.get_utilization(session, seed.engineering.id, 2031)
    assert result.error == LedgerErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_fiscal_year_report_lists_every_department(session_factory, seed):
    await create_envelope(session_factory, seed.engineering.id, 10_000, fiscal_year=2031)
    await create_envelope(session_factory, seed.operations.id, 5_000, fiscal_year=2031)
    await create_envelope(session_factory, seed.operations.id, 7_000, fiscal_year=2032)

    async with session_factory() as session:
        result = await budget_service.get_fiscal_year_report(session, 2031)

    assert result.success
    assert {row.department_id for row in result.data} == {seed.engineering.id, seed.operations.id}
    assert sum(row.total_cents for row in result.data) == 15_000


# ---------------------------------------------------------------------------
# audit atomicity
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_audit_failure_rolls_back_allocation(session_factory, seed):
    await create_envelope(session_factory, seed.engineering.id, 1_000)

    with patch(
        "procurement.services.budget_service.create_audit_log",
        new=AsyncMock(side_effect=RuntimeError("audit store unavailable")),
    ):
        with pytest.raises(RuntimeError):
            await run_ledger_operation(
                session_factory,
                budget_service.allocate,
                department_id=seed.engineering.id,
                amount_cents=400,
                notes=None,
                actor_id=None,
            )

    budget = await read_envelope(session_factory, seed.engineering.id)
    assert budget.remaining_cents == 1_000
    assert budget.allocated_cents == 0
    _assert_balanced(budget)
    async with session_factory() as session:
        rows = await session.execute(select(func.count(BudgetAllocation.id)))
    assert rows.scalar() == 0
    assert await count_audit_rows(session_factory, "BUDGET_ALLOCATION") == 0


# ---------------------------------------------------------------------------
# history
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_history_lists_allocations_and_both_transfer_directions(session_factory, seed):
    await create_envelope(session_factory, seed.engineering.id, 10_000)
    await create_envelope(session_factory, seed.operations.id, 5_000)
    await run_ledger_operation(
        session_factory,
        budget_service.allocate,
        department_id=seed.engineering.id,
        amount_cents=1_000,
        notes="Laptops",
        actor_id=None,
    )
    for source, target, amount in (
        (seed.engineering, seed.operations, 2_000),
        (seed.operations, seed.engineering, 500),
    ):
        result = await run_ledger_operation(
            session_factory,
            budget_service.transfer,
            from_department_id=source.id,
            to_department_id=target.id,
            amount_cents=amount,
            reason="Re-plan",
            actor_id=None,
        )
        assert result.success

    async with session_factory() as session:
        history = await budget_service.get_budget_history(session, seed.engineering.id)

    assert history.success
    entries = history.data
    assert sorted((e.entry_type, e.amount_cents) for e in entries) == [
        (budget_service.HISTORY_ALLOCATION, 1_000),
        (budget_service.HISTORY_TRANSFER_IN, 500),
        (budget_service.HISTORY_TRANSFER_OUT, 2_000),
    ]
    timestamps = [e.created_at for e in entries]
    assert timestamps == sorted(timestamps, reverse=True)
    transfers = [e for e in entries if e.entry_type != budget_service.HISTORY_ALLOCATION]
    assert {e.counterpart_department_id for e in transfers} == {seed.operations.id}

    async with session_factory() as session:
        ops_history = await budget_service.get_budget_history(session, seed.operations.id)
    assert sorted(e.entry_type for e in ops_history.data) == [
        budget_service.HISTORY_TRANSFER_IN,
        budget_service.HISTORY_TRANSFER_OUT,
    ]


@pytest.mark.asyncio
async def test_history_is_scoped_to_fiscal_year(session_factory, seed):
    await create_envelope(session_factory, seed.engineering.id, 10_000)
    await run_ledger_operation(
        session_factory,
        budget_service.allocate,
        department_id=seed.engineering.id,
        amount_cents=1_000,
        notes=None,
        actor_id=None,
    )

    async with session_factory() as session:
        other_year = await budget_service.get_budget_history(
            session, seed.engineering.id, get_current_fiscal_year() + 1
        )
        invalid_id = await budget_service.get_budget_history(session, "nope")

    assert other_year.success
    assert other_year.data == []
    assert invalid_id.error == LedgerErrorKind.INVALID_INPUT
