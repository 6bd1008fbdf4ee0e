"""Unit tests for purchase order amount validation."""

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest

from procurement.services.ledger import LedgerErrorKind
from procurement.services.purchase_order_service import (
    LineItemInput,
    create_purchase_order,
    validate_po_amounts,
)


def _items(*lines):
    return [LineItemInput(description=d, quantity=q, unit_price_cents=p) for d, q, p in lines]


def test_matching_total_passes():
    items = _items(("Chair", 4, 12_500), ("Desk", 1, 40_000))
    assert validate_po_amounts(items, 90_000) is None


def test_total_mismatch():
    items = _items(("Chair", 4, 12_500))
    error = validate_po_amounts(items, 50_001)
    assert error.error == LedgerErrorKind.INVALID_INPUT
    assert error.error_code == "TOTAL_MISMATCH"


@pytest.mark.parametrize(
    "items, total, code",
    [
        ([], 100, "NO_LINE_ITEMS"),
        (_items(("Chair", 1, 100)), 0, "INVALID_AMOUNT"),
        (_items(("Chair", 0, 100)), 100, "INVALID_LINE_ITEM"),
        (_items(("Chair", 1, -100)), 100, "INVALID_LINE_ITEM"),
        (_items(("  ", 1, 100)), 100, "INVALID_LINE_ITEM"),
    ],
)
def test_invalid_inputs(items, total, code):
    error = validate_po_amounts(items, total)
    assert error.error_code == code


@pytest.mark.asyncio
async def test_create_rejects_malformed_ids_before_touching_the_store():
    session = AsyncMock()
    session.add = MagicMock()

    result = await create_purchase_order(
        session,
        vendor_id="bad",
        department_id=uuid.uuid4(),
        items=_items(("Chair", 1, 100)),
        total_cents=100,
    )

    assert result.error == LedgerErrorKind.INVALID_INPUT
    session.execute.assert_not_called()
    session.get.assert_not_called()
