"""HTTP surface: status mapping, error body shape and role checks."""

import uuid

import pytest
from httpx import ASGITransport, AsyncClient

from procurement.config import settings
from procurement.main import create_app
from procurement.middleware.auth import get_current_user
from procurement.services.ledger import get_current_fiscal_year


@pytest.fixture
async def make_client(session_factory):
    clients = []

    def _make(role: str = "admin", department_id=None):
        app = create_app()
        app.state.session_factory = session_factory
        user = {
            "user_id": str(uuid.uuid4()),
            "role": role,
            "email": f"{role}@example.com",
            "department_id": str(department_id) if department_id else None,
        }
        app.dependency_overrides[get_current_user] = lambda: user
        client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        clients.append(client)
        return client

    yield _make
    for client in clients:
        await client.aclose()


@pytest.fixture
def admin(make_client):
    return make_client("admin")


def _po_body(seed, total_cents, department=None):
    department = department or seed.engineering
    return {
        "vendor_id": str(seed.vendor.id),
        "department_id": str(department.id),
        "items": [{"description": "Monitors", "quantity": 2, "unit_price_cents": total_cents // 2}],
        "total_cents": total_cents,
    }


async def _create_budget(client, seed, total_cents=10_000, department=None):
    department = department or seed.engineering
    return await client.post(
        "/api/v1/budgets",
        json={
            "department_id": str(department.id),
            "fiscal_year": get_current_fiscal_year(),
            "total_cents": total_cents,
        },
    )


@pytest.mark.asyncio
async def test_health(admin):
    response = await admin.get("/health")
    assert response.status_code == 200
    assert response.json()["checks"]["db"] == "ok"


@pytest.mark.asyncio
async def test_create_budget_then_duplicate(admin, seed):
    created = await _create_budget(admin, seed)
    assert created.status_code == 201
    body = created.json()
    assert body["remaining_cents"] == 10_000
    assert body["status"] == "ACTIVE"

    duplicate = await _create_budget(admin, seed)
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["code"] == "BUDGET_ALREADY_EXISTS"


@pytest.mark.asyncio
async def test_invalid_department_id_is_400(admin):
    response = await admin.post(
        "/api/v1/budgets/allocate",
        json={"department_id": "not-a-uuid", "amount_cents": 100},
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_DEPARTMENT_ID"


@pytest.mark.asyncio
async def test_missing_budget_is_404(admin, seed):
    response = await admin.post(
        "/api/v1/budgets/allocate",
        json={"department_id": str(seed.operations.id), "amount_cents": 100},
    )
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "BUDGET_NOT_FOUND"


@pytest.mark.asyncio
async def test_schema_validation_uses_error_envelope(admin, seed):
    response = await admin.post(
        "/api/v1/budgets",
        json={"department_id": str(seed.engineering.id), "fiscal_year": 2026, "total_cents": 0},
    )
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_insufficient_funds_is_422(admin, seed):
    await _create_budget(admin, seed, total_cents=1_000)

    response = await admin.post("/api/v1/purchase-orders", json=_po_body(seed, 2_000))

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "BUDGET_EXCEEDED"


@pytest.mark.asyncio
async def test_role_check_is_403(make_client, seed):
    vendor_client = make_client("vendor")
    response = await _create_budget(vendor_client, seed)
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "INSUFFICIENT_PERMISSIONS"


@pytest.mark.asyncio
async def test_manager_is_scoped_to_own_department(make_client, admin, seed):
    await _create_budget(admin, seed)
    manager = make_client("manager", department_id=seed.operations.id)
    response = await manager.get(f"/api/v1/budgets/utilization/{seed.engineering.id}")
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_purchase_order_flow(admin, seed):
    await _create_budget(admin, seed, total_cents=10_000)

    created = await admin.post("/api/v1/purchase-orders", json=_po_body(seed, 4_000))
    assert created.status_code == 201
    po = created.json()
    assert po["status"] == "DRAFT"
    assert po["po_number"].startswith(f"PO-{get_current_fiscal_year()}-")
    assert len(po["line_items"]) == 1

    submitted = await admin.post(f"/api/v1/purchase-orders/{po['id']}/submit")
    assert submitted.json()["status"] == "PENDING"

    approved = await admin.post(
        f"/api/v1/purchase-orders/{po['id']}/approve", json={"comments": "ok"}
    )
    assert approved.status_code == 200
    assert approved.json()["status"] == "APPROVED"

    # approved orders are no longer editable
    edit = await admin.put(f"/api/v1/purchase-orders/{po['id']}", json=_po_body(seed, 2_000))
    assert edit.status_code == 409

    utilization = await admin.get(f"/api/v1/budgets/utilization/{seed.engineering.id}")
    assert utilization.status_code == 200
    body = utilization.json()
    assert body["remaining_cents"] == 6_000
    assert body["approved_cents"] == 4_000
    assert body["utilization_percentage"] == 40.0


@pytest.mark.asyncio
async def test_rejected_po_releases_budget(admin, seed):
    await _create_budget(admin, seed, total_cents=10_000)
    po = (await admin.post("/api/v1/purchase-orders", json=_po_body(seed, 4_000))).json()
    await admin.post(f"/api/v1/purchase-orders/{po['id']}/submit")

    rejected = await admin.post(
        f"/api/v1/purchase-orders/{po['id']}/reject", json={"comments": "too expensive"}
    )
    assert rejected.status_code == 200
    assert rejected.json()["status"] == "REJECTED"

    utilization = await admin.get(f"/api/v1/budgets/utilization/{seed.engineering.id}")
    assert utilization.json()["remaining_cents"] == 10_000


@pytest.mark.asyncio
async def test_unknown_purchase_order_is_404(admin):
    response = await admin.get(f"/api/v1/purchase-orders/{uuid.uuid4()}")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_expire_job_requires_secret(admin, monkeypatch):
    monkeypatch.setattr(settings, "INTERNAL_JOB_SECRET", "job-secret")

    forbidden = await admin.post("/internal/jobs/expire-contracts")
    assert forbidden.status_code == 403

    allowed = await admin.post(
        "/internal/jobs/expire-contracts", headers={"X-Internal-Secret": "job-secret"}
    )
    assert allowed.status_code == 200
    assert allowed.json() == {"expired": 0, "contract_numbers": []}


@pytest.mark.asyncio
async def test_manager_cannot_act_on_other_department_order(make_client, admin, seed):
    await _create_budget(admin, seed, total_cents=10_000)
    await _create_budget(admin, seed, total_cents=10_000, department=seed.operations)
    po = (await admin.post("/api/v1/purchase-orders", json=_po_body(seed, 4_000))).json()

    ops_manager = make_client("manager", department_id=seed.operations.id)

    moved = await ops_manager.put(
        f"/api/v1/purchase-orders/{po['id']}",
        json=_po_body(seed, 4_000, department=seed.operations),
    )
    assert moved.status_code == 403
    assert moved.json()["error"]["code"] == "INSUFFICIENT_PERMISSIONS"

    submitted = await ops_manager.post(f"/api/v1/purchase-orders/{po['id']}/submit")
    assert submitted.status_code == 403

    completed = await ops_manager.post(f"/api/v1/purchase-orders/{po['id']}/complete")
    assert completed.status_code == 403

    # neither envelope moved and the order is untouched
    eng = (await admin.get(f"/api/v1/budgets/utilization/{seed.engineering.id}")).json()
    ops = (await admin.get(f"/api/v1/budgets/utilization/{seed.operations.id}")).json()
    assert eng["remaining_cents"] == 6_000
    assert ops["remaining_cents"] == 10_000
    current = (await admin.get(f"/api/v1/purchase-orders/{po['id']}")).json()
    assert current["status"] == "DRAFT"
    assert current["department_id"] == str(seed.engineering.id)


@pytest.mark.asyncio
async def test_manager_can_submit_own_department_order(make_client, admin, seed):
    await _create_budget(admin, seed, total_cents=10_000)
    po = (await admin.post("/api/v1/purchase-orders", json=_po_body(seed, 4_000))).json()

    eng_manager = make_client("manager", department_id=seed.engineering.id)
    submitted = await eng_manager.post(f"/api/v1/purchase-orders/{po['id']}/submit")

    assert submitted.status_code == 200
    assert submitted.json()["status"] == "PENDING"


@pytest.mark.asyncio
async def test_budget_history_endpoint(make_client, admin, seed):
    await _create_budget(admin, seed, total_cents=10_000)
    allocated = await admin.post(
        "/api/v1/budgets/allocate",
        json={"department_id": str(seed.engineering.id), "amount_cents": 1_500, "notes": "Licences"},
    )
    assert allocated.status_code == 200

    response = await admin.get(f"/api/v1/budgets/history/{seed.engineering.id}")
    assert response.status_code == 200
    body = response.json()
    assert body["fiscal_year"] == get_current_fiscal_year()
    assert [(e["entry_type"], e["amount_cents"], e["note"]) for e in body["entries"]] == [
        ("ALLOCATION", 1_500, "Licences"),
    ]

    ops_manager = make_client("manager", department_id=seed.operations.id)
    forbidden = await ops_manager.get(f"/api/v1/budgets/history/{seed.engineering.id}")
    assert forbidden.status_code == 403
