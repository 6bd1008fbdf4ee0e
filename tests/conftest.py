"""
Shared fixtures.

Ledger tests run against a file-backed SQLite database (aiosqlite) with
tables created from the model metadata. Set LEDGER_TEST_DATABASE_URL to an
asyncpg URL to run the same tests against PostgreSQL; the schema is dropped
and recreated for every test.
"""

import os
from types import SimpleNamespace

import pytest

import procurement.models  # noqa: F401
from procurement.database import Base, build_engine, build_session_factory
from procurement.models.department import Department
from procurement.models.vendor import Vendor


@pytest.fixture
async def engine(tmp_path):
    url = os.getenv("LEDGER_TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}"
    engine = build_engine(url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def seed(session_factory):
    """Two departments and one vendor."""
    async with session_factory() as session:
        engineering = Department(name="Engineering", code="ENG", head_email="eng-head@example.com")
        operations = Department(name="Operations", code="OPS", head_email="ops-head@example.com")
        vendor = Vendor(company_name="Acme Supplies", email="orders@acme.example.com")
        session.add_all([engineering, operations, vendor])
        await session.commit()
    return SimpleNamespace(engineering=engineering, operations=operations, vendor=vendor)
