"""Central model registry — import all models so Alembic autodiscover works."""

from procurement.database import Base  # noqa: F401

from procurement.models.department import Department  # noqa: F401
from procurement.models.vendor import Vendor  # noqa: F401
from procurement.models.budget import Budget, BudgetAllocation, BudgetTransfer  # noqa: F401
from procurement.models.contract import Contract  # noqa: F401
from procurement.models.purchase_order import PurchaseOrder, PoLineItem  # noqa: F401
from procurement.models.audit_log import AuditLog  # noqa: F401
from procurement.models.sequence import DocumentSequence  # noqa: F401
