"""initial ledger schema: departments, vendors, budgets, purchase orders, contracts

Revision ID: 3f9a1c2d7e10
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

revision = "3f9a1c2d7e10"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "departments",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("code", sa.String(50), nullable=True),
        sa.Column("head_email", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code", name="uq_department_code"),
    )

    op.create_table(
        "vendors",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("company_name", sa.String(200), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("status", sa.String(50), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_vendors_status", "vendors", ["status"])
    op.create_index("idx_vendors_email", "vendors", ["email"])

    op.create_table(
        "budgets",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("department_id", sa.Uuid(), nullable=False),
        sa.Column("fiscal_year", sa.Integer(), nullable=False),
        sa.Column("total_cents", sa.BigInteger(), nullable=False),
        sa.Column("allocated_cents", sa.BigInteger(), nullable=False),
        sa.Column("remaining_cents", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.String(20), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["department_id"], ["departments.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("department_id", "fiscal_year", name="uq_budget_dept_year"),
        sa.CheckConstraint("total_cents >= 0", name="chk_budget_total"),
        sa.CheckConstraint("allocated_cents >= 0", name="chk_budget_allocated"),
        sa.CheckConstraint("remaining_cents >= 0", name="chk_budget_remaining"),
        sa.CheckConstraint(
            "remaining_cents = total_cents - allocated_cents",
            name="chk_budget_balance",
        ),
        sa.CheckConstraint(
            "status IN ('ACTIVE', 'EXHAUSTED', 'CLOSED')",
            name="chk_budget_status",
        ),
    )
    op.create_index("idx_budgets_dept", "budgets", ["department_id", "fiscal_year"])

    op.create_table(
        "budget_allocations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("budget_id", sa.Uuid(), nullable=False),
        sa.Column("department_id", sa.Uuid(), nullable=False),
        sa.Column("amount_cents", sa.BigInteger(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["budget_id"], ["budgets.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["department_id"], ["departments.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("amount_cents > 0", name="chk_allocation_positive"),
    )
    op.create_index("idx_allocations_budget", "budget_allocations", ["budget_id"])

    op.create_table(
        "budget_transfers",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("from_department_id", sa.Uuid(), nullable=False),
        sa.Column("to_department_id", sa.Uuid(), nullable=False),
        sa.Column("from_budget_id", sa.Uuid(), nullable=False),
        sa.Column("to_budget_id", sa.Uuid(), nullable=False),
        sa.Column("fiscal_year", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.BigInteger(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["from_department_id"], ["departments.id"]),
        sa.ForeignKeyConstraint(["to_department_id"], ["departments.id"]),
        sa.ForeignKeyConstraint(["from_budget_id"], ["budgets.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["to_budget_id"], ["budgets.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("amount_cents > 0", name="chk_transfer_positive"),
        sa.CheckConstraint(
            "from_department_id <> to_department_id", name="chk_transfer_distinct"
        ),
    )
    op.create_index("idx_transfers_from", "budget_transfers", ["from_department_id", "fiscal_year"])
    op.create_index("idx_transfers_to", "budget_transfers", ["to_department_id", "fiscal_year"])

    op.create_table(
        "contracts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("contract_number", sa.String(50), nullable=False),
        sa.Column("vendor_id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=True),
        sa.Column("value_cents", sa.BigInteger(), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("terms_conditions", sa.Text(), nullable=True),
        sa.Column("renewal_terms", sa.Text(), nullable=True),
        sa.Column("approved_by", sa.Uuid(), nullable=True),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.Column("approval_comments", sa.Text(), nullable=True),
        sa.Column("rejected_by", sa.Uuid(), nullable=True),
        sa.Column("rejected_at", sa.DateTime(), nullable=True),
        sa.Column("rejection_comments", sa.Text(), nullable=True),
        sa.Column("terminated_by", sa.Uuid(), nullable=True),
        sa.Column("terminated_at", sa.DateTime(), nullable=True),
        sa.Column("termination_reason", sa.Text(), nullable=True),
        sa.Column("renewed_by", sa.Uuid(), nullable=True),
        sa.Column("renewed_at", sa.DateTime(), nullable=True),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["vendor_id"], ["vendors.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("contract_number"),
        sa.CheckConstraint("start_date < end_date", name="chk_contract_dates"),
        sa.CheckConstraint(
            "status IN ('DRAFT','ACTIVE','EXPIRED','TERMINATED','REJECTED','RENEWED')",
            name="chk_contract_status",
        ),
    )
    op.create_index("idx_contracts_vendor", "contracts", ["vendor_id"])
    op.create_index("idx_contracts_status", "contracts", ["status"])
    op.create_index("idx_contracts_end_date", "contracts", ["end_date"])

    op.create_table(
        "purchase_orders",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("po_number", sa.String(50), nullable=False),
        sa.Column("vendor_id", sa.Uuid(), nullable=False),
        sa.Column("contract_id", sa.Uuid(), nullable=True),
        sa.Column("department_id", sa.Uuid(), nullable=False),
        sa.Column("status", sa.String(20), nullable=True),
        sa.Column("total_cents", sa.BigInteger(), nullable=False),
        sa.Column("delivery_date", sa.Date(), nullable=True),
        sa.Column("delivery_address", sa.Text(), nullable=True),
        sa.Column("special_instructions", sa.Text(), nullable=True),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        sa.Column("approved_by", sa.Uuid(), nullable=True),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.Column("approval_comments", sa.Text(), nullable=True),
        sa.Column("rejected_by", sa.Uuid(), nullable=True),
        sa.Column("rejected_at", sa.DateTime(), nullable=True),
        sa.Column("rejection_comments", sa.Text(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["vendor_id"], ["vendors.id"]),
        sa.ForeignKeyConstraint(["contract_id"], ["contracts.id"]),
        sa.ForeignKeyConstraint(["department_id"], ["departments.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("po_number"),
        sa.CheckConstraint("total_cents > 0", name="chk_po_total_positive"),
        sa.CheckConstraint(
            "status IN ('DRAFT', 'PENDING', 'APPROVED', 'REJECTED', 'COMPLETED')",
            name="chk_po_status",
        ),
    )
    op.create_index("idx_po_vendor", "purchase_orders", ["vendor_id"])
    op.create_index("idx_po_status", "purchase_orders", ["status"])
    op.create_index("idx_po_dept_created", "purchase_orders", ["department_id", "created_at"])

    op.create_table(
        "po_line_items",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("po_id", sa.Uuid(), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.BigInteger(), nullable=False),
        sa.ForeignKeyConstraint(["po_id"], ["purchase_orders.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("po_id", "line_number", name="uq_po_line_item"),
        sa.CheckConstraint("quantity > 0", name="chk_po_line_qty"),
        sa.CheckConstraint("unit_price_cents > 0", name="chk_po_line_price"),
    )
    op.create_index("idx_po_items_po", "po_line_items", ["po_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.Uuid(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("actor_id", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
    op.create_index("idx_audit_actor", "audit_logs", ["actor_id"])
    op.create_index("idx_audit_created", "audit_logs", [sa.text("created_at DESC")])

    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("prefix", sa.String(10), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("current_value", sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("prefix", "year", name="uq_document_sequence_prefix_year"),
    )


def downgrade() -> None:
    op.drop_table("document_sequences")
    op.drop_index("idx_audit_created", table_name="audit_logs")
    op.drop_index("idx_audit_actor", table_name="audit_logs")
    op.drop_index("idx_audit_entity", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("idx_po_items_po", table_name="po_line_items")
    op.drop_table("po_line_items")
    op.drop_index("idx_po_dept_created", table_name="purchase_orders")
    op.drop_index("idx_po_status", table_name="purchase_orders")
    op.drop_index("idx_po_vendor", table_name="purchase_orders")
    op.drop_table("purchase_orders")
    op.drop_index("idx_contracts_end_date", table_name="contracts")
    op.drop_index("idx_contracts_status", table_name="contracts")
    op.drop_index("idx_contracts_vendor", table_name="contracts")
    op.drop_table("contracts")
    op.drop_index("idx_transfers_to", table_name="budget_transfers")
    op.drop_index("idx_transfers_from", table_name="budget_transfers")
    op.drop_table("budget_transfers")
    op.drop_index("idx_allocations_budget", table_name="budget_allocations")
    op.drop_table("budget_allocations")
    op.drop_index("idx_budgets_dept", table_name="budgets")
    op.drop_table("budgets")
    op.drop_index("idx_vendors_email", table_name="vendors")
    op.drop_index("idx_vendors_status", table_name="vendors")
    op.drop_table("vendors")
    op.drop_table("departments")
