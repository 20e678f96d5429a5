"""Initial salon POS schema: bills, stock batches, loyalty, referrals, audit

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
    ]


def upgrade():
    op.create_table(
        "bills",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("document_number", sa.String(64), nullable=False),
        sa.Column("branch_id", sa.String(64), nullable=False),
        sa.Column("client_id", sa.String(64), nullable=True),
        sa.Column("client_name", sa.String(255), nullable=True),
        sa.Column("appointment_id", sa.String(64), nullable=True),
        sa.Column("sales_type", sa.String(16), nullable=False),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("discount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("discount_type", sa.String(16), nullable=False, server_default="fixed"),
        sa.Column("discount_value", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("promotion_code", sa.String(64), nullable=True),
        sa.Column("promotion_id", sa.String(64), nullable=True),
        sa.Column("promotion_discount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("loyalty_points_used", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("loyalty_discount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tax_rate_bps", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tax_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("payment_method", sa.String(16), nullable=False),
        sa.Column("payment_reference", sa.String(128), nullable=True),
        sa.Column("receipt_number", sa.String(64), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="paid"),
        sa.Column("created_by", sa.String(64), nullable=False),
        sa.Column("created_by_name", sa.String(255), nullable=True),
        sa.Column("refund_amount_cents", sa.Integer(), nullable=True),
        sa.Column("refund_reason", sa.String(255), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("void_reason", sa.String(255), nullable=True),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_by", sa.String(64), nullable=True),
        sa.Column("approved_by_name", sa.String(255), nullable=True),
        sa.Column("witness_id", sa.String(64), nullable=True),
        sa.Column("witness_email", sa.String(255), nullable=True),
        sa.Column("witness_name", sa.String(255), nullable=True),
        *_timestamps(),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("branch_id", "document_number", name="uq_bills_branch_docnum"),
        sa.CheckConstraint("subtotal_cents >= 0", name="ck_bills_subtotal_nonneg"),
        sa.CheckConstraint("discount_cents >= 0", name="ck_bills_discount_nonneg"),
        sa.CheckConstraint("tax_cents >= 0", name="ck_bills_tax_nonneg"),
        sa.CheckConstraint("total_cents >= 0", name="ck_bills_total_nonneg"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("bills", schema=None) as batch_op:
        batch_op.create_index("ix_bills_branch_id", ["branch_id"], unique=False)
        batch_op.create_index("ix_bills_client_id", ["client_id"], unique=False)
        batch_op.create_index("ix_bills_status", ["status"], unique=False)
        batch_op.create_index("ix_bills_created_at", ["created_at"], unique=False)
        batch_op.create_index("ix_bills_branch_status_created", ["branch_id", "status", "created_at"], unique=False)
        batch_op.create_index("ix_bills_client_branch_status", ["client_id", "branch_id", "status"], unique=False)

    op.create_table(
        "bill_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("bill_id", sa.Integer(), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("line_type", sa.String(16), nullable=False),
        sa.Column("item_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("line_total_cents", sa.Integer(), nullable=False),
        sa.Column("staff_id", sa.String(64), nullable=True),
        sa.Column("staff_name", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["bill_id"], ["bills.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("bill_id", "line_number", name="uq_bill_lines_bill_line"),
        sa.CheckConstraint("quantity > 0", name="ck_bill_lines_quantity_pos"),
        sa.CheckConstraint("unit_price_cents >= 0", name="ck_bill_lines_price_nonneg"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("bill_lines", schema=None) as batch_op:
        batch_op.create_index("ix_bill_lines_bill_id", ["bill_id"], unique=False)
        batch_op.create_index("ix_bill_lines_item_id", ["item_id"], unique=False)
        batch_op.create_index("ix_bill_lines_staff_id", ["staff_id"], unique=False)

    op.create_table(
        "stock_batches",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.String(64), nullable=False),
        sa.Column("product_id", sa.String(64), nullable=False),
        sa.Column("batch_number", sa.String(64), nullable=True),
        sa.Column("usage_type", sa.String(16), nullable=False, server_default="otc"),
        sa.Column("received_quantity", sa.Integer(), nullable=False),
        sa.Column("remaining_quantity", sa.Integer(), nullable=False),
        sa.Column("unit_cost_cents", sa.Integer(), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="active"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("remaining_quantity >= 0", name="ck_stock_batches_remaining_nonneg"),
        sa.CheckConstraint("remaining_quantity <= received_quantity", name="ck_stock_batches_remaining_le_received"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("stock_batches", schema=None) as batch_op:
        batch_op.create_index("ix_stock_batches_branch_id", ["branch_id"], unique=False)
        batch_op.create_index("ix_stock_batches_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_stock_batches_status", ["status"], unique=False)
        batch_op.create_index(
            "ix_stock_batches_fifo",
            ["branch_id", "product_id", "usage_type", "status", "received_at"],
            unique=False,
        )

    op.create_table(
        "stock_movements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.String(64), nullable=False),
        sa.Column("product_id", sa.String(64), nullable=False),
        sa.Column("product_name", sa.String(255), nullable=True),
        sa.Column("usage_type", sa.String(16), nullable=False),
        sa.Column("movement_type", sa.String(16), nullable=False, server_default="stock_out"),
        sa.Column("requested_quantity", sa.Integer(), nullable=False),
        sa.Column("deducted_quantity", sa.Integer(), nullable=False),
        sa.Column("cost_cents", sa.Integer(), nullable=True),
        sa.Column("reason", sa.String(64), nullable=False),
        sa.Column("bill_id", sa.Integer(), nullable=True),
        sa.Column("notes", sa.String(255), nullable=True),
        sa.Column("performed_by", sa.String(64), nullable=False),
        sa.Column("allocations", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["bill_id"], ["bills.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("stock_movements", schema=None) as batch_op:
        batch_op.create_index("ix_stock_movements_branch_id", ["branch_id"], unique=False)
        batch_op.create_index("ix_stock_movements_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_stock_movements_bill_id", ["bill_id"], unique=False)
        batch_op.create_index("ix_stock_movements_branch_created", ["branch_id", "created_at"], unique=False)

    op.create_table(
        "service_product_mappings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("service_id", sa.String(64), nullable=False),
        sa.Column("product_id", sa.String(64), nullable=False),
        sa.Column("product_name", sa.String(255), nullable=True),
        sa.Column("quantity_per_service", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("service_id", "product_id", name="uq_service_product_mappings"),
        sa.CheckConstraint("quantity_per_service > 0", name="ck_service_product_mappings_qty_pos"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("service_product_mappings", schema=None) as batch_op:
        batch_op.create_index("ix_service_product_mappings_service_id", ["service_id"], unique=False)

    op.create_table(
        "client_profiles",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("client_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("visit_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_spent_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_visit_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("client_profiles", schema=None) as batch_op:
        batch_op.create_index("ix_client_profiles_client_id", ["client_id"], unique=True)

    op.create_table(
        "loyalty_accounts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("client_id", sa.String(64), nullable=False),
        sa.Column("branch_id", sa.String(64), nullable=False),
        sa.Column("points_balance", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("lifetime_points_earned", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("lifetime_points_redeemed", sa.Integer(), nullable=False, server_default=sa.text("0")),
        *_timestamps(),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("client_id", "branch_id", name="uq_loyalty_accounts_client_branch"),
        sa.CheckConstraint("points_balance >= 0", name="ck_loyalty_accounts_balance_nonneg"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("loyalty_accounts", schema=None) as batch_op:
        batch_op.create_index("ix_loyalty_accounts_client_id", ["client_id"], unique=False)
        batch_op.create_index("ix_loyalty_accounts_branch_id", ["branch_id"], unique=False)

    op.create_table(
        "loyalty_log_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("client_id", sa.String(64), nullable=False),
        sa.Column("branch_id", sa.String(64), nullable=False),
        sa.Column("entry_type", sa.String(16), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("resulting_balance", sa.Integer(), nullable=False),
        sa.Column("bill_id", sa.Integer(), nullable=True),
        sa.Column("amount_cents", sa.Integer(), nullable=True),
        sa.Column("discount_cents", sa.Integer(), nullable=True),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("performed_by", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["account_id"], ["loyalty_accounts.id"]),
        sa.ForeignKeyConstraint(["bill_id"], ["bills.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("loyalty_log_entries", schema=None) as batch_op:
        batch_op.create_index("ix_loyalty_log_entries_account_id", ["account_id"], unique=False)
        batch_op.create_index("ix_loyalty_log_entries_entry_type", ["entry_type"], unique=False)
        batch_op.create_index("ix_loyalty_log_entries_bill_id", ["bill_id"], unique=False)
        batch_op.create_index("ix_loyalty_log_entries_created_at", ["created_at"], unique=False)
        batch_op.create_index(
            "ix_loyalty_log_client_branch_created",
            ["client_id", "branch_id", "created_at"],
            unique=False,
        )

    op.create_table(
        "referral_codes",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("client_id", sa.String(64), nullable=False),
        sa.Column("branch_id", sa.String(64), nullable=False),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("client_id", "branch_id", name="uq_referral_codes_client_branch"),
        sa.UniqueConstraint("code", name="uq_referral_codes_code"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("referral_codes", schema=None) as batch_op:
        batch_op.create_index("ix_referral_codes_client_id", ["client_id"], unique=False)
        batch_op.create_index("ix_referral_codes_branch_id", ["branch_id"], unique=False)

    op.create_table(
        "referral_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("new_client_id", sa.String(64), nullable=False),
        sa.Column("branch_id", sa.String(64), nullable=False),
        sa.Column("referrer_id", sa.String(64), nullable=False),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("referrer_points", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("referred_points", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("processed_by", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("new_client_id", "branch_id", name="uq_referral_records_client_branch"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("referral_records", schema=None) as batch_op:
        batch_op.create_index("ix_referral_records_new_client_id", ["new_client_id"], unique=False)
        batch_op.create_index("ix_referral_records_branch_id", ["branch_id"], unique=False)
        batch_op.create_index("ix_referral_records_referrer_id", ["referrer_id"], unique=False)

    op.create_table(
        "audit_log_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("bill_id", sa.Integer(), nullable=True),
        sa.Column("branch_id", sa.String(64), nullable=True),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("outcome", sa.String(16), nullable=False, server_default="ok"),
        sa.Column("entity_type", sa.String(64), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=True),
        sa.Column("performed_by", sa.String(64), nullable=False),
        sa.Column("performed_by_name", sa.String(255), nullable=True),
        sa.Column("details", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("audit_log_entries", schema=None) as batch_op:
        batch_op.create_index("ix_audit_log_entries_bill_id", ["bill_id"], unique=False)
        batch_op.create_index("ix_audit_log_entries_branch_id", ["branch_id"], unique=False)
        batch_op.create_index("ix_audit_log_entries_action", ["action"], unique=False)
        batch_op.create_index("ix_audit_log_entries_created_at", ["created_at"], unique=False)
        batch_op.create_index("ix_audit_log_branch_created", ["branch_id", "created_at"], unique=False)

    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.String(64), nullable=False),
        sa.Column("document_type", sa.String(32), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("branch_id", "document_type", name="uq_doc_sequences_branch_type"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("document_sequences", schema=None) as batch_op:
        batch_op.create_index("ix_document_sequences_branch_id", ["branch_id"], unique=False)
        batch_op.create_index("ix_document_sequences_document_type", ["document_type"], unique=False)


def downgrade():
    for table in (
        "document_sequences",
        "audit_log_entries",
        "referral_records",
        "referral_codes",
        "loyalty_log_entries",
        "loyalty_accounts",
        "client_profiles",
        "service_product_mappings",
        "stock_movements",
        "stock_batches",
        "bill_lines",
        "bills",
    ):
        op.drop_table(table)
