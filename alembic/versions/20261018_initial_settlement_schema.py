"""initial payment and settlement schema"""
from alembic import op
import sqlalchemy as sa

revision = "20261018_initial_settlement_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("is_paid_member", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("email"),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("actor", sa.String(length=100), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity", sa.String(length=100), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("data_json", sa.JSON(), nullable=False),
        sa.Column("at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity", "entity_id"])

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("buyer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("total_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("mode", sa.Enum("PAYMENT", "SUBSCRIPTION", name="checkoutmode"), nullable=False),
        sa.Column(
            "status",
            sa.Enum("PENDING", "PROCESSING", "COMPLETED", "CANCELLED", name="orderstatus"),
            nullable=False,
        ),
        sa.Column("payer_email", sa.String(length=255), nullable=False),
        sa.Column("line_items_json", sa.JSON(), nullable=False),
        sa.Column("external_session_id", sa.String(length=255), nullable=True),
        sa.Column("external_customer_id", sa.String(length=255), nullable=True),
        sa.Column("external_payment_id", sa.String(length=255), nullable=True),
        sa.Column("checkout_url", sa.String(length=2048), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("external_session_id"),
        sa.CheckConstraint("total_amount > 0", name="ck_orders_positive_total"),
    )
    op.create_index("ix_orders_status", "orders", ["status"])
    op.create_index("ix_orders_buyer_id", "orders", ["buyer_id"])

    op.create_table(
        "rentals",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("machine_id", sa.Integer(), nullable=False),
        sa.Column("renter_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("daily_rate", sa.Numeric(18, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("fee_schedule", sa.Enum("PERCENTAGE", "FLAT_PER_DAY", name="feeschedule"), nullable=True),
        sa.Column("fee_rate", sa.Numeric(10, 6), nullable=True),
        sa.Column("platform_fee", sa.Numeric(18, 2), nullable=True),
        sa.Column("owner_payout", sa.Numeric(18, 2), nullable=True),
        sa.Column("external_payment_id", sa.String(length=255), nullable=True),
        sa.Column(
            "payment_status",
            sa.Enum("PENDING", "PAID", "FAILED", name="rentalpaymentstatus"),
            nullable=False,
        ),
        sa.Column("status", sa.Enum("PENDING", "CONFIRMED", "CANCELLED", name="rentalstatus"), nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("external_payment_id"),
        sa.CheckConstraint("end_date >= start_date", name="ck_rentals_date_range"),
        sa.CheckConstraint("daily_rate > 0", name="ck_rentals_positive_daily_rate"),
        sa.CheckConstraint("total_amount > 0", name="ck_rentals_positive_total"),
    )
    op.create_index("ix_rentals_status", "rentals", ["status"])
    op.create_index("ix_rentals_payment_status", "rentals", ["payment_status"])
    op.create_index("ix_rentals_owner_id", "rentals", ["owner_id"])

    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("rental_id", sa.Integer(), sa.ForeignKey("rentals.id"), nullable=False),
        sa.Column(
            "entry_type",
            sa.Enum("RENTAL_PAYMENT", "OWNER_PAYOUT", name="ledgerentrytype"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("status", sa.Enum("PENDING", "COMPLETED", name="ledgerentrystatus"), nullable=False),
        sa.Column("external_payment_id", sa.String(length=255), nullable=True),
        sa.Column("external_transfer_id", sa.String(length=255), nullable=True),
        sa.Column("destination_account_id", sa.String(length=255), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("rental_id", "entry_type", name="uq_ledger_entries_rental_type"),
        sa.UniqueConstraint("external_transfer_id"),
        sa.CheckConstraint("amount > 0", name="ck_ledger_entries_positive_amount"),
    )
    op.create_index("ix_ledger_entries_status", "ledger_entries", ["status"])
    op.create_index("ix_ledger_entries_external_payment_id", "ledger_entries", ["external_payment_id"])

    op.create_table(
        "payee_accounts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("external_account_id", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("country", sa.String(length=2), nullable=False),
        sa.Column("payout_enabled", sa.Boolean(), nullable=False),
        sa.Column("bank_verified", sa.Boolean(), nullable=False),
        sa.Column("charges_enabled", sa.Boolean(), nullable=False),
        sa.Column("details_submitted", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("owner_id"),
        sa.UniqueConstraint("external_account_id"),
    )

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("provider", sa.String(length=50), nullable=False),
        sa.Column("event_id", sa.String(length=255), nullable=False),
        sa.Column("kind", sa.String(length=100), nullable=False),
        sa.Column("handled", sa.Boolean(), nullable=False),
        sa.Column("raw_json", sa.JSON(), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("provider", "event_id", name="uq_webhook_events_provider_event_id"),
    )
    op.create_index("ix_webhook_events_received", "webhook_events", ["received_at"])
    op.create_index("ix_webhook_events_kind", "webhook_events", ["kind"])


def downgrade() -> None:
    op.drop_index("ix_webhook_events_kind", table_name="webhook_events")
    op.drop_index("ix_webhook_events_received", table_name="webhook_events")
    op.drop_table("webhook_events")
    op.drop_table("payee_accounts")
    op.drop_index("ix_ledger_entries_external_payment_id", table_name="ledger_entries")
    op.drop_index("ix_ledger_entries_status", table_name="ledger_entries")
    op.drop_table("ledger_entries")
    op.drop_index("ix_rentals_owner_id", table_name="rentals")
    op.drop_index("ix_rentals_payment_status", table_name="rentals")
    op.drop_index("ix_rentals_status", table_name="rentals")
    op.drop_table("rentals")
    op.drop_index("ix_orders_buyer_id", table_name="orders")
    op.drop_index("ix_orders_status", table_name="orders")
    op.drop_table("orders")
    op.drop_index("ix_audit_logs_entity", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("users")
    for enum_name in (
        "ledgerentrystatus",
        "ledgerentrytype",
        "rentalstatus",
        "rentalpaymentstatus",
        "feeschedule",
        "orderstatus",
        "checkoutmode",
    ):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
