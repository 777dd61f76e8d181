"""Initial schema for offers, transactions and conditions.

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-17

"""

from alembic import op
import sqlalchemy as sa


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("full_name", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index(op.f("ix_users_id"), "users", ["id"], unique=False)
    op.create_index(op.f("ix_users_email"), "users", ["email"], unique=True)

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("target_entity_type", sa.String(), nullable=True),
        sa.Column("target_entity_id", sa.String(), nullable=True),
        sa.Column("before", sa.Text(), nullable=True),
        sa.Column("after", sa.Text(), nullable=True),
    )
    op.create_index(op.f("ix_audit_logs_id"), "audit_logs", ["id"], unique=False)
    op.create_index(op.f("ix_audit_logs_timestamp"), "audit_logs", ["timestamp"], unique=False)

    op.create_table(
        "properties",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("street", sa.String(), nullable=False),
        sa.Column("city", sa.String(), nullable=False),
        sa.Column("province", sa.String(length=2), nullable=False),
        sa.Column("postal_code", sa.String(), nullable=True),
        sa.Column("property_type", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index(op.f("ix_properties_id"), "properties", ["id"], unique=False)
    op.create_index(op.f("ix_properties_owner_user_id"), "properties", ["owner_user_id"], unique=False)
    op.create_index(op.f("ix_properties_province"), "properties", ["province"], unique=False)
    op.create_index(op.f("ix_properties_status"), "properties", ["status"], unique=False)

    op.create_table(
        "listings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("property_id", sa.Integer(), sa.ForeignKey("properties.id"), nullable=False),
        sa.Column("seller_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("asking_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("sold_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("sold_date", sa.DateTime(), nullable=True),
        sa.Column("sold_transaction_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index(op.f("ix_listings_id"), "listings", ["id"], unique=False)
    op.create_index(op.f("ix_listings_property_id"), "listings", ["property_id"], unique=False)
    op.create_index(op.f("ix_listings_seller_user_id"), "listings", ["seller_user_id"], unique=False)
    op.create_index(op.f("ix_listings_status"), "listings", ["status"], unique=False)

    op.create_table(
        "offers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("property_id", sa.Integer(), sa.ForeignKey("properties.id"), nullable=False),
        sa.Column("listing_id", sa.Integer(), sa.ForeignKey("listings.id"), nullable=False),
        sa.Column("buyer_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("seller_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("province", sa.String(length=2), nullable=False),
        sa.Column("offer_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("deposit_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("deposit_due_date", sa.DateTime(), nullable=False),
        sa.Column("deposit_held_by", sa.String(), nullable=False),
        sa.Column("closing_date", sa.DateTime(), nullable=False),
        sa.Column("possession_date", sa.DateTime(), nullable=True),
        sa.Column("irrevocable_date", sa.DateTime(), nullable=False),
        sa.Column("conditions", sa.JSON(), nullable=False),
        sa.Column("inclusions", sa.JSON(), nullable=False),
        sa.Column("exclusions", sa.JSON(), nullable=False),
        sa.Column("financing_type", sa.String(), nullable=False),
        sa.Column("additional_terms", sa.Text(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("parent_offer_id", sa.Integer(), sa.ForeignKey("offers.id"), nullable=True),
        sa.Column("is_counter_offer", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("buyer_signed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("buyer_signed_at", sa.DateTime(), nullable=True),
        sa.Column("seller_signed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("seller_signed_at", sa.DateTime(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(), nullable=True),
        sa.Column("viewed_at", sa.DateTime(), nullable=True),
        sa.Column("responded_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index(op.f("ix_offers_id"), "offers", ["id"], unique=False)
    op.create_index(op.f("ix_offers_property_id"), "offers", ["property_id"], unique=False)
    op.create_index(op.f("ix_offers_listing_id"), "offers", ["listing_id"], unique=False)
    op.create_index(op.f("ix_offers_buyer_user_id"), "offers", ["buyer_user_id"], unique=False)
    op.create_index(op.f("ix_offers_seller_user_id"), "offers", ["seller_user_id"], unique=False)
    op.create_index(op.f("ix_offers_status"), "offers", ["status"], unique=False)
    op.create_index(op.f("ix_offers_parent_offer_id"), "offers", ["parent_offer_id"], unique=False)

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("property_id", sa.Integer(), sa.ForeignKey("properties.id"), nullable=False),
        sa.Column("listing_id", sa.Integer(), sa.ForeignKey("listings.id"), nullable=False),
        sa.Column("accepted_offer_id", sa.Integer(), sa.ForeignKey("offers.id"), nullable=False, unique=True),
        sa.Column("buyer_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("seller_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("province", sa.String(length=2), nullable=False),
        sa.Column("purchase_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("deposit_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("deposit_status", sa.String(), nullable=False),
        sa.Column("acceptance_date", sa.DateTime(), nullable=False),
        sa.Column("condition_deadline", sa.DateTime(), nullable=True),
        sa.Column("firm_date", sa.DateTime(), nullable=True),
        sa.Column("closing_date", sa.DateTime(), nullable=False),
        sa.Column("possession_date", sa.DateTime(), nullable=True),
        sa.Column("actual_closing_date", sa.DateTime(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("current_step", sa.String(), nullable=False),
        sa.Column("platform_fee_rate", sa.Numeric(6, 4), nullable=False),
        sa.Column("platform_fee_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("platform_fee_status", sa.String(), nullable=False),
        sa.Column("platform_fee_invoiced_at", sa.DateTime(), nullable=True),
        sa.Column("platform_fee_paid_at", sa.DateTime(), nullable=True),
        sa.Column("platform_fee_payment_method", sa.String(), nullable=True),
        sa.Column("platform_fee_payment_reference", sa.String(), nullable=True),
        sa.Column("platform_fee_notes", sa.Text(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("cancellation_failed_condition", sa.String(), nullable=True),
        sa.Column("deposit_disposition", sa.String(), nullable=True),
        sa.Column("disputed_at", sa.DateTime(), nullable=True),
        sa.Column("dispute_reason", sa.Text(), nullable=True),
        sa.Column("buyer_lawyer", sa.JSON(), nullable=True),
        sa.Column("seller_lawyer", sa.JSON(), nullable=True),
        sa.Column("notary", sa.JSON(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index(op.f("ix_transactions_id"), "transactions", ["id"], unique=False)
    op.create_index(op.f("ix_transactions_property_id"), "transactions", ["property_id"], unique=False)
    op.create_index(op.f("ix_transactions_listing_id"), "transactions", ["listing_id"], unique=False)
    op.create_index(op.f("ix_transactions_buyer_user_id"), "transactions", ["buyer_user_id"], unique=False)
    op.create_index(op.f("ix_transactions_seller_user_id"), "transactions", ["seller_user_id"], unique=False)
    op.create_index(op.f("ix_transactions_status"), "transactions", ["status"], unique=False)
    op.create_index(op.f("ix_transactions_current_step"), "transactions", ["current_step"], unique=False)
    op.create_index(
        op.f("ix_transactions_platform_fee_status"), "transactions", ["platform_fee_status"], unique=False
    )
    op.create_index(
        op.f("ix_transactions_platform_fee_payment_reference"),
        "transactions",
        ["platform_fee_payment_reference"],
        unique=False,
    )

    op.create_table(
        "transaction_steps",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "transaction_id", sa.Integer(), sa.ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("step", sa.String(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=False),
        sa.Column("completed_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
    )
    op.create_index(op.f("ix_transaction_steps_id"), "transaction_steps", ["id"], unique=False)
    op.create_index(
        op.f("ix_transaction_steps_transaction_id"), "transaction_steps", ["transaction_id"], unique=False
    )

    op.create_table(
        "transaction_notes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "transaction_id", sa.Integer(), sa.ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("is_private", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index(op.f("ix_transaction_notes_id"), "transaction_notes", ["id"], unique=False)
    op.create_index(
        op.f("ix_transaction_notes_transaction_id"), "transaction_notes", ["transaction_id"], unique=False
    )

    op.create_table(
        "conditions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "transaction_id", sa.Integer(), sa.ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("offer_id", sa.Integer(), sa.ForeignKey("offers.id"), nullable=False),
        sa.Column("condition_type", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("deadline", sa.DateTime(), nullable=False),
        sa.Column("days_from_acceptance", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.Column("resolved_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("resolution_method", sa.String(), nullable=True),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index(op.f("ix_conditions_id"), "conditions", ["id"], unique=False)
    op.create_index(op.f("ix_conditions_transaction_id"), "conditions", ["transaction_id"], unique=False)
    op.create_index(op.f("ix_conditions_offer_id"), "conditions", ["offer_id"], unique=False)
    op.create_index(op.f("ix_conditions_condition_type"), "conditions", ["condition_type"], unique=False)
    op.create_index(op.f("ix_conditions_deadline"), "conditions", ["deadline"], unique=False)
    op.create_index(op.f("ix_conditions_status"), "conditions", ["status"], unique=False)

    op.create_table(
        "condition_extensions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "condition_id", sa.Integer(), sa.ForeignKey("conditions.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("previous_deadline", sa.DateTime(), nullable=False),
        sa.Column("new_deadline", sa.DateTime(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("proposed_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("agreed_by_buyer", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("agreed_by_seller", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("agreed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index(op.f("ix_condition_extensions_id"), "condition_extensions", ["id"], unique=False)
    op.create_index(
        op.f("ix_condition_extensions_condition_id"), "condition_extensions", ["condition_id"], unique=False
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("event", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("level", sa.String(), nullable=False),
        sa.Column("link_url", sa.String(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("read_at", sa.DateTime(), nullable=True),
    )
    op.create_index(op.f("ix_notifications_id"), "notifications", ["id"], unique=False)
    op.create_index(op.f("ix_notifications_user_id"), "notifications", ["user_id"], unique=False)
    op.create_index(op.f("ix_notifications_event"), "notifications", ["event"], unique=False)


def downgrade() -> None:
    for table in (
        "notifications",
        "condition_extensions",
        "conditions",
        "transaction_notes",
        "transaction_steps",
        "transactions",
        "offers",
        "listings",
        "properties",
        "audit_logs",
        "users",
    ):
        op.drop_table(table)
