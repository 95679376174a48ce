"""Initial schema with all base tables.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-01

Creates all base tables with complete column definitions matching the
SQLAlchemy models.
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    """Create initial schema tables."""

    # ==========================================================================
    # UPLOADS
    # ==========================================================================
    op.create_table(
        "uploads",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("filename", sa.String(255), nullable=False),
        sa.Column("original_filename", sa.String(255)),
        sa.Column("account_id", sa.String(36)),
        sa.Column("records", sa.JSON(), nullable=False),
        sa.Column("rows", sa.JSON(), nullable=False),
        sa.Column("record_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("approved_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("blacklisted_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_reconciled_at", sa.DateTime(timezone=True)),
        sa.Column("reconciliation_report", sa.JSON()),
        sa.Column("filtered_records", sa.JSON()),
        sa.Column("chargeback_filtered_at", sa.DateTime(timezone=True)),
        sa.Column("chargeback_filter_stats", sa.JSON()),
        *_timestamps(),
    )
    op.create_index("ix_uploads_account_id", "uploads", ["account_id"])
    op.create_index("ix_uploads_created_at", "uploads", ["created_at"])

    # ==========================================================================
    # GATEWAY GROUND TRUTH
    # ==========================================================================
    op.create_table(
        "gateway_transactions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("unique_id", sa.String(64), nullable=False, unique=True),
        sa.Column("transaction_id", sa.String(255)),
        sa.Column("transaction_type", sa.String(50)),
        sa.Column("status", sa.String(50)),
        sa.Column("amount_minor", sa.BigInteger()),
        sa.Column("currency", sa.String(3)),
        sa.Column("bank_account_number", sa.String(64)),
        sa.Column("card_number", sa.String(64)),
        sa.Column("customer_name", sa.String(255)),
        sa.Column("customer_email", sa.String(255)),
        sa.Column("transaction_date", sa.DateTime(timezone=True)),
        *_timestamps(),
    )
    op.create_index(
        "ix_gateway_transactions_transaction_id", "gateway_transactions", ["transaction_id"]
    )
    op.create_index(
        "ix_gateway_transactions_bank_account_number",
        "gateway_transactions",
        ["bank_account_number"],
    )
    op.create_index(
        "ix_gateway_transactions_account_date",
        "gateway_transactions",
        ["bank_account_number", "transaction_date"],
    )
    op.create_index("ix_gateway_transactions_created_at", "gateway_transactions", ["created_at"])

    op.create_table(
        "chargebacks",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("unique_id", sa.String(64), unique=True),
        sa.Column("original_transaction_unique_id", sa.String(64)),
        sa.Column("reason_code", sa.String(10)),
        sa.Column("reason_description", sa.Text()),
        sa.Column("amount_minor", sa.BigInteger()),
        sa.Column("currency", sa.String(3)),
        sa.Column("post_date", sa.DateTime(timezone=True)),
        *_timestamps(),
    )
    op.create_index(
        "ix_chargebacks_original_transaction_unique_id",
        "chargebacks",
        ["original_transaction_unique_id"],
    )
    op.create_index("ix_chargebacks_reason_code", "chargebacks", ["reason_code"])
    op.create_index("ix_chargebacks_created_at", "chargebacks", ["created_at"])

    # ==========================================================================
    # BLACKLIST
    # ==========================================================================
    op.create_table(
        "blacklist_entries",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("iban", sa.String(64), unique=True),
        sa.Column("iban_masked", sa.String(64)),
        sa.Column("name", sa.String(255)),
        sa.Column("email", sa.String(255)),
        sa.Column("bic", sa.String(16)),
        sa.Column("reason", sa.Text()),
        sa.Column("created_by", sa.String(100)),
        *_timestamps(),
    )
    op.create_index("ix_blacklist_entries_name", "blacklist_entries", ["name"])
    op.create_index("ix_blacklist_entries_email", "blacklist_entries", ["email"])
    op.create_index("ix_blacklist_entries_created_at", "blacklist_entries", ["created_at"])

    # ==========================================================================
    # ACCOUNTS AND SETTINGS
    # ==========================================================================
    op.create_table(
        "merchant_accounts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("contact_email", sa.String(255)),
        sa.Column("return_urls", sa.JSON()),
        sa.Column("dynamic_descriptor", sa.String(25)),
        sa.Column("fallback_description", sa.String(255)),
        *_timestamps(),
    )
    op.create_index("ix_merchant_accounts_created_at", "merchant_accounts", ["created_at"])

    op.create_table(
        "app_settings",
        sa.Column("key", sa.String(100), primary_key=True),
        sa.Column("value", sa.JSON()),
        *_timestamps(),
    )
    op.create_index("ix_app_settings_created_at", "app_settings", ["created_at"])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("app_settings")
    op.drop_table("merchant_accounts")
    op.drop_table("blacklist_entries")
    op.drop_table("chargebacks")
    op.drop_table("gateway_transactions")
    op.drop_table("uploads")
