"""create_sukuk_projections

Revision ID: 3f1a9c2b7d10
Revises:
Create Date: 2025-10-17 09:12:41.118204

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f1a9c2b7d10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Enum columns store member names, matching SQLModel's default Enum mapping
sukuk_status = sa.Enum(
    "DRAFT", "ACTIVE", "PAUSED", "MATURED", "CLOSED", "SUSPENDED", name="sukukstatus"
)
investment_status = sa.Enum("ACTIVE", "REDEEMED", "MATURED", name="investmentstatus")
yield_status = sa.Enum("PENDING", "CLAIMED", "EXPIRED", name="yieldstatus")
redemption_status = sa.Enum(
    "REQUESTED", "APPROVED", "COMPLETED", "REJECTED", "CANCELLED", name="redemptionstatus"
)


def upgrade() -> None:
    """Create sukuk_series, investments, yield_claims, redemptions and system_state."""
    op.create_table(
        "system_state",
        sa.Column("key", sa.String(length=255), nullable=False),
        sa.Column("state_value", sa.JSON(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("key"),
    )

    op.create_table(
        "sukuk_series",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("symbol", sa.String(length=20), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("total_supply", sa.String(length=78), nullable=False),
        sa.Column("outstanding_supply", sa.String(length=78), nullable=False),
        sa.Column("token_address", sa.String(length=42), nullable=True),
        sa.Column("status", sukuk_status, nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sukuk_series_name", "sukuk_series", ["name"])
    op.create_index("ix_sukuk_series_token_address", "sukuk_series", ["token_address"], unique=True)
    op.create_index("ix_sukuk_series_status", "sukuk_series", ["status"])

    op.create_table(
        "investments",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("sukuk_id", sa.Uuid(), nullable=False),
        sa.Column("investor_address", sa.String(length=42), nullable=False),
        sa.Column("investment_amount", sa.String(length=78), nullable=False),
        sa.Column("token_amount", sa.String(length=78), nullable=False),
        sa.Column("token_price", sa.String(length=78), nullable=False),
        sa.Column("status", investment_status, nullable=False),
        sa.Column("tx_hash", sa.String(length=66), nullable=False),
        sa.Column("log_index", sa.Integer(), nullable=False),
        sa.Column("block_number", sa.Integer(), nullable=False),
        sa.Column("investment_date", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["sukuk_id"], ["sukuk_series.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tx_hash", "log_index", name="uq_investments_tx_log"),
    )
    op.create_index("ix_investments_sukuk_id", "investments", ["sukuk_id"])
    op.create_index("ix_investments_investor_address", "investments", ["investor_address"])
    op.create_index("ix_investments_status", "investments", ["status"])
    op.create_index("ix_investments_tx_hash", "investments", ["tx_hash"])
    op.create_index("ix_investments_block_number", "investments", ["block_number"])

    op.create_table(
        "yield_claims",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("sukuk_id", sa.Uuid(), nullable=False),
        sa.Column("investment_id", sa.Uuid(), nullable=False),
        sa.Column("distribution_id", sa.BigInteger(), nullable=False),
        sa.Column("investor_address", sa.String(length=42), nullable=False),
        sa.Column("yield_amount", sa.String(length=78), nullable=False),
        sa.Column("period_start", sa.DateTime(), nullable=False),
        sa.Column("period_end", sa.DateTime(), nullable=False),
        sa.Column("distribution_date", sa.DateTime(), nullable=False),
        sa.Column("status", yield_status, nullable=False),
        sa.Column("dist_tx_hash", sa.String(length=66), nullable=False),
        sa.Column("dist_log_index", sa.Integer(), nullable=False),
        sa.Column("claim_tx_hash", sa.String(length=66), nullable=True),
        sa.Column("claim_block_number", sa.Integer(), nullable=True),
        sa.Column("claimed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["sukuk_id"], ["sukuk_series.id"]),
        sa.ForeignKeyConstraint(["investment_id"], ["investments.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "investment_id", "distribution_id", name="uq_yield_claims_investment_dist"
        ),
    )
    op.create_index("ix_yield_claims_sukuk_id", "yield_claims", ["sukuk_id"])
    op.create_index("ix_yield_claims_investment_id", "yield_claims", ["investment_id"])
    op.create_index("ix_yield_claims_distribution_id", "yield_claims", ["distribution_id"])
    op.create_index("ix_yield_claims_investor_address", "yield_claims", ["investor_address"])
    op.create_index("ix_yield_claims_status", "yield_claims", ["status"])

    op.create_table(
        "redemptions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("sukuk_id", sa.Uuid(), nullable=False),
        sa.Column("external_id", sa.String(length=78), nullable=True),
        sa.Column("investor_address", sa.String(length=42), nullable=False),
        sa.Column("token_amount", sa.String(length=78), nullable=False),
        sa.Column("redemption_amount", sa.String(length=78), nullable=False),
        sa.Column("request_tx_hash", sa.String(length=66), nullable=True),
        sa.Column("request_log_index", sa.Integer(), nullable=True),
        sa.Column("complete_tx_hash", sa.String(length=66), nullable=True),
        sa.Column("complete_log_index", sa.Integer(), nullable=True),
        sa.Column("request_date", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("status", redemption_status, nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["sukuk_id"], ["sukuk_series.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_redemptions_sukuk_id", "redemptions", ["sukuk_id"])
    op.create_index("ix_redemptions_external_id", "redemptions", ["external_id"], unique=True)
    op.create_index("ix_redemptions_investor_address", "redemptions", ["investor_address"])
    op.create_index("ix_redemptions_status", "redemptions", ["status"])


def downgrade() -> None:
    """Drop all projection tables and their enum types."""
    op.drop_table("redemptions")
    op.drop_table("yield_claims")
    op.drop_table("investments")
    op.drop_table("sukuk_series")
    op.drop_table("system_state")

    bind = op.get_bind()
    redemption_status.drop(bind, checkfirst=True)
    yield_status.drop(bind, checkfirst=True)
    investment_status.drop(bind, checkfirst=True)
    sukuk_status.drop(bind, checkfirst=True)
