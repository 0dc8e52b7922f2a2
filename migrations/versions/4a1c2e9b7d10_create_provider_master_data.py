"""create provider_master_data

Revision ID: 4a1c2e9b7d10
Revises:
Create Date: 2026-03-02 10:12:41.204117

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4a1c2e9b7d10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "provider_master_data",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("salesforce_id", sa.String(length=64), nullable=False),
        sa.Column("opportunity_id", sa.String(length=64), nullable=True),
        sa.Column("opportunity_name", sa.String(length=255), nullable=False),
        sa.Column("law_firm_name", sa.String(length=255), nullable=True),
        sa.Column("case_status", sa.String(length=120), nullable=True),
        sa.Column("tranche_name", sa.String(length=255), nullable=True),
        sa.Column("tranche_id", sa.String(length=64), nullable=True),
        sa.Column("state", sa.String(length=10), nullable=True),
        sa.Column("provider_name", sa.String(length=255), nullable=False),
        sa.Column("provider_id", sa.String(length=64), nullable=False),
        sa.Column("funding_stage", sa.String(length=120), nullable=True),
        sa.Column("payoff_status", sa.String(length=120), nullable=True),
        sa.Column("ar_book_name", sa.String(length=255), nullable=True),
        sa.Column("ar_type", sa.String(length=120), nullable=True),
        sa.Column("invoice_amount", sa.Float(), nullable=False, server_default="0"),
        sa.Column("collected_amount", sa.Float(), nullable=False, server_default="0"),
        sa.Column("write_off_amount", sa.Float(), nullable=False, server_default="0"),
        sa.Column("open_balance", sa.Float(), nullable=False, server_default="0"),
        sa.Column("invoice_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("date_of_accident", sa.Date(), nullable=True),
        sa.Column("invoice_date", sa.Date(), nullable=False),
        sa.Column("last_invoice_date", sa.Date(), nullable=True),
        sa.Column("origination_date", sa.Date(), nullable=True),
        sa.Column("collection_date", sa.Date(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_provider_master_data_opportunity_name", "provider_master_data", ["opportunity_name"])
    op.create_index("ix_provider_master_data_case_status", "provider_master_data", ["case_status"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("ix_provider_master_data_case_status", table_name="provider_master_data")
    op.drop_index("ix_provider_master_data_opportunity_name", table_name="provider_master_data")
    op.drop_table("provider_master_data")
