"""create dashboard materialized views (PostgreSQL only)

Revision ID: 8e5f03b6c2a4
Revises: 4a1c2e9b7d10
Create Date: 2026-03-02 10:40:07.918552

"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '8e5f03b6c2a4'
down_revision: Union[str, Sequence[str], None] = '4a1c2e9b7d10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


VIEWS = {
    "provider_kpi_summary_mv": """
        SELECT
            provider_id,
            provider_name,
            COUNT(*) AS case_count,
            COALESCE(SUM(invoice_count), 0) AS invoice_count,
            COUNT(DISTINCT law_firm_name) AS law_firm_count,
            COALESCE(SUM(invoice_amount), 0) AS total_invoiced,
            COALESCE(SUM(collected_amount), 0) AS total_collected,
            COALESCE(SUM(write_off_amount), 0) AS total_written_off,
            COALESCE(SUM(open_balance), 0) AS total_open_balance,
            ROUND(CASE WHEN SUM(invoice_amount) > 0
                       THEN (SUM(collected_amount) / SUM(invoice_amount) * 100)::numeric
                       ELSE 0 END, 1) AS collection_rate,
            NOW() AS calculated_at
        FROM provider_master_data
        GROUP BY provider_id, provider_name
    """,
    "law_firm_performance_mv": """
        SELECT
            provider_id,
            COALESCE(law_firm_name, 'Unknown') AS law_firm_name,
            COUNT(*) AS case_count,
            COALESCE(SUM(invoice_amount), 0) AS total_invoiced,
            COALESCE(SUM(collected_amount), 0) AS total_collected,
            COALESCE(SUM(write_off_amount), 0) AS total_written_off,
            COALESCE(SUM(open_balance), 0) AS open_balance,
            ROUND(CASE WHEN SUM(invoice_amount) > 0
                       THEN (SUM(collected_amount) / SUM(invoice_amount) * 100)::numeric
                       ELSE 0 END, 1) AS collection_rate,
            NOW() AS calculated_at
        FROM provider_master_data
        GROUP BY provider_id, COALESCE(law_firm_name, 'Unknown')
    """,
    "tranche_performance_mv": """
        SELECT
            provider_id,
            COALESCE(tranche_name, 'Unassigned') AS tranche_name,
            tranche_id,
            COUNT(*) AS case_count,
            COALESCE(SUM(invoice_amount), 0) AS total_invoiced,
            COALESCE(SUM(collected_amount), 0) AS total_collected,
            COALESCE(SUM(open_balance), 0) AS open_balance,
            NOW() AS calculated_at
        FROM provider_master_data
        GROUP BY provider_id, COALESCE(tranche_name, 'Unassigned'), tranche_id
    """,
    "receivables_by_case_status_mv": """
        SELECT
            provider_id,
            COALESCE(case_status, 'Unknown') AS case_status,
            COUNT(*) AS case_count,
            COALESCE(SUM(invoice_count), 0) AS invoice_count,
            COALESCE(SUM(open_balance), 0) AS open_ar,
            NOW() AS calculated_at
        FROM provider_master_data
        WHERE open_balance > 0
        GROUP BY provider_id, COALESCE(case_status, 'Unknown')
    """,
}


def upgrade() -> None:
    """Upgrade schema."""
    if op.get_bind().dialect.name != "postgresql":
        return
    for name, body in VIEWS.items():
        op.execute(f"CREATE MATERIALIZED VIEW IF NOT EXISTS {name} AS {body}")


def downgrade() -> None:
    """Downgrade schema."""
    if op.get_bind().dialect.name != "postgresql":
        return
    for name in reversed(list(VIEWS)):
        op.execute(f"DROP MATERIALIZED VIEW IF EXISTS {name}")
