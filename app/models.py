"""
SQLAlchemy models for the provider portal.

This file defines:
- ProviderMasterData: the per-case receivables fact table

The fact table is owned by the import pipeline (app/services/loader.py) and is
read-only from the API's point of view. Every import run replaces its full
contents; there is no incremental update path.
"""

from datetime import datetime
from .extensions import db


# ============================================================
#  FACT TABLE
# ============================================================

class ProviderMasterData(db.Model):
    """
    One row per case/opportunity after Invoice and Collections reconciliation.

    Money columns follow the identity
        invoice_amount = collected_amount + write_off_amount + open_balance
    with both residual columns floored at zero.

    The materialized views (provider_kpi_summary_mv, law_firm_performance_mv, ...)
    aggregate over this table; keep column names stable.
    """
    __tablename__ = "provider_master_data"

    id = db.Column(db.Integer, primary_key=True)

    salesforce_id = db.Column(db.String(64), nullable=False)
    opportunity_id = db.Column(db.String(64))
    opportunity_name = db.Column(db.String(255), nullable=False, index=True)

    law_firm_name = db.Column(db.String(255))
    case_status = db.Column(db.String(120), index=True)
    tranche_name = db.Column(db.String(255))
    tranche_id = db.Column(db.String(64))
    state = db.Column(db.String(10))

    provider_name = db.Column(db.String(255), nullable=False)
    provider_id = db.Column(db.String(64), nullable=False)

    funding_stage = db.Column(db.String(120))
    payoff_status = db.Column(db.String(120))
    ar_book_name = db.Column(db.String(255))
    ar_type = db.Column(db.String(120))

    # Money
    invoice_amount = db.Column(db.Float, nullable=False, default=0.0)
    collected_amount = db.Column(db.Float, nullable=False, default=0.0)
    write_off_amount = db.Column(db.Float, nullable=False, default=0.0)
    open_balance = db.Column(db.Float, nullable=False, default=0.0)
    invoice_count = db.Column(db.Integer, nullable=False, default=0)

    # Dates
    date_of_accident = db.Column(db.Date)
    invoice_date = db.Column(db.Date, nullable=False)       # earliest invoice for the case
    last_invoice_date = db.Column(db.Date)
    origination_date = db.Column(db.Date)
    collection_date = db.Column(db.Date)                    # earliest deposit, Collections source only

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Columns exported by backups and compared by re-import checks
    BUSINESS_COLUMNS = (
        "salesforce_id",
        "opportunity_id",
        "opportunity_name",
        "law_firm_name",
        "case_status",
        "tranche_name",
        "tranche_id",
        "state",
        "provider_name",
        "provider_id",
        "funding_stage",
        "payoff_status",
        "ar_book_name",
        "ar_type",
        "invoice_amount",
        "collected_amount",
        "write_off_amount",
        "open_balance",
        "invoice_count",
        "date_of_accident",
        "invoice_date",
        "last_invoice_date",
        "origination_date",
        "collection_date",
    )

    DATE_COLUMNS = (
        "date_of_accident",
        "invoice_date",
        "last_invoice_date",
        "origination_date",
        "collection_date",
    )

    def to_dict(self) -> dict:
        out = {name: getattr(self, name) for name in self.BUSINESS_COLUMNS}
        for name in self.DATE_COLUMNS:
            value = out.get(name)
            out[name] = value.isoformat() if value else None
        out["id"] = self.id
        return out

    def __repr__(self):
        return f"<ProviderMasterData {self.opportunity_name} ${self.invoice_amount or 0:.2f}>"
