"""Pytest configuration and shared fixtures."""

import pytest

from app import create_app
from app.extensions import db


INVOICE_CSV = '''TPG Invoice Export
"Filters: Provider = Therapy Partners Group - Parent, Stage = All"

opname,opid,law_firm_account_name__c,case_status__c,Tranche_Name,tranche,billingstate,paname,date_of_accident__c,origination_date__c,Invoice_Date,Open Invoice,Settled,Write Off
"Smith, John",006AAA,Acme Injury Law,Negotiation,Tranche 1,TR-001,TX,,01/05/2023,02/01/2023,02/10/2023,"$1,000.00",,
"Smith, John",006AAA,Acme Injury Law,Negotiation,Tranche 1,TR-001,TX,,01/05/2023,02/01/2023,03/10/2023,$500.00,,
"Doe, Jane",,Beta Legal Group,In Litigation,Tranche 2,TR-002,CA,,,,04/15/2023,$750.00,,
'''

COLLECTIONS_CSV = '''TPG Collections Export
Generated for portal import

opname,opid,law_firm_account_name__c,case_status__c,Tranche_Name,tranche,billingstate,paname,date_deposited_1__c - Year,date_deposited_1__c - Month,date_deposited_1__c - Day,Total Invoice Amount,Total Amount Collected
"Smith, John",006AAA,Acme Injury Law,Negotiation,Tranche 1,TR-001,TX,,2024,April,2,$500.00,$100.00
"Smith, John",006AAA,Acme Injury Law,Negotiation,Tranche 1,TR-001,TX,,2024,March,15,"$1,000.00",$300.00
'''


@pytest.fixture
def app(tmp_path):
    """Application bound to an in-memory SQLite database, context pushed."""
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite://",
            "BACKUP_DIR": str(tmp_path / "backups"),
            "EXPECTED_RECORD_COUNT": None,
            "EXPECTED_TOTAL_INVOICED": None,
            "EXPECTED_TOTAL_COLLECTED": None,
            "EXPECTED_COLLECTION_RATE": None,
        }
    )
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def invoice_csv_text() -> str:
    return INVOICE_CSV


@pytest.fixture
def collections_csv_text() -> str:
    return COLLECTIONS_CSV


@pytest.fixture
def export_files(tmp_path):
    """Sample exports written to disk: (invoice_path, collections_path)."""
    invoice_path = tmp_path / "TPG_Invoice.csv"
    collections_path = tmp_path / "TPG_Collections.csv"
    invoice_path.write_text(INVOICE_CSV, encoding="utf-8")
    collections_path.write_text(COLLECTIONS_CSV, encoding="utf-8")
    return str(invoice_path), str(collections_path)


@pytest.fixture
def portfolio(app):
    """A small fact table relative to today, for dashboard and API tests.

    Open AR: B 500 (In Litigation, 200 days), C 300 (No Longer Represent,
    1200 days), D 200 (Still Treating, 10 days). A and F are fully resolved.
    E belongs to another provider and must never be counted.
    """
    from datetime import date, timedelta

    from app.models import ProviderMasterData

    today = date.today()
    provider_id = app.config["DEFAULT_PROVIDER_ID"]

    def row(name, **kw):
        kw.setdefault("provider_id", provider_id)
        kw.setdefault("provider_name", app.config["DEFAULT_PROVIDER_NAME"])
        kw.setdefault("invoice_count", 1)
        return ProviderMasterData(salesforce_id=f"OPP-{name}", opportunity_name=name, **kw)

    db.session.add_all(
        [
            row("A", case_status="Negotiation", law_firm_name="Acme Injury Law", tranche_name="Tranche 1",
                tranche_id="TR-001", invoice_amount=1000.0, collected_amount=400.0, write_off_amount=600.0,
                open_balance=0.0, invoice_count=2, invoice_date=today - timedelta(days=30),
                collection_date=today - timedelta(days=10)),
            row("B", case_status="In Litigation", law_firm_name="Acme Injury Law", tranche_name="Tranche 1",
                tranche_id="TR-001", invoice_amount=500.0, open_balance=500.0,
                invoice_date=today - timedelta(days=200)),
            row("C", case_status="No Longer Represent", law_firm_name="Beta Legal Group", tranche_name="Tranche 2",
                tranche_id="TR-002", invoice_amount=300.0, open_balance=300.0,
                invoice_date=today - timedelta(days=1200)),
            row("D", case_status="Still Treating", law_firm_name="Beta Legal Group", tranche_name="Tranche 2",
                tranche_id="TR-002", invoice_amount=200.0, open_balance=200.0,
                invoice_date=today - timedelta(days=10)),
            row("F", case_status="Closed - Paid", law_firm_name="Beta Legal Group", tranche_name="Tranche 2",
                tranche_id="TR-002", invoice_amount=100.0, collected_amount=100.0,
                invoice_date=today - timedelta(days=400), collection_date=today - timedelta(days=370)),
            row("E", provider_id="OTHER-1", provider_name="Other Clinic", case_status="Negotiation",
                invoice_amount=999.0, open_balance=999.0, invoice_date=today - timedelta(days=5)),
        ]
    )
    db.session.commit()
    return today
