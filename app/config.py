import os

BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
DATA_DIR = os.environ.get("PORTAL_DATA_DIR", os.path.join(BASE_DIR, "data"))


def _env_list(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [part.strip() for part in raw.split("|") if part.strip()]


def _env_float(name: str, default=None):
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def _env_int(name: str, default=None):
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-change-me")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Provider the exports belong to; the fact table is single-provider today.
    DEFAULT_PROVIDER_NAME = os.environ.get("PROVIDER_NAME", "Therapy Partners Group - Parent")
    DEFAULT_PROVIDER_ID = os.environ.get("PROVIDER_ID", "TPG-001")

    # Import sources
    INVOICE_CSV_PATH = os.environ.get("INVOICE_CSV_PATH", os.path.join(DATA_DIR, "TPG_Invoice.csv"))
    COLLECTIONS_CSV_PATH = os.environ.get(
        "COLLECTIONS_CSV_PATH", os.path.join(DATA_DIR, "TPG_Collections.csv")
    )
    WORKBOOK_PATH = os.environ.get("WORKBOOK_PATH", os.path.join(DATA_DIR, "TPG_Analysis.xlsx"))
    INVOICE_SHEET_NAME = os.environ.get("INVOICE_SHEET_NAME", "Invoice Data")
    COLLECTIONS_SHEET_NAME = os.environ.get("COLLECTIONS_SHEET_NAME", "Collections Data")

    # Header detection ("|" separated anchor fragments, matched case-insensitively)
    INVOICE_HEADER_ANCHORS = _env_list("INVOICE_HEADER_ANCHORS", "Invoice_Date2 - Year|Open Invoice")
    COLLECTIONS_HEADER_ANCHORS = _env_list(
        "COLLECTIONS_HEADER_ANCHORS", "Total Invoice Amount|Total Amount Collected"
    )
    HEADER_SCAN_DEPTH = _env_int("HEADER_SCAN_DEPTH", 10)

    # Post-load
    MATERIALIZED_VIEWS = _env_list(
        "MATERIALIZED_VIEWS",
        "provider_kpi_summary_mv|law_firm_performance_mv|tranche_performance_mv|receivables_by_case_status_mv",
    )
    BACKUP_DIR = os.environ.get("BACKUP_DIR", os.path.join(DATA_DIR, "backups"))

    # Verification
    VERIFY_CURRENCY_TOLERANCE = _env_float("VERIFY_CURRENCY_TOLERANCE", 1.0)
    VERIFY_RATE_TOLERANCE = _env_float("VERIFY_RATE_TOLERANCE", 0.5)
    EXPECTED_RECORD_COUNT = _env_int("EXPECTED_RECORD_COUNT")
    EXPECTED_TOTAL_INVOICED = _env_float("EXPECTED_TOTAL_INVOICED")
    EXPECTED_TOTAL_COLLECTED = _env_float("EXPECTED_TOTAL_COLLECTED")
    EXPECTED_COLLECTION_RATE = _env_float("EXPECTED_COLLECTION_RATE")
