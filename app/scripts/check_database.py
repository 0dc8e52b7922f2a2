"""Print database connectivity and fact table totals.

    python -m app.scripts.check_database
"""
import sys

from sqlalchemy.exc import SQLAlchemyError

from app import create_app, format_currency
from app.services.verification import compute_fact_table_totals
from app.system.health import health_report


def main():
    try:
        app = create_app()
        with app.app_context():
            report = health_report()
            totals = compute_fact_table_totals() if report["database"]["ok"] else None
    except (SQLAlchemyError, RuntimeError) as exc:
        print(f"❌ Database check failed: {exc}")
        return 1

    db_info = report["database"]
    if not db_info["ok"]:
        print(f"❌ Database unreachable ({db_info['dialect']}): {db_info['error']}")
        return 1

    table = report["fact_table"]
    print(f"✅ Connected ({db_info['dialect']}, {db_info['latency_ms']} ms)")
    print(f"Records:            {table['record_count']:,}")
    print(f"Last loaded:        {table['last_loaded_at'] or '-'}")
    print(f"Latest invoice:     {table['latest_invoice_date'] or '-'}")
    print(f"Latest collection:  {table['latest_collection_date'] or '-'}")
    print(f"Total invoiced:     {format_currency(totals.total_invoiced)}")
    print(f"Total collected:    {format_currency(totals.total_collected)}")
    print(f"Total written off:  {format_currency(totals.total_written_off)}")
    print(f"Total open:         {format_currency(totals.total_open)}")
    print(f"Collection rate:    {totals.collection_rate:.2f}%")
    return 0


if __name__ == "__main__":
    sys.exit(main())
