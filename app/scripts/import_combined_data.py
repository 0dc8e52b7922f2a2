"""Import the Invoice and Collections CSV exports into provider_master_data.

    python -m app.scripts.import_combined_data [invoice.csv] [collections.csv]

Paths default to INVOICE_CSV_PATH / COLLECTIONS_CSV_PATH from the environment.
Exit code 0 when the import ran (check the verification block), 1 on a fatal
file, layout or database error.
"""
import argparse
import sys

from sqlalchemy.exc import SQLAlchemyError

from app import create_app
from app.services.errors import ImportStructuralError
from app.services.import_pipeline import render_report, run_csv_import


def main(argv=None):
    parser = argparse.ArgumentParser(description="Import Invoice + Collections CSV exports.")
    parser.add_argument("invoice_csv", nargs="?")
    parser.add_argument("collections_csv", nargs="?")
    args = parser.parse_args(argv)

    try:
        app = create_app()
        with app.app_context():
            result = run_csv_import(args.invoice_csv, args.collections_csv)
    except (ImportStructuralError, SQLAlchemyError, RuntimeError) as exc:
        print(f"❌ Import failed: {exc}")
        return 1

    print(render_report(result))
    return 0


if __name__ == "__main__":
    sys.exit(main())
