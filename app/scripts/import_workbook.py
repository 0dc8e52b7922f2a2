"""Import the "Invoice Data" and "Collections Data" sheets of one workbook.

    python -m app.scripts.import_workbook [workbook.xlsx]
"""
import argparse
import sys

from sqlalchemy.exc import SQLAlchemyError

from app import create_app
from app.services.errors import ImportStructuralError
from app.services.import_pipeline import render_report, run_workbook_import


def main(argv=None):
    parser = argparse.ArgumentParser(description="Import Invoice + Collections sheets from an Excel workbook.")
    parser.add_argument("workbook", nargs="?")
    args = parser.parse_args(argv)

    try:
        app = create_app()
        with app.app_context():
            result = run_workbook_import(args.workbook)
    except (ImportStructuralError, SQLAlchemyError, RuntimeError) as exc:
        print(f"❌ Import failed: {exc}")
        return 1

    print(render_report(result))
    return 0


if __name__ == "__main__":
    sys.exit(main())
