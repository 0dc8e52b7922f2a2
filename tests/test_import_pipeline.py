"""End-to-end tests: exports on disk -> fact table -> report."""

import os
from datetime import date

import openpyxl
import pytest

from app.models import ProviderMasterData
from app.services.errors import HeaderNotFoundError, SourceFileNotFoundError
from app.services.import_pipeline import render_report, run_csv_import, run_workbook_import
from app.services.reconciliation import MergePolicy, ResidualBucket
from app.services.verification import ExpectedTotals


def _rows():
    return {r.opportunity_name: r for r in ProviderMasterData.query.all()}


def _snapshot():
    return sorted(
        ({k: v for k, v in r.to_dict().items() if k != "id"} for r in ProviderMasterData.query.all()),
        key=lambda d: d["opportunity_name"],
    )


class TestCsvImport:
    def test_two_cases_from_three_invoice_and_two_collection_rows(self, app, export_files) -> None:
        result = run_csv_import(*export_files)

        assert result.reconciliation.total == 2
        assert result.reconciliation.matched == 1
        assert result.load.inserted == 2

        rows = _rows()
        assert set(rows) == {"Smith, John", "Doe, Jane"}

        smith = rows["Smith, John"]
        assert smith.invoice_amount == pytest.approx(1500.0)
        assert smith.collected_amount == pytest.approx(400.0)
        assert smith.write_off_amount == pytest.approx(1100.0)
        assert smith.open_balance == pytest.approx(0.0)
        assert smith.invoice_count == 2
        assert smith.invoice_date == date(2023, 2, 10)
        assert smith.last_invoice_date == date(2023, 3, 10)
        assert smith.collection_date == date(2024, 3, 15)
        assert smith.salesforce_id == "006AAA"

        doe = rows["Doe, Jane"]
        assert doe.collected_amount == 0.0
        assert doe.open_balance == pytest.approx(750.0)
        assert doe.collection_date is None
        assert doe.salesforce_id == "OPP-DoeJane"

        # Totals equal the arithmetic sum of the contributing rows.
        assert result.case_totals.total_invoiced == pytest.approx(1000.0 + 500.0 + 750.0)
        assert result.case_totals.total_collected == pytest.approx(300.0 + 100.0)

    def test_verification_and_report(self, app, export_files) -> None:
        result = run_csv_import(*export_files)

        assert result.verification.passed
        assert result.succeeded
        report = render_report(result)
        assert "Verification: PASS" in report
        assert "Matched:            1" in report
        assert "$2,250.00" in report
        # SQLite cannot refresh materialized views; the failure is reported only.
        assert all(not v.ok for v in result.views)
        assert "FAILED" in report

    def test_rerun_is_idempotent(self, app, export_files) -> None:
        run_csv_import(*export_files)
        first = _snapshot()
        run_csv_import(*export_files)
        second = _snapshot()

        assert len(second) == 2
        assert first == second

    def test_backup_written_before_load(self, app, export_files) -> None:
        run_csv_import(*export_files)
        result = run_csv_import(*export_files)

        assert result.backup_path and os.path.isfile(result.backup_path)
        assert os.path.dirname(result.backup_path) == app.config["BACKUP_DIR"]

    def test_configured_expected_totals_can_fail(self, app, export_files) -> None:
        result = run_csv_import(*export_files, expected=ExpectedTotals(total_invoiced=9999.0))

        assert not result.verification.passed
        assert not result.succeeded
        assert "Verification: FAIL" in render_report(result)
        assert ProviderMasterData.query.count() == 2

    def test_policy_is_passed_through(self, app, export_files) -> None:
        run_csv_import(*export_files, policy=MergePolicy(residual=ResidualBucket.OPEN_BALANCE))
        smith = _rows()["Smith, John"]
        assert smith.open_balance == pytest.approx(1100.0)
        assert smith.write_off_amount == 0.0

    def test_defaults_come_from_config(self, app, export_files) -> None:
        app.config["INVOICE_CSV_PATH"], app.config["COLLECTIONS_CSV_PATH"] = export_files
        assert run_csv_import().load.inserted == 2


class TestStructuralFailures:
    def test_missing_file_leaves_table_untouched(self, app, export_files, tmp_path) -> None:
        run_csv_import(*export_files)
        with pytest.raises(SourceFileNotFoundError):
            run_csv_import(str(tmp_path / "missing.csv"), export_files[1])
        assert ProviderMasterData.query.count() == 2

    def test_unrecognised_layout(self, app, export_files, tmp_path) -> None:
        bad = tmp_path / "bad.csv"
        bad.write_text("name,amount\nA,1\n", encoding="utf-8")
        with pytest.raises(HeaderNotFoundError):
            run_csv_import(str(bad), export_files[1])


class TestWorkbookImport:
    def test_workbook_sheets(self, app, tmp_path, invoice_csv_text, collections_csv_text) -> None:
        from app.services.source_parser import table_from_csv

        wb = openpyxl.Workbook()
        inv = wb.active
        inv.title = "Invoice Data"
        for row in table_from_csv(invoice_csv_text):
            inv.append(row)
        coll = wb.create_sheet("Collections Data")
        for row in table_from_csv(collections_csv_text):
            coll.append(row)
        path = tmp_path / "TPG_Analysis.xlsx"
        wb.save(path)

        result = run_workbook_import(str(path))

        assert result.load.inserted == 2
        assert _rows()["Smith, John"].collected_amount == pytest.approx(400.0)
        assert result.verification.passed
