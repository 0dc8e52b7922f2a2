"""Tests for the demo export generator."""

from app.scripts.seed_demo_data import generate_demo_exports
from app.services import source_parser
from app.services.import_pipeline import run_csv_import
from app.models import ProviderMasterData


class TestGenerateDemoExports:
    def test_files_parse_with_report_preamble(self, tmp_path) -> None:
        invoice_path, collections_path = generate_demo_exports(str(tmp_path), n_cases=20, seed=7)

        invoices = source_parser.parse_invoice_csv(source_parser.read_source_text(invoice_path))
        collections = source_parser.parse_collections_csv(source_parser.read_source_text(collections_path))

        assert invoices.header_index == 3
        assert collections.header_index == 3
        assert len({r.case_key for r in invoices.rows}) == 20
        assert all(r.invoice_date is not None for r in invoices.rows)
        assert all(r.deposit_date is not None for r in collections.rows)

    def test_same_seed_same_files(self, tmp_path) -> None:
        first = generate_demo_exports(str(tmp_path / "a"), n_cases=10, seed=3)
        second = generate_demo_exports(str(tmp_path / "b"), n_cases=10, seed=3)

        for left, right in zip(first, second):
            assert open(left, encoding="utf-8").read().splitlines()[3:] == open(
                right, encoding="utf-8"
            ).read().splitlines()[3:]

    def test_imports_cleanly(self, app, tmp_path) -> None:
        invoice_path, collections_path = generate_demo_exports(str(tmp_path), n_cases=30, seed=11)

        result = run_csv_import(invoice_path, collections_path, backup=False)

        assert result.succeeded
        assert result.reconciliation.collections_only == 0
        assert ProviderMasterData.query.count() == 30
