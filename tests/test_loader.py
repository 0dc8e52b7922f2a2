"""Tests for the full-replace fact table load and view refresh."""

from datetime import date

import pytest
from sqlalchemy.exc import IntegrityError

from app.models import ProviderMasterData
from app.services import loader
from app.services.aggregation import CaseAggregate, Source


def _case(key, invoice=100.0, invoice_date=date(2024, 1, 1), **extra):
    return CaseAggregate(
        case_key=key,
        source=Source.INVOICE,
        invoice_amount=invoice,
        open_balance=invoice,
        invoice_count=1,
        invoice_date=invoice_date,
        **extra,
    )


class TestBuildSalesforceId:
    def test_prefers_opportunity_id(self) -> None:
        assert loader.build_salesforce_id(_case("Smith, John", opportunity_id="006AAA")) == "006AAA"

    def test_falls_back_to_case_name(self) -> None:
        assert loader.build_salesforce_id(_case("Smith, John - 01/05/2023 (MVA)")) == "OPP-SmithJohn010520"

    def test_name_without_alphanumerics(self) -> None:
        assert loader.build_salesforce_id(_case("---")) == "OPP-UNKNOWN"


class TestReplaceFactTable:
    def test_inserts_rows(self, app) -> None:
        report = loader.replace_fact_table(
            {"A": _case("A", law_firm_name="Acme"), "B": _case("B", provider_name="Clinic West")},
            provider_name="Therapy Partners Group - Parent",
            provider_id="TPG-001",
        )

        assert (report.attempted, report.inserted, report.errored) == (2, 2, 0)
        rows = {r.opportunity_name: r for r in ProviderMasterData.query.all()}
        assert rows["A"].law_firm_name == "Acme"
        assert rows["A"].provider_name == "Therapy Partners Group - Parent"
        assert rows["B"].provider_name == "Clinic West"
        assert rows["A"].provider_id == "TPG-001"
        assert rows["A"].salesforce_id == "OPP-A"
        assert rows["A"].case_status is None

    def test_replaces_instead_of_appending(self, app) -> None:
        loader.replace_fact_table([_case("A"), _case("B")], "P", "P-1")
        loader.replace_fact_table([_case("C")], "P", "P-1")

        assert [r.opportunity_name for r in ProviderMasterData.query.all()] == ["C"]

    def test_case_without_invoice_date_is_skipped(self, app) -> None:
        report = loader.replace_fact_table([_case("A"), _case("NoDate", invoice_date=None)], "P", "P-1")

        assert report.inserted == 1
        assert report.skipped_missing_date == 1
        assert report.skipped_keys == ["NoDate"]
        assert ProviderMasterData.query.count() == 1

    def test_insert_error_is_counted_not_fatal(self, app, monkeypatch) -> None:
        real_build = loader.build_fact_row

        def flaky_build(case, provider_name, provider_id):
            if case.case_key == "Bad":
                raise IntegrityError("INSERT INTO provider_master_data", {}, Exception("constraint failed"))
            return real_build(case, provider_name, provider_id)

        monkeypatch.setattr(loader, "build_fact_row", flaky_build)
        report = loader.replace_fact_table([_case("A"), _case("Bad"), _case("C")], "P", "P-1")

        assert report.inserted == 2
        assert report.errored == 1
        assert report.errors[0][0] == "Bad"
        assert sorted(r.opportunity_name for r in ProviderMasterData.query.all()) == ["A", "C"]

    def test_structural_failure_keeps_previous_contents(self, app, monkeypatch) -> None:
        loader.replace_fact_table([_case("Old")], "P", "P-1")

        def boom(*args, **kwargs):
            raise RuntimeError("connection lost")

        monkeypatch.setattr(loader.db.session, "commit", boom)
        with pytest.raises(RuntimeError):
            loader.replace_fact_table([_case("New")], "P", "P-1")
        monkeypatch.undo()

        assert [r.opportunity_name for r in ProviderMasterData.query.all()] == ["Old"]


class TestRefreshMaterializedViews:
    def test_failures_are_reported_not_raised(self, app) -> None:
        # SQLite has no materialized views, so every refresh fails.
        results = loader.refresh_materialized_views(["provider_kpi_summary_mv", "law_firm_performance_mv"])

        assert [r.name for r in results] == ["provider_kpi_summary_mv", "law_firm_performance_mv"]
        assert all(r.status == loader.STATUS_FAILED for r in results)
        assert all(r.error for r in results)
        assert not any(r.ok for r in results)

    def test_invalid_names_are_rejected(self, app) -> None:
        (result,) = loader.refresh_materialized_views(["x; DROP TABLE provider_master_data"])
        assert result.status == loader.STATUS_FAILED
        assert result.error == "invalid view name"

    def test_load_survives_refresh_failure(self, app) -> None:
        loader.replace_fact_table([_case("A")], "P", "P-1")
        loader.refresh_materialized_views(["provider_kpi_summary_mv"])
        assert ProviderMasterData.query.count() == 1
