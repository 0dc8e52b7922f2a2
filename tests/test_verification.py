"""Tests for post-load verification."""

from datetime import date

import pytest

from app.services.aggregation import CaseAggregate, CaseTotals, Source
from app.services.loader import replace_fact_table
from app.services.verification import (
    ExpectedTotals,
    FactTableTotals,
    compute_fact_table_totals,
    verify_totals,
)


ACTUAL = FactTableTotals(record_count=2, total_invoiced=1000.0, total_collected=400.0)


class TestVerifyTotals:
    def test_within_tolerance_passes(self) -> None:
        expected = ExpectedTotals(record_count=2, total_invoiced=1000.75, total_collected=399.5, collection_rate=40.3)
        report = verify_totals(ACTUAL, expected)

        assert report.passed
        assert [c.name for c in report.checks] == [
            "Record count", "Total invoiced", "Total collected", "Collection rate",
        ]

    def test_currency_outside_tolerance_fails(self) -> None:
        report = verify_totals(ACTUAL, ExpectedTotals(total_invoiced=1002.0))

        assert not report.passed
        (failure,) = report.failures
        assert failure.name == "Total invoiced"
        assert failure.difference == pytest.approx(-2.0)

    def test_rate_tolerance_is_percentage_points(self) -> None:
        assert not verify_totals(ACTUAL, ExpectedTotals(collection_rate=40.6)).passed
        assert verify_totals(ACTUAL, ExpectedTotals(collection_rate=40.6), rate_tolerance=1.0).passed

    def test_record_count_is_exact(self) -> None:
        assert not verify_totals(ACTUAL, ExpectedTotals(record_count=3)).passed

    def test_only_configured_values_are_checked(self) -> None:
        report = verify_totals(ACTUAL, ExpectedTotals())
        assert report.checks == []
        assert report.passed

    def test_expected_from_config_and_case_totals(self) -> None:
        from_config = ExpectedTotals.from_config({"EXPECTED_TOTAL_INVOICED": 10.0})
        assert from_config.total_invoiced == 10.0
        assert from_config.record_count is None
        assert not from_config.is_empty
        assert ExpectedTotals.from_config({}).is_empty

        from_cases = ExpectedTotals.from_case_totals(CaseTotals(case_count=1, total_invoiced=10.0, total_collected=5.0))
        assert from_cases.collection_rate == pytest.approx(50.0)


class TestComputeFactTableTotals:
    def test_empty_table(self, app) -> None:
        totals = compute_fact_table_totals()
        assert totals.record_count == 0
        assert totals.collection_rate == 0.0

    def test_sums_loaded_rows(self, app) -> None:
        replace_fact_table(
            [
                CaseAggregate("A", Source.MERGED, invoice_amount=1000.0, collected_amount=400.0,
                              write_off_amount=600.0, invoice_date=date(2024, 1, 1)),
                CaseAggregate("B", Source.INVOICE, invoice_amount=750.0, open_balance=750.0,
                              invoice_date=date(2024, 1, 1)),
            ],
            "P", "P-1",
        )
        totals = compute_fact_table_totals()

        assert totals.record_count == 2
        assert totals.total_invoiced == pytest.approx(1750.0)
        assert totals.total_collected == pytest.approx(400.0)
        assert totals.total_written_off == pytest.approx(600.0)
        assert totals.total_open == pytest.approx(750.0)
