"""Tests for folding parsed rows into per-case aggregates."""

from datetime import date

import pytest

from app.services.aggregation import (
    CaseAccumulator,
    Source,
    aggregate_collection_rows,
    aggregate_invoice_rows,
    summarize_cases,
)
from app.services.source_parser import CaseAttributes, RawCollectionRow, RawInvoiceRow


def _inv(key, open_amt=0.0, settled=0.0, write_off=0.0, on=None, **attrs):
    return RawInvoiceRow(
        case_key=key,
        attributes=CaseAttributes(**attrs),
        open_amount=open_amt,
        settled_amount=settled,
        write_off_amount=write_off,
        invoice_date=on,
    )


def _coll(key, collected=0.0, invoiced=0.0, deposited=None, **attrs):
    return RawCollectionRow(
        case_key=key,
        attributes=CaseAttributes(**attrs),
        collected_amount=collected,
        invoice_amount=invoiced,
        deposit_date=deposited,
    )


class TestInvoiceAggregation:
    def test_sums_and_counts_per_case(self) -> None:
        cases = aggregate_invoice_rows(
            [
                _inv("A", open_amt=100.0, on=date(2024, 2, 1)),
                _inv("B", open_amt=50.0, on=date(2024, 1, 1)),
                _inv("A", settled=30.0, write_off=20.0, on=date(2024, 1, 15)),
            ]
        )

        assert list(cases) == ["A", "B"]
        a = cases["A"]
        assert a.source is Source.INVOICE
        assert a.invoice_amount == pytest.approx(150.0)
        assert a.collected_amount == pytest.approx(30.0)
        assert a.write_off_amount == pytest.approx(20.0)
        assert a.open_balance == pytest.approx(100.0)
        assert a.invoice_count == 2
        assert a.invoice_date == date(2024, 1, 15)
        assert a.last_invoice_date == date(2024, 2, 1)

    def test_null_dates_do_not_win(self) -> None:
        cases = aggregate_invoice_rows([_inv("A", 1.0, on=None), _inv("A", 1.0, on=date(2024, 5, 1))])
        assert cases["A"].invoice_date == date(2024, 5, 1)

    def test_keys_are_trimmed_but_not_fuzzy(self) -> None:
        cases = aggregate_invoice_rows([_inv(" Smith ", 1.0), _inv("Smith", 1.0), _inv("smith", 1.0)])
        assert set(cases) == {"Smith", "smith"}
        assert cases["Smith"].invoice_count == 2

    def test_first_non_empty_attribute_wins(self) -> None:
        cases = aggregate_invoice_rows(
            [
                _inv("A", 1.0, law_firm_name="", case_status="Negotiation"),
                _inv("A", 1.0, law_firm_name="Acme", case_status="Closed"),
            ]
        )
        assert cases["A"].law_firm_name == "Acme"
        assert cases["A"].case_status == "Negotiation"

    def test_amounts_rounded_to_cents(self) -> None:
        cases = aggregate_invoice_rows([_inv("A", 0.1), _inv("A", 0.2)])
        assert cases["A"].invoice_amount == 0.3

    def test_inputs_untouched_and_calls_independent(self) -> None:
        rows = [_inv("A", 10.0)]
        first = aggregate_invoice_rows(rows)
        second = aggregate_invoice_rows(rows)
        assert first == second
        assert first is not second


class TestCollectionAggregation:
    def test_earliest_deposit_becomes_collection_date(self) -> None:
        cases = aggregate_collection_rows(
            [
                _coll("A", collected=100.0, invoiced=500.0, deposited=date(2024, 4, 2)),
                _coll("A", collected=300.0, invoiced=1000.0, deposited=date(2024, 3, 15)),
                _coll("A", collected=5.0, deposited=None),
            ]
        )
        a = cases["A"]
        assert a.source is Source.COLLECTIONS
        assert a.collected_amount == pytest.approx(405.0)
        assert a.invoice_amount == pytest.approx(1500.0)
        assert a.collection_date == date(2024, 3, 15)


class TestAccumulatorAndTotals:
    def test_freeze_returns_immutable_snapshot(self) -> None:
        acc = CaseAccumulator("A", Source.INVOICE)
        acc.add_invoice_row(_inv("A", 10.0))
        frozen = acc.freeze()
        acc.add_invoice_row(_inv("A", 10.0))

        assert frozen.invoice_amount == 10.0
        with pytest.raises(AttributeError):
            frozen.invoice_amount = 99.0

    def test_summarize_cases(self) -> None:
        cases = aggregate_invoice_rows([_inv("A", 100.0, settled=50.0), _inv("B", 50.0)])
        totals = summarize_cases(cases)

        assert totals.case_count == 2
        assert totals.total_invoiced == pytest.approx(200.0)
        assert totals.total_collected == pytest.approx(50.0)
        assert totals.collection_rate == pytest.approx(25.0)

    def test_summarize_empty(self) -> None:
        totals = summarize_cases({})
        assert totals.case_count == 0
        assert totals.collection_rate == 0.0
