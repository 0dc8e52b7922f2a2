"""Fold parsed export rows into one CaseAggregate per case.

Each aggregate_* function builds fresh CaseAccumulator objects, folds every row
into them, then freezes the result. Nothing is shared between calls, so the
stages can be tested one at a time.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import asdict, dataclass, fields, replace
from datetime import date
from typing import Dict, Iterable, Mapping, Optional

from .source_parser import CaseAttributes, RawCollectionRow, RawInvoiceRow

logger = logging.getLogger(__name__)


class Source(str, enum.Enum):
    INVOICE = "invoice"
    COLLECTIONS = "collections"
    MERGED = "merged"


def money(value: float) -> float:
    """Round to cents. Keeps float sums from drifting into the fourth decimal."""
    return round(float(value or 0.0) + 0.0, 2)


@dataclass(frozen=True)
class CaseAggregate:
    case_key: str
    source: Source

    opportunity_id: str = ""
    law_firm_name: str = ""
    case_status: str = ""
    tranche_name: str = ""
    tranche_id: str = ""
    state: str = ""
    provider_name: str = ""
    funding_stage: str = ""
    payoff_status: str = ""
    ar_book_name: str = ""
    ar_type: str = ""
    date_of_accident: Optional[date] = None
    origination_date: Optional[date] = None

    invoice_amount: float = 0.0
    collected_amount: float = 0.0
    write_off_amount: float = 0.0
    open_balance: float = 0.0
    invoice_count: int = 0

    invoice_date: Optional[date] = None
    last_invoice_date: Optional[date] = None
    collection_date: Optional[date] = None

    def evolve(self, **changes) -> "CaseAggregate":
        return replace(self, **changes)


_ATTRIBUTE_NAMES = tuple(f.name for f in fields(CaseAttributes))


def _min_date(current: Optional[date], candidate: Optional[date]) -> Optional[date]:
    if candidate is None:
        return current
    if current is None or candidate < current:
        return candidate
    return current


def _max_date(current: Optional[date], candidate: Optional[date]) -> Optional[date]:
    if candidate is None:
        return current
    if current is None or candidate > current:
        return candidate
    return current


class CaseAccumulator:
    """Running totals for a single case while rows are being folded in."""

    def __init__(self, case_key: str, source: Source):
        self.case_key = case_key
        self.source = source
        self.attributes: Dict[str, object] = asdict(CaseAttributes())

        self.invoice_amount = 0.0
        self.collected_amount = 0.0
        self.write_off_amount = 0.0
        self.open_balance = 0.0
        self.invoice_count = 0

        self.invoice_date: Optional[date] = None
        self.last_invoice_date: Optional[date] = None
        self.collection_date: Optional[date] = None

    def _absorb_attributes(self, attributes: CaseAttributes) -> None:
        # First non-empty value wins; later rows only fill gaps.
        for name in _ATTRIBUTE_NAMES:
            if self.attributes[name] in (None, ""):
                value = getattr(attributes, name)
                if value not in (None, ""):
                    self.attributes[name] = value

    def _track_invoice_date(self, value: Optional[date]) -> None:
        self.invoice_date = _min_date(self.invoice_date, value)
        self.last_invoice_date = _max_date(self.last_invoice_date, value)

    def add_invoice_row(self, row: RawInvoiceRow) -> None:
        self._absorb_attributes(row.attributes)
        self.invoice_amount += row.invoice_amount
        self.collected_amount += row.settled_amount
        self.write_off_amount += row.write_off_amount
        self.open_balance += row.open_amount
        self.invoice_count += 1
        self._track_invoice_date(row.invoice_date)

    def add_collection_row(self, row: RawCollectionRow) -> None:
        self._absorb_attributes(row.attributes)
        self.invoice_amount += row.invoice_amount
        self.collected_amount += row.collected_amount
        self.invoice_count += 1
        self._track_invoice_date(row.invoice_date)
        self.collection_date = _min_date(self.collection_date, row.deposit_date)

    def freeze(self) -> CaseAggregate:
        return CaseAggregate(
            case_key=self.case_key,
            source=self.source,
            invoice_amount=money(self.invoice_amount),
            collected_amount=money(self.collected_amount),
            write_off_amount=money(self.write_off_amount),
            open_balance=money(self.open_balance),
            invoice_count=self.invoice_count,
            invoice_date=self.invoice_date,
            last_invoice_date=self.last_invoice_date,
            collection_date=self.collection_date,
            **self.attributes,
        )


def _fold(rows, source: Source, add) -> Dict[str, CaseAggregate]:
    accumulators: Dict[str, CaseAccumulator] = {}
    for row in rows:
        key = row.case_key.strip()
        if not key:
            continue
        acc = accumulators.get(key)
        if acc is None:
            acc = accumulators[key] = CaseAccumulator(key, source)
        add(acc, row)
    return {key: acc.freeze() for key, acc in accumulators.items()}


def aggregate_invoice_rows(rows: Iterable[RawInvoiceRow]) -> Dict[str, CaseAggregate]:
    cases = _fold(rows, Source.INVOICE, CaseAccumulator.add_invoice_row)
    logger.info("Aggregated invoice rows into %d cases", len(cases))
    return cases


def aggregate_collection_rows(rows: Iterable[RawCollectionRow]) -> Dict[str, CaseAggregate]:
    cases = _fold(rows, Source.COLLECTIONS, CaseAccumulator.add_collection_row)
    logger.info("Aggregated collection rows into %d cases", len(cases))
    return cases


# -----------------------------------------------------------------------------
#  Totals for reporting
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class CaseTotals:
    case_count: int = 0
    total_invoiced: float = 0.0
    total_collected: float = 0.0
    total_written_off: float = 0.0
    total_open: float = 0.0

    @property
    def collection_rate(self) -> float:
        """Collected / invoiced, as a percentage."""
        if not self.total_invoiced:
            return 0.0
        return self.total_collected / self.total_invoiced * 100.0


def summarize_cases(cases: Mapping[str, CaseAggregate]) -> CaseTotals:
    values = list(cases.values())
    return CaseTotals(
        case_count=len(values),
        total_invoiced=money(sum(c.invoice_amount for c in values)),
        total_collected=money(sum(c.collected_amount for c in values)),
        total_written_off=money(sum(c.write_off_amount for c in values)),
        total_open=money(sum(c.open_balance for c in values)),
    )
