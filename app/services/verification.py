"""Post-load checks: recompute headline totals from the fact table and compare.

Currency totals are compared within an absolute tolerance (default $1) and the
collection rate within percentage points (default 0.5), since float sums drift
by cents across the pipeline. A failed check is reported, never raised: the
operator decides whether to roll back from the backup.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy import func

from app.extensions import db
from app.models import ProviderMasterData

from .aggregation import CaseTotals

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FactTableTotals:
    record_count: int = 0
    total_invoiced: float = 0.0
    total_collected: float = 0.0
    total_written_off: float = 0.0
    total_open: float = 0.0

    @property
    def collection_rate(self) -> float:
        if not self.total_invoiced:
            return 0.0
        return self.total_collected / self.total_invoiced * 100.0


@dataclass(frozen=True)
class ExpectedTotals:
    """Known-good figures, e.g. the summary tab of the source workbook. None = unchecked."""

    record_count: Optional[int] = None
    total_invoiced: Optional[float] = None
    total_collected: Optional[float] = None
    collection_rate: Optional[float] = None

    @property
    def is_empty(self) -> bool:
        return all(
            v is None
            for v in (self.record_count, self.total_invoiced, self.total_collected, self.collection_rate)
        )

    @classmethod
    def from_config(cls, config) -> "ExpectedTotals":
        return cls(
            record_count=config.get("EXPECTED_RECORD_COUNT"),
            total_invoiced=config.get("EXPECTED_TOTAL_INVOICED"),
            total_collected=config.get("EXPECTED_TOTAL_COLLECTED"),
            collection_rate=config.get("EXPECTED_COLLECTION_RATE"),
        )

    @classmethod
    def from_case_totals(cls, totals: CaseTotals) -> "ExpectedTotals":
        return cls(
            record_count=totals.case_count,
            total_invoiced=totals.total_invoiced,
            total_collected=totals.total_collected,
            collection_rate=totals.collection_rate,
        )


@dataclass(frozen=True)
class VerificationCheck:
    name: str
    expected: float
    actual: float
    tolerance: float
    unit: str = "$"

    @property
    def difference(self) -> float:
        return self.actual - self.expected

    @property
    def passed(self) -> bool:
        return abs(self.difference) <= self.tolerance


@dataclass
class VerificationReport:
    actual: FactTableTotals
    checks: List[VerificationCheck] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(c.passed for c in self.checks)

    @property
    def failures(self) -> List[VerificationCheck]:
        return [c for c in self.checks if not c.passed]


def compute_fact_table_totals() -> FactTableTotals:
    row = db.session.query(
        func.count(ProviderMasterData.id),
        func.coalesce(func.sum(ProviderMasterData.invoice_amount), 0.0),
        func.coalesce(func.sum(ProviderMasterData.collected_amount), 0.0),
        func.coalesce(func.sum(ProviderMasterData.write_off_amount), 0.0),
        func.coalesce(func.sum(ProviderMasterData.open_balance), 0.0),
    ).one()
    return FactTableTotals(
        record_count=int(row[0] or 0),
        total_invoiced=round(float(row[1] or 0), 2),
        total_collected=round(float(row[2] or 0), 2),
        total_written_off=round(float(row[3] or 0), 2),
        total_open=round(float(row[4] or 0), 2),
    )


def verify_totals(
    actual: FactTableTotals,
    expected: ExpectedTotals,
    currency_tolerance: float = 1.0,
    rate_tolerance: float = 0.5,
) -> VerificationReport:
    report = VerificationReport(actual=actual)

    if expected.record_count is not None:
        report.checks.append(
            VerificationCheck("Record count", float(expected.record_count), float(actual.record_count), 0.0, unit="")
        )
    if expected.total_invoiced is not None:
        report.checks.append(
            VerificationCheck("Total invoiced", expected.total_invoiced, actual.total_invoiced, currency_tolerance)
        )
    if expected.total_collected is not None:
        report.checks.append(
            VerificationCheck("Total collected", expected.total_collected, actual.total_collected, currency_tolerance)
        )
    if expected.collection_rate is not None:
        report.checks.append(
            VerificationCheck("Collection rate", expected.collection_rate, actual.collection_rate, rate_tolerance, unit="%")
        )

    for check in report.failures:
        logger.warning(
            "Verification mismatch on %s: expected %.2f, got %.2f", check.name, check.expected, check.actual
        )
    return report
