"""Merge the Invoice-derived and Collections-derived case maps.

The Invoice export knows what was billed, the Collections export knows what
was paid. MergePolicy spells out which one wins and where the uncollected
remainder of a case is booked, so the rule can be read (and swapped) in one
place instead of being buried in conditionals.

Default policy:
- Collections wins on collected_amount and collection_date for matched cases.
- The residual max(0, invoice - collected) is booked as write_off_amount.
- Invoice-only cases keep collected = 0 and open_balance = invoice_amount.

With precedence=Source.INVOICE the Invoice side wins instead: matched cases
take the settled amount as collected, invoice-only cases keep their exported
settled / write-off / open split. The Invoice export carries no deposit dates,
so collection_date still falls back to the Collections side.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Mapping

from .aggregation import CaseAggregate, Source, money

logger = logging.getLogger(__name__)


class ResidualBucket(str, enum.Enum):
    WRITE_OFF = "write_off"
    OPEN_BALANCE = "open_balance"
    BY_CASE_STATUS = "by_case_status"


# Case statuses that still expect money; used by ResidualBucket.BY_CASE_STATUS.
OPEN_CASE_STATUSES = frozenset(
    s.lower()
    for s in (
        "Still Treating",
        "Gathering Bills",
        "Demand Sent",
        "Pending",
        "Negotiation",
        "In Litigation",
        "Litigation",
        "Settled - Not Yet Disbursed",
        "Settled - Awaiting Payment",
        "Settled - Pending",
    )
)


@dataclass(frozen=True)
class MergePolicy:
    precedence: Source = Source.COLLECTIONS
    residual: ResidualBucket = ResidualBucket.WRITE_OFF
    open_case_statuses: FrozenSet[str] = field(default=OPEN_CASE_STATUSES)

    def __post_init__(self):
        if self.precedence not in (Source.COLLECTIONS, Source.INVOICE):
            raise ValueError(f"precedence must be invoice or collections, not {self.precedence!r}")

    def residual_is_open(self, case_status: str) -> bool:
        if self.residual is ResidualBucket.OPEN_BALANCE:
            return True
        if self.residual is ResidualBucket.WRITE_OFF:
            return False
        return (case_status or "").strip().lower() in self.open_case_statuses

    def split_residual(self, invoice_amount: float, collected_amount: float, case_status: str):
        """Return (write_off_amount, open_balance); both floored at zero."""
        residual = money(max(0.0, invoice_amount - collected_amount))
        if self.residual_is_open(case_status):
            return 0.0, residual
        return residual, 0.0


DEFAULT_POLICY = MergePolicy()


@dataclass(frozen=True)
class ReconcileResult:
    cases: Dict[str, CaseAggregate]
    matched: int = 0
    invoice_only: int = 0
    collections_only: int = 0

    @property
    def total(self) -> int:
        return len(self.cases)


_DESCRIPTIVE_FIELDS = (
    "opportunity_id",
    "law_firm_name",
    "case_status",
    "tranche_name",
    "tranche_id",
    "state",
    "provider_name",
    "funding_stage",
    "payoff_status",
    "ar_book_name",
    "ar_type",
    "date_of_accident",
    "origination_date",
)


def _fill_gaps(primary: CaseAggregate, secondary: CaseAggregate) -> dict:
    """Descriptive fields from primary, falling back to secondary where blank."""
    out = {}
    for name in _DESCRIPTIVE_FIELDS:
        value = getattr(primary, name)
        if value in (None, ""):
            value = getattr(secondary, name)
        out[name] = value
    return out


def _merge_matched(inv: CaseAggregate, coll: CaseAggregate, policy: MergePolicy) -> CaseAggregate:
    if policy.precedence is Source.COLLECTIONS:
        winner, other = coll, inv
    else:
        winner, other = inv, coll
    collected = winner.collected_amount

    write_off, open_balance = policy.split_residual(inv.invoice_amount, collected, inv.case_status)
    return inv.evolve(
        source=Source.MERGED,
        collected_amount=money(collected),
        write_off_amount=write_off,
        open_balance=open_balance,
        collection_date=winner.collection_date or other.collection_date,
        invoice_date=inv.invoice_date or coll.invoice_date,
        last_invoice_date=inv.last_invoice_date or coll.last_invoice_date,
        **_fill_gaps(inv, coll),
    )


def _invoice_only(inv: CaseAggregate, policy: MergePolicy) -> CaseAggregate:
    if policy.precedence is Source.INVOICE:
        # Settled / Write Off / Open Invoice columns stand as exported.
        return inv.evolve(collection_date=None)
    return inv.evolve(
        collected_amount=0.0,
        write_off_amount=0.0,
        open_balance=money(inv.invoice_amount),
        collection_date=None,
    )


def _collections_only(coll: CaseAggregate, policy: MergePolicy) -> CaseAggregate:
    # Upstream gap: money came in for a case the Invoice export never billed.
    invoiced = coll.invoice_amount if coll.invoice_amount > 0 else coll.collected_amount
    write_off, open_balance = policy.split_residual(invoiced, coll.collected_amount, coll.case_status)
    return coll.evolve(
        invoice_amount=money(invoiced),
        write_off_amount=write_off,
        open_balance=open_balance,
    )


def reconcile(
    invoice_cases: Mapping[str, CaseAggregate],
    collection_cases: Mapping[str, CaseAggregate],
    policy: MergePolicy = DEFAULT_POLICY,
) -> ReconcileResult:
    """Build a new merged case map. Neither input is modified.

    Output order: Invoice cases in first-seen order, then Collections-only cases.
    """
    merged: Dict[str, CaseAggregate] = {}
    matched = invoice_only = collections_only = 0

    for key, inv in invoice_cases.items():
        coll = collection_cases.get(key)
        if coll is None:
            merged[key] = _invoice_only(inv, policy)
            invoice_only += 1
        else:
            merged[key] = _merge_matched(inv, coll, policy)
            matched += 1

    for key, coll in collection_cases.items():
        if key in merged:
            continue
        merged[key] = _collections_only(coll, policy)
        collections_only += 1

    if collections_only:
        logger.warning("%d cases appear only in the Collections export", collections_only)
    logger.info(
        "Reconciled %d cases (%d matched, %d invoice-only, %d collections-only)",
        len(merged), matched, invoice_only, collections_only,
    )
    return ReconcileResult(
        cases=merged,
        matched=matched,
        invoice_only=invoice_only,
        collections_only=collections_only,
    )
