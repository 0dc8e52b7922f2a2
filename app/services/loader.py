"""Full-replace load of provider_master_data, plus materialized view refresh.

The clear and every insert share one database transaction and are committed
once, so API readers see either the previous import or the new one in full.
Individual inserts run inside savepoints: a failing row is rolled back, logged
and counted, and the rest of the load carries on.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Iterable, List, Mapping, Optional, Tuple, Union

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.extensions import db
from app.models import ProviderMasterData

from .aggregation import CaseAggregate

logger = logging.getLogger(__name__)

_NON_ALNUM_RE = re.compile(r"[^A-Za-z0-9]")
_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")

STATUS_SUCCESS = "SUCCESS"
STATUS_FAILED = "FAILED"


@dataclass
class LoadReport:
    attempted: int = 0
    inserted: int = 0
    skipped_missing_date: int = 0
    errored: int = 0
    errors: List[Tuple[str, str]] = field(default_factory=list)
    skipped_keys: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ViewRefreshResult:
    name: str
    status: str
    duration_ms: float = 0.0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == STATUS_SUCCESS


def build_salesforce_id(case: CaseAggregate) -> str:
    """Opportunity id when the export has one, else a stable id from the case name."""
    if case.opportunity_id:
        return case.opportunity_id
    slug = _NON_ALNUM_RE.sub("", case.case_key)[:15]
    return f"OPP-{slug or 'UNKNOWN'}"


def build_fact_row(case: CaseAggregate, provider_name: str, provider_id: str) -> ProviderMasterData:
    return ProviderMasterData(
        salesforce_id=build_salesforce_id(case),
        opportunity_id=case.opportunity_id or None,
        opportunity_name=case.case_key,
        law_firm_name=case.law_firm_name or None,
        case_status=case.case_status or None,
        tranche_name=case.tranche_name or None,
        tranche_id=case.tranche_id or None,
        state=case.state or None,
        provider_name=case.provider_name or provider_name,
        provider_id=provider_id,
        funding_stage=case.funding_stage or None,
        payoff_status=case.payoff_status or None,
        ar_book_name=case.ar_book_name or None,
        ar_type=case.ar_type or None,
        invoice_amount=case.invoice_amount,
        collected_amount=case.collected_amount,
        write_off_amount=case.write_off_amount,
        open_balance=case.open_balance,
        invoice_count=case.invoice_count,
        date_of_accident=case.date_of_accident,
        invoice_date=case.invoice_date,
        last_invoice_date=case.last_invoice_date,
        origination_date=case.origination_date,
        collection_date=case.collection_date,
    )


def clear_fact_table() -> None:
    """Delete every row inside the current session transaction."""
    if db.session.get_bind().dialect.name == "postgresql":
        db.session.execute(
            text(f"TRUNCATE TABLE {ProviderMasterData.__tablename__} RESTART IDENTITY")
        )
    else:
        db.session.query(ProviderMasterData).delete(synchronize_session=False)


def loadable_cases(cases: Union[Mapping[str, CaseAggregate], Iterable[CaseAggregate]]) -> List[CaseAggregate]:
    values = cases.values() if isinstance(cases, Mapping) else cases
    return [c for c in values if c.invoice_date is not None]


def replace_fact_table(
    cases: Union[Mapping[str, CaseAggregate], Iterable[CaseAggregate]],
    provider_name: str,
    provider_id: str,
) -> LoadReport:
    """Replace the fact table contents with the given cases.

    Cases without an invoice date are skipped (invoice_date is NOT NULL).
    Structural database failures roll back the whole load and re-raise.
    """
    values = list(cases.values() if isinstance(cases, Mapping) else cases)
    report = LoadReport(attempted=len(values))

    try:
        clear_fact_table()

        for case in values:
            if case.invoice_date is None:
                report.skipped_missing_date += 1
                report.skipped_keys.append(case.case_key)
                continue
            try:
                with db.session.begin_nested():
                    db.session.add(build_fact_row(case, provider_name, provider_id))
            except SQLAlchemyError as exc:
                report.errored += 1
                report.errors.append((case.case_key, str(exc)))
                logger.error("Insert failed for case %r: %s", case.case_key, exc)
                continue
            report.inserted += 1

        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Fact table load failed; previous contents kept")
        raise

    if report.skipped_missing_date:
        logger.warning("%d cases skipped: no invoice date", report.skipped_missing_date)
    logger.info(
        "Loaded %d of %d cases (%d skipped, %d errors)",
        report.inserted, report.attempted, report.skipped_missing_date, report.errored,
    )
    return report


def refresh_materialized_views(view_names: Iterable[str]) -> List[ViewRefreshResult]:
    """Refresh each view in its own transaction; failures are reported, not raised."""
    results: List[ViewRefreshResult] = []
    for name in view_names:
        started = time.perf_counter()
        if not _IDENTIFIER_RE.match(name or ""):
            results.append(ViewRefreshResult(name=name, status=STATUS_FAILED, error="invalid view name"))
            logger.warning("Refusing to refresh invalid view name %r", name)
            continue

        try:
            with db.engine.begin() as conn:
                conn.execute(text(f"REFRESH MATERIALIZED VIEW {name}"))
        except SQLAlchemyError as exc:
            elapsed = (time.perf_counter() - started) * 1000.0
            message = str(getattr(exc, "orig", None) or exc)
            logger.warning("Refresh of %s failed: %s", name, message)
            results.append(ViewRefreshResult(name=name, status=STATUS_FAILED, duration_ms=elapsed, error=message))
            continue

        elapsed = (time.perf_counter() - started) * 1000.0
        logger.info("Refreshed %s in %.0f ms", name, elapsed)
        results.append(ViewRefreshResult(name=name, status=STATUS_SUCCESS, duration_ms=elapsed))
    return results
