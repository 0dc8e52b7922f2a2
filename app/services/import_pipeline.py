"""End-to-end receivables import.

    parse -> backup -> aggregate -> reconcile -> load -> refresh views -> verify

Sources are parsed before anything is written, so a missing file or an
unrecognised layout aborts the run with the database untouched. Everything
after that is best-effort and ends up in the ImportResult / render_report
output instead of an exception.

Must run inside an application context.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Mapping, Optional

from flask import current_app

from app import format_currency

from . import source_parser
from .aggregation import CaseTotals, aggregate_collection_rows, aggregate_invoice_rows, summarize_cases
from .backup import backup_fact_table
from .loader import LoadReport, ViewRefreshResult, loadable_cases, refresh_materialized_views, replace_fact_table
from .reconciliation import DEFAULT_POLICY, MergePolicy, ReconcileResult, reconcile
from .source_parser import ParseResult
from .verification import ExpectedTotals, VerificationReport, compute_fact_table_totals, verify_totals

logger = logging.getLogger(__name__)


@dataclass
class ImportResult:
    source: str
    invoice_parse: ParseResult
    collections_parse: ParseResult
    invoice_case_count: int
    collection_case_count: int
    reconciliation: ReconcileResult
    case_totals: CaseTotals
    load: LoadReport
    views: List[ViewRefreshResult] = field(default_factory=list)
    verification: Optional[VerificationReport] = None
    backup_path: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        verified = self.verification is None or self.verification.passed
        return self.load.errored == 0 and verified


def _run_stages(
    source: str,
    invoice_parse: ParseResult,
    collections_parse: ParseResult,
    config: Mapping[str, Any],
    policy: MergePolicy,
    expected: Optional[ExpectedTotals],
    backup: bool,
) -> ImportResult:
    started = datetime.utcnow()

    backup_path = backup_fact_table(config["BACKUP_DIR"]) if backup else None

    invoice_cases = aggregate_invoice_rows(invoice_parse.rows)
    collection_cases = aggregate_collection_rows(collections_parse.rows)
    merged = reconcile(invoice_cases, collection_cases, policy)

    load = replace_fact_table(
        merged.cases,
        provider_name=config["DEFAULT_PROVIDER_NAME"],
        provider_id=config["DEFAULT_PROVIDER_ID"],
    )
    views = refresh_materialized_views(config.get("MATERIALIZED_VIEWS") or [])

    if expected is None:
        expected = ExpectedTotals.from_config(config)
    if expected.is_empty:
        # Nothing configured: check the table against what we tried to insert.
        loadable = {c.case_key: c for c in loadable_cases(merged.cases)}
        expected = ExpectedTotals.from_case_totals(summarize_cases(loadable))

    verification = verify_totals(
        compute_fact_table_totals(),
        expected,
        currency_tolerance=config.get("VERIFY_CURRENCY_TOLERANCE", 1.0),
        rate_tolerance=config.get("VERIFY_RATE_TOLERANCE", 0.5),
    )

    return ImportResult(
        source=source,
        invoice_parse=invoice_parse,
        collections_parse=collections_parse,
        invoice_case_count=len(invoice_cases),
        collection_case_count=len(collection_cases),
        reconciliation=merged,
        case_totals=summarize_cases(merged.cases),
        load=load,
        views=views,
        verification=verification,
        backup_path=backup_path,
        started_at=started,
        finished_at=datetime.utcnow(),
    )


def run_csv_import(
    invoice_path: Optional[str] = None,
    collections_path: Optional[str] = None,
    policy: MergePolicy = DEFAULT_POLICY,
    expected: Optional[ExpectedTotals] = None,
    backup: bool = True,
) -> ImportResult:
    config = current_app.config
    invoice_path = invoice_path or config["INVOICE_CSV_PATH"]
    collections_path = collections_path or config["COLLECTIONS_CSV_PATH"]
    depth = config.get("HEADER_SCAN_DEPTH", source_parser.DEFAULT_SCAN_DEPTH)

    logger.info("Importing CSV exports: %s, %s", invoice_path, collections_path)
    invoice_parse = source_parser.parse_invoice_csv(
        source_parser.read_source_text(invoice_path), config["INVOICE_HEADER_ANCHORS"], depth
    )
    collections_parse = source_parser.parse_collections_csv(
        source_parser.read_source_text(collections_path), config["COLLECTIONS_HEADER_ANCHORS"], depth
    )
    return _run_stages(
        f"{invoice_path} + {collections_path}",
        invoice_parse, collections_parse, config, policy, expected, backup,
    )


def run_workbook_import(
    workbook_path: Optional[str] = None,
    policy: MergePolicy = DEFAULT_POLICY,
    expected: Optional[ExpectedTotals] = None,
    backup: bool = True,
) -> ImportResult:
    config = current_app.config
    workbook_path = workbook_path or config["WORKBOOK_PATH"]
    depth = config.get("HEADER_SCAN_DEPTH", source_parser.DEFAULT_SCAN_DEPTH)

    workbook = source_parser.load_workbook(workbook_path)
    try:
        invoice_parse = source_parser.parse_invoice_sheet(
            workbook, config["INVOICE_SHEET_NAME"], config["INVOICE_HEADER_ANCHORS"], depth
        )
        collections_parse = source_parser.parse_collections_sheet(
            workbook, config["COLLECTIONS_SHEET_NAME"], config["COLLECTIONS_HEADER_ANCHORS"], depth
        )
    finally:
        workbook.close()

    return _run_stages(workbook_path, invoice_parse, collections_parse, config, policy, expected, backup)


# -----------------------------------------------------------------------------
#  Console report
# -----------------------------------------------------------------------------

def _format_check_value(value: float, unit: str) -> str:
    if unit == "$":
        return format_currency(value)
    if unit == "%":
        return f"{value:.2f}%"
    return f"{value:,.0f}"


def render_report(result: ImportResult) -> str:
    inv, coll = result.invoice_parse, result.collections_parse
    rec, load, totals = result.reconciliation, result.load, result.case_totals

    lines = [
        "=" * 70,
        "RECEIVABLES IMPORT",
        "=" * 70,
        f"Source: {result.source}",
    ]
    if result.backup_path:
        lines.append(f"Backup: {result.backup_path}")

    lines += [
        "",
        "Parsing",
        f"  Invoice rows:     {len(inv.rows):>8,} kept / {inv.rows_read:,} read "
        f"({inv.skipped_missing_key:,} no case name, {inv.skipped_zero_amount:,} zero amount)",
        f"  Collection rows:  {len(coll.rows):>8,} kept / {coll.rows_read:,} read "
        f"({coll.skipped_missing_key:,} no case name, {coll.skipped_zero_amount:,} zero amount)",
        "",
        "Reconciliation",
        f"  Invoice cases:      {result.invoice_case_count:,}",
        f"  Collection cases:   {result.collection_case_count:,}",
        f"  Matched:            {rec.matched:,}",
        f"  Invoice only:       {rec.invoice_only:,}",
        f"  Collections only:   {rec.collections_only:,}",
        f"  Merged cases:       {rec.total:,}",
        "",
        "Load",
        f"  Inserted:             {load.inserted:,}",
        f"  Skipped (no date):    {load.skipped_missing_date:,}",
        f"  Errors:               {load.errored:,}",
    ]
    for key, message in load.errors[:10]:
        lines.append(f"    ❌ {key}: {message.splitlines()[0] if message else ''}")

    if result.views:
        lines += ["", "Materialized views"]
        for view in result.views:
            mark = "✅" if view.ok else "⚠️ "
            suffix = f" ({view.error})" if view.error else ""
            lines.append(f"  {mark} {view.name}: {view.status} in {view.duration_ms:.0f} ms{suffix}")

    lines += [
        "",
        "Financial totals (merged cases)",
        f"  Invoiced:      {format_currency(totals.total_invoiced)}",
        f"  Collected:     {format_currency(totals.total_collected)}",
        f"  Written off:   {format_currency(totals.total_written_off)}",
        f"  Open balance:  {format_currency(totals.total_open)}",
        f"  Collection rate: {totals.collection_rate:.2f}%",
    ]

    if result.verification is not None:
        verdict = "PASS" if result.verification.passed else "FAIL"
        lines += ["", f"Verification: {verdict}"]
        for check in result.verification.checks:
            mark = "✅" if check.passed else "❌"
            lines.append(
                f"  {mark} {check.name}: expected {_format_check_value(check.expected, check.unit)}, "
                f"actual {_format_check_value(check.actual, check.unit)} "
                f"(diff {check.difference:+,.2f})"
            )
        if not result.verification.passed:
            lines.append("  ⚠️  Totals outside tolerance. Review before relying on this import;")
            lines.append("     restore with: python -m app.scripts.restore_backup <backup file>")

    lines.append("=" * 70)
    return "\n".join(lines)
