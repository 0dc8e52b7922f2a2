"""Invoice / Collections export parsing.

The exports come out of a BI tool either as CSV files or as sheets of one Excel
workbook. Both shapes carry a few filter/metadata rows before the real header,
so the header is located by scanning for a known column-name fragment.

Parsing is tolerant at the cell level and strict at the structural level:
- an unparseable amount becomes 0.0, an unparseable date becomes None;
- a row without a case name, or with every amount at zero, is skipped and counted;
- a missing file, sheet, or header row raises, as does a file that is not
  UTF-8 text or not an .xlsx workbook (see app/services/errors.py).
"""

from __future__ import annotations

import csv
import io
import logging
import math
import re
import zipfile
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Generic, Iterable, Iterator, List, Optional, Sequence, TypeVar, Union

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

from .errors import HeaderNotFoundError, SheetNotFoundError, SourceFileNotFoundError, SourceFormatError

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
#  Export layout
# -----------------------------------------------------------------------------

DEFAULT_SCAN_DEPTH = 10
INVOICE_ANCHORS = ("Invoice_Date2 - Year", "Open Invoice")
COLLECTIONS_ANCHORS = ("Total Invoice Amount", "Total Amount Collected")

COL_CASE_KEY = "opname"

# Invoice export
COL_OPEN_INVOICE = "Open Invoice"
COL_SETTLED = "Settled"
COL_WRITE_OFF = "Write Off"
COL_INVOICE_DATE = "Invoice_Date"
COL_CREATED_DATE = "createddate"
INVOICE_DATE_PARTS = "Invoice_Date2"

# Collections export
COL_TOTAL_INVOICE = "Total Invoice Amount"
COL_TOTAL_COLLECTED = "Total Amount Collected"
DEPOSIT_DATE_PARTS = "date_deposited_1__c"

# Case attributes shared by both exports (attribute -> export column)
ATTRIBUTE_COLUMNS = {
    "opportunity_id": "opid",
    "law_firm_name": "law_firm_account_name__c",
    "case_status": "case_status__c",
    "tranche_name": "Tranche_Name",
    "tranche_id": "tranche",
    "state": "billingstate",
    "provider_name": "paname",
    "funding_stage": "funding_stage__c",
    "payoff_status": "payoff_status__c",
    "ar_book_name": "arbookname",
    "ar_type": "ar_type__c",
}
COL_DATE_OF_ACCIDENT = "date_of_accident__c"
COL_ORIGINATION_DATE = "origination_date__c"

MONTHS = {
    "january": 1, "february": 2, "march": 3, "april": 4, "may": 5, "june": 6,
    "july": 7, "august": 8, "september": 9, "october": 10, "november": 11, "december": 12,
}
MONTHS.update({name[:3]: num for name, num in list(MONTHS.items())})
MONTHS["sept"] = 9

_AMOUNT_NOISE_RE = re.compile(r"[$,\s]")
_SERIAL_RE = re.compile(r"^\d{5}(\.\d+)?$")
_EXCEL_EPOCH = datetime(1899, 12, 30)

_DATE_FORMATS = (
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%Y/%m/%d",
    "%m-%d-%Y",
    "%B %d, %Y",
    "%b %d, %Y",
    "%B %d %Y",
    "%b %d %Y",
    "%d-%b-%Y",
    "%d %B %Y",
)


# -----------------------------------------------------------------------------
#  Row types
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class CaseAttributes:
    """Descriptive (non-monetary) fields of a case as they appear on an export row."""

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


@dataclass(frozen=True)
class RawInvoiceRow:
    case_key: str
    attributes: CaseAttributes
    open_amount: float = 0.0
    settled_amount: float = 0.0
    write_off_amount: float = 0.0
    invoice_date: Optional[date] = None

    @property
    def invoice_amount(self) -> float:
        return self.open_amount + self.settled_amount + self.write_off_amount


@dataclass(frozen=True)
class RawCollectionRow:
    case_key: str
    attributes: CaseAttributes
    collected_amount: float = 0.0
    invoice_amount: float = 0.0
    deposit_date: Optional[date] = None
    invoice_date: Optional[date] = None


RowT = TypeVar("RowT", RawInvoiceRow, RawCollectionRow)


@dataclass
class ParseResult(Generic[RowT]):
    rows: List[RowT] = field(default_factory=list)
    header_index: int = 0
    rows_read: int = 0
    skipped_missing_key: int = 0
    skipped_zero_amount: int = 0

    @property
    def skipped(self) -> int:
        return self.skipped_missing_key + self.skipped_zero_amount


# -----------------------------------------------------------------------------
#  Cell coercion
# -----------------------------------------------------------------------------

def cell_text(value: Any) -> str:
    """Cell value as trimmed text. Excel hands back 12345.0 for numeric ids."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value).strip()


def parse_amount(value: Any) -> float:
    """Parse a currency-ish cell ("$12,345.67", "1,200.", 350) into a float.

    Blank or unparseable values are 0.0; a bad cell never fails the row.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else 0.0

    cleaned = _AMOUNT_NOISE_RE.sub("", str(value))
    if cleaned.endswith("."):
        cleaned = cleaned[:-1]
    if not cleaned:
        return 0.0
    try:
        amount = float(cleaned)
    except ValueError:
        return 0.0
    return amount if math.isfinite(amount) else 0.0


def excel_serial_to_date(serial: float) -> Optional[date]:
    if serial <= 0:
        return None
    try:
        return (_EXCEL_EPOCH + timedelta(days=float(serial))).date()
    except OverflowError:
        return None


def parse_date(value: Any) -> Optional[date]:
    """Parse a single free-text date cell into a calendar date.

    Accepts date/datetime cells, Excel serial numbers, ISO strings with or
    without a time and zone, US slash dates and month-name dates. Any time zone
    is dropped. Returns None when nothing matches.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        return excel_serial_to_date(value)

    text = str(value).strip()
    if not text:
        return None

    if _SERIAL_RE.match(text):
        return excel_serial_to_date(float(text))

    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass

    candidates = [text]
    if " " in text:
        # "3/15/2024 10:42 AM" style exports
        candidates.append(text.split()[0])
    for candidate in candidates:
        for fmt in _DATE_FORMATS:
            try:
                return datetime.strptime(candidate, fmt).date()
            except ValueError:
                continue
    return None


def parse_split_date(year: Any, month: Any, day: Any) -> Optional[str]:
    """Recombine "<col> - Year", "<col> - Month", "<col> - Day" cells.

    The month is usually a full month name ("March") but abbreviations and
    numbers are accepted. Returns a zero-padded ISO string ("2024-03-05"), or
    None when any part is blank or the parts do not form a real date.
    """
    y, m, d = cell_text(year), cell_text(month), cell_text(day)
    if not (y and m and d):
        return None

    month_num = MONTHS.get(m.lower().rstrip("."))
    if month_num is None and m.isdigit():
        month_num = int(m)
    if month_num is None:
        return None

    try:
        year_num = int(float(y))
        day_num = int(float(d))
        date(year_num, month_num, day_num)
    except (TypeError, ValueError):
        return None
    return f"{year_num:04d}-{month_num:02d}-{day_num:02d}"


def _split_date_column(record: Dict[str, Any], prefix: str) -> Optional[date]:
    iso = parse_split_date(
        record.get(f"{prefix} - Year"),
        record.get(f"{prefix} - Month"),
        record.get(f"{prefix} - Day"),
    )
    return date.fromisoformat(iso) if iso else None


# -----------------------------------------------------------------------------
#  Tables and header detection
# -----------------------------------------------------------------------------

Table = List[List[Any]]


def read_source_text(path: Union[str, Path]) -> str:
    p = Path(path)
    if not p.is_file():
        raise SourceFileNotFoundError(p)
    # Exports saved from Excel often carry a UTF-8 BOM.
    try:
        return p.read_text(encoding="utf-8-sig")
    except UnicodeDecodeError as exc:
        raise SourceFormatError(p, f"not UTF-8 text ({exc.reason} at byte {exc.start})") from exc


def table_from_csv(text: str) -> Table:
    """Split CSV text into rows of cells, honoring double-quoted fields."""
    return [[cell.strip() for cell in row] for row in csv.reader(io.StringIO(text))]


def load_workbook(path: Union[str, Path]):
    p = Path(path)
    if not p.is_file():
        raise SourceFileNotFoundError(p)
    logger.info("Opening workbook: %s", p)
    try:
        return openpyxl.load_workbook(p, data_only=True, read_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError) as exc:
        raise SourceFormatError(p, f"not a readable .xlsx workbook ({exc})") from exc


def table_from_worksheet(workbook, sheet_name: str) -> Table:
    if sheet_name not in workbook.sheetnames:
        raise SheetNotFoundError(sheet_name, workbook.sheetnames)
    sheet = workbook[sheet_name]
    return [list(row) for row in sheet.iter_rows(values_only=True)]


def locate_header(
    table: Sequence[Sequence[Any]],
    anchors: Iterable[str],
    max_scan: int = DEFAULT_SCAN_DEPTH,
    source: str = "source",
) -> int:
    """Index of the first row (within max_scan) containing any anchor fragment."""
    anchors = tuple(a for a in anchors if a)
    if not anchors:
        raise ValueError("at least one header anchor is required")
    needles = [a.lower() for a in anchors]

    for idx, row in enumerate(table[:max_scan]):
        row_text = "|".join(cell_text(c) for c in row).lower()
        if any(n in row_text for n in needles):
            return idx
    raise HeaderNotFoundError(anchors, max_scan, source)


def iter_records(table: Sequence[Sequence[Any]], header_index: int) -> Iterator[Dict[str, Any]]:
    """Yield one dict per data row below the header, keyed by header name."""
    headers = [cell_text(c) for c in table[header_index]]
    for row in table[header_index + 1:]:
        if not any(cell_text(c) for c in row):
            continue
        record: Dict[str, Any] = {}
        for i, name in enumerate(headers):
            if not name or name in record:
                continue
            value = row[i] if i < len(row) else None
            record[name] = value.strip() if isinstance(value, str) else value
        yield record


# -----------------------------------------------------------------------------
#  Record -> typed row
# -----------------------------------------------------------------------------

def _attributes(record: Dict[str, Any]) -> CaseAttributes:
    values = {attr: cell_text(record.get(col)) for attr, col in ATTRIBUTE_COLUMNS.items()}
    return CaseAttributes(
        date_of_accident=parse_date(record.get(COL_DATE_OF_ACCIDENT)),
        origination_date=parse_date(record.get(COL_ORIGINATION_DATE)),
        **values,
    )


def _invoice_date(record: Dict[str, Any]) -> Optional[date]:
    return (
        parse_date(record.get(COL_INVOICE_DATE))
        or parse_date(record.get(COL_CREATED_DATE))
        or _split_date_column(record, INVOICE_DATE_PARTS)
    )


def parse_invoice_records(
    records: Iterable[Dict[str, Any]], header_index: int = 0
) -> ParseResult[RawInvoiceRow]:
    result: ParseResult[RawInvoiceRow] = ParseResult(header_index=header_index)
    for record in records:
        result.rows_read += 1

        case_key = cell_text(record.get(COL_CASE_KEY))
        if not case_key:
            result.skipped_missing_key += 1
            continue

        open_amount = parse_amount(record.get(COL_OPEN_INVOICE))
        settled = parse_amount(record.get(COL_SETTLED))
        write_off = parse_amount(record.get(COL_WRITE_OFF))
        if open_amount == 0 and settled == 0 and write_off == 0:
            result.skipped_zero_amount += 1
            continue

        result.rows.append(
            RawInvoiceRow(
                case_key=case_key,
                attributes=_attributes(record),
                open_amount=open_amount,
                settled_amount=settled,
                write_off_amount=write_off,
                invoice_date=_invoice_date(record),
            )
        )

    logger.info(
        "Parsed %d invoice rows (%d read, %d without case name, %d zero-amount)",
        len(result.rows), result.rows_read, result.skipped_missing_key, result.skipped_zero_amount,
    )
    return result


def parse_collection_records(
    records: Iterable[Dict[str, Any]], header_index: int = 0
) -> ParseResult[RawCollectionRow]:
    result: ParseResult[RawCollectionRow] = ParseResult(header_index=header_index)
    for record in records:
        result.rows_read += 1

        case_key = cell_text(record.get(COL_CASE_KEY))
        if not case_key:
            result.skipped_missing_key += 1
            continue

        collected = parse_amount(record.get(COL_TOTAL_COLLECTED))
        invoiced = parse_amount(record.get(COL_TOTAL_INVOICE))
        if collected == 0 and invoiced == 0:
            result.skipped_zero_amount += 1
            continue

        deposit_date = _split_date_column(record, DEPOSIT_DATE_PARTS) or parse_date(
            record.get(DEPOSIT_DATE_PARTS)
        )
        result.rows.append(
            RawCollectionRow(
                case_key=case_key,
                attributes=_attributes(record),
                collected_amount=collected,
                invoice_amount=invoiced,
                deposit_date=deposit_date,
                invoice_date=parse_date(record.get(COL_INVOICE_DATE)),
            )
        )

    logger.info(
        "Parsed %d collection rows (%d read, %d without case name, %d zero-amount)",
        len(result.rows), result.rows_read, result.skipped_missing_key, result.skipped_zero_amount,
    )
    return result


# -----------------------------------------------------------------------------
#  Convenience entry points
# -----------------------------------------------------------------------------

def parse_invoice_table(
    table: Table, anchors: Iterable[str] = INVOICE_ANCHORS, max_scan: int = DEFAULT_SCAN_DEPTH
) -> ParseResult[RawInvoiceRow]:
    header = locate_header(table, anchors, max_scan, source="Invoice export")
    return parse_invoice_records(iter_records(table, header), header_index=header)


def parse_collections_table(
    table: Table, anchors: Iterable[str] = COLLECTIONS_ANCHORS, max_scan: int = DEFAULT_SCAN_DEPTH
) -> ParseResult[RawCollectionRow]:
    header = locate_header(table, anchors, max_scan, source="Collections export")
    return parse_collection_records(iter_records(table, header), header_index=header)


def parse_invoice_csv(text: str, anchors: Iterable[str] = INVOICE_ANCHORS, max_scan: int = DEFAULT_SCAN_DEPTH):
    return parse_invoice_table(table_from_csv(text), anchors, max_scan)


def parse_collections_csv(
    text: str, anchors: Iterable[str] = COLLECTIONS_ANCHORS, max_scan: int = DEFAULT_SCAN_DEPTH
):
    return parse_collections_table(table_from_csv(text), anchors, max_scan)


def parse_invoice_sheet(
    workbook, sheet_name: str = "Invoice Data",
    anchors: Iterable[str] = INVOICE_ANCHORS, max_scan: int = DEFAULT_SCAN_DEPTH,
):
    return parse_invoice_table(table_from_worksheet(workbook, sheet_name), anchors, max_scan)


def parse_collections_sheet(
    workbook, sheet_name: str = "Collections Data",
    anchors: Iterable[str] = COLLECTIONS_ANCHORS, max_scan: int = DEFAULT_SCAN_DEPTH,
):
    return parse_collections_table(table_from_worksheet(workbook, sheet_name), anchors, max_scan)
