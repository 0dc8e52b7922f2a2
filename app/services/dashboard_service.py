"""Dashboard aggregation over provider_master_data.

Routes stay thin: every figure the UI shows is computed here, in SQL where the
database can do it, and returned as plain dicts/lists ready for JSON.

Design goals:
- Portable: the same queries run on PostgreSQL and on SQLite (tests). Date
  arithmetic is done in Python (cutoff dates) and only compared in SQL.
- Parameterized: filters go through SQLAlchemy expressions, never string SQL.
- Stable shapes: empty tables produce zeroed structures, not None.

NOTE: The PostgreSQL materialized views (migrations/) precompute several of
these groupings for BI tools; the API reads the base table so it never serves
stale figures between refreshes.
"""

from __future__ import annotations

import calendar
from dataclasses import asdict, dataclass
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, case, func, or_, true

from app.extensions import db
from app.models import ProviderMasterData as PMD


# -----------------------------------------------------------------------------
#  Period handling
# -----------------------------------------------------------------------------

def _months_ago(today: date, months: int) -> date:
    year, month = today.year, today.month - months
    while month < 1:
        month += 12
        year -= 1
    day = min(today.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def get_period_start(period: str, *, today: Optional[date] = None) -> Optional[date]:
    """First date included by a dashboard period ('3m', '6m', '12m', 'ytd', 'all').

    'all' (and anything unknown) means no lower bound.
    """
    today = today or date.today()
    p = (period or "all").strip().lower()

    if p == "3m":
        return _months_ago(today, 3)
    if p == "6m":
        return _months_ago(today, 6)
    if p == "12m":
        return _months_ago(today, 12)
    if p == "ytd":
        return date(today.year, 1, 1)
    return None


def _money(value: Any) -> float:
    return round(float(value or 0), 2)


def _rate(numerator: Any, denominator: Any) -> float:
    """Percentage rounded to one decimal; 0 when the denominator is 0."""
    num, den = float(numerator or 0), float(denominator or 0)
    if not den:
        return 0.0
    return round(num / den * 100.0, 1)


def _provider_filter(provider_id: Optional[str]):
    return PMD.provider_id == provider_id if provider_id else true()


# -----------------------------------------------------------------------------
#  Case status stages
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class Stage:
    name: str
    category: str
    statuses: Tuple[str, ...]


CASE_STATUS_STAGES: Tuple[Stage, ...] = (
    Stage("Still Treating", "early_stage", ("still treating",)),
    Stage("Gathering Bills", "early_stage", ("gathering bills", "gathering records")),
    Stage("Demand Sent", "active", ("demand sent",)),
    Stage("Negotiation", "active", ("negotiation",)),
    Stage("In Litigation", "active", ("in litigation", "litigation")),
    Stage(
        "Settled - Awaiting Payment",
        "won",
        ("settled - not yet disbursed", "settled - awaiting payment", "settled - pending"),
    ),
    Stage("Pending", "at_risk", ("pending", "stale - pending")),
    Stage("No Longer Represent", "at_risk", ("no longer represent",)),
)
OTHER_STAGE = Stage("Other", "other", ())

AT_RISK_STATUSES = ("No Longer Represent", "Stale - Pending", "Pending")
SETTLED_PENDING_STATUSES = ("Settled - Not Yet Disbursed", "Settled - Awaiting Payment", "Settled - Pending")
LITIGATION_STATUSES = ("In Litigation", "Litigation")

# Open AR older than this (by invoice date) counts as at risk regardless of status.
AT_RISK_AGE_DAYS = 3 * 365


def stage_for_status(status: Optional[str]) -> Stage:
    key = (status or "").strip().lower()
    for stage in CASE_STATUS_STAGES:
        if key in stage.statuses:
            return stage
    return OTHER_STAGE


# -----------------------------------------------------------------------------
#  KPI / receivables summary
# -----------------------------------------------------------------------------

def get_kpi_summary(*, provider_id: Optional[str], period: str = "all", today: Optional[date] = None) -> Dict[str, Any]:
    """Headline KPIs.

    Invoice-side metrics are filtered by invoice_date, total_collected by
    collection_date, both against the same period start.
    """
    today = today or date.today()
    start = get_period_start(period, today=today)
    at_risk_cutoff = today - timedelta(days=AT_RISK_AGE_DAYS)

    invoice_filters = [_provider_filter(provider_id)]
    if start:
        invoice_filters.append(PMD.invoice_date >= start)

    row = (
        db.session.query(
            func.coalesce(func.sum(PMD.invoice_count), 0),
            func.count(func.distinct(PMD.opportunity_name)),
            func.count(func.distinct(PMD.law_firm_name)),
            func.coalesce(func.sum(PMD.invoice_amount), 0),
            func.coalesce(func.sum(PMD.collected_amount), 0),
            func.coalesce(func.sum(PMD.open_balance), 0),
            func.coalesce(func.sum(PMD.write_off_amount), 0),
            func.count(func.distinct(case((PMD.open_balance > 0, PMD.opportunity_name)))),
            func.coalesce(
                func.sum(case((PMD.case_status.in_(SETTLED_PENDING_STATUSES), PMD.open_balance), else_=0)), 0
            ),
            func.coalesce(
                func.sum(case((PMD.case_status.in_(LITIGATION_STATUSES), PMD.open_balance), else_=0)), 0
            ),
            func.coalesce(
                func.sum(
                    case(
                        (
                            or_(
                                PMD.case_status.in_(AT_RISK_STATUSES),
                                func.coalesce(PMD.invoice_date, PMD.origination_date) < at_risk_cutoff,
                            ),
                            PMD.open_balance,
                        ),
                        else_=0,
                    )
                ),
                0,
            ),
        )
        .filter(and_(*invoice_filters))
        .one()
    )

    collection_filters = [_provider_filter(provider_id), PMD.collected_amount > 0, PMD.collection_date.isnot(None)]
    if start:
        collection_filters.append(PMD.collection_date >= start)
    collected_in_period = (
        db.session.query(func.coalesce(func.sum(PMD.collected_amount), 0)).filter(and_(*collection_filters)).scalar()
    )

    total_invoiced = _money(row[3])
    return {
        "period": period,
        "periodStart": start.isoformat() if start else None,
        "invoice_count": int(row[0] or 0),
        "case_count": int(row[1] or 0),
        "law_firm_count": int(row[2] or 0),
        "open_case_count": int(row[7] or 0),
        "total_invoiced": total_invoiced,
        "total_collected_from_invoices": _money(row[4]),
        "total_collected": _money(collected_in_period),
        "total_open_balance": _money(row[5]),
        "total_written_off": _money(row[6]),
        "collection_rate": _rate(row[4], total_invoiced),
        "write_off_rate": _rate(row[6], total_invoiced),
        "settled_pending_ar": _money(row[8]),
        "active_litigation_ar": _money(row[9]),
        "at_risk_ar": _money(row[10]),
        "dso_days": get_days_sales_outstanding(provider_id=provider_id, start=start),
    }


def get_days_sales_outstanding(*, provider_id: Optional[str], start: Optional[date] = None) -> int:
    """Average days from invoice to first deposit over collected cases."""
    q = db.session.query(PMD.invoice_date, PMD.collection_date).filter(
        _provider_filter(provider_id),
        PMD.collected_amount > 0,
        PMD.collection_date.isnot(None),
        PMD.invoice_date.isnot(None),
    )
    if start:
        q = q.filter(PMD.invoice_date >= start)

    spans = [(collected - invoiced).days for invoiced, collected in q.all()]
    if not spans:
        return 0
    return round(sum(spans) / len(spans))


def get_receivables_summary(*, provider_id: Optional[str]) -> Dict[str, Any]:
    row = (
        db.session.query(
            func.count(PMD.id),
            func.coalesce(func.sum(PMD.invoice_amount), 0),
            func.coalesce(func.sum(PMD.collected_amount), 0),
            func.coalesce(func.sum(PMD.write_off_amount), 0),
            func.coalesce(func.sum(PMD.open_balance), 0),
            func.count(case((PMD.open_balance > 0, PMD.id))),
            func.coalesce(func.max(PMD.open_balance), 0),
        )
        .filter(_provider_filter(provider_id))
        .one()
    )
    open_cases = int(row[5] or 0)
    total_open = _money(row[4])
    return {
        "total_cases": int(row[0] or 0),
        "total_invoiced": _money(row[1]),
        "total_collected": _money(row[2]),
        "total_written_off": _money(row[3]),
        "total_open_ar": total_open,
        "open_cases": open_cases,
        "average_open_balance": _money(total_open / open_cases) if open_cases else 0.0,
        "largest_open_balance": _money(row[6]),
        "collection_rate": _rate(row[2], row[1]),
    }


# -----------------------------------------------------------------------------
#  Aging
# -----------------------------------------------------------------------------

# (label, minimum age in days); an open balance lands in the last bucket it reaches.
AGING_BUCKETS: Tuple[Tuple[str, int], ...] = (
    ("0-180 days", 0),
    ("181-365 days", 181),
    ("1-1.5 years", 366),
    ("1.5-2 years", 549),
    ("2-3 years", 731),
    ("3+ years", 1096),
)


def get_aging_buckets(*, provider_id: Optional[str], today: Optional[date] = None) -> List[Dict[str, Any]]:
    """Open AR by age of the earliest invoice date."""
    today = today or date.today()

    whens = []
    # Oldest first so the first matching cutoff wins.
    for label, min_days in reversed(AGING_BUCKETS[1:]):
        whens.append((PMD.invoice_date <= today - timedelta(days=min_days), label))
    bucket = case(*whens, else_=AGING_BUCKETS[0][0])

    rows = (
        db.session.query(
            bucket.label("bucket"),
            func.coalesce(func.sum(PMD.open_balance), 0),
            func.count(PMD.id),
            func.coalesce(func.sum(PMD.invoice_count), 0),
        )
        .filter(_provider_filter(provider_id), PMD.open_balance > 0, PMD.invoice_date.isnot(None))
        .group_by(bucket)
        .all()
    )
    by_label = {r[0]: r for r in rows}
    total = sum(float(r[1] or 0) for r in rows)

    out = []
    for label, _ in AGING_BUCKETS:
        r = by_label.get(label)
        amount = _money(r[1]) if r else 0.0
        out.append(
            {
                "bucket": label,
                "amount": amount,
                "cases": int(r[2]) if r else 0,
                "invoices": int(r[3] or 0) if r else 0,
                "percentage": _rate(amount, total),
            }
        )
    return out


# -----------------------------------------------------------------------------
#  Case status
# -----------------------------------------------------------------------------

def get_receivables_by_case_status(*, provider_id: Optional[str]) -> Dict[str, Any]:
    rows = (
        db.session.query(
            PMD.case_status,
            func.coalesce(func.sum(PMD.open_balance), 0),
            func.count(PMD.id),
            func.coalesce(func.sum(PMD.invoice_count), 0),
        )
        .filter(_provider_filter(provider_id), PMD.open_balance > 0)
        .group_by(PMD.case_status)
        .all()
    )

    buckets: Dict[str, Dict[str, Any]] = {}
    for stage in CASE_STATUS_STAGES + (OTHER_STAGE,):
        buckets[stage.name] = {"name": stage.name, "category": stage.category, "ar": 0.0, "cases": 0, "invoices": 0}

    for status, ar, cases, invoices in rows:
        b = buckets[stage_for_status(status).name]
        b["ar"] += float(ar or 0)
        b["cases"] += int(cases or 0)
        b["invoices"] += int(invoices or 0)

    total = sum(b["ar"] for b in buckets.values())
    stages = []
    for b in buckets.values():
        if b["name"] == OTHER_STAGE.name and not b["cases"]:
            continue
        b["ar"] = _money(b["ar"])
        b["percentage"] = _rate(b["ar"], total)
        stages.append(b)

    def _category_total(category: str) -> Tuple[float, int]:
        picked = [s for s in stages if s["category"] == category]
        return _money(sum(s["ar"] for s in picked)), sum(s["cases"] for s in picked)

    active_ar, active_cases = _category_total("active")
    at_risk_ar, at_risk_cases = _category_total("at_risk")
    won_ar, won_cases = _category_total("won")
    return {
        "stages": stages,
        "totals": {
            "total_open_ar": _money(total),
            "total_open_cases": sum(s["cases"] for s in stages),
            "active_litigation_ar": active_ar,
            "active_litigation_cases": active_cases,
            "at_risk_ar": at_risk_ar,
            "at_risk_cases": at_risk_cases,
            "settled_pending_ar": won_ar,
            "settled_pending_cases": won_cases,
        },
    }


# -----------------------------------------------------------------------------
#  Lists
# -----------------------------------------------------------------------------

@dataclass
class BalanceRow:
    opportunity_name: str
    law_firm_name: Optional[str]
    case_status: Optional[str]
    invoice_amount: float
    collected_amount: float
    open_balance: float
    invoice_date: Optional[str]
    age_days: Optional[int]


def get_top_balances(*, provider_id: Optional[str], limit: int = 10, today: Optional[date] = None) -> List[Dict[str, Any]]:
    today = today or date.today()
    rows = (
        PMD.query.filter(_provider_filter(provider_id), PMD.open_balance > 0)
        .order_by(PMD.open_balance.desc(), PMD.opportunity_name.asc())
        .limit(limit)
        .all()
    )
    return [
        asdict(
            BalanceRow(
                opportunity_name=r.opportunity_name,
                law_firm_name=r.law_firm_name,
                case_status=r.case_status,
                invoice_amount=_money(r.invoice_amount),
                collected_amount=_money(r.collected_amount),
                open_balance=_money(r.open_balance),
                invoice_date=r.invoice_date.isoformat() if r.invoice_date else None,
                age_days=(today - r.invoice_date).days if r.invoice_date else None,
            )
        )
        for r in rows
    ]


def _month_expr(column):
    if db.session.get_bind().dialect.name == "postgresql":
        return func.to_char(func.date_trunc("month", column), "YYYY-MM")
    return func.strftime("%Y-%m", column)


def get_monthly_collections(
    *, provider_id: Optional[str], period: str = "all", today: Optional[date] = None
) -> List[Dict[str, Any]]:
    """Collected amount per deposit month, oldest first, with month-over-month change (%)."""
    start = get_period_start(period, today=today)
    month = _month_expr(PMD.collection_date)

    q = db.session.query(
        month.label("month"),
        func.coalesce(func.sum(PMD.collected_amount), 0),
        func.count(PMD.id),
    ).filter(_provider_filter(provider_id), PMD.collected_amount > 0, PMD.collection_date.isnot(None))
    if start:
        q = q.filter(PMD.collection_date >= start)

    out: List[Dict[str, Any]] = []
    previous: Optional[float] = None
    for m, collected, cases in q.group_by(month).order_by(month).all():
        amount = _money(collected)
        change = None
        if previous:
            change = round((amount - previous) / previous * 100.0, 1)
        out.append({"month": m, "collected": amount, "cases": int(cases or 0), "momChange": change})
        previous = amount
    return out


def _group_performance(provider_id: Optional[str], *group_cols) -> List[Tuple]:
    return (
        db.session.query(
            *group_cols,
            func.count(PMD.id),
            func.coalesce(func.sum(PMD.invoice_count), 0),
            func.coalesce(func.sum(PMD.invoice_amount), 0),
            func.coalesce(func.sum(PMD.collected_amount), 0),
            func.coalesce(func.sum(PMD.write_off_amount), 0),
            func.coalesce(func.sum(PMD.open_balance), 0),
        )
        .filter(_provider_filter(provider_id))
        .group_by(*group_cols)
        .order_by(func.sum(PMD.invoice_amount).desc())
        .all()
    )


def _performance_dict(cases, invoices, invoiced, collected, written_off, open_balance) -> Dict[str, Any]:
    return {
        "cases": int(cases or 0),
        "invoices": int(invoices or 0),
        "total_invoiced": _money(invoiced),
        "total_collected": _money(collected),
        "total_written_off": _money(written_off),
        "open_balance": _money(open_balance),
        "collection_rate": _rate(collected, invoiced),
    }


def get_law_firm_performance(*, provider_id: Optional[str], limit: Optional[int] = None) -> List[Dict[str, Any]]:
    rows = _group_performance(provider_id, PMD.law_firm_name)
    if limit:
        rows = rows[:limit]
    return [{"law_firm_name": r[0] or "Unknown", **_performance_dict(*r[1:])} for r in rows]


def get_tranche_performance(*, provider_id: Optional[str]) -> List[Dict[str, Any]]:
    rows = _group_performance(provider_id, PMD.tranche_name, PMD.tranche_id)
    return [
        {"tranche_name": r[0] or "Unassigned", "tranche_id": r[1], **_performance_dict(*r[2:])}
        for r in rows
    ]


CASE_SORT_COLUMNS = (
    "opportunity_name",
    "law_firm_name",
    "case_status",
    "invoice_amount",
    "collected_amount",
    "open_balance",
    "invoice_date",
    "collection_date",
)


def get_cases(
    *,
    provider_id: Optional[str],
    page: int = 1,
    page_size: int = 50,
    search: Optional[str] = None,
    case_status: Optional[str] = None,
    law_firm: Optional[str] = None,
    sort: str = "open_balance",
    descending: bool = True,
) -> Dict[str, Any]:
    q = PMD.query.filter(_provider_filter(provider_id))
    if search:
        like = f"%{search}%"
        q = q.filter(or_(PMD.opportunity_name.ilike(like), PMD.law_firm_name.ilike(like)))
    if case_status:
        q = q.filter(PMD.case_status == case_status)
    if law_firm:
        q = q.filter(PMD.law_firm_name == law_firm)

    column = getattr(PMD, sort if sort in CASE_SORT_COLUMNS else "open_balance")
    q = q.order_by(column.desc() if descending else column.asc(), PMD.id.asc())

    pagination = q.paginate(page=page, per_page=page_size, error_out=False)
    return {
        "items": [r.to_dict() for r in pagination.items],
        "page": page,
        "pageSize": page_size,
        "total": pagination.total,
        "pages": pagination.pages,
    }


# -----------------------------------------------------------------------------
#  Risk
# -----------------------------------------------------------------------------

RISK_NO_LONGER_REPRESENT = "No Longer Represent"
RISK_STALE_PENDING = "Stale Pending"
RISK_VERY_OLD = "Very Old"
RISK_CATEGORIES = (RISK_NO_LONGER_REPRESENT, RISK_STALE_PENDING, RISK_VERY_OLD)

STALE_PENDING_STATUSES = ("Stale - Pending", "Pending")

# (level, minimum at-risk share of a firm's open AR in percent), checked in order.
RISK_LEVELS: Tuple[Tuple[str, float], ...] = (
    ("Critical", 50.0),
    ("High", 30.0),
    ("Medium", 15.0),
    ("Low", 0.0),
)


def risk_category(case_status: Optional[str], invoice_date: Optional[date], today: date) -> Optional[str]:
    """First matching risk category for an open case, or None when it is not at risk."""
    status = (case_status or "").strip()
    if status == RISK_NO_LONGER_REPRESENT:
        return RISK_NO_LONGER_REPRESENT
    if status in STALE_PENDING_STATUSES:
        return RISK_STALE_PENDING
    if invoice_date and (today - invoice_date).days > AT_RISK_AGE_DAYS:
        return RISK_VERY_OLD
    return None


def risk_level(score: float) -> str:
    for level, minimum in RISK_LEVELS:
        if score >= minimum:
            return level
    return RISK_LEVELS[-1][0]


def _at_risk_filter(today: date):
    return or_(
        PMD.case_status.in_(AT_RISK_STATUSES),
        PMD.invoice_date < today - timedelta(days=AT_RISK_AGE_DAYS),
    )


def get_at_risk_cases(
    *,
    provider_id: Optional[str],
    limit: int = 100,
    category: Optional[str] = None,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """Open cases unlikely to pay (write-off candidates), with a summary per risk category.

    The summary and totals cover every at-risk case; `limit` and `category`
    only narrow the case list.
    """
    today = today or date.today()
    rows = (
        PMD.query.filter(_provider_filter(provider_id), PMD.open_balance > 0, _at_risk_filter(today))
        .order_by(PMD.open_balance.desc(), PMD.opportunity_name.asc())
        .all()
    )

    summary = {c: {"risk_category": c, "cases": 0, "ar": 0.0, "invoices": 0, "write_offs": 0.0, "_age": 0}
               for c in RISK_CATEGORIES}
    cases = []
    for r in rows:
        cat = risk_category(r.case_status, r.invoice_date, today)
        age = (today - r.invoice_date).days if r.invoice_date else 0
        s = summary[cat]
        s["cases"] += 1
        s["ar"] += float(r.open_balance or 0)
        s["invoices"] += int(r.invoice_count or 0)
        s["write_offs"] += float(r.write_off_amount or 0)
        s["_age"] += age

        if category and cat != category:
            continue
        if len(cases) < limit:
            cases.append(
                {
                    "opportunity_name": r.opportunity_name,
                    "law_firm_name": r.law_firm_name,
                    "case_status": r.case_status,
                    "risk_category": cat,
                    "open_balance": _money(r.open_balance),
                    "invoice_amount": _money(r.invoice_amount),
                    "write_off_amount": _money(r.write_off_amount),
                    "invoice_count": int(r.invoice_count or 0),
                    "invoice_date": r.invoice_date.isoformat() if r.invoice_date else None,
                    "days_since_invoice": age,
                    "payoff_status": r.payoff_status,
                    "state": r.state,
                    "tranche_name": r.tranche_name,
                }
            )

    categories = []
    for s in summary.values():
        if not s["cases"]:
            continue
        age_total = s.pop("_age")
        s["ar"] = _money(s["ar"])
        s["write_offs"] = _money(s["write_offs"])
        s["avg_age_days"] = round(age_total / s["cases"])
        categories.append(s)
    categories.sort(key=lambda s: s["ar"], reverse=True)

    return {
        "cases": cases,
        "summary": categories,
        "totals": {
            "total_cases": len(rows),
            "total_ar": _money(sum(float(r.open_balance or 0) for r in rows)),
        },
    }


def get_law_firm_risk(
    *, provider_id: Optional[str], min_risk_score: Optional[float] = None, today: Optional[date] = None
) -> List[Dict[str, Any]]:
    """At-risk open AR per law firm, broken down by risk category, riskiest first.

    risk_score is the at-risk share of the firm's open AR (0-100).
    """
    today = today or date.today()
    rows = db.session.query(
        PMD.law_firm_name, PMD.case_status, PMD.invoice_date, PMD.open_balance
    ).filter(_provider_filter(provider_id), PMD.open_balance > 0)

    firms: Dict[str, Dict[str, Any]] = {}
    for firm, status, invoiced_on, open_balance in rows:
        name = firm or "Unknown"
        f = firms.get(name)
        if f is None:
            f = firms[name] = {
                "law_firm_name": name,
                "open_ar": 0.0,
                "open_cases": 0,
                "categories": {c: {"cases": 0, "ar": 0.0} for c in RISK_CATEGORIES},
            }
        amount = float(open_balance or 0)
        f["open_ar"] += amount
        f["open_cases"] += 1
        cat = risk_category(status, invoiced_on, today)
        if cat:
            f["categories"][cat]["cases"] += 1
            f["categories"][cat]["ar"] += amount

    out = []
    for f in firms.values():
        at_risk_ar = sum(c["ar"] for c in f["categories"].values())
        score = _rate(at_risk_ar, f["open_ar"])
        if min_risk_score is not None and score < min_risk_score:
            continue
        for c in f["categories"].values():
            c["ar"] = _money(c["ar"])
        out.append(
            {
                "law_firm_name": f["law_firm_name"],
                "open_ar": _money(f["open_ar"]),
                "open_cases": f["open_cases"],
                "categories": f["categories"],
                "total_at_risk_cases": sum(c["cases"] for c in f["categories"].values()),
                "total_at_risk_ar": _money(at_risk_ar),
                "risk_score": score,
                "risk_level": risk_level(score),
            }
        )
    out.sort(key=lambda f: (-f["risk_score"], -f["total_at_risk_ar"], f["law_firm_name"]))
    return out


# -----------------------------------------------------------------------------
#  Settled, awaiting payment
# -----------------------------------------------------------------------------

def get_settled_pending_cases(
    *, provider_id: Optional[str], limit: int = 50, today: Optional[date] = None
) -> Dict[str, Any]:
    """Cases that have settled but not paid out yet, with payoff-status breakdown."""
    today = today or date.today()
    rows = (
        PMD.query.filter(
            _provider_filter(provider_id),
            PMD.open_balance > 0,
            PMD.case_status.in_(SETTLED_PENDING_STATUSES),
        )
        .order_by(PMD.open_balance.desc(), PMD.opportunity_name.asc())
        .all()
    )

    by_payoff = {key: {"cases": 0, "ar": 0.0} for key in ("cap", "reduction", "unknown")}
    for r in rows:
        payoff = (r.payoff_status or "").lower()
        if "cap" in payoff:
            key = "cap"
        elif "reduction" in payoff:
            key = "reduction"
        else:
            key = "unknown"
        by_payoff[key]["cases"] += 1
        by_payoff[key]["ar"] += float(r.open_balance or 0)
    for bucket in by_payoff.values():
        bucket["ar"] = _money(bucket["ar"])

    ages = [(today - r.invoice_date).days for r in rows if r.invoice_date]
    return {
        "cases": [
            {
                "opportunity_name": r.opportunity_name,
                "law_firm_name": r.law_firm_name,
                "case_status": r.case_status,
                "payoff_status": r.payoff_status or "Unknown",
                "open_balance": _money(r.open_balance),
                "invoice_amount": _money(r.invoice_amount),
                "invoice_count": int(r.invoice_count or 0),
                "invoice_date": r.invoice_date.isoformat() if r.invoice_date else None,
                "days_since_invoice": (today - r.invoice_date).days if r.invoice_date else None,
                "date_of_accident": r.date_of_accident.isoformat() if r.date_of_accident else None,
                "tranche_name": r.tranche_name,
                "ar_book_name": r.ar_book_name,
                "state": r.state,
            }
            for r in rows[:limit]
        ],
        "summary": {
            "total_cases": len(rows),
            "total_ar": _money(sum(float(r.open_balance or 0) for r in rows)),
            "total_invoices": sum(int(r.invoice_count or 0) for r in rows),
            "avg_days_since_invoice": round(sum(ages) / len(ages)) if ages else 0,
            "by_payoff_status": by_payoff,
        },
    }


# -----------------------------------------------------------------------------
#  Invoice ingestion and collection velocity
# -----------------------------------------------------------------------------

def get_invoice_ingestions(
    *, provider_id: Optional[str], months: int = 24, today: Optional[date] = None
) -> Dict[str, Any]:
    """New billing per month of first invoice date over the trailing `months`."""
    today = today or date.today()
    start = _months_ago(today, months)
    month = _month_expr(PMD.invoice_date)

    rows = (
        db.session.query(
            month.label("month"),
            func.coalesce(func.sum(PMD.invoice_count), 0),
            func.count(PMD.id),
            func.coalesce(func.sum(PMD.invoice_amount), 0),
        )
        .filter(_provider_filter(provider_id), PMD.invoice_date.isnot(None), PMD.invoice_date >= start)
        .group_by(month)
        .order_by(month)
        .all()
    )

    monthly = []
    for m, invoices, cases, invoiced in rows:
        cases = int(cases or 0)
        monthly.append(
            {
                "month": m,
                "invoices": int(invoices or 0),
                "cases": cases,
                "total_invoiced": _money(invoiced),
                "avg_case_amount": _money(float(invoiced or 0) / cases) if cases else 0.0,
            }
        )

    total_invoices = sum(m["invoices"] for m in monthly)
    total_cases = sum(m["cases"] for m in monthly)
    total_invoiced = _money(sum(m["total_invoiced"] for m in monthly))
    return {
        "monthly": monthly,
        "summary": {
            "months": months,
            "periodStart": start.isoformat(),
            "total_invoices": total_invoices,
            "total_cases": total_cases,
            "total_invoiced": total_invoiced,
            "avg_case_amount": _money(total_invoiced / total_cases) if total_cases else 0.0,
            "avg_monthly_invoices": round(total_invoices / len(monthly)) if monthly else 0,
        },
    }


# (label, maximum days from first invoice to first deposit); the last bucket is open-ended.
VELOCITY_BUCKETS: Tuple[Tuple[str, Optional[int]], ...] = (
    ("0-3 months", 90),
    ("3-6 months", 180),
    ("6-12 months", 365),
    ("12-18 months", 540),
    ("18-24 months", 730),
    ("24+ months", None),
)


def velocity_bucket(days: int) -> str:
    for label, max_days in VELOCITY_BUCKETS:
        if max_days is None or days <= max_days:
            return label
    return VELOCITY_BUCKETS[-1][0]


def get_collection_velocity(
    *, provider_id: Optional[str], period: str = "12m", today: Optional[date] = None
) -> Dict[str, Any]:
    """Distribution of days-to-collect over collected cases, filtered by deposit date."""
    start = get_period_start(period, today=today)
    q = db.session.query(PMD.invoice_date, PMD.collection_date, PMD.collected_amount).filter(
        _provider_filter(provider_id),
        PMD.collected_amount > 0,
        PMD.collection_date.isnot(None),
        PMD.invoice_date.isnot(None),
    )
    if start:
        q = q.filter(PMD.collection_date >= start)

    buckets = {label: {"bucket": label, "cases": 0, "collected": 0.0, "_days": 0} for label, _ in VELOCITY_BUCKETS}
    spans = []
    total_collected = 0.0
    for invoiced_on, collected_on, collected in q.all():
        days = (collected_on - invoiced_on).days
        b = buckets[velocity_bucket(days)]
        b["cases"] += 1
        b["collected"] += float(collected or 0)
        b["_days"] += days
        spans.append(days)
        total_collected += float(collected or 0)

    out = []
    for b in buckets.values():
        day_total = b.pop("_days")
        b["avg_days"] = round(day_total / b["cases"]) if b["cases"] else 0
        b["percent_of_cases"] = _rate(b["cases"], len(spans))
        b["percent_of_amount"] = _rate(b["collected"], total_collected)
        b["collected"] = _money(b["collected"])
        out.append(b)

    return {
        "buckets": out,
        "summary": {
            "total_cases": len(spans),
            "total_collected": _money(total_collected),
            "avg_days": round(sum(spans) / len(spans)) if spans else 0,
            "min_days": min(spans) if spans else 0,
            "max_days": max(spans) if spans else 0,
        },
    }
