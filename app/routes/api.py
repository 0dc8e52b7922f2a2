from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

from flask import current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from . import bp  # use the already-registered main blueprint
from app.services import dashboard_service
from app.system import health
from app.utils.validation import (
    ValidationError,
    clean_search,
    parse_choice,
    parse_non_negative_float,
    parse_pagination,
    parse_period,
    parse_positive_int,
    parse_sort,
)


# -----------------------------------------------------------------------------
# Read-only dashboard API
#
# Every endpoint:
# - validates its query parameters (bad input -> 400, never a silent default)
# - delegates the figures to dashboard_service
# - answers with the same envelope: {"data": ..., "metadata": {...}}
# -----------------------------------------------------------------------------

DATA_SOURCE = "PostgreSQL_DirectCalculation"


def _envelope(data: Any, status: int = 200, **metadata: Any):
    meta: Dict[str, Any] = {
        "generatedAt": datetime.utcnow().isoformat(timespec="seconds") + "Z",
        "dataSource": DATA_SOURCE,
        "calculationsInDatabase": True,
    }
    meta.update(metadata)
    return jsonify({"data": data, "metadata": meta}), status


def _provider_id() -> str:
    return request.args.get("providerId") or current_app.config["DEFAULT_PROVIDER_ID"]


@bp.errorhandler(ValidationError)
def handle_validation_error(exc: ValidationError):
    current_app.logger.warning("Rejected %s: %s", request.path, exc)
    return jsonify({"error": "Invalid parameter", "message": str(exc)}), 400


@bp.errorhandler(Exception)
def handle_unexpected_error(exc: Exception):
    if isinstance(exc, HTTPException):
        return exc
    current_app.logger.exception("API error on %s", request.path)
    return jsonify({"error": "Internal server error", "message": str(exc)}), 500


@bp.route("/api/health")
def api_health():
    report = health.health_report()
    report["version"] = current_app.config.get("APP_VERSION")
    return _envelope(report, status=200 if report["status"] == "healthy" else 503)


@bp.route("/api/kpi")
def api_kpi():
    period = parse_period(request.args.get("period"))
    data = dashboard_service.get_kpi_summary(provider_id=_provider_id(), period=period)
    return _envelope(data, period=period)


@bp.route("/api/receivables/summary")
def api_receivables_summary():
    return _envelope(dashboard_service.get_receivables_summary(provider_id=_provider_id()))


@bp.route("/api/receivables/aging")
def api_receivables_aging():
    buckets = dashboard_service.get_aging_buckets(provider_id=_provider_id())
    return _envelope(buckets, count=len(buckets))


@bp.route("/api/receivables/by-case-status")
def api_receivables_by_case_status():
    return _envelope(dashboard_service.get_receivables_by_case_status(provider_id=_provider_id()))


@bp.route("/api/receivables/top-balances")
def api_top_balances():
    limit = parse_positive_int(request.args.get("limit"), "limit", 10, maximum=100)
    rows = dashboard_service.get_top_balances(provider_id=_provider_id(), limit=limit)
    return _envelope(rows, count=len(rows))


@bp.route("/api/receivables/at-risk")
def api_receivables_at_risk():
    limit = parse_positive_int(request.args.get("limit"), "limit", 100, maximum=500)
    category = parse_choice(request.args.get("category"), "category", dashboard_service.RISK_CATEGORIES)
    data = dashboard_service.get_at_risk_cases(provider_id=_provider_id(), limit=limit, category=category)
    return _envelope(data, count=len(data["cases"]), category=category)


@bp.route("/api/receivables/settled-pending")
def api_receivables_settled_pending():
    limit = parse_positive_int(request.args.get("limit"), "limit", 50, maximum=500)
    data = dashboard_service.get_settled_pending_cases(provider_id=_provider_id(), limit=limit)
    return _envelope(data, count=len(data["cases"]))


@bp.route("/api/receivables/ingestions")
def api_receivables_ingestions():
    months = parse_positive_int(request.args.get("months"), "months", 24, maximum=120)
    data = dashboard_service.get_invoice_ingestions(provider_id=_provider_id(), months=months)
    return _envelope(data, count=len(data["monthly"]), periodMonths=months)


@bp.route("/api/collections")
def api_collections():
    period = parse_period(request.args.get("period"), default="12m")
    months = dashboard_service.get_monthly_collections(provider_id=_provider_id(), period=period)
    return _envelope(months, count=len(months), period=period)


@bp.route("/api/collections/velocity")
def api_collections_velocity():
    period = parse_period(request.args.get("period"), default="12m")
    data = dashboard_service.get_collection_velocity(provider_id=_provider_id(), period=period)
    return _envelope(data, period=period)


@bp.route("/api/law-firms")
def api_law_firms():
    limit = parse_positive_int(request.args.get("limit"), "limit", 0) or None
    firms = dashboard_service.get_law_firm_performance(provider_id=_provider_id(), limit=limit)
    return _envelope(firms, count=len(firms))


@bp.route("/api/law-firms/risk")
def api_law_firm_risk():
    min_score = parse_non_negative_float(request.args.get("minRiskScore"), "minRiskScore", maximum=100)
    firms = dashboard_service.get_law_firm_risk(provider_id=_provider_id(), min_risk_score=min_score)
    return _envelope(firms, count=len(firms), minRiskScore=min_score)


@bp.route("/api/tranches")
def api_tranches():
    tranches = dashboard_service.get_tranche_performance(provider_id=_provider_id())
    return _envelope(tranches, count=len(tranches))


@bp.route("/api/cases")
def api_cases():
    page, page_size = parse_pagination(request.args)
    sort, descending = parse_sort(
        request.args.get("sort"), dashboard_service.CASE_SORT_COLUMNS, default="-open_balance"
    )
    result = dashboard_service.get_cases(
        provider_id=_provider_id(),
        page=page,
        page_size=page_size,
        search=clean_search(request.args.get("search")),
        case_status=(request.args.get("caseStatus") or "").strip() or None,
        law_firm=(request.args.get("lawFirm") or "").strip() or None,
        sort=sort,
        descending=descending,
    )
    items = result.pop("items")
    return _envelope(items, count=len(items), pagination=result)
