"""
System health metrics.

All functions in this module must be:
- Read-only
- Fast
- Safe to call in a request context

The only I/O is a trivial query against the configured database.
"""

from typing import Any, Dict
import time

from sqlalchemy import func, text
from sqlalchemy.exc import SQLAlchemyError

from app.extensions import db
from app.models import ProviderMasterData


def database_status() -> Dict[str, Any]:
    """
    Ping the database with SELECT 1 and time it.
    """
    started = time.perf_counter()
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        db.session.rollback()
        return {
            "ok": False,
            "latency_ms": None,
            "dialect": db.engine.dialect.name,
            "error": str(getattr(exc, "orig", None) or exc),
        }
    return {
        "ok": True,
        "latency_ms": round((time.perf_counter() - started) * 1000.0, 1),
        "dialect": db.engine.dialect.name,
        "error": None,
    }


def fact_table_status() -> Dict[str, Any]:
    """
    Row count and freshness of provider_master_data.
    """
    count, loaded_at, latest_invoice, latest_collection = db.session.query(
        func.count(ProviderMasterData.id),
        func.max(ProviderMasterData.created_at),
        func.max(ProviderMasterData.invoice_date),
        func.max(ProviderMasterData.collection_date),
    ).one()
    return {
        "record_count": int(count or 0),
        "last_loaded_at": loaded_at.isoformat() if loaded_at else None,
        "latest_invoice_date": latest_invoice.isoformat() if latest_invoice else None,
        "latest_collection_date": latest_collection.isoformat() if latest_collection else None,
    }


def health_report() -> Dict[str, Any]:
    database = database_status()
    report: Dict[str, Any] = {"status": "healthy" if database["ok"] else "unhealthy", "database": database}
    if database["ok"]:
        report["fact_table"] = fact_table_status()
    return report
