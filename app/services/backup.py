"""JSON snapshots of provider_master_data.

Every import writes one before touching the table, so a bad load can be rolled
back with `python -m app.scripts.restore_backup <file>`.

File shape: {"exportDate": ISO timestamp, "recordCount": N, "data": [row, ...]}
"""

from __future__ import annotations

import json
import logging
import os
from datetime import date, datetime
from typing import Optional

from app.extensions import db
from app.models import ProviderMasterData

from .errors import ImportStructuralError, SourceFileNotFoundError
from .loader import clear_fact_table

logger = logging.getLogger(__name__)


def backup_fact_table(backup_dir: str, now: Optional[datetime] = None) -> str:
    now = now or datetime.utcnow()
    os.makedirs(backup_dir, exist_ok=True)

    rows = ProviderMasterData.query.order_by(ProviderMasterData.id).all()
    payload = {
        "exportDate": now.isoformat(timespec="seconds") + "Z",
        "recordCount": len(rows),
        "data": [r.to_dict() for r in rows],
    }

    path = os.path.join(backup_dir, f"provider_master_data_{now.strftime('%Y%m%d_%H%M%S')}.json")
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)

    logger.info("Backed up %d rows to %s", len(rows), path)
    return path


def _row_from_backup(record: dict) -> ProviderMasterData:
    # Absent or null columns fall back to the model defaults.
    values = {
        name: record[name] for name in ProviderMasterData.BUSINESS_COLUMNS if record.get(name) is not None
    }
    for name in ProviderMasterData.DATE_COLUMNS:
        if name in values:
            values[name] = date.fromisoformat(str(values[name])[:10])
    return ProviderMasterData(**values)


def restore_backup(path: str) -> int:
    """Replace the fact table with the rows of a backup file. Returns the row count."""
    if not os.path.isfile(path):
        raise SourceFileNotFoundError(path)

    with open(path, "r", encoding="utf-8") as f:
        try:
            payload = json.load(f)
        except json.JSONDecodeError as exc:
            raise ImportStructuralError(f"Backup file is not valid JSON: {path} ({exc})") from exc

    records = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(records, list):
        raise ImportStructuralError(f"Backup file has no 'data' list: {path}")

    try:
        clear_fact_table()
        db.session.add_all(_row_from_backup(r) for r in records)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Restored %d rows from %s", len(records), path)
    return len(records)
