"""Replace provider_master_data with the contents of a backup file.

    python -m app.scripts.restore_backup [backup.json]

Without a path, the newest file in BACKUP_DIR is used.
"""
import argparse
import glob
import os
import sys

from sqlalchemy.exc import SQLAlchemyError

from app import create_app
from app.services.backup import restore_backup
from app.services.errors import ImportStructuralError


def latest_backup(backup_dir):
    files = glob.glob(os.path.join(backup_dir, "provider_master_data_*.json"))
    return max(files, key=os.path.getmtime) if files else None


def main(argv=None):
    parser = argparse.ArgumentParser(description="Restore the fact table from a JSON backup.")
    parser.add_argument("backup", nargs="?")
    args = parser.parse_args(argv)

    try:
        app = create_app()
        with app.app_context():
            path = args.backup or latest_backup(app.config["BACKUP_DIR"])
            if not path:
                print(f"❌ No backups found in {app.config['BACKUP_DIR']}")
                return 1
            count = restore_backup(path)
    except (ImportStructuralError, SQLAlchemyError, RuntimeError) as exc:
        print(f"❌ Restore failed: {exc}")
        return 1

    print(f"✅ Restored {count:,} rows from {path}")
    print("Run `python -m app.scripts.refresh_views` to bring the materialized views up to date.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
