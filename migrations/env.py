from logging.config import fileConfig
import os
import sys

from sqlalchemy import engine_from_config
from sqlalchemy import pool

from alembic import context

config = context.config

# alembic.ini lives at the project root, not inside migrations/.
# Resolve it so `alembic ...` and `flask db ...` work from any working directory.
if config.config_file_name is not None:
    cfg_path = config.config_file_name
    if not os.path.isabs(cfg_path) and not os.path.exists(cfg_path):
        candidate = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "alembic.ini"))
        if os.path.exists(candidate):
            cfg_path = candidate
    if os.path.exists(cfg_path):
        fileConfig(cfg_path)

ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

from app.extensions import db  # noqa: E402
import app.models  # noqa: F401,E402  (register the fact table)

target_metadata = db.metadata


def _get_migration_db_url(section: dict | None = None) -> str:
    """Resolve the database URL Alembic should use.

    Priority:
      1) DATABASE_URL (same variable the app factory reads)
      2) SQLALCHEMY_DATABASE_URI
      3) alembic.ini sqlalchemy.url

    Legacy `postgres://` URLs are rewritten to `postgresql://`.
    """
    section = section or {}

    url = (
        os.environ.get("DATABASE_URL")
        or os.environ.get("SQLALCHEMY_DATABASE_URI")
        or section.get("sqlalchemy.url")
        or config.get_main_option("sqlalchemy.url")
    )
    if not url:
        raise RuntimeError("DATABASE_URL (or sqlalchemy.url) is not set for Alembic migrations")

    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    return url


def run_migrations_offline() -> None:
    """Emit SQL to stdout instead of connecting (`alembic upgrade head --sql`)."""
    url = _get_migration_db_url()
    context.configure(
        url=url,
        target_metadata=target_metadata,
        compare_type=True,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    section = config.get_section(config.config_ini_section, {}) or {}
    section["sqlalchemy.url"] = _get_migration_db_url(section)

    connectable = engine_from_config(
        section,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
