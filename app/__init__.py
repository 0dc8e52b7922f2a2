import os
from typing import Any, Mapping, Optional

from flask import Flask

from dotenv import load_dotenv
load_dotenv()

from .config import Config
from .extensions import db, migrate

# Application version
APP_VERSION = "0.3.0"


def format_currency(value) -> str:
    """Render an amount as $1,234.56 for console reports."""
    try:
        amount = float(value or 0)
    except (TypeError, ValueError):
        amount = 0.0
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.2f}"


def create_app(config_overrides: Optional[Mapping[str, Any]] = None):
    """Application factory for the provider portal.

    The same factory backs the JSON API (run.py) and the one-shot import
    scripts under app/scripts, so both read configuration the same way.
    """
    app = Flask(__name__)
    app.config.from_object(Config)
    app.config.setdefault("APP_VERSION", APP_VERSION)

    if config_overrides:
        app.config.update(config_overrides)

    # Database configuration (Postgres via DATABASE_URL; fail loudly if missing)
    database_url = app.config.get("SQLALCHEMY_DATABASE_URI") or os.environ.get("DATABASE_URL")
    if not database_url:
        raise RuntimeError("DATABASE_URL is not set. Refusing to start with an implicit SQLite database.")

    # Heroku/Neon style URLs still use the legacy scheme name.
    if database_url.startswith("postgres://"):
        database_url = "postgresql://" + database_url[len("postgres://"):]

    app.config["SQLALCHEMY_DATABASE_URI"] = database_url
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

    db.init_app(app)
    migrate.init_app(app, db)

    from .routes import bp as main_bp

    app.register_blueprint(main_bp)

    with app.app_context():
        from . import models  # noqa: F401  (register models)

        # Create the fact table if migrations have not been run yet
        db.create_all()

    return app
