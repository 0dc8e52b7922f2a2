import sys

from sqlalchemy.exc import SQLAlchemyError

from app import create_app
from app.services.loader import refresh_materialized_views


def main():
    try:
        app = create_app()
        with app.app_context():
            results = refresh_materialized_views(app.config["MATERIALIZED_VIEWS"])
    except (SQLAlchemyError, RuntimeError) as exc:
        print(f"❌ Refresh failed: {exc}")
        return 1

    for r in results:
        mark = "✅" if r.ok else "❌"
        suffix = f" ({r.error})" if r.error else ""
        print(f"{mark} {r.name}: {r.status} in {r.duration_ms:.0f} ms{suffix}")

    failed = [r for r in results if not r.ok]
    print(f"Refreshed {len(results) - len(failed)} of {len(results)} views.")
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
