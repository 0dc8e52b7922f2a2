"""Routes package.

This package defines the primary Flask blueprint (`bp`) and imports the route
modules so their @bp.route decorators are registered.

NOTE: The Flask app factory and database initialization live in `app/__init__.py`,
not inside the routes package.
"""

from flask import Blueprint

bp = Blueprint("main", __name__)

# Import route modules to register routes on the blueprint.
# These imports must come AFTER `bp` is defined.
from . import api  # noqa: F401,E402
