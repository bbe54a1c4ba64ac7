"""
Taskboard Flask Application Factory.

Provides ``create_app``, which assembles the API: configuration, the
shared SQLAlchemy extension, CORS for browser clients, the JSON error
translator and two blueprints.

  * **auth_bp** -- registration, login, logout, current user under
    ``/api/v1/auth``.
  * **tasks_bp** -- task CRUD and the list/filter/paginate pipeline under
    ``/api/v1``.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from flask import Flask
from flask_cors import CORS
from flask_sqlalchemy import SQLAlchemy

from config import get_config, load_jwt_keys

db = SQLAlchemy()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def _ensure_sqlite_db_parent_exists(database_uri: str) -> None:
    """Create parent directories for file-based SQLite URIs when missing."""
    sqlite_prefix = "sqlite:///"
    if not database_uri.startswith(sqlite_prefix):
        return

    sqlite_path = database_uri[len(sqlite_prefix) :].split("?", 1)[0]
    if sqlite_path == ":memory:":
        return

    Path(sqlite_path).parent.mkdir(parents=True, exist_ok=True)


def create_app(config_name: str | None = None) -> Flask:
    """
    Create and configure the Taskboard application.

    Args:
        config_name: Optional configuration environment name
            (``"development"``, ``"testing"``, ``"production"``).  When
            ``None``, the value is read from ``FLASK_ENV``.

    Returns:
        A configured Flask application with all tables created.
    """
    app = Flask(__name__, instance_relative_config=True)
    config_class = get_config(config_name)
    app.config.from_object(config_class)
    private_key, public_key = load_jwt_keys(testing=bool(app.config.get("TESTING")))
    app.config["JWT_PRIVATE_KEY"] = private_key
    app.config["JWT_PUBLIC_KEY"] = public_key

    logger.info("Creating taskboard app with config: %s", config_class.__name__)

    os.makedirs(app.instance_path, exist_ok=True)
    _ensure_sqlite_db_parent_exists(app.config.get("SQLALCHEMY_DATABASE_URI", ""))

    # Browser clients are served from another origin than the API.
    CORS(
        app,
        resources={r"/api/*": {"origins": app.config["CORS_ORIGINS"]}},
        allow_headers=["Content-Type", "Authorization"],
        methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    )
    db.init_app(app)

    # Imported here because both modules reference ``db`` from this package.
    from .errors import register_error_handlers
    from .routes.auth import auth_bp
    from .routes.tasks import tasks_bp

    register_error_handlers(app)
    app.register_blueprint(auth_bp, url_prefix="/api/v1/auth")
    app.register_blueprint(tasks_bp, url_prefix="/api/v1")

    with app.app_context():
        db.create_all()
        logger.info("Taskboard database tables created")

    return app
