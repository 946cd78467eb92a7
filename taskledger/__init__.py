import os
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from flask import Flask

from .extensions import db, migrate, login_manager
from .config import Config
from . import models  # noqa: F401  (register tables with SQLAlchemy)
from . import security  # noqa: F401  (bearer-token loaders)

# Blueprints
from .blueprints.errors import errors_bp
from .blueprints.auth import auth_bp
from .blueprints.tasks import tasks_bp
from .blueprints.ledger import ledger_bp


# Optional: Sentry
def _init_sentry(app):
    dsn = app.config.get("SENTRY_DSN")
    if not dsn:
        return
    try:
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

        sentry_sdk.init(
            dsn=dsn,
            integrations=[FlaskIntegration(), SqlalchemyIntegration()],
            traces_sample_rate=app.config.get("SENTRY_TRACES_SAMPLE_RATE", 0.0),
            environment=os.getenv("ENV", "development"),
            release=app.config.get("APP_VERSION"),
            send_default_pii=False,
        )
        app.logger.info("Sentry initialized.")
    except Exception as e:
        app.logger.warning(f"Sentry init failed: {e}")


def _init_logging(app):
    level_name = app.config.get("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    # Formatter: text or JSON
    if app.config.get("LOG_JSON", False):
        import json_log_formatter
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("[%(asctime)s] %(levelname)s in %(module)s: %(message)s")

    handlers = []
    if app.config.get("LOG_TO_FILE", True):
        log_dir = Path(app.config.get("LOG_DIR", "logs"))
        log_dir.mkdir(parents=True, exist_ok=True)
        # Rotating file handler (5MB x 5)
        handlers.append(RotatingFileHandler(
            log_dir / app.config.get("LOG_FILENAME", "taskledger.log"),
            maxBytes=5_000_000, backupCount=5, encoding="utf-8",
        ))
    # Stream to stdout as well (useful on dev/docker)
    handlers.append(logging.StreamHandler())

    # app.logger is the "taskledger" logger, so service modules logging
    # through getLogger(__name__) end up here too
    app.logger.setLevel(level)
    for h in list(app.logger.handlers):
        app.logger.removeHandler(h)
    for h in handlers:
        h.setLevel(level)
        h.setFormatter(formatter)
        app.logger.addHandler(h)

    app.logger.info("Logging initialized.")


def create_app(config_object=None):
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object or Config)

    # --- base config defaults ---
    app.config.setdefault("SECRET_KEY", "change-me")
    app.config.setdefault("SQLALCHEMY_DATABASE_URI", "sqlite:///taskledger.db")
    app.config.setdefault("SQLALCHEMY_TRACK_MODIFICATIONS", False)
    app.config.setdefault("JSON_SORT_KEYS", False)
    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)

    # Extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    # Logging must come before blueprints so errors during register are captured
    _init_logging(app)
    _init_sentry(app)

    # Blueprints
    app.register_blueprint(errors_bp)  # error handlers
    app.register_blueprint(auth_bp)
    app.register_blueprint(tasks_bp)
    app.register_blueprint(ledger_bp)

    @app.get("/health")
    def health():
        return {"success": True, "data": {"status": "ok", "version": app.config.get("APP_VERSION")}}

    return app
