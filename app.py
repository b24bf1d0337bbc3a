# app.py

import logging
import os

from dotenv import load_dotenv
from flask import Flask, jsonify
from sqlalchemy import event

load_dotenv()

# Imported after load_dotenv() so config classes see .env values.
from config import DevelopmentConfig, ProductionConfig, TestingConfig  # noqa: E402
from config.monitoring import (  # noqa: E402
    DevelopmentMonitoringConfig,
    ProductionMonitoringConfig,
    TestingMonitoringConfig,
)
from config.validation import validate_and_exit  # noqa: E402
from installhub.importer import init_importer  # noqa: E402
from installhub.models import db  # noqa: E402
from installhub.utils.logging_config import setup_logging  # noqa: E402
from installhub.utils.monitoring import init_monitoring  # noqa: E402

logger = logging.getLogger(__name__)

CONFIG_BY_ENV = {
    "production": (ProductionConfig, ProductionMonitoringConfig),
    "testing": (TestingConfig, TestingMonitoringConfig),
    "development": (DevelopmentConfig, DevelopmentMonitoringConfig),
}


def _sqlite_pragma_hook(*, foreign_keys: bool):
    """WAL plus a busy timeout lets the web process and the worker share one SQLite file."""
    statements = ["PRAGMA journal_mode=WAL", "PRAGMA synchronous=NORMAL", "PRAGMA busy_timeout=5000"]
    if foreign_keys:
        statements.append("PRAGMA foreign_keys=ON")

    def _on_connect(dbapi_connection, connection_record):  # pragma: no cover - driver callback
        cursor = dbapi_connection.cursor()
        try:
            for statement in statements:
                cursor.execute(statement)
        except Exception as exc:
            logger.warning("Could not apply SQLite pragmas: %s", exc)
        finally:
            cursor.close()

    return _on_connect


def _prepare_database(flask_app: Flask) -> None:
    with flask_app.app_context():
        engine = db.engine
        if engine.url.drivername.startswith("sqlite") and not getattr(engine, "_installhub_pragmas", False):
            hook = _sqlite_pragma_hook(foreign_keys=not flask_app.config.get("TESTING", False))
            event.listen(engine, "connect", hook)
            engine._installhub_pragmas = True  # type: ignore[attr-defined]
        # Tests build and drop their own schema.
        if not flask_app.config.get("TESTING", False):
            db.create_all()


def _register_error_handlers(flask_app: Flask) -> None:
    @flask_app.errorhandler(404)
    def not_found_error(error):
        return jsonify({"error": "not found"}), 404

    @flask_app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        flask_app.logger.error("Unhandled server error", extra={"error": str(error)})
        return jsonify({"error": "internal server error"}), 500


flask_env = os.environ.get("FLASK_ENV", "development")
if flask_env == "production":
    validate_and_exit(flask_env)

app = Flask(__name__)
for config_class in CONFIG_BY_ENV.get(flask_env, CONFIG_BY_ENV["development"]):
    app.config.from_object(config_class)

db.init_app(app)
setup_logging(app)
init_monitoring(app)
_prepare_database(app)
init_importer(app)
_register_error_handlers(app)


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.environ.get("PORT", 5000)))
