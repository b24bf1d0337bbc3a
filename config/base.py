# config/base.py
import os
import warnings
from pathlib import Path


def _coerce_bool(value, default=False):
    """Convert environment-style truthy/falsey values to bool."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    value_str = str(value).strip().lower()
    if value_str in {"1", "true", "yes", "on"}:
        return True
    if value_str in {"0", "false", "no", "off"}:
        return False
    return default


def _coerce_int(value, default, *, minimum=None, maximum=None):
    """Parse an integer setting, clamping to the given bounds and falling back on bad input."""
    try:
        number = int(value) if value is not None and str(value).strip() else default
    except (TypeError, ValueError):
        number = default
    if minimum is not None:
        number = max(minimum, number)
    if maximum is not None:
        number = min(maximum, number)
    return number


def _coerce_float(value, default):
    try:
        return float(value) if value is not None and str(value).strip() else default
    except (TypeError, ValueError):
        return default


_FLASK_ENV = os.environ.get("FLASK_ENV", "development")
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_DEV_DATABASE = _PROJECT_ROOT / "instance" / "installhub_dev.db"


def _secret_key():
    configured = os.environ.get("SECRET_KEY")
    if configured or _FLASK_ENV == "production":
        # A missing production key is reported by config.validation at startup.
        return configured
    if _FLASK_ENV != "testing":
        warnings.warn("SECRET_KEY is not set; using an insecure development key.", UserWarning)
    return "installhub-insecure-dev-key"


class Config:
    SECRET_KEY = _secret_key()

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # Importer configuration
    IMPORTER_ENABLED = _coerce_bool(os.environ.get("IMPORTER_ENABLED"), default=False)
    IMPORTER_WORKER_ENABLED = _coerce_bool(os.environ.get("IMPORTER_WORKER_ENABLED"), default=False)
    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND")
    CELERY_SQLITE_PATH = os.environ.get("CELERY_SQLITE_PATH")
    CELERY_CONFIG = os.environ.get("CELERY_CONFIG")
    IMPORTER_TASK_TIME_LIMIT = _coerce_int(os.environ.get("IMPORTER_TASK_TIME_LIMIT"), 15 * 60, minimum=60)
    IMPORTER_TASK_SOFT_TIME_LIMIT = _coerce_int(os.environ.get("IMPORTER_TASK_SOFT_TIME_LIMIT"), 12 * 60, minimum=30)

    # Partner import engine
    PARTNER_IMPORT_MAX_WORKERS = _coerce_int(os.environ.get("PARTNER_IMPORT_MAX_WORKERS"), 4, minimum=1, maximum=32)
    PARTNER_IMPORT_DEFAULT_STATUS = os.environ.get("PARTNER_IMPORT_DEFAULT_STATUS", "awaiting_install_booking")
    PARTNER_IMPORT_RUN_HISTORY_LIMIT = _coerce_int(
        os.environ.get("PARTNER_IMPORT_RUN_HISTORY_LIMIT"), 20, minimum=1, maximum=500
    )
    PARTNER_IMPORT_SHEETS_API_URL = os.environ.get(
        "PARTNER_IMPORT_SHEETS_API_URL",
        "https://sheets.googleapis.com/v4",
    )
    # Bearer token issued outside the importer (service account exchange, proxy, etc.).
    PARTNER_IMPORT_SHEETS_TOKEN = os.environ.get("PARTNER_IMPORT_SHEETS_TOKEN")
    PARTNER_IMPORT_SHEETS_MAX_ROWS = _coerce_int(
        os.environ.get("PARTNER_IMPORT_SHEETS_MAX_ROWS"), 1000, minimum=1, maximum=100000
    )
    PARTNER_IMPORT_SHEETS_TIMEOUT = _coerce_float(os.environ.get("PARTNER_IMPORT_SHEETS_TIMEOUT"), 30.0)


class DevelopmentConfig(Config):
    DEBUG = True
    # SQLite URIs need forward slashes, including on Windows
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", f"sqlite:///{_DEV_DATABASE.as_posix()}")
    SQLALCHEMY_ECHO = _coerce_bool(os.environ.get("SQLALCHEMY_ECHO"), default=False)
    if SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        _DEV_DATABASE.parent.mkdir(exist_ok=True)
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"check_same_thread": False, "timeout": 5}}


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get("SECRET_KEY", "test-secret-key-for-testing-only")
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {
            "check_same_thread": False,
            "timeout": 5,
        }
    }
    IMPORTER_ENABLED = True
    IMPORTER_WORKER_ENABLED = False
    PARTNER_IMPORT_MAX_WORKERS = 2
    PARTNER_IMPORT_SHEETS_TOKEN = None
    CELERY_CONFIG = {"task_always_eager": True, "task_eager_propagates": True}


class ProductionConfig(Config):
    DEBUG = False
    uri = os.environ.get("DATABASE_URL")
    if uri and uri.startswith("postgres://"):
        uri = uri.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = uri
    SQLALCHEMY_ECHO = False
