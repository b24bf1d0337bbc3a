# config/validation.py

"""
Startup checks for production deployments of InstallHub.

Each check reads ``os.environ`` directly because it runs before the Flask
config classes are applied.
"""

import os
import sys
from typing import Callable, List, Tuple

from installhub.models.order import OrderStatusEnhanced

PLACEHOLDER_SECRET_KEYS = {"your-secret-key", "your_secret_key", "change-me"}


def _check_secret_key() -> List[str]:
    secret_key = os.environ.get("SECRET_KEY", "")
    if secret_key and secret_key not in PLACEHOLDER_SECRET_KEYS:
        return []
    return [
        "SECRET_KEY must be set to a non-placeholder value in production "
        '(for example: python -c "import secrets; print(secrets.token_hex(32))").'
    ]


def _check_database_url() -> List[str]:
    if os.environ.get("DATABASE_URL"):
        return []
    return ["DATABASE_URL must point at the production database."]


def _check_import_defaults() -> List[str]:
    problems = []
    default_status = os.environ.get("PARTNER_IMPORT_DEFAULT_STATUS")
    if default_status:
        try:
            OrderStatusEnhanced.parse(default_status)
        except ValueError:
            problems.append(f"PARTNER_IMPORT_DEFAULT_STATUS '{default_status}' is not a known order status.")

    max_workers = os.environ.get("PARTNER_IMPORT_MAX_WORKERS", "").strip()
    if max_workers and not max_workers.isdigit():
        problems.append(f"PARTNER_IMPORT_MAX_WORKERS must be a positive integer, got '{max_workers}'.")
    return problems


def _check_worker_transport() -> List[str]:
    worker_enabled = os.environ.get("IMPORTER_WORKER_ENABLED", "").strip().lower() in {"1", "true", "yes", "on"}
    if worker_enabled and not os.environ.get("CELERY_BROKER_URL"):
        return ["CELERY_BROKER_URL is required when IMPORTER_WORKER_ENABLED is on in production."]
    return []


PRODUCTION_CHECKS: Tuple[Callable[[], List[str]], ...] = (
    _check_secret_key,
    _check_database_url,
    _check_import_defaults,
    _check_worker_transport,
)


def validate_environment(flask_env: str = None) -> Tuple[bool, List[str]]:
    """
    Run the production checks.

    Returns ``(is_valid, errors)``. Outside production nothing is checked.
    """
    flask_env = flask_env or os.environ.get("FLASK_ENV", "development")
    if flask_env != "production":
        return True, []

    errors: List[str] = []
    for check in PRODUCTION_CHECKS:
        errors.extend(check())
    return not errors, errors


def validate_and_exit(flask_env: str = None) -> None:
    """Print every failed check to stderr and exit with status 1."""
    is_valid, errors = validate_environment(flask_env)
    if is_valid:
        return

    print("InstallHub cannot start: environment validation failed.", file=sys.stderr)
    for number, error in enumerate(errors, 1):
        print(f"  {number}. {error}", file=sys.stderr)
    sys.exit(1)
