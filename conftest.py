# conftest.py

import os

import pytest

# app.py selects its config classes at import time.
os.environ["FLASK_ENV"] = "testing"

from app import app as flask_app  # noqa: E402
from installhub.models import db  # noqa: E402


@pytest.fixture(scope="function")
def app():
    """Shared Flask application over a freshly created in-memory schema."""
    flask_app.config.update(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret-key-for-testing-only",
            "IMPORTER_ENABLED": True,
            "IMPORTER_WORKER_ENABLED": False,
            "PARTNER_IMPORT_MAX_WORKERS": 2,
            "PARTNER_IMPORT_SHEETS_TOKEN": None,
            "MONITORING_ENABLED": False,
        }
    )

    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture(autouse=True)
def app_context(app):
    """Every test runs inside an application context so models can query."""
    with app.app_context():
        yield


@pytest.fixture
def client(app):
    """HTTP client for the importer blueprint."""
    return app.test_client()


@pytest.fixture
def runner(app):
    """Runner for `flask importer ...` commands."""
    return app.test_cli_runner()
