# conftest.py

import os

import pytest

# Set testing environment BEFORE importing app
# This ensures app.py uses TestingConfig when imported
os.environ["FLASK_ENV"] = "testing"

# Now import app and other modules after environment is set
from app import app as flask_app  # noqa: E402
from fundops_app.importer import init_importer  # noqa: E402


@pytest.fixture(scope="function")
def app():
    """Create and configure a test Flask application"""
    flask_app.config.update(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret-key-for-testing-only",
            "DEBUG": True,
            "MONITORING_ENABLED": False,
            "ENABLE_FILE_LOGGING": False,
            "ENABLE_CONSOLE_LOGGING": True,
            "LOG_LEVEL": "DEBUG",
            "LOG_FORMAT": "text",
            "IMPORTER_ENABLED": True,
            "IMPORTER_ENTITIES": ("companies", "investors"),
            "IMPORTER_CHUNK_SIZE": 50,
            "IMPORTER_ENDPOINTS": {
                "companies": "https://crm.example.test/api/companies/import",
                "investors": "https://crm.example.test/api/investors/import",
            },
            "IMPORTER_ENDPOINT_TOKEN": None,
            "IMPORTER_ENDPOINT_TIMEOUT": 30.0,
            "IMPORTER_CSV_DELIMITER": None,
            "IMPORTER_SYNONYMS_PATH": None,
        }
    )

    # Re-initialize logging with updated config to pick up LOG_LEVEL=DEBUG
    from fundops_app.utils.logging_config import setup_logging

    setup_logging(flask_app)

    # Start every test with a clean importer state
    state = flask_app.extensions.setdefault("importer", {})
    state["sessions"] = {}
    state["endpoint_factory"] = None
    init_importer(flask_app)

    with flask_app.app_context():
        yield flask_app


@pytest.fixture
def client(app):
    """Create a test client for the Flask application"""
    return app.test_client()


@pytest.fixture
def runner(app):
    """Create a test CLI runner for the Flask application"""
    return app.test_cli_runner()


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers and ensure testing environment"""
    # Ensure FLASK_ENV is set to testing before any tests run
    # This is a safety measure in case conftest imports happen in unexpected order
    os.environ["FLASK_ENV"] = "testing"

    config.addinivalue_line("markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "unit: marks tests as unit tests")


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers"""
    for item in items:
        # Add slow marker to integration tests
        if "integration" in item.nodeid:
            item.add_marker(pytest.mark.slow)
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
