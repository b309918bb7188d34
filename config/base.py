# config.py
import os


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


def _parse_entity_list(value):
    """
    Parse a comma-separated entity list while keeping order and removing duplicates.

    Returns:
        tuple[str, ...]: Normalized entity identifiers.
    """
    if not value:
        return ()

    seen = set()
    entities = []
    for raw_item in value.split(","):
        item = raw_item.strip().lower()
        if not item or item in seen:
            continue
        seen.add(item)
        entities.append(item)
    return tuple(entities)


def _parse_int(value, *, default, minimum=1, maximum=None):
    """
    Parse an integer setting, falling back to ``default`` when invalid or out of bounds.
    """
    if value is None or str(value).strip() == "":
        return default
    try:
        number = int(str(value).strip())
    except ValueError:
        return default
    if number < minimum or (maximum is not None and number > maximum):
        return default
    return number


def _parse_float(value, *, default, minimum=0.0):
    if value is None or str(value).strip() == "":
        return default
    try:
        number = float(str(value).strip())
    except ValueError:
        return default
    if number <= minimum:
        return default
    return number


class Config:
    # SECRET_KEY must be set via environment variable for security
    # Generate with: python -c "import secrets; print(secrets.token_hex(32))"
    _flask_env = os.environ.get("FLASK_ENV", "development")
    _is_testing = _flask_env == "testing"
    _is_production = _flask_env == "production"

    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Only require SECRET_KEY in production mode
    if not SECRET_KEY and _is_production:
        raise ValueError(
            "SECRET_KEY environment variable is required in production. "
            'Generate with: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    if not SECRET_KEY and not _is_testing:
        import warnings

        warnings.warn(
            "SECRET_KEY not set. Using default for development only. "
            "This is insecure and should not be used in production.",
            UserWarning,
        )
        SECRET_KEY = "dev-secret-key-change-in-production"

    # Set a default for testing (will be overridden by TestingConfig)
    if not SECRET_KEY:
        SECRET_KEY = "test-secret-key-placeholder"

    # Importer configuration
    IMPORTER_ENABLED = _coerce_bool(os.environ.get("IMPORTER_ENABLED"), default=True)
    IMPORTER_ENTITIES = _parse_entity_list(os.environ.get("IMPORTER_ENTITIES", "companies,investors"))

    if IMPORTER_ENABLED and not IMPORTER_ENTITIES:
        raise ValueError("IMPORTER_ENABLED is true but IMPORTER_ENTITIES is empty. Provide at least one entity.")

    # Fixed chunk size for submissions to the insert-or-update endpoint
    IMPORTER_CHUNK_SIZE = _parse_int(os.environ.get("IMPORTER_CHUNK_SIZE"), default=50, minimum=1, maximum=1000)

    # Per-entity endpoint URLs; the backing store owns persistence
    IMPORTER_ENDPOINTS = {
        "companies": os.environ.get("IMPORTER_COMPANIES_ENDPOINT"),
        "investors": os.environ.get("IMPORTER_INVESTORS_ENDPOINT"),
    }
    IMPORTER_ENDPOINT_TOKEN = os.environ.get("IMPORTER_ENDPOINT_TOKEN")
    IMPORTER_ENDPOINT_TIMEOUT = _parse_float(os.environ.get("IMPORTER_ENDPOINT_TIMEOUT"), default=30.0)

    # Empty means sniff the delimiter from the upload
    IMPORTER_CSV_DELIMITER = os.environ.get("IMPORTER_CSV_DELIMITER") or None
    IMPORTER_SYNONYMS_PATH = os.environ.get("IMPORTER_SYNONYMS_PATH")
    IMPORTER_MAX_UPLOAD_MB = _parse_int(os.environ.get("IMPORTER_MAX_UPLOAD_MB"), default=25)
    MAX_CONTENT_LENGTH = IMPORTER_MAX_UPLOAD_MB * 1024 * 1024


class DevelopmentConfig(Config):
    DEBUG = True


class TestingConfig(Config):
    TESTING = True
    # Override SECRET_KEY for testing - tests will set their own
    SECRET_KEY = os.environ.get("SECRET_KEY", "test-secret-key-for-testing-only")
    IMPORTER_ENDPOINTS = {"companies": None, "investors": None}
    IMPORTER_SYNONYMS_PATH = None


class ProductionConfig(Config):
    DEBUG = False
