# config/validation.py

"""
Environment variable validation for the FundOps importer.
Validates required environment variables at startup.
"""

import os
import sys
from typing import List, Tuple

from .base import _coerce_bool, _parse_entity_list

ENDPOINT_ENV_VARS = {
    "companies": "IMPORTER_COMPANIES_ENDPOINT",
    "investors": "IMPORTER_INVESTORS_ENDPOINT",
}


def validate_environment(flask_env: str = None) -> Tuple[bool, List[str]]:
    """
    Validate required environment variables.

    Args:
        flask_env: Flask environment (development, production, testing)
                  If None, reads from FLASK_ENV environment variable

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    if flask_env is None:
        flask_env = os.environ.get("FLASK_ENV", "development")

    errors = []

    # Only validate in production
    if flask_env != "production":
        return True, []

    # Production validations
    secret_key = os.environ.get("SECRET_KEY", "")
    if not secret_key or secret_key == "your-secret-key" or secret_key == "your_secret_key":
        errors.append(
            "SECRET_KEY is required in production and must not be the default value. "
            'Generate a secure key: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    if _coerce_bool(os.environ.get("IMPORTER_ENABLED"), default=True):
        entities = _parse_entity_list(os.environ.get("IMPORTER_ENTITIES", "companies,investors"))
        for entity in entities:
            env_var = ENDPOINT_ENV_VARS.get(entity)
            if env_var is None:
                errors.append(f"IMPORTER_ENTITIES contains unknown entity '{entity}'")
                continue
            if not os.environ.get(env_var):
                errors.append(f"{env_var} is required in production when '{entity}' imports are enabled")

    synonyms_path = os.environ.get("IMPORTER_SYNONYMS_PATH")
    if synonyms_path and not os.path.isfile(synonyms_path):
        errors.append(f"IMPORTER_SYNONYMS_PATH points to a missing file: {synonyms_path}")

    is_valid = len(errors) == 0
    return is_valid, errors


def validate_and_exit(flask_env: str = None) -> None:
    """
    Validate environment variables and exit with error if validation fails.
    Intended to be called at application startup.

    Args:
        flask_env: Flask environment (development, production, testing)
    """
    is_valid, errors = validate_environment(flask_env)

    if not is_valid:
        print("=" * 80, file=sys.stderr)
        print("ENVIRONMENT VALIDATION FAILED", file=sys.stderr)
        print("=" * 80, file=sys.stderr)
        print("\nThe following environment variables are missing or invalid:\n", file=sys.stderr)

        for i, error in enumerate(errors, 1):
            print(f"{i}. {error}", file=sys.stderr)

        print("\n" + "=" * 80, file=sys.stderr)
        print("Please check your .env file or environment variables.", file=sys.stderr)
        print("=" * 80, file=sys.stderr)

        sys.exit(1)
