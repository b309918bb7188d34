"""
Utility helpers for importer feature flag and configuration checks.
"""

from __future__ import annotations

from typing import Iterable, Tuple

from flask import current_app

DEFAULT_CHUNK_SIZE = 50


def _get_config(app=None):
    if app is not None:
        return app.config
    return current_app.config


def is_importer_enabled(app=None) -> bool:
    """Return True when the importer feature flag is enabled."""
    config = _get_config(app)
    return bool(config.get("IMPORTER_ENABLED", False))


def get_importer_entities(app=None) -> Tuple[str, ...]:
    """Return the configured importer entity identifiers."""
    config = _get_config(app)
    entities: Iterable[str] = config.get("IMPORTER_ENTITIES", ())
    # Normalize to tuple for immutability, matching config default
    return tuple(entities)


def get_chunk_size(app=None) -> int:
    config = _get_config(app)
    try:
        size = int(config.get("IMPORTER_CHUNK_SIZE", DEFAULT_CHUNK_SIZE))
    except (TypeError, ValueError):
        return DEFAULT_CHUNK_SIZE
    return size if size > 0 else DEFAULT_CHUNK_SIZE


def get_endpoint_url(entity: str, app=None) -> str | None:
    """Return the insert-or-update endpoint configured for ``entity``, if any."""
    config = _get_config(app)
    endpoints = config.get("IMPORTER_ENDPOINTS") or {}
    return endpoints.get(entity) or None


def get_csv_delimiter(app=None) -> str | None:
    config = _get_config(app)
    return config.get("IMPORTER_CSV_DELIMITER") or None
