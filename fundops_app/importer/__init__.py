"""
Importer feature package.

Provides conditional blueprint and CLI registration along with entity contract
validation while remaining lightweight when the importer is disabled.
"""

from __future__ import annotations

from typing import Any, Iterable, Tuple

from flask import Flask

from fundops_app.utils.importer import get_importer_entities, is_importer_enabled

from .adapters.http_endpoint import build_endpoint_from_config
from .cli import get_disabled_importer_group, importer_cli
from .contracts import EntityContract, resolve_entities
from .mapping import SynonymOverrides, load_synonym_overrides
from .metrics import register_metrics_endpoint
from .views import importer_blueprint

IMPORTER_EXTENSION_KEY = "importer"

__all__ = [
    "init_importer",
    "IMPORTER_EXTENSION_KEY",
    "get_importer_state",
]


def _ensure_extension_state(app: Flask) -> dict:
    state = app.extensions.setdefault(
        IMPORTER_EXTENSION_KEY,
        {
            "enabled": False,
            "configured_entities": (),
            "active_entities": (),
            "sessions": {},
            "synonyms": None,
            "endpoint_factory": None,
        },
    )
    return state


def get_importer_state(app: Flask) -> dict[str, Any]:
    return _ensure_extension_state(app)


def _default_endpoint_factory(app: Flask):
    def factory(entity: str, *, url: str | None = None, context=None):
        return build_endpoint_from_config(app.config, entity, url=url, context=context)

    return factory


def _load_synonyms(app: Flask) -> SynonymOverrides | None:
    path = app.config.get("IMPORTER_SYNONYMS_PATH")
    if not path:
        return None
    overrides = load_synonym_overrides(path)
    app.logger.info(
        "Loaded importer synonym overrides from %s (checksum=%s).",
        path,
        overrides.checksum[:12],
        extra={"importer_synonyms_path": str(path), "importer_synonyms_checksum": overrides.checksum},
    )
    return overrides


def _set_cli(app: Flask, enabled: bool) -> None:
    """Register the appropriate CLI group based on flag state."""
    # Avoid duplicate registrations when running tests
    command_name = importer_cli.name
    if command_name in app.cli.commands:
        app.cli.commands.pop(command_name)

    if enabled:
        app.cli.add_command(importer_cli)
    else:
        app.cli.add_command(get_disabled_importer_group())


def init_importer(app: Flask) -> None:
    """
    Conditionally mount importer blueprint and CLI based on configuration.

    Records importer state inside ``app.extensions['importer']`` for reuse in
    the CLI, the HTTP views and other helpers.
    """
    enabled = is_importer_enabled(app)
    configured_entities: Tuple[str, ...] = get_importer_entities(app)

    state = _ensure_extension_state(app)
    state.update(
        {
            "enabled": enabled,
            "configured_entities": configured_entities,
        }
    )
    register_metrics_endpoint(app)

    if not enabled:
        state["active_entities"] = ()
        _set_cli(app, enabled=False)
        app.logger.info("Importer disabled via IMPORTER_ENABLED flag; skipping registration.")
        return

    active: Iterable[EntityContract] = resolve_entities(configured_entities)
    state["active_entities"] = tuple(active)
    state["synonyms"] = _load_synonyms(app)
    if state.get("endpoint_factory") is None:
        state["endpoint_factory"] = _default_endpoint_factory(app)

    for contract in state["active_entities"]:
        if not (app.config.get("IMPORTER_ENDPOINTS") or {}).get(contract.name):
            app.logger.warning(
                "No import endpoint configured for '%s'; imports will fail until one is set.",
                contract.name,
                extra={"importer_entity": contract.name},
            )

    if importer_blueprint.name not in app.blueprints and not getattr(app, "_got_first_request", False):
        app.register_blueprint(importer_blueprint)
    elif importer_blueprint.name not in app.blueprints:
        app.logger.warning(
            "Importer blueprint registration skipped because the app has already handled its first request."
        )
    _set_cli(app, enabled=True)

    entity_names = ", ".join(contract.name for contract in state["active_entities"]) or "none"
    app.logger.info("Importer enabled with entities: %s", entity_names)
