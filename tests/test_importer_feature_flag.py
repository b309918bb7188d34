import json

import pytest
from flask import Flask

from fundops_app.importer import IMPORTER_EXTENSION_KEY, init_importer


def build_app(enabled=False, entities=(), **overrides):
    app = Flask(__name__)
    app.config.update(
        SECRET_KEY="test-secret",
        TESTING=True,
        IMPORTER_ENABLED=enabled,
        IMPORTER_ENTITIES=tuple(entities),
        IMPORTER_ENDPOINTS={entity: f"https://crm.example.test/api/{entity}/import" for entity in entities},
    )
    app.config.update(overrides)

    init_importer(app)
    return app


def test_importer_disabled_registers_stub_cli(monkeypatch):
    called = {"flag": False}

    def record_call(*args, **kwargs):
        called["flag"] = True
        return ()

    monkeypatch.setattr("fundops_app.importer.resolve_entities", record_call)

    app = build_app(enabled=False)

    assert called["flag"] is False, "resolve_entities should not run when importer disabled"
    assert "importer" not in app.blueprints
    assert app.extensions[IMPORTER_EXTENSION_KEY]["active_entities"] == ()

    runner = app.test_cli_runner()
    result = runner.invoke(args=["importer"])
    assert result.exit_code != 0
    assert "Importer commands are unavailable" in result.output


def test_importer_enabled_registers_blueprint_and_cli():
    app = build_app(enabled=True, entities=("companies",))

    assert "importer" in app.blueprints
    assert "importer.importer_healthcheck" in app.view_functions

    client = app.test_client()
    response = client.get("/importer/health")
    assert response.status_code == 200
    payload = json.loads(response.data)
    assert payload["enabled"] is True
    assert payload["entities"][0]["entity"] == "companies"

    runner = app.test_cli_runner()
    result = runner.invoke(args=["importer"])
    assert result.exit_code == 0
    assert "- companies" in result.output

    importer_state = app.extensions[IMPORTER_EXTENSION_KEY]
    assert importer_state["enabled"] is True
    assert importer_state["active_entities"][0].name == "companies"
    assert callable(importer_state["endpoint_factory"])


def test_default_endpoint_factory_reads_config():
    app = build_app(enabled=True, entities=("investors",), IMPORTER_ENDPOINT_TOKEN="secret")

    factory = app.extensions[IMPORTER_EXTENSION_KEY]["endpoint_factory"]
    endpoint = factory("investors", context={"companyId": "c-3"})

    assert endpoint.url == "https://crm.example.test/api/investors/import"
    assert endpoint.context == {"companyId": "c-3"}
    with pytest.raises(ValueError):
        factory("companies")


def test_importer_unknown_entity_raises():
    with pytest.raises(ValueError):
        build_app(enabled=True, entities=("donors",))


def test_metrics_endpoint_follows_monitoring_flag():
    enabled = build_app(enabled=True, entities=("companies",), MONITORING_ENABLED=True, METRICS_ENDPOINT="/metrics")
    disabled = build_app(enabled=True, entities=("companies",))

    response = enabled.test_client().get("/metrics")

    assert response.status_code == 200
    assert b"fundops_importer_runs_total" in response.data
    assert "importer_metrics" not in disabled.view_functions


def test_synonym_overrides_are_loaded_on_init(tmp_path):
    synonyms_file = tmp_path / "synonyms.yaml"
    synonyms_file.write_text("companies:\n  name:\n    - Denominazione\n", encoding="utf-8")

    app = build_app(enabled=True, entities=("companies",), IMPORTER_SYNONYMS_PATH=str(synonyms_file))

    overrides = app.extensions[IMPORTER_EXTENSION_KEY]["synonyms"]
    assert overrides.for_entity("companies")["name"] == ("Denominazione",)
