from unittest.mock import MagicMock

import pytest
import requests

from fundops_app.importer.adapters.http_endpoint import HttpImportEndpoint, build_endpoint_from_config
from fundops_app.importer.pipeline import TransportError

URL = "https://crm.example.test/api/companies/import"


def _session(response=None, *, error=None):
    session = MagicMock(spec=requests.Session)
    session.headers = {}
    if error is not None:
        session.post.side_effect = error
    else:
        session.post.return_value = response
    return session


def _response(status_code=200, payload=None, *, text="", invalid_json=False):
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.text = text
    if invalid_json:
        response.json.side_effect = ValueError("No JSON object could be decoded")
    else:
        response.json.return_value = payload
    return response


def test_submit_posts_rows_with_context_and_token():
    session = _session(_response(payload={"inserted": 1, "updated": 0, "skipped": 0}))
    endpoint = HttpImportEndpoint(URL, token="secret", timeout=5, context={"companyId": "c-42"}, session=session)

    payload = endpoint.submit([{"name": "Acme"}])

    assert payload["inserted"] == 1
    session.post.assert_called_once_with(
        URL,
        json={"rows": [{"name": "Acme"}], "companyId": "c-42"},
        timeout=5,
    )
    assert session.headers["Authorization"] == "Bearer secret"
    assert session.headers["Accept"] == "application/json"


def test_error_status_uses_error_field():
    session = _session(_response(422, {"error": "rows must not be empty"}))
    endpoint = HttpImportEndpoint(URL, session=session)

    with pytest.raises(TransportError) as excinfo:
        endpoint.submit([])

    assert excinfo.value.status_code == 422
    assert str(excinfo.value) == "Import endpoint returned 422: rows must not be empty"


def test_error_status_falls_back_to_body_text():
    session = _session(_response(503, text="Service Unavailable", invalid_json=True))

    with pytest.raises(TransportError) as excinfo:
        HttpImportEndpoint(URL, session=session).submit([{"name": "Acme"}])

    assert str(excinfo.value) == "Import endpoint returned 503: Service Unavailable"


def test_network_errors_become_transport_errors():
    session = _session(error=requests.ConnectionError("connection refused"))

    with pytest.raises(TransportError) as excinfo:
        HttpImportEndpoint(URL, session=session).submit([{"name": "Acme"}])

    assert excinfo.value.status_code is None
    assert "connection refused" in str(excinfo.value)


@pytest.mark.parametrize(
    "response, message",
    [
        (_response(200, invalid_json=True), "non-JSON response"),
        (_response(200, ["not", "an", "object"]), "non-object response"),
    ],
)
def test_malformed_success_bodies_are_rejected(response, message):
    with pytest.raises(TransportError) as excinfo:
        HttpImportEndpoint(URL, session=_session(response)).submit([{"name": "Acme"}])

    assert message in str(excinfo.value)


def test_build_endpoint_from_config_uses_entity_endpoint():
    config = {
        "IMPORTER_ENDPOINTS": {"companies": URL},
        "IMPORTER_ENDPOINT_TOKEN": "secret",
        "IMPORTER_ENDPOINT_TIMEOUT": 12.5,
    }

    endpoint = build_endpoint_from_config(config, "companies", context={"companyId": "c-1"})
    override = build_endpoint_from_config(config, "companies", url="https://other.example.test/import")

    assert endpoint.url == URL
    assert endpoint.timeout == 12.5
    assert endpoint.context == {"companyId": "c-1"}
    assert override.url == "https://other.example.test/import"


def test_build_endpoint_from_config_requires_a_url():
    with pytest.raises(ValueError) as excinfo:
        build_endpoint_from_config({"IMPORTER_ENDPOINTS": {}}, "investors")

    assert "IMPORTER_INVESTORS_ENDPOINT" in str(excinfo.value)
