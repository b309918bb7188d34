"""HTTP client for the backing store's insert-or-update import endpoint."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Sequence

import requests

from fundops_app.importer.pipeline.batch import TransportError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


def _error_message(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, Mapping) and payload.get("error"):
        return f"Import endpoint returned {response.status_code}: {payload['error']}"
    text = (response.text or "").strip()
    if text:
        return f"Import endpoint returned {response.status_code}: {text[:200]}"
    return f"Import endpoint returned {response.status_code}."


class HttpImportEndpoint:
    """
    POST ``{"rows": [...], **context}`` to the configured endpoint.

    ``context`` carries opaque values such as the selected ``companyId``.
    Any network failure, non-2xx status or non-JSON body is raised as
    ``TransportError`` so the orchestrator treats it as a chunk failure.
    Retries are left to the session's transport adapters.
    """

    def __init__(
        self,
        url: str,
        *,
        token: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        context: Mapping[str, Any] | None = None,
        session: requests.Session | None = None,
    ) -> None:
        if not url:
            raise ValueError("Import endpoint URL is required.")
        self.url = url
        self.timeout = timeout
        self.context = dict(context or {})
        self.session = session or requests.Session()
        self.session.headers.setdefault("Accept", "application/json")
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def submit(self, rows: Sequence[Mapping[str, Any]]) -> Mapping[str, Any]:
        body = {"rows": list(rows), **self.context}
        try:
            response = self.session.post(self.url, json=body, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.warning("Import endpoint request to %s failed: %s", self.url, exc)
            raise TransportError(f"Import endpoint request failed: {exc}") from exc

        if not response.ok:
            raise TransportError(_error_message(response), status_code=response.status_code)

        try:
            payload = response.json()
        except ValueError as exc:
            raise TransportError(
                "Import endpoint returned a non-JSON response.", status_code=response.status_code
            ) from exc
        if not isinstance(payload, Mapping):
            raise TransportError("Import endpoint returned a non-object response.", status_code=response.status_code)
        return payload


def build_endpoint_from_config(
    config: Mapping[str, Any],
    entity: str,
    *,
    url: str | None = None,
    context: Mapping[str, Any] | None = None,
) -> HttpImportEndpoint:
    """Create an endpoint client for ``entity`` from ``IMPORTER_*`` settings.

    ``url`` overrides the configured per-entity endpoint.
    """

    target = url or (config.get("IMPORTER_ENDPOINTS") or {}).get(entity)
    if not target:
        raise ValueError(f"No import endpoint configured for '{entity}'. Set IMPORTER_{entity.upper()}_ENDPOINT.")
    return HttpImportEndpoint(
        target,
        token=config.get("IMPORTER_ENDPOINT_TOKEN"),
        timeout=float(config.get("IMPORTER_ENDPOINT_TIMEOUT") or DEFAULT_TIMEOUT_SECONDS),
        context=context,
    )
