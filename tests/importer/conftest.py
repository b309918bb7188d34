from __future__ import annotations

from typing import Callable, Sequence

import pytest

from fundops_app.importer.adapters.csv_rows import ParsedTable, SourceRow
from fundops_app.importer.pipeline import TransportError


def build_table(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> ParsedTable:
    headers = tuple(headers)
    return ParsedTable(
        headers=headers,
        rows=tuple(SourceRow.build(index, dict(zip(headers, row))) for index, row in enumerate(rows)),
    )


class RecordingEndpoint:
    """In-memory stand-in for the insert-or-update endpoint."""

    def __init__(self, *, fail_on_call: int | None = None, responder: Callable | None = None):
        self.calls: list[list[dict]] = []
        self.fail_on_call = fail_on_call
        self.responder = responder

    def submit(self, rows):
        self.calls.append([dict(row) for row in rows])
        call_number = len(self.calls)
        if self.fail_on_call == call_number:
            raise TransportError("Import endpoint returned 502: upstream unavailable", status_code=502)
        if self.responder is not None:
            return self.responder(call_number, rows)
        return {"inserted": len(rows), "updated": 0, "skipped": 0, "warnings": [], "errors": []}


@pytest.fixture
def make_table():
    return build_table


@pytest.fixture
def recording_endpoint():
    def _factory(**kwargs) -> RecordingEndpoint:
        return RecordingEndpoint(**kwargs)

    return _factory


@pytest.fixture
def importer_app(app, recording_endpoint):
    """App with a fake endpoint factory that records every submission."""
    endpoint = recording_endpoint()
    created = []

    def _factory(entity, *, url=None, context=None):
        created.append({"entity": entity, "url": url, "context": dict(context or {})})
        return endpoint

    state = app.extensions["importer"]
    state["endpoint_factory"] = _factory
    state["test_endpoint"] = endpoint
    state["test_factory_calls"] = created
    yield app
    state.pop("test_endpoint", None)
    state.pop("test_factory_calls", None)
