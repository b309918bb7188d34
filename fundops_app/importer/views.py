"""
JSON API for driving import sessions over HTTP.
"""

from __future__ import annotations

import io
from http import HTTPStatus

from flask import Blueprint, current_app, jsonify, request

from fundops_app.utils.importer import get_chunk_size, get_csv_delimiter, is_importer_enabled

from .adapters.csv_rows import CSVParseError, read_source_rows, rows_from_records
from .contracts import contract_summary
from .mapping import MappingError, MappingFrozenError
from .pipeline import (
    ConfirmationRequiredError,
    CorrectionStateError,
    ImportAbortedError,
    ImportSession,
    ImportStage,
    RecordNotFoundError,
    StageBlockedError,
    StageTransitionError,
)

importer_blueprint = Blueprint("importer", __name__, url_prefix="/importer")


def _importer_state() -> dict:
    return current_app.extensions.get("importer", {})


def _json_error(message: str, status: HTTPStatus, **extra):
    payload = {"error": message}
    payload.update(extra)
    return jsonify(payload), status


def _ensure_importer_enabled_api():
    if not is_importer_enabled(current_app):
        return _json_error("Importer is disabled.", HTTPStatus.NOT_FOUND)
    return None


def _error_response(exc: Exception):
    """Translate pipeline exceptions into JSON error responses."""
    if isinstance(exc, ConfirmationRequiredError):
        return _json_error(str(exc), HTTPStatus.CONFLICT, reasons=list(exc.reasons))
    if isinstance(exc, StageBlockedError):
        return _json_error(str(exc), HTTPStatus.UNPROCESSABLE_ENTITY, reasons=list(exc.reasons))
    if isinstance(exc, (StageTransitionError, CorrectionStateError, MappingFrozenError)):
        return _json_error(str(exc), HTTPStatus.CONFLICT)
    if isinstance(exc, RecordNotFoundError):
        return _json_error(str(exc), HTTPStatus.NOT_FOUND)
    if isinstance(exc, (MappingError, CSVParseError)):
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)
    raise exc


_SESSION_ERRORS = (
    StageTransitionError,
    CorrectionStateError,
    RecordNotFoundError,
    MappingError,
    CSVParseError,
)


def _get_session(session_id: str):
    session = _importer_state().get("sessions", {}).get(session_id)
    if session is None:
        return None, _json_error(f"Import session {session_id} not found.", HTTPStatus.NOT_FOUND)
    return session, None


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _resolve_entity(entity: str | None):
    active = {contract.name: contract for contract in _importer_state().get("active_entities", ())}
    key = (entity or "").strip().lower()
    if key not in active:
        return None, _json_error(
            f"Unknown or disabled entity '{entity}'. Expected one of: {', '.join(active) or 'none'}.",
            HTTPStatus.BAD_REQUEST,
        )
    return active[key], None


def _parse_upload():
    """Return a parsed table from a multipart CSV upload or a JSON ``rows`` body."""
    upload = request.files.get("file")
    if upload is not None:
        try:
            text = upload.read().decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise CSVParseError("Uploaded file is not valid UTF-8 text.") from exc
        delimiter = request.form.get("delimiter") or get_csv_delimiter(current_app)
        return read_source_rows(io.StringIO(text, newline=""), delimiter=delimiter)

    payload = _json_body()
    rows = payload.get("rows")
    if not isinstance(rows, list):
        raise CSVParseError("Provide a CSV 'file' upload or a JSON body with a 'rows' list.")
    return rows_from_records(rows, headers=payload.get("headers"))


def _include_records() -> bool:
    return request.args.get("records", "1").strip().lower() not in {"0", "false", "no"}


@importer_blueprint.get("/health")
def importer_healthcheck():
    """
    Lightweight health endpoint proving the importer blueprint mounted correctly.
    """
    importer_state = _importer_state()
    entities = importer_state.get("active_entities", ())
    return (
        jsonify(
            {
                "status": "ok",
                "enabled": importer_state.get("enabled", False),
                "entities": [contract_summary(contract) for contract in entities],
                "sessions": len(importer_state.get("sessions", {})),
            }
        ),
        200,
    )


@importer_blueprint.post("/sessions")
def importer_create_session():
    enabled_response = _ensure_importer_enabled_api()
    if enabled_response:
        return enabled_response

    entity = request.form.get("entity") if request.files else _json_body().get("entity")
    contract, error = _resolve_entity(entity)
    if error:
        return error

    try:
        table = _parse_upload()
    except CSVParseError as exc:
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST, row_number=exc.row_number)

    state = _importer_state()
    session = ImportSession(contract, synonyms=state.get("synonyms"))
    session.load(table)
    state.setdefault("sessions", {})[session.id] = session

    current_app.logger.info(
        "Import session created",
        extra={
            "importer_session": session.id,
            "importer_entity": contract.name,
            "importer_rows": len(table.rows),
            "importer_rows_skipped_blank": table.rows_skipped_blank,
        },
    )
    return jsonify(session.as_dict()), HTTPStatus.CREATED


@importer_blueprint.get("/sessions/<session_id>")
def importer_session_detail(session_id: str):
    session, error = _get_session(session_id)
    if error:
        return error
    return jsonify(session.as_dict(include_records=_include_records())), HTTPStatus.OK


@importer_blueprint.delete("/sessions/<session_id>")
def importer_session_delete(session_id: str):
    session, error = _get_session(session_id)
    if error:
        return error
    if session.stage is ImportStage.IMPORTING:
        return _json_error("Cannot discard a session while it is importing.", HTTPStatus.CONFLICT)
    _importer_state()["sessions"].pop(session_id, None)
    return "", HTTPStatus.NO_CONTENT


@importer_blueprint.put("/sessions/<session_id>/mapping")
def importer_session_mapping(session_id: str):
    session, error = _get_session(session_id)
    if error:
        return error

    assignments = _json_body().get("assignments")
    if not isinstance(assignments, dict):
        return _json_error("Body must contain an 'assignments' object of slot -> header.", HTTPStatus.BAD_REQUEST)

    try:
        for slot, header in assignments.items():
            if header:
                session.assign_mapping(slot, str(header))
            else:
                session.clear_mapping(slot)
    except _SESSION_ERRORS as exc:
        return _error_response(exc)
    return jsonify(session.as_dict(include_records=_include_records())), HTTPStatus.OK


@importer_blueprint.post("/sessions/<session_id>/edits/<action>")
def importer_session_edit(session_id: str, action: str):
    session, error = _get_session(session_id)
    if error:
        return error

    body = _json_body()
    pending = None
    try:
        if action == "begin":
            try:
                index = int(body.get("index"))
            except (TypeError, ValueError):
                return _json_error("'index' must be an integer row index.", HTTPStatus.BAD_REQUEST)
            field = body.get("field")
            if not field:
                return _json_error("'field' is required.", HTTPStatus.BAD_REQUEST)
            session.begin_edit(index, str(field))
        elif action == "commit":
            value = body.get("value")
            pending = session.commit_edit(None if value is None else str(value))
        elif action == "confirm":
            session.confirm_edit()
        elif action == "cancel":
            session.cancel_edit()
        else:
            return _json_error(f"Unknown edit action '{action}'.", HTTPStatus.NOT_FOUND)
    except _SESSION_ERRORS as exc:
        return _error_response(exc)

    payload = session.as_dict(include_records=_include_records())
    if pending is not None:
        payload["confirmation_required"] = pending
    return jsonify(payload), HTTPStatus.OK


@importer_blueprint.post("/sessions/<session_id>/advance")
def importer_session_advance(session_id: str):
    session, error = _get_session(session_id)
    if error:
        return error
    try:
        session.advance()
    except _SESSION_ERRORS as exc:
        return _error_response(exc)
    return jsonify(session.as_dict(include_records=_include_records())), HTTPStatus.OK


@importer_blueprint.post("/sessions/<session_id>/back")
def importer_session_back(session_id: str):
    session, error = _get_session(session_id)
    if error:
        return error
    try:
        stage = ImportStage(str(_json_body().get("stage", "")).lower())
    except ValueError:
        return _json_error(
            f"'stage' must be one of: {', '.join(stage.value for stage in ImportStage)}.",
            HTTPStatus.BAD_REQUEST,
        )
    try:
        session.go_back(stage)
    except _SESSION_ERRORS as exc:
        return _error_response(exc)
    return jsonify(session.as_dict(include_records=_include_records())), HTTPStatus.OK


@importer_blueprint.post("/sessions/<session_id>/import")
def importer_session_import(session_id: str):
    session, error = _get_session(session_id)
    if error:
        return error

    state = _importer_state()
    busy = [
        other.id
        for other in state.get("sessions", {}).values()
        if other.id != session.id and other.stage is ImportStage.IMPORTING
    ]
    if busy:
        return _json_error("Another import is already running.", HTTPStatus.CONFLICT, running=busy)
    if session.stage is not ImportStage.SUMMARY:
        return _json_error(
            f"Cannot start the import during the {session.stage.value} stage.", HTTPStatus.CONFLICT
        )

    body = _json_body()
    context = body.get("context") or {}
    if not isinstance(context, dict):
        return _json_error("'context' must be an object.", HTTPStatus.BAD_REQUEST)
    chunk_size = get_chunk_size(current_app)
    if body.get("chunk_size") is not None:
        try:
            chunk_size = int(body["chunk_size"])
        except (TypeError, ValueError):
            return _json_error("'chunk_size' must be a positive integer.", HTTPStatus.BAD_REQUEST)
        if chunk_size < 1:
            return _json_error("'chunk_size' must be a positive integer.", HTTPStatus.BAD_REQUEST)

    factory = state.get("endpoint_factory")
    if factory is None:
        return _json_error("Import endpoint is not configured.", HTTPStatus.SERVICE_UNAVAILABLE)
    try:
        endpoint = factory(session.contract.name, context=context)
    except ValueError as exc:
        return _json_error(str(exc), HTTPStatus.SERVICE_UNAVAILABLE)

    try:
        session.run_import(endpoint, chunk_size=chunk_size)
    except ImportAbortedError as exc:
        current_app.logger.warning(
            "Import session %s aborted: %s",
            session.id,
            exc,
            extra={"importer_session": session.id, "importer_chunks_completed": exc.chunks_completed},
        )
        return _json_error(
            str(exc),
            HTTPStatus.BAD_GATEWAY,
            report=session.as_dict(include_records=False),
        )
    except StageTransitionError as exc:
        return _error_response(exc)
    return jsonify(session.as_dict(include_records=False)), HTTPStatus.OK


@importer_blueprint.get("/sessions/<session_id>/report")
def importer_session_report(session_id: str):
    session, error = _get_session(session_id)
    if error:
        return error
    if session.stage is not ImportStage.REPORT:
        return _json_error("No report is available until an import has run.", HTTPStatus.CONFLICT)
    payload = {
        "session": session.id,
        "entity": session.contract.name,
        "result": session.result.as_dict() if session.result is not None else None,
        "error": session.error,
        "skipped": [entry.as_dict() for entry in session.outcome.skipped] if session.outcome else [],
    }
    return jsonify(payload), HTTPStatus.OK
