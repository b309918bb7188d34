"""
Sequential chunked submission of ready records to the insert-or-update endpoint.

Chunks are sent strictly one after another: chunk *i* must be applied by the
backing store before chunk *i+1* is sent, because the store's own duplicate
and audit decisions depend on earlier chunks having landed. A failed chunk
aborts the run; chunks already applied stay applied.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Iterator, List, Mapping, Protocol, Sequence

from fundops_app.importer.contracts.base import EntityContract
from fundops_app.importer.metrics import record_import_chunk, record_row_actions

from .normalize import NormalizedRecord

DEFAULT_CHUNK_SIZE = 50

_COUNT_KEYS = ("inserted", "updated", "skipped")


class TransportError(RuntimeError):
    """A chunk submission failed (network, server status, or malformed response)."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ImportAbortedError(TransportError):
    """Raised by the orchestrator when a chunk fails; carries the partial result."""

    def __init__(self, message: str, *, result: "ImportBatchResult", status_code: int | None = None) -> None:
        super().__init__(message, status_code=status_code)
        self.result = result

    @property
    def chunks_completed(self) -> int:
        return self.result.chunks_completed


class ImportEndpoint(Protocol):
    """Insert-or-update endpoint contract consumed by the orchestrator."""

    def submit(self, rows: Sequence[Mapping[str, Any]]) -> Mapping[str, Any]:
        ...


@dataclass(frozen=True)
class ImportProgress:
    processed: int
    total: int
    chunks_completed: int
    chunks_total: int

    def __str__(self) -> str:
        return f"{self.processed}/{self.total}"

    def as_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "total": self.total,
            "chunks_completed": self.chunks_completed,
            "chunks_total": self.chunks_total,
        }


@dataclass(frozen=True)
class RowMessage:
    """A warning or error reported by the endpoint, traced to its source row."""

    original_index: int | None
    reason: str

    def as_dict(self) -> dict[str, object]:
        return {"original_index": self.original_index, "reason": self.reason}


@dataclass(frozen=True)
class RowOutcome:
    """Per-record action taken by the backing store."""

    original_index: int
    action: str
    match_strategy: str | None = None
    warnings: tuple[str, ...] = ()
    errors: tuple[str, ...] = ()

    def as_dict(self) -> dict[str, object]:
        return {
            "original_index": self.original_index,
            "action": self.action,
            "match_strategy": self.match_strategy,
            "warnings": list(self.warnings),
            "errors": list(self.errors),
        }


@dataclass
class ImportBatchResult:
    """Running totals accumulated across chunks."""

    total: int = 0
    chunks_total: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    processed: int = 0
    chunks_completed: int = 0
    cancelled: bool = False
    warnings: List[RowMessage] = field(default_factory=list)
    errors: List[RowMessage] = field(default_factory=list)
    rows: List[RowOutcome] = field(default_factory=list)

    @property
    def progress(self) -> ImportProgress:
        return ImportProgress(
            processed=self.processed,
            total=self.total,
            chunks_completed=self.chunks_completed,
            chunks_total=self.chunks_total,
        )

    @property
    def completed(self) -> bool:
        return not self.cancelled and self.chunks_completed == self.chunks_total

    def as_dict(self) -> dict[str, object]:
        return {
            "inserted": self.inserted,
            "updated": self.updated,
            "skipped": self.skipped,
            "processed": self.processed,
            "total": self.total,
            "progress": str(self.progress),
            "chunks_completed": self.chunks_completed,
            "chunks_total": self.chunks_total,
            "cancelled": self.cancelled,
            "completed": self.completed,
            "warnings": [message.as_dict() for message in self.warnings],
            "errors": [message.as_dict() for message in self.errors],
            "rows": [row.as_dict() for row in self.rows],
        }


def chunk_records(records: Iterable[NormalizedRecord], chunk_size: int) -> Iterator[List[NormalizedRecord]]:
    """Utility to group iterable of records into lists of `chunk_size`."""

    chunk: List[NormalizedRecord] = []
    for record in records:
        chunk.append(record)
        if len(chunk) == chunk_size:
            yield chunk
            chunk = []
    if chunk:
        yield chunk


def build_payload(record: NormalizedRecord, contract: EntityContract) -> dict[str, str]:
    """Wire representation of a record; empty values are omitted."""

    payload: dict[str, str] = {}
    for spec in contract.fields:
        value = record.values.get(spec.name)
        if value:
            payload[spec.wire_name] = value
    return payload


_LIST_KEYS = ("warnings", "errors", "results", "details")


def _check_response_shape(response: object) -> None:
    """Reject a 2xx body whose shape cannot be merged into the running totals."""

    if not isinstance(response, Mapping):
        raise TransportError("Import endpoint returned a non-object response.")
    for key in _LIST_KEYS:
        value = response.get(key)
        if value is not None and not isinstance(value, (list, tuple)):
            raise TransportError(f"Import endpoint returned a malformed '{key}' field (expected a list).")


def _coerce_count(value: object) -> int:
    try:
        return int(value or 0)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0


def _resolve_index(chunk: Sequence[NormalizedRecord], index: object) -> int | None:
    """Translate a 1-based chunk position into the record's original index."""

    try:
        position = int(index)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    if 1 <= position <= len(chunk):
        return chunk[position - 1].original_index
    return None


def _as_reasons(value: object) -> tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        return (str(value),)
    reasons: list[str] = []
    for item in value:  # type: ignore[union-attr]
        if isinstance(item, Mapping):
            reasons.append(str(item.get("reason") or item.get("message") or item))
        else:
            reasons.append(str(item))
    return tuple(reasons)


class BatchImportOrchestrator:
    """Submit ready records in ordered chunks and aggregate the responses."""

    def __init__(
        self,
        endpoint: ImportEndpoint,
        contract: EntityContract,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        on_progress: Callable[[ImportProgress], None] | None = None,
        should_cancel: Callable[[], bool] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be a positive integer.")
        self.endpoint = endpoint
        self.contract = contract
        self.chunk_size = chunk_size
        self._on_progress = on_progress
        self._should_cancel = should_cancel
        self._logger = logger or logging.getLogger(__name__)

    def run(self, ready: Sequence[NormalizedRecord]) -> ImportBatchResult:
        chunks = list(chunk_records(ready, self.chunk_size))
        result = ImportBatchResult(total=len(ready), chunks_total=len(chunks))
        entity = self.contract.name

        for chunk_number, chunk in enumerate(chunks, start=1):
            if self._should_cancel is not None and self._should_cancel():
                result.cancelled = True
                self._logger.info(
                    "Import of %s cancelled before chunk %s/%s.",
                    entity,
                    chunk_number,
                    len(chunks),
                    extra={"importer_entity": entity, "importer_chunks_completed": result.chunks_completed},
                )
                break

            rows = [build_payload(record, self.contract) for record in chunk]
            started = time.perf_counter()
            try:
                response = self.endpoint.submit(rows)
                _check_response_shape(response)
            except TransportError as exc:
                record_import_chunk(entity=entity, status="failure", duration_seconds=time.perf_counter() - started)
                self._logger.error(
                    "Import of %s aborted on chunk %s/%s after %s completed chunk(s): %s",
                    entity,
                    chunk_number,
                    len(chunks),
                    result.chunks_completed,
                    exc,
                    extra={"importer_entity": entity, "importer_chunks_completed": result.chunks_completed},
                )
                raise ImportAbortedError(
                    f"Chunk {chunk_number} of {len(chunks)} failed after {result.chunks_completed} "
                    f"completed chunk(s): {exc}",
                    result=result,
                    status_code=exc.status_code,
                ) from exc

            record_import_chunk(entity=entity, status="success", duration_seconds=time.perf_counter() - started)
            counts = self._merge(result, chunk, response)
            record_row_actions(entity, counts)
            result.chunks_completed += 1
            result.processed += len(chunk)
            self._logger.debug(
                "Chunk %s/%s for %s applied (%s).",
                chunk_number,
                len(chunks),
                entity,
                result.progress,
            )
            if self._on_progress is not None:
                self._on_progress(result.progress)

        return result

    def _merge(
        self,
        result: ImportBatchResult,
        chunk: Sequence[NormalizedRecord],
        response: Mapping[str, Any],
    ) -> dict[str, int]:
        counts = {key: _coerce_count(response.get(key)) for key in _COUNT_KEYS}
        result.inserted += counts["inserted"]
        result.updated += counts["updated"]
        result.skipped += counts["skipped"]

        for item in response.get("warnings") or ():
            if isinstance(item, Mapping):
                result.warnings.append(
                    RowMessage(_resolve_index(chunk, item.get("index")), str(item.get("reason") or ""))
                )
        for item in response.get("errors") or ():
            if isinstance(item, Mapping):
                result.errors.append(
                    RowMessage(_resolve_index(chunk, item.get("index")), str(item.get("reason") or ""))
                )

        per_row = response.get("results")
        positional = False
        if not per_row:
            per_row = response.get("details")
            positional = True
        for position, item in enumerate(per_row or (), start=1):
            if not isinstance(item, Mapping):
                continue
            index = item.get("index") if item.get("index") is not None or not positional else position
            original_index = _resolve_index(chunk, index)
            if original_index is None:
                continue
            result.rows.append(
                RowOutcome(
                    original_index=original_index,
                    action=str(item.get("action") or item.get("status") or "unknown"),
                    match_strategy=item.get("match_strategy"),
                    warnings=_as_reasons(item.get("warnings")),
                    errors=_as_reasons(item.get("errors")),
                )
            )
        return counts
