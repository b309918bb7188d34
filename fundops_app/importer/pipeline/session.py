"""
Import session stage machine.

Upload -> Mapping & validation -> Summary -> Importing -> Report. Every
mapping change and every confirmed edit recomputes normalization and
deduplication wholesale. Going back discards state computed downstream of
the stage returned to; the uploaded rows themselves are always kept.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Callable, Mapping, Tuple

from fundops_app.importer.adapters.csv_rows import ParsedTable
from fundops_app.importer.contracts.base import EntityContract
from fundops_app.importer.contracts.rules import RecordStatus
from fundops_app.importer.mapping import FieldMapping, SynonymOverrides, suggest_mapping
from fundops_app.importer.metrics import record_import_run, record_validation_statuses

from .batch import (
    DEFAULT_CHUNK_SIZE,
    BatchImportOrchestrator,
    ImportAbortedError,
    ImportBatchResult,
    ImportEndpoint,
    ImportProgress,
)
from .corrections import CorrectionState, ManualCorrectionWorkflow, ManualEdit
from .dedupe import DedupOutcome, deduplicate
from .normalize import NormalizedRecord, ValidationSummary, normalize_rows, summarize_records

logger = logging.getLogger(__name__)


class ImportStage(str, Enum):
    UPLOAD = "upload"
    MAPPING = "mapping"
    SUMMARY = "summary"
    IMPORTING = "importing"
    REPORT = "report"


STAGE_ORDER: Tuple[ImportStage, ...] = tuple(ImportStage)

# Allowed moves, forward and back. IMPORTING can only finish into REPORT.
STAGE_TRANSITIONS: Mapping[ImportStage, Tuple[ImportStage, ...]] = MappingProxyType(
    {
        ImportStage.UPLOAD: (ImportStage.MAPPING,),
        ImportStage.MAPPING: (ImportStage.SUMMARY, ImportStage.UPLOAD),
        ImportStage.SUMMARY: (ImportStage.IMPORTING, ImportStage.MAPPING, ImportStage.UPLOAD),
        ImportStage.IMPORTING: (ImportStage.REPORT,),
        ImportStage.REPORT: (ImportStage.SUMMARY, ImportStage.MAPPING, ImportStage.UPLOAD),
    }
)

BLOCK_UNMAPPED_REQUIRED = "unmapped_required"
BLOCK_CRITICAL_ERRORS = "critical_errors"
BLOCK_NOTHING_TO_IMPORT = "nothing_to_import"
BLOCK_PENDING_CONFIRMATION = "pending_confirmation"

BLOCK_MESSAGES: Mapping[str, str] = MappingProxyType(
    {
        BLOCK_UNMAPPED_REQUIRED: "Map every required field before continuing.",
        BLOCK_CRITICAL_ERRORS: "Fix the rows with critical errors before continuing.",
        BLOCK_NOTHING_TO_IMPORT: "No rows can be imported with the current mapping.",
        BLOCK_PENDING_CONFIRMATION: "Confirm or cancel the pending edit before continuing.",
    }
)


class StageTransitionError(RuntimeError):
    """Raised when an operation is not allowed in the current stage."""


class StageBlockedError(StageTransitionError):
    """Raised when validation conditions prevent leaving the mapping stage."""

    def __init__(self, reasons: Tuple[str, ...]) -> None:
        self.reasons = tuple(reasons)
        message = " ".join(BLOCK_MESSAGES.get(reason, reason) for reason in self.reasons)
        super().__init__(message or "Stage advancement is blocked.")


class ConfirmationRequiredError(StageBlockedError):
    """Advancement is blocked by an edit that is still awaiting confirmation."""


class RecordNotFoundError(LookupError):
    """Raised when an edit targets a row index that is not in the upload."""


class ImportSession:
    """One user's pass through the import flow for a single entity."""

    def __init__(
        self,
        contract: EntityContract,
        *,
        session_id: str | None = None,
        synonyms: SynonymOverrides | None = None,
    ) -> None:
        self.id = session_id or uuid.uuid4().hex
        self.contract = contract
        self.synonyms = synonyms
        self.created_at = datetime.now(timezone.utc)
        self.stage = ImportStage.UPLOAD
        self.table: ParsedTable | None = None
        self.mapping: FieldMapping | None = None
        self.corrections = ManualCorrectionWorkflow(on_confirm=self._on_edit_confirmed)
        self.records: Tuple[NormalizedRecord, ...] = ()
        self.outcome: DedupOutcome | None = None
        self.validation: ValidationSummary | None = None
        self.result: ImportBatchResult | None = None
        self.error: str | None = None
        self.progress: ImportProgress | None = None

    # Upload -------------------------------------------------------------

    def load(self, table: ParsedTable) -> None:
        """Attach uploaded rows and move to the mapping stage."""

        self._require_stage(ImportStage.UPLOAD, "upload rows")
        self.table = table
        self.corrections.discard_all()
        self._enter_mapping()

    def advance(self) -> ImportStage:
        """Move forward from UPLOAD (with rows) or MAPPING (when unblocked)."""

        if self.stage is ImportStage.UPLOAD:
            if self.table is None:
                raise StageTransitionError("Upload a file before continuing.")
            self._enter_mapping()
            return self.stage
        if self.stage is not ImportStage.MAPPING:
            raise StageTransitionError(f"Cannot advance from the {self.stage.value} stage.")

        if self.corrections.state is CorrectionState.EDITING:
            self.corrections.cancel()
        reasons = self.blocking_reasons()
        if reasons:
            if BLOCK_PENDING_CONFIRMATION in reasons:
                raise ConfirmationRequiredError(reasons)
            raise StageBlockedError(reasons)

        self._current_mapping().freeze()
        if self.validation is not None:
            record_validation_statuses(self.contract.name, self.validation.status_counts)
        self.stage = ImportStage.SUMMARY
        logger.info(
            "Import session %s ready to import %s %s.",
            self.id,
            len(self.ready),
            self.contract.name,
            extra={"importer_session": self.id, "importer_entity": self.contract.name},
        )
        return self.stage

    # Mapping & validation ----------------------------------------------

    def assign_mapping(self, slot: str, header: str) -> None:
        self._require_stage(ImportStage.MAPPING, "change the mapping")
        self._current_mapping().assign(slot, header)
        self.recompute()

    def clear_mapping(self, slot: str) -> None:
        self._require_stage(ImportStage.MAPPING, "change the mapping")
        self._current_mapping().clear(slot)
        self.recompute()

    def record(self, original_index: int) -> NormalizedRecord:
        for record in self.records:
            if record.original_index == original_index:
                return record
        raise RecordNotFoundError(f"Row {original_index} is not part of this upload.")

    def begin_edit(self, original_index: int, field: str) -> None:
        self._require_stage(ImportStage.MAPPING, "edit rows")
        self.corrections.begin_edit(self.record(original_index), field)

    def commit_edit(self, value: str | None) -> bool:
        self._require_stage(ImportStage.MAPPING, "edit rows")
        current = None
        active = self.corrections.active_cell
        if active is not None:
            # The mapping may have changed since the cell was opened.
            index, field = active
            current = self.record(index).values.get(field) or ""
        return self.corrections.commit(value, current_value=current)

    def confirm_edit(self) -> ManualEdit:
        self._require_stage(ImportStage.MAPPING, "edit rows")
        return self.corrections.confirm()

    def cancel_edit(self) -> None:
        self.corrections.cancel()

    def blocking_reasons(self) -> Tuple[str, ...]:
        reasons: list[str] = []
        if self.mapping is None or self.mapping.missing_required():
            reasons.append(BLOCK_UNMAPPED_REQUIRED)
        if any(record.status is RecordStatus.ERROR_CRITICAL for record in self.records):
            reasons.append(BLOCK_CRITICAL_ERRORS)
        if self.outcome is None or not self.outcome.ready:
            reasons.append(BLOCK_NOTHING_TO_IMPORT)
        if self.corrections.has_pending:
            reasons.append(BLOCK_PENDING_CONFIRMATION)
        return tuple(reasons)

    def recompute(self) -> None:
        """Rebuild records and the dedupe partition from the current inputs."""

        if self.table is None or self.mapping is None:
            self.records = ()
            self.outcome = None
            self.validation = None
            return
        self.records = normalize_rows(
            self.table.rows,
            self.mapping,
            self.contract,
            self.corrections.confirmed_edits,
        )
        self.outcome = deduplicate(self.records, self.contract)
        self.validation = summarize_records(self.records)

    @property
    def ready(self) -> Tuple[NormalizedRecord, ...]:
        return tuple(self.outcome.ready) if self.outcome is not None else ()

    # Importing ----------------------------------------------------------

    def run_import(
        self,
        endpoint: ImportEndpoint,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        on_progress: Callable[[ImportProgress], None] | None = None,
        should_cancel: Callable[[], bool] | None = None,
    ) -> ImportBatchResult:
        """Submit the ready set. Always ends in REPORT, even on failure."""

        self._require_stage(ImportStage.SUMMARY, "start the import")
        self.stage = ImportStage.IMPORTING
        self.error = None
        self.result = None
        self.progress = None

        def _track(progress: ImportProgress) -> None:
            self.progress = progress
            if on_progress is not None:
                on_progress(progress)

        orchestrator = BatchImportOrchestrator(
            endpoint,
            self.contract,
            chunk_size=chunk_size,
            on_progress=_track,
            should_cancel=should_cancel,
        )
        try:
            result = orchestrator.run(self.ready)
        except ImportAbortedError as exc:
            self.result = exc.result
            self.error = str(exc)
            self.stage = ImportStage.REPORT
            record_import_run(self.contract.name, "failed")
            raise
        except Exception as exc:
            self.error = f"Import failed unexpectedly: {exc}"
            self.stage = ImportStage.REPORT
            record_import_run(self.contract.name, "failed")
            logger.exception(
                "Import session %s failed unexpectedly.",
                self.id,
                extra={"importer_session": self.id, "importer_entity": self.contract.name},
            )
            raise

        self.result = result
        self.stage = ImportStage.REPORT
        record_import_run(self.contract.name, "cancelled" if result.cancelled else "completed")
        logger.info(
            "Import session %s finished: inserted=%s updated=%s skipped=%s.",
            self.id,
            result.inserted,
            result.updated,
            result.skipped,
            extra={"importer_session": self.id, "importer_entity": self.contract.name},
        )
        return result

    # Navigation ---------------------------------------------------------

    def go_back(self, stage: ImportStage) -> ImportStage:
        """Return to an earlier stage, discarding downstream state."""

        if stage not in STAGE_TRANSITIONS[self.stage] or STAGE_ORDER.index(stage) >= STAGE_ORDER.index(self.stage):
            raise StageTransitionError(f"Cannot go back from {self.stage.value} to {stage.value}.")

        self.result = None
        self.error = None
        self.progress = None
        if stage is ImportStage.UPLOAD:
            self.mapping = None
            self.corrections.discard_all()
            self.recompute()
        elif stage is ImportStage.MAPPING:
            self._current_mapping().unfreeze()
        self.stage = stage
        return self.stage

    def stats(self) -> dict[str, object]:
        outcome = self.outcome
        return {
            "rows": len(self.table.rows) if self.table is not None else 0,
            "validation": self.validation.as_dict() if self.validation is not None else None,
            "ready": len(outcome.ready) if outcome is not None else 0,
            "skipped": len(outcome.skipped) if outcome is not None else 0,
            "duplicates": outcome.duplicates if outcome is not None else 0,
            "tie_break_rule": outcome.tie_break_rule if outcome is not None else None,
        }

    def as_dict(self, *, include_records: bool = True) -> dict[str, object]:
        payload: dict[str, object] = {
            "id": self.id,
            "entity": self.contract.name,
            "stage": self.stage.value,
            "created_at": self.created_at.isoformat(),
            "headers": list(self.table.headers) if self.table is not None else [],
            "mapping": self.mapping.as_dict() if self.mapping is not None else {},
            "missing_required": list(self.mapping.missing_required()) if self.mapping is not None else [],
            "blocking_reasons": list(self.blocking_reasons()) if self.stage is ImportStage.MAPPING else [],
            "edit": {
                "state": self.corrections.state.value,
                "active_cell": list(self.corrections.active_cell) if self.corrections.active_cell else None,
                "pending": self.corrections.pending_edit.as_dict() if self.corrections.pending_edit else None,
                "confirmed": [edit.as_dict() for edit in self.corrections.confirmed_list()],
            },
            "stats": self.stats(),
            "progress": self.progress.as_dict() if self.progress is not None else None,
            "result": self.result.as_dict() if self.result is not None else None,
            "error": self.error,
        }
        if include_records:
            payload["records"] = [record.as_dict() for record in self.records]
            payload["ready"] = [record.original_index for record in self.ready]
            payload["skipped"] = [entry.as_dict() for entry in self.outcome.skipped] if self.outcome else []
        return payload

    # Internals ----------------------------------------------------------

    def _enter_mapping(self) -> None:
        if self.table is None:
            raise StageTransitionError("Upload a file before mapping columns.")
        if self.mapping is None:
            self.mapping = suggest_mapping(self.table.headers, self.contract, synonyms=self.synonyms)
        self.stage = ImportStage.MAPPING
        self.recompute()

    def _on_edit_confirmed(self, edit: ManualEdit) -> None:
        self.recompute()

    def _require_stage(self, stage: ImportStage, action: str) -> None:
        if self.stage is not stage:
            raise StageTransitionError(f"Cannot {action} during the {self.stage.value} stage.")

    def _current_mapping(self) -> FieldMapping:
        if self.mapping is None:
            raise StageTransitionError("No column mapping exists; upload a file first.")
        return self.mapping
