"""Importer pipeline helpers."""

from __future__ import annotations

from .batch import (
    DEFAULT_CHUNK_SIZE,
    BatchImportOrchestrator,
    ImportAbortedError,
    ImportBatchResult,
    ImportEndpoint,
    ImportProgress,
    RowMessage,
    RowOutcome,
    TransportError,
    build_payload,
    chunk_records,
)
from .corrections import (
    CorrectionOutcome,
    CorrectionState,
    CorrectionStateError,
    ManualCorrectionWorkflow,
    ManualEdit,
)
from .dedupe import TIE_BREAK_RULE, DedupOutcome, SkippedRecord, deduplicate
from .deterministic import match_keys, normalize_name_key
from .normalize import (
    NormalizedRecord,
    ValidationSummary,
    clean_email,
    clean_text,
    normalize_row,
    normalize_rows,
    normalize_vat,
    summarize_records,
)
from .session import (
    ConfirmationRequiredError,
    ImportSession,
    ImportStage,
    RecordNotFoundError,
    StageBlockedError,
    StageTransitionError,
)

__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "TIE_BREAK_RULE",
    "BatchImportOrchestrator",
    "ConfirmationRequiredError",
    "CorrectionOutcome",
    "CorrectionState",
    "CorrectionStateError",
    "DedupOutcome",
    "ImportAbortedError",
    "ImportBatchResult",
    "ImportEndpoint",
    "ImportProgress",
    "ImportSession",
    "ImportStage",
    "ManualCorrectionWorkflow",
    "ManualEdit",
    "NormalizedRecord",
    "RecordNotFoundError",
    "RowMessage",
    "RowOutcome",
    "SkippedRecord",
    "StageBlockedError",
    "StageTransitionError",
    "TransportError",
    "ValidationSummary",
    "build_payload",
    "chunk_records",
    "clean_email",
    "clean_text",
    "deduplicate",
    "match_keys",
    "normalize_name_key",
    "normalize_row",
    "normalize_rows",
    "normalize_vat",
    "summarize_records",
]
