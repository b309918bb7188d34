"""
Inline correction workflow with explicit confirmation.

A single state machine guards the whole review table: at most one cell can be
in ``EDITING`` or ``PENDING_CONFIRMATION``. Only confirmed edits reach the
ledger consulted by the row normalizer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Callable, Dict, Mapping, Tuple

from .normalize import NormalizedRecord

logger = logging.getLogger(__name__)


class CorrectionState(str, Enum):
    VIEWING = "viewing"
    EDITING = "editing"
    PENDING_CONFIRMATION = "pending_confirmation"


class CorrectionOutcome(str, Enum):
    """How the last edit attempt ended."""

    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    UNCHANGED = "unchanged"


class CorrectionStateError(RuntimeError):
    """Raised when an edit gesture is not valid in the current state."""


@dataclass(frozen=True)
class ManualEdit:
    original_index: int
    field: str
    value: str

    @property
    def key(self) -> Tuple[int, str]:
        return (self.original_index, self.field)

    def as_dict(self) -> dict[str, object]:
        return {"original_index": self.original_index, "field": self.field, "value": self.value}


# (state, gesture) -> state. "commit" may also land in VIEWING when the value
# is unchanged or empty; that branch is resolved in ``commit``.
TRANSITIONS: Mapping[Tuple[CorrectionState, str], CorrectionState] = MappingProxyType(
    {
        (CorrectionState.VIEWING, "begin"): CorrectionState.EDITING,
        (CorrectionState.EDITING, "commit"): CorrectionState.PENDING_CONFIRMATION,
        (CorrectionState.EDITING, "cancel"): CorrectionState.VIEWING,
        (CorrectionState.PENDING_CONFIRMATION, "confirm"): CorrectionState.VIEWING,
        (CorrectionState.PENDING_CONFIRMATION, "cancel"): CorrectionState.VIEWING,
    }
)

ConfirmCallback = Callable[[ManualEdit], None]


class ManualCorrectionWorkflow:
    """Two-phase (pending, confirmed) storage of manual cell corrections."""

    def __init__(self, on_confirm: ConfirmCallback | None = None) -> None:
        self._on_confirm = on_confirm
        self._state = CorrectionState.VIEWING
        self._active: Tuple[int, str] | None = None
        self._shown_value: str = ""
        self._pending: ManualEdit | None = None
        self._confirmed: Dict[Tuple[int, str], str] = {}
        self.last_outcome: CorrectionOutcome | None = None

    @property
    def state(self) -> CorrectionState:
        return self._state

    @property
    def active_cell(self) -> Tuple[int, str] | None:
        return self._active

    @property
    def pending_edit(self) -> ManualEdit | None:
        return self._pending

    @property
    def pending_value(self) -> str | None:
        return self._pending.value if self._pending is not None else None

    @property
    def has_pending(self) -> bool:
        return self._state is CorrectionState.PENDING_CONFIRMATION

    @property
    def confirmed_edits(self) -> Mapping[Tuple[int, str], str]:
        return MappingProxyType(self._confirmed)

    def confirmed_list(self) -> Tuple[ManualEdit, ...]:
        return tuple(
            ManualEdit(original_index=index, field=field, value=value)
            for (index, field), value in sorted(self._confirmed.items())
        )

    def _transition(self, gesture: str) -> CorrectionState:
        target = TRANSITIONS.get((self._state, gesture))
        if target is None:
            if gesture == "begin" and self._active is not None:
                row, field = self._active
                raise CorrectionStateError(
                    f"Finish editing row {row} field '{field}' before editing another cell."
                )
            raise CorrectionStateError(f"Cannot {gesture} while {self._state.value}.")
        return target

    def begin_edit(self, record: NormalizedRecord, field: str) -> None:
        """Activate a cell for editing."""

        target = self._transition("begin")
        if field not in record.editable:
            raise CorrectionStateError(f"Field '{field}' cannot be edited.")
        self._state = target
        self._active = (record.original_index, field)
        self._shown_value = record.values.get(field) or ""

    def commit(self, value: str | None, *, current_value: str | None = None) -> bool:
        """
        Submit a draft. Returns ``True`` when confirmation is now required.

        ``current_value`` is the cell's value at commit time; when omitted the
        value shown at ``begin_edit`` is used.
        """

        target = self._transition("commit")
        if self._active is None:
            raise CorrectionStateError("No cell is being edited.")
        shown = self._shown_value if current_value is None else current_value
        draft = (value or "").strip()
        if not draft or draft == shown.strip():
            self._reset(CorrectionOutcome.UNCHANGED)
            return False
        index, field = self._active
        self._pending = ManualEdit(original_index=index, field=field, value=draft)
        self._state = target
        return True

    def cancel(self) -> None:
        """Discard the draft or pending value. Also used for escape/abort."""

        self._transition("cancel")
        self._reset(CorrectionOutcome.CANCELLED)

    def confirm(self) -> ManualEdit:
        """Write the pending value to the ledger and trigger recomputation."""

        self._transition("confirm")
        edit = self._pending
        if edit is None:
            raise CorrectionStateError("No edit is awaiting confirmation.")
        self._confirmed[edit.key] = edit.value
        self._reset(CorrectionOutcome.CONFIRMED)
        logger.info(
            "Confirmed manual edit for row %s field %s.",
            edit.original_index,
            edit.field,
            extra={"importer_row": edit.original_index, "importer_field": edit.field},
        )
        if self._on_confirm is not None:
            self._on_confirm(edit)
        return edit

    def discard_all(self) -> None:
        """Drop the draft and the whole ledger (used when the upload is replaced)."""

        self._confirmed.clear()
        self._reset(None)

    def _reset(self, outcome: CorrectionOutcome | None) -> None:
        self._state = CorrectionState.VIEWING
        self._active = None
        self._shown_value = ""
        self._pending = None
        self.last_outcome = outcome
