"""
Row normalization and validation.

``normalize_row`` is pure: given a source row, the current field mapping and
the confirmed-edit ledger it always produces the same ``NormalizedRecord``.
Callers recompute every record wholesale whenever the mapping or the ledger
changes instead of patching previous output.
"""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping, MutableMapping, Sequence, Tuple

from fundops_app.importer.adapters.csv_rows import SourceRow
from fundops_app.importer.contracts.base import EntityContract, FieldKind, FieldSpec
from fundops_app.importer.contracts.rules import RecordStatus, ValidationIssue, evaluate_rules, worst_status
from fundops_app.importer.mapping import FieldMapping

EditKey = Tuple[int, str]

_VAT_STRIP = re.compile(r"[\s\W_]+")
_VAT_FORMAT = re.compile(r"^(?:[A-Z]{2})?\d{11}$")


@dataclass(frozen=True)
class NormalizedRecord:
    """Canonical view of one source row plus its validation outcome."""

    original_index: int
    values: Mapping[str, str | None]
    status: RecordStatus
    issues: Tuple[ValidationIssue, ...] = ()
    editable: frozenset[str] = frozenset()
    edited_fields: frozenset[str] = frozenset()
    downgraded: bool = False

    @property
    def messages(self) -> Tuple[str, ...]:
        return tuple(issue.message for issue in self.issues)

    @property
    def issue_codes(self) -> Tuple[str, ...]:
        return tuple(issue.code for issue in self.issues)

    def completeness(self) -> int:
        """Number of populated canonical fields."""

        return sum(1 for value in self.values.values() if value)

    def as_dict(self) -> dict[str, object]:
        return {
            "original_index": self.original_index,
            "status": self.status.value,
            "values": dict(self.values),
            "messages": list(self.messages),
            "issues": [issue.as_dict() for issue in self.issues],
            "editable": sorted(self.editable),
            "edited_fields": sorted(self.edited_fields),
            "downgraded": self.downgraded,
        }


@dataclass
class ValidationSummary:
    """Accumulated statistics from normalizing a batch of rows."""

    rows_evaluated: int = 0
    status_counts: MutableMapping[str, int] = field(default_factory=Counter)
    issue_counts: MutableMapping[str, int] = field(default_factory=Counter)

    @property
    def rows_blocked(self) -> int:
        return self.status_counts.get(RecordStatus.ERROR_CRITICAL.value, 0)

    def as_dict(self) -> dict[str, object]:
        return {
            "rows_evaluated": self.rows_evaluated,
            "status_counts": {status.value: self.status_counts.get(status.value, 0) for status in RecordStatus},
            "issue_counts": dict(sorted(self.issue_counts.items())),
        }


def clean_text(value: object | None) -> str | None:
    """Trim and collapse internal whitespace runs to a single space."""

    if value is None:
        return None
    token = " ".join(str(value).split())
    return token or None


def clean_email(value: object | None) -> str | None:
    token = clean_text(value)
    return token.lower() if token else None


def normalize_vat(value: object | None) -> tuple[str | None, bool]:
    """Return ``(normalized, rejected)`` for a VAT number.

    Whitespace and punctuation are stripped and the country prefix is
    upper-cased. Anything other than an optional two-letter prefix followed by
    exactly 11 digits is rejected and cleared.
    """

    if value is None:
        return None, False
    token = _VAT_STRIP.sub("", str(value)).upper()
    if not token:
        return None, False
    if _VAT_FORMAT.match(token):
        return token, False
    return None, True


def _clean_notes(value: object | None) -> str | None:
    if value is None:
        return None
    token = str(value).strip()
    return token or None


def _derive_source_value(row: SourceRow, mapping: FieldMapping, spec: FieldSpec) -> str | None:
    if spec.parts:
        blocks: list[str] = []
        for part in spec.parts:
            text = _clean_notes(row.get(mapping.get(part.name)))
            if text:
                blocks.append(f"{part.label}: {text}")
        return "\n\n".join(blocks) or None
    if spec.is_composite and mapping.get(spec.name) is None:
        pieces = [clean_text(row.get(mapping.get(component.name))) for component in spec.components]
        joined = " ".join(piece for piece in pieces if piece)
        return joined or None
    raw = row.get(mapping.get(spec.name))
    return raw if raw.strip() else None


def _transform(spec: FieldSpec, raw: str | None) -> tuple[str | None, ValidationIssue | None]:
    if spec.kind is FieldKind.EMAIL:
        return clean_email(raw), None
    if spec.kind is FieldKind.IDENTIFIER:
        value, rejected = normalize_vat(raw)
        if rejected:
            return None, ValidationIssue(
                code=f"invalid_{spec.name}",
                severity=RecordStatus.WARNING,
                message=f"{spec.description} '{clean_text(raw)}' is not valid (expected 11 digits) and was cleared.",
                field=spec.name,
            )
        return value, None
    if spec.kind is FieldKind.NOTES:
        return _clean_notes(raw), None
    return clean_text(raw), None


def normalize_row(
    row: SourceRow,
    mapping: FieldMapping,
    contract: EntityContract,
    confirmed_edits: Mapping[EditKey, str] | None = None,
) -> NormalizedRecord:
    """Apply field transforms, confirmed edits, fallbacks and validation rules."""

    edits = confirmed_edits or {}
    values: dict[str, str | None] = {}
    issues: list[ValidationIssue] = []
    edited: set[str] = set()
    has_content = False

    for spec in contract.fields:
        raw = _derive_source_value(row, mapping, spec)
        edit_key = (row.original_index, spec.name)
        if edit_key in edits:
            raw = edits[edit_key]
            edited.add(spec.name)
        if raw is not None and str(raw).strip():
            has_content = True
        value, issue = _transform(spec, raw)
        values[spec.name] = value
        if issue is not None:
            issues.append(issue)

    editable = contract.editable_fields()
    if not has_content:
        return NormalizedRecord(
            original_index=row.original_index,
            values=MappingProxyType(values),
            status=RecordStatus.SKIP,
            issues=(
                ValidationIssue(
                    code="empty_row",
                    severity=RecordStatus.SKIP,
                    message="Row has no values in any mapped field and will be skipped.",
                ),
            ),
            editable=editable,
            edited_fields=frozenset(edited),
        )

    for spec in contract.fields:
        if spec.fallback and not values.get(spec.name):
            values[spec.name] = values.get(spec.fallback)

    issues.extend(evaluate_rules(values, contract.validation_rules()))
    status = worst_status(issue.severity for issue in issues)
    return NormalizedRecord(
        original_index=row.original_index,
        values=MappingProxyType(values),
        status=status,
        issues=tuple(issues),
        editable=editable,
        edited_fields=frozenset(edited),
    )


def normalize_rows(
    rows: Iterable[SourceRow],
    mapping: FieldMapping,
    contract: EntityContract,
    confirmed_edits: Mapping[EditKey, str] | None = None,
) -> Tuple[NormalizedRecord, ...]:
    """Normalize every row in source order."""

    return tuple(normalize_row(row, mapping, contract, confirmed_edits) for row in rows)


def summarize_records(records: Sequence[NormalizedRecord]) -> ValidationSummary:
    """Tally statuses and issue codes across normalized records."""

    summary = ValidationSummary()
    for record in records:
        summary.rows_evaluated += 1
        summary.status_counts[record.status.value] += 1
        for issue in record.issues:
            summary.issue_counts[issue.code] += 1
    return summary
