"""
Row validation rules for import contracts.

Rules operate on a record's normalized canonical values and emit structured
issues. Each issue carries a stable code, the status tier it implies, and a
plain-language message shown next to the row. The worst tier across all
issues becomes the record status.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Mapping, Tuple


class RecordStatus(str, Enum):
    """Terminal classification of a normalized row, ordered by severity."""

    OK = "ok"
    WARNING = "warning"
    ERROR = "error"
    ERROR_CRITICAL = "error_critical"
    SKIP = "skip"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    @property
    def blocks_import(self) -> bool:
        """Critical and skipped rows never reach deduplication or import."""

        return self in (RecordStatus.ERROR_CRITICAL, RecordStatus.SKIP)


_STATUS_RANK = {
    RecordStatus.OK: 0,
    RecordStatus.WARNING: 1,
    RecordStatus.ERROR: 2,
    RecordStatus.ERROR_CRITICAL: 3,
    RecordStatus.SKIP: 4,
}


def worst_status(statuses: Iterable[RecordStatus], default: RecordStatus = RecordStatus.OK) -> RecordStatus:
    """Return the most severe status, or ``default`` when none are given."""

    result = default
    for status in statuses:
        if status.rank > result.rank:
            result = status
    return result


@dataclass(frozen=True)
class ValidationIssue:
    """
    Outcome from evaluating a single rule against a normalized row.

    Attributes:
        code: Stable identifier for the rule (e.g., ``missing_name``).
        severity: Status tier the issue implies for the row.
        message: Human-friendly explanation shown in the review table.
        field: Canonical field the issue concerns, when there is one.
    """

    code: str
    severity: RecordStatus
    message: str
    field: str | None = None

    def as_dict(self) -> dict[str, object]:
        return {
            "code": self.code,
            "severity": self.severity.value,
            "message": self.message,
            "field": self.field,
        }


@dataclass(frozen=True)
class ValidationRule:
    """Declarative rule definition evaluated by the row normalizer."""

    code: str
    description: str
    severity: RecordStatus

    def evaluate(self, values: Mapping[str, str | None]) -> Iterable[ValidationIssue]:
        """Return issues for the provided canonical values."""
        raise NotImplementedError


EMAIL_REGEX = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _present(value: str | None) -> bool:
    return bool(value and value.strip())


@dataclass(frozen=True)
class RequiredFieldRule(ValidationRule):
    """A required canonical field must be populated."""

    code: str = "missing_required"
    description: str = "Required field must be present."
    severity: RecordStatus = RecordStatus.ERROR_CRITICAL
    field: str = ""
    label: str = ""

    def evaluate(self, values: Mapping[str, str | None]) -> Iterable[ValidationIssue]:
        if _present(values.get(self.field)):
            return []
        return [
            ValidationIssue(
                code=self.code,
                severity=self.severity,
                message=f"{self.label or self.field} is required; the row cannot be imported.",
                field=self.field,
            )
        ]


@dataclass(frozen=True)
class FormatRule(ValidationRule):
    """An optional field, when present, must match an address pattern."""

    code: str = "invalid_format"
    description: str = "Optional field must be well-formed when present."
    severity: RecordStatus = RecordStatus.ERROR
    field: str = ""
    label: str = ""

    def evaluate(self, values: Mapping[str, str | None]) -> Iterable[ValidationIssue]:
        value = values.get(self.field)
        if not _present(value) or EMAIL_REGEX.match(value or ""):
            return []
        return [
            ValidationIssue(
                code=self.code,
                severity=self.severity,
                message=f"{self.label or self.field} '{value}' is not valid; fix it or the value is imported as-is.",
                field=self.field,
            )
        ]


@dataclass(frozen=True)
class RecommendedFieldRule(ValidationRule):
    """A recommended field is missing; import works but matching is weaker."""

    code: str = "missing_recommended"
    description: str = "Recommended field is missing."
    severity: RecordStatus = RecordStatus.WARNING
    field: str = ""
    label: str = ""

    def evaluate(self, values: Mapping[str, str | None]) -> Iterable[ValidationIssue]:
        if _present(values.get(self.field)):
            return []
        return [
            ValidationIssue(
                code=self.code,
                severity=self.severity,
                message=f"{self.label or self.field} is missing; duplicate detection will be weaker.",
                field=self.field,
            )
        ]


@dataclass(frozen=True)
class MinLengthRule(ValidationRule):
    """Flag suspiciously short values such as one- or two-letter names."""

    code: str = "too_short"
    description: str = "Value is shorter than expected."
    severity: RecordStatus = RecordStatus.WARNING
    field: str = ""
    min_length: int = 3

    def evaluate(self, values: Mapping[str, str | None]) -> Iterable[ValidationIssue]:
        value = values.get(self.field)
        if not _present(value) or len(value or "") >= self.min_length:
            return []
        return [
            ValidationIssue(
                code=self.code,
                severity=self.severity,
                message=f"'{value}' is very short (less than {self.min_length} characters).",
                field=self.field,
            )
        ]


@dataclass(frozen=True)
class KeywordGatedFieldRule(ValidationRule):
    """Warn when ``field`` is filled but none of ``gate_fields`` contain a keyword.

    Used for the investor company name, which only applies to company
    investors and is otherwise ignored by the backing store.
    """

    code: str = "field_ignored"
    description: str = "Field only applies when a gating keyword is present."
    severity: RecordStatus = RecordStatus.WARNING
    field: str = ""
    gate_fields: Tuple[str, ...] = ()
    keywords: Tuple[str, ...] = ()
    message: str = ""

    def is_open(self, values: Mapping[str, str | None]) -> bool:
        for gate in self.gate_fields:
            haystack = (values.get(gate) or "").lower()
            if any(keyword in haystack for keyword in self.keywords):
                return True
        return False

    def evaluate(self, values: Mapping[str, str | None]) -> Iterable[ValidationIssue]:
        if not _present(values.get(self.field)) or self.is_open(values):
            return []
        return [
            ValidationIssue(
                code=self.code,
                severity=self.severity,
                message=self.message or f"{self.field} will be ignored.",
                field=self.field,
            )
        ]


@dataclass(frozen=True)
class PresenceNoticeRule(ValidationRule):
    """Attach a notice when a field is populated (e.g. resolved server-side)."""

    code: str = "field_notice"
    description: str = "Field is handled by the backing store."
    severity: RecordStatus = RecordStatus.WARNING
    field: str = ""
    message: str = ""

    def evaluate(self, values: Mapping[str, str | None]) -> Iterable[ValidationIssue]:
        value = values.get(self.field)
        if not _present(value):
            return []
        return [
            ValidationIssue(
                code=self.code,
                severity=self.severity,
                message=(self.message or "{value}").format(value=value),
                field=self.field,
            )
        ]


def evaluate_rules(
    values: Mapping[str, str | None],
    rules: Iterable[ValidationRule],
) -> Tuple[ValidationIssue, ...]:
    """Evaluate all rules in order and collect the resulting issues."""

    issues: list[ValidationIssue] = []
    for rule in rules:
        issues.extend(rule.evaluate(values))
    return tuple(issues)
