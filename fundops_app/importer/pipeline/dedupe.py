"""
In-file duplicate resolution with a "richest record wins" policy.

The registry maps each match key to a slot position in ``ready`` rather than
to a record copy. Replacing the representative of a slot therefore updates
what every key already pointing at that slot resolves to.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Tuple

from fundops_app.importer.contracts.base import EntityContract, MatchStrategy
from fundops_app.importer.contracts.rules import RecordStatus, ValidationIssue, worst_status

from .deterministic import match_keys
from .normalize import NormalizedRecord

logger = logging.getLogger(__name__)

TIE_BREAK_RULE = "incumbent_wins_ties"
DUPLICATE_REASON = "duplicate_in_file (match: {strategy})"

_DOWNGRADE_ISSUE = ValidationIssue(
    code="imported_with_errors",
    severity=RecordStatus.WARNING,
    message="Row has invalid optional values; it will be imported with a warning.",
)
_LOW_CONFIDENCE_ISSUE = ValidationIssue(
    code="low_confidence_match",
    severity=RecordStatus.WARNING,
    message="Low-confidence match (name only) with another row in this file.",
)


@dataclass(frozen=True)
class SkippedRecord:
    """A record excluded from import together with the reasons why."""

    record: NormalizedRecord
    reasons: Tuple[str, ...]
    match_strategy: str | None = None

    @property
    def original_index(self) -> int:
        return self.record.original_index

    def as_dict(self) -> dict[str, object]:
        return {
            "original_index": self.record.original_index,
            "reasons": list(self.reasons),
            "match_strategy": self.match_strategy,
            "status": self.record.status.value,
            "values": dict(self.record.values),
        }


@dataclass
class DedupOutcome:
    """Partition of normalized records into importable and excluded sets."""

    ready: List[NormalizedRecord] = field(default_factory=list)
    skipped: List[SkippedRecord] = field(default_factory=list)
    tie_break_rule: str = TIE_BREAK_RULE

    @property
    def duplicates(self) -> int:
        return sum(1 for entry in self.skipped if entry.match_strategy is not None)

    @property
    def excluded(self) -> int:
        return sum(1 for entry in self.skipped if entry.match_strategy is None)


def downgrade_record(record: NormalizedRecord) -> NormalizedRecord:
    """Turn an ``error`` row into an importable ``warning`` row, flagging it."""

    if record.status is not RecordStatus.ERROR:
        return record
    return replace(
        record,
        status=RecordStatus.WARNING,
        issues=record.issues + (_DOWNGRADE_ISSUE,),
        downgraded=True,
    )


def flag_low_confidence(record: NormalizedRecord) -> NormalizedRecord:
    """Attach the name-only match notice and force at least ``warning``."""

    if _LOW_CONFIDENCE_ISSUE.code in record.issue_codes:
        return record
    return replace(
        record,
        status=worst_status((record.status, RecordStatus.WARNING)),
        issues=record.issues + (_LOW_CONFIDENCE_ISSUE,),
    )


def _blocking_reasons(record: NormalizedRecord) -> Tuple[str, ...]:
    reasons = tuple(issue.code for issue in record.issues if issue.severity is record.status)
    return reasons or (record.status.value,)


def deduplicate(records: Iterable[NormalizedRecord], contract: EntityContract) -> DedupOutcome:
    """
    Split records into ``ready`` and ``skipped`` in one left-to-right pass.

    Match tiers are tried in the contract's priority order; the first key
    already present in the registry is the hit. On a hit the record with the
    strictly higher completeness keeps the slot; equal scores keep the
    incumbent (``TIE_BREAK_RULE``). On a miss the record is appended and every
    key it produces is registered.
    """

    outcome = DedupOutcome()
    registry: Dict[Tuple[str, ...], int] = {}

    for record in records:
        if record.status.blocks_import:
            outcome.skipped.append(SkippedRecord(record=record, reasons=_blocking_reasons(record)))
            continue

        candidate = downgrade_record(record)
        keys = match_keys(contract, candidate.values)

        hit: tuple[MatchStrategy, int] | None = None
        for strategy, key in keys:
            slot = registry.get(key)
            if slot is not None:
                hit = (strategy, slot)
                break

        if hit is None:
            slot = len(outcome.ready)
            outcome.ready.append(candidate)
            for _, key in keys:
                registry.setdefault(key, slot)
            continue

        strategy, slot = hit
        incumbent = outcome.ready[slot]
        reason = DUPLICATE_REASON.format(strategy=strategy.name)
        if strategy.low_confidence:
            candidate = flag_low_confidence(candidate)

        if candidate.completeness() > incumbent.completeness():
            outcome.ready[slot] = candidate
            outcome.skipped.append(SkippedRecord(record=incumbent, reasons=(reason,), match_strategy=strategy.name))
            for _, key in keys:
                registry.setdefault(key, slot)
        else:
            outcome.ready[slot] = incumbent
            outcome.skipped.append(SkippedRecord(record=candidate, reasons=(reason,), match_strategy=strategy.name))

    logger.debug(
        "Deduplicated %s records: %s ready, %s skipped.",
        len(outcome.ready) + len(outcome.skipped),
        len(outcome.ready),
        len(outcome.skipped),
        extra={"importer_entity": contract.name, "importer_tie_break": TIE_BREAK_RULE},
    )
    return outcome
