"""Shared building blocks for entity import contracts.

A contract is a declarative table of canonical fields. Each field owns an
ordered synonym list used by the field mapper, a kind that selects the
normalization transform, and flags that drive validation. Contracts also
declare the priority-ordered match strategies used by the deduplicator.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Iterable, Mapping, Tuple

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .rules import ValidationRule


class FieldKind(str, Enum):
    """Selects the normalization transform applied to a canonical field."""

    TEXT = "text"
    EMAIL = "email"
    IDENTIFIER = "identifier"
    NOTES = "notes"


class SlotRole(str, Enum):
    """How a mapping slot contributes to its canonical field."""

    FIELD = "field"
    COMPONENT = "component"
    NOTE_PART = "note_part"


@dataclass(frozen=True)
class ComponentSpec:
    """One column of a composite field in split mode (e.g. first name)."""

    name: str
    description: str
    synonyms: Tuple[str, ...] = ()


@dataclass(frozen=True)
class NotePart:
    """A labelled source column folded into an aggregated notes field."""

    name: str
    label: str
    synonyms: Tuple[str, ...] = ()


@dataclass(frozen=True)
class FieldSpec:
    """Metadata describing a canonical import field."""

    name: str
    description: str
    kind: FieldKind = FieldKind.TEXT
    required: bool = False
    recommended: bool = False
    synonyms: Tuple[str, ...] = ()
    components: Tuple[ComponentSpec, ...] = ()
    parts: Tuple[NotePart, ...] = ()
    payload_key: str | None = None
    fallback: str | None = None
    editable: bool = False
    match_key: str | None = None

    @property
    def is_composite(self) -> bool:
        return bool(self.components)

    @property
    def wire_name(self) -> str:
        """Key used for this field in the submission payload."""

        return self.payload_key or self.name


@dataclass(frozen=True)
class MappingSlot:
    """A single assignable target in a field mapping.

    Plain fields expose one slot named after the field. Composite fields
    expose the combined slot (``group="single"``) plus one slot per component
    (``group="split"``). Notes fields expose one slot per note part.
    """

    name: str
    field: str
    role: SlotRole
    synonyms: Tuple[str, ...]
    label: str | None = None
    group: str | None = None


@dataclass(frozen=True)
class MatchStrategy:
    """A dedupe match tier: the fields whose normalized values form the key."""

    name: str
    fields: Tuple[str, ...]
    low_confidence: bool = False


@dataclass(frozen=True)
class EntityContract:
    """Canonical field table plus dedupe and validation policy for one entity."""

    name: str
    title: str
    fields: Tuple[FieldSpec, ...]
    match_strategies: Tuple[MatchStrategy, ...]
    name_field: str
    extra_rules: Tuple["ValidationRule", ...] = ()
    legal_suffixes: Tuple[str, ...] = ()

    def field(self, name: str) -> FieldSpec:
        for spec in self.fields:
            if spec.name == name:
                return spec
        raise KeyError(f"Unknown field '{name}' for entity '{self.name}'.")

    def field_names(self) -> Tuple[str, ...]:
        return tuple(spec.name for spec in self.fields)

    def required_fields(self) -> Tuple[FieldSpec, ...]:
        return tuple(spec for spec in self.fields if spec.required)

    def editable_fields(self) -> frozenset[str]:
        return frozenset(spec.name for spec in self.fields if spec.editable)

    def slots(self) -> Tuple[MappingSlot, ...]:
        """Flatten every assignable mapping slot in declaration order."""

        slots: list[MappingSlot] = []
        for spec in self.fields:
            if spec.parts:
                for part in spec.parts:
                    slots.append(
                        MappingSlot(
                            name=part.name,
                            field=spec.name,
                            role=SlotRole.NOTE_PART,
                            synonyms=part.synonyms,
                            label=part.label,
                        )
                    )
                continue
            slots.append(
                MappingSlot(
                    name=spec.name,
                    field=spec.name,
                    role=SlotRole.FIELD,
                    synonyms=spec.synonyms,
                    group="single" if spec.is_composite else None,
                )
            )
            for component in spec.components:
                slots.append(
                    MappingSlot(
                        name=component.name,
                        field=spec.name,
                        role=SlotRole.COMPONENT,
                        synonyms=component.synonyms,
                        group="split",
                    )
                )
        return tuple(slots)

    def slot(self, name: str) -> MappingSlot:
        for slot in self.slots():
            if slot.name == name:
                return slot
        raise KeyError(f"Unknown mapping slot '{name}' for entity '{self.name}'.")

    def slot_names(self) -> Tuple[str, ...]:
        return tuple(slot.name for slot in self.slots())

    def validation_rules(self) -> Tuple["ValidationRule", ...]:
        """Rules derived from field flags followed by entity-specific rules."""

        from .rules import FormatRule, RecommendedFieldRule, RequiredFieldRule

        rules: list[ValidationRule] = []
        for spec in self.fields:
            if spec.required:
                rules.append(
                    RequiredFieldRule(
                        code="missing_name" if spec.name == self.name_field else f"missing_{spec.name}",
                        field=spec.name,
                        label=spec.description,
                    )
                )
        for spec in self.fields:
            if spec.kind is FieldKind.EMAIL:
                rules.append(FormatRule(code=f"invalid_{spec.name}", field=spec.name, label=spec.description))
        for spec in self.fields:
            if spec.recommended:
                rules.append(RecommendedFieldRule(code=f"missing_{spec.name}", field=spec.name, label=spec.description))
        rules.extend(self.extra_rules)
        return tuple(rules)


_COMBINING_MARKS = re.compile(r"[\u0300-\u036f]")
_SEPARATORS = re.compile(r"[\s\-_.]+")


def fold_diacritics(value: str) -> str:
    """Strip accents so ``Attività`` compares equal to ``Attivita``."""

    return _COMBINING_MARKS.sub("", unicodedata.normalize("NFKD", value))


def normalize_header(header: str | None) -> str:
    """Normalize a header or synonym for comparison.

    Case, accents, BOM and separator runs (space, dash, underscore, dot) are
    ignored, so ``"E-mail"``, ``"e_mail"`` and ``" E MAIL "`` all collapse to
    ``"e_mail"``.
    """

    token = (header or "").lstrip("\ufeff").strip().lower()
    token = fold_diacritics(token)
    token = _SEPARATORS.sub("_", token)
    return token.strip("_")


def iter_synonym_tokens(synonyms: Iterable[str]) -> Tuple[str, ...]:
    """Normalize synonyms while keeping order and removing duplicates."""

    seen: set[str] = set()
    tokens: list[str] = []
    for synonym in synonyms:
        token = normalize_header(synonym)
        if not token or token in seen:
            continue
        seen.add(token)
        tokens.append(token)
    return tuple(tokens)


def contract_summary(contract: EntityContract) -> Mapping[str, object]:
    """Serializable description of a contract for API and CLI listings."""

    return {
        "entity": contract.name,
        "title": contract.title,
        "fields": [
            {
                "name": spec.name,
                "description": spec.description,
                "kind": spec.kind.value,
                "required": spec.required,
                "recommended": spec.recommended,
                "editable": spec.editable,
            }
            for spec in contract.fields
        ],
        "slots": [
            {"name": slot.name, "field": slot.field, "role": slot.role.value, "group": slot.group}
            for slot in contract.slots()
        ],
        "match_strategies": [strategy.name for strategy in contract.match_strategies],
    }
