"""Header-to-canonical field mapping with heuristic suggestions and overrides."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Mapping, Sequence, Tuple

import yaml

from fundops_app.importer.contracts import get_contract_registry
from fundops_app.importer.contracts.base import (
    EntityContract,
    MappingSlot,
    iter_synonym_tokens,
    normalize_header,
)


class MappingError(ValueError):
    """Raised when an explicit mapping selection is not valid."""


class MappingFrozenError(MappingError):
    """Raised when a frozen mapping is modified."""


class MappingLoadError(RuntimeError):
    """Raised when a synonym override file cannot be loaded or validated."""


@dataclass(frozen=True)
class SynonymOverrides:
    """Extra synonyms per entity and slot, tried before the built-in lists."""

    entries: Mapping[str, Mapping[str, Tuple[str, ...]]]
    checksum: str
    path: Path | None = None

    def for_entity(self, entity: str) -> Mapping[str, Tuple[str, ...]]:
        return self.entries.get(entity, {})


def load_synonym_overrides(path: str | Path) -> SynonymOverrides:
    """
    Load and validate a YAML synonym override file.

    Expected layout::

        investors:
          full_name: ["nominativo completo"]
        companies:
          vat_number: ["cod. iva"]
    """

    path = Path(path)
    if not path.exists():
        raise MappingLoadError(f"Synonym file not found at {path}")

    text = path.read_text(encoding="utf-8")
    try:
        raw = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise MappingLoadError(f"Failed to parse synonym YAML at {path}: {exc}") from exc

    if not isinstance(raw, Mapping):
        raise MappingLoadError(f"Synonym file {path} must contain a mapping of entities.")

    registry = get_contract_registry()
    entries: Dict[str, Dict[str, Tuple[str, ...]]] = {}
    for entity, slots in raw.items():
        contract = registry.get(str(entity))
        if contract is None:
            raise MappingLoadError(f"Unknown entity '{entity}' in synonym file {path}.")
        if not isinstance(slots, Mapping):
            raise MappingLoadError(f"Synonyms for '{entity}' must be a mapping of slot names to lists.")
        known_slots = set(contract.slot_names())
        entity_entries: Dict[str, Tuple[str, ...]] = {}
        for slot, synonyms in slots.items():
            if slot not in known_slots:
                raise MappingLoadError(f"Unknown slot '{slot}' for entity '{entity}' in {path}.")
            if isinstance(synonyms, str):
                synonyms = [synonyms]
            if not isinstance(synonyms, Sequence):
                raise MappingLoadError(f"Synonyms for '{entity}.{slot}' must be a list of strings.")
            entity_entries[str(slot)] = tuple(str(item) for item in synonyms if str(item).strip())
        entries[contract.name] = entity_entries

    checksum = hashlib.sha256(text.encode("utf-8")).hexdigest()
    return SynonymOverrides(entries=entries, checksum=checksum, path=path)


class FieldMapping:
    """Mutable slot -> source header assignment for one upload.

    Composite fields have two mutually exclusive modes: the combined column
    (``group="single"``) or the split component columns (``group="split"``).
    Assigning a slot from one mode clears every slot of the other mode for the
    same field. Slots chosen by the user are tracked in ``explicit_slots``.
    """

    def __init__(
        self,
        contract: EntityContract,
        headers: Sequence[str],
        assignments: Mapping[str, str] | None = None,
    ) -> None:
        self.contract = contract
        self.headers: Tuple[str, ...] = tuple(headers)
        self._slots: Dict[str, MappingSlot] = {slot.name: slot for slot in contract.slots()}
        self._assignments: Dict[str, str] = {}
        self._explicit: set[str] = set()
        self._frozen = False
        for slot, header in (assignments or {}).items():
            self._set(slot, header)

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"FieldMapping(entity={self.contract.name!r}, assignments={self._assignments!r})"

    def __contains__(self, slot: object) -> bool:
        return slot in self._assignments

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FieldMapping):
            return NotImplemented
        return (
            self.contract.name == other.contract.name
            and self.headers == other.headers
            and self._assignments == other._assignments
        )

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def explicit_slots(self) -> frozenset[str]:
        return frozenset(self._explicit)

    def freeze(self) -> None:
        self._frozen = True

    def unfreeze(self) -> None:
        self._frozen = False

    def get(self, slot: str) -> str | None:
        return self._assignments.get(slot)

    def as_dict(self) -> Dict[str, str]:
        """Assignments in contract slot order."""

        return {slot: self._assignments[slot] for slot in self._slots if slot in self._assignments}

    def copy(self) -> "FieldMapping":
        clone = FieldMapping(self.contract, self.headers)
        clone._assignments = dict(self._assignments)
        clone._explicit = set(self._explicit)
        return clone

    def assign(self, slot: str, header: str, *, explicit: bool = True) -> None:
        """Map ``slot`` to ``header``; explicit selections win over heuristics."""

        self._ensure_mutable()
        if header not in self.headers:
            raise MappingError(f"Header '{header}' is not present in the uploaded file.")
        self._set(slot, header)
        if explicit:
            self._explicit.add(slot)
        else:
            self._explicit.discard(slot)

    def clear(self, slot: str, *, explicit: bool = True) -> None:
        """Unmap ``slot``."""

        self._ensure_mutable()
        self._require_slot(slot)
        self._assignments.pop(slot, None)
        if explicit:
            self._explicit.add(slot)

    def composite_mode(self, field: str) -> str | None:
        """Return ``"single"``, ``"split"`` or ``None`` for a composite field."""

        for slot_name, slot in self._slots.items():
            if slot.field == field and slot.group and slot_name in self._assignments:
                return slot.group
        return None

    def slots_for(self, field: str) -> Tuple[MappingSlot, ...]:
        return tuple(slot for slot in self._slots.values() if slot.field == field)

    def is_field_mapped(self, field: str) -> bool:
        """A composite field counts as mapped in single mode or with every split column."""

        spec = self.contract.field(field)
        if spec.is_composite:
            if field in self._assignments:
                return True
            return all(component.name in self._assignments for component in spec.components)
        return any(slot.name in self._assignments for slot in self.slots_for(field))

    def missing_required(self) -> Tuple[str, ...]:
        """Required fields with no usable source column."""

        return tuple(spec.name for spec in self.contract.required_fields() if not self.is_field_mapped(spec.name))

    def unmapped_headers(self) -> Tuple[str, ...]:
        used = set(self._assignments.values())
        return tuple(header for header in self.headers if header and header not in used)

    def _require_slot(self, slot: str) -> MappingSlot:
        try:
            return self._slots[slot]
        except KeyError as exc:
            raise MappingError(f"Unknown field '{slot}' for {self.contract.title.lower()}.") from exc

    def _ensure_mutable(self) -> None:
        if self._frozen:
            raise MappingFrozenError("Mapping is frozen; go back to the mapping step to change it.")

    def _set(self, slot: str, header: str) -> None:
        target = self._require_slot(slot)
        if target.group:
            for other in self.slots_for(target.field):
                if other.group and other.group != target.group:
                    self._assignments.pop(other.name, None)
        self._assignments[slot] = header


def _find_header(
    synonyms: Iterable[str],
    normalized_headers: Sequence[str],
    claimed: set[int],
) -> int | None:
    for token in iter_synonym_tokens(synonyms):
        for position, header_token in enumerate(normalized_headers):
            if position in claimed or not header_token:
                continue
            if header_token == token:
                return position
    return None


def _slot_synonyms(slot: MappingSlot, extra: Mapping[str, Tuple[str, ...]]) -> Tuple[str, ...]:
    return tuple(extra.get(slot.name, ())) + (slot.name,) + slot.synonyms


def suggest_mapping(
    headers: Sequence[str],
    contract: EntityContract,
    overrides: Mapping[str, str | None] | None = None,
    synonyms: SynonymOverrides | None = None,
) -> FieldMapping:
    """
    Propose a best-effort mapping from source headers to canonical slots.

    Never fails: slots without a matching header simply stay unmapped. Slots
    are evaluated in contract declaration order and each header can be
    claimed by one slot only, so an ambiguous header goes to the field
    declared first. For composite fields the combined column is preferred;
    split mode is suggested only when every component column is found.
    ``overrides`` (slot -> header, or ``None`` to clear) are applied last as
    explicit selections.
    """

    mapping = FieldMapping(contract, headers)
    normalized_headers = [normalize_header(header) for header in mapping.headers]
    extra = synonyms.for_entity(contract.name) if synonyms is not None else {}
    claimed: set[int] = set()

    for spec in contract.fields:
        slots = mapping.slots_for(spec.name)
        if spec.is_composite:
            single = next(slot for slot in slots if slot.group == "single")
            position = _find_header(_slot_synonyms(single, extra), normalized_headers, claimed)
            if position is not None:
                claimed.add(position)
                mapping.assign(single.name, mapping.headers[position], explicit=False)
                continue
            found: list[tuple[MappingSlot, int]] = []
            pending_claims = set(claimed)
            for component in (slot for slot in slots if slot.group == "split"):
                position = _find_header(_slot_synonyms(component, extra), normalized_headers, pending_claims)
                if position is None:
                    break
                pending_claims.add(position)
                found.append((component, position))
            else:
                for component, position in found:
                    claimed.add(position)
                    mapping.assign(component.name, mapping.headers[position], explicit=False)
            continue
        for slot in slots:
            position = _find_header(_slot_synonyms(slot, extra), normalized_headers, claimed)
            if position is None:
                continue
            claimed.add(position)
            mapping.assign(slot.name, mapping.headers[position], explicit=False)

    for slot, header in (overrides or {}).items():
        if header:
            mapping.assign(slot, header)
        else:
            mapping.clear(slot)
    return mapping


__all__ = [
    "FieldMapping",
    "MappingError",
    "MappingFrozenError",
    "MappingLoadError",
    "SynonymOverrides",
    "load_synonym_overrides",
    "suggest_mapping",
]
