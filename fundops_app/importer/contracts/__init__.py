"""Canonical import contracts and the entity registry."""

from __future__ import annotations

from collections import OrderedDict
from typing import Iterable, Mapping, Sequence

from .base import (
    ComponentSpec,
    EntityContract,
    FieldKind,
    FieldSpec,
    MappingSlot,
    MatchStrategy,
    NotePart,
    SlotRole,
    contract_summary,
    fold_diacritics,
    normalize_header,
)
from .company import COMPANY_CONTRACT
from .investor import INVESTOR_CONTRACT, is_company_investor
from .rules import RecordStatus, ValidationIssue, ValidationRule, evaluate_rules, worst_status


def get_contract_registry() -> Mapping[str, EntityContract]:
    """Return the contracts for every entity the importer can target."""

    return OrderedDict(
        (
            (COMPANY_CONTRACT.name, COMPANY_CONTRACT),
            (INVESTOR_CONTRACT.name, INVESTOR_CONTRACT),
        )
    )


def get_contract(entity: str) -> EntityContract:
    """Look up a contract by entity name, raising ``KeyError`` for unknown names."""

    registry = get_contract_registry()
    key = (entity or "").strip().lower()
    if key not in registry:
        raise KeyError(f"Unknown import entity '{entity}'. Expected one of: {', '.join(registry)}.")
    return registry[key]


def resolve_entities(configured: Sequence[str]) -> Iterable[EntityContract]:
    """
    Map configured entity names to contracts, raising on unknowns.
    """
    registry = get_contract_registry()
    unknown = sorted({entity for entity in configured if entity not in registry})
    if unknown:
        raise ValueError(
            "Unknown importer entities configured: "
            + ", ".join(unknown)
            + ". Supported entities: "
            + ", ".join(registry)
            + "."
        )
    return tuple(registry[entity] for entity in configured)


__all__ = [
    "COMPANY_CONTRACT",
    "INVESTOR_CONTRACT",
    "ComponentSpec",
    "EntityContract",
    "FieldKind",
    "FieldSpec",
    "MappingSlot",
    "MatchStrategy",
    "NotePart",
    "RecordStatus",
    "SlotRole",
    "ValidationIssue",
    "ValidationRule",
    "contract_summary",
    "evaluate_rules",
    "fold_diacritics",
    "get_contract",
    "get_contract_registry",
    "is_company_investor",
    "normalize_header",
    "resolve_entities",
    "worst_status",
]
