"""Canonical investor import contract.

The investor full name is composite: either a single combined column or a
pair of first-name and last-name columns. Investor and source types are kept
raw; the backing store resolves them.
"""

from __future__ import annotations

from typing import Mapping, Tuple

from .base import ComponentSpec, EntityContract, FieldKind, FieldSpec, MatchStrategy, NotePart
from .company import LEGAL_SUFFIXES
from .rules import KeywordGatedFieldRule, MinLengthRule, PresenceNoticeRule

COMPANY_INVESTOR_KEYWORDS: Tuple[str, ...] = ("azienda", "company", "corporate", "institutional")

INVESTOR_CANONICAL_FIELDS: Tuple[FieldSpec, ...] = (
    FieldSpec(
        name="full_name",
        description="Full name",
        required=True,
        synonyms=("nome_cognome", "nome e cognome", "full name", "nominativo", "name"),
        components=(
            ComponentSpec(name="first_name", description="First name", synonyms=("nome", "first name", "given name")),
            ComponentSpec(name="last_name", description="Last name", synonyms=("cognome", "last name", "surname")),
        ),
        editable=True,
        match_key="name",
    ),
    FieldSpec(
        name="email",
        description="Email",
        kind=FieldKind.EMAIL,
        recommended=True,
        synonyms=("email", "e-mail", "mail", "e_mail", "email address"),
        editable=True,
        match_key="email",
    ),
    FieldSpec(
        name="phone",
        description="Phone",
        synonyms=("telefono", "phone", "tel", "mobile", "cellulare"),
        editable=True,
        match_key="phone",
    ),
    FieldSpec(
        name="linkedin",
        description="LinkedIn",
        synonyms=("linkedin", "linked_in", "profilo linkedin", "linkedin url"),
        editable=True,
        match_key="url",
    ),
    FieldSpec(
        name="investor_type_raw",
        description="Investor type",
        synonyms=("tipo_investitore", "tipo investitore", "investor type"),
    ),
    FieldSpec(
        name="source_type_raw",
        description="Source type",
        synonyms=("tipo_sorgente", "tipo sorgente", "source type", "fonte"),
    ),
    FieldSpec(
        name="client_company_raw",
        description="Client company",
        synonyms=("cliente imment", "cliente", "company", "client company"),
    ),
    FieldSpec(
        name="investor_company_name_raw",
        description="Investor company name",
        synonyms=("ragione sociale", "società", "company name", "azienda investitore"),
    ),
    FieldSpec(
        name="notes_final",
        description="Notes",
        kind=FieldKind.NOTES,
        parts=(
            NotePart(name="notes_motivation", label="Motivazione", synonyms=("motivazione", "motivation")),
            NotePart(name="notes_activity", label="Attività", synonyms=("attività", "activity")),
            NotePart(name="notes_note", label="Note", synonyms=("note", "notes")),
        ),
    ),
)

INVESTOR_RULES = (
    MinLengthRule(code="name_too_short", field="full_name", min_length=3),
    KeywordGatedFieldRule(
        code="company_name_ignored",
        field="investor_company_name_raw",
        gate_fields=("investor_type_raw", "source_type_raw"),
        keywords=COMPANY_INVESTOR_KEYWORDS,
        message="Investor company name is ignored because the investor is not a company.",
    ),
    PresenceNoticeRule(
        code="client_company_pending",
        field="client_company_raw",
        message="Client company '{value}' will be matched against existing companies during import.",
    ),
)

INVESTOR_CONTRACT = EntityContract(
    name="investors",
    title="Investors",
    fields=INVESTOR_CANONICAL_FIELDS,
    match_strategies=(
        MatchStrategy(name="email", fields=("email",)),
        MatchStrategy(name="name+linkedin", fields=("full_name", "linkedin")),
        MatchStrategy(name="name+phone", fields=("full_name", "phone")),
        MatchStrategy(name="name_only", fields=("full_name",), low_confidence=True),
    ),
    name_field="full_name",
    extra_rules=INVESTOR_RULES,
    legal_suffixes=LEGAL_SUFFIXES,
)


def is_company_investor(values: Mapping[str, str | None]) -> bool:
    """True when the investor or source type names a company-like investor."""

    for field in ("investor_type_raw", "source_type_raw"):
        haystack = (values.get(field) or "").lower()
        if any(keyword in haystack for keyword in COMPANY_INVESTOR_KEYWORDS):
            return True
    return False
