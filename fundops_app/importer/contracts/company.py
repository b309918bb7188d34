"""Canonical company import contract.

Synonyms cover the Italian and English headers seen in CRM exports. Wire
names (``settore``, ``profilo_linkedin``) follow the company import endpoint.
"""

from __future__ import annotations

from typing import Tuple

from .base import EntityContract, FieldKind, FieldSpec, MatchStrategy, NotePart

LEGAL_SUFFIXES: Tuple[str, ...] = (
    "s.r.l.s",
    "s.r.l",
    "srls",
    "srl",
    "s.p.a",
    "spa",
    "s.n.c",
    "snc",
    "s.a.s",
    "sas",
    "s.c.a.r.l",
    "scarl",
    "s.b",
    "sb",
    "s.s",
    "ss",
    "s.c",
    "sc",
    "ltd",
    "llc",
    "inc",
)

COMPANY_CANONICAL_FIELDS: Tuple[FieldSpec, ...] = (
    FieldSpec(
        name="name",
        description="Company name",
        required=True,
        synonyms=("ragione sociale", "società", "company", "company name", "azienda", "nome azienda", "name"),
        editable=True,
        match_key="name",
    ),
    FieldSpec(
        name="legal_name",
        description="Legal name",
        synonyms=("legal name", "denominazione legale", "ragione sociale"),
        fallback="name",
    ),
    FieldSpec(
        name="vat_number",
        description="VAT number",
        kind=FieldKind.IDENTIFIER,
        synonyms=("partita iva", "piva", "p.iva", "p. iva", "vat", "vat number", "partita_iva"),
        editable=True,
        match_key="identifier",
    ),
    FieldSpec(
        name="email",
        description="Email",
        kind=FieldKind.EMAIL,
        synonyms=("email", "e-mail", "mail", "indirizzo email"),
        editable=True,
        match_key="email",
    ),
    FieldSpec(
        name="pec",
        description="PEC",
        kind=FieldKind.EMAIL,
        synonyms=("pec", "email pec", "posta certificata"),
        editable=True,
    ),
    FieldSpec(
        name="sector",
        description="Sector",
        synonyms=("settore", "sector", "industry"),
        payload_key="settore",
    ),
    FieldSpec(
        name="website",
        description="Website",
        synonyms=("sito", "sito web", "website", "web", "url"),
    ),
    FieldSpec(
        name="linkedin_profile",
        description="LinkedIn profile",
        synonyms=("profilo linkedin", "linkedin", "linkedin url"),
        payload_key="profilo_linkedin",
        match_key="url",
    ),
    FieldSpec(
        name="notes",
        description="Notes",
        kind=FieldKind.NOTES,
        parts=(
            NotePart(name="notes_note", label="Note", synonyms=("note", "notes", "commenti")),
            NotePart(name="notes_sdi", label="Codice SDI", synonyms=("codice sdi", "sdi", "codice destinatario")),
        ),
    ),
)

COMPANY_CONTRACT = EntityContract(
    name="companies",
    title="Companies",
    fields=COMPANY_CANONICAL_FIELDS,
    match_strategies=(
        MatchStrategy(name="vat_number", fields=("vat_number",)),
        MatchStrategy(name="email", fields=("email",)),
        MatchStrategy(name="name+linkedin", fields=("name", "linkedin_profile")),
        MatchStrategy(name="name_only", fields=("name",), low_confidence=True),
    ),
    name_field="name",
    legal_suffixes=LEGAL_SUFFIXES,
)
