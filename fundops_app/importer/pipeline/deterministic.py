"""
Deterministic match-key helpers for in-file deduplication.

Each helper returns ``None`` when a value cannot produce a usable key so
callers can skip that match tier for the record.
"""

from __future__ import annotations

import re
from typing import Callable, Iterable, Mapping, Tuple

from fundops_app.importer.contracts.base import EntityContract, MatchStrategy, fold_diacritics

KeyNormalizer = Callable[[str | None], str | None]

_NON_DIGITS = re.compile(r"\D+")
_NON_WORD = re.compile(r"[^\w\s]+")
_WHITESPACE = re.compile(r"\s+")
_URL_SCHEME = re.compile(r"^[a-z][a-z0-9+.\-]*://")


def normalize_email_key(value: str | None) -> str | None:
    """Lower-case and trim an email address."""

    if value is None:
        return None
    token = value.strip().lower()
    return token or None


def normalize_identifier_key(value: str | None) -> str | None:
    """Reduce a VAT-like identifier to its numeric body (country code dropped)."""

    if value is None:
        return None
    digits = _NON_DIGITS.sub("", value)
    return digits or None


def normalize_phone_key(value: str | None) -> str | None:
    """Keep digits only; a leading international ``00`` becomes implicit."""

    if value is None:
        return None
    digits = _NON_DIGITS.sub("", value)
    if digits.startswith("00"):
        digits = digits[2:]
    return digits or None


def normalize_url_key(value: str | None) -> str | None:
    """Compare profile URLs without scheme, ``www.``, query or trailing slash."""

    if value is None:
        return None
    token = value.strip().lower()
    token = _URL_SCHEME.sub("", token)
    if token.startswith("www."):
        token = token[4:]
    token = token.split("?", 1)[0].split("#", 1)[0]
    token = token.rstrip("/")
    return token or None


def normalize_name_key(value: str | None, legal_suffixes: Iterable[str] = ()) -> str | None:
    """Lower-case, accent- and punctuation-free name with legal suffixes stripped.

    ``"Acme S.r.l."``, ``"ACME srl"`` and ``"Acme, SRL"`` all key to ``"acme"``.
    """

    if value is None:
        return None
    token = fold_diacritics(value).lower().replace(".", "")
    token = _NON_WORD.sub(" ", token)
    parts = _WHITESPACE.sub(" ", token).strip().split(" ")
    suffix_tokens = {suffix.replace(".", "").replace(" ", "").lower() for suffix in legal_suffixes}
    while len(parts) > 1 and parts[-1] in suffix_tokens:
        parts.pop()
    return " ".join(part for part in parts if part) or None


_KEY_NORMALIZERS: Mapping[str, KeyNormalizer] = {
    "email": normalize_email_key,
    "identifier": normalize_identifier_key,
    "phone": normalize_phone_key,
    "url": normalize_url_key,
}


def field_key(contract: EntityContract, field: str, value: str | None) -> str | None:
    """Normalize a canonical value with the key normalizer its field declares."""

    spec = contract.field(field)
    if spec.match_key == "name":
        return normalize_name_key(value, contract.legal_suffixes)
    normalizer = _KEY_NORMALIZERS.get(spec.match_key or "")
    if normalizer is None:
        return normalize_email_key(value)
    return normalizer(value)


def strategy_key(
    contract: EntityContract,
    strategy: MatchStrategy,
    values: Mapping[str, str | None],
) -> Tuple[str, ...] | None:
    """Build the registry key for one match tier, or ``None`` if any part is empty."""

    parts: list[str] = [strategy.name]
    for field in strategy.fields:
        token = field_key(contract, field, values.get(field))
        if token is None:
            return None
        parts.append(token)
    return tuple(parts)


def match_keys(
    contract: EntityContract,
    values: Mapping[str, str | None],
) -> Tuple[Tuple[MatchStrategy, Tuple[str, ...]], ...]:
    """Every key a record can produce, in strict tier priority order."""

    keys: list[Tuple[MatchStrategy, Tuple[str, ...]]] = []
    for strategy in contract.match_strategies:
        key = strategy_key(contract, strategy, values)
        if key is not None:
            keys.append((strategy, key))
    return tuple(keys)
