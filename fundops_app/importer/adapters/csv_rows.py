"""CSV adapter producing immutable source rows.

Turns uploaded tabular text into ``SourceRow`` objects keyed by the original
(cleaned) headers. Header cleanup strips the UTF-8 BOM and surrounding
whitespace; the delimiter is fixed by configuration or sniffed from a sample
because Italian spreadsheet exports commonly use ``;``.
"""

from __future__ import annotations

import csv
from dataclasses import dataclass
from types import MappingProxyType
from typing import IO, Iterable, Mapping, Sequence

SNIFF_DELIMITERS = ",;\t|"
SNIFF_SAMPLE_SIZE = 64 * 1024


class CSVAdapterError(Exception):
    """Base exception for CSV adapter failures."""


class CSVParseError(CSVAdapterError):
    """Raised when uploaded rows cannot be tokenized."""

    def __init__(self, message: str, *, row_number: int | None = None) -> None:
        if row_number is not None:
            message = f"Row {row_number}: {message}"
        super().__init__(message)
        self.row_number = row_number


@dataclass(frozen=True)
class SourceRow:
    """One raw record keyed by source header. Never mutated after parsing."""

    original_index: int
    values: Mapping[str, str]

    @classmethod
    def build(cls, original_index: int, values: Mapping[str, object | None]) -> "SourceRow":
        cleaned = {str(key): "" if value is None else str(value) for key, value in values.items()}
        return cls(original_index=original_index, values=MappingProxyType(cleaned))

    def get(self, header: str | None) -> str:
        if not header:
            return ""
        return self.values.get(header, "")


@dataclass(frozen=True)
class ParsedTable:
    """Headers and rows extracted from a single upload."""

    headers: tuple[str, ...]
    rows: tuple[SourceRow, ...]
    delimiter: str = ","
    rows_skipped_blank: int = 0


def _sanitize_header(header: str | None) -> str:
    token = (header or "").strip()
    return token.lstrip("\ufeff").strip()


def _validate_headers(raw_headers: Sequence[str | None] | None) -> tuple[str, ...]:
    if not raw_headers:
        raise CSVParseError("File has no header row.")
    headers = tuple(_sanitize_header(header) for header in raw_headers)
    if not any(headers):
        raise CSVParseError("Header row is empty.")
    seen: set[str] = set()
    duplicates: list[str] = []
    for header in headers:
        if not header:
            continue
        if header in seen:
            duplicates.append(header)
        seen.add(header)
    if duplicates:
        raise CSVParseError("Duplicate column headers: " + ", ".join(sorted(set(duplicates))) + ".")
    return headers


def _row_is_blank(values: Mapping[str, object | None]) -> bool:
    return all(value is None or str(value).strip() == "" for value in values.values())


def sniff_delimiter(sample: str, default: str = ",") -> str:
    """Guess the field delimiter from a text sample."""

    if not sample.strip():
        return default
    try:
        dialect = csv.Sniffer().sniff(sample, delimiters=SNIFF_DELIMITERS)
    except csv.Error:
        return default
    return dialect.delimiter


def read_source_rows(
    file_obj: IO[str],
    *,
    delimiter: str | None = None,
    skip_blank_rows: bool = True,
) -> ParsedTable:
    """Parse CSV text into source rows.

    ``original_index`` is the zero-based position of the data row in the file,
    so it stays stable even when blank rows are skipped.
    """

    if delimiter is None:
        sample = file_obj.read(SNIFF_SAMPLE_SIZE)
        delimiter = sniff_delimiter(sample)
        file_obj.seek(0)

    reader = csv.DictReader(file_obj, delimiter=delimiter)
    try:
        headers = _validate_headers(reader.fieldnames)
    except csv.Error as exc:
        raise CSVParseError(f"Malformed header row: {exc}") from exc
    reader.fieldnames = list(headers)

    rows: list[SourceRow] = []
    skipped_blank = 0
    index = 0
    try:
        for raw_row in reader:
            row_number = reader.line_num
            extras = raw_row.pop(None, None)
            if extras and any(str(value).strip() for value in extras):
                raise CSVParseError(
                    f"Row has {len(headers) + len(extras)} values but the header declares {len(headers)} columns.",
                    row_number=row_number,
                )
            if skip_blank_rows and _row_is_blank(raw_row):
                skipped_blank += 1
                index += 1
                continue
            rows.append(SourceRow.build(index, {key: value for key, value in raw_row.items() if key}))
            index += 1
    except csv.Error as exc:
        raise CSVParseError(str(exc), row_number=reader.line_num) from exc

    if not rows:
        raise CSVParseError("File contains no data rows.")

    return ParsedTable(headers=headers, rows=tuple(rows), delimiter=delimiter, rows_skipped_blank=skipped_blank)


def rows_from_records(
    records: Iterable[Mapping[str, object | None]],
    headers: Sequence[str] | None = None,
) -> ParsedTable:
    """Build source rows from already-tokenized records (e.g. a JSON body)."""

    materialized = list(records)
    if headers is None:
        ordered: dict[str, None] = {}
        for record in materialized:
            if not isinstance(record, Mapping):
                raise CSVParseError("Each row must be an object of header/value pairs.")
            for key in record:
                ordered.setdefault(str(key), None)
        headers = tuple(ordered)
    clean_headers = _validate_headers(list(headers))
    rename = {str(raw): clean for raw, clean in zip(headers, clean_headers)}

    rows: list[SourceRow] = []
    for index, record in enumerate(materialized):
        if not isinstance(record, Mapping):
            raise CSVParseError("Each row must be an object of header/value pairs.", row_number=index + 1)
        values = {rename.get(str(key), _sanitize_header(str(key))): value for key, value in record.items()}
        rows.append(SourceRow.build(index, values))
    if not rows:
        raise CSVParseError("No rows supplied.")
    return ParsedTable(headers=clean_headers, rows=tuple(rows))
