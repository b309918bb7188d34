"""Importer input adapters.

The HTTP endpoint client lives in ``adapters.http_endpoint`` and is imported
directly by callers so this package stays free of pipeline imports.
"""

from __future__ import annotations

from .csv_rows import (
    CSVAdapterError,
    CSVParseError,
    ParsedTable,
    SourceRow,
    read_source_rows,
    rows_from_records,
    sniff_delimiter,
)

__all__ = [
    "CSVAdapterError",
    "CSVParseError",
    "ParsedTable",
    "SourceRow",
    "read_source_rows",
    "rows_from_records",
    "sniff_delimiter",
]
