"""
CLI commands for the importer.

``flask importer run`` drives a file through the same session stages the
HTTP API uses: upload, mapping and validation, summary, then import.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional, Sequence

import click
from flask.cli import ScriptInfo

from fundops_app.importer.adapters.csv_rows import CSVParseError, ParsedTable, read_source_rows
from fundops_app.importer.contracts import EntityContract, get_contract
from fundops_app.importer.mapping import MappingError, suggest_mapping
from fundops_app.importer.pipeline import (
    CorrectionState,
    CorrectionStateError,
    ImportAbortedError,
    ImportProgress,
    ImportSession,
    RecordNotFoundError,
    StageBlockedError,
)
from fundops_app.utils.importer import (
    get_chunk_size,
    get_csv_delimiter,
    get_importer_entities,
    is_importer_enabled,
)


@click.group(name="importer", invoke_without_command=True)
@click.pass_context
def importer_cli(ctx):
    """
    Importer management commands.

    Displays configured entities when invoked without a subcommand.
    """
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    if not is_importer_enabled(app):
        raise click.ClickException(
            "Importer is disabled via IMPORTER_ENABLED=false. " "Enable it to run importer CLI commands."
        )
    if ctx.invoked_subcommand is None:
        entities = get_importer_entities(app)
        if not entities:
            click.echo("No importer entities configured.")
        else:
            click.echo("Enabled importer entities:")
            for entity in entities:
                click.echo(f"  - {entity}")


def get_disabled_importer_group() -> click.Group:
    """
    Return a minimal command group that informs the operator the importer is disabled.
    """

    @click.group(name="importer", invoke_without_command=True)
    def disabled_group():
        raise click.ClickException("Importer commands are unavailable because IMPORTER_ENABLED=false.")

    return disabled_group


def _resolve_contract(app, entity: str) -> EntityContract:
    try:
        contract = get_contract(entity)
    except KeyError as exc:
        raise click.ClickException(str(exc.args[0])) from exc
    if contract.name not in get_importer_entities(app):
        raise click.ClickException(f"Entity '{contract.name}' is not enabled in IMPORTER_ENTITIES.")
    return contract


def _read_table(file_path: Path, delimiter: Optional[str]) -> ParsedTable:
    try:
        with file_path.open("r", encoding="utf-8-sig", newline="") as handle:
            return read_source_rows(handle, delimiter=delimiter)
    except CSVParseError as exc:
        location = f" (line {exc.row_number})" if exc.row_number else ""
        raise click.ClickException(f"Could not parse {file_path}{location}: {exc}") from exc
    except UnicodeDecodeError as exc:
        raise click.ClickException(f"{file_path} is not valid UTF-8 text.") from exc


def _split_pair(raw: str, separator: str, option: str) -> tuple[str, str]:
    key, sep, value = raw.partition(separator)
    if not sep or not key.strip():
        raise click.BadParameter(f"Expected {option} in KEY{separator}VALUE form, got '{raw}'.")
    return key.strip(), value.strip()


def _parse_edit(raw: str) -> tuple[int, str, str]:
    target, value = _split_pair(raw, "=", "--edit")
    index_text, sep, field = target.partition(":")
    if not sep or not field.strip():
        raise click.BadParameter(f"Expected --edit in INDEX:FIELD=VALUE form, got '{raw}'.")
    try:
        index = int(index_text)
    except ValueError as exc:
        raise click.BadParameter(f"Row index must be an integer in '{raw}'.") from exc
    return index, field.strip(), value


def _apply_mapping(session: ImportSession, pairs: Sequence[str]) -> None:
    for raw in pairs:
        slot, header = _split_pair(raw, "=", "--map")
        try:
            if header:
                session.assign_mapping(slot, header)
            else:
                session.clear_mapping(slot)
        except MappingError as exc:
            raise click.ClickException(str(exc)) from exc


def _apply_edits(session: ImportSession, edits: Sequence[str]) -> None:
    for raw in edits:
        index, field, value = _parse_edit(raw)
        try:
            session.begin_edit(index, field)
            if session.commit_edit(value):
                session.confirm_edit()
        except (CorrectionStateError, RecordNotFoundError) as exc:
            if session.corrections.state is not CorrectionState.VIEWING:
                session.cancel_edit()
            raise click.ClickException(f"Edit '{raw}' rejected: {exc}") from exc


def _format_summary(session: ImportSession, *, dry_run: bool) -> str:
    stats = session.stats()
    validation = stats["validation"] or {}
    status_counts = validation.get("status_counts", {})
    status_display = ", ".join(f"{status}={count}" for status, count in status_counts.items()) or "none"
    mapping_display = ", ".join(f"{slot}<-{header}" for slot, header in session.mapping.as_dict().items()) or "none"
    lines = [
        f"Import of {session.contract.name} reached stage {session.stage.value} (dry_run={dry_run}).",
        f"  rows            : {stats['rows']}",
        f"  mapping         : {mapping_display}",
        f"  statuses        : {status_display}",
        f"  ready           : {stats['ready']}",
        f"  skipped         : {stats['skipped']}",
        f"  duplicates      : {stats['duplicates']}",
        f"  tie_break_rule  : {stats['tie_break_rule']}",
    ]
    for entry in session.outcome.skipped if session.outcome else ():
        lines.append(f"  - row {entry.original_index}: {'; '.join(entry.reasons)}")
    return "\n".join(lines)


def _format_report(session: ImportSession) -> str:
    result = session.result
    if result is None:
        return "No import was attempted."
    lines = [
        f"Import report for {session.contract.name} ({result.progress} rows, "
        f"{result.chunks_completed}/{result.chunks_total} chunks).",
        f"  inserted        : {result.inserted}",
        f"  updated         : {result.updated}",
        f"  skipped         : {result.skipped}",
        f"  cancelled       : {result.cancelled}",
    ]
    for message in result.warnings:
        lines.append(f"  warning row {message.original_index}: {message.reason}")
    for message in result.errors:
        lines.append(f"  error row {message.original_index}: {message.reason}")
    if session.error:
        lines.append(f"  aborted         : {session.error}")
    return "\n".join(lines)


def _build_summary_payload(session: ImportSession, *, dry_run: bool) -> dict[str, object]:
    payload = session.as_dict(include_records=False)
    payload["dry_run"] = dry_run
    payload["skipped"] = [entry.as_dict() for entry in session.outcome.skipped] if session.outcome else []
    return payload


def _emit(session: ImportSession, *, dry_run: bool, summary_format: str) -> None:
    if summary_format == "json":
        click.echo(json.dumps(_build_summary_payload(session, dry_run=dry_run), indent=2, default=str))
        return
    click.echo(_format_summary(session, dry_run=dry_run))
    if not dry_run:
        click.echo(_format_report(session))


@importer_cli.command("suggest-mapping")
@click.option("--entity", required=True, help="Target entity (companies or investors).")
@click.option(
    "--file",
    "file_path",
    required=True,
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    help="CSV file whose header row should be mapped.",
)
@click.option("--delimiter", help="Column delimiter; sniffed from the file when omitted.")
@click.option("--json", "as_json", is_flag=True, help="Emit the mapping as JSON.")
@click.pass_context
def importer_suggest_mapping(ctx, entity: str, file_path: Path, delimiter: Optional[str], as_json: bool):
    """Show the suggested column mapping for a file."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    contract = _resolve_contract(app, entity)
    table = _read_table(file_path, delimiter or get_csv_delimiter(app))
    synonyms = app.extensions.get("importer", {}).get("synonyms")
    mapping = suggest_mapping(table.headers, contract, synonyms=synonyms)

    if as_json:
        payload = {
            "entity": contract.name,
            "mapping": mapping.as_dict(),
            "missing_required": list(mapping.missing_required()),
            "unmapped_headers": list(mapping.unmapped_headers()),
        }
        click.echo(json.dumps(payload, indent=2))
        return

    click.echo(f"Suggested mapping for {contract.name}:")
    for slot in contract.slot_names():
        header = mapping.get(slot)
        click.echo(f"  {slot:<24}: {header if header else '-'}")
    missing = mapping.missing_required()
    if missing:
        click.echo(f"Missing required fields: {', '.join(missing)}")
    unmapped = mapping.unmapped_headers()
    if unmapped:
        click.echo(f"Unmapped headers: {', '.join(unmapped)}")


@importer_cli.command("run")
@click.option("--entity", required=True, help="Target entity (companies or investors).")
@click.option(
    "--file",
    "file_path",
    required=True,
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    help="Path to the CSV file to import.",
)
@click.option("--endpoint", help="Override the configured insert-or-update endpoint URL.")
@click.option("--chunk-size", type=click.IntRange(min=1), help="Rows per submission (defaults to IMPORTER_CHUNK_SIZE).")
@click.option("--map", "mappings", multiple=True, help="Explicit mapping as SLOT=HEADER (empty HEADER clears).")
@click.option("--edit", "edits", multiple=True, help="Confirmed correction as INDEX:FIELD=VALUE.")
@click.option("--delimiter", help="Column delimiter; sniffed from the file when omitted.")
@click.option("--dry-run", is_flag=True, help="Validate and deduplicate without submitting rows.")
@click.option(
    "--summary-format",
    type=click.Choice(["text", "json"]),
    default="text",
    show_default=True,
    help="Output format for the summary and report.",
)
@click.option("--context", "context_pairs", multiple=True, help="Extra KEY=VALUE sent with every chunk.")
@click.pass_context
def importer_run(
    ctx,
    entity: str,
    file_path: Path,
    endpoint: Optional[str],
    chunk_size: Optional[int],
    mappings: Sequence[str],
    edits: Sequence[str],
    delimiter: Optional[str],
    dry_run: bool,
    summary_format: str,
    context_pairs: Sequence[str],
):
    """Validate, deduplicate and import a CSV file for one entity."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    if not is_importer_enabled(app):
        raise click.ClickException("Importer is disabled; enable it via IMPORTER_ENABLED before running.")

    contract = _resolve_contract(app, entity)
    context = dict(_split_pair(raw, "=", "--context") for raw in context_pairs)
    table = _read_table(file_path, delimiter or get_csv_delimiter(app))

    state = app.extensions.get("importer", {})
    session = ImportSession(contract, synonyms=state.get("synonyms"))
    session.load(table)
    _apply_mapping(session, mappings)
    _apply_edits(session, edits)

    try:
        session.advance()
    except StageBlockedError as exc:
        click.echo(_format_summary(session, dry_run=dry_run), err=True)
        raise click.ClickException(f"Import blocked: {exc}") from exc

    if dry_run:
        _emit(session, dry_run=True, summary_format=summary_format)
        return

    factory = state.get("endpoint_factory")
    if factory is None:
        raise click.ClickException("Importer endpoint factory is unavailable; was init_importer called?")
    try:
        client = factory(contract.name, url=endpoint, context=context)
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc

    def _report_progress(progress: ImportProgress) -> None:
        if summary_format == "text":
            click.echo(f"Imported {progress} rows ({progress.chunks_completed}/{progress.chunks_total} chunks)")

    app.logger.info(
        "Importer run started via CLI",
        extra={
            "importer_entity": contract.name,
            "importer_session": session.id,
            "importer_file": str(file_path),
            "importer_ready": len(session.ready),
        },
    )
    try:
        session.run_import(client, chunk_size=chunk_size or get_chunk_size(app), on_progress=_report_progress)
    except ImportAbortedError as exc:
        _emit(session, dry_run=False, summary_format=summary_format)
        raise click.ClickException(f"Import aborted: {exc}") from exc

    _emit(session, dry_run=False, summary_format=summary_format)
