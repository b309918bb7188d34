import json
from pathlib import Path


def _write_csv(tmp_path: Path, contents: str, name: str = "companies.csv") -> Path:
    csv_file = tmp_path / name
    csv_file.write_text(contents, encoding="utf-8")
    return csv_file


COMPANIES_CSV = (
    "Ragione Sociale;Partita IVA;Email\n"
    "Acme S.r.l.;IT12345678901;info@acme.it\n"
    "ACME srl;12345678901;\n"
    "Beta SpA;;info@beta.it\n"
)


def test_importer_group_lists_entities(importer_app, runner):
    result = runner.invoke(args=["importer"])

    assert result.exit_code == 0, result.output
    assert "Enabled importer entities:" in result.output
    assert "  - companies" in result.output
    assert "  - investors" in result.output


def test_importer_group_refuses_when_disabled(importer_app, runner):
    importer_app.config["IMPORTER_ENABLED"] = False

    result = runner.invoke(args=["importer"])

    assert result.exit_code != 0
    assert "Importer is disabled" in result.output


def test_suggest_mapping_text_output(importer_app, runner, tmp_path):
    csv_path = _write_csv(tmp_path, COMPANIES_CSV)

    result = runner.invoke(args=["importer", "suggest-mapping", "--entity", "companies", "--file", str(csv_path)])

    assert result.exit_code == 0, result.output
    assert "Suggested mapping for companies:" in result.output
    assert "vat_number" in result.output and "Partita IVA" in result.output
    assert "Missing required fields" not in result.output


def test_suggest_mapping_json_reports_missing_fields(importer_app, runner, tmp_path):
    csv_path = _write_csv(tmp_path, "Email,Città\nada@example.org,Londra\n", name="investors.csv")

    result = runner.invoke(
        args=["importer", "suggest-mapping", "--entity", "investors", "--file", str(csv_path), "--json"]
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["mapping"] == {"email": "Email"}
    assert payload["missing_required"] == ["full_name"]
    assert payload["unmapped_headers"] == ["Città"]


def test_unknown_entity_is_rejected(importer_app, runner, tmp_path):
    csv_path = _write_csv(tmp_path, COMPANIES_CSV)

    result = runner.invoke(args=["importer", "suggest-mapping", "--entity", "donors", "--file", str(csv_path)])

    assert result.exit_code != 0
    assert "Unknown import entity 'donors'" in result.output


def test_dry_run_emits_summary_without_submitting(importer_app, runner, tmp_path):
    csv_path = _write_csv(tmp_path, COMPANIES_CSV)

    result = runner.invoke(
        args=[
            "importer",
            "run",
            "--entity",
            "companies",
            "--file",
            str(csv_path),
            "--dry-run",
            "--summary-format",
            "json",
        ]
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["dry_run"] is True
    assert payload["stage"] == "summary"
    assert payload["stats"]["ready"] == 2
    assert payload["skipped"][0]["reasons"] == ["duplicate_in_file (match: vat_number)"]
    assert importer_app.extensions["importer"]["test_endpoint"].calls == []


def test_run_submits_chunks_and_prints_report(importer_app, runner, tmp_path):
    csv_path = _write_csv(tmp_path, COMPANIES_CSV)

    result = runner.invoke(
        args=[
            "importer",
            "run",
            "--entity",
            "companies",
            "--file",
            str(csv_path),
            "--chunk-size",
            "1",
            "--context",
            "companyId=c-1",
        ]
    )

    assert result.exit_code == 0, result.output
    state = importer_app.extensions["importer"]
    assert [len(call) for call in state["test_endpoint"].calls] == [1, 1]
    assert state["test_factory_calls"] == [{"entity": "companies", "url": None, "context": {"companyId": "c-1"}}]
    assert "Imported 1/2 rows (1/2 chunks)" in result.output
    assert "Imported 2/2 rows (2/2 chunks)" in result.output
    assert "inserted        : 2" in result.output
    assert "row 1: duplicate_in_file (match: vat_number)" in result.output


def test_run_applies_mapping_and_edits(importer_app, runner, tmp_path):
    csv_path = _write_csv(tmp_path, "Denominazione,Email\n,info@acme.it\nBeta,info@beta.it\n")

    result = runner.invoke(
        args=[
            "importer",
            "run",
            "--entity",
            "companies",
            "--file",
            str(csv_path),
            "--map",
            "name=Denominazione",
            "--edit",
            "0:name=Acme",
        ]
    )

    assert result.exit_code == 0, result.output
    (submitted,) = importer_app.extensions["importer"]["test_endpoint"].calls
    assert [row["name"] for row in submitted] == ["Acme", "Beta"]


def test_run_is_blocked_by_critical_errors(importer_app, runner, tmp_path):
    csv_path = _write_csv(tmp_path, "Ragione Sociale,Email\n,info@acme.it\n")

    result = runner.invoke(args=["importer", "run", "--entity", "companies", "--file", str(csv_path)])

    assert result.exit_code != 0
    assert "Import blocked" in result.output
    assert "row 0: missing_name" in result.output
    assert importer_app.extensions["importer"]["test_endpoint"].calls == []


def test_run_rejects_invalid_edit(importer_app, runner, tmp_path):
    csv_path = _write_csv(tmp_path, COMPANIES_CSV)

    result = runner.invoke(
        args=["importer", "run", "--entity", "companies", "--file", str(csv_path), "--edit", "7:name=Acme"]
    )

    assert result.exit_code != 0
    assert "Edit '7:name=Acme' rejected" in result.output


def test_run_reports_aborted_import(importer_app, runner, tmp_path):
    csv_path = _write_csv(tmp_path, COMPANIES_CSV)
    importer_app.extensions["importer"]["test_endpoint"].fail_on_call = 2

    result = runner.invoke(
        args=["importer", "run", "--entity", "companies", "--file", str(csv_path), "--chunk-size", "1"]
    )

    assert result.exit_code != 0
    assert "Import aborted: Chunk 2 of 2 failed after 1 completed chunk(s)" in result.output
    assert "inserted        : 1" in result.output


def test_run_reports_malformed_csv(importer_app, runner, tmp_path):
    csv_path = _write_csv(tmp_path, "Ragione Sociale,Email\nAcme,info@acme.it,extra\n")

    result = runner.invoke(
        args=["importer", "run", "--entity", "companies", "--file", str(csv_path), "--delimiter", ","]
    )

    assert result.exit_code != 0
    assert "Could not parse" in result.output
    assert "(line 2)" in result.output
