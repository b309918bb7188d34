import pytest

from fundops_app.importer.contracts import COMPANY_CONTRACT, INVESTOR_CONTRACT
from fundops_app.importer.pipeline import (
    ImportAbortedError,
    ImportSession,
    ImportStage,
    StageBlockedError,
    StageTransitionError,
)

HEADERS = ("Ragione Sociale", "Partita IVA", "Email")


def _session(make_table, rows, headers=HEADERS, contract=COMPANY_CONTRACT):
    session = ImportSession(contract)
    session.load(make_table(headers, rows))
    return session


def test_full_flow_ends_in_report(make_table, recording_endpoint):
    session = _session(
        make_table,
        [
            ("Acme S.r.l.", "IT12345678901", "info@acme.it"),
            ("ACME srl", "12345678901", ""),
            ("Beta", "", "info@beta.it"),
        ],
    )
    assert session.stage is ImportStage.MAPPING
    assert session.blocking_reasons() == ()

    assert session.advance() is ImportStage.SUMMARY
    assert session.mapping.frozen is True
    assert session.stats()["ready"] == 2
    assert session.stats()["duplicates"] == 1

    endpoint = recording_endpoint()
    result = session.run_import(endpoint, chunk_size=1)

    assert session.stage is ImportStage.REPORT
    assert len(endpoint.calls) == 2
    assert result.inserted == 2
    assert str(session.progress) == "2/2"
    assert session.as_dict(include_records=False)["result"]["inserted"] == 2


def test_unmapped_required_field_blocks(make_table):
    session = _session(make_table, [("info@acme.it",)], headers=("Email",))

    assert session.blocking_reasons() == ("unmapped_required", "critical_errors", "nothing_to_import")
    with pytest.raises(StageBlockedError) as excinfo:
        session.advance()
    assert "Map every required field" in str(excinfo.value)
    assert session.stage is ImportStage.MAPPING


def test_remapping_recomputes_records(make_table):
    session = _session(
        make_table,
        [("info@acme.it", "Acme")],
        headers=("Email", "Denominazione Cliente"),
    )
    assert "unmapped_required" in session.blocking_reasons()

    session.assign_mapping("name", "Denominazione Cliente")

    assert session.blocking_reasons() == ()
    assert session.record(0).values["name"] == "Acme"

    session.clear_mapping("name")
    assert session.record(0).values["name"] is None


def test_nothing_to_import_blocks(make_table):
    session = _session(make_table, [("", "", "")])

    assert session.blocking_reasons() == ("nothing_to_import",)


def test_record_lookup_rejects_unknown_rows(make_table):
    session = _session(make_table, [("Acme", "", "")])

    with pytest.raises(LookupError):
        session.record(5)


def test_mapping_changes_are_refused_outside_mapping_stage(make_table):
    session = _session(make_table, [("Acme", "", "")])
    session.advance()

    with pytest.raises(StageTransitionError):
        session.assign_mapping("email", "Email")
    with pytest.raises(StageTransitionError):
        session.begin_edit(0, "name")
    with pytest.raises(StageTransitionError):
        session.advance()


def test_mapping_changes_without_an_upload_raise_stage_errors():
    session = ImportSession(COMPANY_CONTRACT)
    session.stage = ImportStage.MAPPING

    with pytest.raises(StageTransitionError):
        session.assign_mapping("name", "Ragione Sociale")
    with pytest.raises(StageTransitionError):
        session.clear_mapping("name")


def test_going_back_to_mapping_unfreezes(make_table):
    session = _session(make_table, [("Acme", "", "")])
    session.advance()

    assert session.go_back(ImportStage.MAPPING) is ImportStage.MAPPING
    assert session.mapping.frozen is False
    session.assign_mapping("email", "Email")


def test_going_back_to_upload_discards_mapping_and_edits(make_table):
    session = _session(make_table, [("", "12345678901", "")])
    session.begin_edit(0, "name")
    session.commit_edit("Acme")
    session.confirm_edit()
    assert session.record(0).values["name"] == "Acme"

    session.go_back(ImportStage.UPLOAD)

    assert session.stage is ImportStage.UPLOAD
    assert session.mapping is None
    assert session.records == ()
    assert dict(session.corrections.confirmed_edits) == {}
    assert session.table is not None

    session.advance()
    assert session.stage is ImportStage.MAPPING
    assert session.record(0).values["name"] is None


def test_go_back_refuses_forward_or_unknown_moves(make_table):
    session = _session(make_table, [("Acme", "", "")])

    with pytest.raises(StageTransitionError):
        session.go_back(ImportStage.SUMMARY)
    with pytest.raises(StageTransitionError):
        session.go_back(ImportStage.MAPPING)


def test_import_requires_summary_stage(make_table, recording_endpoint):
    session = _session(make_table, [("Acme", "", "")])

    with pytest.raises(StageTransitionError):
        session.run_import(recording_endpoint())


def test_aborted_import_still_reaches_report(make_table, recording_endpoint):
    session = _session(make_table, [(f"Company {index}", "", "") for index in range(3)])
    session.advance()

    with pytest.raises(ImportAbortedError):
        session.run_import(recording_endpoint(fail_on_call=2), chunk_size=2)

    assert session.stage is ImportStage.REPORT
    assert session.result.chunks_completed == 1
    assert "Chunk 2 of 2 failed" in session.error

    session.go_back(ImportStage.SUMMARY)
    assert session.result is None
    assert session.error is None


def test_malformed_response_still_reaches_report(make_table, recording_endpoint):
    session = _session(make_table, [("Acme", "", "")])
    session.advance()
    endpoint = recording_endpoint(responder=lambda call_number, rows: {"inserted": 1, "warnings": 5})

    with pytest.raises(ImportAbortedError):
        session.run_import(endpoint)

    assert session.stage is ImportStage.REPORT
    assert session.result.chunks_completed == 0
    assert session.result.inserted == 0
    assert "malformed 'warnings' field" in session.error


def test_unexpected_endpoint_failure_leaves_importing(make_table):
    class ExplodingEndpoint:
        def submit(self, rows):
            raise KeyError("rows")

    session = _session(make_table, [("Acme", "", "")])
    session.advance()

    with pytest.raises(KeyError):
        session.run_import(ExplodingEndpoint())

    assert session.stage is ImportStage.REPORT
    assert session.result is None
    assert "Import failed unexpectedly" in session.error
    assert session.go_back(ImportStage.SUMMARY) is ImportStage.SUMMARY


def test_confirmed_edit_survives_mapping_changes(make_table):
    session = _session(
        make_table,
        [("Acme", "Acme Holding", "info@acme.it")],
        headers=("Ragione Sociale", "Denominazione Cliente", "Email"),
    )
    session.begin_edit(0, "name")
    session.commit_edit("Acme Italia")
    session.confirm_edit()

    session.assign_mapping("name", "Denominazione Cliente")
    assert session.record(0).values["name"] == "Acme Italia"
    assert "name" in session.record(0).edited_fields

    session.clear_mapping("name")
    assert session.record(0).values["name"] == "Acme Italia"
    assert "name" in session.record(0).edited_fields
    assert session.blocking_reasons() == ("unmapped_required",)


def test_cancelled_import_is_reported(make_table, recording_endpoint):
    session = _session(make_table, [("Acme", "", "")])
    session.advance()

    result = session.run_import(recording_endpoint(), should_cancel=lambda: True)

    assert result.cancelled is True
    assert session.stage is ImportStage.REPORT


def test_investor_session_with_split_name(make_table):
    session = _session(
        make_table,
        [("Ada", "Lovelace", "ada@example.org")],
        headers=("Nome", "Cognome", "Email"),
        contract=INVESTOR_CONTRACT,
    )

    payload = session.as_dict()

    assert payload["mapping"]["first_name"] == "Nome"
    assert payload["records"][0]["values"]["full_name"] == "Ada Lovelace"
    assert payload["ready"] == [0]
    assert payload["edit"]["state"] == "viewing"
