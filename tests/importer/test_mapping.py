import pytest

from fundops_app.importer.contracts import COMPANY_CONTRACT, INVESTOR_CONTRACT
from fundops_app.importer.mapping import (
    FieldMapping,
    MappingError,
    MappingFrozenError,
    MappingLoadError,
    load_synonym_overrides,
    suggest_mapping,
)

COMPANY_HEADERS = [
    "Ragione Sociale",
    "Partita IVA",
    "Email",
    "PEC",
    "Settore",
    "Sito Web",
    "LinkedIn",
    "Note",
    "Codice SDI",
]


def test_suggest_mapping_matches_italian_company_headers():
    mapping = suggest_mapping(COMPANY_HEADERS, COMPANY_CONTRACT)

    assert mapping.as_dict() == {
        "name": "Ragione Sociale",
        "vat_number": "Partita IVA",
        "email": "Email",
        "pec": "PEC",
        "sector": "Settore",
        "website": "Sito Web",
        "linkedin_profile": "LinkedIn",
        "notes_note": "Note",
        "notes_sdi": "Codice SDI",
    }
    assert mapping.unmapped_headers() == ()
    assert mapping.missing_required() == ()


def test_ambiguous_header_goes_to_first_declared_field():
    # "Ragione Sociale" is a synonym of both name and legal_name.
    mapping = suggest_mapping(["Ragione Sociale"], COMPANY_CONTRACT)

    assert mapping.get("name") == "Ragione Sociale"
    assert mapping.get("legal_name") is None


def test_suggest_mapping_is_case_accent_and_separator_insensitive():
    mapping = suggest_mapping(["COMPANY_NAME", "e-mail", "P.IVA"], COMPANY_CONTRACT)

    assert mapping.get("name") == "COMPANY_NAME"
    assert mapping.get("email") == "e-mail"
    assert mapping.get("vat_number") == "P.IVA"


def test_suggest_mapping_never_fails_on_unknown_headers():
    mapping = suggest_mapping(["foo", "bar"], COMPANY_CONTRACT)

    assert mapping.as_dict() == {}
    assert mapping.missing_required() == ("name",)
    assert mapping.unmapped_headers() == ("foo", "bar")


def test_composite_prefers_single_column():
    mapping = suggest_mapping(["Nome e Cognome", "Nome", "Cognome", "Email"], INVESTOR_CONTRACT)

    assert mapping.get("full_name") == "Nome e Cognome"
    assert mapping.get("first_name") is None
    assert mapping.get("last_name") is None
    assert mapping.composite_mode("full_name") == "single"


def test_composite_split_mode_requires_both_components():
    split = suggest_mapping(["Nome", "Cognome", "E-mail"], INVESTOR_CONTRACT)
    partial = suggest_mapping(["Nome", "E-mail"], INVESTOR_CONTRACT)

    assert split.get("first_name") == "Nome"
    assert split.get("last_name") == "Cognome"
    assert split.composite_mode("full_name") == "split"
    assert split.missing_required() == ()

    assert partial.get("first_name") is None
    assert partial.composite_mode("full_name") is None
    assert partial.missing_required() == ("full_name",)


def test_investor_company_and_linked_in_headers():
    mapping = suggest_mapping(["Nome e Cognome", "Company", "Linked_In"], INVESTOR_CONTRACT)

    assert mapping.get("client_company_raw") == "Company"
    assert mapping.get("linkedin") == "Linked_In"
    assert mapping.get("investor_company_name_raw") is None


def test_assigning_single_mode_clears_split_mode():
    mapping = suggest_mapping(["Nome", "Cognome", "Contatto"], INVESTOR_CONTRACT)
    assert mapping.composite_mode("full_name") == "split"

    mapping.assign("full_name", "Contatto")

    assert mapping.get("full_name") == "Contatto"
    assert mapping.get("first_name") is None
    assert mapping.get("last_name") is None
    assert "full_name" in mapping.explicit_slots

    mapping.assign("first_name", "Nome")
    assert mapping.get("full_name") is None
    assert mapping.composite_mode("full_name") == "split"
    assert mapping.missing_required() == ("full_name",)


def test_assign_rejects_unknown_headers_and_slots():
    mapping = FieldMapping(COMPANY_CONTRACT, ["Ragione Sociale"])

    with pytest.raises(MappingError):
        mapping.assign("name", "Missing Column")
    with pytest.raises(MappingError):
        mapping.assign("not_a_slot", "Ragione Sociale")


def test_frozen_mapping_rejects_changes_until_unfrozen():
    mapping = suggest_mapping(["Ragione Sociale"], COMPANY_CONTRACT)
    mapping.freeze()

    with pytest.raises(MappingFrozenError):
        mapping.clear("name")

    mapping.unfreeze()
    mapping.clear("name")
    assert mapping.get("name") is None


def test_overrides_win_over_heuristics():
    mapping = suggest_mapping(
        ["Ragione Sociale", "Email"],
        COMPANY_CONTRACT,
        overrides={"legal_name": "Ragione Sociale", "email": None},
    )

    assert mapping.get("name") == "Ragione Sociale"
    assert mapping.get("legal_name") == "Ragione Sociale"
    assert mapping.get("email") is None
    assert {"legal_name", "email"} <= mapping.explicit_slots


def test_yaml_synonym_overrides_are_tried_first(tmp_path):
    synonyms_file = tmp_path / "synonyms.yaml"
    synonyms_file.write_text(
        "investors:\n"
        "  full_name:\n"
        "    - Contatto\n"
        "  email: Indirizzo di posta\n",
        encoding="utf-8",
    )

    overrides = load_synonym_overrides(synonyms_file)
    mapping = suggest_mapping(["Contatto", "Indirizzo di posta"], INVESTOR_CONTRACT, synonyms=overrides)

    assert overrides.for_entity("investors")["email"] == ("Indirizzo di posta",)
    assert overrides.for_entity("companies") == {}
    assert len(overrides.checksum) == 64
    assert mapping.get("full_name") == "Contatto"
    assert mapping.get("email") == "Indirizzo di posta"


@pytest.mark.parametrize(
    "contents, message",
    [
        ("donors:\n  name: [x]\n", "Unknown entity"),
        ("companies:\n  nickname: [x]\n", "Unknown slot"),
        ("- just\n- a list\n", "must contain a mapping"),
        ("companies: [unclosed\n", "Failed to parse"),
    ],
)
def test_yaml_synonym_overrides_are_validated(tmp_path, contents, message):
    synonyms_file = tmp_path / "synonyms.yaml"
    synonyms_file.write_text(contents, encoding="utf-8")

    with pytest.raises(MappingLoadError) as excinfo:
        load_synonym_overrides(synonyms_file)
    assert message in str(excinfo.value)


def test_missing_synonym_file_raises(tmp_path):
    with pytest.raises(MappingLoadError):
        load_synonym_overrides(tmp_path / "absent.yaml")
