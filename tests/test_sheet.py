import pytest
from httplib2 import HttpLib2Error

from conftest import FakeWorkspace, http_error
from folder_grants.errors import SheetSchemaError
from folder_grants.sheet import (
    ParticipantSheet,
    SheetSchema,
    build_records,
    column_letter,
    missing_status_columns,
    quote_sheet_name,
)


@pytest.mark.parametrize(
    "index, letters",
    [(0, "A"), (25, "Z"), (26, "AA"), (51, "AZ"), (701, "ZZ"), (702, "AAA")],
)
def test_column_letter(index: int, letters: str) -> None:
    assert column_letter(index) == letters


def test_quote_sheet_name_escapes_apostrophes() -> None:
    assert quote_sheet_name("Peserta's list") == "'Peserta''s list'"


@pytest.mark.parametrize(
    "name_header, email_header",
    [
        ("Nama Peserta", "Email Address"),
        ("  NAME ", "E-Mail"),
        ("full_name", "GMAIL"),
        ("Participant   Name", "participant email"),
    ],
)
def test_schema_accepts_header_synonyms(name_header: str, email_header: str) -> None:
    header = ["No", name_header, email_header, "FolderId", "isShared", "isFolderExists", "LastLog"]
    schema = SheetSchema.from_header(header)

    assert (schema.name, schema.email) == (1, 2)
    assert (schema.folder_id, schema.is_shared, schema.is_folder_exists, schema.last_log) == (
        3,
        4,
        5,
        6,
    )


def test_schema_requires_name_and_email() -> None:
    with pytest.raises(SheetSchemaError, match="Name/email"):
        SheetSchema.from_header(["Nama", "Phone", "FolderId", "isShared", "isFolderExists", "LastLog"])


def test_missing_status_columns_keeps_canonical_order() -> None:
    assert missing_status_columns(["Nama", "Email", "LastLog", "isshared"]) == [
        "FolderId",
        "isFolderExists",
    ]


def test_ensure_schema_appends_missing_columns_once() -> None:
    workspace = FakeWorkspace([["No", "Nama", "Email"], ["1", "Jane", "jane@ex.com"]])
    sheet = ParticipantSheet(workspace, "sheet-1", "participants")

    schema = sheet.ensure_schema()

    assert workspace.header() == [
        "No",
        "Nama",
        "Email",
        "FolderId",
        "isShared",
        "isFolderExists",
        "LastLog",
    ]
    assert schema.last_log == 6

    sheet.ensure_schema()
    assert len(workspace.header()) == 7


def test_ensure_schema_rejects_empty_sheet() -> None:
    sheet = ParticipantSheet(FakeWorkspace([]), "sheet-1", "participants")

    with pytest.raises(SheetSchemaError, match="empty"):
        sheet.ensure_schema()


def test_load_records_requires_data_rows() -> None:
    sheet = ParticipantSheet(FakeWorkspace([["Name", "Email"]]), "sheet-1", "participants")

    with pytest.raises(SheetSchemaError, match="No participant rows"):
        sheet.load_records()


def test_build_records_handles_short_rows() -> None:
    header = ["Name", "Email", "FolderId", "isShared", "isFolderExists", "LastLog"]
    values = [header, ["Jane", "jane@ex.com", "f1", "TRUE"], [], ["Bob"]]

    records = build_records(values, SheetSchema.from_header(header))

    assert [r.row_index for r in records] == [2, 3, 4]
    assert records[0].folder_id == "f1"
    assert records[0].already_shared
    assert records[1].name == "" and records[1].folder_id is None
    assert records[2].email == ""


def test_write_targets_columns_from_header() -> None:
    workspace = FakeWorkspace(
        [["LastLog", "Email", "isShared", "Name", "FolderId", "isFolderExists"], ["", "a@b.c", "", "A"]]
    )
    sheet = ParticipantSheet(workspace, "sheet-1", "participants")
    sheet.ensure_schema()

    assert sheet.write(2, {"isShared": "TRUE", "LastLog": "done"}) is True
    assert workspace.rows[1][0] == "done"
    assert workspace.rows[1][2] == "TRUE"


def test_write_failure_is_reported_not_raised() -> None:
    workspace = FakeWorkspace([["Name", "Email"], ["A", "a@b.c"]])
    sheet = ParticipantSheet(workspace, "sheet-1", "participants")
    sheet.ensure_schema()
    workspace.fail("sheets.batch", http_error(400, "badRequest"))

    assert sheet.write(2, {"LastLog": "x"}) is False


@pytest.mark.parametrize(
    "error",
    [HttpLib2Error("connection reset"), TimeoutError("timed out"), ConnectionResetError()],
)
def test_write_transport_failure_is_reported_not_raised(error: Exception) -> None:
    workspace = FakeWorkspace([["Name", "Email"], ["A", "a@b.c"]])
    sheet = ParticipantSheet(workspace, "sheet-1", "participants")
    sheet.ensure_schema()
    workspace.fail("sheets.batch", error)

    assert sheet.write(2, {"LastLog": "x"}) is False
    assert sheet.write(2, {"LastLog": "y"}) is True
    assert workspace.cell(2, "LastLog") == "y"


def test_write_rejects_header_row() -> None:
    workspace = FakeWorkspace([["Name", "Email"], ["A", "a@b.c"]])
    sheet = ParticipantSheet(workspace, "sheet-1", "participants")
    sheet.ensure_schema()

    with pytest.raises(ValueError):
        sheet.write(1, {"LastLog": "x"})
