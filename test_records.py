import pandas as pd

from records import RecordStore, StudentTermRecord, resolve_fields

ROWS_1ST = [
    {"Class": "5TH-A", "Roll": 12, "Name": "Ravi", "FatherName": "Suresh", "Hindi": 80, "English": 75},
    {"Class": "5th-b ", "Roll": 3, "Name": "Asha", "FatherName": "Mohan", "Hindi": 60, "English": 65},
]
ROWS_ANNUAL = [
    {"Class": "NURSERY-A", "Roll": 7, "Name": "Tara", "Father Name": "Dev", "English": 90, "Drawing": "A"},
]


def test_resolve_fields_prefers_exact_spelling_and_accepts_variants():
    fields = resolve_fields(["Class", "Roll", "Father Name", "FatherName", "PC_No", "Hindi"])
    assert fields["father_name"] == ["FatherName", "Father Name"]
    assert fields["certificate_no"] == ["PC_No"]
    assert "Hindi" not in {h for headers in fields.values() for h in headers}


def test_record_subjects_exclude_reserved_fields():
    row = {"Class": "5TH-A", "Roll": 1, "Name": "X", "Father Name": "Y", "PC No": "000123456", "Year": "2025", "Maths": 50}
    record = StudentTermRecord("annual", row, resolve_fields(row.keys()))
    assert list(record.subjects) == ["Maths"]
    assert record.certificate_no == "000123456"


def test_lookup_matches_class_case_insensitively_and_roll_as_text(workbook):
    path = workbook({"result_1st": ROWS_1ST})
    store = RecordStore(path)

    record = store.lookup("1st", "5TH-B", "3")
    assert record is not None
    assert record.name == "Asha"
    assert store.lookup("1st", " 5th-a ", " 12 ").name == "Ravi"
    assert store.lookup("1st", "5TH-A", "012") is None
    assert store.lookup("1st", "5TH-A", "99") is None


def test_lookup_degrades_to_none_when_sheet_or_workbook_missing(tmp_path, workbook):
    assert RecordStore(tmp_path / "missing.xlsx").lookup("1st", "5TH-A", "12") is None

    path = workbook({"result_1st": ROWS_1ST})
    store = RecordStore(path)
    assert store.lookup("annual", "5TH-A", "12") is None
    assert store.lookup_all("5TH-A", "12")["1st"].name == "Ravi"


def test_lookup_treats_corrupt_workbook_as_no_data(tmp_path):
    path = tmp_path / "results.xlsx"
    path.write_text("not a workbook")
    assert RecordStore(path).lookup("1st", "5TH-A", "12") is None


def test_persist_rewrites_sheet_and_keeps_other_sheets(workbook):
    path = workbook({"result_1st": ROWS_1ST, "result_annual": ROWS_ANNUAL})
    store = RecordStore(path)

    record = store.lookup("annual", "NURSERY-A", "7")
    assert record.certificate_no == ""
    record.set_field("certificate_no", "000654321", "PC No")
    store.persist("annual", record)

    again = store.lookup("annual", "nursery-a", "7")
    assert again.certificate_no == "000654321"
    assert again.father_name == "Dev"
    assert store.certificate_numbers("annual") == {"000654321"}
    assert pd.ExcelFile(path).sheet_names == ["result_1st", "result_annual"]
    assert store.lookup("1st", "5TH-A", "12").name == "Ravi"
