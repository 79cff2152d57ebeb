import pytest

import marks
from errors import NotFoundError, ResultNotAvailableError
from records import StudentTermRecord, resolve_fields


def make_record(term, **cells):
    row = {"Class": "5TH-A", "Roll": 12, "Name": "Ravi Kumar", "FatherName": "Suresh Kumar"}
    row.update(cells.pop("row", {}))
    row.update(cells)
    return StudentTermRecord(term, row, resolve_fields(row.keys()))


def only(term, record):
    records = {t: None for t in ("1st", "2nd", "3rd", "annual")}
    records[term] = record
    return records


@pytest.mark.parametrize(
    "percentage, expected",
    [
        ("60.00", "First"),
        ("59.99", "Second"),
        ("45.00", "Second"),
        ("44.99", "Third"),
        ("30.00", "Third"),
        ("29.99", "Fail"),
        (100, "First"),
        (0, "Fail"),
    ],
)
def test_division_from_percentage_thresholds(percentage, expected):
    assert marks.division_from_percentage(percentage) == expected


@pytest.mark.parametrize(
    "raw, expected",
    [
        (None, "AB"),
        ("   ", "AB"),
        ("-", "NA"),
        ("_", "NA"),
        ("80", 80),
        (72.5, 72.5),
        (80.0, 80),
        ("A+", "A+"),
        ("80abc", "80abc"),
    ],
)
def test_mark_value_from_cell(raw, expected):
    assert marks.MarkValue.from_cell(raw).to_json() == expected


def test_parse_number_rejects_non_numeric_values():
    assert marks.parse_number(True) is None
    assert marks.parse_number("nan") is None
    assert marks.parse_number("1_000") is None
    assert marks.parse_number(" 42 ") == 42.0


def test_example_with_not_applicable_maths():
    record = make_record("annual", Hindi=80, English=75, Maths="-")
    summary = marks.aggregate_result(only("annual", record), "5TH-A", "annual")

    rows = {row["subject"]: row for row in summary["marks"]}
    assert rows["Maths"]["AnnTerm"] == "NA"
    assert rows["Hindi"]["AnnTerm"] == 80
    assert summary["totals"]["annual"] == 155
    assert summary["totalFullMarks"] == 300
    assert summary["percentages"]["annual"] == "51.67"
    assert summary["division"]["annual"] == "Incomplete"


def test_missing_term_records_show_absent_and_fail():
    record = make_record("annual", Hindi=80, English=75)
    summary = marks.aggregate_result(only("annual", record), "5TH-A", "annual")

    assert summary["marks"][0]["firstTerm"] == "AB"
    assert summary["totals"]["first"] == 0
    assert summary["division"]["first"] == "Fail"
    assert summary["division"]["annual"] == "First"
    assert summary["description"] == "Needs Improvement."


def test_subjects_deduplicate_across_terms_by_normalized_header():
    first = make_record("1st", **{"Social Science": 55, "English": 60})
    second = make_record("2nd", row={"SOCIAL SCIENCE ": 65, "English": 70})
    records = {"1st": first, "2nd": second, "3rd": None, "annual": None}

    summary = marks.aggregate_result(records, "5TH-A", "2nd")

    subjects = [row["subject"] for row in summary["marks"]]
    assert subjects == ["Social Science", "English"]
    assert summary["marks"][0]["secondTerm"] == 65
    assert summary["totalFullMarks"] == 200


def test_lower_class_hides_science_and_sst():
    record = make_record(
        "1st",
        row={"Class": "NURSERY-A", "English": 90, "Science": 80, "S.S.T": 70, "Drawing": "A"},
    )
    summary = marks.aggregate_result(only("1st", record), "NURSERY-A", "1st")

    subjects = [row["subject"] for row in summary["marks"]]
    assert subjects == ["English", "Drawing"]
    assert summary["totalFullMarks"] == 100


def test_drawing_is_graded_and_excluded_from_total():
    record = make_record("1st", English=60, Maths=40, Drawing=95)
    summary = marks.aggregate_result(only("1st", record), "5TH-A", "1st")

    drawing = [row for row in summary["marks"] if row["subject"] == "Drawing"][0]
    assert drawing["fullMarks"] == "Grade"
    assert drawing["passMarks"] == "-"
    assert drawing["firstTerm"] == 95
    assert summary["totals"]["first"] == 100
    assert summary["totalFullMarks"] == 200
    assert summary["percentages"]["first"] == "50.00"
    assert summary["division"]["first"] == "Second"


@pytest.mark.parametrize("marker", ["AB", "ab", "NA", "-", "_", ""])
def test_incomplete_marker_overrides_division(marker):
    record = make_record("1st", English=95, Maths=marker)
    summary = marks.aggregate_result(only("1st", record), "5TH-A", "1st")
    assert summary["division"]["first"] == "Incomplete"


def test_terms_after_terminal_are_not_computed():
    records = {
        "1st": make_record("1st", English=90),
        "2nd": make_record("2nd", English=10),
        "3rd": None,
        "annual": None,
    }
    summary = marks.aggregate_result(records, "5TH-A", "1st")

    assert summary["marks"][0]["secondTerm"] == 0
    assert summary["totals"]["second"] == 0
    assert summary["percentages"]["second"] == "0.00"
    assert summary["division"]["second"] == ""
    assert summary["description"] == "Keep up the good work!"


def test_no_records_is_not_found():
    with pytest.raises(NotFoundError) as exc:
        marks.aggregate_result(only("1st", None), "5TH-A", "1st")
    assert exc.value.message == "Student not found."


def test_requested_terminal_without_marks_is_not_available():
    records = only("1st", make_record("1st", English=90))
    with pytest.raises(ResultNotAvailableError):
        marks.aggregate_result(records, "5TH-A", "2nd")

    records["2nd"] = make_record("2nd", English=None)
    with pytest.raises(ResultNotAvailableError):
        marks.aggregate_result(records, "5TH-A", "2nd")


def test_first_present_prefers_composite_father_header():
    row = {"Class": "5TH-A", "Roll": 1, "Name": "", "FatherName": "Mohan", "Father Name": "Other"}
    first = StudentTermRecord("1st", row, resolve_fields(row.keys()))
    second = make_record("2nd", Name="Asha")
    records = {"1st": first, "2nd": second, "3rd": None, "annual": None}

    assert marks.first_present(records, "father_name") == "Mohan"
    assert marks.first_present(records, "name") == "Asha"


def test_certificate_division_prefers_stored_value():
    record = make_record("annual", English=10, Division="First")
    assert marks.certificate_division(record, "5TH-A") == "First"


def test_certificate_division_has_no_incomplete_override():
    assert marks.certificate_division(make_record("annual", English=50, Maths=40), "5TH-A") == "Second"
    assert marks.certificate_division(make_record("annual", English=70, Maths="AB"), "5TH-A") == "Third"
