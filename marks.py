"""
Mark aggregation for report cards and provisional certificates.

Everything here is pure computation over StudentTermRecord objects: subject
union and de-duplication, lower-class visibility, per-term values, totals,
percentages and division.
"""

import math
from collections import namedtuple

from errors import NotFoundError, ResultNotAvailableError
from records import TERMS, cell_text, normalize_header

# (terminal, payload key, marks row key)
TERM_KEYS = (
    ('1st', 'first', 'firstTerm'),
    ('2nd', 'second', 'secondTerm'),
    ('3rd', 'third', 'thirdTerm'),
    ('annual', 'annual', 'AnnTerm'),
)

LOWER_CLASSES = {
    'NURSERY-A', 'NURSERY-B', 'NURSERY-C',
    'L.K.G-A', 'L.K.G-B', 'U.K.G-A', 'U.K.G-B',
}
LOWER_CLASS_HIDDEN = ('science', 'sst')

FULL_MARKS = 100
PASS_MARKS = 30
DIVISION_THRESHOLDS = ((60, 'First'), (45, 'Second'), (30, 'Third'))
FAIL = 'Fail'
INCOMPLETE = 'Incomplete'
INCOMPLETE_MARKERS = {'', 'AB', 'NA', '-', '_'}
NOT_APPLICABLE_MARKERS = {'-', '_'}

NEEDS_IMPROVEMENT = 'Needs Improvement.'
ENCOURAGEMENT = 'Keep up the good work!'

NUMERIC = 'numeric'
ABSENT = 'absent'
NOT_APPLICABLE = 'not_applicable'
TEXT = 'text'


def parse_number(value):
    """Return a finite float for numeric cells, else None."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip()
        if not text or '_' in text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    return number if math.isfinite(number) else None


def json_number(value):
    """Integral floats serialize as ints (80.0 -> 80)."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


class MarkValue(namedtuple('MarkValue', ['kind', 'value'])):
    """One subject's obtained value in one term."""

    __slots__ = ()

    @classmethod
    def from_cell(cls, raw):
        text = cell_text(raw)
        if not text:
            return cls(ABSENT, None)
        if text in NOT_APPLICABLE_MARKERS:
            return cls(NOT_APPLICABLE, None)
        number = parse_number(raw)
        if number is not None:
            return cls(NUMERIC, number)
        return cls(TEXT, text)

    def to_json(self):
        if self.kind == NUMERIC:
            return json_number(self.value)
        if self.kind == ABSENT:
            return 'AB'
        if self.kind == NOT_APPLICABLE:
            return 'NA'
        return self.value


def is_lower_class(class_name):
    return (class_name or '').strip().upper() in LOWER_CLASSES


def is_drawing(subject):
    return 'drawing' in str(subject).casefold()


def is_hidden_for_class(subject, class_name):
    if not is_lower_class(class_name):
        return False
    key = normalize_header(subject)
    return any(word in key for word in LOWER_CLASS_HIDDEN)


def unique_subjects(records):
    """Union of subject headers in term order, de-duplicated by normalized form."""
    seen = set()
    subjects = []
    for record in records:
        if record is None:
            continue
        for header in record.subjects:
            key = normalize_header(header)
            if key in seen:
                continue
            seen.add(key)
            subjects.append(header)
    return subjects


def visible_subjects(subjects, class_name):
    return [subject for subject in subjects if not is_hidden_for_class(subject, class_name)]


def total_full_marks(subjects, class_name):
    """Full-marks denominator: counted subjects x 100."""
    counted = [s for s in visible_subjects(subjects, class_name) if not is_drawing(s)]
    return len(counted) * FULL_MARKS


def subject_values(record):
    """Record cells keyed by normalized subject header (first spelling wins)."""
    values = {}
    if record is None:
        return values
    for header, raw in record.subjects.items():
        values.setdefault(normalize_header(header), raw)
    return values


def term_total(record):
    """Sum of numeric cells, drawing excluded."""
    if record is None:
        return 0.0
    total = 0.0
    for header, raw in record.subjects.items():
        if is_drawing(header):
            continue
        number = parse_number(raw)
        if number is not None:
            total += number
    return total


def format_percentage(total, full_marks):
    return f"{(total / (full_marks or 1)) * 100:.2f}"


def division_from_percentage(percentage):
    """Division band for a percentage; lower bounds are inclusive."""
    percentage = float(percentage or 0)
    for minimum, label in DIVISION_THRESHOLDS:
        if percentage >= minimum:
            return label
    return FAIL


def has_incomplete_marks(record):
    if record is None:
        return False
    return any(cell_text(raw).upper() in INCOMPLETE_MARKERS for raw in record.subjects.values())


def terms_through(terminal):
    """Terms shown for a requested terminal (1st < 2nd < 3rd < annual)."""
    return TERMS[:TERMS.index(terminal) + 1]


def subject_row(subject, records, shown_terms):
    graded = is_drawing(subject)
    key = normalize_header(subject)
    row = {
        'subject': subject,
        'fullMarks': 'Grade' if graded else FULL_MARKS,
        'passMarks': '-' if graded else PASS_MARKS,
    }
    for term, _, row_key in TERM_KEYS:
        if term not in shown_terms:
            row[row_key] = 0
            continue
        row[row_key] = MarkValue.from_cell(subject_values(records.get(term)).get(key)).to_json()
    return row


def aggregate_result(records, class_name, terminal):
    """
    Build the marks section of a report card.

    ``records`` maps each term to a StudentTermRecord or None. Raises
    NotFoundError when no term has a row and ResultNotAvailableError when the
    requested terminal has no entered marks.
    """
    ordered = [records.get(term) for term in TERMS]
    if not any(ordered):
        raise NotFoundError('Student not found.')

    subjects = unique_subjects(ordered)
    visible = visible_subjects(subjects, class_name)

    requested = subject_values(records.get(terminal))
    if not any(cell_text(requested.get(normalize_header(subject))) for subject in visible):
        raise ResultNotAvailableError('Result for the selected terminal is not available yet.')

    shown_terms = terms_through(terminal)
    full_marks = total_full_marks(subjects, class_name)

    totals, percentages, division = {}, {}, {}
    for term, key, _ in TERM_KEYS:
        if term not in shown_terms:
            totals[key] = 0
            percentages[key] = format_percentage(0, full_marks)
            division[key] = ''
            continue
        record = records.get(term)
        total = term_total(record)
        totals[key] = json_number(total)
        percentages[key] = format_percentage(total, full_marks)
        if has_incomplete_marks(record):
            division[key] = INCOMPLETE
        else:
            division[key] = division_from_percentage(percentages[key])

    return {
        'marks': [subject_row(subject, records, shown_terms) for subject in visible],
        'totals': totals,
        'totalFullMarks': full_marks,
        'percentages': percentages,
        'division': division,
        'description': NEEDS_IMPROVEMENT if FAIL in division.values() else ENCOURAGEMENT,
    }


def first_present(records, field):
    """First non-blank value of a field across terms, in term order."""
    for term in TERMS:
        record = records.get(term)
        if record is not None:
            value = record.field(field)
            if value:
                return value
    return ''


def certificate_division(record, class_name):
    """Single-term division for a certificate; stored value wins, no Incomplete override."""
    stored = record.field('division')
    if stored:
        return stored
    full_marks = total_full_marks(unique_subjects([record]), class_name)
    return division_from_percentage(format_percentage(term_total(record), full_marks))
