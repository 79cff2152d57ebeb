"""
Workbook-backed record store.

Each exam term lives on its own sheet of one Excel workbook. Sheets are read
fresh on every lookup; the only write is the full-sheet rewrite used when a
provisional certificate number is assigned.
"""

import logging
import math
import re
import threading
from contextlib import contextmanager

import pandas as pd

TERMS = ('1st', '2nd', '3rd', 'annual')

DEFAULT_SHEET_NAMES = {
    '1st': 'result_1st',
    '2nd': 'result_2nd',
    '3rd': 'result_3rd',
    'annual': 'result_annual',
}

# Logical field -> accepted header spellings, most preferred first.
FIELD_CANDIDATES = {
    'class': ['Class'],
    'roll': ['Roll'],
    'name': ['Name'],
    'father_name': ['FatherName', 'Father Name', "Father's Name"],
    'certificate_no': ['PC No', 'PCNo', 'PC_No', 'Certificate No', 'Cert No'],
    'school_name': ['School Name', 'SchoolName'],
    'roll_code': ['Roll Code', 'RollCode'],
    'year': ['Year'],
    'division': ['Division'],
}

CERTIFICATE_HEADER = 'PC No'


def normalize_header(value):
    """Comparable form of a header: case-folded, alphanumerics only."""
    return re.sub(r'[^0-9a-z]+', '', str(value or '').casefold())


def cell_text(value):
    """Render one raw cell as trimmed text ('' for blank)."""
    if value is None:
        return ''
    if isinstance(value, float):
        if math.isnan(value):
            return ''
        if value.is_integer():
            return str(int(value))
    return str(value).strip()


def resolve_fields(headers):
    """Map each logical field to the sheet headers that spell it, best first."""
    headers = list(headers)
    by_normalized = {}
    for header in headers:
        by_normalized.setdefault(normalize_header(header), []).append(header)

    resolved = {}
    for field, candidates in FIELD_CANDIDATES.items():
        matched = []
        # Exact spellings win over loose ones so 'FatherName' beats 'Father Name'.
        for candidate in candidates:
            if candidate in headers and candidate not in matched:
                matched.append(candidate)
        for candidate in candidates:
            for header in by_normalized.get(normalize_header(candidate), []):
                if header not in matched:
                    matched.append(header)
        if matched:
            resolved[field] = matched
    return resolved


class StudentTermRecord:
    """One student's row in one term sheet."""

    def __init__(self, term, row, fields):
        self.term = term
        self.row = row
        self.fields = fields

    def field(self, name):
        for header in self.fields.get(name, ()):
            text = cell_text(self.row.get(header))
            if text:
                return text
        return ''

    @property
    def reserved_headers(self):
        return {header for headers in self.fields.values() for header in headers}

    @property
    def subjects(self):
        reserved = self.reserved_headers
        return {header: value for header, value in self.row.items() if header not in reserved}

    @property
    def class_name(self):
        return self.field('class')

    @property
    def roll(self):
        return self.field('roll')

    @property
    def name(self):
        return self.field('name')

    @property
    def father_name(self):
        return self.field('father_name')

    @property
    def certificate_no(self):
        return self.field('certificate_no')

    def set_field(self, name, value, default_header):
        headers = self.fields.get(name)
        header = headers[0] if headers else default_header
        self.row[header] = value
        self.fields.setdefault(name, [header])

    def matches(self, class_name, roll):
        return (
            self.class_name.upper() == (class_name or '').strip().upper()
            and self.roll == (roll or '').strip()
        )

    def __repr__(self):
        return f"StudentTermRecord({self.term!r}, {self.class_name!r}, {self.roll!r})"


class RecordStore:
    """Reads term sheets from the results workbook on demand."""

    def __init__(self, path, sheet_names=None):
        self.path = path
        self.sheet_names = dict(DEFAULT_SHEET_NAMES)
        if sheet_names:
            self.sheet_names.update(sheet_names)
        self._lock = threading.RLock()

    @contextmanager
    def locked(self):
        """Serialize read-modify-write sequences against the workbook."""
        with self._lock:
            yield self

    def _read_sheet(self, term):
        sheet = self.sheet_names[term]
        try:
            frame = pd.read_excel(self.path, sheet_name=sheet, dtype=object, engine='openpyxl')
        except FileNotFoundError:
            logging.warning("Results workbook not found: %s", self.path)
            return None
        except Exception as exc:
            logging.warning("Could not read sheet '%s' from %s: %s", sheet, self.path, exc)
            return None
        frame.columns = [str(column) for column in frame.columns]
        return frame.astype(object).where(pd.notna(frame), None)

    def load_records(self, term):
        """All rows of a term sheet as records ([] when the sheet is unavailable)."""
        frame = self._read_sheet(term)
        if frame is None:
            return []
        columns = [column for column in frame.columns if not column.startswith('Unnamed:')]
        fields = resolve_fields(columns)
        records = []
        for row in frame[columns].to_dict(orient='records'):
            # Empty cells are left out, so a row only carries the subjects it has.
            cells = {header: value for header, value in row.items() if value is not None}
            records.append(StudentTermRecord(term, cells, {k: list(v) for k, v in fields.items()}))
        return records

    def lookup(self, term, class_name, roll):
        """First row matching (class, roll) in the term sheet, or None."""
        for record in self.load_records(term):
            if record.matches(class_name, roll):
                return record
        return None

    def lookup_all(self, class_name, roll):
        return {term: self.lookup(term, class_name, roll) for term in TERMS}

    def certificate_numbers(self, term):
        return {record.certificate_no for record in self.load_records(term) if record.certificate_no}

    def persist(self, term, record):
        """Write the record's row back by rewriting its whole sheet."""
        sheet = self.sheet_names[term]
        with self.locked():
            frame = self._read_sheet(term)
            if frame is None:
                raise RuntimeError(f"Sheet '{sheet}' is not readable; cannot save record.")
            for header in record.row:
                if header not in frame.columns:
                    frame[header] = None

            fields = resolve_fields(frame.columns)
            target = None
            for index, row in zip(frame.index, frame.to_dict(orient='records')):
                if StudentTermRecord(term, row, fields).matches(record.class_name, record.roll):
                    target = index
                    break
            if target is None:
                raise RuntimeError(
                    f"No row for class {record.class_name} roll {record.roll} in sheet '{sheet}'."
                )
            for header, value in record.row.items():
                frame.at[target, header] = value

            with pd.ExcelWriter(self.path, engine='openpyxl', mode='a', if_sheet_exists='replace') as writer:
                frame.to_excel(writer, sheet_name=sheet, index=False)
        logging.info("Rewrote sheet '%s' for class %s roll %s", sheet, record.class_name, record.roll)
