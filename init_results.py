"""
Create an empty results workbook with one sheet per exam term.

Usage:
  python init_results.py [subject ...]

Existing workbooks are left alone.
"""

import os
import sys

import pandas as pd
from dotenv import load_dotenv

from records import DEFAULT_SHEET_NAMES, TERMS

load_dotenv()

RESULTS_WORKBOOK = os.getenv("RESULTS_WORKBOOK", "results.xlsx")
DEFAULT_SUBJECTS = ["Hindi", "English", "Maths", "Science", "S.S.T", "Computer", "Drawing"]


def init_workbook(path, subjects):
    """Write the four term sheets with identity columns and the given subjects."""
    columns = ["Class", "Roll", "Name", "FatherName"] + list(subjects)
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        for term in TERMS:
            pd.DataFrame(columns=columns).to_excel(writer, sheet_name=DEFAULT_SHEET_NAMES[term], index=False)


def main(argv):
    if os.path.exists(RESULTS_WORKBOOK):
        print(f"{RESULTS_WORKBOOK} already exists; nothing to do.")
        return
    subjects = argv or DEFAULT_SUBJECTS
    init_workbook(RESULTS_WORKBOOK, subjects)
    print(f"Created {RESULTS_WORKBOOK} with sheets: {', '.join(DEFAULT_SHEET_NAMES[t] for t in TERMS)}")


if __name__ == "__main__":
    main(sys.argv[1:])
