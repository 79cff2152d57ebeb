import pandas as pd
import pytest


def write_workbook(path, sheets):
    """Write {sheet_name: [row dict, ...]} to an .xlsx file."""
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        for name, rows in sheets.items():
            pd.DataFrame(rows).to_excel(writer, sheet_name=name, index=False)
    return path


@pytest.fixture
def workbook(tmp_path):
    path = tmp_path / "results.xlsx"

    def _write(sheets):
        return write_workbook(path, sheets)

    return _write
