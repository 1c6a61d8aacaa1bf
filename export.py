import re
from io import BytesIO

import openpyxl

from ledger import balance

INVALID_SHEET_CHARS_RE = re.compile(r"[\[\]:*?/\\]")


def sheet_title(name: str) -> str:
    # Excel: at most 31 chars, no []:*?/\
    title = INVALID_SHEET_CHARS_RE.sub("_", name)[:31]
    return title or "Account"


def build_workbook(name, entries) -> bytes:
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = sheet_title(name)

    ws.append(["Date", "Label", "Amount"])
    for entry in entries:
        ws.append([entry.created_at.strftime("%Y-%m-%d %H:%M"), entry.label, entry.amount])

    ws.append([])
    ws.append(["Total:", None, balance(entries)])

    for column in ws.columns:
        max_length = max(len(str(cell.value)) for cell in column if cell.value is not None)
        ws.column_dimensions[column[0].column_letter].width = max_length + 2

    for row in ws.iter_rows(min_row=2):
        for cell in row:
            if isinstance(cell.value, int):
                cell.number_format = '#,##0'

    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()
