"""
Supply Tracker Backend: Spreadsheet Helpers
=============================================

What:  Reads uploaded .xlsx workbooks into header-keyed row dicts and builds
       downloadable templates.
How:   openpyxl in read-only/data-only mode. Headers are normalized
       ("Item Description" → "item_description") so both the display
       headers of the template and snake_case headers are accepted.
Who:   supply_service (catalog import/template) and patient_service
       (registry import).
"""

from io import BytesIO
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from zipfile import BadZipFile

from openpyxl import Workbook, load_workbook
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import InvalidFileException

from supply_tracker.exceptions import ValidationError

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

# (spreadsheet row number, normalized header → cell value)
SheetRow = Tuple[int, Dict[str, Any]]


def normalize_header(header: Any) -> str:
    if header is None:
        return ""
    return "_".join(str(header).strip().lower().split())


def read_rows(raw: bytes) -> List[SheetRow]:
    """
    Rows of the first worksheet below the header row.

    Row numbers are spreadsheet numbers (the first data row is 2). Fully
    empty rows are skipped.

    Raises:
        ValidationError: empty upload or not a readable .xlsx file
    """
    if not raw:
        raise ValidationError(message="No file uploaded", field="file")

    try:
        wb = load_workbook(BytesIO(raw), read_only=True, data_only=True)
    except (BadZipFile, InvalidFileException, KeyError, OSError):
        raise ValidationError(message="File is not a valid .xlsx workbook", field="file")

    try:
        ws = wb.worksheets[0]
        rows = list(ws.iter_rows(values_only=True))
    finally:
        wb.close()

    if not rows:
        return []

    headers = [normalize_header(h) for h in rows[0]]
    out: List[SheetRow] = []
    for row_number, values in enumerate(rows[1:], start=2):
        if all(v is None or str(v).strip() == "" for v in values):
            continue
        record = {}
        for j, header in enumerate(headers):
            if not header:
                continue
            record[header] = values[j] if j < len(values) else None
        out.append((row_number, record))
    return out


def cell_text(record: Dict[str, Any], *keys: str) -> Optional[str]:
    """First non-blank value among `keys`, as stripped text."""
    for key in keys:
        value = record.get(key)
        if value is None:
            continue
        # numeric codes come back as floats from data-only reads
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        text = str(value).strip()
        if text:
            return text
    return None


def build_workbook(title: str, headers: Sequence[str], sample_rows: Iterable[Sequence[Any]]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = title
    ws.append(list(headers))
    for row in sample_rows:
        ws.append(list(row))

    for idx, header in enumerate(headers, start=1):
        ws.column_dimensions[get_column_letter(idx)].width = max(14, len(header) + 4)

    buf = BytesIO()
    wb.save(buf)
    return buf.getvalue()
