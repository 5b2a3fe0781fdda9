import csv
import json
import logging
import re
from datetime import date, datetime, timedelta
from io import BytesIO, StringIO
from typing import Optional, Sequence

import pandas as pd

from schemas import RawTransaction, Transaction

logger = logging.getLogger(__name__)

DATE_HEADER = "datum"
TEXT_HEADERS = ("text", "rubrik")
AMOUNT_HEADER = "belopp"

# (date, text, amount) column indices when the header names don't match
CSV_FALLBACK_COLUMNS = (1, 4, 5)
XLSX_FALLBACK_COLUMNS = (0, 3, 4)

EXCEL_EPOCH = date(1899, 12, 30)
EXCEL_SERIAL_MIN = 20000

UNKNOWN_DESCRIPTION = "Okänd transaktion"


class ImportParseError(ValueError):
    pass


def sanitize_csv_value(value: str) -> str:
    """
    Prefix values that a spreadsheet could run as a formula with a tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()
    if value.startswith(("=", "+", "-", "@", "\t", "\r")):
        return "\t" + value
    if re.match(r"^(cmd|powershell|bash|sh)\s*|^http[s]?://", value, re.IGNORECASE):
        return "\t" + value
    return value


def parse_amount(value: object) -> float:
    """Bank amounts like ``-1.234,50`` or ``1 299,00``; unreadable values become 0."""
    if isinstance(value, bool) or value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return 0.0 if value != value else float(value)
    clean = re.sub(r"\s", "", str(value)).replace(".", "").replace(",", ".", 1)
    try:
        return float(clean)
    except ValueError:
        return 0.0


def parse_date(value: object) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if value != value or value <= EXCEL_SERIAL_MIN:
            return None
        return EXCEL_EPOCH + timedelta(days=int(value))

    text = str(value).strip()
    if re.fullmatch(r"\d{8}", text):
        try:
            return datetime.strptime(text, "%Y%m%d").date()
        except ValueError:
            return None
    if re.fullmatch(r"\d{5}(\.0+)?", text):
        return parse_date(float(text))
    for fmt in ("%Y-%m-%d", "%Y/%m/%d", "%d.%m.%Y", "%d/%m/%Y"):
        try:
            return datetime.strptime(text[:10], fmt).date()
        except ValueError:
            continue
    return None


def _cell(value: object) -> str:
    return "" if value is None else str(value).strip().lower()


def find_header_row(rows: Sequence[Sequence[object]]) -> int:
    for index, row in enumerate(rows):
        if any(isinstance(c, str) and DATE_HEADER in c.lower() for c in row):
            return index
    return -1


def resolve_columns(
    header: Sequence[object], fallback: tuple[int, int, int]
) -> tuple[int, int, int]:
    cells = [_cell(c) for c in header]

    def first(*needles: str) -> int:
        for index, cell in enumerate(cells):
            if any(needle in cell for needle in needles):
                return index
        return -1

    found = (first(DATE_HEADER), first(*TEXT_HEADERS), first(AMOUNT_HEADER))
    return tuple(idx if idx > -1 else fb for idx, fb in zip(found, fallback))


def rows_to_raw(
    rows: Sequence[Sequence[object]],
    account_id: str,
    fallback: tuple[int, int, int],
) -> list[RawTransaction]:
    header_index = find_header_row(rows)
    if header_index == -1:
        preview = "\n".join(json.dumps(list(r), default=str) for r in rows[:5])
        raise ImportParseError(
            f"Could not find a header row with a '{DATE_HEADER}' column. "
            f"First rows of the file:\n{preview}"
        )

    date_idx, text_idx, amount_idx = resolve_columns(rows[header_index], fallback)
    width = max(date_idx, text_idx, amount_idx) + 1
    parsed: list[RawTransaction] = []
    skipped = 0
    for row in rows[header_index + 1 :]:
        if len(row) < width:
            continue
        amount = parse_amount(row[amount_idx])
        if amount == 0:
            continue
        day = parse_date(row[date_idx])
        if day is None:
            skipped += 1
            continue
        description = str(row[text_idx] or "").strip() or UNKNOWN_DESCRIPTION
        parsed.append(
            RawTransaction(
                account_id=account_id, date=day, amount=amount, description=description
            )
        )
    if skipped:
        logger.warning(f"bank_file_rows_skipped: reason=bad_date count={skipped}")
    return parsed


def _decode(content: bytes) -> str:
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        return content.decode("iso-8859-1")


def read_csv_rows(content: bytes) -> list[list[str]]:
    text = _decode(content)
    header = next(
        (line for line in text.splitlines() if DATE_HEADER in line.lower()), ""
    )
    delimiter = ","
    for candidate in (";", "\t"):
        if header.count(candidate) > header.count(delimiter):
            delimiter = candidate
    reader = csv.reader(StringIO(text), delimiter=delimiter)
    return [row for row in reader if any(cell.strip() for cell in row)]


def read_xlsx_rows(content: bytes) -> list[list[object]]:
    try:
        frame = pd.read_excel(
            BytesIO(content), sheet_name=0, header=None, dtype=object, engine="openpyxl"
        )
    except Exception as exc:
        raise ImportParseError(f"Could not read spreadsheet: {exc}") from exc
    frame = frame.astype(object).where(pd.notna(frame), "")
    return [
        [c.to_pydatetime() if isinstance(c, pd.Timestamp) else c for c in row]
        for row in frame.values.tolist()
    ]


def parse_bank_file(
    filename: str, content: bytes, account_id: str
) -> list[RawTransaction]:
    if filename.lower().endswith(".csv"):
        return rows_to_raw(read_csv_rows(content), account_id, CSV_FALLBACK_COLUMNS)
    if filename.lower().endswith(".xlsx"):
        return rows_to_raw(read_xlsx_rows(content), account_id, XLSX_FALLBACK_COLUMNS)
    raise ImportParseError(f"Unsupported file type: {filename}")


def export_transactions(transactions: Sequence[Transaction]) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(
        ["Date", "Account", "Type", "Amount", "Description", "Bucket", "Main", "Sub"]
    )
    for txn in transactions:
        writer.writerow(
            [
                txn.date.isoformat(),
                txn.account_id,
                txn.type.value if txn.type else "",
                f"{txn.amount:.2f}",
                sanitize_csv_value(txn.description),
                txn.bucket_id or "",
                txn.category_main_id or "",
                txn.category_sub_id or "",
            ]
        )
    return output.getvalue()
