from __future__ import annotations

import io
import json
import re
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Literal

from openpyxl import Workbook
from openpyxl.styles import Font

OutputFormat = Literal["csv", "json", "xlsx"]

SUPPORTED_FORMATS: tuple[OutputFormat, ...] = ("csv", "json", "xlsx")

HEADER: tuple[str, ...] = ("Date", "Description", "Debit", "Credit", "Balance")

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

_AMOUNT_FIELDS = ("debit", "credit", "balance")

# Currency symbols, codes, grouping separators and whitespace.
_AMOUNT_NOISE_RE = re.compile(r"[^0-9.+\-]")
_COMMA_DECIMAL_RE = re.compile(r",\d{1,2}\)?$")


@dataclass(frozen=True)
class EncodedFile:
    body: bytes
    media_type: str
    extension: str


def normalize_format(value: str | None) -> OutputFormat:
    fmt = (value or "").strip().lower()
    if fmt in SUPPORTED_FORMATS:
        return fmt  # type: ignore[return-value]
    return "csv"


def _parse_amount_text(text: str) -> Decimal | None:
    text = text.strip()
    if _COMMA_DECIMAL_RE.search(text):
        return None
    negative = text.startswith("(") and text.endswith(")")
    cleaned = _AMOUNT_NOISE_RE.sub("", text)
    if not cleaned:
        return None
    try:
        d = Decimal(cleaned)
    except InvalidOperation:
        return None
    return -d if negative else d


def format_amount(value: Any) -> str:
    """Plain decimal text for a numeric cell; empty for missing values.

    Strings are read as amounts: currency markers and grouping commas are dropped,
    ``(12.50)`` is negative, and anything that still does not parse renders empty.
    """
    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        try:
            d = Decimal(repr(value))
        except InvalidOperation:
            return ""
        if not d.is_finite():
            return ""
        if d == d.to_integral_value():
            return format(d.quantize(Decimal(1)), "f")
        return format(d.normalize(), "f")
    d = _parse_amount_text(str(value))
    if d is None:
        return ""
    return format(d, "f")


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _row(t: dict[str, Any]) -> list[str]:
    return [
        _text(t.get("date")),
        _text(t.get("description")),
        *(format_amount(t.get(f)) for f in _AMOUNT_FIELDS),
    ]


def _csv_quote(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def encode_csv(transactions: Sequence[dict[str, Any]]) -> bytes:
    lines = [",".join(HEADER)]
    for t in transactions:
        date, description, debit, credit, balance = _row(t)
        lines.append(",".join([date, _csv_quote(description), debit, credit, balance]))
    return "\n".join(lines).encode("utf-8")


def encode_json(transactions: Sequence[dict[str, Any]]) -> bytes:
    return json.dumps(list(transactions), indent=2, ensure_ascii=False).encode("utf-8")


def _tsv_cell(value: str) -> str:
    return value.replace("\t", " ").replace("\r", " ").replace("\n", " ")


def encode_tsv(transactions: Sequence[dict[str, Any]]) -> bytes:
    lines = ["\t".join(HEADER)]
    for t in transactions:
        lines.append("\t".join(_tsv_cell(c) for c in _row(t)))
    return "\n".join(lines).encode("utf-8")


def _cell_number(value: Any) -> Any:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    d = _parse_amount_text(str(value))
    return float(d) if d is not None else None


def encode_workbook(transactions: Sequence[dict[str, Any]]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Transactions"
    ws.append(list(HEADER))
    for cell in ws[1]:
        cell.font = Font(bold=True)
    for t in transactions:
        ws.append(
            [
                _text(t.get("date")),
                _text(t.get("description")),
                *(_cell_number(t.get(f)) for f in _AMOUNT_FIELDS),
            ]
        )
    for col, width in zip("ABCDE", (12, 48, 14, 14, 14), strict=True):
        ws.column_dimensions[col].width = width
    for row in ws.iter_rows(min_row=2, min_col=3, max_col=5):
        for cell in row:
            cell.number_format = "0.00"
    ws.freeze_panes = "A2"
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def encode_transactions(
    transactions: Sequence[dict[str, Any]],
    output_format: str,
    *,
    xlsx_mode: Literal["tsv", "workbook"] = "tsv",
) -> EncodedFile:
    fmt = normalize_format(output_format)
    if fmt == "json":
        return EncodedFile(
            body=encode_json(transactions), media_type="application/json", extension="json"
        )
    if fmt == "xlsx":
        # "tsv" keeps the historical tab-separated payload behind the spreadsheet media type.
        if xlsx_mode == "workbook":
            body = encode_workbook(transactions)
        else:
            body = encode_tsv(transactions)
        return EncodedFile(body=body, media_type=XLSX_MEDIA_TYPE, extension="xlsx")
    return EncodedFile(body=encode_csv(transactions), media_type="text/csv", extension="csv")
