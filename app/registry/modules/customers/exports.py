from __future__ import annotations

import io
from datetime import date
from typing import Sequence

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter

from app.registry.modules.customers.models import Customer
from app.registry.modules.customers.utils import format_date_br, format_national_id, format_phone

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

TEMPLATE_HEADERS = ("Name", "National ID", "Phone 1", "Phone 2", "Birth Date", "Note")
TEMPLATE_EXAMPLE_ROW = ("Maria da Silva", "529.982.247-25", "(11) 99999-9999", "(11) 3333-4444", "15/01/1990", "")
TEMPLATE_FILENAME = "customers_import_template.xlsx"

EXPORT_HEADERS = ("Name", "National ID", "Age", "Phone 1", "Phone 2", "Note", "Birth Date", "Registered On")


def _fit_columns(ws, rows: Sequence[Sequence[object]]) -> None:
    for col_idx in range(1, ws.max_column + 1):
        width = max((len(str(r[col_idx - 1] or "")) for r in rows if len(r) >= col_idx), default=0)
        ws.column_dimensions[get_column_letter(col_idx)].width = width + 2


def _to_bytes(wb: Workbook) -> bytes:
    out = io.BytesIO()
    wb.save(out)
    return out.getvalue()


def build_import_template() -> bytes:
    """Blank import sheet: the expected headers plus one example row."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Customers"
    ws.append(TEMPLATE_HEADERS)
    ws.append(TEMPLATE_EXAMPLE_ROW)
    for cell in ws[1]:
        cell.font = Font(bold=True)
    _fit_columns(ws, [TEMPLATE_HEADERS, TEMPLATE_EXAMPLE_ROW])
    return _to_bytes(wb)


def export_row(c: Customer) -> tuple:
    return (
        c.full_name,
        format_national_id(c.national_id),
        c.age,
        format_phone(c.phone_primary),
        format_phone(c.phone_secondary) if c.phone_secondary else "",
        c.external_note or "",
        format_date_br(c.birth_date),
        format_date_br(c.created_at),
    )


def export_filename(today: date | None = None) -> str:
    today = today or date.today()
    return f"customers_export_{today.strftime('%d-%m-%Y')}.xlsx"


def build_search_export(customers: Sequence[Customer], *, today: date | None = None) -> tuple[bytes, str]:
    """
    Search results as a workbook, one row per customer, fixed column order.
    Returns (xlsx bytes, download filename stamped with today's date).
    """
    if not customers:
        raise ValueError("No customers to export.")
    rows = [EXPORT_HEADERS] + [export_row(c) for c in customers]
    wb = Workbook()
    ws = wb.active
    ws.title = "Customers"
    for r in rows:
        ws.append(r)
    for cell in ws[1]:
        cell.font = Font(bold=True)
    _fit_columns(ws, rows)
    return _to_bytes(wb), export_filename(today)
