"""
Export Service - CSV, Excel, PDF and JSON exports

Two layers:
- render_* turn a list of row dicts into file bytes (pandas for CSV,
  openpyxl for Excel, reportlab for PDF)
- export_to_* write those bytes under the export directory and return the path

ExportService builds the order, product and user exports served by the
/export endpoints.

Author: TM3
Date: 2026-02-25
"""
import io
import json
import os
import re
import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from marketplace.core.config import settings
from marketplace.core.database import get_cursor
from marketplace.core.exceptions import ApiError
from marketplace.core.logging import get_request_logger

logger = logging.getLogger(__name__)

MAX_COLUMN_WIDTH = 50
HEADER_FILL = PatternFill(start_color="E0E0E0", end_color="E0E0E0", fill_type="solid")


class ExportDataType(str, Enum):
    ORDERS = "orders"
    PRODUCTS = "products"
    USERS = "users"
    LOYALTY_POINTS = "loyalty_points"
    LOYALTY_REDEMPTIONS = "loyalty_redemptions"
    LOYALTY_TIERS = "loyalty_tiers"
    LOYALTY_REFERRALS = "loyalty_referrals"


class ExportFormat(str, Enum):
    CSV = "csv"
    EXCEL = "xlsx"
    PDF = "pdf"
    JSON = "json"


MEDIA_TYPES = {
    ExportFormat.CSV: "text/csv",
    ExportFormat.EXCEL: "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ExportFormat.PDF: "application/pdf",
    ExportFormat.JSON: "application/json",
}

TITLES = {
    ExportDataType.ORDERS: "Orders Export",
    ExportDataType.PRODUCTS: "Products Export",
    ExportDataType.USERS: "Users Export",
    ExportDataType.LOYALTY_POINTS: "Loyalty Points Report",
    ExportDataType.LOYALTY_REDEMPTIONS: "Loyalty Redemptions Report",
    ExportDataType.LOYALTY_TIERS: "Loyalty Tiers Report",
    ExportDataType.LOYALTY_REFERRALS: "Loyalty Referrals Report",
}

ORDER_FIELDS = ["order_number", "customer_name", "customer_email", "status", "payment_status",
                "items", "subtotal", "tax", "shipping", "total_amount", "currency", "created_at"]
PRODUCT_FIELDS = ["sku", "name", "vendor", "category", "price", "stock", "is_active",
                  "average_rating", "review_count", "created_at"]
USER_FIELDS = ["email", "first_name", "last_name", "role", "loyalty_points", "orders",
               "total_spent", "created_at"]


# ============================================================================
# Helpers
# ============================================================================

def parse_format(value: str) -> ExportFormat:
    """Accepts csv, xlsx/excel, pdf, json (case-insensitive)"""
    normalized = (value or "").lower()
    if normalized == "excel":
        normalized = "xlsx"
    try:
        return ExportFormat(normalized)
    except ValueError:
        raise ApiError(f"Unsupported export format: {value}", 400)


def format_field_name(field: str) -> str:
    """'orderNumber' / 'order_number' -> 'Order Number'"""
    spaced = re.sub(r"([A-Z])", r" \1", field).replace("_", " ")
    return " ".join(word[:1].upper() + word[1:] for word in spaced.split())


def normalize_value(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, UUID):
        return str(value)
    return value


def project_rows(data: List[Dict], fields: List[str]) -> List[Dict]:
    """Keep only `fields`, in order, with JSON-friendly values"""
    return [{field: normalize_value(row.get(field)) for field in fields} for row in data]


def _require_rows(data: List[Dict], kind: str) -> None:
    if not data:
        raise ApiError(f"No data provided for {kind} export", 400)


def _fields_for(data: List[Dict], fields: Optional[List[str]]) -> List[str]:
    return list(fields) if fields else list(data[0].keys())


def export_filename(data_type: str, extension: str) -> str:
    timestamp = datetime.utcnow().strftime("%Y-%m-%dT%H-%M-%S-%f")
    return f"{data_type}_{timestamp}.{extension}"


# ============================================================================
# Renderers
# ============================================================================

def render_csv(data: List[Dict], fields: List[str]) -> bytes:
    frame = pd.DataFrame(project_rows(data, fields), columns=fields, dtype=object)
    return frame.to_csv(index=False, na_rep="").encode("utf-8")


def render_excel(data: List[Dict], fields: List[str], title: str = "Export") -> bytes:
    wb = Workbook()
    ws = wb.active
    # Sheet titles are limited to 31 characters
    ws.title = title[:31]

    ws.append([format_field_name(f) for f in fields])
    for cell in ws[1]:
        cell.font = Font(bold=True)
        cell.fill = HEADER_FILL

    for row in project_rows(data, fields):
        ws.append(["" if row[f] is None else row[f] for f in fields])

    for idx, column in enumerate(ws.columns, start=1):
        longest = max(len(str(cell.value)) if cell.value is not None else 10 for cell in column)
        ws.column_dimensions[get_column_letter(idx)].width = min(longest + 2, MAX_COLUMN_WIDTH)

    output = io.BytesIO()
    wb.save(output)
    return output.getvalue()


def render_pdf(data: List[Dict], fields: List[str], title: str = "Export") -> bytes:
    output = io.BytesIO()
    doc = SimpleDocTemplate(output, pagesize=landscape(A4), leftMargin=36, rightMargin=36,
                            topMargin=36, bottomMargin=36, title=title)
    styles = getSampleStyleSheet()
    cell_style = styles["BodyText"]
    cell_style.fontSize = 8
    cell_style.leading = 10

    table_data = [[format_field_name(f) for f in fields]]
    for row in project_rows(data, fields):
        table_data.append([Paragraph("" if row[f] is None else str(row[f]), cell_style) for f in fields])

    # repeatRows keeps the header on every page
    table = Table(table_data, repeatRows=1, colWidths=[doc.width / len(fields)] * len(fields))
    table.setStyle(TableStyle([
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, 0), 9),
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#E0E0E0")),
        ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
    ]))

    doc.build([Paragraph(title, styles["Title"]), Spacer(1, 12), table])
    return output.getvalue()


def render_json(data: List[Dict], data_type: str, fields: Optional[List[str]] = None) -> bytes:
    rows = project_rows(data, fields) if fields else [
        {key: normalize_value(value) for key, value in row.items()} for row in data
    ]
    payload = {
        "dataType": data_type,
        "exportDate": datetime.utcnow().isoformat(),
        "totalRecords": len(rows),
        "data": rows,
    }
    return json.dumps(payload, indent=2, default=str).encode("utf-8")


# ============================================================================
# File exports
# ============================================================================

def _write_export(content: bytes, data_type: str, extension: str, directory: Optional[str]) -> str:
    target_dir = directory or settings.EXPORT_DIR
    os.makedirs(target_dir, exist_ok=True)
    path = os.path.join(target_dir, export_filename(data_type, extension))
    with open(path, "wb") as f:
        f.write(content)
    return path


def _export_file(kind: str, extension: str, data: List[Dict], data_type: str, directory: Optional[str],
                 request_id: Optional[str], render) -> str:
    log = get_request_logger(__name__, request_id)
    _require_rows(data, kind)
    log.info(f"Exporting {len(data)} records to {kind} for {data_type}")
    try:
        path = _write_export(render(), data_type, extension, directory)
    except OSError as e:
        log.error(f"Error writing {kind} export: {e}")
        raise ApiError(f"Failed to export to {kind}: {e}", 500)
    log.info(f"{kind} export completed: {path}")
    return path


def export_to_csv(data: List[Dict], fields: Optional[List[str]] = None, data_type: str = "export",
                  directory: Optional[str] = None, request_id: Optional[str] = None) -> str:
    """Write data as CSV under the export directory and return the file path"""
    _require_rows(data, "CSV")
    columns = _fields_for(data, fields)
    return _export_file("CSV", "csv", data, data_type, directory, request_id,
                        lambda: render_csv(data, columns))


def export_to_excel(data: List[Dict], fields: Optional[List[str]] = None, data_type: str = "export",
                    title: Optional[str] = None, directory: Optional[str] = None,
                    request_id: Optional[str] = None) -> str:
    _require_rows(data, "Excel")
    columns = _fields_for(data, fields)
    return _export_file("Excel", "xlsx", data, data_type, directory, request_id,
                        lambda: render_excel(data, columns, title or format_field_name(data_type)))


def export_to_pdf(data: List[Dict], fields: Optional[List[str]] = None, data_type: str = "export",
                  title: Optional[str] = None, directory: Optional[str] = None,
                  request_id: Optional[str] = None) -> str:
    _require_rows(data, "PDF")
    columns = _fields_for(data, fields)
    return _export_file("PDF", "pdf", data, data_type, directory, request_id,
                        lambda: render_pdf(data, columns, title or format_field_name(data_type)))


def export_to_json(data: List[Dict], data_type: str = "export", fields: Optional[List[str]] = None,
                   directory: Optional[str] = None, request_id: Optional[str] = None) -> str:
    """Write {dataType, exportDate, totalRecords, data} as JSON and return the file path"""
    return _export_file("JSON", "json", data, data_type, directory, request_id,
                        lambda: render_json(data, data_type, fields))


def export_to_file(fmt: ExportFormat, data: List[Dict], fields: List[str], data_type: str,
                   directory: Optional[str] = None, request_id: Optional[str] = None) -> str:
    title = TITLES.get(data_type, format_field_name(str(data_type)))
    if fmt == ExportFormat.CSV:
        return export_to_csv(data, fields, data_type, directory, request_id)
    if fmt == ExportFormat.EXCEL:
        return export_to_excel(data, fields, data_type, title, directory, request_id)
    if fmt == ExportFormat.PDF:
        return export_to_pdf(data, fields, data_type, title, directory, request_id)
    return export_to_json(data, data_type, fields, directory, request_id)


def render(fmt: ExportFormat, data: List[Dict], fields: List[str], data_type: ExportDataType) -> bytes:
    title = TITLES[data_type]
    if fmt == ExportFormat.CSV:
        return render_csv(data, fields)
    if fmt == ExportFormat.EXCEL:
        return render_excel(data, fields, title)
    if fmt == ExportFormat.PDF:
        return render_pdf(data, fields, title)
    return render_json(data, data_type.value, fields)


# ============================================================================
# Entity exports
# ============================================================================

class ExportService:

    @staticmethod
    def fetch_orders(vendor_id: Optional[str] = None) -> List[Dict]:
        vendor_filter = ""
        params: List[Any] = []
        if vendor_id:
            vendor_filter = """
                WHERE EXISTS (
                    SELECT 1 FROM order_items voi JOIN products vp ON vp.id = voi.product_id
                    WHERE voi.order_id = o.id AND vp.vendor_id = %s
                )
            """
            params.append(vendor_id)

        with get_cursor() as cursor:
            cursor.execute(f"""
                SELECT o.order_number,
                       TRIM(CONCAT(u.first_name, ' ', u.last_name)) AS customer_name,
                       u.email AS customer_email,
                       o.status, o.payment_status,
                       (SELECT STRING_AGG(p.name || ' x' || oi.quantity, '; ')
                        FROM order_items oi JOIN products p ON p.id = oi.product_id
                        WHERE oi.order_id = o.id) AS items,
                       o.subtotal, o.tax, o.shipping, o.total_amount, o.currency, o.created_at
                FROM orders o
                LEFT JOIN users u ON u.id = o.user_id
                {vendor_filter}
                ORDER BY o.created_at DESC
            """, params)
            return [dict(r) for r in cursor.fetchall()]

    @staticmethod
    def fetch_products(vendor_id: Optional[str] = None) -> List[Dict]:
        where = "WHERE p.vendor_id = %s" if vendor_id else ""
        with get_cursor() as cursor:
            cursor.execute(f"""
                SELECT p.sku, p.name, v.business_name AS vendor, c.name AS category,
                       p.price, p.stock, p.is_active, p.average_rating, p.review_count, p.created_at
                FROM products p
                LEFT JOIN vendors v ON v.id = p.vendor_id
                LEFT JOIN categories c ON c.id = p.category_id
                {where}
                ORDER BY p.created_at DESC
            """, [vendor_id] if vendor_id else [])
            return [dict(r) for r in cursor.fetchall()]

    @staticmethod
    def fetch_users() -> List[Dict]:
        with get_cursor() as cursor:
            cursor.execute("""
                SELECT u.email, u.first_name, u.last_name, u.role, u.loyalty_points,
                       COUNT(o.id) AS orders,
                       COALESCE(SUM(o.total_amount), 0) AS total_spent,
                       u.created_at
                FROM users u
                LEFT JOIN orders o ON o.user_id = u.id
                GROUP BY u.id
                ORDER BY u.created_at DESC
            """)
            return [dict(r) for r in cursor.fetchall()]

    @staticmethod
    def _export(data_type: ExportDataType, rows: List[Dict], fields: List[str], fmt: str,
                request_id: Optional[str]) -> bytes:
        log = get_request_logger(__name__, request_id)
        export_format = parse_format(fmt)
        _require_rows(rows, data_type.value)
        content = render(export_format, rows, fields, data_type)
        log.info(f"Exported {len(rows)} {data_type.value} as {export_format.value} ({len(content)} bytes)")
        return content

    @staticmethod
    def export_orders(fmt: str = "csv", vendor_id: Optional[str] = None, request_id: Optional[str] = None) -> bytes:
        parse_format(fmt)
        rows = ExportService.fetch_orders(vendor_id)
        return ExportService._export(ExportDataType.ORDERS, rows, ORDER_FIELDS, fmt, request_id)

    @staticmethod
    def export_products(fmt: str = "csv", vendor_id: Optional[str] = None,
                        request_id: Optional[str] = None) -> bytes:
        parse_format(fmt)
        rows = ExportService.fetch_products(vendor_id)
        return ExportService._export(ExportDataType.PRODUCTS, rows, PRODUCT_FIELDS, fmt, request_id)

    @staticmethod
    def export_users(fmt: str = "csv", request_id: Optional[str] = None) -> bytes:
        parse_format(fmt)
        rows = ExportService.fetch_users()
        return ExportService._export(ExportDataType.USERS, rows, USER_FIELDS, fmt, request_id)
