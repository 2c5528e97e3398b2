"""
CSV and PDF export helpers.

CSV uses the standard csv module; PDFs are laid out with reportlab
platypus (title, summary table, one table per section).
"""

import csv
import io
from html import escape
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Sequence

from fastapi import Response
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle

CSV_MEDIA_TYPE = "text/csv"
PDF_MEDIA_TYPE = "application/pdf"

# Leading characters spreadsheet applications treat as formulas
FORMULA_PREFIXES = ("=", "+", "-", "@")


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, "value"):  # enums
        value = value.value
    text = str(value)
    if text.startswith(FORMULA_PREFIXES) and not _is_number(text):
        return "'" + text
    return text


def _is_number(text: str) -> bool:
    try:
        float(text)
    except ValueError:
        return False
    return True


def to_csv(headers: Sequence[str], rows: Iterable[Sequence[Any]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(headers)
    for row in rows:
        writer.writerow([_cell(v) for v in row])
    return buffer.getvalue()


def export_filename(prefix: str, extension: str) -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"{prefix}-{stamp}.{extension}"


def attachment(content: Any, media_type: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def csv_response(headers: Sequence[str], rows: Iterable[Sequence[Any]], prefix: str) -> Response:
    return attachment(to_csv(headers, rows), CSV_MEDIA_TYPE, export_filename(prefix, "csv"))


def build_pdf(
    title: str,
    summary: Optional[dict] = None,
    sections: Sequence[tuple[str, Sequence[str], Sequence[Sequence[Any]]]] = (),
) -> bytes:
    """
    Render a report.

    `sections` is a list of (heading, column headers, rows).
    """
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=1.5 * cm,
        rightMargin=1.5 * cm,
        topMargin=1.5 * cm,
        bottomMargin=1.5 * cm,
        title=title,
    )
    styles = getSampleStyleSheet()
    generated = datetime.now(timezone.utc).strftime("%d/%m/%Y %H:%M UTC")

    content = [
        Paragraph(escape(title), styles["Title"]),
        Paragraph(f"RTO Compliance Hub | Generated {generated}", styles["Normal"]),
        Spacer(1, 0.5 * cm),
    ]

    if summary:
        table = Table(
            [[str(k).replace("_", " ").title(), _cell(v)] for k, v in summary.items()],
            colWidths=[8 * cm, 8 * cm],
        )
        table.setStyle(TableStyle([
            ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
            ("BACKGROUND", (0, 0), (0, -1), colors.whitesmoke),
            ("FONTSIZE", (0, 0), (-1, -1), 9),
        ]))
        content.extend([table, Spacer(1, 0.5 * cm)])

    for heading, headers, rows in sections:
        content.append(Paragraph(heading, styles["Heading2"]))
        if not rows:
            content.append(Paragraph("No records.", styles["Italic"]))
            continue
        data = [list(headers)] + [
            [Paragraph(escape(_cell(v)), styles["BodyText"]) for v in row] for row in rows
        ]
        table = Table(data, repeatRows=1)
        table.setStyle(TableStyle([
            ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#0066cc")),
            ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
            ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
            ("FONTSIZE", (0, 0), (-1, -1), 8),
            ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ]))
        content.extend([table, Spacer(1, 0.4 * cm)])

    doc.build(content)
    return buffer.getvalue()


def pdf_response(pdf: bytes, prefix: str) -> Response:
    return attachment(pdf, PDF_MEDIA_TYPE, export_filename(prefix, "pdf"))
