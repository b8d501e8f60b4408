"""
DFMEA export — spreadsheet (openpyxl) and paginated PDF (reportlab).

All functions are pure projections of already-resolved records and return an
in-memory buffer ready for Flask's send_file or for writing to disk.
"""

from __future__ import annotations

import io
from datetime import datetime, timezone
from typing import Any, Optional
from xml.sax.saxutils import escape

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from doc_schema import FailureAnalysis, ResolvedFailureAnalysis, RiskSummary

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
PDF_MIMETYPE = "application/pdf"

NO_PREVENTION = "No prevention control defined"
NO_DETECTION = "No detection control defined"
NOT_RATED = "N/A"

HEADER_FILL = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True, size=11)
SECTION_FONT = Font(bold=True, size=11)
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)
RISK_FILLS = {
    "critical": PatternFill(start_color="C0392B", end_color="C0392B", fill_type="solid"),
    "high": PatternFill(start_color="E67E22", end_color="E67E22", fill_type="solid"),
    "medium": PatternFill(start_color="F1C40F", end_color="F1C40F", fill_type="solid"),
    "low": PatternFill(start_color="27AE60", end_color="27AE60", fill_type="solid"),
}


def _rating(value: Optional[int]) -> Any:
    return value if value else NOT_RATED


def failure_analysis_sections(entry: ResolvedFailureAnalysis) -> list[tuple[str, list[tuple[str, Any]]]]:
    """
    The report as (section heading, [(label, value), ...]) pairs.

    Shared by every single-entry format so the spreadsheet and the PDF never
    drift apart. Missing links and ratings become explicit placeholders.
    """
    failure = [
        ("DFMEA ID", entry.id),
        ("Generic Failure", entry.generic_failure),
        ("Failure Mode", entry.failure_mode),
        ("Cause", entry.cause),
        ("Car Part", entry.car_part),
        ("Status", entry.status),
    ]

    prevention: list[tuple[str, Any]]
    pc = entry.prevention_control
    if pc is not None and pc.edps_data is not None:
        prevention = [
            ("EDPS Norm Number", pc.edps_data.norm_number),
            ("EDPS Title", pc.edps_data.title),
            ("Description", pc.edps_data.description),
        ]
    else:
        prevention = [("", NO_PREVENTION)]

    detection: list[tuple[str, Any]]
    dc = entry.detection_control
    if dc is not None and dc.dvp_data is not None:
        detection = [
            ("DVP Procedure ID", dc.dvp_data.procedure_id),
            ("Test Name", dc.dvp_data.test_name),
            ("Acceptance Criteria", dc.dvp_data.acceptance_criteria),
        ]
    else:
        detection = [("", NO_DETECTION)]

    ratings = [
        ("Severity", _rating(entry.severity)),
        ("Occurrence", _rating(entry.occurrence)),
        ("Detection", _rating(entry.detection)),
        ("RPN (Risk Priority Number)", _rating(entry.rpn)),
        ("Risk Level", entry.risk_level),
    ]

    return [
        ("Failure Information", failure),
        ("Prevention Control", prevention),
        ("Detection Control", detection),
        ("Risk Assessment", ratings),
    ]


# ── Spreadsheet ──────────────────────────────────────────────────────────────

def _header_row(ws, headers: list[str], widths: list[int], row: int = 1) -> None:
    for col, header in enumerate(headers, 1):
        cell = ws.cell(row=row, column=col, value=header)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.border = THIN_BORDER
        ws.column_dimensions[get_column_letter(col)].width = widths[col - 1]


def _to_buffer(wb: Workbook) -> io.BytesIO:
    buf = io.BytesIO()
    wb.save(buf)
    buf.seek(0)
    return buf


def failure_analysis_xlsx(entry: ResolvedFailureAnalysis) -> io.BytesIO:
    """Two-column Field / Value workbook for a single DFMEA entry."""
    wb = Workbook()
    ws = wb.active
    ws.title = "DFMEA"
    _header_row(ws, ["Field", "Value"], [30, 50])

    row = 1
    for heading, fields in failure_analysis_sections(entry):
        row += 1
        ws.cell(row=row, column=1, value=heading).font = SECTION_FONT
        for label, value in fields:
            row += 1
            ws.cell(row=row, column=1, value=f"  - {label}" if label else "")
            value_cell = ws.cell(row=row, column=2, value=value)
            value_cell.alignment = Alignment(wrap_text=True, vertical="top")
        row += 1  # blank separator

    return _to_buffer(wb)


SUMMARY_COLUMNS = [
    ("ID", 10),
    ("Generic Failure", 25),
    ("Failure Mode", 25),
    ("Cause", 25),
    ("Prevention (EDPS)", 20),
    ("Detection (DVP)", 20),
    ("Severity", 10),
    ("Occurrence", 11),
    ("Detection", 10),
    ("RPN", 8),
    ("Risk Level", 11),
    ("Status", 10),
]


def failure_analyses_xlsx(entries: list[FailureAnalysis], summary: RiskSummary) -> io.BytesIO:
    """One row per DFMEA entry, plus a risk summary sheet."""
    wb = Workbook()
    ws = wb.active
    ws.title = "DFMEA List"
    _header_row(ws, [c[0] for c in SUMMARY_COLUMNS], [c[1] for c in SUMMARY_COLUMNS])

    for i, entry in enumerate(entries, 2):
        linked_edps = entry.prevention_control is not None and bool(entry.prevention_control.edps_id)
        linked_dvp = entry.detection_control is not None and bool(entry.detection_control.dvp_id)
        values = [
            entry.id[:8],
            entry.generic_failure,
            entry.failure_mode,
            entry.cause,
            "Linked" if linked_edps else "None",
            "Linked" if linked_dvp else "None",
            entry.severity,
            entry.occurrence,
            entry.detection,
            entry.rpn,
            entry.risk_level,
            entry.status,
        ]
        for col, value in enumerate(values, 1):
            ws.cell(row=i, column=col, value=value).border = THIN_BORDER
        level_cell = ws.cell(row=i, column=11)
        if entry.risk_level in RISK_FILLS:
            level_cell.fill = RISK_FILLS[entry.risk_level]

    ws2 = wb.create_sheet("Summary")
    _header_row(ws2, ["Metric", "Value"], [22, 12])
    rows = [
        ("Total entries", summary.total_entries),
        ("Critical (≥400)", summary.critical_count),
        ("High (200–399)", summary.high_count),
        ("Medium (100–199)", summary.medium_count),
        ("Low (<100)", summary.low_count),
        ("Not rated", summary.unrated_count),
        ("Max RPN", summary.max_rpn),
        ("Avg RPN", summary.avg_rpn),
    ]
    for i, (label, value) in enumerate(rows, 2):
        ws2.cell(row=i, column=1, value=label).border = THIN_BORDER
        ws2.cell(row=i, column=2, value=value).border = THIN_BORDER

    return _to_buffer(wb)


# ── PDF ──────────────────────────────────────────────────────────────────────

def _paragraph(text: Any, style) -> Paragraph:
    return Paragraph(escape(str(text)).replace("\n", "<br/>"), style)


def failure_analysis_pdf(entry: ResolvedFailureAnalysis, generated_at: Optional[datetime] = None) -> io.BytesIO:
    """Paginated A4 report with one section per heading and a per-page footer."""
    generated_at = generated_at or datetime.now(timezone.utc)
    styles = getSampleStyleSheet()
    title_style = ParagraphStyle("DFMEATitle", parent=styles["Title"], alignment=TA_CENTER)
    heading_style = styles["Heading2"]
    body_style = styles["BodyText"]

    story: list[Any] = [_paragraph("DFMEA Report", title_style), Spacer(1, 0.5 * cm)]
    for heading, fields in failure_analysis_sections(entry):
        story.append(_paragraph(heading, heading_style))
        rows = [
            [_paragraph(label, body_style), _paragraph(value, body_style)] if label
            else [_paragraph(value, body_style), ""]
            for label, value in fields
        ]
        table = Table(rows, colWidths=[5.5 * cm, 11 * cm])
        table.setStyle(TableStyle([
            ("VALIGN", (0, 0), (-1, -1), "TOP"),
            ("LINEBELOW", (0, 0), (-1, -1), 0.25, colors.lightgrey),
        ]))
        story.append(table)
        story.append(Spacer(1, 0.6 * cm))

    footer = f"Generated: {generated_at.strftime('%Y-%m-%d %H:%M UTC')}  |  Document ID: {entry.id}"

    def _draw_footer(canvas, doc) -> None:
        canvas.saveState()
        canvas.setFont("Helvetica", 8)
        canvas.drawCentredString(A4[0] / 2, 1.2 * cm, f"{footer}  |  Page {doc.page}")
        canvas.restoreState()

    buf = io.BytesIO()
    doc = SimpleDocTemplate(
        buf,
        pagesize=A4,
        leftMargin=2 * cm,
        rightMargin=2 * cm,
        topMargin=2 * cm,
        bottomMargin=2 * cm,
        title=f"DFMEA {entry.id}",
    )
    doc.build(story, onFirstPage=_draw_footer, onLaterPages=_draw_footer)
    buf.seek(0)
    return buf
