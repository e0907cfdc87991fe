import io
import logging
from pathlib import Path
from typing import List

import pandas as pd
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from .errors import WriteError
from .models import AttendanceReport, ReportFormat

logger = logging.getLogger(__name__)

REPORT_TITLE = "Attendance Report"
REPORT_COLUMNS = ["Name", "Surname", "ID", "Normal", "Late", "Absent", "Score"]

# relative column widths of the PDF table
PDF_COLUMN_WEIGHTS = [3, 3, 2, 1, 1, 1, 2]
HEADER_COLOR = colors.Color(38 / 255, 139 / 255, 210 / 255)
TITLE_COLOR = colors.Color(108 / 255, 113 / 255, 196 / 255)
ROW_COLORS = (colors.Color(88 / 255, 110 / 255, 117 / 255), colors.Color(101 / 255, 123 / 255, 131 / 255))


def format_score(score: float, total_points: float) -> str:
    return f"{score:.1f}/{total_points:.1f}"


def report_rows(report: AttendanceReport) -> List[List[str]]:
    return [
        [s.name, s.surname, s.id, str(s.normal), str(s.late), str(s.absent), format_score(s.score, report.total_points)]
        for s in report.students
    ]


def report_frame(report: AttendanceReport) -> pd.DataFrame:
    return pd.DataFrame(report_rows(report), columns=REPORT_COLUMNS)


def render_csv(report: AttendanceReport) -> bytes:
    return report_frame(report).to_csv(index=False, lineterminator="\n").encode("utf-8")


def render_text(report: AttendanceReport) -> bytes:
    return report_frame(report).to_csv(index=False, sep="\t", lineterminator="\n").encode("utf-8")


def render_xlsx(report: AttendanceReport) -> bytes:
    meta_rows = [
        ["Sessions processed", report.sessions],
        ["Students", len(report.students)],
        ["Total points", report.total_points],
    ]
    if report.config is not None:
        meta_rows += [
            ["Class start", report.config.class_start.strftime("%H:%M")],
            ["Late after (minutes)", report.config.late_minutes],
            ["Absent after (minutes)", report.config.absent_minutes],
            ["Late penalty", report.config.late_penalty],
            ["Absent penalty", report.config.absent_penalty],
        ]
    meta_df = pd.DataFrame(meta_rows, columns=["Metric", "Value"])
    last_err = None
    for engine in ("openpyxl", "xlsxwriter"):
        buf = io.BytesIO()
        try:
            with pd.ExcelWriter(buf, engine=engine) as w:
                report_frame(report).to_excel(w, index=False, sheet_name="Attendance")
                meta_df.to_excel(w, index=False, sheet_name="Meta")
        except Exception as e:
            logger.warning("Excel engine %s failed: %s", engine, e)
            last_err = e
            continue
        return buf.getvalue()
    raise WriteError(f"Failed to write Excel report: {last_err}")


def render_pdf(report: AttendanceReport) -> bytes:
    buf = io.BytesIO()
    doc = SimpleDocTemplate(buf, pagesize=A4, title=REPORT_TITLE)

    title_style = ParagraphStyle(
        "ReportTitle", fontName="Helvetica-Bold", fontSize=20, leading=24, alignment=TA_CENTER, textColor=TITLE_COLOR
    )
    unit = doc.width / sum(PDF_COLUMN_WEIGHTS)
    table = Table([REPORT_COLUMNS] + report_rows(report), colWidths=[w * unit for w in PDF_COLUMN_WEIGHTS], repeatRows=1)
    style = [
        ("GRID", (0, 0), (-1, -1), 0.5, colors.black),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("TEXTCOLOR", (0, 0), (-1, 0), HEADER_COLOR),
        ("TOPPADDING", (0, 0), (-1, -1), 2),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 2),
    ]
    for i in range(len(report.students)):
        style.append(("TEXTCOLOR", (0, i + 1), (-1, i + 1), ROW_COLORS[i % 2]))
    table.setStyle(TableStyle(style))

    doc.build([Paragraph(REPORT_TITLE, title_style), Spacer(1, 12), table])
    return buf.getvalue()


RENDERERS = {
    ReportFormat.CSV: render_csv,
    ReportFormat.TXT: render_text,
    ReportFormat.PDF: render_pdf,
    ReportFormat.XLSX: render_xlsx,
}


def render_report(report: AttendanceReport, fmt: ReportFormat) -> bytes:
    try:
        return RENDERERS[fmt](report)
    except WriteError:
        raise
    except Exception as exc:
        raise WriteError(f"Failed to render {fmt.label} report: {exc}") from exc


def output_path(path, fmt: ReportFormat) -> Path:
    """PDF reports always carry a .pdf extension; other formats keep the chosen name."""
    path = Path(path)
    if fmt is ReportFormat.PDF and path.suffix.lower() != ".pdf":
        return path.with_suffix(".pdf")
    return path


def save_report(report: AttendanceReport, fmt: ReportFormat, path) -> Path:
    data = render_report(report, fmt)
    target = output_path(path, fmt)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
    except OSError as exc:
        raise WriteError(f"Failed to write {fmt.label} report to {target}: {exc}") from exc
    logger.info("Saved %s report with %d students to %s", fmt.label, len(report.students), target)
    return target
