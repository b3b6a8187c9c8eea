"""
Driver Logbook – CSV, PDF and Excel exports of daily reports.

All exporters sort their input by date (oldest first) before rendering, and
all of them turn a rendering failure into a single :class:`ExportError`.
"""

import csv
import io
from datetime import datetime

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.cidfonts import UnicodeCIDFont
from reportlab.pdfgen import canvas

from calculations import (
    ValidationError,
    format_distance,
    format_duration,
    minutes_to_hours,
    report_distance,
    report_duration_minutes,
    round_half_up,
    sort_by_date,
)

BOM = "\ufeff"

CSV_SCHEMAS = ("basic", "detailed", "accounting")
EXPORT_FORMATS = CSV_SCHEMAS + ("pdf", "xlsx")

# Labels used for generated file names; override per locale.
EXPORT_LABELS = {
    "record": "日報",
    "basic": "基本",
    "detailed": "詳細",
    "accounting": "経理用",
    "pdf": "月次レポート",
    "xlsx": "集計表",
}

FORMAT_DISPLAY_NAMES = {
    "basic": "基本形式 (CSV)",
    "detailed": "詳細形式 (CSV)",
    "accounting": "経理用形式 (CSV)",
    "pdf": "月次レポート (PDF)",
    "xlsx": "集計表 (Excel)",
}

WEEKDAYS_JA = "月火水木金土日"


class ExportError(Exception):
    """An export could not be produced."""

    def __init__(self, message="エクスポートに失敗しました"):
        super().__init__(message)


def _text(value):
    return "" if value is None else str(value)


def _timestamp(value):
    return value.strftime("%Y-%m-%d %H:%M") if value else ""


# ---------------------------------------------------------------------------
# CSV
# ---------------------------------------------------------------------------
BASIC_HEADERS = [
    "日付", "稼働", "開始時刻", "終了時刻", "距離(km)", "配送件数", "高速代", "備考",
]

DETAILED_HEADERS = [
    "日付", "稼働状況", "開始時刻", "終了時刻", "作業時間", "走行距離(km)",
    "配送件数", "高速代", "備考", "作成日", "更新日",
]

ACCOUNTING_HEADERS = [
    "作業日", "稼働フラグ", "開始", "終了", "時間", "距離", "配送件数", "高速代", "メモ",
]


def _basic_row(report, rollover_max):
    return [
        report.date.isoformat(),
        "○" if report.is_worked else "×",
        report.start_time or "",
        report.end_time or "",
        format_distance(report_distance(report, rollover_max)),
        _text(report.deliveries),
        _text(report.highway_fee),
        report.notes or "",
    ]


def _detailed_row(report, rollover_max):
    return [
        report.date.isoformat(),
        "稼働" if report.is_worked else "休日",
        report.start_time or "",
        report.end_time or "",
        format_duration(report_duration_minutes(report)),
        format_distance(report_distance(report, rollover_max)),
        _text(report.deliveries),
        _text(report.highway_fee),
        report.notes or "",
        _timestamp(report.created_at),
        _timestamp(report.updated_at),
    ]


def _accounting_row(report, rollover_max):
    return [
        report.date.strftime("%Y/%m/%d"),
        "1" if report.is_worked else "0",
        report.start_time or "",
        report.end_time or "",
        minutes_to_hours(report_duration_minutes(report)),
        format_distance(report_distance(report, rollover_max)),
        _text(report.deliveries),
        _text(report.highway_fee),
        report.notes or "",
    ]


_CSV_LAYOUTS = {
    "basic": (BASIC_HEADERS, _basic_row),
    "detailed": (DETAILED_HEADERS, _detailed_row),
    "accounting": (ACCOUNTING_HEADERS, _accounting_row),
}


def generate_csv(reports, schema="basic", rollover_max=None):
    """
    Render reports as CSV text in one of :data:`CSV_SCHEMAS`.

    The result starts with a UTF-8 byte-order mark and uses CRLF line
    endings so that spreadsheet software detects the encoding.
    """
    if schema not in _CSV_LAYOUTS:
        raise ValidationError(f"Unsupported export format: {schema}")
    headers, build_row = _CSV_LAYOUTS[schema]

    try:
        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\r\n")
        writer.writerow(headers)
        for report in sort_by_date(reports):
            writer.writerow(build_row(report, rollover_max))
    except Exception as exc:
        raise ExportError("CSVエクスポートに失敗しました") from exc
    return BOM + buf.getvalue()


# ---------------------------------------------------------------------------
# PDF
# ---------------------------------------------------------------------------
PDF_FONT = "HeiseiKakuGo-W5"
PAGE_WIDTH, PAGE_HEIGHT = A4
MARGIN = 20  # mm, all four sides
CONTENT_WIDTH = 210 - 2 * MARGIN
LINE_HEIGHT = 5
PAGE_BREAK_AT = 250  # mm from the top edge
FONT_SIZES = {"title": 16, "subtitle": 12, "body": 10, "small": 8}
BLACK = colors.HexColor("#000000")
GRAY = colors.HexColor("#666666")
LIGHT_GRAY = colors.HexColor("#CCCCCC")

TABLE_HEADERS = ["日付", "稼働", "開始", "終了", "時間", "距離(km)", "備考"]
COLUMN_WIDTHS = [25, 15, 20, 20, 25, 20, 45]
NOTES_MAX_CHARS = 18

_fonts_registered = False


def _register_fonts():
    global _fonts_registered
    if not _fonts_registered:
        pdfmetrics.registerFont(UnicodeCIDFont(PDF_FONT))
        _fonts_registered = True


class MonthlyReportPDF:
    """
    Paginated A4 report: header, statistics summary and one table row per
    report. The vertical cursor ``y`` is measured in mm from the top edge.
    Once it passes :data:`PAGE_BREAK_AT` a new page is started and the table
    header is drawn again.
    """

    title = "運転手業務月次レポート"

    def __init__(self, reports, stats, period_label, user_name,
                 rollover_max=None, generated_at=None):
        self.reports = sort_by_date(reports)
        self.stats = stats
        self.period_label = period_label
        self.user_name = user_name
        self.rollover_max = rollover_max
        self.generated_at = generated_at or datetime.now()
        self.page_count = 0
        self.table_header_pages = []
        self.canvas = None
        self.y = MARGIN

    # ── drawing primitives ──────────────────────────────────────────────

    def _text(self, x, text, size="body", color=BLACK):
        self.canvas.setFont(PDF_FONT, FONT_SIZES[size])
        self.canvas.setFillColor(color)
        self.canvas.drawString(x * mm, PAGE_HEIGHT - self.y * mm, text)

    def _rule(self, color):
        self.canvas.setStrokeColor(color)
        y = PAGE_HEIGHT - self.y * mm
        self.canvas.line(MARGIN * mm, y, (MARGIN + CONTENT_WIDTH) * mm, y)

    # ── blocks ──────────────────────────────────────────────────────────

    def _draw_header(self):
        self._text(MARGIN, self.title, size="title")
        self.y += LINE_HEIGHT * 2
        self._text(MARGIN, f"期間: {self.period_label}", size="subtitle", color=GRAY)
        self._text(MARGIN + 80, f"ユーザー: {self.user_name}", size="subtitle", color=GRAY)
        self.y += LINE_HEIGHT * 2
        self._rule(LIGHT_GRAY)
        self.y += LINE_HEIGHT

    def _draw_statistics(self):
        s = self.stats
        self._text(MARGIN, "月次統計", size="subtitle")
        self.y += LINE_HEIGHT * 1.5
        items = [
            f"稼働日数: {s.working_days}日",
            f"総走行距離: {round_half_up(s.total_distance_km):.1f}km",
            f"総作業時間: {round_half_up(s.total_work_hours):.1f}時間",
            f"総配送件数: {s.total_deliveries}件",
            f"総高速代: {s.total_highway_fee:,}円",
            f"平均走行距離: {s.average_distance_km:.1f}km/日",
            f"平均作業時間: {s.average_work_hours:.1f}時間/日",
        ]
        for item in items:
            self._text(MARGIN + 5, item, color=GRAY)
            self.y += LINE_HEIGHT
        self.y += LINE_HEIGHT

    def _draw_table_header(self):
        self.table_header_pages.append(self.canvas.getPageNumber())
        self._text(MARGIN, "日別詳細", size="subtitle")
        self.y += LINE_HEIGHT * 1.5
        x = MARGIN
        for header, width in zip(TABLE_HEADERS, COLUMN_WIDTHS):
            self._text(x, header)
            x += width
        self.y += LINE_HEIGHT * 0.5
        self._rule(BLACK)
        self.y += LINE_HEIGHT * 0.5
        # the first row baseline sits one line below the rule
        self.y += LINE_HEIGHT * 0.5

    def _draw_row(self, report):
        notes = report.notes or ""
        if len(notes) > NOTES_MAX_CHARS:
            notes = notes[: NOTES_MAX_CHARS - 1] + "…"
        d = report.date
        cells = [
            f"{d.month}/{d.day}({WEEKDAYS_JA[d.weekday()]})",
            "○" if report.is_worked else "×",
            report.start_time or "",
            report.end_time or "",
            format_duration(report_duration_minutes(report), short=True),
            format_distance(report_distance(report, self.rollover_max)),
            notes,
        ]
        x = MARGIN
        for cell, width in zip(cells, COLUMN_WIDTHS):
            self._text(x, cell, color=GRAY)
            x += width
        self.y += LINE_HEIGHT

    def _draw_footer(self):
        footer_y = PAGE_HEIGHT - (297 - MARGIN + 5) * mm
        self.canvas.setFont(PDF_FONT, FONT_SIZES["small"])
        self.canvas.setFillColor(GRAY)
        generated = self.generated_at
        self.canvas.drawString(
            MARGIN * mm, footer_y,
            f"{generated.year}年{generated.month}月{generated.day}日 "
            f"{generated:%H:%M}生成",
        )
        self.canvas.drawRightString(
            (MARGIN + CONTENT_WIDTH) * mm, footer_y,
            f"{self.canvas.getPageNumber()} ページ",
        )

    def _new_page(self):
        self._draw_footer()
        self.canvas.showPage()
        self.y = MARGIN

    # ── entry point ─────────────────────────────────────────────────────

    def render(self):
        """Build the document and return the PDF bytes."""
        _register_fonts()
        buf = io.BytesIO()
        self.canvas = canvas.Canvas(buf, pagesize=A4)
        self.canvas.setTitle(f"{self.title} {self.period_label}")
        self.canvas.setAuthor(self.user_name)
        self.table_header_pages = []
        self.y = MARGIN

        self._draw_header()
        self.y += LINE_HEIGHT
        self._draw_statistics()
        self.y += LINE_HEIGHT
        self._draw_table_header()

        for report in self.reports:
            if self.y > PAGE_BREAK_AT:
                self._new_page()
                self._draw_table_header()
            self._draw_row(report)

        self._draw_footer()
        self.page_count = self.canvas.getPageNumber()
        self.canvas.showPage()
        self.canvas.save()
        return buf.getvalue()


def generate_pdf(reports, stats, period_label, user_name, rollover_max=None):
    """Render the monthly PDF report and return its bytes."""
    try:
        return MonthlyReportPDF(
            reports, stats, period_label, user_name, rollover_max=rollover_max
        ).render()
    except Exception as exc:
        raise ExportError("PDF生成に失敗しました") from exc


# ---------------------------------------------------------------------------
# Excel
# ---------------------------------------------------------------------------
XLSX_HEADERS = [
    "日付", "稼働状況", "開始時刻", "終了時刻", "作業時間(h)", "走行距離(km)",
    "配送件数", "高速代", "備考",
]


def generate_xlsx(reports, stats, period_label, user_name, rollover_max=None):
    """Export reports and their totals to an Excel (.xlsx) workbook."""
    try:
        wb = Workbook()
        ws = wb.active
        ws.title = "日報"

        last_col = chr(ord("A") + len(XLSX_HEADERS) - 1)
        ws.merge_cells(f"A1:{last_col}1")
        ws["A1"] = f"運転日報 – {user_name}"
        ws["A1"].font = Font(bold=True, size=14)
        ws.merge_cells(f"A2:{last_col}2")
        ws["A2"] = f"期間: {period_label}"
        ws["A2"].font = Font(size=11, italic=True)

        header_fill = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
        for col, h in enumerate(XLSX_HEADERS, 1):
            cell = ws.cell(row=4, column=col, value=h)
            cell.font = Font(bold=True, color="FFFFFF")
            cell.fill = header_fill
            cell.alignment = Alignment(horizontal="center")

        ordered = sort_by_date(reports)
        for i, r in enumerate(ordered, 5):
            minutes = report_duration_minutes(r)
            distance = report_distance(r, rollover_max)
            ws.cell(row=i, column=1, value=r.date).number_format = "yyyy/mm/dd"
            ws.cell(row=i, column=2, value="稼働" if r.is_worked else "休日")
            ws.cell(row=i, column=3, value=r.start_time or "")
            ws.cell(row=i, column=4, value=r.end_time or "")
            ws.cell(row=i, column=5, value=round_half_up(minutes / 60) if minutes is not None else None)
            ws.cell(row=i, column=6, value=round_half_up(distance) if distance is not None else None)
            ws.cell(row=i, column=7, value=r.deliveries)
            ws.cell(row=i, column=8, value=r.highway_fee)
            ws.cell(row=i, column=9, value=r.notes or "")

        total_row = len(ordered) + 5
        bold = Font(bold=True)
        ws.cell(row=total_row, column=1, value="合計").font = bold
        ws.cell(row=total_row, column=2, value=f"{stats.working_days}日").font = bold
        ws.cell(row=total_row, column=5, value=round_half_up(stats.total_work_hours)).font = bold
        ws.cell(row=total_row, column=6, value=round_half_up(stats.total_distance_km)).font = bold
        ws.cell(row=total_row, column=7, value=stats.total_deliveries).font = bold
        ws.cell(row=total_row, column=8, value=stats.total_highway_fee).font = bold

        for col in ws.iter_cols(min_row=4):
            max_len = max((len(str(cell.value or "")) for cell in col), default=12)
            ws.column_dimensions[col[0].column_letter].width = min(max_len + 4, 40)

        buf = io.BytesIO()
        wb.save(buf)
    except Exception as exc:
        raise ExportError("Excelエクスポートに失敗しました") from exc
    return buf.getvalue()


# ---------------------------------------------------------------------------
# File names
# ---------------------------------------------------------------------------
def export_filename(period, fmt, labels=None):
    """
    Build ``<record>_<period>_<suffix>.<ext>``, e.g. ``日報_2025年03月_詳細.csv``.
    """
    if fmt not in EXPORT_FORMATS:
        raise ValidationError(f"Unsupported export format: {fmt}")
    names = dict(EXPORT_LABELS, **(labels or {}))
    ext = "csv" if fmt in CSV_SCHEMAS else fmt
    return f"{names['record']}_{period.slug()}_{names[fmt]}.{ext}"
