"""PDF export of chat sections laid out with a vertical cursor on a reportlab canvas."""

from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, field
from datetime import datetime, timezone
import html
from io import BytesIO
from typing import Any, Callable, Iterable

import pandas as pd

from src.defaults import DEFAULTS, VERDICT_COLORS
from src.formatters import (
    convert_snake_case_to_title_case,
    format_growth,
    format_number_compact,
    format_timestamp,
)
from src.media import decode_image_base64, export_filename
from src.schema import ROLE_USER, Section, SectionType, chat_messages, ensure_exhaustive
from src.validation import build_section, sections_from_response
from src.view_state import (
    STATUS_STYLES,
    column_chunks,
    forecast_view,
    format_table_rows,
    metric_rows,
    playlist_summary,
    sorted_countries,
    split_text_blocks,
    strip_markdown,
)


DEFAULT_OPTIONS = {
    "title": "Chat Export",
    "filename_kind": "chat_export",
    "generated_at": None,
    "max_columns": DEFAULTS["pdf_max_columns"],
    "metrics_rows_per_table": DEFAULTS["pdf_metrics_rows_per_table"],
}

HEADER_FILL = "#428bca"
GRID_COLOR = "#bcccdc"
STRIPE_COLOR = "#f5f7fa"
ERROR_RGB = (200, 30, 30)
MUTED_RGB = (110, 110, 110)


def _merge_options(options: dict | None) -> dict:
    if options is not None and not isinstance(options, dict):
        raise TypeError("options must be a dict or None")
    out = deepcopy(DEFAULT_OPTIONS)
    if options:
        out.update(options)
    for key in ("max_columns", "metrics_rows_per_table"):
        value = out[key]
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ValueError(f"{key} must be a positive integer")
    return out


def _log_event(
    options: dict,
    *,
    level: str,
    event: str,
    message: str,
    context: dict[str, Any] | None = None,
    exc: BaseException | None = None,
) -> None:
    logger: Callable[..., Any] | None = options.get("log_event")
    if not callable(logger):
        return
    try:
        logger(level=level, event=event, message=message, context=context or {}, exc=exc)
    except Exception:
        # Export logging should never break document generation.
        return


def _pdf_text(value: Any) -> str:
    """Collapse to the WinAnsi range the standard Helvetica faces can draw."""
    text = "" if value is None else str(value)
    return text.encode("cp1252", "replace").decode("cp1252")


def _cell_text(value: Any, max_len: int = 320) -> str:
    text = " ".join(_pdf_text(value).split())
    if len(text) > max_len:
        text = f"{text[: max_len - 3].rstrip()}..."
    return html.escape(text)


def _reportlab_imports():
    from reportlab.lib import colors
    from reportlab.lib.pagesizes import A4
    from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
    from reportlab.lib.units import mm
    from reportlab.lib.utils import ImageReader, simpleSplit
    from reportlab.pdfgen.canvas import Canvas
    from reportlab.platypus import Paragraph, Table, TableStyle

    return {
        "colors": colors,
        "A4": A4,
        "ParagraphStyle": ParagraphStyle,
        "getSampleStyleSheet": getSampleStyleSheet,
        "mm": mm,
        "ImageReader": ImageReader,
        "simpleSplit": simpleSplit,
        "Canvas": Canvas,
        "Paragraph": Paragraph,
        "Table": Table,
        "TableStyle": TableStyle,
    }


@dataclass
class PdfDocument:
    data: bytes
    filename: str
    page_count: int
    layout: list[tuple[str, str]] = field(default_factory=list)

    def texts(self, kind: str) -> list[str]:
        return [text for k, text in self.layout if k == kind]


class _PdfCursor:
    """Canvas plus a top-down ``y`` cursor; every write advances the cursor."""

    def __init__(self, options: dict) -> None:
        self.rl = _reportlab_imports()
        self.mm = self.rl["mm"]
        self.page_width, self.page_height = self.rl["A4"]
        self.buffer = BytesIO()
        self.canvas = self.rl["Canvas"](self.buffer, pagesize=self.rl["A4"])
        self.canvas.setTitle(_pdf_text(options.get("title", "Chat Export")))
        self.margin = float(DEFAULTS["pdf_margin_mm"]) * self.mm
        self.thresholds = {k: float(v) * self.mm for k, v in DEFAULTS["pdf_break_thresholds_mm"].items()}
        self.y = self.margin
        self.page_count = 1
        self.layout: list[tuple[str, str]] = []
        self.styles = self._build_styles()

    def _build_styles(self) -> dict[str, Any]:
        styles = self.rl["getSampleStyleSheet"]()
        ParagraphStyle = self.rl["ParagraphStyle"]
        return {
            "TableHeader": ParagraphStyle(
                name="TableHeader",
                parent=styles["BodyText"],
                fontName="Helvetica-Bold",
                fontSize=8.0,
                leading=9.6,
                textColor=self.rl["colors"].white,
                wordWrap="CJK",
            ),
            "TableCell": ParagraphStyle(
                name="TableCell",
                parent=styles["BodyText"],
                fontName="Helvetica",
                fontSize=7.6,
                leading=9.2,
                wordWrap="CJK",
            ),
        }

    @property
    def content_width(self) -> float:
        return self.page_width - 2 * self.margin

    @property
    def bottom(self) -> float:
        return self.page_height - self.margin

    def _footer(self) -> None:
        self.canvas.setFont("Helvetica", 8)
        self.canvas.setFillColorRGB(*(c / 255.0 for c in MUTED_RGB))
        self.canvas.drawRightString(self.page_width - self.margin, self.margin / 2, f"Page {self.page_count}")
        self.canvas.setFillColorRGB(0, 0, 0)

    def new_page(self) -> None:
        self._footer()
        self.canvas.showPage()
        self.page_count += 1
        self.y = self.margin

    def ensure_space(self, kind: str) -> None:
        threshold = self.thresholds.get(kind, self.thresholds["line"])
        if self.y > self.page_height - threshold:
            self.new_page()

    def spacer(self, height_mm: float) -> None:
        self.y += height_mm * self.mm

    def text(
        self,
        value: Any,
        *,
        kind: str = "line",
        font: str = "Helvetica",
        size: float = 10.0,
        rgb: tuple[int, int, int] | None = None,
    ) -> None:
        self.ensure_space(kind)
        content = _pdf_text(value)
        leading = size * 1.35
        lines = self.rl["simpleSplit"](content, font, size, self.content_width) or [""]
        self.canvas.setFont(font, size)
        if rgb is not None:
            self.canvas.setFillColorRGB(*(c / 255.0 for c in rgb))
        for line in lines:
            if self.y + leading > self.bottom:
                self.new_page()
                self.canvas.setFont(font, size)
                if rgb is not None:
                    self.canvas.setFillColorRGB(*(c / 255.0 for c in rgb))
            self.y += leading
            self.canvas.drawString(self.margin, self.page_height - self.y, line)
        self.canvas.setFillColorRGB(0, 0, 0)
        self.y += size * 0.3
        self.layout.append((kind, content))

    def heading(self, value: Any, size: float = 13.0) -> None:
        self.text(value, kind="heading", font="Helvetica-Bold", size=size)

    def label(self, value: Any, rgb: tuple[int, int, int] | None = None) -> None:
        self.text(value, kind="label", font="Helvetica-Bold", size=10.0, rgb=rgb)

    def paragraph(self, value: Any, rgb: tuple[int, int, int] | None = None) -> None:
        for block in str(value or "").split("\n\n"):
            if block.strip():
                self.text(" ".join(block.split()), kind="paragraph", rgb=rgb)

    def placeholder(self, value: Any) -> None:
        self.text(value, kind="placeholder", font="Helvetica-Oblique", size=9.5, rgb=MUTED_RGB)

    def _column_widths(self, header: list[str], rows: list[list[str]]) -> list[float]:
        sample = rows[:30]
        weights: list[float] = []
        for idx, name in enumerate(header):
            longest = max([len(str(name)), 4] + [len(str(r[idx])) for r in sample if idx < len(r)])
            weights.append(float(max(4, min(28, longest))))
        total = sum(weights) or 1.0
        return [self.content_width * w / total for w in weights]

    def table(self, header: list[str], rows: list[list[Any]]) -> None:
        Paragraph = self.rl["Paragraph"]
        colors = self.rl["colors"]
        header_cells = [Paragraph(_cell_text(h), self.styles["TableHeader"]) for h in header]
        body = [[Paragraph(_cell_text(c), self.styles["TableCell"]) for c in row] for row in rows]
        table = self.rl["Table"](
            [header_cells] + body,
            colWidths=self._column_widths(header, [[str(c) for c in r] for r in rows]),
            repeatRows=1,
        )
        table.setStyle(
            self.rl["TableStyle"](
                [
                    ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor(HEADER_FILL)),
                    ("VALIGN", (0, 0), (-1, -1), "TOP"),
                    ("GRID", (0, 0), (-1, -1), 0.3, colors.HexColor(GRID_COLOR)),
                    ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.HexColor(STRIPE_COLOR)]),
                    ("LEFTPADDING", (0, 0), (-1, -1), 3),
                    ("RIGHTPADDING", (0, 0), (-1, -1), 3),
                ]
            )
        )
        self.ensure_space("table")
        pending = [table]
        while pending:
            part = pending.pop(0)
            available = self.bottom - self.y
            _, height = part.wrapOn(self.canvas, self.content_width, available)
            if height <= available:
                part.drawOn(self.canvas, self.margin, self.page_height - self.y - height)
                self.y += height
                continue
            pieces = part.split(self.content_width, available)
            if len(pieces) >= 2:
                pending = list(pieces) + pending
            elif self.y > self.margin:
                self.new_page()
                pending.insert(0, part)
            else:
                # A single row taller than a page; draw it clipped rather than loop.
                part.drawOn(self.canvas, self.margin, self.page_height - self.y - height)
                self.y = self.bottom
        self.y += 4 * self.mm
        self.layout.append(("table", f"{len(header)} columns x {len(rows)} rows"))

    def image(self, data: bytes) -> None:
        reader = self.rl["ImageReader"](BytesIO(data))
        width_px, height_px = reader.getSize()
        width = min(self.content_width, float(width_px))
        height = width * height_px / max(width_px, 1)
        max_height = self.page_height / 2
        if height > max_height:
            width, height = width * max_height / height, max_height
        self.ensure_space("image")
        if self.y + height > self.bottom:
            self.new_page()
        self.canvas.drawImage(reader, self.margin, self.page_height - self.y - height, width=width, height=height)
        self.y += height + 4 * self.mm
        self.layout.append(("image", f"{width_px}x{height_px}"))

    def finish(self) -> bytes:
        self._footer()
        self.canvas.save()
        return self.buffer.getvalue()


def _write_text(cursor: _PdfCursor, section: Section, options: dict, depth: int) -> None:
    for kind, payload in split_text_blocks(section.content):
        if kind == "table":
            cursor.table(payload["columns"], payload["data"])
        else:
            cursor.paragraph(strip_markdown(payload))


def _write_error(cursor: _PdfCursor, section: Section, options: dict, depth: int) -> None:
    cursor.label("Error:", rgb=ERROR_RGB)
    cursor.paragraph(section.content, rgb=ERROR_RGB)


def _write_dataframe(cursor: _PdfCursor, section: Section, options: dict, depth: int) -> None:
    payload = section.content
    columns = payload["columns"]
    if not columns or not payload["data"]:
        cursor.placeholder("No data available")
        return
    headers = [convert_snake_case_to_title_case(c) for c in columns]
    rows = format_table_rows(columns, payload["data"])
    chunks = column_chunks(len(columns), int(options["max_columns"]))
    if len(chunks) == 1:
        cursor.table(headers, rows)
        return
    for part, (start, stop) in enumerate(chunks, start=1):
        cursor.label(f"Table Part {part} (Columns {start + 1}-{stop})")
        cursor.table(headers[start:stop], [row[start:stop] for row in rows])


def _write_metrics(cursor: _PdfCursor, section: Section, options: dict, depth: int) -> None:
    rows = metric_rows(section.section_type, section.content)
    if not rows:
        cursor.placeholder("No data available")
        return
    cursor.table(["Metric", "Value"], [list(r) for r in rows])


def _detail_rows(details: dict[str, dict[str, Any]]) -> list[list[str]]:
    rows = []
    for name, metric in details.items():
        status = metric.get("status", "data_error")
        rows.append(
            [
                convert_snake_case_to_title_case(name),
                STATUS_STYLES.get(status, STATUS_STYLES["data_error"])["label"],
                format_growth(metric.get("growth")),
                "N/A" if metric.get("baseline_avg") is None else format_number_compact(metric["baseline_avg"]),
                "N/A" if metric.get("recent_avg") is None else format_number_compact(metric["recent_avg"]),
            ]
        )
    return rows


def _write_virality(cursor: _PdfCursor, section: Section, options: dict, depth: int) -> None:
    report = section.content
    cursor.ensure_space("virality")
    cursor.heading(f"Virality Report: {report['artist_name']}", size=14)
    score = report.get("final_score")
    cursor.label(f"Virality Score: {'N/A' if score is None else f'{score:.0f}/100'}")
    verdict = report.get("verdict", "unknown")
    cursor.label(f"Verdict: {verdict.upper()}", rgb=VERDICT_COLORS.get(verdict, VERDICT_COLORS["unknown"]))
    if report.get("summary"):
        cursor.label("Summary:")
        cursor.paragraph(report["summary"])
    cursor.table(
        ["Metric", "Growth Rate"],
        [
            ["Audience Growth", format_growth(report.get("audience_growth_percentage"))],
            ["Engagement Growth", format_growth(report.get("engagement_growth_percentage"))],
        ],
    )
    if report.get("audience_analysis"):
        cursor.label("Audience Analysis:")
        cursor.paragraph(report["audience_analysis"])
    if report.get("engagement_analysis"):
        cursor.label("Engagement Analysis:")
        cursor.paragraph(report["engagement_analysis"])
    rows = _detail_rows(report.get("detailed_metrics", {}))
    if not rows:
        return
    header = ["Metric", "Status", "Growth", "Baseline Avg", "Recent Avg"]
    cursor.label("Detailed Platform Metrics:")
    size = max(1, int(options["metrics_rows_per_table"]))
    if len(rows) <= size:
        cursor.table(header, rows)
        return
    for part, start in enumerate(range(0, len(rows), size), start=1):
        cursor.label(f"Metrics Part {part}")
        cursor.table(header, rows[start : start + size])


def _write_forecast(cursor: _PdfCursor, section: Section, options: dict, depth: int) -> None:
    view = forecast_view(section.content)
    if view.historical.empty and view.forecast.empty:
        cursor.placeholder("No data available")
        return
    stats = view.forecast_stats
    cursor.text(
        f"Historical points: {view.historical_stats['count']}  |  "
        f"Forecast points: {stats['count']}  |  "
        f"Projected change: {format_growth(stats['projected_change'])}",
        size=9,
        rgb=MUTED_RGB,
    )
    if not view.historical.empty:
        cursor.label("Historical Data:")
        cursor.table(
            ["Date", view.y_axis_label],
            [[d.strftime("%Y-%m-%d"), format_number_compact(v)] for d, v in zip(view.historical["date"], view.historical["value"])],
        )
    if not view.forecast.empty:
        cursor.label("Forecast Data:")
        rows = []
        for rec in view.forecast.itertuples(index=False):
            rows.append(
                [
                    rec.date.strftime("%Y-%m-%d"),
                    format_number_compact(rec.value),
                    format_number_compact(rec.lower) if pd.notna(rec.lower) else "",
                    format_number_compact(rec.upper) if pd.notna(rec.upper) else "",
                ]
            )
        cursor.table(["Date", view.y_axis_label, "Lower Bound", "Upper Bound"], rows)


def _write_children(cursor: _PdfCursor, children: Iterable[Section], options: dict, depth: int) -> None:
    for child in children:
        write_section(cursor, child, options, depth + 1)


def _write_multi_forecast(cursor: _PdfCursor, section: Section, options: dict, depth: int) -> None:
    if not section.content["forecasts"]:
        cursor.placeholder("No data available")
    _write_children(cursor, section.content["forecasts"], options, depth)


def _write_playlist(cursor: _PdfCursor, section: Section, options: dict, depth: int) -> None:
    report = section.content
    if report.get("track_name"):
        byline = f" by {report['artist_name']}" if report.get("artist_name") else ""
        cursor.label(f"Track: {report['track_name']}{byline}")
    if report.get("summary"):
        cursor.paragraph(report["summary"])
    summary = playlist_summary(report)
    avg = summary["average_score"]
    cursor.text(
        f"Recommendations: {summary['total']}  |  Total followers: "
        f"{format_number_compact(summary['total_followers'])}  |  Average score: {'N/A' if avg is None else f'{avg:.1f}'}",
        size=9,
        rgb=MUTED_RGB,
    )
    recs = report["recommendations"]
    if not recs:
        cursor.placeholder("No data available")
        return
    cursor.table(
        ["Playlist", "Curator", "Platform", "Followers", "Score"],
        [
            [
                r["playlist_name"],
                r["curator_name"],
                r["platform"],
                "N/A" if r["followers"] is None else format_number_compact(r["followers"]),
                "N/A" if r["score"] is None else f"{r['score']:.0f}",
            ]
            for r in recs
        ],
    )
    for rec in recs:
        if not rec["reasoning"]:
            continue
        cursor.label(f"Why {rec['playlist_name']}:")
        for factor, text in rec["reasoning"].items():
            cursor.paragraph(f"- {convert_snake_case_to_title_case(factor)}: {text}")


def _write_multi_section(cursor: _PdfCursor, section: Section, options: dict, depth: int) -> None:
    if not section.content["sections"]:
        cursor.placeholder("No data available")
    _write_children(cursor, section.content["sections"], options, depth)


def _write_platforms(cursor: _PdfCursor, section: Section, options: dict, depth: int) -> None:
    platforms = section.content["data"]
    if not platforms:
        cursor.placeholder("No data available")
        return
    for item in platforms:
        cursor.text(f"- {item['name']}")


def _write_countries(cursor: _PdfCursor, section: Section, options: dict, depth: int) -> None:
    countries = sorted_countries(section.content["data"])
    if not countries:
        cursor.placeholder("No data available")
        return
    cursor.table(
        ["Country", "Code", "Percentage"],
        [[c["name"], str(c["countryCode"]).upper(), f"{c['percentage']:.1f}%"] for c in countries],
    )


def _write_image(cursor: _PdfCursor, section: Section, options: dict, depth: int) -> None:
    data = decode_image_base64(section.content)
    if data is None:
        cursor.placeholder("Image could not be decoded")
        return
    cursor.image(data)


def _write_video(cursor: _PdfCursor, section: Section, options: dict, depth: int) -> None:
    cursor.text(f"Video: {section.content}")


_PDF_WRITERS = {
    SectionType.TEXT: _write_text,
    SectionType.ERROR: _write_error,
    SectionType.DATAFRAME: _write_dataframe,
    SectionType.TABLE: _write_dataframe,
    SectionType.KEY_VALUE: _write_metrics,
    SectionType.METRIC_GRID: _write_metrics,
    SectionType.VIRALITY_REPORT: _write_virality,
    SectionType.FORECAST_CHART: _write_forecast,
    SectionType.MULTI_FORECAST_DISPLAY: _write_multi_forecast,
    SectionType.PLAYLIST_RECOMMENDATION_REPORT: _write_playlist,
    SectionType.MULTI_SECTION_REPORT: _write_multi_section,
    SectionType.PLATFORM_DATA: _write_platforms,
    SectionType.COUNTRY_LISTENERSHIP_DATA: _write_countries,
    SectionType.IMAGE_BASE64: _write_image,
    SectionType.VIDEO_URL: _write_video,
}
ensure_exhaustive(_PDF_WRITERS, "pdf_export")


def write_section(cursor: _PdfCursor, section: Section, options: dict, depth: int = 0) -> None:
    """Write one section at the cursor; failures become a 'No data available' line."""
    if section.title:
        cursor.heading(section.title, size=max(10.0, 13.0 - depth))
    if section.malformed:
        cursor.placeholder("No data available")
        return
    tag = section.tag
    if tag is None:
        cursor.placeholder(f"[{section.section_type} - data not displayed]")
        return
    try:
        _PDF_WRITERS[tag](cursor, section, options, depth)
    except Exception as exc:
        _log_event(
            options,
            level="ERROR",
            event="pdf_section_failed",
            message=f"Failed to write {section.section_type} section; continuing.",
            context={"section_type": section.section_type, "title": section.title},
            exc=exc,
        )
        cursor.placeholder("No data available")


def _coerce_sections(sections: Iterable[Any], options: dict) -> list[Section]:
    out: list[Section] = []
    for item in sections or []:
        if isinstance(item, Section):
            out.append(item)
        elif isinstance(item, dict):
            out.append(
                build_section(
                    item.get("section_type"),
                    item.get("content"),
                    item.get("title"),
                    log_event=options.get("log_event"),
                )
            )
    return out


def _start_document(options: dict) -> _PdfCursor:
    cursor = _PdfCursor(options)
    generated = options.get("generated_at") or datetime.now(timezone.utc)
    cursor.heading(options["title"], size=18)
    cursor.text(f"Exported on {format_timestamp(generated, 'datetime')} UTC", size=9, rgb=MUTED_RGB)
    cursor.spacer(4)
    return cursor


def _finish_document(cursor: _PdfCursor, options: dict, section_count: int) -> PdfDocument:
    data = cursor.finish()
    generated = options.get("generated_at")
    moment = generated if isinstance(generated, datetime) else None
    _log_event(
        options,
        level="INFO",
        event="pdf_export_completed",
        message="PDF export completed.",
        context={"sections": section_count, "pages": cursor.page_count, "bytes": len(data)},
    )
    return PdfDocument(
        data=data,
        filename=export_filename(options["filename_kind"], "pdf", moment),
        page_count=cursor.page_count,
        layout=cursor.layout,
    )


def export_to_pdf(sections: Iterable[Any], options: dict | None = None) -> PdfDocument:
    """Lay out ``sections`` in order into one in-memory PDF document."""
    merged = _merge_options(options)
    items = _coerce_sections(sections, merged)
    cursor = _start_document(merged)
    if not items:
        cursor.placeholder("No data available")
    for section in items:
        write_section(cursor, section, merged)
        cursor.spacer(4)
    return _finish_document(cursor, merged, len(items))


def export_messages_to_pdf(messages: Iterable[Any], options: dict | None = None) -> PdfDocument:
    """Export a chat transcript: a role line per message followed by its sections."""
    merged = _merge_options(options)
    items = chat_messages(messages)
    cursor = _start_document(merged)
    section_count = 0
    if not items:
        cursor.placeholder("No messages to export")
    for idx, message in enumerate(items, start=1):
        speaker = "You" if message.role == ROLE_USER else "Assistant"
        stamp = f" - {format_timestamp(message.timestamp, 'datetime')}" if message.timestamp is not None else ""
        cursor.ensure_space("heading")
        cursor.label(f"{idx}. {speaker}{stamp}", rgb=(30, 100, 200) if message.role == ROLE_USER else (34, 139, 34))
        if message.role == ROLE_USER:
            cursor.paragraph(message.content)
        else:
            sections = sections_from_response(
                message.data_type,
                message.display_data,
                message.content,
                log_event=merged.get("log_event"),
            )
            section_count += len(sections)
            for section in sections:
                write_section(cursor, section, merged)
        cursor.spacer(5)
    return _finish_document(cursor, merged, section_count)
