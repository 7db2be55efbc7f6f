"""Multi-sheet Excel export of chat sections via pandas + openpyxl."""

from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass
from datetime import datetime, timezone
import hashlib
from io import BytesIO
import re
from typing import Any, Callable, Iterable

import pandas as pd
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.utils import get_column_letter

from src.defaults import DEFAULTS
from src.formatters import (
    convert_snake_case_to_title_case,
    format_growth,
    format_number_compact,
    format_timestamp,
)
from src.media import export_filename
from src.schema import ROLE_ASSISTANT, Section, SectionType, chat_messages, ensure_exhaustive
from src.validation import build_section, sections_from_response, value_preview
from src.view_state import (
    STATUS_STYLES,
    column_chunks,
    forecast_view,
    metric_group,
    metric_rows,
    sorted_countries,
    split_text_blocks,
    strip_markdown,
)


DEFAULT_OPTIONS = {
    "title": "Chat Export",
    "filename_kind": "chat_export",
    "generated_at": None,
    "max_columns": DEFAULTS["excel_max_columns"],
}

SUMMARY_SHEET = "Chat Summary"
MESSAGE_INFO_SHEET = "Message Info"
MAX_COLUMN_WIDTH = 60
# Longer positional suffixes are folded into a digest token.
MAX_SUFFIX_LENGTH = 16

_UNSAFE_SHEET_CHARS = re.compile(r"[^A-Za-z0-9]+")

Sheet = tuple[str, pd.DataFrame]


def _merge_options(options: dict | None) -> dict:
    if options is not None and not isinstance(options, dict):
        raise TypeError("options must be a dict or None")
    out = deepcopy(DEFAULT_OPTIONS)
    if options:
        out.update(options)
    value = out["max_columns"]
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError("max_columns must be a positive integer")
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
        return


def sheet_name(base: Any, suffix: str = "") -> str:
    """Sanitize ``base`` and keep ``suffix`` intact within the sheet-name limit.

    Uniqueness comes from the suffix, which encodes the section's position;
    only the base is ever truncated. A suffix longer than ``MAX_SUFFIX_LENGTH``
    becomes ``_`` plus 12 hex digits of its SHA-1; positional suffixes always
    contain a letter or underscore outside that alphabet.
    """
    limit = int(DEFAULTS["sheet_name_max_length"])
    cleaned = _UNSAFE_SHEET_CHARS.sub("_", str(base or "")).strip("_") or "Section"
    if len(suffix) > MAX_SUFFIX_LENGTH:
        suffix = "_" + hashlib.sha1(suffix.encode("utf-8")).hexdigest()[:12].upper()
    return f"{cleaned[: max(0, limit - len(suffix))]}{suffix}"


def _field_frame(rows: list[tuple[str, Any]]) -> pd.DataFrame:
    return pd.DataFrame(rows, columns=["Field", "Value"])


def placeholder_frame(section_type: str, status: str, raw: Any = None) -> pd.DataFrame:
    rows = [("Section Type", section_type), ("Status", status)]
    if raw is not None:
        rows.append(("Raw Data", value_preview(raw, limit=30000)))
    return _field_frame(rows)


def _base_name(section: Section) -> str:
    return section.title or convert_snake_case_to_title_case(section.section_type)


# Per-section sheet builders. Each returns the full list of sheets for one
# section so a failure part way through adds nothing to the workbook.

def _text_sheets(section: Section, suffix: str, options: dict) -> list[Sheet]:
    sheets: list[Sheet] = []
    lines: list[str] = []
    tables = 0
    for kind, payload in split_text_blocks(section.content):
        if kind == "table":
            tables += 1
            frame = pd.DataFrame(payload["data"], columns=payload["columns"])
            sheets.append((sheet_name(_base_name(section), f"{suffix}_T{tables}"), frame))
        else:
            lines.extend(line for line in strip_markdown(payload).splitlines() if line.strip())
    label = "Error" if section.tag is SectionType.ERROR else "Text"
    text_frame = pd.DataFrame({label: lines or [""]})
    return [(sheet_name(_base_name(section), suffix), text_frame)] + sheets


def _dataframe_sheets(section: Section, suffix: str, options: dict) -> list[Sheet]:
    payload = section.content
    columns = payload["columns"]
    if not columns:
        return [(sheet_name(_base_name(section), suffix), placeholder_frame(section.section_type, "No data available"))]
    frame = pd.DataFrame(payload["data"], columns=columns)
    chunks = column_chunks(len(columns), int(options["max_columns"]))
    if len(chunks) == 1:
        return [(sheet_name(_base_name(section), suffix), frame)]
    return [
        (sheet_name(_base_name(section), f"{suffix}_P{part}"), frame.iloc[:, start:stop])
        for part, (start, stop) in enumerate(chunks, start=1)
    ]


def _metric_sheets(section: Section, suffix: str, options: dict) -> list[Sheet]:
    rows = metric_rows(section.section_type, section.content)
    return [(sheet_name(_base_name(section), suffix), pd.DataFrame(rows, columns=["Metric", "Value"]))]


def _virality_sheets(section: Section, suffix: str, options: dict) -> list[Sheet]:
    report = section.content
    score = report.get("final_score")
    summary = _field_frame(
        [
            ("Artist", report["artist_name"]),
            ("Virality Score", score),
            ("Verdict", report["verdict"].upper()),
            ("Audience Growth", format_growth(report.get("audience_growth_percentage"))),
            ("Engagement Growth", format_growth(report.get("engagement_growth_percentage"))),
            ("Summary", report.get("summary", "")),
            ("Audience Analysis", report.get("audience_analysis", "")),
            ("Engagement Analysis", report.get("engagement_analysis", "")),
        ]
    )
    base = section.title or f"Virality {report['artist_name']}"
    sheets = [(sheet_name(base, f"{suffix}_Sum"), summary)]
    details = report.get("detailed_metrics", {})
    if details:
        rows = []
        for name, metric in details.items():
            status = metric.get("status", "data_error")
            rows.append(
                {
                    "Metric": convert_snake_case_to_title_case(name),
                    "Group": metric_group(name).title(),
                    "Status": STATUS_STYLES.get(status, STATUS_STYLES["data_error"])["label"],
                    "Growth": format_growth(metric.get("growth")),
                    "Growth (raw)": metric.get("growth"),
                    "Baseline Avg": format_number_compact(metric["baseline_avg"]) if metric.get("baseline_avg") is not None else "N/A",
                    "Baseline Avg (raw)": metric.get("baseline_avg"),
                    "Recent Avg": format_number_compact(metric["recent_avg"]) if metric.get("recent_avg") is not None else "N/A",
                    "Recent Avg (raw)": metric.get("recent_avg"),
                }
            )
        sheets.append((sheet_name(base, f"{suffix}_Met"), pd.DataFrame(rows)))
    return sheets


def _forecast_sheets(section: Section, suffix: str, options: dict) -> list[Sheet]:
    view = forecast_view(section.content)
    base = section.title or view.title
    label = view.y_axis_label
    historical = view.historical.rename(columns={"date": "Date", "value": label})
    forecast = view.forecast.rename(
        columns={"date": "Date", "value": label, "lower": "Lower Bound", "upper": "Upper Bound"}
    )
    return [
        (sheet_name(base, f"{suffix}_Hist"), historical),
        (sheet_name(base, f"{suffix}_Fc"), forecast),
    ]


def _playlist_sheets(section: Section, suffix: str, options: dict) -> list[Sheet]:
    report = section.content
    rows = [
        {
            "Track": report.get("track_name", ""),
            "Artist": report.get("artist_name", ""),
            "Playlist": rec["playlist_name"],
            "Curator": rec["curator_name"],
            "Platform": rec["platform"],
            "Followers": "N/A" if rec["followers"] is None else format_number_compact(rec["followers"]),
            "Followers (raw)": rec["followers"],
            "Score": rec["score"],
            "URL": rec["url"],
            "Reasoning": "; ".join(
                f"{convert_snake_case_to_title_case(k)}: {v}" for k, v in rec["reasoning"].items()
            ),
        }
        for rec in report["recommendations"]
    ]
    columns = [
        "Track", "Artist", "Playlist", "Curator", "Platform",
        "Followers", "Followers (raw)", "Score", "URL", "Reasoning",
    ]
    base = section.title or "Playlist Recommendations"
    return [(sheet_name(base, suffix), pd.DataFrame(rows, columns=columns))]


_TABULAR_TAGS = {
    SectionType.DATAFRAME,
    SectionType.TABLE,
    SectionType.FORECAST_CHART,
    SectionType.MULTI_FORECAST_DISPLAY,
    SectionType.PLAYLIST_RECOMMENDATION_REPORT,
    SectionType.COUNTRY_LISTENERSHIP_DATA,
    SectionType.PLATFORM_DATA,
}
_SCALAR_TAGS = {SectionType.KEY_VALUE, SectionType.METRIC_GRID}


def _data_shape(section: Section) -> tuple[bool, bool]:
    """(has tabular data, has scalar data) for a multi-section summary row.

    Walks nested reports with an explicit stack so depth is unbounded.
    """
    tabular = scalar = False
    pending = [section]
    while pending:
        current = pending.pop()
        tag = current.tag
        if current.malformed or tag is None:
            continue
        if tag is SectionType.MULTI_SECTION_REPORT:
            pending.extend(current.content["sections"])
        elif tag is SectionType.VIRALITY_REPORT:
            scalar = True
            tabular = tabular or bool(current.content.get("detailed_metrics"))
        else:
            tabular = tabular or tag in _TABULAR_TAGS
            scalar = scalar or tag in _SCALAR_TAGS
    return tabular, scalar


def _children_sheets(children: list[Section], suffix: str, options: dict) -> list[Sheet]:
    sheets: list[Sheet] = []
    for idx, child in enumerate(children, start=1):
        sheets.extend(section_sheets(child, f"{suffix}_{idx}", options))
    return sheets


def _multi_section_sheets(section: Section, suffix: str, options: dict) -> list[Sheet]:
    children = section.content["sections"]
    rows = []
    for idx, child in enumerate(children, start=1):
        tabular, scalar = _data_shape(child)
        rows.append(
            {
                "Section #": idx,
                "Section Type": child.section_type,
                "Title": child.title or "",
                "Has Tabular Data": tabular,
                "Has Scalar Data": scalar,
            }
        )
    summary = pd.DataFrame(
        rows, columns=["Section #", "Section Type", "Title", "Has Tabular Data", "Has Scalar Data"]
    )
    base = section.title or "Report"
    return [(sheet_name(base, f"{suffix}_Sum"), summary)] + _children_sheets(children, suffix, options)


def _multi_forecast_sheets(section: Section, suffix: str, options: dict) -> list[Sheet]:
    return _children_sheets(section.content["forecasts"], suffix, options)


def _platform_sheets(section: Section, suffix: str, options: dict) -> list[Sheet]:
    frame = pd.DataFrame(
        [{"Platform": p["name"], "Icon URL": p["icon_url"] or ""} for p in section.content["data"]],
        columns=["Platform", "Icon URL"],
    )
    return [(sheet_name(section.title or "Platforms", suffix), frame)]


def _country_sheets(section: Section, suffix: str, options: dict) -> list[Sheet]:
    frame = pd.DataFrame(
        [
            {"Country": c["name"], "Code": str(c["countryCode"]).upper(), "Percentage": c["percentage"]}
            for c in sorted_countries(section.content["data"])
        ],
        columns=["Country", "Code", "Percentage"],
    )
    return [(sheet_name(section.title or "Countries", suffix), frame)]


def _image_sheets(section: Section, suffix: str, options: dict) -> list[Sheet]:
    frame = placeholder_frame(section.section_type, "Image is available as a direct download from the dashboard")
    return [(sheet_name(section.title or "Image", suffix), frame)]


def _video_sheets(section: Section, suffix: str, options: dict) -> list[Sheet]:
    frame = _field_frame([("Section Type", section.section_type), ("Video URL", section.content)])
    return [(sheet_name(section.title or "Video", suffix), frame)]


_SHEET_BUILDERS = {
    SectionType.TEXT: _text_sheets,
    SectionType.ERROR: _text_sheets,
    SectionType.DATAFRAME: _dataframe_sheets,
    SectionType.TABLE: _dataframe_sheets,
    SectionType.KEY_VALUE: _metric_sheets,
    SectionType.METRIC_GRID: _metric_sheets,
    SectionType.VIRALITY_REPORT: _virality_sheets,
    SectionType.FORECAST_CHART: _forecast_sheets,
    SectionType.MULTI_FORECAST_DISPLAY: _multi_forecast_sheets,
    SectionType.PLAYLIST_RECOMMENDATION_REPORT: _playlist_sheets,
    SectionType.MULTI_SECTION_REPORT: _multi_section_sheets,
    SectionType.PLATFORM_DATA: _platform_sheets,
    SectionType.COUNTRY_LISTENERSHIP_DATA: _country_sheets,
    SectionType.IMAGE_BASE64: _image_sheets,
    SectionType.VIDEO_URL: _video_sheets,
}
ensure_exhaustive(_SHEET_BUILDERS, "excel_export")


def section_sheets(section: Section, suffix: str, options: dict) -> list[Sheet]:
    """All sheets for one section; malformed, unknown or failing sections yield one placeholder."""
    base = _base_name(section)
    if section.malformed:
        status = f"Malformed section: {section.reason or 'unexpected structure'}"
        return [(sheet_name(base, suffix), placeholder_frame(section.section_type, status, section.content))]
    tag = section.tag
    if tag is None:
        status = f"Unsupported section type '{section.section_type}'"
        return [(sheet_name(base, suffix), placeholder_frame(section.section_type, status, section.content))]
    try:
        return _SHEET_BUILDERS[tag](section, suffix, options)
    except Exception as exc:
        _log_event(
            options,
            level="ERROR",
            event="excel_section_failed",
            message=f"Failed to build sheets for {section.section_type} section; continuing.",
            context={"section_type": section.section_type, "title": section.title, "suffix": suffix},
            exc=exc,
        )
        return [(sheet_name(base, suffix), placeholder_frame(section.section_type, "No data available"))]


def _autosize_columns(worksheet) -> None:
    for column_cells in worksheet.columns:
        longest = 0
        for cell in column_cells:
            if cell.value is not None:
                longest = max(longest, len(str(cell.value)))
        letter = get_column_letter(column_cells[0].column)
        worksheet.column_dimensions[letter].width = min(longest + 2, MAX_COLUMN_WIDTH)


def _excel_value(value: Any) -> Any:
    """A cell value openpyxl accepts: no control characters, containers as JSON, naive datetimes."""
    if isinstance(value, str):
        return ILLEGAL_CHARACTERS_RE.sub("", value)
    if isinstance(value, (dict, list, tuple, set)):
        return ILLEGAL_CHARACTERS_RE.sub("", value_preview(value, limit=30000))
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _excel_frame(frame: pd.DataFrame) -> pd.DataFrame:
    cleaned = frame.map(_excel_value)
    cleaned.columns = [_excel_value(column) for column in frame.columns]
    return cleaned


def _workbook_bytes(sheets: list[Sheet], options: dict) -> bytes:
    output = BytesIO()
    with pd.ExcelWriter(output, engine="openpyxl") as writer:
        for name, frame in sheets:
            try:
                _excel_frame(frame).to_excel(writer, sheet_name=name, index=False)
            except Exception as exc:
                _log_event(
                    options,
                    level="ERROR",
                    event="excel_sheet_failed",
                    message=f"Failed to write sheet '{name}'; replaced with a placeholder.",
                    context={"sheet": name, "rows": len(frame)},
                    exc=exc,
                )
                # Sheets are written in order, so a recreated sheet keeps its position.
                if name in writer.book.sheetnames:
                    writer.book.remove(writer.book[name])
                placeholder_frame("sheet", "No data available").to_excel(writer, sheet_name=name, index=False)
            _autosize_columns(writer.sheets[name])
    output.seek(0)
    return output.getvalue()


@dataclass(frozen=True)
class ExcelWorkbook:
    data: bytes
    filename: str
    sheet_names: tuple[str, ...]


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


def _finish_workbook(sheets: list[Sheet], options: dict, section_count: int) -> ExcelWorkbook:
    if not sheets:
        sheets = [("Export", placeholder_frame("none", "No data available"))]
    data = _workbook_bytes(sheets, options)
    _log_event(
        options,
        level="INFO",
        event="excel_export_completed",
        message="Excel export completed.",
        context={"sections": section_count, "sheets": len(sheets), "bytes": len(data)},
    )
    generated = options.get("generated_at")
    return ExcelWorkbook(
        data=data,
        filename=export_filename(options["filename_kind"], "xlsx", generated if isinstance(generated, datetime) else None),
        sheet_names=tuple(name for name, _ in sheets),
    )


def export_to_excel(sections: Iterable[Any], options: dict | None = None) -> ExcelWorkbook:
    """One or more sheets per section, suffixed ``_S<n>`` by position."""
    merged = _merge_options(options)
    items = _coerce_sections(sections, merged)
    sheets: list[Sheet] = []
    for idx, section in enumerate(items, start=1):
        sheets.extend(section_sheets(section, f"_S{idx}", merged))
    return _finish_workbook(sheets, merged, len(items))


def _preview(text: Any) -> str:
    limit = int(DEFAULTS["preview_chars"])
    flat = " ".join(str(text or "").split())
    return flat if len(flat) <= limit else f"{flat[: limit - 3]}..."


def _timestamp_text(value: Any) -> str:
    return "" if value is None else format_timestamp(value, "datetime")


def export_messages_to_excel(messages: Iterable[Any], options: dict | None = None) -> ExcelWorkbook:
    """Chat Summary sheet, then each assistant message's section sheets.

    Plain answer text is carried by the summary preview rather than a sheet of
    its own. A single-message export also gets a Message Info sheet.
    """
    merged = _merge_options(options)
    items = chat_messages(messages)
    summary_rows = []
    section_sheets_out: list[Sheet] = []
    section_count = 0
    for number, message in enumerate(items, start=1):
        summary_rows.append(
            {
                "Message #": number,
                "Role": message.role.title(),
                "Timestamp": _timestamp_text(message.timestamp),
                "Data Type": message.data_type or "text",
                "Preview": _preview(message.content),
            }
        )
        if message.role != ROLE_ASSISTANT:
            continue
        sections = sections_from_response(
            message.data_type,
            message.display_data,
            message.content,
            log_event=merged.get("log_event"),
        )
        section_count += len(sections)
        for idx, section in enumerate(sections, start=1):
            if section.tag is SectionType.TEXT and section.content == message.content:
                continue
            section_sheets_out.extend(section_sheets(section, f"_M{number}S{idx}", merged))

    sheets: list[Sheet] = [
        (
            SUMMARY_SHEET,
            pd.DataFrame(summary_rows, columns=["Message #", "Role", "Timestamp", "Data Type", "Preview"]),
        )
    ]
    if len(items) == 1:
        only = items[0]
        sheets.append(
            (
                MESSAGE_INFO_SHEET,
                _field_frame(
                    [
                        ("Role", only.role.title()),
                        ("Timestamp", _timestamp_text(only.timestamp)),
                        ("Data Type", only.data_type or "text"),
                        ("Content", only.content),
                        ("Exported", format_timestamp(merged.get("generated_at"), "datetime")),
                    ]
                ),
            )
        )
    return _finish_workbook(sheets + section_sheets_out, merged, section_count)

