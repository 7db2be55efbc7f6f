"""Structure validation and one-time payload normalization.

Everything downstream of ``build_section`` sees only canonical payloads; the
legacy wrappers (``{"dataframe": {...}}`` and friends) are unwrapped here.
"""

from __future__ import annotations

import json
from typing import Any, Callable, Iterable, Mapping

import pandas as pd

from src.formatters import to_number
from src.runtime_logging import append_runtime_event
from src.schema import (
    STATUS_FIELDS,
    VIRALITY_STATUSES,
    Section,
    SectionType,
    coerce_display_data,
    ensure_exhaustive,
    parse_section_type,
)


LogEvent = Callable[..., Any]

_PREVIEW_CHARS = 2000

# Tags whose canonical payload may arrive as a bare array.
_LIST_PAYLOAD_TAGS = {
    SectionType.MULTI_SECTION_REPORT,
    SectionType.MULTI_FORECAST_DISPLAY,
    SectionType.PLATFORM_DATA,
    SectionType.COUNTRY_LISTENERSHIP_DATA,
}


def validate(value: Any, required_paths: Iterable[str] | str) -> bool:
    """Return True when every dot-separated path resolves to a non-null value."""
    if isinstance(required_paths, str):
        required_paths = [required_paths]
    try:
        paths = list(required_paths)
    except TypeError:
        return False
    for path in paths:
        current = value
        for segment in str(path).split("."):
            if isinstance(current, Mapping):
                if segment not in current:
                    return False
                current = current[segment]
            elif isinstance(current, (list, tuple)) and segment.isdigit():
                idx = int(segment)
                if idx >= len(current):
                    return False
                current = current[idx]
            else:
                return False
            if current is None:
                return False
    return True


def value_preview(value: Any, limit: int = _PREVIEW_CHARS) -> str:
    try:
        text = json.dumps(value, default=str, ensure_ascii=False)
    except (TypeError, ValueError):
        text = repr(value)
    except RecursionError:
        text = f"<{type(value).__name__} nested too deeply to preview>"
    if len(text) > limit:
        text = f"{text[: limit - 3]}..."
    return text


def log_diagnostic(
    log_event: LogEvent | None,
    *,
    level: str,
    event: str,
    message: str,
    context: dict[str, Any] | None = None,
    exc: BaseException | None = None,
) -> None:
    logger = append_runtime_event if log_event is None else log_event
    if not callable(logger):
        return
    try:
        logger(level=level, event=event, message=message, context=context or {}, exc=exc)
    except Exception:
        # A broken logger must not take the renderer down with it.
        return


def _is_list(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def _unwrap(value: Any, *keys: str) -> Any:
    if isinstance(value, Mapping):
        for key in keys:
            inner = value.get(key)
            if isinstance(inner, Mapping):
                return inner
    return value


def _title_of(*candidates: Any) -> str | None:
    for candidate in candidates:
        if isinstance(candidate, Mapping):
            candidate = candidate.get("title")
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return None


def _scalar(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    try:
        return json.dumps(value, default=str, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)
    except RecursionError:
        return f"<{type(value).__name__} nested too deeply to preview>"


def _frame_payload(value: Any) -> Any:
    if isinstance(value, pd.DataFrame):
        return {"columns": [str(c) for c in value.columns], "data": value.astype(object).values.tolist()}
    return value


def is_dataframe_payload(value: Any) -> bool:
    """True iff ``columns`` is an array and ``data`` is an array of arrays."""
    payload = _frame_payload(_unwrap(value, "dataframe", "table"))
    if not validate(payload, ["columns", "data"]):
        return False
    if not _is_list(payload["columns"]) or not _is_list(payload["data"]):
        return False
    return all(_is_list(row) for row in payload["data"])


def is_section_container(value: Any) -> bool:
    if isinstance(value, Mapping):
        items = value.get("sections")
        return _is_list(items) and all(isinstance(i, Mapping) and "section_type" in i for i in items)
    if _is_list(value) and value:
        return all(isinstance(i, Mapping) and "section_type" in i and "content" in i for i in value)
    return False


def is_platform_list(value: Any) -> bool:
    return (
        _is_list(value)
        and bool(value)
        and all(isinstance(i, Mapping) and "name" in i and "icon_url" in i for i in value)
    )


def is_country_list(value: Any) -> bool:
    return (
        _is_list(value)
        and bool(value)
        and all(isinstance(i, Mapping) and "countryCode" in i and "percentage" in i for i in value)
    )


def sniff_record(record: Any) -> SectionType | None:
    """Guess the tag of one element of an untyped result array."""
    if not isinstance(record, Mapping):
        return None
    if is_dataframe_payload(record):
        return SectionType.DATAFRAME
    if validate(record, ["final_score"]) and ("verdict" in record or "detailed_metrics" in record):
        return SectionType.VIRALITY_REPORT
    data = record.get("data")
    if isinstance(data, Mapping):
        return SectionType.KEY_VALUE
    if record and all(v is None or isinstance(v, (str, int, float, bool)) for v in record.values()):
        return SectionType.KEY_VALUE
    return None


def _normalize_text(value: Any, log_event: LogEvent | None):
    if isinstance(value, Mapping):
        for key in ("text", "content", "message", "error"):
            if isinstance(value.get(key), str):
                return value[key], ""
        return None, "expected a string"
    if value is None or _is_list(value):
        return None, "expected a string"
    return str(value), ""


def _normalize_dataframe(value: Any, log_event: LogEvent | None):
    payload = _frame_payload(_unwrap(value, "dataframe", "table"))
    if not is_dataframe_payload(payload):
        return None, "expected {columns: [...], data: [[...], ...]}"
    columns = [str(c) for c in payload["columns"]]
    width = len(columns)
    rows: list[list[Any]] = []
    adjusted: list[int] = []
    for row_idx, row in enumerate(payload["data"]):
        cells = [_scalar(c) for c in row]
        if len(cells) != width:
            adjusted.append(row_idx)
            cells = (cells + [""] * width)[:width]
        rows.append(cells)
    if adjusted:
        log_diagnostic(
            log_event,
            level="INFO",
            event="dataframe_row_normalized",
            message="Padded or truncated dataframe rows to the column count.",
            context={"columns": width, "rows": adjusted[:50]},
        )
    index = payload.get("index")
    return {
        "columns": columns,
        "data": rows,
        "index": list(index) if _is_list(index) and len(index) == len(rows) else None,
        "title": _title_of(payload, value),
    }, ""


def _normalize_key_value(value: Any, log_event: LogEvent | None):
    if not isinstance(value, Mapping):
        return None, "expected an object of metric -> value"
    data = value.get("data")
    if isinstance(data, Mapping):
        source = data
        title = _title_of(value)
    else:
        source = value
        title = None
    return {"data": {str(k): _scalar(v) for k, v in source.items()}, "title": title}, ""


def _normalize_metric_grid(value: Any, log_event: LogEvent | None):
    if not isinstance(value, Mapping):
        return None, "expected an object of platform -> metrics"
    data = value.get("data")
    source = data if isinstance(data, Mapping) else value
    title = _title_of(value) if isinstance(data, Mapping) else None
    groups: dict[str, dict[str, Any]] = {}
    loose: dict[str, Any] = {}
    for key, metrics in source.items():
        if isinstance(metrics, Mapping):
            groups[str(key)] = {str(k): _scalar(v) for k, v in metrics.items()}
        elif key != "title":
            loose[str(key)] = _scalar(metrics)
    if loose:
        groups = {"Metrics": loose, **groups}
    return {"data": groups, "title": title}, ""


def _normalize_detail_metric(raw: Any) -> dict[str, Any]:
    if not isinstance(raw, Mapping):
        return {"status": "data_error"}
    status = str(raw.get("status", "")).strip().lower()
    if status not in VIRALITY_STATUSES:
        status = "data_error"
    out: dict[str, Any] = {"status": status}
    for name in STATUS_FIELDS[status]:
        out[name] = to_number(raw.get(name))
    return out


def _normalize_virality(value: Any, log_event: LogEvent | None):
    payload = _unwrap(value, "virality_report", "report")
    if not isinstance(payload, Mapping):
        return None, "expected a virality report object"
    if not (validate(payload, ["final_score"]) or validate(payload, ["detailed_metrics"])):
        return None, "missing final_score and detailed_metrics"
    details = payload.get("detailed_metrics")
    verdict = str(payload.get("verdict") or "unknown").strip().lower() or "unknown"
    score = to_number(payload.get("final_score"))
    return {
        "artist_name": str(payload.get("artist_name") or "Unknown Artist"),
        "audience_growth_percentage": to_number(payload.get("audience_growth_percentage")),
        "engagement_growth_percentage": to_number(payload.get("engagement_growth_percentage")),
        "final_score": None if score is None else max(0.0, min(100.0, score)),
        "verdict": verdict,
        "summary": str(payload.get("summary") or ""),
        "audience_analysis": str(payload.get("audience_analysis") or ""),
        "engagement_analysis": str(payload.get("engagement_analysis") or ""),
        "detailed_metrics": (
            {str(k): _normalize_detail_metric(v) for k, v in details.items()} if isinstance(details, Mapping) else {}
        ),
        "title": _title_of(payload),
    }, ""


def _normalize_series(value: Any, default_columns: list[str]) -> dict[str, Any]:
    if not isinstance(value, Mapping):
        return {"columns": list(default_columns), "data": []}
    columns = value.get("columns")
    rows = value.get("data")
    cols = [str(c) for c in columns] if _is_list(columns) else list(default_columns)
    kept = [list(r[:4]) for r in rows if _is_list(r) and len(r) >= 2] if _is_list(rows) else []
    return {"columns": cols, "data": kept}


def _normalize_forecast(value: Any, log_event: LogEvent | None):
    payload = _unwrap(value, "forecast_chart", "forecast")
    if not isinstance(payload, Mapping):
        return None, "expected a forecast object"
    has_hist = isinstance(payload.get("historical_data"), Mapping)
    has_fc = isinstance(payload.get("forecast_data"), Mapping)
    if not (has_hist or has_fc):
        return None, "missing historical_data and forecast_data"
    return {
        "title": _title_of(payload) or "Forecast",
        "y_axis_label": str(payload.get("y_axis_label") or "Value"),
        "historical_data": _normalize_series(payload.get("historical_data"), ["date", "value"]),
        "forecast_data": _normalize_series(
            payload.get("forecast_data"), ["date", "value", "lower_bound", "upper_bound"]
        ),
    }, ""


def _normalize_multi_forecast(value: Any, log_event: LogEvent | None):
    forecasts = value.get("forecasts") if isinstance(value, Mapping) else value
    if not _is_list(forecasts):
        return None, "expected {forecasts: [...]}"
    children = [
        build_section(SectionType.FORECAST_CHART, item, _title_of(item), log_event=log_event, context=f"forecast[{i}]")
        for i, item in enumerate(forecasts)
    ]
    return {"forecasts": children, "title": _title_of(value)}, ""


def _normalize_recommendation(raw: Mapping) -> dict[str, Any]:
    reasoning = raw.get("reasoning")
    return {
        "playlist_name": str(raw.get("playlist_name") or "Untitled Playlist"),
        "curator_name": str(raw.get("curator_name") or "Unknown"),
        "platform": str(raw.get("platform") or ""),
        "followers": to_number(raw.get("playlist_followers", raw.get("followers"))),
        "url": str(raw.get("playlist_url") or raw.get("url") or ""),
        "score": to_number(raw.get("recommendation_score", raw.get("score"))),
        "reasoning": {str(k): str(v) for k, v in reasoning.items()} if isinstance(reasoning, Mapping) else {},
    }


def _normalize_playlist(value: Any, log_event: LogEvent | None):
    payload = _unwrap(value, "playlist_recommendation_report")
    if not isinstance(payload, Mapping) or not _is_list(payload.get("recommendations")):
        return None, "expected {recommendations: [...]}"
    return {
        "track_name": str(payload.get("track_name") or ""),
        "artist_name": str(payload.get("artist_name") or ""),
        "summary": str(payload.get("summary") or ""),
        "recommendations": [
            _normalize_recommendation(r) for r in payload["recommendations"] if isinstance(r, Mapping)
        ],
        "title": _title_of(payload),
    }, ""


def _normalize_multi_section(value: Any, log_event: LogEvent | None):
    items = value
    if isinstance(value, Mapping):
        items = value.get("sections", value.get("display_data"))
    if not _is_list(items):
        return None, "expected {sections: [...]}"
    children = []
    for i, item in enumerate(items):
        if isinstance(item, Mapping) and "section_type" in item:
            children.append(
                build_section(
                    str(item.get("section_type") or ""),
                    item.get("content"),
                    _title_of(item),
                    log_event=log_event,
                    context=f"sections[{i}]",
                )
            )
        else:
            children.append(_malformed("unknown", item, None, "section entry without section_type", log_event, f"sections[{i}]"))
    return {"sections": children, "title": _title_of(value)}, ""


def _normalize_platforms(value: Any, log_event: LogEvent | None):
    items = value.get("data") if isinstance(value, Mapping) else value
    if not _is_list(items):
        return None, "expected a list of platforms"
    platforms = []
    for item in items:
        if isinstance(item, str) and item.strip():
            platforms.append({"name": item.strip(), "icon_url": None})
        elif isinstance(item, Mapping) and item.get("name"):
            icon = item.get("icon_url")
            platforms.append({"name": str(item["name"]), "icon_url": str(icon) if icon else None})
    if items and not platforms:
        return None, "no platform entries carry a name"
    return {"data": platforms, "title": _title_of(value)}, ""


def _normalize_countries(value: Any, log_event: LogEvent | None):
    items = value.get("data") if isinstance(value, Mapping) else value
    if not _is_list(items):
        return None, "expected a list of {countryCode, percentage}"
    countries = []
    for item in items:
        if not isinstance(item, Mapping):
            continue
        code = item.get("countryCode", item.get("country_code"))
        pct = to_number(item.get("percentage"))
        if code and pct is not None:
            countries.append({"countryCode": str(code), "percentage": pct})
    if items and not countries:
        return None, "no country entries carry countryCode and percentage"
    return {"data": countries, "title": _title_of(value)}, ""


def _normalize_image(value: Any, log_event: LogEvent | None):
    if isinstance(value, Mapping):
        for key in ("image_base64", "data", "image"):
            if isinstance(value.get(key), str):
                return value[key].strip(), ""
        return None, "expected a base64 string"
    if isinstance(value, str) and value.strip():
        return value.strip(), ""
    return None, "expected a base64 string"


def _normalize_video(value: Any, log_event: LogEvent | None):
    if isinstance(value, Mapping):
        for key in ("video_url", "url"):
            if isinstance(value.get(key), str):
                return value[key].strip(), ""
        return None, "expected a URL string"
    if isinstance(value, str) and value.strip():
        return value.strip(), ""
    return None, "expected a URL string"


_NORMALIZERS = {
    SectionType.TEXT: _normalize_text,
    SectionType.ERROR: _normalize_text,
    SectionType.DATAFRAME: _normalize_dataframe,
    SectionType.TABLE: _normalize_dataframe,
    SectionType.KEY_VALUE: _normalize_key_value,
    SectionType.METRIC_GRID: _normalize_metric_grid,
    SectionType.VIRALITY_REPORT: _normalize_virality,
    SectionType.FORECAST_CHART: _normalize_forecast,
    SectionType.MULTI_FORECAST_DISPLAY: _normalize_multi_forecast,
    SectionType.PLAYLIST_RECOMMENDATION_REPORT: _normalize_playlist,
    SectionType.MULTI_SECTION_REPORT: _normalize_multi_section,
    SectionType.PLATFORM_DATA: _normalize_platforms,
    SectionType.COUNTRY_LISTENERSHIP_DATA: _normalize_countries,
    SectionType.IMAGE_BASE64: _normalize_image,
    SectionType.VIDEO_URL: _normalize_video,
}
ensure_exhaustive(_NORMALIZERS, "validation")


def _malformed(
    section_type: str,
    value: Any,
    title: str | None,
    reason: str,
    log_event: LogEvent | None,
    context: str,
) -> Section:
    log_diagnostic(
        log_event,
        level="WARNING",
        event="malformed_section",
        message=f"Malformed {section_type} payload: {reason}",
        context={"context": context or section_type, "section_type": section_type, "value": value_preview(value)},
    )
    return Section(section_type=section_type, content=value, title=title, malformed=True, reason=reason)


def build_section(
    section_type: Any,
    content: Any,
    title: str | None = None,
    *,
    log_event: LogEvent | None = None,
    context: str = "",
) -> Section:
    """Validate and normalize one payload into an immutable ``Section``.

    Unknown tags are kept verbatim (not malformed) so consumers can show the
    raw payload under the unrecognized type name.
    """
    tag = parse_section_type(section_type)
    if tag is None:
        return Section(section_type=str(section_type or "unknown"), content=content, title=title)
    try:
        payload, reason = _NORMALIZERS[tag](content, log_event)
    except (TypeError, ValueError, KeyError, AttributeError) as exc:
        payload, reason = None, f"normalization failed: {exc}"
    except RecursionError:
        # Children past the interpreter stack limit degrade to a malformed
        # section instead of aborting the whole response.
        payload, reason = None, "nested too deeply to normalize"
    if payload is None:
        return _malformed(tag.value, content, title, reason, log_event, context)
    if isinstance(payload, dict):
        title = title or payload.get("title")
    return Section(section_type=tag.value, content=payload, title=title)


def sections_from_array(
    items: list[Any],
    fallback_type: str = "unknown",
    *,
    log_event: LogEvent | None = None,
) -> list[Section]:
    """Sniff each element of an untyped result array, titling them 'Result N'."""
    out: list[Section] = []
    for i, item in enumerate(items):
        title = f"Result {i + 1}"
        kind = sniff_record(item)
        if kind is None:
            out.append(_malformed(fallback_type, item, title, "unrecognized record shape", log_event, f"result[{i}]"))
        else:
            out.append(build_section(kind, item, title, log_event=log_event, context=f"result[{i}]"))
    return out


def sections_from_response(
    data_type: Any,
    display_data: Any,
    answer_text: str = "",
    *,
    log_event: LogEvent | None = None,
) -> list[Section]:
    """Turn one assistant turn into the flat ``Section`` list the exporters walk."""
    answer = "" if answer_text is None else str(answer_text)
    display_data = coerce_display_data(display_data)
    tag = parse_section_type(data_type)
    if tag is SectionType.ERROR:
        message = answer or (display_data if isinstance(display_data, str) else "")
        return [build_section(SectionType.ERROR, message or "Unknown error", log_event=log_event)]

    sections: list[Section] = []
    if answer.strip():
        sections.append(Section(section_type=SectionType.TEXT.value, content=answer))
    if display_data is None or (isinstance(display_data, str) and not display_data.strip()):
        return sections
    if tag is SectionType.TEXT and isinstance(display_data, str) and display_data.strip() == answer.strip():
        return sections

    if tag is SectionType.MULTI_SECTION_REPORT or is_section_container(display_data):
        container = build_section(SectionType.MULTI_SECTION_REPORT, display_data, log_event=log_event)
        if container.malformed:
            return sections + [container]
        return sections + list(container.content["sections"])
    if is_platform_list(display_data):
        return sections + [build_section(SectionType.PLATFORM_DATA, display_data, log_event=log_event)]
    if is_country_list(display_data):
        return sections + [build_section(SectionType.COUNTRY_LISTENERSHIP_DATA, display_data, log_event=log_event)]
    if _is_list(display_data) and tag not in _LIST_PAYLOAD_TAGS:
        return sections + sections_from_array(list(display_data), str(data_type or "unknown"), log_event=log_event)
    return sections + [build_section(data_type, display_data, log_event=log_event, context="display_data")]
