"""Map an assistant turn to a tree of view blocks.

``render`` decides *what* to show; ``src.display`` draws the blocks with
Streamlit. Keeping the decision pure makes the dispatch order testable
without a running script.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
from typing import Any, Callable

from src.schema import Section, SectionType, coerce_display_data, ensure_exhaustive, parse_section_type
from src.validation import (
    LogEvent,
    build_section,
    is_country_list,
    is_platform_list,
    is_section_container,
    log_diagnostic,
    sections_from_array,
    value_preview,
)


ANSWER = "answer"
MALFORMED = "malformed"
UNKNOWN_TYPE = "unknown_type"

_BARE_ARRAY_TAGS = {
    SectionType.MULTI_SECTION_REPORT,
    SectionType.MULTI_FORECAST_DISPLAY,
    SectionType.PLATFORM_DATA,
    SectionType.COUNTRY_LISTENERSHIP_DATA,
}


@dataclass(frozen=True)
class ViewBlock:
    kind: str
    payload: Any = None
    title: str | None = None
    children: tuple["ViewBlock", ...] = ()


@dataclass(frozen=True)
class View:
    data_type: str
    blocks: tuple[ViewBlock, ...]

    def kinds(self) -> list[str]:
        return [b.kind for b in self.blocks]


def raw_json(value: Any) -> str:
    try:
        return json.dumps(value, separators=(",", ":"), default=str, ensure_ascii=False)
    except (TypeError, ValueError):
        return repr(value)
    except RecursionError:
        return f"<{type(value).__name__} nested too deeply to serialize>"


def malformed_block(section: Section) -> ViewBlock:
    return ViewBlock(
        kind=MALFORMED,
        title=section.title,
        payload={
            "context": section.section_type,
            "reason": section.reason or "unexpected structure",
            "raw": section.content,
            "raw_json": raw_json(section.content),
        },
    )


def unknown_block(data_type: str, value: Any, log_event: LogEvent | None, title: str | None = None) -> ViewBlock:
    log_diagnostic(
        log_event,
        level="WARNING",
        event="unknown_data_type",
        message=f"Unrecognized data type '{data_type}'.",
        context={"data_type": data_type, "value": value_preview(value)},
    )
    return ViewBlock(
        kind=UNKNOWN_TYPE,
        title=title,
        payload={"data_type": data_type, "raw": value, "raw_json": raw_json(value)},
    )


def _leaf(kind: SectionType) -> Callable[[Section, LogEvent | None], ViewBlock]:
    def _build(section: Section, log_event: LogEvent | None) -> ViewBlock:
        return ViewBlock(kind=kind.value, payload=section.content, title=section.title)

    return _build


def _multi_section(section: Section, log_event: LogEvent | None) -> ViewBlock:
    children = tuple(section_block(child, log_event) for child in section.content["sections"])
    return ViewBlock(kind=SectionType.MULTI_SECTION_REPORT.value, title=section.title, children=children)


def _multi_forecast(section: Section, log_event: LogEvent | None) -> ViewBlock:
    children = tuple(section_block(child, log_event) for child in section.content["forecasts"])
    return ViewBlock(kind=SectionType.MULTI_FORECAST_DISPLAY.value, title=section.title, children=children)


_BLOCK_BUILDERS = {
    SectionType.TEXT: _leaf(SectionType.TEXT),
    SectionType.ERROR: _leaf(SectionType.ERROR),
    SectionType.DATAFRAME: _leaf(SectionType.DATAFRAME),
    SectionType.TABLE: _leaf(SectionType.DATAFRAME),
    SectionType.KEY_VALUE: _leaf(SectionType.KEY_VALUE),
    SectionType.METRIC_GRID: _leaf(SectionType.METRIC_GRID),
    SectionType.VIRALITY_REPORT: _leaf(SectionType.VIRALITY_REPORT),
    SectionType.FORECAST_CHART: _leaf(SectionType.FORECAST_CHART),
    SectionType.MULTI_FORECAST_DISPLAY: _multi_forecast,
    SectionType.PLAYLIST_RECOMMENDATION_REPORT: _leaf(SectionType.PLAYLIST_RECOMMENDATION_REPORT),
    SectionType.MULTI_SECTION_REPORT: _multi_section,
    SectionType.PLATFORM_DATA: _leaf(SectionType.PLATFORM_DATA),
    SectionType.COUNTRY_LISTENERSHIP_DATA: _leaf(SectionType.COUNTRY_LISTENERSHIP_DATA),
    SectionType.IMAGE_BASE64: _leaf(SectionType.IMAGE_BASE64),
    SectionType.VIDEO_URL: _leaf(SectionType.VIDEO_URL),
}
ensure_exhaustive(_BLOCK_BUILDERS, "dispatcher")


def section_block(section: Section, log_event: LogEvent | None = None) -> ViewBlock:
    if section.malformed:
        return malformed_block(section)
    tag = section.tag
    if tag is None:
        return unknown_block(section.section_type, section.content, log_event, title=section.title)
    try:
        return _BLOCK_BUILDERS[tag](section, log_event)
    except RecursionError:
        log_diagnostic(
            log_event,
            level="WARNING",
            event="malformed_section",
            message=f"{tag.value} section is nested too deeply to display.",
            context={"section_type": tag.value},
        )
        return malformed_block(
            Section(
                section_type=tag.value,
                content=section.content,
                title=section.title,
                malformed=True,
                reason="nested too deeply to display",
            )
        )


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def render(data_type: Any, display_data: Any, answer_text: Any = "", *, log_event: LogEvent | None = None) -> View:
    """Resolve one assistant turn into a ``View``; never raises on payload shape.

    Dispatch order: multi-section containers, platform and country arrays,
    generic arrays sniffed per element, then the single-tag switch.
    """
    type_name = str(data_type or "text")
    tag = parse_section_type(type_name)
    answer = "" if answer_text is None else str(answer_text)
    display_data = coerce_display_data(display_data)
    blocks: list[ViewBlock] = []

    if tag is SectionType.ERROR:
        message = answer if answer.strip() else display_data
        error = build_section(SectionType.ERROR, message or "Unknown error", log_event=log_event)
        return View(type_name, (section_block(error, log_event),))

    if answer.strip():
        blocks.append(ViewBlock(kind=ANSWER, payload=answer))
    if _is_blank(display_data):
        return View(type_name, tuple(blocks))

    if is_section_container(display_data):
        container = build_section(SectionType.MULTI_SECTION_REPORT, display_data, log_event=log_event)
        if container.malformed:
            blocks.append(malformed_block(container))
        else:
            blocks.extend(section_block(child, log_event) for child in container.content["sections"])
    elif is_platform_list(display_data):
        platforms = build_section(SectionType.PLATFORM_DATA, display_data, log_event=log_event)
        blocks.append(section_block(platforms, log_event))
    elif is_country_list(display_data):
        countries = build_section(SectionType.COUNTRY_LISTENERSHIP_DATA, display_data, log_event=log_event)
        blocks.append(section_block(countries, log_event))
    elif isinstance(display_data, (list, tuple)) and tag not in _BARE_ARRAY_TAGS:
        blocks.extend(
            section_block(s, log_event) for s in sections_from_array(list(display_data), type_name, log_event=log_event)
        )
    elif tag is None:
        blocks.append(unknown_block(type_name, display_data, log_event))
    elif tag is SectionType.TEXT and isinstance(display_data, str) and display_data.strip() == answer.strip():
        pass
    else:
        section = build_section(tag, display_data, log_event=log_event, context="display_data")
        blocks.append(section_block(section, log_event))
    return View(type_name, tuple(blocks))
