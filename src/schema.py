"""Section variant model shared by the dashboard and the export engines."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import json
from typing import Any, Iterable, Mapping


class SectionType(str, Enum):
    TEXT = "text"
    ERROR = "error"
    DATAFRAME = "dataframe"
    TABLE = "table"
    KEY_VALUE = "key_value"
    METRIC_GRID = "metric_grid"
    VIRALITY_REPORT = "virality_report"
    FORECAST_CHART = "forecast_chart"
    MULTI_FORECAST_DISPLAY = "multi_forecast_display"
    PLAYLIST_RECOMMENDATION_REPORT = "playlist_recommendation_report"
    MULTI_SECTION_REPORT = "multi_section_report"
    PLATFORM_DATA = "platform_data"
    COUNTRY_LISTENERSHIP_DATA = "country_listenership_data"
    IMAGE_BASE64 = "image_base64"
    VIDEO_URL = "video_url"


SECTION_TYPE_VALUES = frozenset(t.value for t in SectionType)

VIRALITY_STATUSES = ("calculated", "unavailable", "data_error")

# Which optional numeric fields each detailed-metric status may carry.
STATUS_FIELDS: dict[str, tuple[str, ...]] = {
    "calculated": ("growth", "baseline_avg", "recent_avg"),
    "unavailable": ("recent_avg",),
    "data_error": (),
}

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"


def parse_section_type(value: Any) -> SectionType | None:
    if isinstance(value, SectionType):
        return value
    text = str(value or "").strip().lower()
    if text in SECTION_TYPE_VALUES:
        return SectionType(text)
    return None


def ensure_exhaustive(handlers: Mapping[Any, Any], consumer: str) -> None:
    """Raise if ``handlers`` does not cover every ``SectionType``.

    Each renderer and exporter calls this at import so a newly added tag
    cannot reach a consumer that silently ignores it.
    """
    missing = [t.value for t in SectionType if t not in handlers]
    if missing:
        raise TypeError(f"{consumer} has no handler for section types: {', '.join(missing)}")


@dataclass(frozen=True)
class Section:
    """One tagged unit of assistant output.

    ``content`` holds the canonical payload after normalization. When
    ``malformed`` is set it holds the raw value instead and ``reason`` says
    what was wrong with it.
    """

    section_type: str
    content: Any
    title: str | None = None
    malformed: bool = False
    reason: str = ""

    @property
    def tag(self) -> SectionType | None:
        return parse_section_type(self.section_type)

    @property
    def is_known(self) -> bool:
        return self.tag is not None

    def display_title(self, fallback: str = "") -> str:
        if self.title:
            return str(self.title)
        return fallback


def coerce_display_data(value: Any) -> Any:
    if isinstance(value, str):
        text = value.strip()
        if text[:1] in ("{", "["):
            try:
                return json.loads(text)
            except (json.JSONDecodeError, RecursionError):
                return value
    return value


@dataclass(frozen=True)
class AssistantResponse:
    answer_str: str = ""
    display_data: Any = None
    data_type: str = "text"
    query_str: str | None = None
    status_bool: bool = True

    @classmethod
    def from_payload(cls, payload: Any) -> "AssistantResponse":
        """Build a response from one wire turn, tolerating missing or odd fields."""
        if not isinstance(payload, Mapping):
            return cls(answer_str="" if payload is None else str(payload))
        answer = payload.get("answer_str")
        data_type = payload.get("data_type")
        query = payload.get("query_str")
        status = payload.get("status_bool", True)
        return cls(
            answer_str="" if answer is None else str(answer),
            display_data=coerce_display_data(payload.get("display_data")),
            data_type=str(data_type).strip() if data_type else "text",
            query_str=None if query is None else str(query),
            status_bool=status if isinstance(status, bool) else True,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "answer_str": self.answer_str,
            "display_data": self.display_data,
            "data_type": self.data_type,
            "query_str": self.query_str,
            "status_bool": self.status_bool,
        }


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str
    timestamp: Any = None
    display_data: Any = None
    data_type: str | None = None

    @classmethod
    def from_response(cls, response: AssistantResponse, timestamp: Any = None) -> "ChatMessage":
        data_type = response.data_type
        if not response.status_bool:
            data_type = SectionType.ERROR.value
        return cls(
            role=ROLE_ASSISTANT,
            content=response.answer_str,
            timestamp=timestamp,
            display_data=response.display_data,
            data_type=data_type,
        )


def chat_messages(items: Iterable[Any]) -> list[ChatMessage]:
    out: list[ChatMessage] = []
    for item in items or []:
        if isinstance(item, ChatMessage):
            out.append(item)
        elif isinstance(item, Mapping):
            out.append(
                ChatMessage(
                    role=str(item.get("role", ROLE_ASSISTANT)),
                    content="" if item.get("content") is None else str(item.get("content")),
                    timestamp=item.get("timestamp"),
                    display_data=item.get("display_data"),
                    data_type=item.get("data_type"),
                )
            )
    return out
