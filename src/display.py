"""Streamlit rendering of dispatcher views."""

from __future__ import annotations

from typing import Any, Callable

import pandas as pd
import streamlit as st

from src.charts import forecast_figure, historical_figure
from src.dispatcher import ANSWER, MALFORMED, UNKNOWN_TYPE, View, ViewBlock, render
from src.formatters import (
    convert_snake_case_to_title_case,
    format_growth,
    format_number_compact,
    format_smart_value,
)
from src.media import decode_image_base64, export_filename, image_file_info, is_http_url
from src.schema import SectionType, ensure_exhaustive, parse_section_type
from src.validation import LogEvent, log_diagnostic
from src.view_state import (
    METRIC_GROUPS,
    SORT_ASC,
    STATUS_STYLES,
    WINDOW_LABELS,
    WINDOW_OFFSETS,
    display_frame,
    forecast_view,
    group_detailed_metrics,
    metric_grid_groups,
    metric_rows,
    next_sort_state,
    playlist_summary,
    progress_percentage,
    score_tier,
    sorted_countries,
    split_text_blocks,
    status_counts,
    table_rows,
)


VERDICT_STYLES = {
    "viral": "green",
    "trending": "blue",
    "stable": "violet",
    "declining": "red",
    "unknown": "gray",
}
TIER_STYLES = {"high": "green", "medium": "orange", "low": "gray"}
GROUP_LABELS = {"audience": "Audience Metrics", "engagement": "Engagement Metrics", "other": "Other Metrics"}

Renderer = Callable[[ViewBlock, str, "LogEvent | None"], None]


def _heading(block: ViewBlock) -> None:
    if block.title:
        st.markdown(f"**{block.title}**")


def _no_data() -> None:
    st.info("No data available")


def _render_markdown_text(text: str) -> None:
    for kind, payload in split_text_blocks(text):
        if kind == "table":
            st.dataframe(display_frame(payload), width="stretch", hide_index=True)
        else:
            st.markdown(payload)


def _render_answer(block: ViewBlock, key: str, log_event: LogEvent | None) -> None:
    _render_markdown_text(str(block.payload))


def _render_text(block: ViewBlock, key: str, log_event: LogEvent | None) -> None:
    _heading(block)
    _render_markdown_text(str(block.payload))


def _render_error(block: ViewBlock, key: str, log_event: LogEvent | None) -> None:
    st.error(str(block.payload), icon="🚨")


def _sort_caption(columns: list[str], state: tuple[int, str] | None) -> str:
    if state is None:
        return "Unsorted"
    arrow = "ascending" if state[1] == SORT_ASC else "descending"
    return f"Sorted by {convert_snake_case_to_title_case(columns[state[0]])} ({arrow})"


def _render_dataframe(block: ViewBlock, key: str, log_event: LogEvent | None) -> None:
    payload = block.payload
    columns = payload["columns"]
    _heading(block)
    if not columns:
        _no_data()
        return
    sort_key = f"{key}_sort_state"
    sort_state = st.session_state.get(sort_key)
    search_col, pick_col, button_col = st.columns([3, 2, 1])
    query = search_col.text_input("Search", key=f"{key}_search", placeholder="Search all cells")
    sort_column = pick_col.selectbox(
        "Sort column",
        options=list(range(len(columns))),
        format_func=lambda i: convert_snake_case_to_title_case(columns[i]),
        key=f"{key}_sort_column",
    )
    if button_col.button("Sort", key=f"{key}_sort_click", help="Cycle ascending, descending, unsorted"):
        sort_state = next_sort_state(sort_state, int(sort_column))
        st.session_state[sort_key] = sort_state

    rows = table_rows(payload, query, sort_state)
    frame = display_frame(payload, rows)
    st.caption(f"{len(rows)} of {len(payload['data'])} rows · {_sort_caption(columns, sort_state)}")
    if frame.columns.is_unique and len(frame.columns):
        styled = frame.style.map(lambda _: "font-weight: 600", subset=[frame.columns[0]])
        st.dataframe(styled, width="stretch", hide_index=True)
    else:
        st.dataframe(frame, width="stretch", hide_index=True)


def _metric_columns(rows: list[tuple[str, str]], per_row: int = 3) -> None:
    for start in range(0, len(rows), per_row):
        cols = st.columns(per_row)
        for col, (label, value) in zip(cols, rows[start : start + per_row]):
            col.metric(label, value)


def _render_key_value(block: ViewBlock, key: str, log_event: LogEvent | None) -> None:
    _heading(block)
    rows = metric_rows(SectionType.KEY_VALUE.value, block.payload)
    if not rows:
        _no_data()
        return
    _metric_columns(rows)


def _render_metric_grid(block: ViewBlock, key: str, log_event: LogEvent | None) -> None:
    _heading(block)
    groups = metric_grid_groups(block.payload)
    if not groups:
        _no_data()
        return
    for group in groups:
        with st.container(border=True):
            header = f"**{group.display_name}**"
            if group.links:
                header += "  " + " ".join(f"[↗ Open]({url})" for url in group.links)
            st.markdown(header)
            rows = [
                (convert_snake_case_to_title_case(name), format_smart_value(name, value))
                for name, value in group.metrics
            ]
            rows.extend((f"{label} Range", text) for label, text in group.earnings)
            if rows:
                _metric_columns(rows, per_row=4)
            else:
                st.caption("No metrics reported.")


def _render_detail_metric(name: str, metric: dict[str, Any]) -> None:
    status = metric.get("status", "data_error")
    style = STATUS_STYLES.get(status, STATUS_STYLES["data_error"])
    st.markdown(f"{style['icon']} **{convert_snake_case_to_title_case(name)}** :{style['color']}[{style['label']}]")
    if status == "calculated":
        st.caption(
            f"Growth {format_growth(metric.get('growth'))} · "
            f"Baseline {format_number_compact(metric.get('baseline_avg'))} · "
            f"Recent {format_number_compact(metric.get('recent_avg'))}"
        )
        st.progress(progress_percentage(metric.get("baseline_avg"), metric.get("recent_avg")) / 100.0)
    elif status == "unavailable":
        st.caption(f"Recent {format_number_compact(metric.get('recent_avg'))} · no baseline available")


def _render_virality(block: ViewBlock, key: str, log_event: LogEvent | None) -> None:
    report = block.payload
    st.subheader(block.title or f"Virality Report: {report['artist_name']}")
    score = report.get("final_score")
    c1, c2, c3 = st.columns(3)
    c1.metric("Virality Score", "N/A" if score is None else f"{score:.0f}/100")
    c2.metric("Audience Growth", format_growth(report.get("audience_growth_percentage")))
    c3.metric("Engagement Growth", format_growth(report.get("engagement_growth_percentage")))
    verdict = report.get("verdict", "unknown")
    st.markdown(f"**Verdict:** :{VERDICT_STYLES.get(verdict, 'gray')}[{verdict.title()}]")
    if score is not None:
        st.progress(score / 100.0)
    if report.get("summary"):
        st.write(report["summary"])
    left, right = st.columns(2)
    if report.get("audience_analysis"):
        left.markdown("**Audience Analysis**")
        left.write(report["audience_analysis"])
    if report.get("engagement_analysis"):
        right.markdown("**Engagement Analysis**")
        right.write(report["engagement_analysis"])

    details = report.get("detailed_metrics", {})
    if not details:
        return
    counts = status_counts(details)
    st.caption(
        " · ".join(f"{STATUS_STYLES[s]['icon']} {n} {STATUS_STYLES[s]['label'].lower()}" for s, n in counts.items())
    )
    grouped = group_detailed_metrics(details)
    for group_name in METRIC_GROUPS:
        items = grouped[group_name]
        if not items:
            continue
        st.markdown(f"##### {GROUP_LABELS[group_name]}")
        for name, metric in items:
            _render_detail_metric(name, metric)


def _render_forecast(block: ViewBlock, key: str, log_event: LogEvent | None) -> None:
    window = st.selectbox(
        "Time window",
        options=list(WINDOW_OFFSETS),
        format_func=lambda k: WINDOW_LABELS[k],
        key=f"{key}_window",
    )
    view = forecast_view(block.payload, window)
    st.markdown(f"**{block.title or view.title}**")
    hist = view.historical_stats
    fc = view.forecast_stats
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Historical Points", hist["count"])
    c2.metric("Historical Average", "N/A" if hist["average"] is None else format_number_compact(hist["average"]))
    c3.metric("Forecast Average", "N/A" if fc["average"] is None else format_number_compact(fc["average"]))
    c4.metric("Projected Change", format_growth(fc["projected_change"]))

    hist_fig = historical_figure(view)
    if hist_fig is None:
        st.info("No historical data in the selected window.")
    else:
        st.plotly_chart(hist_fig, width="stretch", key=f"{key}_hist_chart")
    fc_fig = forecast_figure(view)
    if fc_fig is None:
        st.info("No forecast data available.")
    else:
        st.plotly_chart(fc_fig, width="stretch", key=f"{key}_fc_chart")
    if st.toggle("Show data", key=f"{key}_show_data"):
        frames = []
        if not view.historical.empty:
            frames.append(view.historical.assign(series="Historical"))
        if not view.forecast.empty:
            frames.append(view.forecast.assign(series="Forecast"))
        if frames:
            st.dataframe(pd.concat(frames, ignore_index=True), width="stretch", hide_index=True)


def _render_multi_forecast(block: ViewBlock, key: str, log_event: LogEvent | None) -> None:
    _heading(block)
    children = block.children
    if not children:
        _no_data()
        return
    labels = [child.title or f"Forecast {i + 1}" for i, child in enumerate(children)]
    mode = st.radio("Forecast view", ["Single", "Grid"], horizontal=True, key=f"{key}_mode")
    if mode == "Single":
        picked = st.selectbox(
            "Forecast",
            options=list(range(len(children))),
            format_func=lambda i: labels[i],
            key=f"{key}_pick",
        )
        render_block(children[int(picked)], f"{key}_f{int(picked)}", log_event)
        return
    cols = st.columns(2)
    for idx, child in enumerate(children):
        with cols[idx % 2]:
            with st.container(border=True):
                if st.toggle(labels[idx], value=True, key=f"{key}_open{idx}"):
                    render_block(child, f"{key}_g{idx}", log_event)


def _render_playlist(block: ViewBlock, key: str, log_event: LogEvent | None) -> None:
    report = block.payload
    heading = block.title or "Playlist Recommendations"
    if report.get("track_name"):
        heading += f": {report['track_name']}"
        if report.get("artist_name"):
            heading += f" by {report['artist_name']}"
    st.subheader(heading)
    if report.get("summary"):
        st.write(report["summary"])
    summary = playlist_summary(report)
    c1, c2, c3 = st.columns(3)
    c1.metric("Recommendations", summary["total"])
    c2.metric("Total Followers", format_number_compact(summary["total_followers"]))
    c3.metric("Average Score", "N/A" if summary["average_score"] is None else f"{summary['average_score']:.1f}")
    if not report["recommendations"]:
        _no_data()
        return
    for idx, rec in enumerate(report["recommendations"]):
        with st.container(border=True):
            score = rec.get("score")
            badge = "Score N/A" if score is None else f"Score {score:.0f}"
            color = TIER_STYLES[score_tier(score)]
            st.markdown(f"**{rec['playlist_name']}** :{color}-background[{badge}]")
            meta = [rec["curator_name"]]
            if rec.get("platform"):
                meta.append(rec["platform"])
            if rec.get("followers") is not None:
                meta.append(f"{format_number_compact(rec['followers'])} followers")
            st.caption(" · ".join(meta))
            if is_http_url(rec.get("url")):
                st.markdown(f"[Open playlist ↗]({rec['url']})")
            if rec["reasoning"]:
                with st.expander("Reasoning", expanded=False):
                    for factor, text in rec["reasoning"].items():
                        st.markdown(f"- **{convert_snake_case_to_title_case(factor)}**: {text}")


def _render_multi_section(block: ViewBlock, key: str, log_event: LogEvent | None) -> None:
    if block.title:
        st.subheader(block.title)
    if not block.children:
        _no_data()
        return
    for idx, child in enumerate(block.children):
        with st.container(border=True):
            try:
                render_block(child, f"{key}_s{idx}", log_event)
            except RecursionError:
                log_diagnostic(
                    log_event,
                    level="WARNING",
                    event="malformed_section",
                    message="Section is nested too deeply to display.",
                    context={"key": key, "child": idx},
                )
                st.warning("This section is nested too deeply to display.")


def _render_platforms(block: ViewBlock, key: str, log_event: LogEvent | None) -> None:
    _heading(block)
    platforms = block.payload["data"]
    if not platforms:
        _no_data()
        return
    per_row = min(4, len(platforms))
    for start in range(0, len(platforms), per_row):
        cols = st.columns(per_row)
        for col, item in zip(cols, platforms[start : start + per_row]):
            with col:
                if is_http_url(item.get("icon_url")):
                    st.image(item["icon_url"], width=32)
                st.markdown(f":blue-background[{item['name']}]")


def _render_countries(block: ViewBlock, key: str, log_event: LogEvent | None) -> None:
    _heading(block)
    countries = sorted_countries(block.payload["data"])
    if not countries:
        _no_data()
        return
    for start in range(0, len(countries), 3):
        cols = st.columns(3)
        for col, item in zip(cols, countries[start : start + 3]):
            with col:
                with st.container(border=True):
                    st.markdown(f"{item['flag']} **{item['name']}**")
                    st.metric("Listeners", f"{item['percentage']:.1f}%", label_visibility="collapsed")
                    st.progress(min(max(item["percentage"], 0.0), 100.0) / 100.0)


def _render_image(block: ViewBlock, key: str, log_event: LogEvent | None) -> None:
    _heading(block)
    data = decode_image_base64(block.payload)
    if data is None:
        log_diagnostic(
            log_event,
            level="WARNING",
            event="media_decode_failed",
            message="Image payload could not be decoded.",
            context={"length": len(str(block.payload))},
        )
        st.info("Image could not be displayed.")
        return
    mime, ext = image_file_info(data)
    try:
        st.image(data)
    except Exception as exc:
        log_diagnostic(
            log_event,
            level="WARNING",
            event="media_decode_failed",
            message="Image payload could not be rendered.",
            context={"length": len(data)},
            exc=exc,
        )
        st.info("Image could not be displayed.")
        return
    st.download_button(
        "Download Image",
        data,
        file_name=export_filename("image", ext),
        mime=mime,
        key=f"{key}_download",
    )


def _render_video(block: ViewBlock, key: str, log_event: LogEvent | None) -> None:
    _heading(block)
    url = str(block.payload)
    if not is_http_url(url):
        log_diagnostic(
            log_event,
            level="WARNING",
            event="media_decode_failed",
            message="Video URL is not an absolute http(s) URL.",
            context={"url": url[:500]},
        )
        st.info("Video could not be loaded.")
        return
    st.video(url)
    st.markdown(f"[Download Video ↗]({url})")


def _render_malformed(block: ViewBlock, key: str, log_event: LogEvent | None) -> None:
    payload = block.payload
    label = block.title or convert_snake_case_to_title_case(payload["context"])
    st.warning(f"{label}: data could not be verified ({payload['reason']}).", icon="⚠️")
    with st.expander("Raw data (unverified)", expanded=False):
        st.code(payload["raw_json"], language="json")


def _render_unknown(block: ViewBlock, key: str, log_event: LogEvent | None) -> None:
    payload = block.payload
    st.warning(f"Unsupported data type: {payload['data_type']}", icon="⚠️")
    with st.expander(f"Raw data ({payload['data_type']})", expanded=False):
        st.code(payload["raw_json"], language="json")


_SECTION_RENDERERS: dict[SectionType, Renderer] = {
    SectionType.TEXT: _render_text,
    SectionType.ERROR: _render_error,
    SectionType.DATAFRAME: _render_dataframe,
    SectionType.TABLE: _render_dataframe,
    SectionType.KEY_VALUE: _render_key_value,
    SectionType.METRIC_GRID: _render_metric_grid,
    SectionType.VIRALITY_REPORT: _render_virality,
    SectionType.FORECAST_CHART: _render_forecast,
    SectionType.MULTI_FORECAST_DISPLAY: _render_multi_forecast,
    SectionType.PLAYLIST_RECOMMENDATION_REPORT: _render_playlist,
    SectionType.MULTI_SECTION_REPORT: _render_multi_section,
    SectionType.PLATFORM_DATA: _render_platforms,
    SectionType.COUNTRY_LISTENERSHIP_DATA: _render_countries,
    SectionType.IMAGE_BASE64: _render_image,
    SectionType.VIDEO_URL: _render_video,
}
ensure_exhaustive(_SECTION_RENDERERS, "display")

_BLOCK_RENDERERS: dict[str, Renderer] = {
    ANSWER: _render_answer,
    MALFORMED: _render_malformed,
    UNKNOWN_TYPE: _render_unknown,
}


def render_block(block: ViewBlock, key: str, log_event: LogEvent | None = None) -> None:
    tag = parse_section_type(block.kind)
    renderer = _SECTION_RENDERERS[tag] if tag is not None else _BLOCK_RENDERERS[block.kind]
    renderer(block, key, log_event)


def render_view(view: View, key_prefix: str, log_event: LogEvent | None = None) -> None:
    for idx, block in enumerate(view.blocks):
        render_block(block, f"{key_prefix}_b{idx}", log_event)


def render_response(
    data_type: Any,
    display_data: Any,
    answer_text: Any,
    key_prefix: str,
    log_event: LogEvent | None = None,
) -> View:
    """Dispatch and draw one assistant turn; returns the resolved view."""
    view = render(data_type, display_data, answer_text, log_event=log_event)
    render_view(view, key_prefix, log_event)
    return view
