import json
from copy import deepcopy
from pathlib import Path

import pandas as pd
import streamlit as st

from src.display import render_response
from src.excel_export import export_messages_to_excel
from src.formatters import format_timestamp
from src.pdf_export import export_messages_to_pdf
from src.runtime_logging import (
    append_runtime_event,
    clear_runtime_events,
    install_global_exception_logging,
    runtime_events_frame,
    runtime_log_path,
)
from src.samples import sample_responses
from src.schema import ROLE_USER, AssistantResponse, ChatMessage


install_global_exception_logging()


UI_DEFAULTS = {
    "chat_messages": [],
    "prepared_exports": {},
    "gallery_choice": "Dataframe",
    "pasted_payload": "",
    "runtime_log_limit": 120,
    "runtime_log_levels": [],
}

LOG_LEVELS = ("ERROR", "WARNING", "INFO")

PDF_MIME = "application/pdf"
XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

NO_BACKEND_NOTICE = (
    "No assistant backend is connected to this dashboard. Add a response from the sample gallery, "
    "paste a response payload in the sidebar, or send a JSON response object as your message."
)


def _now() -> pd.Timestamp:
    return pd.Timestamp.now(tz="UTC").tz_localize(None)


def _messages() -> list[ChatMessage]:
    return st.session_state["chat_messages"]


def _append_message(message: ChatMessage) -> None:
    st.session_state["chat_messages"] = _messages() + [message]
    # Prepared files no longer describe the whole chat once it grows.
    st.session_state["prepared_exports"] = {}


def _append_turn(question: str, payload: dict) -> None:
    if question.strip():
        _append_message(ChatMessage(role=ROLE_USER, content=question, timestamp=_now()))
    response = AssistantResponse.from_payload(payload)
    _append_message(ChatMessage.from_response(response, timestamp=_now()))


def _parse_response_json(text: str) -> dict | None:
    try:
        payload = json.loads(text)
    except (json.JSONDecodeError, RecursionError) as exc:
        append_runtime_event(
            level="WARNING",
            event="pasted_payload_invalid",
            message="Pasted response is not valid JSON.",
            context={"length": len(text)},
            exc=exc,
        )
        return None
    if not isinstance(payload, dict):
        append_runtime_event(
            level="WARNING",
            event="pasted_payload_invalid",
            message="Pasted response must be a JSON object.",
            context={"type": type(payload).__name__},
        )
        return None
    return payload


def _export_options(title: str, kind: str) -> dict:
    return {"title": title, "filename_kind": kind, "log_event": append_runtime_event}


def _prepare_export(key: str, builder, messages: list[ChatMessage], title: str, kind: str) -> None:
    try:
        st.session_state["prepared_exports"][key] = builder(messages, _export_options(title, kind))
    except Exception as exc:
        append_runtime_event(
            level="ERROR",
            event="export_failed",
            message=f"Failed to prepare {kind} export.",
            context={"key": key, "messages": len(messages)},
            exc=exc,
        )
        st.error("Export failed. See Runtime Diagnostics for details.")


def _export_controls(messages: list[ChatMessage], key: str, title: str, kind: str) -> None:
    """Prepare buttons build the files on demand; download buttons appear once built."""
    prepared = st.session_state["prepared_exports"]
    pdf_col, pdf_dl, xlsx_col, xlsx_dl = st.columns(4)
    if pdf_col.button("Prepare PDF", key=f"{key}_prepare_pdf"):
        _prepare_export(f"{key}_pdf", export_messages_to_pdf, messages, title, kind)
    if xlsx_col.button("Prepare Excel", key=f"{key}_prepare_xlsx"):
        _prepare_export(f"{key}_xlsx", export_messages_to_excel, messages, title, kind)
    pdf_doc = prepared.get(f"{key}_pdf")
    if pdf_doc is not None:
        pdf_dl.download_button(
            "Download PDF",
            pdf_doc.data,
            file_name=pdf_doc.filename,
            mime=PDF_MIME,
            key=f"{key}_download_pdf",
        )
    workbook = prepared.get(f"{key}_xlsx")
    if workbook is not None:
        xlsx_dl.download_button(
            "Download Excel",
            workbook.data,
            file_name=workbook.filename,
            mime=XLSX_MIME,
            key=f"{key}_download_xlsx",
        )


def _render_message(idx: int, message: ChatMessage) -> None:
    with st.chat_message(message.role):
        if message.timestamp is not None:
            st.caption(format_timestamp(message.timestamp, "datetime"))
        if message.role == ROLE_USER:
            st.markdown(message.content)
            return
        render_response(
            message.data_type,
            message.display_data,
            message.content,
            key_prefix=f"msg{idx}",
            log_event=append_runtime_event,
        )
        _export_controls([message], key=f"msg{idx}", title=f"Chat Message {idx + 1}", kind=f"message_{idx + 1}")


def _render_runtime_diagnostics() -> None:
    st.subheader("Runtime Diagnostics")
    log_path = Path(runtime_log_path())
    st.caption(f"Runtime log file: `{log_path}`")
    st.number_input(
        "Recent runtime log rows",
        min_value=20,
        max_value=2000,
        step=20,
        key="runtime_log_limit",
        help="Malformed payloads, unknown data types and export failures are recorded here.",
    )
    st.multiselect(
        "Levels",
        options=list(LOG_LEVELS),
        key="runtime_log_levels",
        help="Leave empty to show every level.",
    )
    levels = st.session_state["runtime_log_levels"] or None
    events = runtime_events_frame(limit=int(st.session_state["runtime_log_limit"]), levels=levels)
    if events.empty:
        st.caption("No runtime events logged yet.")
    else:
        st.dataframe(events, width="stretch", hide_index=True)
    if log_path.exists():
        st.download_button(
            "Download Runtime Log (JSONL)",
            log_path.read_text(encoding="utf-8"),
            file_name="chat_dashboard_runtime_events.jsonl",
            mime="application/x-ndjson",
        )
        if st.button("Clear Runtime Log"):
            if clear_runtime_events():
                st.success("Runtime log cleared.")
                st.rerun()
            else:
                st.warning("Could not clear runtime log file.")


st.set_page_config(page_title="Chat Insights Dashboard", layout="wide")
st.title("Chat Insights Dashboard")
st.caption("Structured assistant results: tables, metric grids, forecasts, reports, and PDF/Excel export.")

for k, v in UI_DEFAULTS.items():
    if k not in st.session_state:
        st.session_state[k] = deepcopy(v)

samples = sample_responses()

with st.sidebar:
    st.header("Sample Gallery")
    st.selectbox("Sample response", options=list(samples), key="gallery_choice")
    add_col, all_col = st.columns(2)
    if add_col.button("Add to chat", key="add_sample"):
        choice = st.session_state["gallery_choice"]
        payload = samples[choice]
        _append_turn(payload.get("query_str") or choice, payload)
    if all_col.button("Add all", key="add_all_samples"):
        for label, payload in samples.items():
            _append_turn(payload.get("query_str") or label, payload)

    st.header("Paste Response")
    st.text_area(
        "Response JSON",
        key="pasted_payload",
        height=160,
        help="An object with answer_str, display_data, data_type and optionally status_bool.",
    )
    if st.button("Add pasted response", key="add_pasted"):
        pasted = _parse_response_json(st.session_state["pasted_payload"])
        if pasted is None:
            st.error("Paste a JSON object, for example {\"data_type\": \"text\", \"answer_str\": \"Hi\"}.")
        else:
            _append_turn("", pasted)

    st.divider()
    if st.button("Clear chat", key="clear_chat"):
        st.session_state["chat_messages"] = []
        st.session_state["prepared_exports"] = {}

prompt = st.chat_input("Ask about your artists, tracks or playlists", key="chat_prompt")
if prompt:
    _append_message(ChatMessage(role=ROLE_USER, content=prompt, timestamp=_now()))
    direct = None
    if prompt.strip().startswith("{"):
        direct = _parse_response_json(prompt)
    reply = direct if direct is not None else {"answer_str": NO_BACKEND_NOTICE, "data_type": "text"}
    _append_message(ChatMessage.from_response(AssistantResponse.from_payload(reply), timestamp=_now()))

chat_tab, diagnostics_tab = st.tabs(["Chat", "Runtime Diagnostics"])

with chat_tab:
    messages = _messages()
    if not messages:
        st.info("Add a sample response from the sidebar or send a message to start.")
    for idx, message in enumerate(messages):
        _render_message(idx, message)
    if messages:
        st.subheader("Export Chat")
        st.caption(f"{len(messages)} messages")
        _export_controls(messages, key="chat", title="Chat Export", kind="chat_export")

with diagnostics_tab:
    _render_runtime_diagnostics()
