"""CareChat - Streamlit chat screen.

Thin screen over the chat engine. All state logic lives in carechat; this
file handles:
  - Building the engine and history paginator once per browser session
  - Running engine coroutines on a private event loop
  - Rendering the log, the typing placeholder and notices
  - The history view with refresh and "load more"
"""

import asyncio
import os

import streamlit as st
from dotenv import load_dotenv

from carechat.api.client import ChatApiClient
from carechat.chat.engine import ChatEngine, TypingPlaceholder
from carechat.core.credentials import Credential
from carechat.history.formatting import confidence_label, format_clock_time
from carechat.history.paginator import HistoryPaginator

load_dotenv()

st.set_page_config(
    page_title="CareChat - Health Assistant",
    layout="centered",
)


def run(coro):
    """Run an engine coroutine on this browser session's own loop."""
    return st.session_state.loop.run_until_complete(coro)


def teardown_session(state):
    """Stop the previous token's engine, history and client."""
    if "engine" in state:
        state["engine"].unmount()
    if "history" in state:
        state["history"].close()
    if "api" in state:
        state["loop"].run_until_complete(state["api"].aclose())


def init_session(token: str):
    """Build engine objects on first load, or after the token changes."""
    if "loop" not in st.session_state:
        st.session_state.loop = asyncio.new_event_loop()

    if st.session_state.get("token") == token and "engine" in st.session_state:
        return

    teardown_session(st.session_state)

    credential = Credential(token=token or None, is_authenticated=bool(token))
    api = ChatApiClient(credential)
    st.session_state.token = token
    st.session_state.api = api
    st.session_state.engine = ChatEngine(credential, api=api)
    st.session_state.history = HistoryPaginator(api)
    st.session_state.history_loaded = False
    run(st.session_state.engine.mount())


def show_notices(board):
    for notice in board.drain():
        st.error(f"[{notice.title.upper()}] {notice.message}")


def render_message(item):
    """Render one log entry, or the typing placeholder."""
    if isinstance(item, TypingPlaceholder):
        with st.chat_message("assistant"):
            st.caption(item.text)
        return

    with st.chat_message(item.sender.value):
        st.markdown(item.content)
        footer = format_clock_time(item.timestamp.astimezone())
        label = confidence_label(item.metadata)
        if label:
            footer = f"{footer} • {label}"
        st.caption(footer)


def chat_view(engine: ChatEngine):
    show_notices(engine.notices)

    if not engine.credential.usable:
        st.info("Sign in to start chatting with your health assistant.")
        return

    if not engine.is_session_ready:
        st.warning("[ERROR] Could not start a conversation.")
        if st.button("Retry", disabled=engine.is_starting):
            run(engine.retry_session())
            st.rerun()
        return

    for item in engine.visible_items():
        render_message(item)

    if user_input := st.chat_input("Describe your symptoms or ask a question...",
                                   disabled=engine.is_pending):
        with st.chat_message("user"):
            st.markdown(user_input)
        with st.spinner("AI is thinking..."):
            run(engine.send_message(user_input))
        st.rerun()


def history_view(history: HistoryPaginator):
    if not st.session_state.history_loaded:
        run(history.load_first_page())
        st.session_state.history_loaded = True

    show_notices(history.notices)

    if st.button("Refresh", use_container_width=True):
        run(history.refresh())
        st.rerun()

    if history.is_empty:
        st.markdown("### No Chat History")
        st.markdown("Start a conversation with your AI health assistant to see your chat history here.")
        return

    st.caption(history.total_label())
    for item in history.items():
        with st.container(border=True):
            marker = "🟢 " if item.is_active else ""
            st.markdown(f"**{marker}{item.title}**")
            st.write(item.preview)
            st.caption(f"{item.time_label} · {item.count_label}")

    if history.pagination.has_more:
        if st.button("Load more", use_container_width=True, disabled=history.is_busy):
            run(history.load_next_page())
            st.rerun()


def main():
    """Run the Streamlit chat application."""
    token = os.environ.get("API_TOKEN", "")
    with st.sidebar:
        st.markdown("### Account")
        token = st.text_input("Access token", value=token, type="password")

    init_session(token)
    engine: ChatEngine = st.session_state.engine

    st.title("CareChat")
    st.caption("Your AI health assistant")

    with st.sidebar:
        view = st.radio("View", ["Chat", "History"], label_visibility="collapsed")

        if engine.session is not None:
            st.markdown("### Session Info")
            st.code(engine.session.title, language=None)

        st.divider()
        if st.button("[NEW] New Conversation", use_container_width=True,
                     disabled=engine.is_starting or engine.is_pending):
            run(engine.new_conversation())
            st.rerun()

    if view == "Chat":
        chat_view(engine)
    else:
        history_view(st.session_state.history)


if __name__ == "__main__":
    main()
