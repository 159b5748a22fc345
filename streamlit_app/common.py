"""Shared API helpers for the Streamlit console and account pages."""

from datetime import datetime

import streamlit as st

from mizan.client import MizanAPIError, MizanClient


def get_client() -> MizanClient:
    """Client bound to the signed-in session, kept across reruns."""
    if "mizan_client" not in st.session_state:
        st.session_state["mizan_client"] = MizanClient()
    return st.session_state["mizan_client"]


def sign_in_form(client: MizanClient) -> bool:
    """Render the identity token form; returns True once the client holds a token."""
    if client.token:
        cols = st.columns([4, 1])
        cols[0].caption(f"Signed in as user #{client.user_id}")
        if cols[1].button("Sign out"):
            client.logout()
            st.rerun()
        return True

    with st.form("sign_in"):
        identity_token = st.text_input("Identity token", type="password")
        if st.form_submit_button("Sign in") and identity_token:
            try:
                client.exchange_identity(identity_token.strip())
            except MizanAPIError as exc:
                st.error(f"Sign-in failed: {exc.detail}")
                return False
            st.rerun()
    return False


def show_api_error(exc: MizanAPIError) -> None:
    st.error(f"{exc.kind or exc.status_code}: {exc.detail}")


def format_until(value: datetime | None, active: bool) -> str:
    if not active:
        return "inactive"
    return "lifetime" if value is None else value.strftime("%Y-%m-%d %H:%M UTC")


def now_string() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M")
