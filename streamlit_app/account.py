"""Account page: own premium status and code redemption."""

import httpx
import streamlit as st

from mizan.client import MizanAPIError
from streamlit_app.common import format_until, get_client, now_string, show_api_error, sign_in_form

st.set_page_config(page_title="Account", layout="centered")
st.title("My account")
st.caption(f"Last refresh: {now_string()}")

client = get_client()
if sign_in_form(client):
    try:
        notice = client.grant_notice()
    except (MizanAPIError, httpx.TransportError):
        notice = None
    if notice is not None and notice.has_grant:
        length = f"{notice.duration_days} days" if notice.duration_days else "lifetime"
        st.success(f"A moderator granted you premium ({length}).")
        if notice.note:
            st.info(notice.note)

    status = client.get_entitlement()
    st.subheader("Premium")
    st.metric("Status", "active" if status.active else "inactive")
    st.write({"source": status.source, "until": format_until(status.until, status.active)})

    st.subheader("Redeem a code")
    with st.form("redeem"):
        code = st.text_input("Code")
        if st.form_submit_button("Redeem") and code:
            try:
                result = client.redeem_code(code)
            except MizanAPIError as exc:
                show_api_error(exc)
            else:
                if result.accepted:
                    st.success(f"Code accepted, premium until {format_until(result.until, True)}")
                else:
                    st.warning("Code not accepted")
