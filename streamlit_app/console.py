"""Moderator console.

The role shown here comes from check-status and only decides which
controls are drawn; every action is re-authorized by the server.
"""

import streamlit as st

from mizan.client import MizanAPIError
from streamlit_app.common import format_until, get_client, now_string, show_api_error, sign_in_form

ROLE_CHOICES = ["read_only", "full", "super_admin"]
AUDIT_ACTIONS = ["", "grant_premium", "revoke_premium", "view_premium_history", "view_user_activity", "grant_mod_role", "revoke_mod_role", "issue_premium_code"]

st.set_page_config(page_title="Moderation", layout="wide")
st.title("Moderation console")
st.caption(f"Last refresh: {now_string()}")

client = get_client()
if not sign_in_form(client):
    st.stop()

try:
    mod_status = client.check_status()
except MizanAPIError as exc:
    show_api_error(exc)
    st.stop()

if not mod_status.authorized:
    st.warning("This account has no moderator role.")
    st.stop()

st.caption(f"Role: {mod_status.mod_level}")
can_write = mod_status.mod_level in ("full", "super_admin")

users_tab, audit_tab, roles_tab = st.tabs(["Users", "Audit log", "Roles"])

with users_tab:
    search = st.text_input("Search by email, name or subject id")
    page = st.number_input("Page", min_value=1, value=1, step=1)
    try:
        listing = client.list_users(search=search or None, page=int(page))
    except MizanAPIError as exc:
        show_api_error(exc)
        listing = None

    if listing is not None:
        st.write(f"{listing.pagination.total} users, page {listing.pagination.page}/{max(listing.pagination.total_pages, 1)}")
        st.dataframe(
            [{"id": u.id, "email": u.email, "name": u.display_name, "created_at": str(u.created_at)} for u in listing.users],
            use_container_width=True,
        )

    target_id = st.number_input("User id", min_value=1, step=1, key="target_id")
    if st.button("Open user"):
        st.session_state["open_user_id"] = int(target_id)

    open_user_id = st.session_state.get("open_user_id")
    if open_user_id:
        try:
            detail = client.user_detail(open_user_id)
        except MizanAPIError as exc:
            show_api_error(exc)
            detail = None

        if detail is not None:
            st.subheader(f"{detail.user.display_name} (#{detail.user.id})")
            st.write(
                {
                    "premium": "active" if detail.entitlement.active else "inactive",
                    "source": detail.entitlement.source,
                    "until": format_until(detail.entitlement.until, detail.entitlement.active),
                    "moderator role": detail.mod_role.role if detail.mod_role else None,
                }
            )

            if st.button("Load premium history"):
                try:
                    history = client.premium_history(open_user_id)
                except MizanAPIError as exc:
                    show_api_error(exc)
                else:
                    st.dataframe([r.model_dump() for r in history.records], use_container_width=True)
                    st.dataframe([e.model_dump() for e in history.audit_entries], use_container_width=True)

            if can_write:
                with st.form("grant"):
                    lifetime = st.checkbox("Lifetime")
                    days = st.number_input("Days", min_value=1, value=30, step=1)
                    reason = st.text_area("Reason")
                    if st.form_submit_button("Grant premium"):
                        try:
                            result = client.grant_premium(open_user_id, None if lifetime else int(days), reason)
                        except MizanAPIError as exc:
                            show_api_error(exc)
                        else:
                            st.success(f"Granted until {format_until(result.until, True)}")

                with st.form("revoke"):
                    reason = st.text_area("Reason", key="revoke_reason")
                    if st.form_submit_button("Revoke premium"):
                        try:
                            revoked = client.revoke_premium(open_user_id, reason)
                        except MizanAPIError as exc:
                            show_api_error(exc)
                        else:
                            st.success("Premium revoked")
                            if revoked.warning:
                                st.warning(revoked.warning)

                with st.form("issue_code"):
                    code_days = st.number_input("Code valid for days", min_value=1, max_value=365, value=30, step=1)
                    reason = st.text_area("Reason", key="issue_code_reason")
                    if st.form_submit_button("Issue code"):
                        try:
                            issued = client.issue_code(open_user_id, reason, int(code_days))
                        except MizanAPIError as exc:
                            show_api_error(exc)
                        else:
                            st.success(f"Code {issued.code} expires {format_until(issued.expires_at, True)}")

with audit_tab:
    action = st.selectbox("Action", AUDIT_ACTIONS)
    audit_page = st.number_input("Page", min_value=1, value=1, step=1, key="audit_page")
    try:
        audit = client.audit_log(action_type=action or None, page=int(audit_page))
    except MizanAPIError as exc:
        show_api_error(exc)
    else:
        st.write(f"{audit.pagination.total} entries")
        st.dataframe([e.model_dump() for e in audit.entries], use_container_width=True)

with roles_tab:
    if mod_status.mod_level != "super_admin":
        st.info("Only super admins manage moderator roles.")
    else:
        with st.form("set_role"):
            role_user_id = st.number_input("User id", min_value=1, step=1, key="role_user_id")
            role = st.selectbox("Role", ROLE_CHOICES)
            reason = st.text_area("Reason", key="role_reason")
            if st.form_submit_button("Set role"):
                try:
                    client.set_mod_role(int(role_user_id), role, reason)
                except MizanAPIError as exc:
                    show_api_error(exc)
                else:
                    st.success("Role saved")

        with st.form("remove_role"):
            remove_user_id = st.number_input("User id", min_value=1, step=1, key="remove_user_id")
            reason = st.text_area("Reason", key="remove_reason")
            if st.form_submit_button("Remove role"):
                try:
                    client.remove_mod_role(int(remove_user_id), reason)
                except MizanAPIError as exc:
                    show_api_error(exc)
                else:
                    st.success("Role removed")
