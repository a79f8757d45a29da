from __future__ import annotations

import base64
import json
from datetime import date, datetime, timezone

import requests
import streamlit as st

from clinic.ui_client import API_BASE, api_get, api_login, api_post

st.set_page_config(page_title="Clinic", layout="wide")



# JWT helpers (UI only, no signature check)

def _b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def jwt_payload(token: str) -> dict:
    try:
        parts = token.split(".")
        if len(parts) != 3:
            return {}
        payload = json.loads(_b64url_decode(parts[1]).decode("utf-8"))
        return payload if isinstance(payload, dict) else {}
    except (ValueError, UnicodeDecodeError):
        return {}


def jwt_is_expired(token: str) -> bool:
    p = jwt_payload(token)
    try:
        exp_int = int(p.get("exp"))
    except (TypeError, ValueError):
        return False

    now = int(datetime.now(tz=timezone.utc).timestamp())
    return now >= (exp_int - 5)


def jwt_username(token: str) -> str:
    p = jwt_payload(token)
    return str(p.get("username") or p.get("sub") or "user")



def is_logged_in() -> bool:
    token = st.session_state.get("token")
    return bool(token) and isinstance(token, str) and len(token) > 0


def do_logout() -> None:
    st.session_state.pop("token", None)
    st.session_state.pop("auth_error", None)
    st.rerun()


def require_auth() -> str | None:
    token = st.session_state.get("token")
    if not token:
        st.warning("Restricted section. Log in from the sidebar.")
        return None

    if jwt_is_expired(token):
        st.error("Session expired. Log out from the sidebar and log in again.")
        return None

    return token


def session_lost(e: Exception) -> None:
    st.session_state["auth_error"] = str(e)
    st.error("Session not valid. Log out and log in again.")




# Sidebar login

with st.sidebar:
    st.header("Access")

    token = st.session_state.get("token")

    if not is_logged_in():
        u = st.text_input("Username", key="login_user")
        p = st.text_input("Password", type="password", key="login_pass")

        if st.button("Login", key="login_btn"):
            try:
                st.session_state["token"] = api_login(u.strip().lower(), p)
                st.session_state.pop("auth_error", None)
                st.success("Logged in.")
                st.rerun()
            except requests.HTTPError:
                st.error("Invalid credentials.")
            except requests.RequestException as e:
                st.error(str(e))
    else:
        st.write(f"User: **{jwt_username(token)}**")

        if st.session_state.get("auth_error"):
            st.error(st.session_state["auth_error"])

        if st.button("Logout", key="logout_btn"):
            do_logout()

    st.divider()
    st.caption(f"API: {API_BASE}")



# UI

st.title("Clinic front desk")

tab1, tab2, tab3 = st.tabs(["Visitors", "Patients", "Progress report"])


@st.cache_data(ttl=10)
def load_active_staff() -> list[dict]:
    return api_get("/v1/staff/active")  # public



# TAB 1 - Visitors (sign-in is public)

with tab1:
    st.subheader("Visitor sign-in")

    try:
        staff = load_active_staff()
    except (requests.RequestException, RuntimeError) as e:
        st.error(f"API unreachable or error: {e}")
        st.stop()

    c1, c2 = st.columns(2)
    visitor_name = c1.text_input("Name", key="vis_name")
    phone = c2.text_input("Phone", key="vis_phone")
    host = st.selectbox("Host", options=staff, format_func=lambda s: s["name"], key="vis_host")
    profile = st.radio("Profile", ["Player", "Visitor", "Other"], horizontal=True, key="vis_profile")
    profile_other = st.text_input("Describe", key="vis_other") if profile == "Other" else None

    if st.button("Sign in", key="vis_submit", disabled=not staff):
        if not visitor_name.strip() or not phone.strip():
            st.error("Name and phone are required.")
        else:
            payload = {
                "visitor_name": visitor_name.strip(),
                "phone_number": phone.strip(),
                "visitor_profile": profile,
                "visitor_profile_other": (profile_other or "").strip() or None,
                "staff_id": host["id"],
            }
            try:
                v = api_post("/v1/visitor/create", payload, token=st.session_state.get("token"))
                st.success(f"Welcome {v['visitor_name']} (ID {v['id']}).")
            except (requests.RequestException, RuntimeError, PermissionError) as e:
                st.error(str(e))

    token = st.session_state.get("token")
    if is_logged_in() and not jwt_is_expired(token):
        st.divider()
        st.write("On site now:")
        try:
            for v in api_get("/v1/visitor/recent", token=token, params={"limit": 50}):
                col_a, col_b = st.columns([4, 1])
                col_a.write(f"- **{v['visitor_name']}** | host: {v['staff_name']} | since {v['created_at'][:16]}")
                if col_b.button("Check out", key=f"out_{v['id']}"):
                    api_post(f"/v1/visitor/{v['id']}/checkout", token=token)
                    st.rerun()
        except PermissionError as e:
            session_lost(e)
        except (requests.RequestException, RuntimeError) as e:
            st.error(f"Error loading visitors: {e}")



# TAB 2 - Patients (PROTECTED)

with tab2:
    st.subheader("Patients (restricted)")

    token = require_auth()
    if token:
        with st.expander("New patient"):
            c1, c2 = st.columns(2)
            name = c1.text_input("Name", key="pat_name")
            gender = c2.selectbox("Gender", ["MALE", "FEMALE"], key="pat_gender")
            dob = c1.date_input("Date of birth", value=None, max_value=date.today(), key="pat_dob")
            pat_phone = c2.text_input("Phone (optional)", key="pat_phone")
            height = c1.number_input("Height (cm)", min_value=0.0, max_value=300.0, value=0.0, key="pat_h")
            weight = c2.number_input("Weight (kg)", min_value=0.0, max_value=500.0, value=0.0, key="pat_w")

            if st.button("Create patient", key="pat_submit"):
                if not name.strip():
                    st.error("Name is required.")
                else:
                    payload = {
                        "name": name.strip(),
                        "gender": gender,
                        "date_of_birth": dob.isoformat() if dob else None,
                        "phone": pat_phone.strip() or None,
                        "height": height or None,
                        "weight": weight or None,
                    }
                    try:
                        res = api_post("/v1/patient/create", payload, token=token)
                        st.success(f"Patient created: {res['patient_code']}")
                    except PermissionError as e:
                        session_lost(e)
                    except (requests.RequestException, RuntimeError) as e:
                        st.error(str(e))

        st.divider()
        search = st.text_input("Search", key="pat_search")
        try:
            patients = api_get("/v1/patient/all", token=token, params={"search": search or None})
            if not patients:
                st.info("No patients.")
            for p in patients or []:
                st.write(
                    f"- **{p['patient_code']}** {p['name']} | age {p['age'] if p['age'] is not None else '-'}"
                    f" | BMI {p['bmi'] or '-'} | {p.get('phone') or '-'}"
                )
        except PermissionError as e:
            session_lost(e)
        except (requests.RequestException, RuntimeError) as e:
            st.error(f"Error loading patients: {e}")



# TAB 3 - Progress report (PROTECTED)

with tab3:
    st.subheader("Progress report (restricted)")

    token = require_auth()
    if token:
        patient_id = st.number_input("Patient ID", min_value=1, step=1, key="rep_pid")
        if st.button("Build report", key="rep_submit"):
            try:
                report = api_get(f"/v1/medical-history/progress-report/{int(patient_id)}", token=token)
                patient = report["patient"]
                st.write(f"**{patient['patient_code']} {patient['name']}** | {report['total_sessions']} sessions")
                for s in report["sessions"]:
                    with st.container(border=True):
                        st.write(
                            f"Session {s['session_number']} | {s['session_date'][:10]} | "
                            f"{s.get('service_type') or '-'} | pain {s.get('pain_before') or '-'} -> {s.get('pain_after') or '-'}"
                        )
                        if s["body_annotation_base64"]:
                            st.image(s["body_annotation_base64"], width=320)
                        elif s["body_annotation_url"]:
                            st.caption(f"Body diagram unavailable: {s['body_annotation_url']}")
            except PermissionError as e:
                session_lost(e)
            except (requests.RequestException, RuntimeError) as e:
                st.error(f"Report error: {e}")
