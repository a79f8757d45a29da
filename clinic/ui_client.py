"""HTTP client used by the Streamlit front desk (bearer JWT, `ok()` envelope)."""
from __future__ import annotations

import os

import requests

API_BASE = os.getenv("API_BASE", "http://127.0.0.1:8000")


def _headers(token: str | None) -> dict:
    return {"Authorization": f"Bearer {token}"} if token else {}


def _unwrap(r: requests.Response):
    if r.status_code == 403:
        try:
            code = r.json().get("code", "")
        except ValueError:
            # non-JSON body, e.g. from a proxy
            code = ""
        raise PermissionError(f"403 {code}".rstrip() + " (token invalid/expired or account deactivated).")
    if r.status_code >= 400:
        try:
            message = r.json().get("message")
        except ValueError:
            r.raise_for_status()
        raise RuntimeError(message or r.text)
    return r.json().get("data")


def api_get(path: str, token: str | None = None, params: dict | None = None):
    r = requests.get(f"{API_BASE}{path}", headers=_headers(token), params=params, timeout=10)
    return _unwrap(r)


def api_post(path: str, payload: dict | None = None, token: str | None = None):
    r = requests.post(f"{API_BASE}{path}", headers=_headers(token), json=payload, timeout=10)
    return _unwrap(r)


def api_login(username: str, password: str) -> str:
    r = requests.post(
        f"{API_BASE}/v1/user/login",
        json={"username": username, "password": password},
        timeout=10,
    )
    r.raise_for_status()
    return r.json()["data"]["token"]
