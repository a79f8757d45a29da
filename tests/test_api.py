from datetime import datetime, timedelta

from clinic import auth_service, reports
from clinic.db import db_session
from clinic.models import MedicalHistory

PASSWORD = "Pass@12345"


def test_root(client):
    assert client.get("/").json() == "Hello"


# Accounts

def test_signup_and_login(client):
    res = client.post("/v1/user/create", json={"username": " Bob ", "password": "pw123"})
    assert res.status_code == 200
    assert res.json()["data"]["username"] == "bob"
    assert "password_hash" not in res.json()["data"]

    dup = client.post("/v1/user/create", json={"username": "BOB", "password": "x"})
    assert dup.status_code == 400
    assert dup.json()["code"] == "USERNAME_EXISTS"

    login = client.post("/v1/user/login", json={"username": "bob", "password": "pw123"})
    assert login.status_code == 200
    token = login.json()["data"]["token"]

    me = client.get("/v1/user/self", headers={"Authorization": f"Bearer {token}"})
    assert me.json()["data"]["username"] == "bob"


def test_login_failures(client, account):
    wrong = client.post("/v1/user/login", json={"username": "alice", "password": "nope"})
    assert wrong.status_code == 400
    assert wrong.json()["code"] == "INVALID_CREDENTIALS"

    unknown = client.post("/v1/user/login", json={"username": "nobody", "password": "x"})
    assert unknown.status_code == 404


def test_login_without_secret_is_server_error(client, account, monkeypatch):
    monkeypatch.delenv("TOKEN_SECRET")
    res = client.post("/v1/user/login", json={"username": "alice", "password": PASSWORD})
    assert res.status_code == 500
    assert res.json()["code"] == "NO_SECRET_DEFINED"


def test_protected_route_error_envelope(client):
    res = client.get("/v1/user/self")
    assert res.status_code == 403
    assert res.json() == {"http_code": 403, "code": "NO_TOKEN", "message": "Authentication failed"}


def test_validation_error_envelope(client, auth_headers):
    res = client.post("/v1/patient/create", json={"name": "X"}, headers=auth_headers)
    assert res.status_code == 422
    assert res.json()["code"] == "VALIDATION_ERROR"


def test_password_reset_and_profile(client, auth_headers):
    bad = client.post(
        "/v1/user/reset-password",
        json={"current_password": "wrong", "new_password": "n3w"},
        headers=auth_headers,
    )
    assert bad.json()["code"] == "INVALID_CREDENTIALS"

    ok = client.post(
        "/v1/user/reset-password",
        json={"current_password": PASSWORD, "new_password": "n3w"},
        headers=auth_headers,
    )
    assert ok.status_code == 200
    assert client.post("/v1/user/login", json={"username": "alice", "password": "n3w"}).status_code == 200

    renamed = client.put("/v1/user/profile", json={"username": "Alicia"}, headers=auth_headers)
    assert renamed.json()["data"]["username"] == "alicia"


def test_deleted_account_is_locked_out(client, auth_headers):
    assert client.delete("/v1/user/account", headers=auth_headers).status_code == 200

    res = client.get("/v1/user/self", headers=auth_headers)
    assert res.status_code == 403
    assert res.json()["code"] == "ACCOUNT_DEACTIVATED"

    login = client.post("/v1/user/login", json={"username": "alice", "password": PASSWORD})
    assert login.json()["code"] == "ACCOUNT_DEACTIVATED"


def test_dev_routes(client, account):
    assert client.get("/v1/dev/accounts").status_code == 403

    dev = {"Authorization": "dev-secret-123"}
    auth_service.deactivate_account(account["id"])
    listed = client.get("/v1/dev/accounts", headers=dev).json()["data"]
    assert [a["is_active"] for a in listed] == [False]

    restored = client.post(f"/v1/dev/accounts/{account['id']}/restore", headers=dev)
    assert restored.json()["data"]["is_active"] is True


# Staff

def test_staff_routes(client, auth_headers):
    created = client.post("/v1/staff/create", json={"name": "Dr. Api", "phone_number": "0811-5"}, headers=auth_headers)
    sid = created.json()["data"]["id"]

    assert [s["name"] for s in client.get("/v1/staff/active").json()["data"]] == ["Dr. Api"]
    assert client.get("/v1/staff/search", params={"query": "api"}).json()["data"][0]["id"] == sid

    assert client.delete(f"/v1/staff/{sid}", headers=auth_headers).status_code == 200
    assert client.get("/v1/staff/active").json()["data"] == []
    assert client.get(f"/v1/staff/{sid}", headers=auth_headers).json()["data"]["active"] is False

    client.post(f"/v1/staff/{sid}/reactivate", headers=auth_headers)
    assert len(client.get("/v1/staff/active").json()["data"]) == 1


def test_staff_bad_account_link_is_rejected(client, auth_headers, account):
    missing = client.post(
        "/v1/staff/create", json={"name": "Ghost", "phone_number": "0811-6", "account_id": 9999}, headers=auth_headers
    )
    assert missing.status_code == 400
    assert missing.json()["code"] == "ACCOUNT_NOT_FOUND"

    first = client.post(
        "/v1/staff/create", json={"name": "Linked", "phone_number": "0811-7", "account_id": account["id"]}, headers=auth_headers
    )
    assert first.status_code == 200
    second = client.post(
        "/v1/staff/create", json={"name": "Twin", "phone_number": "0811-8", "account_id": account["id"]}, headers=auth_headers
    )
    assert second.status_code == 400
    assert second.json()["code"] == "ACCOUNT_ALREADY_LINKED"


# Patients

def test_patient_routes(client, auth_headers):
    created = client.post(
        "/v1/patient/create",
        json={"name": "Dewi", "gender": "FEMALE", "email": "dewi@example.com", "date_of_birth": "1995-04-02"},
        headers=auth_headers,
    )
    assert created.status_code == 200
    p = created.json()["data"]
    assert p["patient_code"] == f"PAT-{p['id']}"
    assert p["created_by_name"] == "alice"

    assert client.get("/v1/patient/code", params={"code": p["patient_code"]}, headers=auth_headers).status_code == 200
    assert client.get("/v1/patient/email", params={"email": "x@example.com"}, headers=auth_headers).status_code == 404
    assert client.get("/v1/patient/phone", headers=auth_headers).status_code == 400

    taken = client.get("/v1/patient/validate/email", params={"email": "dewi@example.com"}, headers=auth_headers)
    assert taken.json()["valid"] is False
    own = client.get(
        "/v1/patient/validate/email",
        params={"email": "dewi@example.com", "exclude_id": p["id"]},
        headers=auth_headers,
    )
    assert own.json()["valid"] is True

    search = client.get("/v1/patient/search", params={"query": "dew"}, headers=auth_headers).json()
    assert search["count"] == 1

    assert client.get("/v1/patient/all", params={"gender": "MALE"}, headers=auth_headers).json()["data"] == []
    assert len(client.get("/v1/patient/all", params={"time_range": "today"}, headers=auth_headers).json()["data"]) == 1

    upd = client.put(f"/v1/patient/{p['id']}", json={"patient_code": "HACK", "phone": "0812-7"}, headers=auth_headers)
    assert upd.json()["data"]["patient_code"] == p["patient_code"]
    assert upd.json()["data"]["phone"] == "0812-7"

    assert client.get("/v1/patient/recent", headers=auth_headers).json()["count"] == 1
    assert client.get("/v1/patient/stats", headers=auth_headers).json()["data"]["total_patients"] == 1

    assert client.delete(f"/v1/patient/{p['id']}", headers=auth_headers).status_code == 200
    gone = client.get(f"/v1/patient/{p['id']}", headers=auth_headers)
    assert gone.status_code == 404
    assert gone.json()["code"] == "ENTITY_NOT_FOUND"


# Medical history

def test_history_routes(client, auth_headers, patient, staff):
    tomorrow = (datetime.utcnow() + timedelta(days=1)).replace(microsecond=0)
    created = client.post(
        "/v1/medical-history/create",
        json={
            "patient_id": patient["id"],
            "staff_id": staff["id"],
            "appointment_date": tomorrow.isoformat(),
            "service_type": "Physio",
        },
        headers=auth_headers,
    )
    assert created.status_code == 200
    hid = created.json()["data"]["id"]

    past = client.post(
        "/v1/medical-history/create",
        json={"patient_id": patient["id"], "appointment_date": "2020-01-01T10:00:00"},
        headers=auth_headers,
    )
    assert past.json()["code"] == "APPOINTMENT_IN_PAST"

    assert client.get(f"/v1/medical-history/patient/{patient['id']}", headers=auth_headers).json()["count"] == 1
    assert client.get("/v1/medical-history/upcoming", headers=auth_headers).json()["count"] == 1
    assert client.get("/v1/medical-history/date-range", headers=auth_headers).status_code == 400
    bad_sort = client.get("/v1/medical-history/all", params={"sort_by": "nope"}, headers=auth_headers)
    assert bad_sort.json()["code"] == "INVALID_SORT"

    upd = client.put(f"/v1/medical-history/{hid}", json={"pain_before": 6, "pain_after": 2}, headers=auth_headers)
    assert upd.json()["data"]["pain_reduction"] == 4

    assert client.delete(f"/v1/medical-history/{hid}", headers=auth_headers).status_code == 200
    assert client.get(f"/v1/medical-history/{hid}", headers=auth_headers).status_code == 404


def test_progress_report_route(client, auth_headers, patient, monkeypatch):
    monkeypatch.setattr(reports, "fetch_image_as_base64", lambda url: "data:image/png;base64,QUJD")

    missing = client.get(f"/v1/medical-history/progress-report/{patient['id']}", headers=auth_headers)
    assert missing.status_code == 404

    with db_session() as s:
        s.add(MedicalHistory(patient_id=patient["id"], appointment_date=datetime(2024, 2, 1),
                             body_annotation="https://img.example.com/b.png"))
        s.add(MedicalHistory(patient_id=patient["id"], appointment_date=datetime(2024, 1, 1)))

    res = client.get(f"/v1/medical-history/progress-report/{patient['id']}", headers=auth_headers)
    assert res.status_code == 200
    data = res.json()["data"]
    assert data["total_sessions"] == 2
    assert [s["session_date"][:10] for s in data["sessions"]] == ["2024-01-01", "2024-02-01"]
    assert [s["body_annotation_base64"] for s in data["sessions"]] == [None, "data:image/png;base64,QUJD"]


def test_progress_report_requires_auth(client, patient):
    assert client.get(f"/v1/medical-history/progress-report/{patient['id']}").status_code == 403


# Visitors

def test_visitor_sign_in_is_public(client, staff):
    payload = {"visitor_name": "Joko", "phone_number": "0857-3", "visitor_profile": "Player", "staff_id": staff["id"]}
    res = client.post("/v1/visitor/create", json=payload)
    assert res.status_code == 200
    assert res.json()["data"]["filled_by"] == "Dr. Test"

    garbage = client.post("/v1/visitor/create", json=payload, headers={"Authorization": "Bearer junk"})
    assert garbage.status_code == 200


def test_visitor_sign_in_records_operator(client, staff, auth_headers):
    payload = {"visitor_name": "Joko", "phone_number": "0857-3", "visitor_profile": "Visitor", "staff_id": staff["id"]}
    v = client.post("/v1/visitor/create", json=payload, headers=auth_headers).json()["data"]
    assert v["filled_by"] == "alice"

    assert client.get("/v1/visitor/recent", headers=auth_headers).json()["count"] == 1
    assert client.post(f"/v1/visitor/{v['id']}/checkout", headers=auth_headers).status_code == 200
    again = client.post(f"/v1/visitor/{v['id']}/checkout", headers=auth_headers)
    assert again.json()["code"] == "ALREADY_CHECKED_OUT"

    assert client.get("/v1/visitor/recent", headers=auth_headers).json()["count"] == 0
    stats = client.get("/v1/visitor/stats", params={"time_range": "today"}, headers=auth_headers).json()["data"]
    assert stats["checked_out_count"] == 1
    assert client.get("/v1/visitor/phone", params={"phone": "0857-3"}, headers=auth_headers).status_code == 200
    assert client.get("/v1/visitor/all", headers=auth_headers).json()["count"] == 1
