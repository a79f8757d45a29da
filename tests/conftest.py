import os
import tempfile

# the engine is built at import time: point it at a throwaway file first
_DB_DIR = tempfile.mkdtemp(prefix="clinic-tests-")
os.environ["CLINIC_DATABASE_URL"] = f"sqlite:///{_DB_DIR}/test.sqlite"
os.environ["TOKEN_SECRET"] = "test-token-secret"
os.environ["DEV_SECRET"] = "dev-secret-123"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from clinic import auth_service, services  # noqa: E402
from clinic.api_main import app  # noqa: E402
from clinic.auth_security import create_access_token  # noqa: E402
from clinic.db import Base, engine  # noqa: E402
from clinic.models import Gender  # noqa: E402
from clinic.schemas import PatientCreateIn, StaffCreateIn  # noqa: E402

PASSWORD = "Pass@12345"


@pytest.fixture(autouse=True)
def fresh_db(monkeypatch):
    monkeypatch.setenv("TOKEN_SECRET", "test-token-secret")
    monkeypatch.setenv("DEV_SECRET", "dev-secret-123")
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def client():
    # not entered as a context manager: startup seeding stays off
    return TestClient(app)


@pytest.fixture
def account():
    return auth_service.create_account("alice", PASSWORD)


@pytest.fixture
def token(account):
    return create_access_token(account["id"], account["username"])


@pytest.fixture
def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def staff():
    return services.create_staff(StaffCreateIn(name="Dr. Test", phone_number="0811-111"))


@pytest.fixture
def patient(account):
    return services.create_patient(
        PatientCreateIn(name="Budi Santoso", gender=Gender.MALE, phone="0812-222", height=170, weight=70),
        created_by=account["id"],
    )
