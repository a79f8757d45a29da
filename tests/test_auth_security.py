from datetime import timedelta

import pytest
from jose import jwt

from clinic import auth_service
from clinic.auth_security import (
    ACCOUNT_DEACTIVATED,
    INVALID_TOKEN,
    INVALID_TOKEN_DATA,
    JWT_ALG,
    NO_SECRET_DEFINED,
    NO_TOKEN,
    TOKEN_EXPIRED,
    USER_NOT_FOUND,
    CredentialError,
    create_access_token,
    extract_bearer,
    hash_password,
    verify_authorization,
    verify_password,
)


def _code(header):
    with pytest.raises(CredentialError) as exc:
        verify_authorization(header)
    return exc.value.code


def test_password_hash_roundtrip():
    h = hash_password("s3cret")
    assert h != "s3cret"
    assert verify_password("s3cret", h)
    assert not verify_password("wrong", h)


def test_valid_token_resolves_account(account, token):
    identity = verify_authorization(f"Bearer {token}")
    assert identity.account_id == account["id"]
    assert identity.account.username == "alice"
    assert identity.claims["authenticated"] is True
    assert identity.claims["username"] == "alice"


def test_bearer_scheme_is_case_insensitive(token):
    assert verify_authorization(f"bearer {token}").account.username == "alice"


@pytest.mark.parametrize("header", [None, "", "Bearer", "Basic abc", "Bearer a b", "Token xyz"])
def test_missing_or_malformed_header(header):
    assert _code(header) == NO_TOKEN


def test_extract_bearer_strips_quotes():
    assert extract_bearer('Bearer "abc.def.ghi"') == "abc.def.ghi"


def test_missing_secret(monkeypatch, token):
    monkeypatch.delenv("TOKEN_SECRET")
    assert _code(f"Bearer {token}") == NO_SECRET_DEFINED


def test_empty_secret_counts_as_missing(monkeypatch, token):
    monkeypatch.setenv("TOKEN_SECRET", "")
    assert _code(f"Bearer {token}") == NO_SECRET_DEFINED


def test_expired_token(account):
    expired = create_access_token(account["id"], "alice", expires_in=timedelta(seconds=-30))
    assert _code(f"Bearer {expired}") == TOKEN_EXPIRED


def test_token_signed_with_other_secret(account):
    forged = jwt.encode({"id": account["id"], "authenticated": True}, "another-secret", algorithm=JWT_ALG)
    assert _code(f"Bearer {forged}") == INVALID_TOKEN


def test_garbage_token():
    assert _code("Bearer not-a-jwt") == INVALID_TOKEN


def test_token_without_identity():
    token = jwt.encode({"username": "ghost"}, "test-token-secret", algorithm=JWT_ALG)
    assert _code(f"Bearer {token}") == INVALID_TOKEN_DATA


def test_unknown_account():
    token = create_access_token(9999, "ghost")
    assert _code(f"Bearer {token}") == USER_NOT_FOUND


def test_deactivated_account(account, token):
    auth_service.deactivate_account(account["id"])
    assert _code(f"Bearer {token}") == ACCOUNT_DEACTIVATED


def test_restored_account_verifies_again(account, token):
    auth_service.deactivate_account(account["id"])
    auth_service.restore_account(account["id"])
    assert verify_authorization(f"Bearer {token}").account_id == account["id"]
