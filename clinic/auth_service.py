from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select

from clinic.auth_models import Account
from clinic.auth_security import CredentialError, create_access_token, hash_password, verify_password
from clinic.db import db_session
from clinic.exceptions import BadRequestError, EntityNotFoundError, RequestError, require_fields

logger = logging.getLogger("clinic.accounts")


def account_flat(a: Account) -> dict:
    """Account without the password hash."""
    return {
        "id": a.id,
        "username": a.username,
        "is_active": a.is_active,
        "created_at": a.created_at,
        "modified_at": a.modified_at,
    }


def _normalize(username: str | None) -> str:
    return (username or "").strip().lower()


def create_account(username: str, password: str) -> dict:
    username = _normalize(username)
    require_fields("Account", {"username": username, "password": password}, ["username", "password"])

    with db_session() as s:
        exists = s.execute(select(Account).where(Account.username == username)).scalar_one_or_none()
        if exists:
            raise BadRequestError("Username already exists!", code="USERNAME_EXISTS")

        a = Account(username=username, password_hash=hash_password(password), is_active=True)
        s.add(a)
        s.flush()
        logger.info("Account %s created (id=%s)", username, a.id)
        return account_flat(a)


def authenticate(username: str, password: str) -> Account:
    username = _normalize(username)
    with db_session() as s:
        a = s.execute(select(Account).where(Account.username == username)).scalar_one_or_none()
    if a is None:
        raise EntityNotFoundError("Username", username)
    if not a.is_active:
        raise BadRequestError(
            "Your account is deactivated. Please contact administrator.", code="ACCOUNT_DEACTIVATED"
        )
    if not verify_password(password, a.password_hash):
        raise BadRequestError("Invalid username or password!", code="INVALID_CREDENTIALS")
    return a


def login(username: str, password: str) -> dict:
    a = authenticate(username, password)
    try:
        token = create_access_token(a.id, a.username)
    except CredentialError as e:
        raise RequestError("Token signing is not configured", code=e.code, status_code=500)
    return {**account_flat(a), "token": token}


def get_account_by_id(account_id: int) -> Account | None:
    with db_session() as s:
        return s.get(Account, account_id)


def get_account_flat(account_id: int) -> dict:
    a = get_account_by_id(account_id)
    if a is None:
        raise EntityNotFoundError("Account", account_id)
    return account_flat(a)


def list_accounts(include_inactive: bool = False) -> list[dict]:
    with db_session() as s:
        q = select(Account).order_by(Account.created_at.desc(), Account.id.desc())
        if not include_inactive:
            q = q.where(Account.is_active.is_(True))
        return [account_flat(a) for a in s.scalars(q)]


def reset_own_password(account_id: int, current_password: str, new_password: str) -> dict:
    require_fields(
        "Password reset",
        {"current_password": current_password, "new_password": new_password},
        ["current_password", "new_password"],
    )
    with db_session() as s:
        a = s.get(Account, account_id)
        if a is None:
            raise EntityNotFoundError("Account", account_id)
        if not verify_password(current_password, a.password_hash):
            raise BadRequestError("Current password is incorrect!", code="INVALID_CREDENTIALS")
        a.password_hash = hash_password(new_password)
        a.modified_at = datetime.utcnow()
        return account_flat(a)


def set_password(username: str, new_password: str) -> bool:
    """Operator reset, no current password required."""
    with db_session() as s:
        a = s.execute(select(Account).where(Account.username == _normalize(username))).scalar_one_or_none()
        if a is None:
            return False
        a.password_hash = hash_password(new_password)
        a.modified_at = datetime.utcnow()
        return True


def update_own_profile(account_id: int, username: str) -> dict:
    username = _normalize(username)
    require_fields("Profile", {"username": username}, ["username"])
    with db_session() as s:
        a = s.get(Account, account_id)
        if a is None:
            raise EntityNotFoundError("Account", account_id)
        if username != a.username:
            other = s.execute(select(Account).where(Account.username == username)).scalar_one_or_none()
            if other is not None and other.id != account_id:
                raise BadRequestError("Username already exists!", code="USERNAME_EXISTS")
        a.username = username
        a.modified_at = datetime.utcnow()
        return account_flat(a)


def _set_active(account_id: int, active: bool) -> dict:
    with db_session() as s:
        a = s.get(Account, account_id)
        if a is None:
            raise EntityNotFoundError("Account", account_id)
        a.is_active = active
        a.modified_at = datetime.utcnow()
        return account_flat(a)


def deactivate_account(account_id: int) -> dict:
    return _set_active(account_id, False)


def restore_account(account_id: int) -> dict:
    return _set_active(account_id, True)
