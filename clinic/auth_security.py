from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from clinic import config
from clinic.auth_models import Account
from clinic.db import db_session

logger = logging.getLogger("clinic.auth")

JWT_ALG = "HS256"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


# Stable failure codes
NO_TOKEN = "NO_TOKEN"
NO_SECRET_DEFINED = "NO_SECRET_DEFINED"
TOKEN_EXPIRED = "TOKEN_EXPIRED"
INVALID_TOKEN = "INVALID_TOKEN"
INVALID_TOKEN_DATA = "INVALID_TOKEN_DATA"
USER_NOT_FOUND = "USER_NOT_FOUND"
ACCOUNT_DEACTIVATED = "ACCOUNT_DEACTIVATED"


class CredentialError(Exception):
    """Verification failure; `code` is what the boundary layer maps to a status."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


@dataclass(frozen=True)
class VerifiedIdentity:
    account_id: int
    account: Account
    claims: dict[str, Any] = field(default_factory=dict)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def _require_secret() -> str:
    secret = config.token_secret()
    if not secret:
        raise CredentialError(NO_SECRET_DEFINED)
    return secret


def create_access_token(account_id: int, username: str, expires_in: timedelta | None = None) -> str:
    """
    Signed session token bound to an account.
    Uses timezone-aware datetimes to keep iat/exp consistent.
    """
    now = datetime.now(timezone.utc)
    expire = now + (expires_in if expires_in is not None else timedelta(days=config.token_expire_days()))

    payload: dict[str, Any] = {
        "sub": str(account_id),
        "id": account_id,
        "username": username,
        "authenticated": True,
        "iat": int(now.timestamp()),
        "exp": int(expire.timestamp()),
    }
    return jwt.encode(payload, _require_secret(), algorithm=JWT_ALG)


def decode_token(token: str) -> dict[str, Any]:
    return jwt.decode(token, _require_secret(), algorithms=[JWT_ALG])


def extract_bearer(raw_header: str | None) -> str | None:
    if not raw_header:
        return None
    parts = raw_header.strip().split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    # stray quotes from copy/paste
    return parts[1].strip('"').strip("'") or None


def verify_authorization(raw_header: str | None) -> VerifiedIdentity:
    """
    Resolve an `Authorization: Bearer <token>` header to an active account.

    Raises CredentialError with one of the module-level codes; never returns
    a partially verified identity.
    """
    token = extract_bearer(raw_header)
    if token is None:
        raise CredentialError(NO_TOKEN)

    try:
        claims = decode_token(token)
    except ExpiredSignatureError:
        raise CredentialError(TOKEN_EXPIRED)
    except JWTError as e:
        logger.info("Token rejected: %s", e)
        raise CredentialError(INVALID_TOKEN)

    try:
        account_id = int(claims.get("id", claims.get("sub")))
    except (TypeError, ValueError):
        raise CredentialError(INVALID_TOKEN_DATA)

    with db_session() as s:
        account = s.get(Account, account_id)

    if account is None:
        raise CredentialError(USER_NOT_FOUND)
    if not account.is_active:
        raise CredentialError(ACCOUNT_DEACTIVATED)

    return VerifiedIdentity(account_id=account_id, account=account, claims=dict(claims))
