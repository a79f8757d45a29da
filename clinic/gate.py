from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass, field
from typing import Any

from fastapi import Header

from clinic import config
from clinic.auth_security import CredentialError, verify_authorization
from clinic.exceptions import AuthenticationError

logger = logging.getLogger("clinic.gate")

DEV_SECRET_MIN_LENGTH = 5


@dataclass(frozen=True)
class AuthContext:
    """Identity handed to handlers; `account_id` is None for anonymous callers."""

    account_id: int | None = None
    username: str | None = None
    claims: dict[str, Any] = field(default_factory=dict)

    @property
    def is_authenticated(self) -> bool:
        return self.account_id is not None


ANONYMOUS = AuthContext()


def authorize_required(authorization: str | None) -> AuthContext:
    try:
        identity = verify_authorization(authorization)
    except CredentialError as e:
        raise AuthenticationError("Authentication failed", code=e.code)

    if identity.claims.get("authenticated") is not True:
        raise AuthenticationError("Authentication required", code="NO_AUTH_DATA")

    return AuthContext(
        account_id=identity.account_id,
        username=identity.account.username,
        claims=identity.claims,
    )


def authorize_optional(authorization: str | None) -> AuthContext:
    if not authorization:
        return ANONYMOUS
    try:
        identity = verify_authorization(authorization)
    except CredentialError as e:
        # a bad token is downgraded to anonymous, not reported to the caller
        logger.debug("Optional auth downgraded to anonymous: %s", e.code)
        return ANONYMOUS
    return AuthContext(
        account_id=identity.account_id,
        username=identity.account.username,
        claims=identity.claims,
    )


def authorize_developer(authorization: str | None) -> None:
    secret = config.dev_secret()
    if not secret or len(secret) < DEV_SECRET_MIN_LENGTH:
        raise AuthenticationError("Invalid auth", code="INVALID_AUTH")
    if authorization is None or not hmac.compare_digest(authorization.encode(), secret.encode()):
        raise AuthenticationError("Invalid auth", code="INVALID_AUTH")


# FastAPI dependencies

def require_auth(authorization: str | None = Header(default=None)) -> AuthContext:
    return authorize_required(authorization)


def optional_auth(authorization: str | None = Header(default=None)) -> AuthContext:
    return authorize_optional(authorization)


def require_developer(authorization: str | None = Header(default=None)) -> None:
    authorize_developer(authorization)


# No role differentiation exists: every role name is the same check.
admin = superadmin = admin_superadmin = member = any_ = require_auth
