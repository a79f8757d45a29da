from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger("clinic.errors")


class RequestError(Exception):
    """Error with an HTTP status and a stable machine code, raised before any mutation."""

    status_code = 400
    default_code = "BAD_REQUEST"

    def __init__(self, message: str, code: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        if status_code is not None:
            self.status_code = status_code


class BadRequestError(RequestError):
    status_code = 400
    default_code = "BAD_REQUEST"


class MissingBodyError(BadRequestError):
    default_code = "MISSING_PROPERTY"

    def __init__(self, entity: str, missing: list[str]):
        super().__init__(f"{entity}: missing required properties: {', '.join(missing)}")
        self.missing = missing


class EntityNotFoundError(RequestError):
    status_code = 404
    default_code = "ENTITY_NOT_FOUND"

    def __init__(self, entity: str, key: Any):
        super().__init__(f"{entity} with identifier {key} not found")


class AuthenticationError(RequestError):
    status_code = 403
    default_code = "AUTHENTICATION_FAILED"


def error_body(exc: RequestError) -> dict[str, Any]:
    return {"http_code": exc.status_code, "code": exc.code, "message": exc.message}


async def request_error_handler(request: Request, exc: RequestError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s -> %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=error_body(exc))


def require_fields(entity: str, data: dict[str, Any], required: list[str]) -> None:
    missing = [k for k in required if data.get(k) in (None, "")]
    if missing:
        raise MissingBodyError(entity, missing)
