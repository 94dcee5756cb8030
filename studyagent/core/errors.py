"""Error taxonomy and FastAPI handlers."""

import logging
import traceback
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.requests import Request

from studyagent.core.config import is_production
from studyagent.core.logging import get_request_id


class AppError(Exception):
    code = "app_error"
    status_code = 500
    error = "Request failed"

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id

    def payload_fields(self) -> Dict[str, Any]:
        """Extra machine-readable fields merged into the error body."""
        return {}


class AuthError(AppError):
    """No authenticated session."""
    code = "unauthorized"
    status_code = 401
    error = "User not authenticated"


class InputError(AppError, ValueError):
    """Missing or malformed request input."""
    code = "invalid_input"
    status_code = 400
    error = "Invalid request"


class QuotaExceededError(AppError):
    """Admission denied: the period budget cannot cover the estimate."""
    code = "quota_exceeded"
    status_code = 429
    error = "Monthly token limit exceeded"

    def __init__(self, message: str, *, limit: int, current: int, remaining: int, **kwargs):
        super().__init__(message, **kwargs)
        self.limit = limit
        self.current = current
        self.remaining = remaining

    def payload_fields(self) -> Dict[str, Any]:
        return {"limit": self.limit, "current": self.current, "remaining": self.remaining}


class QuotaUnavailableError(AppError):
    """Usage store unreachable during an admission check; the request is denied."""
    code = "quota_unavailable"
    status_code = 500
    error = "Usage tracking unavailable"


class UpstreamError(AppError):
    """Generation oracle failed (non-success status, transport error, not configured)."""
    code = "upstream_error"
    status_code = 500
    error = "Failed to route intent"


class UpstreamTimeoutError(UpstreamError):
    code = "upstream_timeout"


class UpstreamPermissionDeniedError(UpstreamError):
    """The oracle rejected our credentials; the message carries operator remediation."""
    code = "upstream_permission_denied"


class DecodeError(AppError):
    """Malformed oracle output. Always recovered inside the decoder."""
    code = "decode_error"


class PersistenceError(AppError):
    """Usage commit failed. Logged, never surfaced."""
    code = "persistence_error"


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def _error_payload(error: str, code: str, message: str, request_id: str) -> dict:
    return {
        "error": error,
        "code": code,
        "message": message,
        "request_id": request_id,
    }


def _respond(status_code: int, payload: dict, rid: str) -> JSONResponse:
    response = JSONResponse(status_code=status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    payload = _error_payload(exc.error, exc.code, exc.message, rid)
    payload.update(exc.payload_fields())
    if exc.status_code >= 500 and not is_production():
        payload["details"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    logger = logging.getLogger("studyagent")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    return _respond(exc.status_code, payload, rid)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    rid = _extract_request_id(request)
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{location}: {first.get('msg', 'invalid value')}" if location else first.get("msg", "Invalid request body")
    payload = _error_payload(InputError.error, InputError.code, message, rid)
    logging.getLogger("studyagent").warning(
        "request.invalid", extra={"request_id": rid, "error_code": InputError.code, "status": 400}
    )
    return _respond(400, payload, rid)


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    message = exc.detail if exc.detail else "HTTP error"
    payload = _error_payload(str(message), code, str(message), rid)
    logger = logging.getLogger("studyagent")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    return _respond(exc.status_code, payload, rid)


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("studyagent")
    logger.error("unhandled.exception", exc_info=True, extra={"request_id": rid, "error_code": "internal_error"})
    payload = _error_payload("Internal server error", "internal_error", str(exc) or "Unexpected error", rid)
    if not is_production():
        payload["details"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return _respond(500, payload, rid)
