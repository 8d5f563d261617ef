from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from fastapi.responses import JSONResponse


@dataclass(frozen=True)
class ErrorRegistryEntry:
    code: str
    http_status: int
    message: str


ERROR_CODE_REGISTRY: tuple[ErrorRegistryEntry, ...] = (
    ErrorRegistryEntry(code="invalid_json", http_status=400, message="Request body must be valid JSON"),
    ErrorRegistryEntry(code="invalid_request", http_status=400, message="Request validation failed"),
    ErrorRegistryEntry(code="unauthorized", http_status=401, message="Missing or invalid credentials"),
    ErrorRegistryEntry(code="forbidden", http_status=403, message="Admin credentials required"),
    ErrorRegistryEntry(code="unknown_limiter", http_status=404, message="Unknown rate limiter"),
    ErrorRegistryEntry(
        code="rate_limited",
        http_status=429,
        message="Too many requests. Please wait a few minutes and try again.",
    ),
    ErrorRegistryEntry(code="internal_error", http_status=500, message="Internal server error"),
)

_BY_CODE = {entry.code: entry for entry in ERROR_CODE_REGISTRY}


def lookup(code: str) -> ErrorRegistryEntry:
    return _BY_CODE.get(code, _BY_CODE["internal_error"])


def error_envelope(
    code: str,
    *,
    request_id: str | None = None,
    message: str | None = None,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    entry = lookup(code)
    return {
        "requestId": request_id,
        "ok": False,
        "error": {
            "code": entry.code,
            "message": message or entry.message,
            "details": details or {},
        },
    }


def error_response(
    code: str,
    *,
    request_id: str | None = None,
    message: str | None = None,
    details: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    entry = lookup(code)
    payload = error_envelope(code, request_id=request_id, message=message, details=details)
    out_headers = dict(headers or {})
    if request_id:
        out_headers["X-Request-Id"] = request_id
    return JSONResponse(payload, status_code=entry.http_status, headers=out_headers)
