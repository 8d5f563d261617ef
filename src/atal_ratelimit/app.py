from __future__ import annotations

import asyncio
import logging
import math
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Callable

from fastapi import Body, Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from atal_ratelimit.config import AppConfig
from atal_ratelimit.errors import error_response
from atal_ratelimit.limiters import IP, LimiterRegistry, UnknownLimiter, reset_default_registry, set_default_registry
from atal_ratelimit.schemas import (
    CheckRequest,
    CheckResponse,
    ErrorResponse,
    HealthResponse,
    RemainingResponse,
    ResetRequest,
    ResetResponse,
    StatsResponse,
    UnauthorizedResponse,
)
from atal_ratelimit.security import AuthContext, require_admin, require_auth


logger = logging.getLogger("atal_ratelimit")


@dataclass
class AppState:
    config: AppConfig
    registry: LimiterRegistry
    tasks: list[asyncio.Task]


async def sweep_loop(*, registry: LimiterRegistry, seconds: int, idle_multiplier: float) -> None:
    while True:
        await asyncio.sleep(max(1, int(seconds)))
        evicted = registry.sweep(idle_multiplier=idle_multiplier)
        if evicted:
            logger.debug("evicted %d idle rate limit buckets", evicted)


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = AppConfig.from_env()
    registry = LimiterRegistry(config.policies())
    set_default_registry(registry)

    tasks: list[asyncio.Task] = []
    app.state.state = AppState(config=config, registry=registry, tasks=tasks)

    if config.sweep_seconds > 0:
        tasks.append(
            asyncio.create_task(
                sweep_loop(registry=registry, seconds=config.sweep_seconds, idle_multiplier=config.idle_multiplier)
            )
        )
    logger.info("rate limiters ready: %s", ", ".join(registry.names()))
    try:
        yield
    finally:
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        reset_default_registry()


app = FastAPI(
    title="ATAL Rate Limit Gateway",
    version="0.1.0",
    description=(
        "# ATAL Rate Limit Gateway\n\n"
        "Token-bucket rate limiting for ATAL AI auth flows (OTP requests, password resets, per-IP traffic).\n\n"
        "## Auth\n"
        "All `/v1/*` endpoints require **one** of:\n\n"
        "- `Authorization: Bearer <token>` (service or admin token)\n"
        "- `X-API-Key: <key>` (service access)\n\n"
        "Resetting a bucket and reading stats need an admin token.\n\n"
        "## Limiters\n"
        "- `otp`: 5 requests per hour per email/phone (case-insensitive)\n"
        "- `password-reset`: 3 requests per hour per email (case-insensitive)\n"
        "- `ip`: 10 requests per minute per IP\n\n"
        "## Notes\n"
        "- Buckets live in this process only; several replicas each keep their own counts.\n"
        "- `remaining` is a snapshot as of the last check and is not refilled on read.\n"
        "- **429** returns the standard error envelope with `error.code=rate_limited` and a `Retry-After` header.\n"
    ),
    lifespan=lifespan,
)


def _request_id(request: Request, body_request_id: str | None = None) -> str | None:
    return request.headers.get("x-request-id") or body_request_id


def _client_ip(request: Request, config: AppConfig) -> str | None:
    if config.trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client is not None:
        return request.client.host
    return None


def _unknown_limiter(registry: LimiterRegistry, name: str, request_id: str | None) -> JSONResponse:
    return error_response(
        "unknown_limiter",
        request_id=request_id,
        details={"limiter": name, "known": registry.names()},
    )


def _jsonable_errors(errors) -> list[dict]:
    out = []
    for err in errors:
        out.append(
            {
                "type": str(err.get("type", "")),
                "loc": [str(part) for part in err.get("loc", ())],
                "msg": str(err.get("msg", "")),
            }
        )
    return out


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    code = "invalid_request"
    details: dict = {"errors": _jsonable_errors(exc.errors())}
    for err in exc.errors():
        if err.get("type") == "json_invalid":
            code = "invalid_json"
            details = {"error": str(err.get("msg", "invalid json"))}
            break
        if err.get("type") == "model_attributes_type" and tuple(err.get("loc", ())) == ("body",):
            code = "invalid_json"
            details = {"error": str(err.get("msg", "invalid body"))}
            break
    return error_response(code, request_id=request.headers.get("x-request-id"), details=details)


@app.middleware("http")
async def access_log(request: Request, call_next: Callable[[Request], Response]):
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    request_id = request.headers.get("x-request-id", "")
    logger.info(
        "%s %s -> %s (%.1fms) rid=%s",
        request.method,
        request.url.path,
        response.status_code,
        duration_ms,
        request_id,
    )
    return response


@app.get(
    "/healthz",
    summary="Liveness check",
    response_model=HealthResponse,
    tags=["meta"],
)
async def healthz() -> HealthResponse:
    return {"ok": True}


@app.post(
    "/v1/limits/{limiter}/check",
    summary="Consume one token",
    description=(
        "Ask whether one request for `identifier` may proceed now. On success one token is consumed "
        "and the response carries the whole tokens left. On denial the response is **429** with "
        "`error.code=rate_limited`, `details.retryAfterMs` and a `Retry-After` header (seconds)."
    ),
    response_model=CheckResponse,
    responses={
        400: {"description": "Invalid request.", "model": ErrorResponse},
        401: {"description": "Unauthorized.", "model": UnauthorizedResponse},
        404: {"description": "Unknown limiter.", "model": ErrorResponse},
        429: {"description": "Rate limited.", "model": ErrorResponse},
    },
    tags=["limits"],
)
async def check_limit(
    limiter: str,
    request: Request,
    payload: CheckRequest = Body(
        ...,
        openapi_examples={
            "otp": {"summary": "OTP request for an email", "value": {"identifier": "Student@Example.com"}},
            "ip_from_caller": {"summary": "IP limit for the calling address", "value": {}},
        },
    ),
    auth: AuthContext = Depends(require_auth),
):
    state: AppState = app.state.state
    registry = state.registry
    request_id = _request_id(request, payload.requestId)

    try:
        registry.policy(limiter)
    except UnknownLimiter:
        return _unknown_limiter(registry, limiter, request_id)

    identifier = payload.identifier
    if identifier is None and limiter == IP:
        identifier = _client_ip(request, state.config)
    if identifier is None:
        return error_response(
            "invalid_request",
            request_id=request_id,
            message="Field 'identifier' is required for this limiter",
            details={"limiter": limiter},
        )

    decision = registry.check(limiter, identifier)
    if not decision.allowed:
        logger.info("rate limited limiter=%s scheme=%s rid=%s", limiter, auth.scheme, request_id or "")
        retry_after_s = max(1, math.ceil(decision.retry_after_ms / 1000))
        return error_response(
            "rate_limited",
            request_id=request_id,
            details={"limiter": limiter, "retryAfterMs": decision.retry_after_ms},
            headers={"Retry-After": str(retry_after_s)},
        )

    return {
        "requestId": request_id,
        "limiter": limiter,
        "allowed": True,
        "remaining": decision.remaining,
    }


@app.get(
    "/v1/limits/{limiter}/remaining",
    summary="Remaining tokens (snapshot)",
    description=(
        "Whole tokens left for `identifier` as of its last check. Unknown identifiers report the full "
        "capacity. The value is not refilled on read, so it can lag behind what the next check grants."
    ),
    response_model=RemainingResponse,
    responses={
        401: {"description": "Unauthorized.", "model": UnauthorizedResponse},
        404: {"description": "Unknown limiter.", "model": ErrorResponse},
    },
    tags=["limits"],
)
async def remaining(
    limiter: str,
    request: Request,
    identifier: str = Query(..., description="Email, phone number or IP."),
    _: AuthContext = Depends(require_auth),
):
    registry = app.state.state.registry
    try:
        count = registry.remaining(limiter, identifier)
    except UnknownLimiter:
        return _unknown_limiter(registry, limiter, _request_id(request))
    return {"limiter": limiter, "remaining": count}


@app.post(
    "/v1/limits/{limiter}/reset",
    summary="Reset one identifier (admin)",
    description="Drop the bucket for `identifier`; its next check behaves like a first request.",
    response_model=ResetResponse,
    responses={
        401: {"description": "Unauthorized.", "model": UnauthorizedResponse},
        403: {"description": "Admin token required."},
        404: {"description": "Unknown limiter.", "model": ErrorResponse},
    },
    tags=["admin"],
)
async def reset_limit(
    limiter: str,
    request: Request,
    payload: ResetRequest,
    _: AuthContext = Depends(require_admin),
):
    registry = app.state.state.registry
    request_id = _request_id(request, payload.requestId)
    try:
        registry.reset(limiter, payload.identifier)
    except UnknownLimiter:
        return _unknown_limiter(registry, limiter, request_id)
    logger.info("rate limit reset limiter=%s rid=%s", limiter, request_id or "")
    return {"requestId": request_id, "limiter": limiter, "reset": True}


@app.get(
    "/v1/stats",
    summary="Limiter statistics (admin)",
    description="Tracked identifier count and configured policy per limiter. Intended for dashboards.",
    response_model=StatsResponse,
    responses={
        401: {"description": "Unauthorized.", "model": UnauthorizedResponse},
        403: {"description": "Admin token required."},
    },
    tags=["admin"],
)
async def stats(_: AuthContext = Depends(require_admin)):
    return {"limiters": app.state.state.registry.stats()}
