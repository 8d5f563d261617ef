from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    ok: bool = Field(..., description="Process is alive.")


class CheckRequest(BaseModel):
    requestId: str | None = Field(
        default=None,
        description="Optional client-provided id used for correlating logs and responses.",
        examples=["req-123"],
    )
    identifier: str | None = Field(
        default=None,
        description=(
            "Email, phone number or IP the limit applies to. Email/phone identifiers are "
            "lowercased by the service. May be omitted for the `ip` limiter, in which case "
            "the caller's address is used."
        ),
        examples=["student@example.com", "+919876543210", "203.0.113.7"],
    )


class ResetRequest(BaseModel):
    requestId: str | None = Field(default=None, description="Optional correlation id.")
    identifier: str = Field(..., description="Identifier whose bucket should be dropped.")


class CheckResponse(BaseModel):
    requestId: str | None = None
    limiter: str = Field(..., examples=["otp"])
    allowed: bool = Field(..., description="Always true on 200; denials are returned as 429.")
    remaining: int = Field(..., ge=0, description="Whole tokens left after this request.")


class RemainingResponse(BaseModel):
    limiter: str
    remaining: int = Field(
        ...,
        ge=0,
        description="Whole tokens as of the last check (not refilled on read).",
    )


class ResetResponse(BaseModel):
    requestId: str | None = None
    limiter: str
    reset: bool


class LimiterStats(BaseModel):
    entries: int = Field(..., ge=0, description="Distinct identifiers currently tracked.")
    config: str = Field(..., description="Human-readable policy, e.g. 'Max 5 requests per hour per email/phone'.")


class StatsResponse(BaseModel):
    limiters: dict[str, LimiterStats]


class ErrorBody(BaseModel):
    code: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    requestId: str | None = None
    ok: bool = False
    error: ErrorBody


class UnauthorizedResponse(BaseModel):
    detail: dict[str, str] = Field(..., examples=[{"error": "unauthorized"}])
