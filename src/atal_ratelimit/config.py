from __future__ import annotations

from dataclasses import dataclass

import os

from atal_ratelimit.limiters import LimiterPolicy, default_policies


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _env_bool(value: str | None) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class AppConfig:
    port: int
    service_tokens: list[str]
    admin_tokens: list[str]
    api_keys: list[str]
    otp_max: int
    otp_window_seconds: float
    reset_max: int
    reset_window_seconds: float
    ip_max: int
    ip_window_seconds: float
    sweep_seconds: int
    idle_multiplier: float
    trust_forwarded_for: bool
    log_level: str

    @staticmethod
    def from_env() -> "AppConfig":
        return AppConfig(
            port=int(os.getenv("PORT", "8000")),
            service_tokens=_split_csv(os.getenv("RATE_LIMIT_SERVICE_TOKENS")),
            admin_tokens=_split_csv(os.getenv("RATE_LIMIT_ADMIN_TOKENS")),
            api_keys=_split_csv(os.getenv("RATE_LIMIT_API_KEYS")),
            otp_max=int(os.getenv("OTP_RATE_LIMIT_MAX", "5")),
            otp_window_seconds=float(os.getenv("OTP_RATE_LIMIT_WINDOW_SECONDS", "3600")),
            reset_max=int(os.getenv("RESET_RATE_LIMIT_MAX", "3")),
            reset_window_seconds=float(os.getenv("RESET_RATE_LIMIT_WINDOW_SECONDS", "3600")),
            ip_max=int(os.getenv("IP_RATE_LIMIT_MAX", "10")),
            ip_window_seconds=float(os.getenv("IP_RATE_LIMIT_WINDOW_SECONDS", "60")),
            sweep_seconds=int(os.getenv("LIMITER_SWEEP_SECONDS", "300")),
            idle_multiplier=float(os.getenv("LIMITER_IDLE_MULTIPLIER", "2.0")),
            trust_forwarded_for=_env_bool(os.getenv("TRUST_FORWARDED_FOR")),
            log_level=os.getenv("LOG_LEVEL", "info").lower(),
        )

    def policies(self) -> tuple[LimiterPolicy, ...]:
        return default_policies(
            otp_max=self.otp_max,
            otp_window_seconds=self.otp_window_seconds,
            reset_max=self.reset_max,
            reset_window_seconds=self.reset_window_seconds,
            ip_max=self.ip_max,
            ip_window_seconds=self.ip_window_seconds,
        )
