import pytest

from atal_ratelimit.config import AppConfig


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(
        port=8000,
        service_tokens=["svc-token"],
        admin_tokens=["admin-token"],
        api_keys=["svc-key"],
        otp_max=5,
        otp_window_seconds=3600,
        reset_max=3,
        reset_window_seconds=3600,
        ip_max=10,
        ip_window_seconds=60,
        sweep_seconds=0,
        idle_multiplier=2.0,
        trust_forwarded_for=False,
        log_level="info",
    )


@pytest.fixture
def gateway_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RATE_LIMIT_SERVICE_TOKENS", "svc-token")
    monkeypatch.setenv("RATE_LIMIT_ADMIN_TOKENS", "admin-token")
    monkeypatch.setenv("RATE_LIMIT_API_KEYS", "svc-key")
    monkeypatch.setenv("LIMITER_SWEEP_SECONDS", "0")
    monkeypatch.delenv("TRUST_FORWARDED_FOR", raising=False)
    for name in (
        "OTP_RATE_LIMIT_MAX",
        "OTP_RATE_LIMIT_WINDOW_SECONDS",
        "RESET_RATE_LIMIT_MAX",
        "RESET_RATE_LIMIT_WINDOW_SECONDS",
        "IP_RATE_LIMIT_MAX",
        "IP_RATE_LIMIT_WINDOW_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)
