from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from atal_ratelimit.rate_limit import LimiterConfig, RateLimitDecision, TokenBucketLimiter


OTP = "otp"
PASSWORD_RESET = "password-reset"
IP = "ip"


class UnknownLimiter(KeyError):
    pass


def normalize_identifier(value: str) -> str:
    return value.lower()


def describe_policy(max_tokens: int, window_seconds: float, subject: str) -> str:
    if window_seconds == 3600:
        per = "hour"
    elif window_seconds == 60:
        per = "minute"
    elif window_seconds == 86400:
        per = "day"
    else:
        per = f"{window_seconds:g} seconds"
    return f"Max {max_tokens} requests per {per} per {subject}"


@dataclass(frozen=True)
class LimiterPolicy:
    name: str
    stats_key: str
    namespace: str
    max_tokens: int
    window_seconds: float
    subject: str
    fold_case: bool = True

    @property
    def config(self) -> LimiterConfig:
        return LimiterConfig.per_window(self.max_tokens, self.window_seconds)

    @property
    def description(self) -> str:
        return describe_policy(self.max_tokens, self.window_seconds, self.subject)

    def key_for(self, identifier: str) -> str:
        if self.fold_case:
            identifier = normalize_identifier(identifier)
        return f"{self.namespace}:{identifier}"


def default_policies(
    *,
    otp_max: int = 5,
    otp_window_seconds: float = 3600,
    reset_max: int = 3,
    reset_window_seconds: float = 3600,
    ip_max: int = 10,
    ip_window_seconds: float = 60,
) -> tuple[LimiterPolicy, ...]:
    return (
        LimiterPolicy(
            name=OTP,
            stats_key="otp",
            namespace="otp",
            max_tokens=otp_max,
            window_seconds=otp_window_seconds,
            subject="email/phone",
        ),
        LimiterPolicy(
            name=PASSWORD_RESET,
            stats_key="passwordReset",
            namespace="reset",
            max_tokens=reset_max,
            window_seconds=reset_window_seconds,
            subject="email",
        ),
        LimiterPolicy(
            name=IP,
            stats_key="ip",
            namespace="ip",
            max_tokens=ip_max,
            window_seconds=ip_window_seconds,
            subject="IP",
            fold_case=False,
        ),
    )


DEFAULT_POLICIES = default_policies()


class LimiterRegistry:
    """Named limiters sharing one clock, plus the auth-flow calling convention.

    Identifiers are namespaced per policy (``otp:``, ``reset:``, ``ip:``) and
    email/phone identifiers are lowercased here, never inside the limiter.
    """

    def __init__(
        self,
        policies: Iterable[LimiterPolicy] = DEFAULT_POLICIES,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._policies: dict[str, LimiterPolicy] = {}
        self._limiters: dict[str, TokenBucketLimiter] = {}
        for policy in policies:
            if policy.name in self._policies:
                raise ValueError(f"duplicate limiter name: {policy.name}")
            self._policies[policy.name] = policy
            self._limiters[policy.name] = TokenBucketLimiter(policy.config, clock=clock)

    def names(self) -> list[str]:
        return list(self._policies)

    def policy(self, name: str) -> LimiterPolicy:
        try:
            return self._policies[name]
        except KeyError:
            raise UnknownLimiter(name) from None

    def get(self, name: str) -> TokenBucketLimiter:
        try:
            return self._limiters[name]
        except KeyError:
            raise UnknownLimiter(name) from None

    def check(self, name: str, identifier: str) -> RateLimitDecision:
        return self.get(name).check(self.policy(name).key_for(identifier))

    def is_allowed(self, name: str, identifier: str) -> bool:
        return self.check(name, identifier).allowed

    def remaining(self, name: str, identifier: str) -> int:
        return self.get(name).get_remaining_tokens(self.policy(name).key_for(identifier))

    def reset(self, name: str, identifier: str) -> None:
        self.get(name).reset(self.policy(name).key_for(identifier))

    def check_otp(self, identifier: str) -> bool:
        return self.is_allowed(OTP, identifier)

    def check_password_reset(self, email: str) -> bool:
        return self.is_allowed(PASSWORD_RESET, email)

    def check_ip(self, ip: str) -> bool:
        return self.is_allowed(IP, ip)

    def otp_remaining(self, identifier: str) -> int:
        return self.remaining(OTP, identifier)

    def reset_otp(self, identifier: str) -> None:
        self.reset(OTP, identifier)

    def reset_password_reset(self, email: str) -> None:
        self.reset(PASSWORD_RESET, email)

    def reset_ip(self, ip: str) -> None:
        self.reset(IP, ip)

    def clear_all(self) -> None:
        for limiter in self._limiters.values():
            limiter.clear_all()

    def sweep(self, *, idle_multiplier: float = 1.0) -> int:
        return sum(limiter.evict_idle(idle_multiplier=idle_multiplier) for limiter in self._limiters.values())

    def stats(self) -> dict[str, dict[str, Any]]:
        return {
            policy.stats_key: {
                "entries": self._limiters[name].size(),
                "config": policy.description,
            }
            for name, policy in self._policies.items()
        }


_default_registry: LimiterRegistry | None = None


def get_default_registry() -> LimiterRegistry:
    global _default_registry
    if _default_registry is None:
        _default_registry = LimiterRegistry()
    return _default_registry


def set_default_registry(registry: LimiterRegistry) -> None:
    global _default_registry
    _default_registry = registry


def reset_default_registry() -> None:
    global _default_registry
    _default_registry = None
