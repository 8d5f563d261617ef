import threading

import pytest

from atal_ratelimit.rate_limit import InvalidLimiterConfig, LimiterConfig, TokenBucketLimiter


def _limiter(clock, max_tokens: int = 5, window_seconds: float = 3600) -> TokenBucketLimiter:
    return TokenBucketLimiter(LimiterConfig.per_window(max_tokens, window_seconds), clock=clock)


def test_first_call_allowed_and_seeds_bucket(clock):
    limiter = _limiter(clock)
    assert limiter.is_allowed("test@example.com") is True
    assert limiter.get_remaining_tokens("test@example.com") == 4
    assert limiter.size() == 1


def test_exhaustion_without_elapsed_time(clock):
    limiter = _limiter(clock)
    results = [limiter.is_allowed("test@example.com") for _ in range(10)]
    assert results == [True] * 5 + [False] * 5


def test_independent_keys(clock):
    limiter = _limiter(clock)
    for _ in range(5):
        limiter.is_allowed("user1@example.com")
    assert limiter.is_allowed("user1@example.com") is False
    assert limiter.is_allowed("user2@example.com") is True


def test_remaining_tokens_after_partial_consumption(clock):
    limiter = _limiter(clock)
    limiter.is_allowed("k")
    limiter.is_allowed("k")
    assert limiter.get_remaining_tokens("k") == 3


def test_unknown_key_reports_full_capacity(clock):
    limiter = _limiter(clock)
    assert limiter.get_remaining_tokens("never-seen") == 5
    assert limiter.size() == 0


def test_reset_restores_fresh_bucket(clock):
    limiter = _limiter(clock)
    for _ in range(5):
        limiter.is_allowed("k")
    assert limiter.is_allowed("k") is False

    limiter.reset("k")
    assert limiter.size() == 0
    assert limiter.is_allowed("k") is True
    assert limiter.get_remaining_tokens("k") == 4


def test_reset_unknown_key_is_noop(clock):
    limiter = _limiter(clock)
    limiter.reset("missing")
    assert limiter.size() == 0


def test_clear_all_and_size(clock):
    limiter = _limiter(clock)
    for key in ("a", "b", "c"):
        limiter.is_allowed(key)
    assert limiter.size() == 3
    assert len(limiter) == 3
    limiter.clear_all()
    assert limiter.size() == 0


def test_keys_are_case_sensitive(clock):
    limiter = _limiter(clock, max_tokens=1)
    assert limiter.is_allowed("KEY") is True
    assert limiter.is_allowed("KEY") is False
    assert limiter.is_allowed("key") is True


def test_refill_adds_elapsed_tokens(clock):
    # 5 per hour: one token every 720 seconds.
    limiter = _limiter(clock)
    for _ in range(5):
        assert limiter.is_allowed("k") is True
    assert limiter.is_allowed("k") is False

    clock.advance(719)
    assert limiter.is_allowed("k") is False

    clock.advance(2)
    assert limiter.is_allowed("k") is True
    assert limiter.is_allowed("k") is False


def test_denied_call_still_advances_refill_timestamp(clock):
    limiter = _limiter(clock)
    for _ in range(5):
        limiter.is_allowed("k")

    # Half a token accrues and is kept by the denial; elapsed time is not counted twice.
    clock.advance(360)
    assert limiter.is_allowed("k") is False
    clock.advance(300)
    assert limiter.is_allowed("k") is False
    clock.advance(70)
    assert limiter.is_allowed("k") is True


def test_refill_is_capped_at_capacity(clock):
    limiter = _limiter(clock)
    limiter.is_allowed("k")
    clock.advance(10 * 3600)
    results = [limiter.is_allowed("k") for _ in range(7)]
    assert results == [True] * 5 + [False] * 2


def test_remaining_is_a_snapshot_without_refill(clock):
    limiter = _limiter(clock)
    for _ in range(5):
        limiter.is_allowed("k")
    clock.advance(7200)
    assert limiter.get_remaining_tokens("k") == 0
    assert limiter.is_allowed("k") is True
    assert limiter.get_remaining_tokens("k") == 4


def test_remaining_stays_within_bounds(clock):
    limiter = _limiter(clock, max_tokens=3, window_seconds=60)
    for step in range(50):
        limiter.is_allowed("k")
        remaining = limiter.get_remaining_tokens("k")
        assert 0 <= remaining <= 3
        clock.advance(7 if step % 3 else 0)


def test_identical_sequences_are_deterministic(clock):
    limiter = _limiter(clock)
    first = [limiter.is_allowed("k") for _ in range(8)]
    limiter.clear_all()
    second = [limiter.is_allowed("k") for _ in range(8)]
    assert first == second


def test_check_reports_remaining_and_retry_hint(clock):
    limiter = _limiter(clock, max_tokens=2, window_seconds=60)
    first = limiter.check("k")
    assert first.allowed is True
    assert first.remaining == 1
    assert first.retry_after_ms == 0

    limiter.check("k")
    denied = limiter.check("k")
    assert denied.allowed is False
    assert denied.remaining == 0
    # One token every 30 seconds.
    assert 30000 <= denied.retry_after_ms <= 30001


def test_evict_idle_only_drops_fully_refilled_buckets(clock):
    limiter = _limiter(clock, max_tokens=10, window_seconds=60)
    limiter.is_allowed("old")
    clock.advance(40)
    limiter.is_allowed("recent")
    clock.advance(30)

    assert limiter.evict_idle() == 1
    assert limiter.size() == 1
    assert limiter.get_remaining_tokens("recent") == 9
    assert limiter.get_remaining_tokens("old") == 10


def test_evict_idle_respects_multiplier(clock):
    limiter = _limiter(clock, max_tokens=10, window_seconds=60)
    limiter.is_allowed("k")
    clock.advance(90)
    assert limiter.evict_idle(idle_multiplier=2.0) == 0
    clock.advance(40)
    assert limiter.evict_idle(idle_multiplier=2.0) == 1


def test_concurrent_checks_never_over_grant():
    limiter = TokenBucketLimiter(LimiterConfig.per_window(50, 3600))
    granted = []
    lock = threading.Lock()

    def worker() -> None:
        for _ in range(20):
            allowed = limiter.is_allowed("shared")
            with lock:
                granted.append(allowed)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    # 160 attempts within well under a second; at most one extra token can accrue.
    assert 50 <= sum(granted) <= 51
    assert 0 <= limiter.get_remaining_tokens("shared") <= 50


@pytest.mark.parametrize(
    "max_tokens,rate",
    [(0, 1.0), (-1, 1.0), (5, 0.0), (5, -0.5), (5, float("nan")), (5, float("inf")), (2.5, 1.0)],
)
def test_invalid_config_fails_fast(max_tokens, rate):
    with pytest.raises(InvalidLimiterConfig):
        LimiterConfig(max_tokens=max_tokens, refill_rate_per_sec=rate)


def test_per_window_rejects_non_positive_window():
    with pytest.raises(InvalidLimiterConfig):
        LimiterConfig.per_window(5, 0)


def test_per_window_rate_and_full_refill():
    cfg = LimiterConfig.per_window(10, 60)
    assert cfg.refill_rate_per_sec == pytest.approx(10 / 60)
    assert cfg.full_refill_seconds == pytest.approx(60)
