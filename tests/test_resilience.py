import random
from datetime import datetime, timedelta, timezone

from nudge_engine.resilience import PolicyRegistry, ResiliencePolicy, classify_failure
from nudge_engine.settings import ResilienceConfig

NOW = datetime(2025, 1, 6, 12, 0, tzinfo=timezone.utc)


def no_jitter_policy(threshold=3):
    options = ResilienceConfig(
        base_backoff_seconds=30,
        max_backoff_seconds=600,
        circuit_failure_threshold=threshold,
        circuit_open_seconds=300,
        jitter_ratio=0.0,
    )
    return ResiliencePolicy("push", options, rng=random.Random(7))


def test_circuit_opens_at_threshold_then_half_opens():
    policy = no_jitter_policy(threshold=3)

    for _ in range(2):
        policy.record_failure("boom", NOW)
        assert policy.can_attempt(NOW).allowed

    policy.record_failure("boom", NOW)
    decision = policy.can_attempt(NOW + timedelta(seconds=299))
    assert not decision.allowed
    assert decision.reason == "circuit_open"

    assert policy.can_attempt(NOW + timedelta(seconds=300)).allowed
    assert policy.consecutive_failures == 2


def test_backoff_doubles_and_caps():
    policy = no_jitter_policy(threshold=10)
    policy.record_failure("x", NOW)
    assert policy.state(NOW).last_backoff_seconds == 60
    policy.record_failure("x", NOW)
    assert policy.state(NOW).last_backoff_seconds == 120
    for _ in range(5):
        policy.record_failure("x", NOW)
    assert policy.state(NOW).last_backoff_seconds == 600


def test_next_attempt_covers_open_circuit():
    policy = no_jitter_policy(threshold=2)
    policy.record_failure("a", NOW)
    policy.record_failure("b", NOW)
    state = policy.state(NOW)
    assert state.circuit_open_until == NOW + timedelta(seconds=300)
    assert state.next_attempt_at == NOW + timedelta(seconds=300)
    assert state.last_error == "b"


def test_success_resets_everything():
    policy = no_jitter_policy(threshold=2)
    policy.record_failure("a", NOW)
    policy.record_failure("b", NOW)
    policy.record_success(NOW)
    state = policy.state(NOW)
    assert state.consecutive_failures == 0
    assert state.circuit_open_until is None
    assert policy.can_attempt(NOW).allowed


def test_jitter_stays_within_ratio():
    options = ResilienceConfig(base_backoff_seconds=30, max_backoff_seconds=600, jitter_ratio=0.35)
    policy = ResiliencePolicy("push", options, rng=random.Random(1))
    policy.record_failure("x", NOW)
    assert 60 <= policy.state(NOW).last_backoff_seconds < 60 * 1.35


def test_skip_counts_and_unknown_root_cause():
    policy = no_jitter_policy()
    policy.record_skip("circuit_open")
    policy.record_skip("something-else")
    policy.record_failure("x", NOW, root_cause="cosmic-rays")
    state = policy.state(NOW)
    assert state.skip_counts == {"backoff": 1, "circuit_open": 1}
    assert state.last_root_cause == "unknown"


def test_classify_failure():
    assert classify_failure(429) == "rate_limit"
    assert classify_failure(401) == "auth"
    assert classify_failure(400) == "validation"
    assert classify_failure(503) == "provider"
    assert classify_failure(None, "Connection reset by peer") == "network"
    assert classify_failure(None, "weird") == "unknown"


def test_registry_shares_one_policy_per_dependency():
    registry = PolicyRegistry(ResilienceConfig())
    assert registry.get("push") is registry.get("push")
    assert registry.get("push") is not registry.get("calendar")
    assert [state.dependency for state in registry.states(NOW)] == ["calendar", "push"]
