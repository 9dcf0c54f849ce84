"""Unit tests for claim expiration math."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest

from taskman_service.config import ExpirationConfig
from taskman_service.services.expiration import (
    DEFAULT_POLICY,
    ExpirationPolicy,
    as_utc,
    compute_expiration,
    format_timestamp,
    is_expired,
    parse_timestamp,
    time_remaining,
)

NOW = datetime(2025, 1, 1, 12, 0, 0, tzinfo=UTC)


def _seconds(estimated: int, difficulty: int, task_type: str) -> float:
    return (compute_expiration(NOW, estimated, difficulty, task_type) - NOW).total_seconds()


@pytest.mark.unit
def test_arithmetic_difficulty_one_uses_three_times_estimate() -> None:
    """60s estimate, difficulty 1, multiplier 1.0 gives 180s."""
    assert _seconds(60, 1, "arithmetic") == 180


@pytest.mark.unit
def test_difficulty_and_type_multipliers_compose() -> None:
    """100 * 3 * 1.8 * 1.5 = 810s for a difficulty-5 defragmentation."""
    assert _seconds(100, 5, "defragmentation") == pytest.approx(810)


@pytest.mark.unit
def test_unknown_type_uses_neutral_multiplier() -> None:
    """Types without a table entry behave like sort_list."""
    assert _seconds(100, 2, "brand_new_type") == _seconds(100, 2, "sort_list")


@pytest.mark.unit
@pytest.mark.parametrize(
    ("estimated", "expected"),
    [(1, 120), (10, 120), (5000, 3600), (100_000, 3600)],
)
def test_result_is_clamped(estimated: int, expected: int) -> None:
    """Claims never last less than 2 minutes or more than an hour."""
    assert _seconds(estimated, 1, "arithmetic") == expected


@pytest.mark.unit
@pytest.mark.parametrize(
    "task_type",
    ["sort_list", "arithmetic", "color_match", "group_separation", "defragmentation"],
)
def test_bounds_hold_for_every_type(task_type: str) -> None:
    """Every valid input lands inside [120, 3600] seconds."""
    for estimated in (1, 30, 90, 400, 2000):
        for difficulty in range(1, 6):
            assert 120 <= _seconds(estimated, difficulty, task_type) <= 3600


@pytest.mark.unit
def test_monotonic_in_difficulty() -> None:
    """Raising difficulty never shortens the claim."""
    for estimated in (30, 200, 900):
        durations = [_seconds(estimated, d, "color_match") for d in range(1, 6)]
        assert durations == sorted(durations)


@pytest.mark.unit
def test_compute_expiration_is_pure() -> None:
    """Same inputs, same instant."""
    first = compute_expiration(NOW, 45, 3, "group_separation")
    second = compute_expiration(NOW, 45, 3, "group_separation")
    assert first == second


@pytest.mark.unit
def test_policy_from_config() -> None:
    """Config values flow into the policy."""
    config = ExpirationConfig(
        base_multiplier=2,
        difficulty_step=0.5,
        min_seconds=60,
        max_seconds=600,
        type_multipliers={"arithmetic": 2.0},
    )
    policy = ExpirationPolicy.from_config(config)
    # 100 * 2 * (1 + 1 * 0.5) * 2.0 = 600
    assert policy.claim_seconds(100, 2, "arithmetic") == 600
    assert policy.claim_seconds(1, 1, "arithmetic") == 60


@pytest.mark.unit
def test_default_policy_table() -> None:
    """Defaults match the documented multipliers."""
    assert DEFAULT_POLICY.type_multipliers["color_match"] == 1.2
    assert DEFAULT_POLICY.type_multipliers["group_separation"] == 1.3
    assert DEFAULT_POLICY.min_seconds == 120
    assert DEFAULT_POLICY.max_seconds == 3600


@pytest.mark.unit
def test_is_expired_includes_deadline_instant() -> None:
    """The deadline itself counts as expired."""
    deadline = NOW + timedelta(seconds=120)
    assert is_expired(deadline, NOW) is False
    assert is_expired(deadline, deadline) is True
    assert is_expired(deadline, deadline + timedelta(seconds=1)) is True
    assert is_expired(None, NOW) is False


@pytest.mark.unit
def test_time_remaining_floors_at_zero() -> None:
    """Remaining time splits into minutes and seconds and never goes negative."""
    assert time_remaining(NOW + timedelta(seconds=185), NOW) == (3, 5)
    assert time_remaining(NOW - timedelta(seconds=10), NOW) == (0, 0)


@pytest.mark.unit
def test_timestamp_round_trip_and_ordering() -> None:
    """Stored timestamps parse back and sort like the instants they encode."""
    earlier = NOW
    later = NOW + timedelta(microseconds=1)
    assert format_timestamp(earlier) == "2025-01-01T12:00:00.000000Z"
    assert parse_timestamp(format_timestamp(later)) == later
    assert format_timestamp(earlier) < format_timestamp(later)
    assert parse_timestamp(None) is None


@pytest.mark.unit
def test_naive_datetimes_are_treated_as_utc() -> None:
    """A naive datetime is formatted as if it were UTC."""
    assert format_timestamp(datetime(2025, 1, 1, 12, 0, 0)) == "2025-01-01T12:00:00.000000Z"


@pytest.mark.unit
def test_as_utc_normalises_every_input() -> None:
    """Naive, offset and missing instants all come back as aware UTC."""
    assert as_utc(datetime(2025, 1, 1, 12, 0, 0)) == NOW
    assert as_utc(NOW.astimezone(timezone(timedelta(hours=2)))) == NOW
    assert as_utc(NOW.astimezone(timezone(timedelta(hours=2)))).tzinfo is UTC
    assert as_utc(None).tzinfo is UTC
