"""Claim expiration math and timestamp helpers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from types import MappingProxyType
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

    from taskman_service.config import ExpirationConfig

_DEFAULT_TYPE_MULTIPLIERS: Mapping[str, float] = MappingProxyType(
    {
        "sort_list": 1.0,
        "arithmetic": 1.0,
        "color_match": 1.2,
        "group_separation": 1.3,
        "defragmentation": 1.5,
    }
)


@dataclass(frozen=True)
class ExpirationPolicy:
    """Constants behind :func:`compute_expiration`."""

    base_multiplier: float = 3.0
    difficulty_step: float = 0.2
    min_seconds: int = 120
    max_seconds: int = 3600
    type_multipliers: Mapping[str, float] = field(
        default_factory=lambda: _DEFAULT_TYPE_MULTIPLIERS
    )

    @classmethod
    def from_config(cls, config: ExpirationConfig) -> ExpirationPolicy:
        """Build a policy from the ``expiration`` config section."""
        return cls(
            base_multiplier=config.base_multiplier,
            difficulty_step=config.difficulty_step,
            min_seconds=config.min_seconds,
            max_seconds=config.max_seconds,
            type_multipliers=MappingProxyType(dict(config.type_multipliers)),
        )

    def claim_seconds(self, estimated_time_seconds: int, difficulty: int, task_type: str) -> float:
        """
        Length of a claim in seconds.

        ``estimated_time * 3 * (1 + (difficulty - 1) * 0.2) * type_multiplier``,
        clamped to [min_seconds, max_seconds]. Unknown types use 1.0.
        """
        base = estimated_time_seconds * self.base_multiplier
        difficulty_multiplier = 1.0 + (difficulty - 1) * self.difficulty_step
        type_multiplier = self.type_multipliers.get(task_type, 1.0)
        raw = base * difficulty_multiplier * type_multiplier
        return float(max(self.min_seconds, min(self.max_seconds, raw)))


DEFAULT_POLICY = ExpirationPolicy()


def compute_expiration(
    now: datetime,
    estimated_time_seconds: int,
    difficulty: int,
    task_type: str,
    policy: ExpirationPolicy = DEFAULT_POLICY,
) -> datetime:
    """Return the instant at which a claim taken at ``now`` lapses."""
    return now + timedelta(
        seconds=policy.claim_seconds(estimated_time_seconds, difficulty, task_type)
    )


def is_expired(expires_at: datetime | None, now: datetime) -> bool:
    """A claim is expired from its deadline instant onward. No deadline never expires."""
    if expires_at is None:
        return False
    return now >= expires_at


def time_remaining(expires_at: datetime, now: datetime) -> tuple[int, int]:
    """Whole (minutes, seconds) left until ``expires_at``, floored at zero."""
    remaining = max(0, int((expires_at - now).total_seconds()))
    return remaining // 60, remaining % 60


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime:
    """
    Normalise a caller-supplied instant to an aware UTC datetime.

    ``None`` means now. Naive values are taken to already be UTC.
    """
    if value is None:
        return utc_now()
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def format_timestamp(value: datetime) -> str:
    """
    Serialize an instant for storage.

    Fixed microsecond precision keeps string order equal to time order.
    """
    return as_utc(value).isoformat(timespec="microseconds").replace("+00:00", "Z")


def parse_timestamp(value: str | None) -> datetime | None:
    """Inverse of :func:`format_timestamp`."""
    if value is None:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed
