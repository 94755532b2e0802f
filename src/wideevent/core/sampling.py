"""Tail-based sampling decision.

The decision is made after a request completes, so it can look at the outcome:
errors, slow requests, flagged paths and flagged users are always kept, and the
remaining traffic is sampled deterministically by trace id.
"""

import math
import random
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

HASH_BUCKETS = 10_000


@dataclass(frozen=True)
class SamplingConfig:
    """Sampling policy, fixed at middleware setup.

    Attributes:
        default_rate: Fraction of normal traffic to keep, in [0, 1].
        always_keep_errors: Keep any error outcome or status >= 400.
        slow_request_threshold_ms: Keep requests slower than this.
        always_keep_paths: Keep requests whose path contains any of these.
        always_keep_users: Keep requests from these user ids.
    """

    default_rate: float = 1.0
    always_keep_errors: bool = True
    slow_request_threshold_ms: float = 2000
    always_keep_paths: tuple[str, ...] = ()
    always_keep_users: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not 0.0 <= self.default_rate <= 1.0:
            raise ValueError(f"default_rate must be in [0, 1], got {self.default_rate}")
        object.__setattr__(self, "always_keep_paths", tuple(self.always_keep_paths))
        object.__setattr__(self, "always_keep_users", tuple(self.always_keep_users))


def djb2(text: str) -> int:
    """Return the 32-bit DJB2 hash of ``text`` over its UTF-16 code units."""
    value = 5381
    encoded = text.encode("utf-16-le", errors="surrogatepass")
    for i in range(0, len(encoded), 2):
        unit = encoded[i] | (encoded[i + 1] << 8)
        value = (value * 33 + unit) & 0xFFFFFFFF
    return value


def trace_bucket(trace_id: str) -> float:
    """Map a trace id to a stable point in [0, 1)."""
    return (djb2(trace_id) % HASH_BUCKETS) / HASH_BUCKETS


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if math.isnan(value):
        return None
    return float(value)


def _is_error(event: Mapping[str, Any]) -> bool:
    if event.get("outcome") == "error":
        return True
    status = _number(event.get("status_code"))
    return status is not None and status >= 400


def should_keep(
    event: Mapping[str, Any],
    config: SamplingConfig,
    rng: Callable[[], float] = random.random,
) -> bool:
    """Decide whether a finished event is worth keeping.

    Checks run in order and the first match keeps the event: errors, slow
    requests, flagged paths, flagged users. Everything else is kept when its
    trace bucket falls below ``default_rate``, or by a random draw when the
    event has no trace id.

    Args:
        event: The event payload (``outcome``, ``status_code``, ``duration_ms``,
            ``path``, ``user_id``, ``trace_id`` are consulted).
        config: Sampling policy.
        rng: Uniform [0, 1) source for events without a trace id.
    """
    if config.always_keep_errors and _is_error(event):
        return True

    duration = _number(event.get("duration_ms"))
    if duration is not None and duration > config.slow_request_threshold_ms:
        return True

    path = event.get("path")
    if isinstance(path, str) and any(p in path for p in config.always_keep_paths):
        return True

    user_id = event.get("user_id")
    if user_id not in (None, "") and str(user_id) in config.always_keep_users:
        return True

    trace_id = event.get("trace_id")
    if trace_id:
        return trace_bucket(str(trace_id)) < config.default_rate
    return rng() < config.default_rate
