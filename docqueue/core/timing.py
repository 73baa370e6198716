"""
Clock arithmetic for leases, deadlines and poll intervals.

Instants are timezone-aware UTC datetimes. Additions that leave the
representable range saturate to MAX_INSTANT / MIN_INSTANT depending on the
sign of the offset instead of raising OverflowError: a lease of
timedelta.max simply never expires, a wait of timedelta.min means "try once".
"""

from __future__ import annotations

import math
import secrets
from datetime import UTC, datetime, timedelta

from docqueue.domain.errors import InvalidArgumentError
from docqueue.domain.models import MAX_INSTANT, MIN_INSTANT

# Longest single sleep between claim attempts (2**31 - 1 ms, ~24.8 days).
MAX_POLL_INTERVAL = timedelta(milliseconds=2**31 - 1)

WAIT_JITTER = 0.1

_U64_MAX = 2**64 - 1


def utcnow() -> datetime:
    return datetime.now(UTC)


def saturating_add(instant: datetime, offset: timedelta) -> datetime:
    """instant + offset, clamped to [MIN_INSTANT, MAX_INSTANT]."""
    try:
        return instant + offset
    except OverflowError:
        return MAX_INSTANT if offset > timedelta(0) else MIN_INSTANT


def deadline(now: datetime, wait: timedelta, jitter: bool) -> datetime:
    """
    Instant after which get() stops polling.

    With jitter the wait is perturbed by a random ±10 % so that consumers
    started in lockstep drift apart instead of polling on the same instant.
    """
    try:
        if jitter:
            wait = wait + wait * get_random_double(-WAIT_JITTER, WAIT_JITTER)
        return now + wait
    except OverflowError:
        return MAX_INSTANT if wait > timedelta(0) else MIN_INSTANT


def clamp_poll(poll: timedelta) -> float:
    """Poll interval in seconds, clamped to [0, MAX_POLL_INTERVAL]."""
    if poll < timedelta(0):
        return 0.0
    return min(poll, MAX_POLL_INTERVAL).total_seconds()


def get_random_double(minimum: float, maximum: float) -> float:
    """
    Uniform float in [minimum, maximum] from 64 bits of OS randomness.

    Raises InvalidArgumentError for NaN bounds or maximum < minimum.
    """
    if math.isnan(minimum):
        raise InvalidArgumentError("minimum cannot be NaN")
    if math.isnan(maximum):
        raise InvalidArgumentError("maximum cannot be NaN")
    if maximum < minimum:
        raise InvalidArgumentError("maximum cannot be less than minimum")

    fraction = secrets.randbits(64) / _U64_MAX
    return minimum + fraction * (maximum - minimum)
