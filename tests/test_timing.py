import statistics
from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest

from docqueue.core import timing
from docqueue.domain.errors import InvalidArgumentError
from docqueue.domain.models import MAX_INSTANT, MIN_INSTANT

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)

# ---------------------------------------------------------------------------
# saturating_add
# ---------------------------------------------------------------------------


def test_saturating_add_in_range():
    assert timing.saturating_add(NOW, timedelta(hours=1)) == NOW + timedelta(hours=1)


def test_saturating_add_overflow_positive():
    assert timing.saturating_add(NOW, timedelta.max) == MAX_INSTANT


def test_saturating_add_overflow_negative():
    assert timing.saturating_add(NOW, timedelta.min) == MIN_INSTANT


# ---------------------------------------------------------------------------
# deadline
# ---------------------------------------------------------------------------


def test_deadline_without_jitter_is_exact():
    assert timing.deadline(NOW, timedelta(seconds=3), jitter=False) == NOW + timedelta(
        seconds=3
    )


def test_deadline_with_jitter_stays_within_ten_percent():
    wait = timedelta(seconds=10)
    for _ in range(200):
        end = timing.deadline(NOW, wait, jitter=True)
        assert NOW + timedelta(seconds=9) <= end <= NOW + timedelta(seconds=11)


def test_deadline_jitter_uses_random_fraction():
    with patch.object(timing, "get_random_double", return_value=0.1):
        end = timing.deadline(NOW, timedelta(seconds=10), jitter=True)
    assert end == NOW + timedelta(seconds=11)


def test_deadline_saturates_on_huge_wait():
    assert timing.deadline(NOW, timedelta.max, jitter=True) == MAX_INSTANT
    assert timing.deadline(NOW, timedelta.max, jitter=False) == MAX_INSTANT


def test_deadline_saturates_on_huge_negative_wait():
    assert timing.deadline(NOW, timedelta.min, jitter=True) == MIN_INSTANT
    assert timing.deadline(NOW, timedelta.min, jitter=False) == MIN_INSTANT


# ---------------------------------------------------------------------------
# clamp_poll
# ---------------------------------------------------------------------------


def test_clamp_poll_negative_is_zero():
    assert timing.clamp_poll(timedelta(seconds=-5)) == 0.0


def test_clamp_poll_passes_normal_values():
    assert timing.clamp_poll(timedelta(milliseconds=200)) == pytest.approx(0.2)


def test_clamp_poll_caps_huge_values():
    assert timing.clamp_poll(timedelta.max) == timing.MAX_POLL_INTERVAL.total_seconds()


# ---------------------------------------------------------------------------
# get_random_double
# ---------------------------------------------------------------------------


def test_random_double_stays_in_range_and_mean_converges():
    samples = [timing.get_random_double(-0.1, 0.1) for _ in range(20_000)]
    assert all(-0.1 <= s <= 0.1 for s in samples)
    assert statistics.fmean(samples) == pytest.approx(0.0, abs=0.005)


def test_random_double_mean_of_offset_range():
    samples = [timing.get_random_double(5.0, 7.0) for _ in range(20_000)]
    assert min(samples) >= 5.0
    assert max(samples) <= 7.0
    assert statistics.fmean(samples) == pytest.approx(6.0, abs=0.05)


def test_random_double_equal_bounds():
    assert timing.get_random_double(1.5, 1.5) == 1.5


def test_random_double_extremes_of_fraction():
    with patch.object(timing.secrets, "randbits", return_value=0):
        assert timing.get_random_double(2.0, 4.0) == 2.0
    with patch.object(timing.secrets, "randbits", return_value=2**64 - 1):
        assert timing.get_random_double(2.0, 4.0) == 4.0


@pytest.mark.parametrize(
    "minimum, maximum",
    [(float("nan"), 1.0), (0.0, float("nan")), (1.0, 0.0)],
)
def test_random_double_rejects_bad_bounds(minimum, maximum):
    with pytest.raises(InvalidArgumentError):
        timing.get_random_double(minimum, maximum)
