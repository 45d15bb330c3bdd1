import math

import pytest

from mediaprocessing.compression.errors import DeadlineExceeded
from mediaprocessing.compression.search import SizeTargetSearch

MAX_CALLS = math.ceil(math.log2(100)) + 1


class CountingEncoder:
    """Encode function backed by a quality -> size function."""

    def __init__(self, size_fn):
        self.size_fn = size_fn
        self.qualities = []

    def __call__(self, quality):
        self.qualities.append(quality)
        return b"x" * self.size_fn(quality)


def test_finds_highest_feasible_quality_on_monotonic_sizes():
    encode = CountingEncoder(lambda q: q * 100)
    outcome = SizeTargetSearch(encode, target_bytes=5000).run()

    assert outcome.best_quality == 50
    assert len(outcome.best_bytes) == 5000
    assert outcome.encode_calls == len(encode.qualities) <= MAX_CALLS


@pytest.mark.parametrize("target", [1, 99, 100, 101, 2500, 4999, 9999, 10000, 50000])
def test_call_count_is_bounded(target):
    encode = CountingEncoder(lambda q: q * 100)
    outcome = SizeTargetSearch(encode, target_bytes=target).run()

    assert len(encode.qualities) <= MAX_CALLS
    if outcome.feasible:
        assert len(outcome.best_bytes) <= target


def test_equal_sizes_resolve_to_higher_quality():
    def size(q):
        if q < 40:
            return 500
        if q <= 80:
            return 1000
        return 2000

    outcome = SizeTargetSearch(CountingEncoder(size), target_bytes=1000).run()

    assert outcome.best_quality == 80
    assert len(outcome.best_bytes) == 1000


def test_non_monotonic_sizes_keep_best_feasible_attempt():
    # Sizes bounce around; quality 75 is over budget while 88 is under
    table = {q: 900 for q in range(1, 101)}
    table.update({75: 5000, 88: 950, 94: 5000, 91: 970, 89: 990, 90: 5000})
    encode = CountingEncoder(lambda q: table[q])

    outcome = SizeTargetSearch(encode, target_bytes=1000).run()

    assert outcome.feasible
    assert len(outcome.best_bytes) <= 1000
    feasible = [p.quality for p in outcome.attempts if p.feasible]
    assert outcome.best_quality == max(feasible)


def test_no_feasible_quality_reports_lowest_attempt():
    encode = CountingEncoder(lambda q: 1000 + q)
    outcome = SizeTargetSearch(encode, target_bytes=10).run()

    assert not outcome.feasible
    assert outcome.best_bytes is None
    assert outcome.lowest[1] == 1
    assert outcome.output_at(1) == b"x" * 1001
    assert outcome.output_at(50) is None
    assert len(outcome.smallest[0]) == 1001


def test_ceiling_caps_attemptd_qualities():
    encode = CountingEncoder(lambda q: q)
    outcome = SizeTargetSearch(encode, target_bytes=1000, ceiling=60).run()

    assert max(encode.qualities) <= 60
    assert outcome.best_quality == 60


def test_single_value_range_makes_one_attempt():
    encode = CountingEncoder(lambda q: 10)
    outcome = SizeTargetSearch(encode, target_bytes=100, ceiling=75, floor=75).run()

    assert encode.qualities == [75]
    assert outcome.best_quality == 75


def test_cancellation_is_checked_between_attempts():
    encode = CountingEncoder(lambda q: q * 100)
    checks = []

    def is_cancelled():
        checks.append(1)
        return len(checks) > 2

    with pytest.raises(DeadlineExceeded):
        SizeTargetSearch(encode, target_bytes=5000, is_cancelled=is_cancelled).run()
    assert len(encode.qualities) == 2


def test_rejects_non_positive_target():
    with pytest.raises(ValueError):
        SizeTargetSearch(lambda q: b"", target_bytes=0)


def test_rejects_empty_range():
    with pytest.raises(ValueError):
        SizeTargetSearch(lambda q: b"", target_bytes=10, ceiling=10, floor=20)
