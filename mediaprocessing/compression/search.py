"""Binary search over the encoder quality parameter against a byte budget."""

from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from .errors import DeadlineExceeded


QUALITY_MIN = 1
QUALITY_MAX = 100

EncodeFn = Callable[[int], bytes]
CancelCheck = Callable[[], bool]


@dataclass
class Attempt:
    quality: int
    size: int
    feasible: bool


@dataclass
class SearchState:
    """Mutable state of one search call. Never shared between calls.

    Attributes:
        low: Lowest quality still in the interval
        high: Highest quality still in the interval
        best: (bytes, quality) of the highest-quality feasible attempt
        lowest: (bytes, quality) of the lowest-quality attempt
        smallest: (bytes, quality) of the smallest output seen
        attempts: Every encode made, in order
    """
    low: int
    high: int
    best: Optional[Tuple[bytes, int]] = None
    lowest: Optional[Tuple[bytes, int]] = None
    smallest: Optional[Tuple[bytes, int]] = None
    attempts: List[Attempt] = field(default_factory=list)

    def record(self, quality: int, output: bytes, target_bytes: int) -> bool:
        """Record an attempt and return whether it fits the budget."""
        size = len(output)
        feasible = size <= target_bytes
        self.attempts.append(Attempt(quality, size, feasible))

        if self.lowest is None or quality < self.lowest[1]:
            self.lowest = (output, quality)
        if self.smallest is None or size < len(self.smallest[0]):
            self.smallest = (output, quality)
        # Equal sizes resolve to the higher quality
        if feasible and (self.best is None or quality > self.best[1]):
            self.best = (output, quality)
        return feasible


@dataclass
class SearchOutcome:
    """What the search found.

    Attributes:
        best_bytes: Highest-quality output within budget (None if none fit)
        best_quality: Quality that produced best_bytes
        lowest: (bytes, quality) of the lowest quality tried
        smallest: (bytes, quality) of the smallest output seen
        attempts: Every encode made, in order
    """
    best_bytes: Optional[bytes]
    best_quality: Optional[int]
    lowest: Optional[Tuple[bytes, int]]
    smallest: Optional[Tuple[bytes, int]]
    attempts: List[Attempt]

    @property
    def feasible(self) -> bool:
        return self.best_bytes is not None

    @property
    def encode_calls(self) -> int:
        return len(self.attempts)

    def output_at(self, quality: int) -> Optional[bytes]:
        """Bytes produced at `quality`, if that was the lowest attempt."""
        if self.lowest is not None and self.lowest[1] == quality:
            return self.lowest[0]
        return None


def check_cancelled(is_cancelled: Optional[CancelCheck]) -> None:
    """Raise DeadlineExceeded if the caller's deadline passed or it cancelled."""
    if is_cancelled is not None and is_cancelled():
        raise DeadlineExceeded("Request deadline exceeded or cancelled")


class SizeTargetSearch:
    """Find the highest quality whose output fits `target_bytes`.

    Output size is not assumed monotonic in quality, so the best feasible
    attempt is tracked explicitly instead of trusting the final interval.
    Terminates after at most ceil(log2(ceiling - floor + 1)) + 1 encodes:
    there is no early exit and no refinement pass.
    """

    def __init__(
        self,
        encode_fn: EncodeFn,
        target_bytes: int,
        ceiling: int = QUALITY_MAX,
        floor: int = QUALITY_MIN,
        is_cancelled: Optional[CancelCheck] = None,
    ):
        """Initialize search.

        Args:
            encode_fn: Encodes the input at a quality and returns the bytes
            target_bytes: Byte budget (> 0)
            ceiling: Highest quality to consider (clamped to 100)
            floor: Lowest quality to consider (clamped to 1)
            is_cancelled: Checked between attempts
        """
        if target_bytes <= 0:
            raise ValueError(f"target_bytes must be > 0, got {target_bytes}")
        self.encode_fn = encode_fn
        self.target_bytes = target_bytes
        self.ceiling = min(QUALITY_MAX, ceiling)
        self.floor = max(QUALITY_MIN, floor)
        if self.floor > self.ceiling:
            raise ValueError(f"Empty quality range [{floor}, {ceiling}]")
        self.is_cancelled = is_cancelled

    def run(self) -> SearchOutcome:
        """Run the search.

        Returns:
            SearchOutcome with the best feasible result, if any

        Raises:
            DeadlineExceeded: If cancelled between attempts
            EncodeError: Propagated from encode_fn
        """
        state = SearchState(low=self.floor, high=self.ceiling)

        while state.low <= state.high:
            check_cancelled(self.is_cancelled)
            mid = (state.low + state.high) // 2

            output = self.encode_fn(mid)

            if state.record(mid, output, self.target_bytes):
                # Under target - try higher quality
                state.low = mid + 1
            else:
                state.high = mid - 1

        best_bytes, best_quality = state.best if state.best else (None, None)
        return SearchOutcome(
            best_bytes=best_bytes,
            best_quality=best_quality,
            lowest=state.lowest,
            smallest=state.smallest,
            attempts=state.attempts,
        )
