"""Fallback escalation chain for budgets the quality search could not meet.

Tiers run in a fixed order and each one returns a TierOutcome instead of
raising, so the chain reads as a small state machine:

    min_quality -> downscale -> external_tool -> BudgetUnreachable

Only InvalidInput aborts the chain early; it is a property of the data and
no later tier can fix it.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from PIL import Image

from ..config import DEFAULT_GHOSTSCRIPT_PRESETS, GhostscriptPreset
from .codec import CodecAdapter
from .diagnostics import budget_unreachable
from .errors import InvalidInput, ToolFailed, ToolTimeout, ToolUnavailable
from .result import (
    CompressionRequest,
    MediaKind,
    Strategy,
    TierOutcome,
    TierStatus,
)
from .search import CancelCheck, QUALITY_MIN, SearchOutcome, check_cancelled

logger = logging.getLogger(__name__)


TIER_MIN_QUALITY = "min_quality"
TIER_DOWNSCALE = "downscale"
TIER_EXTERNAL_TOOL = "external_tool"

DIMENSION_SAFETY_MARGIN = 0.9  # Conservative margin for dimension calculations
PDF_DOWNSCALE_JPEG_QUALITY = 30  # Embedded-image quality for the PDF downscale pass


@dataclass
class ChainResult:
    """Successful end of the chain.

    Attributes:
        outcome: The tier that produced a feasible output
        strategy: Strategy to report for that tier
        tiers: Every tier that ran, in order
    """
    outcome: TierOutcome
    strategy: Strategy
    tiers: List[TierOutcome] = field(default_factory=list)

    @property
    def encode_calls(self) -> int:
        return sum(t.encode_calls for t in self.tiers)


def compute_downscale(
    size: Tuple[int, int],
    target_bytes: int,
    size_at_min_quality: int,
    safety_margin: float = DIMENSION_SAFETY_MARGIN,
) -> Tuple[float, Tuple[int, int]]:
    """Compute the linear scale and new dimensions for the downscale tier.

    Size scales roughly with pixel count, so the linear factor is the square
    root of the byte ratio, shrunk further by the safety margin and clamped
    so the image is never enlarged.

    Args:
        size: Current (width, height)
        target_bytes: Byte budget
        size_at_min_quality: Output size at quality 1 and full resolution
        safety_margin: Extra shrink factor in (0, 1]

    Returns:
        Tuple of (scale, (new_width, new_height))
    """
    width, height = size
    scale = math.sqrt(target_bytes / size_at_min_quality) * safety_margin
    scale = min(scale, 1.0)
    new_width = max(1, int(width * scale))
    new_height = max(1, int(height * scale))
    return scale, (new_width, new_height)


class FallbackChain:
    """Escalates through the fallback tiers for one request.

    Attributes:
        codec: Codec adapter used for every attempt
        request: The compression request
        search: Outcome of the quality search that preceded the chain
        image: Decoded source image (images only)
        safety_margin: Extra shrink applied to the downscale factor
        presets: External tool presets, highest fidelity first
    """

    def __init__(
        self,
        codec: CodecAdapter,
        request: CompressionRequest,
        search: SearchOutcome,
        image: Optional[Image.Image] = None,
        safety_margin: float = DIMENSION_SAFETY_MARGIN,
        presets: Sequence[GhostscriptPreset] = DEFAULT_GHOSTSCRIPT_PRESETS,
        is_cancelled: Optional[CancelCheck] = None,
    ):
        if request.target_bytes is None:
            raise ValueError("Fallback chain requires a target size")
        if request.media_kind is MediaKind.IMAGE and image is None:
            raise ValueError("Image requests need the decoded image")
        self.codec = codec
        self.request = request
        self.search = search
        self.image = image
        self.safety_margin = safety_margin
        self.presets = list(presets)
        self.is_cancelled = is_cancelled

        self._smallest: Optional[int] = (
            len(search.smallest[0]) if search.smallest is not None else None)

    @property
    def target_bytes(self) -> int:
        return self.request.target_bytes

    @property
    def is_pdf(self) -> bool:
        return self.request.media_kind is MediaKind.PDF

    @property
    def smallest_size(self) -> Optional[int]:
        """Smallest output produced so far, search attempts included."""
        return self._smallest

    def _track(self, output: bytes) -> None:
        size = len(output)
        if self._smallest is None or size < self._smallest:
            self._smallest = size

    def _fits(self, output: bytes) -> bool:
        return len(output) <= self.target_bytes

    def run(self) -> ChainResult:
        """Run tiers in order until one fits the budget.

        Returns:
            ChainResult for the first feasible tier

        Raises:
            BudgetUnreachable: No tier met the budget
            InvalidInput: Source data cannot be encoded
            DeadlineExceeded: Cancelled between attempts
        """
        tiers: List[TierOutcome] = []

        minimum = self.min_quality_tier()
        tiers.append(minimum)
        self._log(minimum)
        if minimum.succeeded:
            return ChainResult(minimum, Strategy.QUALITY_SEARCH, tiers)

        check_cancelled(self.is_cancelled)
        downscale = self.downscale_tier(minimum.size)
        tiers.append(downscale)
        self._log(downscale)
        if downscale.succeeded:
            return ChainResult(downscale, Strategy.RESOLUTION_FALLBACK, tiers)

        check_cancelled(self.is_cancelled)
        external = self.external_tool_tier()
        tiers.append(external)
        self._log(external)
        if external.succeeded:
            return ChainResult(external, Strategy.EXTERNAL_TOOL_FALLBACK, tiers)

        raise self._unreachable(tiers)

    def min_quality_tier(self) -> TierOutcome:
        """Tier 1: quality 1 for images, the Tier A resave for PDFs.

        Reuses the search's attempt of the same parameter when there is one.
        """
        if self.is_pdf:
            output = self.search.lowest[0] if self.search.lowest else None
            calls = 0
            if output is None:
                output = self._encode_or_wrap(TIER_MIN_QUALITY, QUALITY_MIN)
                calls = 1
            detail = "structural resave"
        else:
            output = self.search.output_at(QUALITY_MIN)
            calls = 0
            if output is None:
                output = self._encode_or_wrap(TIER_MIN_QUALITY, QUALITY_MIN)
                calls = 1
            detail = f"quality {QUALITY_MIN}"

        self._track(output)
        status = TierStatus.SUCCEEDED if self._fits(output) else TierStatus.FAILED
        return TierOutcome(
            tier=TIER_MIN_QUALITY,
            status=status,
            output=output,
            detail=f"{detail}: {len(output)} bytes",
            quality=QUALITY_MIN,
            dimensions=self.image.size if self.image is not None else None,
            encode_calls=calls,
        )

    def downscale_tier(self, size_at_min_quality: Optional[int]) -> TierOutcome:
        """Tier 2: one attempt at reduced resolution and minimum quality."""
        if not self.request.allow_downscale:
            return TierOutcome(TIER_DOWNSCALE, TierStatus.SKIPPED, detail="downscaling not allowed")
        if not size_at_min_quality:
            return TierOutcome(TIER_DOWNSCALE, TierStatus.FAILED, detail="no minimum-quality size to scale from")

        if self.is_pdf:
            scale, _ = compute_downscale(
                (1, 1), self.target_bytes, size_at_min_quality, self.safety_margin)
            try:
                output = self.codec.downscale_pdf(
                    self.request.input, scale, PDF_DOWNSCALE_JPEG_QUALITY,
                    strip_metadata=self.request.remove_metadata)
            except InvalidInput as e:
                raise e.with_context(TIER_DOWNSCALE, scale=round(scale, 3)) from e
            dimensions = None
            detail = f"embedded images scaled by {scale:.2f}"
        else:
            scale, dimensions = compute_downscale(
                self.image.size, self.target_bytes, size_at_min_quality, self.safety_margin)
            if dimensions == self.image.size:
                return TierOutcome(
                    TIER_DOWNSCALE, TierStatus.FAILED,
                    detail=f"image is already {dimensions[0]}x{dimensions[1]}")
            try:
                output = self.codec.encode_image(
                    self.image, QUALITY_MIN, self.request.output_format, dimensions,
                    strip_metadata=self.request.remove_metadata)
            except InvalidInput as e:
                raise e.with_context(TIER_DOWNSCALE, dimensions=dimensions) from e
            detail = f"resized to {dimensions[0]}x{dimensions[1]}"

        self._track(output)
        status = TierStatus.SUCCEEDED if self._fits(output) else TierStatus.FAILED
        return TierOutcome(
            tier=TIER_DOWNSCALE,
            status=status,
            output=output,
            detail=f"{detail}: {len(output)} bytes",
            quality=QUALITY_MIN if not self.is_pdf else PDF_DOWNSCALE_JPEG_QUALITY,
            dimensions=dimensions,
            encode_calls=1,
        )

    def external_tool_tier(self) -> TierOutcome:
        """Tier 3: Ghostscript presets, stopping at the first that fits."""
        if not self.is_pdf:
            return TierOutcome(TIER_EXTERNAL_TOOL, TierStatus.SKIPPED, detail="not applicable to images")
        if not self.presets:
            return TierOutcome(TIER_EXTERNAL_TOOL, TierStatus.SKIPPED, detail="no presets configured")
        if not self.codec.external_tool_available():
            return TierOutcome(
                TIER_EXTERNAL_TOOL, TierStatus.UNAVAILABLE, detail="Ghostscript is not installed")

        best: Optional[Tuple[bytes, GhostscriptPreset]] = None
        calls = 0
        for preset in self.presets:
            check_cancelled(self.is_cancelled)
            calls += 1
            try:
                output = self.codec.encode_pdf_external(
                    self.request.input, preset, strip_metadata=self.request.remove_metadata)
            except ToolUnavailable as e:
                return TierOutcome(
                    TIER_EXTERNAL_TOOL, TierStatus.UNAVAILABLE,
                    detail=str(e), error=e.with_context(TIER_EXTERNAL_TOOL, preset=preset.name),
                    encode_calls=calls)
            except ToolTimeout as e:
                return self._ended_early(TierStatus.TIMED_OUT, e, preset, best, calls)
            except ToolFailed as e:
                return self._ended_early(TierStatus.FAILED, e, preset, best, calls)

            self._track(output)
            if best is None or len(output) < len(best[0]):
                best = (output, preset)
            if self._fits(output):
                return TierOutcome(
                    tier=TIER_EXTERNAL_TOOL,
                    status=TierStatus.SUCCEEDED,
                    output=output,
                    detail=f"preset {preset.name} ({preset.dpi} dpi, q{preset.jpeg_quality}): {len(output)} bytes",
                    preset=preset.name,
                    encode_calls=calls,
                )

        output, preset = best
        return TierOutcome(
            tier=TIER_EXTERNAL_TOOL,
            status=TierStatus.FAILED,
            output=output,
            detail=f"all {len(self.presets)} presets over budget; smallest {len(output)} bytes",
            preset=preset.name,
            encode_calls=calls,
        )

    def _ended_early(
        self,
        status: TierStatus,
        error: Exception,
        preset: GhostscriptPreset,
        best: Optional[Tuple[bytes, GhostscriptPreset]],
        calls: int,
    ) -> TierOutcome:
        return TierOutcome(
            tier=TIER_EXTERNAL_TOOL,
            status=status,
            output=best[0] if best else None,
            detail=str(error),
            error=error.with_context(TIER_EXTERNAL_TOOL, preset=preset.name),
            preset=best[1].name if best else None,
            encode_calls=calls,
        )

    def _encode_or_wrap(self, tier: str, quality: int) -> bytes:
        try:
            if self.is_pdf:
                return self.codec.encode(
                    self.request.input, MediaKind.PDF, quality,
                    strip_metadata=self.request.remove_metadata)
            return self.codec.encode_image(
                self.image, quality, self.request.output_format,
                strip_metadata=self.request.remove_metadata)
        except InvalidInput as e:
            raise e.with_context(tier, quality=quality) from e

    def _unreachable(self, tiers: List[TierOutcome]):
        image_share = None
        if self.is_pdf and self.request.original_size > 0:
            image_share = self.codec.pdf_image_share(self.request.input)

        best_size = self._smallest if self._smallest is not None else self.request.original_size
        error = budget_unreachable(
            media_kind=self.request.media_kind,
            original_size=self.request.original_size,
            target_size=self.target_bytes,
            best_size=best_size,
            tiers=tiers,
            image_share=image_share,
            output_format=None if self.is_pdf else self.request.output_format,
        )
        logger.warning(
            "Budget unreachable: target=%d best=%d original=%d cause=%s",
            self.target_bytes, best_size, self.request.original_size, error.cause.value,
        )
        return error

    @staticmethod
    def _log(outcome: TierOutcome) -> None:
        logger.info("Fallback tier %s %s: %s", outcome.tier, outcome.status.value, outcome.detail)
