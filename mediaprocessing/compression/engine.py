"""Compression engine: quality-only encodes and size-targeted compression."""

import logging
import time
from io import BytesIO
from typing import Optional

from PIL import Image

from ..config import Settings, get_settings
from .codec import CodecAdapter, decode_image
from .encoders import calculate_ssim_inmemory
from .errors import InvalidInput, ProcessingError
from .fallback import FallbackChain
from .result import (
    CompressionRequest,
    CompressionResult,
    MediaKind,
    Strategy,
)
from .search import CancelCheck, SizeTargetSearch, check_cancelled

logger = logging.getLogger(__name__)


def make_cancel_check(
    is_cancelled: Optional[CancelCheck] = None,
    deadline: Optional[float] = None,
    start: Optional[float] = None,
) -> Optional[CancelCheck]:
    """Fold a relative deadline (seconds) into a cancel callback.

    Returns:
        Combined callback, or None when neither is set
    """
    if deadline is None:
        return is_cancelled
    started = time.monotonic() if start is None else start
    expires_at = started + deadline

    def check() -> bool:
        if time.monotonic() >= expires_at:
            return True
        return bool(is_cancelled and is_cancelled())

    return check


class CompressionEngine:
    """Runs one CompressionRequest through search and fallback.

    Holds no per-call state, so one instance can serve concurrent calls.
    """

    def __init__(self, codec: CodecAdapter, settings: Optional[Settings] = None):
        """Initialize engine.

        Args:
            codec: Codec adapter used for every encode
            settings: Runtime settings (global settings when omitted)
        """
        self.codec = codec
        self.settings = settings or get_settings()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "CompressionEngine":
        settings = settings or get_settings()
        return cls(CodecAdapter.from_settings(settings), settings)

    def _deadline(self, deadline: Optional[float]) -> Optional[float]:
        limits = [d for d in (deadline, self.settings.request_deadline) if d is not None]
        return min(limits) if limits else None

    def compress(
        self,
        request: CompressionRequest,
        is_cancelled: Optional[CancelCheck] = None,
        deadline: Optional[float] = None,
    ) -> CompressionResult:
        """Compress according to the request.

        Args:
            request: What to compress and how
            is_cancelled: Polled between encodes
            deadline: Seconds this call may take (tighter of this and
                settings.request_deadline applies)

        Returns:
            CompressionResult; with a target its output never exceeds it

        Raises:
            BudgetUnreachable: No tier met the target
            InvalidInput: Source bytes cannot be decoded/encoded
            DeadlineExceeded: Deadline passed or cancelled between encodes
        """
        start_time = time.monotonic()
        cancel = make_cancel_check(is_cancelled, self._deadline(deadline), start_time)
        check_cancelled(cancel)

        if request.original_size == 0:
            raise InvalidInput("Input is empty")

        if not request.has_target:
            result = self._compress_at_quality(request)
        else:
            result = self._compress_to_target(request, cancel)

        result.elapsed_ms = int((time.monotonic() - start_time) * 1000)
        logger.info(
            "Compressed %s %d -> %d bytes via %s (quality=%s, encodes=%d, %d ms)",
            request.media_kind.value, result.original_size, result.output_size,
            result.strategy_used.value, result.achieved_quality,
            result.encode_calls, result.elapsed_ms,
        )
        return result

    def _compress_at_quality(self, request: CompressionRequest) -> CompressionResult:
        """Single encode, no size targeting."""
        logger.debug("Quality-only mode at quality %d", request.quality)
        image = None
        if request.media_kind is MediaKind.PDF:
            output = self.codec.encode(
                request.input, MediaKind.PDF, request.quality,
                strip_metadata=request.remove_metadata)
        else:
            image = decode_image(request.input)
            output = self.codec.encode_image(
                image, request.quality, request.output_format,
                strip_metadata=request.remove_metadata)

        return CompressionResult(
            output_bytes=output,
            achieved_quality=request.quality,
            strategy_used=Strategy.QUALITY_ONLY,
            original_size=request.original_size,
            dimensions=image.size if image is not None else None,
            encode_calls=1,
            ssim_score=self._ssim(image, output),
        )

    def _compress_to_target(
        self,
        request: CompressionRequest,
        cancel: Optional[CancelCheck],
    ) -> CompressionResult:
        """Search the quality range, then escalate through the fallback chain."""
        target = request.target_bytes
        image = None

        if request.media_kind is MediaKind.PDF:
            # Tier A ignores quality: one attempt is the whole search
            def encode_fn(quality: int) -> bytes:
                return self.codec.encode(
                    request.input, MediaKind.PDF, quality,
                    strip_metadata=request.remove_metadata)
            search = SizeTargetSearch(
                encode_fn, target, ceiling=request.quality, floor=request.quality,
                is_cancelled=cancel)
        else:
            image = decode_image(request.input)

            def encode_fn(quality: int) -> bytes:
                return self.codec.encode_image(
                    image, quality, request.output_format,
                    strip_metadata=request.remove_metadata)
            search = SizeTargetSearch(
                encode_fn, target, ceiling=request.quality, is_cancelled=cancel)

        outcome = search.run()
        logger.debug(
            "Search attempts: %s",
            ", ".join(f"q{p.quality}={p.size}" for p in outcome.attempts),
        )

        if outcome.feasible:
            result = CompressionResult(
                output_bytes=outcome.best_bytes,
                achieved_quality=outcome.best_quality,
                strategy_used=Strategy.QUALITY_SEARCH,
                original_size=request.original_size,
                target_bytes=target,
                dimensions=image.size if image is not None else None,
                encode_calls=outcome.encode_calls,
            )
        else:
            logger.info(
                "No quality in [1, %d] fits %d bytes (smallest %d); escalating",
                request.quality, target, len(outcome.smallest[0]),
            )
            check_cancelled(cancel)
            chain = FallbackChain(
                self.codec,
                request,
                outcome,
                image=image,
                safety_margin=self.settings.downscale_safety_margin,
                presets=self.settings.ghostscript_presets,
                is_cancelled=cancel,
            )
            chained = chain.run()
            tier = chained.outcome
            dimensions = tier.dimensions
            if dimensions is None and image is not None:
                dimensions = image.size
            result = CompressionResult(
                output_bytes=tier.output,
                achieved_quality=(
                    tier.quality if chained.strategy is Strategy.QUALITY_SEARCH else None),
                strategy_used=chained.strategy,
                original_size=request.original_size,
                target_bytes=target,
                dimensions=dimensions if image is not None else None,
                preset=tier.preset,
                encode_calls=outcome.encode_calls + chained.encode_calls,
                tier_outcomes=chained.tiers,
            )

        if result.output_size > target:
            raise ProcessingError(
                f"Internal error: {result.output_size} byte output exceeds the "
                f"{target} byte target")

        result.ssim_score = self._ssim(image, result.output_bytes)
        return result

    def _ssim(self, image: Optional[Image.Image], output: bytes) -> Optional[float]:
        if image is None or not self.settings.calculate_ssim:
            return None
        compressed = Image.open(BytesIO(output))
        return calculate_ssim_inmemory(image, compressed)


def compress(
    request: CompressionRequest,
    settings: Optional[Settings] = None,
    is_cancelled: Optional[CancelCheck] = None,
    deadline: Optional[float] = None,
) -> CompressionResult:
    """Convenience wrapper building an engine from settings."""
    return CompressionEngine.from_settings(settings).compress(request, is_cancelled, deadline)
