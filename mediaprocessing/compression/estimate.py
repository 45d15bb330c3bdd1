"""Cheap output size predictions for UI feedback.

Nothing here encodes anything. The numbers are heuristics, not contracts:
only a target-mode compression call guarantees a size.
"""

from bisect import bisect_right
from typing import Iterable, Optional, Tuple

from .result import MediaKind, OutputFormat


# (quality, fraction of original) for JPEG; linear in between
JPEG_QUALITY_CURVE = (
    (1, 0.05),
    (25, 0.12),
    (50, 0.25),
    (75, 0.40),
    (85, 0.50),
    (90, 0.60),
    (95, 0.75),
    (100, 1.00),
)

WEBP_FACTOR = 0.75  # WebP lands smaller than JPEG at equal quality
PNG_FACTOR = 3.0  # Lossless: usually bigger than a lossy source
PNG_FLOOR_RATIO = 1.2  # Never predict PNG below this share of the original
PDF_MIN_RATIO = 0.5  # Structural PDF recompression rarely halves a file

PDF_BASE_OVERHEAD = 50000
PDF_PAGE_OVERHEAD = 1000


def _interpolate(curve, quality: int) -> float:
    qualities = [q for q, _ in curve]
    idx = bisect_right(qualities, quality)
    if idx == 0:
        return curve[0][1]
    if idx >= len(curve):
        return curve[-1][1]
    (q0, r0), (q1, r1) = curve[idx - 1], curve[idx]
    return r0 + (r1 - r0) * (quality - q0) / (q1 - q0)


def quality_ratio(quality: int, output_format: OutputFormat = OutputFormat.JPEG) -> float:
    """Expected output/original fraction for an image at `quality`."""
    if not 1 <= quality <= 100:
        raise ValueError(f"quality must be 1-100, got {quality}")
    jpeg = _interpolate(JPEG_QUALITY_CURVE, quality)
    if output_format is OutputFormat.WEBP:
        return jpeg * WEBP_FACTOR
    if output_format is OutputFormat.PNG:
        return max(jpeg * PNG_FACTOR, PNG_FLOOR_RATIO)
    return jpeg


def estimate_compressed_size(
    original_size: int,
    media_kind: MediaKind = MediaKind.IMAGE,
    quality: int = 80,
    target_bytes: Optional[int] = None,
    output_format: OutputFormat = OutputFormat.JPEG,
) -> int:
    """Predict the size of a compression call.

    Args:
        original_size: Input size in bytes
        media_kind: IMAGE or PDF
        quality: Requested quality (quality-only mode)
        target_bytes: Byte budget; switches to target mode
        output_format: Image output format

    Returns:
        Estimated size in bytes
    """
    if target_bytes is not None:
        return min(target_bytes, original_size)
    if media_kind is MediaKind.PDF:
        return round(original_size * max(quality / 100, PDF_MIN_RATIO))
    return round(original_size * quality_ratio(quality, output_format))


def estimate_resized_size(
    original_size: int,
    original_dimensions: Tuple[int, int],
    new_dimensions: Tuple[int, int],
) -> int:
    """Scale the original size by the pixel-area ratio."""
    orig_w, orig_h = original_dimensions
    new_w, new_h = new_dimensions
    if orig_w <= 0 or orig_h <= 0:
        return original_size
    return round(original_size * (new_w * new_h) / (orig_w * orig_h))


def estimate_converted_size(
    original_size: int,
    output_format: OutputFormat,
    quality: int = 90,
) -> int:
    """Predict a format conversion at `quality`."""
    return round(original_size * quality_ratio(quality, output_format))


def estimate_pdf_size(image_sizes: Iterable[int], quality: int = 90) -> int:
    """Predict the size of a PDF built from images at JPEG `quality`."""
    sizes = list(image_sizes)
    images = sum(size * quality / 100 for size in sizes)
    return round(images + PDF_BASE_OVERHEAD + PDF_PAGE_OVERHEAD * len(sizes))
