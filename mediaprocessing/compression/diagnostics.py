"""Explain why a byte budget could not be met.

The classification only uses what was measured during the call: the ratio
of the smallest achieved output to the original and, for PDFs, the share of
the file taken by embedded image streams.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .errors import BudgetUnreachable, DiagnosisCause
from .result import MediaKind, OutputFormat, TierOutcome, TierStatus


# best/original at or above this means re-encoding barely moved the size
LOW_GAIN_RATIO = 0.85
# image streams below this share of the file means mostly text/vector data
LOW_IMAGE_SHARE = 0.25


@dataclass
class Diagnosis:
    cause: DiagnosisCause
    text: str
    suggestions: List[str] = field(default_factory=list)


def _percent(value: float) -> str:
    return f"{value * 100:.0f}%"


def classify(
    media_kind: MediaKind,
    achieved_ratio: float,
    image_share: Optional[float] = None,
) -> DiagnosisCause:
    """Pick the likely cause from measured signals."""
    if media_kind is MediaKind.PDF:
        if image_share is not None and image_share < LOW_IMAGE_SHARE:
            return DiagnosisCause.LOW_COMPRESSIBLE_CONTENT
        if achieved_ratio >= LOW_GAIN_RATIO and (image_share is None or image_share < 0.5):
            return DiagnosisCause.LOW_COMPRESSIBLE_CONTENT
        return DiagnosisCause.IMAGE_DOMINATED
    if achieved_ratio >= LOW_GAIN_RATIO:
        return DiagnosisCause.ALREADY_OPTIMIZED
    return DiagnosisCause.IMAGE_DOMINATED


def _describe(
    cause: DiagnosisCause,
    media_kind: MediaKind,
    achieved_ratio: float,
    image_share: Optional[float],
) -> str:
    ratio = _percent(achieved_ratio)
    if cause is DiagnosisCause.LOW_COMPRESSIBLE_CONTENT:
        share = "" if image_share is None else f" Images make up {_percent(image_share)} of the file."
        return (
            "Content is primarily non-compressible text/vector data; "
            f"the smallest result was still {ratio} of the original.{share}"
        )
    if cause is DiagnosisCause.ALREADY_OPTIMIZED:
        return (
            "The image is already heavily compressed; "
            f"re-encoding at minimum quality only reached {ratio} of the original."
        )
    subject = "Content is image-dominated" if media_kind is MediaKind.PDF else "The image still compresses"
    return (
        f"{subject} and may compress further with a lower target or external "
        f"preprocessing; the smallest result reached {ratio} of the original."
    )


def _suggestions(
    cause: DiagnosisCause,
    media_kind: MediaKind,
    best_size: int,
    tiers: Sequence[TierOutcome],
    output_format: Optional[OutputFormat],
) -> List[str]:
    by_name = {t.tier: t for t in tiers}
    suggestions = [f"Raise the target to at least {best_size} bytes."]

    downscale = by_name.get("downscale")
    if downscale is not None and downscale.status is TierStatus.SKIPPED:
        what = "pixel dimensions" if media_kind is MediaKind.IMAGE else "embedded image resolution"
        suggestions.append(f"Allow downscaling so the {what} can be reduced.")

    external = by_name.get("external_tool")
    if external is not None and external.status is TierStatus.UNAVAILABLE:
        suggestions.append("Install Ghostscript to enable the external re-encoding tier.")
    elif external is not None and external.status is TierStatus.TIMED_OUT:
        suggestions.append("Ghostscript timed out; retry with a longer tool timeout.")

    if media_kind is MediaKind.IMAGE and output_format is OutputFormat.PNG:
        suggestions.append("Choose JPEG or WebP output; PNG is lossless.")

    if cause is DiagnosisCause.LOW_COMPRESSIBLE_CONTENT:
        suggestions.append("Split the document or remove pages; text and vector content will not shrink further.")
    elif cause is DiagnosisCause.IMAGE_DOMINATED:
        suggestions.append("Reduce image dimensions or scan resolution before uploading.")
    return suggestions


def diagnose(
    media_kind: MediaKind,
    original_size: int,
    best_size: int,
    tiers: Sequence[TierOutcome],
    image_share: Optional[float] = None,
    output_format: Optional[OutputFormat] = None,
) -> Diagnosis:
    """Build the diagnosis for an unreachable budget.

    Args:
        media_kind: IMAGE or PDF
        original_size: Input size in bytes
        best_size: Smallest output achieved across all attempts
        tiers: Fallback tiers in the order they ran
        image_share: Raw image stream bytes / file size (PDFs only)
        output_format: Requested image output format

    Returns:
        Diagnosis with cause, explanation and suggestions
    """
    achieved_ratio = best_size / original_size if original_size > 0 else 1.0
    cause = classify(media_kind, achieved_ratio, image_share)
    return Diagnosis(
        cause=cause,
        text=_describe(cause, media_kind, achieved_ratio, image_share),
        suggestions=_suggestions(cause, media_kind, best_size, tiers, output_format),
    )


def budget_unreachable(
    media_kind: MediaKind,
    original_size: int,
    target_size: int,
    best_size: int,
    tiers: Sequence[TierOutcome],
    image_share: Optional[float] = None,
    output_format: Optional[OutputFormat] = None,
) -> BudgetUnreachable:
    """Build the terminal error carrying the diagnosis payload."""
    diagnosis = diagnose(media_kind, original_size, best_size, tiers, image_share, output_format)
    return BudgetUnreachable(
        original_size=original_size,
        target_size=target_size,
        best_size=best_size,
        cause=diagnosis.cause,
        diagnosis=diagnosis.text,
        suggestions=diagnosis.suggestions,
        tiers_tried=[f"{t.tier}:{t.status.value}" for t in tiers],
    )
