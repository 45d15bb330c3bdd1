"""Compression request/result dataclasses with rich feedback."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


class MediaKind(Enum):
    IMAGE = "image"
    PDF = "pdf"


class OutputFormat(Enum):
    """Image output formats. PDFs always stay PDF."""
    JPEG = "JPEG"
    PNG = "PNG"
    WEBP = "WEBP"

    @classmethod
    def parse(cls, value) -> "OutputFormat":
        """Accept enum members, format names and file extensions (jpg, .webp)."""
        if isinstance(value, cls):
            return value
        name = str(value).strip().lstrip('.').upper()
        if name == 'JPG':
            name = 'JPEG'
        try:
            return cls(name)
        except ValueError:
            raise ValueError(f"Unsupported output format: {value}") from None

    @property
    def extension(self) -> str:
        return {'JPEG': '.jpg', 'PNG': '.png', 'WEBP': '.webp'}[self.value]

    @property
    def mime_type(self) -> str:
        return {'JPEG': 'image/jpeg', 'PNG': 'image/png', 'WEBP': 'image/webp'}[self.value]


class Strategy(Enum):
    """Which path produced the output bytes."""
    QUALITY_ONLY = "quality_only"
    QUALITY_SEARCH = "quality_search"
    RESOLUTION_FALLBACK = "resolution_fallback"
    EXTERNAL_TOOL_FALLBACK = "external_tool_fallback"


@dataclass(frozen=True)
class CompressionRequest:
    """Input to the compression engine.

    Attributes:
        input: Raw source bytes (not mutated during the call)
        media_kind: IMAGE or PDF
        target_bytes: Size budget; None means quality-only mode
        quality: 1-100. Used directly without a target, as the search
            ceiling with one
        output_format: Image output format (ignored for PDFs)
        allow_downscale: Permit pixel/DPI reduction in the fallback chain
        remove_metadata: Strip EXIF/ICC (images) or the document info and
            XMP (PDFs) from the output. None uses the codec default
    """
    input: bytes
    media_kind: MediaKind = MediaKind.IMAGE
    target_bytes: Optional[int] = None
    quality: int = 80
    output_format: OutputFormat = OutputFormat.JPEG
    allow_downscale: bool = False
    remove_metadata: Optional[bool] = None

    def __post_init__(self):
        """Validate request."""
        if not isinstance(self.input, (bytes, bytearray)):
            raise TypeError("input must be bytes")
        if self.target_bytes is not None and self.target_bytes <= 0:
            raise ValueError(f"target_bytes must be > 0, got {self.target_bytes}")
        if not 1 <= self.quality <= 100:
            raise ValueError(f"quality must be 1-100, got {self.quality}")

    @property
    def original_size(self) -> int:
        return len(self.input)

    @property
    def has_target(self) -> bool:
        return self.target_bytes is not None


class TierStatus(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    UNAVAILABLE = "unavailable"
    TIMED_OUT = "timed_out"


@dataclass
class TierOutcome:
    """Outcome of a single fallback tier.

    Attributes:
        tier: Tier name (min_quality, downscale, external_tool)
        status: SUCCEEDED, FAILED, SKIPPED, UNAVAILABLE or TIMED_OUT
        output: Produced bytes when the tier ran (may be over budget)
        detail: Human-readable note on what the tier did
        error: Codec error that ended the tier, if any
    """
    tier: str
    status: TierStatus
    output: Optional[bytes] = None
    detail: str = ""
    error: Optional[Exception] = None
    quality: Optional[int] = None
    dimensions: Optional[Tuple[int, int]] = None
    preset: Optional[str] = None
    encode_calls: int = 0

    @property
    def size(self) -> Optional[int]:
        if self.output is None:
            return None
        return len(self.output)

    @property
    def succeeded(self) -> bool:
        return self.status is TierStatus.SUCCEEDED


@dataclass
class CompressionResult:
    """Result of a compression call.

    Attributes:
        output_bytes: The produced artifact
        achieved_quality: Quality that produced output_bytes, None when a
            downscale or external-tool tier produced it
        strategy_used: Which path produced the output
        original_size: Input size in bytes
        target_bytes: Budget the call was asked to meet, if any
        dimensions: Output pixel dimensions (images only)
        preset: External tool preset name (external-tool tier only)
        encode_calls: Number of codec invocations made
        elapsed_ms: Wall time of the call in milliseconds
        tier_outcomes: Fallback tiers that ran, in order
        ssim_score: Structural similarity to the source (images, when enabled)
    """
    output_bytes: bytes
    achieved_quality: Optional[int]
    strategy_used: Strategy
    original_size: int
    target_bytes: Optional[int] = None
    dimensions: Optional[Tuple[int, int]] = None
    preset: Optional[str] = None
    encode_calls: int = 0
    elapsed_ms: int = 0
    tier_outcomes: List[TierOutcome] = field(default_factory=list)
    ssim_score: Optional[float] = None

    @property
    def output_size(self) -> int:
        return len(self.output_bytes)

    @property
    def compression_ratio(self) -> float:
        """Percentage saved relative to the original (negative if larger)."""
        if self.original_size == 0:
            return 0.0
        return (1 - self.output_size / self.original_size) * 100

    @property
    def message(self) -> str:
        """Human-readable status message."""
        size_kb = self.output_size / 1024
        if self.strategy_used is Strategy.RESOLUTION_FALLBACK and self.dimensions:
            w, h = self.dimensions
            return f"Downscaled to {w}x{h}: {size_kb:.1f} KB"
        if self.strategy_used is Strategy.EXTERNAL_TOOL_FALLBACK:
            return f"Re-encoded with preset '{self.preset}': {size_kb:.1f} KB"
        return f"Compressed to {size_kb:.1f} KB at quality {self.achieved_quality}"


@dataclass
class EncoderOptions:
    """Options for format-specific encoding.

    Attributes:
        quality: Compression quality (1-100)
        chroma_subsampling: JPEG chroma mode (0=4:4:4, 1=4:2:2, 2=4:2:0)
        progressive: Enable progressive encoding
        use_mozjpeg: Apply MozJPEG lossless optimization
        effort: WebP method (0-6, higher = slower/better)
        strip_metadata: Drop EXIF/ICC/XMP from the output
    """
    quality: int = 80
    chroma_subsampling: int = 2
    progressive: bool = True
    use_mozjpeg: bool = True
    effort: int = 4
    strip_metadata: bool = True

    def __post_init__(self):
        """Validate options."""
        if not 1 <= self.quality <= 100:
            raise ValueError(f"quality must be 1-100, got {self.quality}")
        if self.chroma_subsampling not in (0, 1, 2):
            raise ValueError("chroma_subsampling must be 0, 1, or 2")
        if not 0 <= self.effort <= 6:
            raise ValueError(f"effort must be 0-6, got {self.effort}")
