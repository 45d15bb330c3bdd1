"""Operation option types and the parser for loose request options.

Each operation is its own frozen dataclass carrying only the fields it
uses. The request layer hands over a flat mapping (as sent by the upload
form) and parse_operation() turns it into the matching variant.
"""

from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Optional, Union

from PIL import ImageColor

from .compression.errors import UnsupportedOperation
from .compression.result import OutputFormat
from .utils import to_bytes

WATERMARK_POSITIONS = ('top-left', 'top-right', 'bottom-left', 'bottom-right', 'center')
PAGE_SIZES = ('A4', 'Letter', 'Legal', 'A3')
ORIENTATIONS = ('portrait', 'landscape')


def _check_quality(quality: int) -> None:
    if not 1 <= quality <= 100:
        raise ValueError(f"quality must be 1-100, got {quality}")


@dataclass(frozen=True)
class CompressImage:
    """Compress an image at a quality, or into a byte budget."""
    name: ClassVar[str] = 'compress'

    quality: int = 80
    target_bytes: Optional[int] = None
    output_format: OutputFormat = OutputFormat.JPEG
    allow_downscale: bool = False
    remove_metadata: Optional[bool] = None

    def __post_init__(self):
        _check_quality(self.quality)
        if self.target_bytes is not None and self.target_bytes <= 0:
            raise ValueError(f"target_bytes must be > 0, got {self.target_bytes}")


@dataclass(frozen=True)
class CompressPdf:
    """Compress a PDF, optionally into a byte budget."""
    name: ClassVar[str] = 'pdf-compress'

    quality: int = 75
    target_bytes: Optional[int] = None
    allow_downscale: bool = False
    remove_metadata: Optional[bool] = None

    def __post_init__(self):
        _check_quality(self.quality)
        if self.target_bytes is not None and self.target_bytes <= 0:
            raise ValueError(f"target_bytes must be > 0, got {self.target_bytes}")


@dataclass(frozen=True)
class ResizeImage:
    """Resize to a width and/or height."""
    name: ClassVar[str] = 'resize'

    width: Optional[int] = None
    height: Optional[int] = None
    maintain_aspect_ratio: bool = True
    crop_to_fit: bool = False
    output_format: OutputFormat = OutputFormat.JPEG
    quality: int = 90
    remove_metadata: Optional[bool] = None

    def __post_init__(self):
        _check_quality(self.quality)
        if self.width is None and self.height is None:
            raise ValueError("Resize needs a width or a height")
        for side in (self.width, self.height):
            if side is not None and side <= 0:
                raise ValueError(f"Resize dimensions must be > 0, got {side}")


@dataclass(frozen=True)
class ConvertImage:
    """Re-encode to another image format."""
    name: ClassVar[str] = 'convert'

    output_format: OutputFormat = OutputFormat.JPEG
    quality: int = 90
    remove_metadata: Optional[bool] = None

    def __post_init__(self):
        _check_quality(self.quality)


@dataclass(frozen=True)
class WatermarkImage:
    """Overlay a text watermark."""
    name: ClassVar[str] = 'watermark'

    text: str = ''
    position: str = 'bottom-right'
    color: str = '#ffffff'
    opacity: float = 0.5
    font_size: Optional[int] = None
    output_format: OutputFormat = OutputFormat.JPEG
    quality: int = 90

    def __post_init__(self):
        _check_quality(self.quality)
        if not self.text or not self.text.strip():
            raise ValueError("Watermark text is required")
        if self.position not in WATERMARK_POSITIONS:
            raise ValueError(f"Unknown watermark position: {self.position}")
        ImageColor.getrgb(self.color)
        if not 0 <= self.opacity <= 1:
            raise ValueError(f"opacity must be 0-1, got {self.opacity}")
        if self.font_size is not None and self.font_size <= 0:
            raise ValueError(f"font_size must be > 0, got {self.font_size}")


@dataclass(frozen=True)
class ImagesToPdf:
    """Combine images into one PDF, one image per page."""
    name: ClassVar[str] = 'pdf'

    page_size: str = 'A4'
    orientation: str = 'portrait'
    margin: float = 36
    quality: int = 90
    page_numbers: bool = True

    def __post_init__(self):
        _check_quality(self.quality)
        if self.page_size not in PAGE_SIZES:
            raise ValueError(f"Unknown page size: {self.page_size}")
        if self.orientation not in ORIENTATIONS:
            raise ValueError(f"Unknown orientation: {self.orientation}")
        if self.margin < 0:
            raise ValueError(f"margin must be >= 0, got {self.margin}")


@dataclass(frozen=True)
class RemovePdfPassword:
    """Decrypt a PDF and save it without a password."""
    name: ClassVar[str] = 'pdf-remove-password'

    password: Optional[str] = None


Operation = Union[
    CompressImage,
    CompressPdf,
    ResizeImage,
    ConvertImage,
    WatermarkImage,
    ImagesToPdf,
    RemovePdfPassword,
]

OPERATION_TYPES = {
    op.name: op
    for op in (CompressImage, CompressPdf, ResizeImage, ConvertImage,
               WatermarkImage, ImagesToPdf, RemovePdfPassword)
}


def _target_bytes(options: Dict[str, Any]) -> Optional[int]:
    size = options.get('targetSize')
    if size in (None, '', 0):
        return None
    return to_bytes(float(size), options.get('targetSizeUnit') or 'KB')


def _format(options: Dict[str, Any], default: OutputFormat = OutputFormat.JPEG) -> OutputFormat:
    value = options.get('outputFormat')
    if not value:
        return default
    return OutputFormat.parse(value)


def _int(options: Dict[str, Any], key: str, default: Optional[int] = None) -> Optional[int]:
    value = options.get(key)
    if value in (None, ''):
        return default
    return int(value)


def _optional_bool(options: Dict[str, Any], key: str) -> Optional[bool]:
    if options.get(key) in (None, ''):
        return None
    return _bool(options, key, False)


def _bool(options: Dict[str, Any], key: str, default: bool) -> bool:
    value = options.get(key)
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


def parse_operation(options: Dict[str, Any]) -> Operation:
    """Build an operation from the request options mapping.

    Args:
        options: Mapping with an 'operation' key plus camelCase option keys
            (compressionQuality, targetSize, targetSizeUnit, outputFormat,
            resizeWidth, resizeHeight, maintainAspectRatio, cropToFit,
            watermarkText, watermarkPosition, watermarkColor, pageSize,
            orientation, pdfPassword, allowDownscale, removeMetadata, ...).
            A missing removeMetadata leaves the choice to
            Settings.strip_metadata

    Returns:
        The matching operation instance

    Raises:
        UnsupportedOperation: Unknown operation name or invalid option values
    """
    name = options.get('operation')
    if name not in OPERATION_TYPES:
        raise UnsupportedOperation(f"Unsupported operation: {name}")

    try:
        if name == 'compress':
            return CompressImage(
                quality=_int(options, 'compressionQuality', 80),
                target_bytes=_target_bytes(options),
                output_format=_format(options),
                allow_downscale=_bool(options, 'allowDownscale', False),
                remove_metadata=_optional_bool(options, 'removeMetadata'),
            )
        if name == 'pdf-compress':
            return CompressPdf(
                quality=_int(options, 'compressionQuality', 75),
                target_bytes=_target_bytes(options),
                allow_downscale=_bool(
                    options, 'allowDownscale', _bool(options, 'optimizeImages', False)),
                remove_metadata=_optional_bool(options, 'removeMetadata'),
            )
        if name == 'resize':
            return ResizeImage(
                width=_int(options, 'resizeWidth'),
                height=_int(options, 'resizeHeight'),
                maintain_aspect_ratio=_bool(options, 'maintainAspectRatio', True),
                crop_to_fit=_bool(options, 'cropToFit', False),
                output_format=_format(options),
                quality=_int(options, 'compressionQuality', 90),
                remove_metadata=_optional_bool(options, 'removeMetadata'),
            )
        if name == 'convert':
            return ConvertImage(
                output_format=_format(options),
                quality=_int(options, 'compressionQuality', 90),
                remove_metadata=_optional_bool(options, 'removeMetadata'),
            )
        if name == 'watermark':
            opacity = options.get('watermarkOpacity')
            return WatermarkImage(
                text=options.get('watermarkText') or '',
                position=options.get('watermarkPosition') or 'bottom-right',
                color=options.get('watermarkColor') or '#ffffff',
                opacity=0.5 if opacity in (None, '') else float(opacity),
                font_size=_int(options, 'watermarkFontSize'),
                output_format=_format(options),
                quality=_int(options, 'compressionQuality', 90),
            )
        if name == 'pdf':
            return ImagesToPdf(
                page_size=options.get('pageSize') or options.get('pdfPageSize') or 'A4',
                orientation=options.get('orientation') or 'portrait',
                margin=float(options.get('margin', 36)),
                quality=_int(options, 'compressionQuality', 90),
                page_numbers=_bool(options, 'pageNumbers', True),
            )
        return RemovePdfPassword(password=options.get('pdfPassword') or None)
    except (TypeError, ValueError) as e:
        raise UnsupportedOperation(f"Invalid options for '{name}': {e}") from e
