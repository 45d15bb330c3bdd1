"""Utility functions for media processing"""

from io import BytesIO
from pathlib import Path
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError

from .compression.errors import InvalidInput
from .compression.result import MediaKind

# Supported image formats
SUPPORTED_FORMATS = {'.jpg', '.jpeg', '.png', '.webp', '.gif', '.bmp', '.tif', '.tiff'}
PDF_EXTENSION = '.pdf'
PDF_MAGIC = b'%PDF-'

SIZE_UNITS = {'B': 1, 'KB': 1024, 'MB': 1024 * 1024}


def is_supported_format(name: str) -> bool:
    """
    Check if a file name has a supported image or PDF extension.

    Names without an extension are accepted; their kind is detected
    from the bytes.

    Args:
        name: File name or path

    Returns:
        True if extension is supported
    """
    suffix = Path(name).suffix.lower()
    if not suffix:
        return True
    return suffix in SUPPORTED_FORMATS or suffix == PDF_EXTENSION


def detect_media_kind(data: bytes, name: Optional[str] = None) -> MediaKind:
    """
    Decide whether bytes are a PDF or an image.

    The PDF header wins over the file name; the extension is only a
    fallback for headerless input.

    Raises:
        InvalidInput: If the bytes are empty
    """
    if not data:
        raise InvalidInput("Input is empty")
    # Some writers put junk before the header; readers accept it in the first KB
    if PDF_MAGIC in data[:1024]:
        return MediaKind.PDF
    if name and Path(name).suffix.lower() == PDF_EXTENSION:
        return MediaKind.PDF
    return MediaKind.IMAGE


def calculate_resize_dimensions(
    current_w: int,
    current_h: int,
    target_w: Optional[int] = None,
    target_h: Optional[int] = None,
    maintain_aspect_ratio: bool = True,
    crop_to_fit: bool = False,
) -> Tuple[Tuple[int, int], Tuple[int, int]]:
    """
    Calculate the resize and final output dimensions.

    With the aspect ratio kept the image is never enlarged: "fit" scales it
    to lie inside the box, "cover" (crop_to_fit) scales it to cover the box
    and the excess is center-cropped. Without it the image is stretched to
    exactly the requested box ("fill"). A missing side is derived from the
    aspect ratio, or kept as-is when filling.

    Args:
        current_w: Current width
        current_h: Current height
        target_w: Requested width (None = auto)
        target_h: Requested height (None = auto)
        maintain_aspect_ratio: Keep proportions
        crop_to_fit: Cover the box and crop instead of fitting inside it

    Returns:
        Tuple of ((resized_w, resized_h), (final_w, final_h))
    """
    if current_w <= 0 or current_h <= 0:
        raise ValueError(f"Invalid source dimensions: {current_w}x{current_h}")
    if not target_w and not target_h:
        return (current_w, current_h), (current_w, current_h)

    if not maintain_aspect_ratio:
        size = (target_w or current_w, target_h or current_h)
        return size, size

    ratios = []
    if target_w:
        ratios.append(target_w / current_w)
    if target_h:
        ratios.append(target_h / current_h)

    if crop_to_fit and len(ratios) == 2:
        scale = min(max(ratios), 1.0)
    else:
        scale = min(min(ratios), 1.0)

    resized = (max(1, round(current_w * scale)), max(1, round(current_h * scale)))
    if crop_to_fit and target_w and target_h:
        final = (min(target_w, resized[0]), min(target_h, resized[1]))
    else:
        final = resized
    return resized, final


def to_bytes(size: float, unit: str = 'KB') -> int:
    """
    Convert a size in B/KB/MB to bytes.

    Raises:
        ValueError: Unknown unit or non-positive size
    """
    multiplier = SIZE_UNITS.get(unit.upper())
    if multiplier is None:
        raise ValueError(f"Unknown size unit: {unit}")
    if size <= 0:
        raise ValueError(f"Size must be > 0, got {size}")
    return int(size * multiplier)


def format_size(size_bytes: int) -> str:
    """Human-readable size (B, KB or MB)."""
    if size_bytes < 1024:
        return f"{size_bytes} B"
    if size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    return f"{size_bytes / (1024 * 1024):.2f} MB"


def get_image_info(data: bytes) -> dict:
    """
    Get image information without decoding pixel data.

    Args:
        data: Encoded image bytes

    Returns:
        Dictionary with image info (width, height, format, mode, size_bytes)

    Raises:
        InvalidInput: If the bytes are not an image
    """
    try:
        with Image.open(BytesIO(data)) as img:
            return {
                'width': img.width,
                'height': img.height,
                'format': img.format,
                'mode': img.mode,
                'size_bytes': len(data),
            }
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as e:
        raise InvalidInput(f"Cannot read image header: {e}") from e
