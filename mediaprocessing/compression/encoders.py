"""Format-specific image encoders.

Provides Pillow encoders for JPEG, WebP and PNG. Every encoder maps the
abstract 1-100 quality scale onto its own parameters. MozJPEG lossless
optimization is applied when the optional package is installed.
"""

from abc import ABC, abstractmethod
from io import BytesIO
from typing import Dict, List, Optional

import numpy as np
from PIL import Image
from skimage.metrics import structural_similarity

from .result import EncoderOptions, OutputFormat


MOZJPEG_AVAILABLE = False
try:
    import mozjpeg_lossless_optimization
    MOZJPEG_AVAILABLE = True
except ImportError:
    pass


def quality_to_compress_level(quality: int) -> int:
    """Map quality (1-100) to a PNG zlib level (0-9).

    Higher quality means less compression effort, so the mapping is inverted.
    """
    return int(round((100 - quality) / 100 * 9))


def _metadata_kwargs(image: Image.Image, options: EncoderOptions) -> dict:
    if options.strip_metadata:
        return {}
    kwargs = {}
    exif = image.info.get('exif')
    if exif:
        kwargs['exif'] = exif
    icc = image.info.get('icc_profile')
    if icc:
        kwargs['icc_profile'] = icc
    return kwargs


def _flatten_alpha(image: Image.Image) -> Image.Image:
    """Composite an image with transparency onto a white background."""
    rgba = image.convert('RGBA')
    background = Image.new('RGB', rgba.size, (255, 255, 255))
    background.paste(rgba, mask=rgba.split()[3])
    return background


class BaseEncoder(ABC):
    """Abstract base class for format-specific encoders."""

    output_format: OutputFormat
    supports_transparency: bool = False

    @property
    def format_name(self) -> str:
        return self.output_format.value

    @abstractmethod
    def encode(self, image: Image.Image, options: EncoderOptions) -> bytes:
        """Encode image to bytes.

        Args:
            image: PIL Image to encode
            options: Encoding options

        Returns:
            Encoded image bytes
        """
        pass

    def prepare_image(self, image: Image.Image) -> Image.Image:
        """Prepare image for encoding (mode conversion, etc).

        Args:
            image: Source image

        Returns:
            Image ready for encoding
        """
        return image


class JpegEncoder(BaseEncoder):
    """JPEG encoder with MozJPEG optimization support."""

    output_format = OutputFormat.JPEG
    supports_transparency = False

    def encode(self, image: Image.Image, options: EncoderOptions) -> bytes:
        """Encode image as JPEG."""
        prepared = self.prepare_image(image)

        buffer = BytesIO()
        prepared.save(
            buffer,
            format='JPEG',
            quality=options.quality,
            optimize=True,
            progressive=options.progressive,
            subsampling=options.chroma_subsampling,
            **_metadata_kwargs(image, options),
        )
        encoded_bytes = buffer.getvalue()

        if options.use_mozjpeg and MOZJPEG_AVAILABLE:
            encoded_bytes = mozjpeg_lossless_optimization.optimize(encoded_bytes)

        return encoded_bytes

    def prepare_image(self, image: Image.Image) -> Image.Image:
        """Convert to RGB (or L) for JPEG, flattening transparency onto white."""
        if image.mode in ('RGBA', 'LA') or (
                image.mode == 'P' and 'transparency' in image.info):
            return _flatten_alpha(image)
        if image.mode in ('RGB', 'L'):
            return image
        return image.convert('RGB')


class WebpEncoder(BaseEncoder):
    """WebP encoder (lossy)."""

    output_format = OutputFormat.WEBP
    supports_transparency = True

    def encode(self, image: Image.Image, options: EncoderOptions) -> bytes:
        """Encode image as WebP."""
        prepared = self.prepare_image(image)

        buffer = BytesIO()
        prepared.save(
            buffer,
            format='WEBP',
            quality=options.quality,
            method=options.effort,
            **_metadata_kwargs(image, options),
        )
        return buffer.getvalue()

    def prepare_image(self, image: Image.Image) -> Image.Image:
        """Prepare image for WebP encoding."""
        if image.mode == 'P':
            if 'transparency' in image.info:
                return image.convert('RGBA')
            return image.convert('RGB')
        elif image.mode not in ('RGB', 'RGBA'):
            return image.convert('RGBA' if 'A' in image.mode else 'RGB')
        return image


class PngEncoder(BaseEncoder):
    """PNG encoder. Lossless; quality only selects the zlib effort."""

    output_format = OutputFormat.PNG
    supports_transparency = True

    def encode(self, image: Image.Image, options: EncoderOptions) -> bytes:
        """Encode image as PNG."""
        prepared = self.prepare_image(image)

        # optimize=True would force level 9 and override the mapping
        buffer = BytesIO()
        prepared.save(
            buffer,
            format='PNG',
            compress_level=quality_to_compress_level(options.quality),
            **_metadata_kwargs(image, options),
        )
        return buffer.getvalue()

    def prepare_image(self, image: Image.Image) -> Image.Image:
        if image.mode in ('CMYK', 'YCbCr', 'LAB', 'HSV'):
            return image.convert('RGB')
        return image


# Encoder registry
_ENCODERS: Dict[OutputFormat, BaseEncoder] = {
    OutputFormat.JPEG: JpegEncoder(),
    OutputFormat.WEBP: WebpEncoder(),
    OutputFormat.PNG: PngEncoder(),
}


def get_encoder(output_format) -> Optional[BaseEncoder]:
    """Get encoder for format.

    Args:
        output_format: OutputFormat member or format name (JPEG, WEBP, PNG, jpg)

    Returns:
        Encoder instance or None if format not supported
    """
    try:
        return _ENCODERS.get(OutputFormat.parse(output_format))
    except ValueError:
        return None


def get_available_formats() -> List[str]:
    """Get list of available format names."""
    return [fmt.value for fmt in _ENCODERS]


def calculate_ssim_inmemory(
    original: Image.Image,
    compressed: Image.Image
) -> float:
    """Calculate SSIM between two images in memory.

    No disk I/O - works directly with PIL Images. The compressed image is
    resized to the original's dimensions when they differ.

    Args:
        original: Original PIL Image
        compressed: Compressed PIL Image

    Returns:
        SSIM score (0.0 to 1.0)
    """
    if original.size != compressed.size:
        compressed = compressed.resize(original.size, Image.Resampling.LANCZOS)

    # Compare in a shared mode
    mode = 'L' if original.mode == 'L' and compressed.mode == 'L' else 'RGB'
    orig_array = np.array(original.convert(mode))
    comp_array = np.array(compressed.convert(mode))

    # skimage needs an odd window no larger than the image
    win_size = min(7, orig_array.shape[0], orig_array.shape[1])
    if win_size % 2 == 0:
        win_size -= 1
    if win_size < 3:
        return 1.0 if np.array_equal(orig_array, comp_array) else 0.0

    return float(structural_similarity(
        orig_array,
        comp_array,
        data_range=255,
        channel_axis=-1 if mode == 'RGB' else None,
        win_size=win_size,
    ))
