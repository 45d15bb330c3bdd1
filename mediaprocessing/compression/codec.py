"""Codec adapter: bytes + quality (+ dimensions) in, re-encoded bytes out.

Stateless and side-effect free apart from the temp files of the external
PDF tool, which never outlive a call. Nothing here logs or caches.
"""

from io import BytesIO
from typing import Optional, Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

from ..config import GhostscriptPreset, Settings
from . import pdf_codec
from .encoders import get_encoder
from .errors import InvalidInput
from .result import EncoderOptions, MediaKind, OutputFormat


def decode_image(data: bytes, apply_orientation: bool = True) -> Image.Image:
    """Decode image bytes into a fully loaded PIL Image.

    Args:
        data: Encoded image bytes
        apply_orientation: Rotate according to the EXIF orientation tag

    Raises:
        InvalidInput: If the bytes are not a decodable image
    """
    try:
        image = Image.open(BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as e:
        raise InvalidInput(f"Cannot decode image: {e}") from e
    if apply_orientation:
        image = ImageOps.exif_transpose(image)
    return image


class CodecAdapter:
    """Wraps Pillow, pikepdf/PyMuPDF and Ghostscript behind one contract.

    Attributes:
        ghostscript: Tier B runner
        strip_metadata: Default for dropping metadata when a call does not
            say (EXIF/ICC for images, document info and XMP for PDFs)
    """

    def __init__(
        self,
        ghostscript: pdf_codec.GhostscriptRunner,
        strip_metadata: bool = True,
    ):
        self.ghostscript = ghostscript
        self.strip_metadata = strip_metadata

    def _strip(self, strip_metadata: Optional[bool]) -> bool:
        return self.strip_metadata if strip_metadata is None else strip_metadata

    @classmethod
    def from_settings(cls, settings: Settings) -> "CodecAdapter":
        runner = pdf_codec.GhostscriptRunner(
            settings.ghostscript_candidates,
            settings.ghostscript_timeout,
            settings.pdf_compat_level,
        )
        return cls(runner, strip_metadata=settings.strip_metadata)

    def encode(
        self,
        data: bytes,
        media_kind: MediaKind,
        quality: int,
        dimensions: Optional[Tuple[int, int]] = None,
        output_format: OutputFormat = OutputFormat.JPEG,
        strip_metadata: Optional[bool] = None,
    ) -> bytes:
        """Re-encode data at the given quality.

        For PDFs this is the Tier A structural resave; quality and
        dimensions have no effect on it.

        Args:
            data: Source bytes
            media_kind: IMAGE or PDF
            quality: 1-100
            dimensions: Optional (width, height) to resize images to first
            output_format: Image output format
            strip_metadata: Override the adapter default for this call

        Returns:
            Encoded bytes

        Raises:
            InvalidInput: Malformed source bytes
        """
        if media_kind is MediaKind.PDF:
            return pdf_codec.resave_structural(data, self._strip(strip_metadata))
        image = decode_image(data)
        return self.encode_image(image, quality, output_format, dimensions, strip_metadata)

    def encode_image(
        self,
        image: Image.Image,
        quality: int,
        output_format: OutputFormat = OutputFormat.JPEG,
        dimensions: Optional[Tuple[int, int]] = None,
        strip_metadata: Optional[bool] = None,
    ) -> bytes:
        """Encode an already decoded image. Same contract as encode()."""
        encoder = get_encoder(output_format)
        if encoder is None:
            raise ValueError(f"Unsupported output format: {output_format}")

        if dimensions is not None and tuple(dimensions) != image.size:
            width, height = dimensions
            if width <= 0 or height <= 0:
                raise ValueError(f"Invalid dimensions: {width}x{height}")
            image = image.resize((width, height), Image.Resampling.LANCZOS)

        options = EncoderOptions(quality=quality, strip_metadata=self._strip(strip_metadata))
        try:
            return encoder.encode(image, options)
        except (OSError, ValueError) as e:
            raise InvalidInput(f"Cannot encode image as {encoder.format_name}: {e}") from e

    def downscale_pdf(
        self,
        data: bytes,
        scale: float,
        quality: int,
        strip_metadata: Optional[bool] = None,
    ) -> bytes:
        """Resample embedded PDF images by a linear scale factor."""
        return pdf_codec.downscale_embedded_images(
            data, scale, quality, self._strip(strip_metadata))

    def encode_pdf_external(
        self,
        data: bytes,
        preset: GhostscriptPreset,
        strip_metadata: Optional[bool] = None,
    ) -> bytes:
        """Tier B: re-encode the PDF with Ghostscript using one preset."""
        output = self.ghostscript.run(data, preset)
        if self._strip(strip_metadata):
            # Ghostscript writes its own Producer entry
            output = pdf_codec.clear_metadata(output)
        return output

    def external_tool_available(self) -> bool:
        return self.ghostscript.is_available()

    def pdf_image_share(self, data: bytes) -> float:
        """Fraction of the PDF taken up by raw embedded image streams."""
        if not data:
            return 0.0
        _, image_bytes = pdf_codec.embedded_image_bytes(data)
        return min(1.0, image_bytes / len(data))
