"""Single-pass image transforms: resize, format conversion, watermark."""

from typing import Tuple

from PIL import Image, ImageColor, ImageDraw, ImageFont

from .compression.codec import decode_image
from .compression.encoders import get_encoder
from .compression.errors import InvalidInput
from .compression.result import EncoderOptions, OutputFormat
from .operations import ConvertImage, ResizeImage, WatermarkImage
from .utils import calculate_resize_dimensions

WATERMARK_PADDING = 20
MIN_FONT_SIZE = 20


def encode(
    image: Image.Image,
    output_format: OutputFormat,
    quality: int = 90,
    strip_metadata: bool = True,
) -> bytes:
    """
    Encode an image with the format encoder.

    Args:
        image: PIL Image object
        output_format: JPEG, PNG or WEBP
        quality: Quality (1-100); PNG maps it to a compression level
        strip_metadata: Drop EXIF/ICC metadata

    Returns:
        Encoded bytes

    Raises:
        InvalidInput: If the encoder rejects the image
    """
    encoder = get_encoder(output_format)
    if encoder is None:
        raise ValueError(f"Unsupported format: {output_format}")
    options = EncoderOptions(quality=quality, strip_metadata=strip_metadata)
    try:
        return encoder.encode(image, options)
    except (OSError, ValueError) as e:
        raise InvalidInput(f"Cannot encode image as {encoder.format_name}: {e}") from e


def resize(image: Image.Image, op: ResizeImage) -> Image.Image:
    """
    Resize a decoded image per the operation's fit rules.

    Args:
        image: PIL Image object
        op: Resize options

    Returns:
        Resized (and, for crop_to_fit, center-cropped) PIL Image
    """
    (resized_w, resized_h), (final_w, final_h) = calculate_resize_dimensions(
        image.width, image.height, op.width, op.height,
        op.maintain_aspect_ratio, op.crop_to_fit,
    )
    if (resized_w, resized_h) != image.size:
        image = image.resize((resized_w, resized_h), Image.Resampling.LANCZOS)

    if (final_w, final_h) != (resized_w, resized_h):
        left = (resized_w - final_w) // 2
        top = (resized_h - final_h) // 2
        image = image.crop((left, top, left + final_w, top + final_h))
    return image


def resize_image(
    data: bytes,
    op: ResizeImage,
    strip_metadata: bool = True,
) -> Tuple[bytes, Tuple[int, int]]:
    """Decode, resize and re-encode. Returns (bytes, (width, height))."""
    image = resize(decode_image(data), op)
    return encode(image, op.output_format, op.quality, strip_metadata), image.size


def convert_image(data: bytes, op: ConvertImage, strip_metadata: bool = True) -> bytes:
    """Re-encode to op.output_format at op.quality."""
    return encode(decode_image(data), op.output_format, op.quality, strip_metadata)


def _load_font(size: int) -> ImageFont.ImageFont:
    # Pillow's bundled font scales; no system fonts required
    return ImageFont.load_default(size=size)


def watermark_position(
    image_size: Tuple[int, int],
    text_width: float,
    font_size: int,
    position: str,
    padding: int = WATERMARK_PADDING,
) -> Tuple[float, float]:
    """
    Calculate the text baseline origin for a watermark position.

    The text is kept at least `padding` away from the top-left corner even
    when it is wider than the image.

    Returns:
        Tuple of (x, baseline_y)
    """
    width, height = image_size
    right_x = max(width - text_width - padding, padding)
    bottom_y = max(height - padding, font_size + padding)
    top_y = font_size + padding

    if position == 'top-left':
        return padding, top_y
    if position == 'top-right':
        return right_x, top_y
    if position == 'bottom-left':
        return padding, bottom_y
    if position == 'center':
        return max((width - text_width) / 2, padding), max(height / 2, top_y)
    return right_x, bottom_y


def draw_watermark(image: Image.Image, op: WatermarkImage) -> Image.Image:
    """
    Composite the watermark text onto an image.

    Args:
        image: PIL Image object
        op: Watermark options

    Returns:
        New RGBA image with the watermark applied
    """
    font_size = op.font_size or int(max(image.width * 0.03, MIN_FONT_SIZE))
    font = _load_font(font_size)
    red, green, blue = ImageColor.getrgb(op.color)[:3]

    base = image.convert('RGBA')
    overlay = Image.new('RGBA', base.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(overlay)
    text_width = draw.textlength(op.text, font=font)
    x, y = watermark_position(base.size, text_width, font_size, op.position)
    draw.text((x, y), op.text, font=font, anchor='ls',
              fill=(red, green, blue, int(round(255 * op.opacity))))
    return Image.alpha_composite(base, overlay)


def add_watermark(data: bytes, op: WatermarkImage, strip_metadata: bool = True) -> bytes:
    """Decode, watermark and re-encode in op.output_format."""
    image = draw_watermark(decode_image(data), op)
    return encode(image, op.output_format, op.quality, strip_metadata)
