"""Images to PDF composition with PyMuPDF."""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import fitz  # PyMuPDF

from .compression.codec import decode_image
from .compression.errors import InvalidInput
from .compression.result import OutputFormat
from .compression.search import CancelCheck, check_cancelled
from .operations import ImagesToPdf
from .transforms import encode

logger = logging.getLogger(__name__)

# Portrait page sizes in points (72 points = 1 inch)
PAGE_SIZES = {
    'A4': (595.276, 841.890),
    'Letter': (612.0, 792.0),
    'Legal': (612.0, 1008.0),
    'A3': (841.890, 1190.551),
}

PAGE_NUMBER_FONT_SIZE = 10
PAGE_NUMBER_COLOR = (0.5, 0.5, 0.5)


@dataclass
class PdfBuildResult:
    data: bytes
    page_count: int

    @property
    def output_size(self) -> int:
        return len(self.data)


def page_dimensions(page_size: str, orientation: str) -> Tuple[float, float]:
    """Page (width, height) in points."""
    width, height = PAGE_SIZES[page_size]
    if orientation == 'landscape':
        return height, width
    return width, height


def image_rect(
    image_size: Tuple[int, int],
    page_size: Tuple[float, float],
    margin: float,
) -> fitz.Rect:
    """
    Placement of an image centered in the page's content area.

    Images are scaled down to fit but never scaled up.
    """
    img_w, img_h = image_size
    page_w, page_h = page_size
    usable_w = max(page_w - 2 * margin, 1)
    usable_h = max(page_h - 2 * margin, 1)

    scale = min(usable_w / img_w, usable_h / img_h, 1.0)
    draw_w = img_w * scale
    draw_h = img_h * scale

    # Center on page
    x = margin + (usable_w - draw_w) / 2
    y = margin + (usable_h - draw_h) / 2
    return fitz.Rect(x, y, x + draw_w, y + draw_h)


def images_to_pdf(
    images: Sequence[bytes],
    op: Optional[ImagesToPdf] = None,
    is_cancelled: Optional[CancelCheck] = None,
) -> PdfBuildResult:
    """
    Build one PDF with one image per page, in the given order.

    Args:
        images: Encoded image bytes
        op: Layout options (defaults when None)
        is_cancelled: Checked before each page

    Returns:
        PdfBuildResult with the PDF bytes and page count

    Raises:
        InvalidInput: No images, or an image cannot be decoded
        DeadlineExceeded: Cancelled between pages
    """
    op = op or ImagesToPdf()
    if not images:
        raise InvalidInput("No images provided")

    page_w, page_h = page_dimensions(op.page_size, op.orientation)
    doc = fitz.open()
    try:
        for index, data in enumerate(images):
            check_cancelled(is_cancelled)
            try:
                image = decode_image(data)
            except InvalidInput as e:
                raise e.with_context("images_to_pdf", page=index + 1) from e
            # Embed as JPEG so every page uses DCT regardless of source format
            jpeg = encode(image, OutputFormat.JPEG, op.quality)

            page = doc.new_page(width=page_w, height=page_h)
            page.insert_image(image_rect(image.size, (page_w, page_h), op.margin), stream=jpeg)

            if op.page_numbers:
                label = str(index + 1)
                page.insert_text(
                    (page_w - op.margin - 20, page_h - op.margin + 20),
                    label,
                    fontsize=PAGE_NUMBER_FONT_SIZE,
                    color=PAGE_NUMBER_COLOR,
                )

        data = doc.tobytes(garbage=4, deflate=True)
        page_count = doc.page_count
    finally:
        doc.close()

    logger.info("Built %d-page PDF (%d bytes)", page_count, len(data))
    return PdfBuildResult(data=data, page_count=page_count)