"""Shared fixtures: in-memory images and PDFs, settings without Ghostscript."""

from io import BytesIO

import fitz  # PyMuPDF
import numpy as np
import pikepdf
import pytest
from PIL import Image

from mediaprocessing.compression.codec import CodecAdapter
from mediaprocessing.compression.engine import CompressionEngine
from mediaprocessing.config import Settings

MISSING_GS = "mediaprocessing-test-no-such-ghostscript"


def noise_image(width=256, height=256, seed=0, mode='RGB') -> Image.Image:
    rng = np.random.default_rng(seed)
    channels = 3 if mode == 'RGB' else 4
    arr = rng.integers(0, 256, (height, width, channels), dtype=np.uint8)
    return Image.fromarray(arr, mode)


def gradient_image(width=320, height=240) -> Image.Image:
    x = np.linspace(0, 255, width, dtype=np.float64)
    y = np.linspace(0, 255, height, dtype=np.float64)
    red = np.tile(x, (height, 1))
    green = np.tile(y[:, None], (1, width))
    blue = (red + green) / 2
    arr = np.stack([red, green, blue], axis=-1).astype(np.uint8)
    return Image.fromarray(arr, 'RGB')


def to_bytes(image: Image.Image, fmt='JPEG', **kwargs) -> bytes:
    buffer = BytesIO()
    image.save(buffer, format=fmt, **kwargs)
    return buffer.getvalue()


@pytest.fixture
def noise_jpeg() -> bytes:
    return to_bytes(noise_image(), 'JPEG', quality=95)


@pytest.fixture
def gradient_png() -> bytes:
    return to_bytes(gradient_image(), 'PNG')


@pytest.fixture
def rgba_png() -> bytes:
    return to_bytes(noise_image(64, 64, mode='RGBA'), 'PNG')


@pytest.fixture
def make_jpeg():
    def factory(width=256, height=256, seed=0, quality=95) -> bytes:
        return to_bytes(noise_image(width, height, seed), 'JPEG', quality=quality)
    return factory


@pytest.fixture
def text_pdf() -> bytes:
    """Three pages of plain text, no raster images."""
    doc = fitz.open()
    for page_no in range(3):
        page = doc.new_page()
        for line in range(40):
            page.insert_text(
                (50, 60 + line * 18),
                f"Page {page_no + 1}, line {line + 1}: the quick brown fox jumps over the lazy dog",
                fontsize=10,
            )
    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture
def image_pdf() -> bytes:
    """One page holding a large noise JPEG."""
    jpeg = to_bytes(noise_image(400, 400, seed=3), 'JPEG', quality=95)
    doc = fitz.open()
    page = doc.new_page()
    page.insert_image(fitz.Rect(36, 36, 436, 436), stream=jpeg)
    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture
def exif_jpeg() -> bytes:
    """Noise JPEG carrying an EXIF image description."""
    exif = Image.Exif()
    exif[0x010E] = "harbour at dusk"
    return to_bytes(noise_image(128, 128, seed=5), 'JPEG', quality=95, exif=exif.tobytes())


@pytest.fixture
def titled_pdf(text_pdf) -> bytes:
    """text_pdf with a title and author in its document info."""
    buffer = BytesIO()
    with pikepdf.open(BytesIO(text_pdf)) as pdf:
        pdf.docinfo['/Title'] = "Quarterly report"
        pdf.docinfo['/Author'] = "Finance team"
        pdf.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def encrypted_pdf(text_pdf) -> bytes:
    """text_pdf protected with user password 'secret'."""
    buffer = BytesIO()
    with pikepdf.open(BytesIO(text_pdf)) as pdf:
        pdf.save(buffer, encryption=pikepdf.Encryption(user="secret", owner="owner-secret"))
    return buffer.getvalue()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        output_dir=tmp_path / "processed",
        ghostscript_candidates=[MISSING_GS],
        max_workers=2,
    )


@pytest.fixture
def codec(settings) -> CodecAdapter:
    return CodecAdapter.from_settings(settings)


@pytest.fixture
def engine(codec, settings) -> CompressionEngine:
    return CompressionEngine(codec, settings)
