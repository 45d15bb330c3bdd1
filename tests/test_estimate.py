import pytest
from PIL import Image

from mediaprocessing.compression import estimate
from mediaprocessing.compression.errors import InvalidInput
from mediaprocessing.compression.estimate import (
    estimate_compressed_size,
    estimate_converted_size,
    estimate_pdf_size,
    estimate_resized_size,
    quality_ratio,
)
from mediaprocessing.compression.result import MediaKind, OutputFormat
from mediaprocessing.operations import CompressImage, ResizeImage
from mediaprocessing.processor import MediaProcessor


def test_quality_curve_points_and_interpolation():
    assert quality_ratio(50) == pytest.approx(0.25)
    assert quality_ratio(100) == pytest.approx(1.0)
    assert quality_ratio(1) == pytest.approx(0.05)
    # halfway between 75 (0.40) and 85 (0.50)
    assert quality_ratio(80) == pytest.approx(0.45)


def test_format_ordering():
    webp = quality_ratio(80, OutputFormat.WEBP)
    jpeg = quality_ratio(80, OutputFormat.JPEG)
    png = quality_ratio(80, OutputFormat.PNG)
    assert webp < jpeg < png
    assert png >= estimate.PNG_FLOOR_RATIO


def test_quality_out_of_range():
    with pytest.raises(ValueError):
        quality_ratio(0)


def test_target_mode_predicts_the_budget():
    assert estimate_compressed_size(100000, target_bytes=20000) == 20000
    assert estimate_compressed_size(10000, target_bytes=20000) == 10000


def test_pdf_never_predicted_below_half():
    assert estimate_compressed_size(100000, MediaKind.PDF, quality=10) == 50000
    assert estimate_compressed_size(100000, MediaKind.PDF, quality=90) == 90000


def test_resized_scales_by_area():
    assert estimate_resized_size(40000, (200, 100), (100, 50)) == 10000
    assert estimate_resized_size(40000, (0, 0), (10, 10)) == 40000


def test_converted_and_pdf_sizes():
    assert estimate_converted_size(1000, OutputFormat.JPEG, 50) == 250
    assert estimate_pdf_size([10000, 20000], quality=50) == 15000 + 50000 + 2000


def test_processor_estimate_does_not_encode(settings, noise_jpeg):
    class NoEngine:
        def compress(self, *args, **kwargs):
            raise AssertionError("estimate must not encode")

    processor = MediaProcessor(settings, engine=NoEngine())

    compressed = processor.estimate(noise_jpeg, "a.jpg", CompressImage(quality=50))
    assert compressed == round(len(noise_jpeg) * 0.25)

    resized = processor.estimate(noise_jpeg, "a.jpg", ResizeImage(width=128))
    assert resized == round(len(noise_jpeg) / 4)


def test_processor_estimate_rejects_decompression_bombs(settings, gradient_png, monkeypatch):
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)
    processor = MediaProcessor(settings)
    with pytest.raises(InvalidInput):
        processor.estimate(gradient_png, "g.png", ResizeImage(width=10))
