import os
import shutil
import stat
import tempfile
from io import BytesIO

import pikepdf
import pytest

from mediaprocessing.config import GhostscriptPreset
from mediaprocessing.compression import pdf_codec
from mediaprocessing.compression.codec import CodecAdapter
from mediaprocessing.compression.errors import (
    InvalidInput,
    ToolFailed,
    ToolTimeout,
    ToolUnavailable,
)

PRESET = GhostscriptPreset("medium", 120, 65)

posix_only = pytest.mark.skipif(os.name != "posix", reason="stub tool is a shell script")
needs_gs = pytest.mark.skipif(
    pdf_codec.find_ghostscript(["gs", "gswin64c", "gswin32c"]) is None,
    reason="Ghostscript not installed",
)


def write_stub(path, body):
    path.write_text("#!/bin/sh\n" + body + "\n")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


@pytest.fixture
def private_tmp(tmp_path, monkeypatch):
    """Route tempfile into a directory the test can inspect."""
    root = tmp_path / "tmp"
    root.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(root))
    return root


def test_resave_is_deterministic(text_pdf):
    first = pdf_codec.resave_structural(text_pdf)
    second = pdf_codec.resave_structural(text_pdf)
    assert first == second
    assert first.startswith(b"%PDF")


def test_resave_rejects_garbage():
    with pytest.raises(InvalidInput):
        pdf_codec.resave_structural(b"this is not a pdf")


def test_resave_rejects_encrypted(encrypted_pdf):
    with pytest.raises(InvalidInput, match="password"):
        pdf_codec.resave_structural(encrypted_pdf)


def test_embedded_image_bytes(text_pdf, image_pdf):
    assert pdf_codec.embedded_image_bytes(text_pdf) == (0, 0)
    count, total = pdf_codec.embedded_image_bytes(image_pdf)
    assert count == 1
    assert total > 0.5 * len(image_pdf)


def test_page_count(text_pdf, image_pdf):
    assert pdf_codec.page_count(text_pdf) == 3
    assert pdf_codec.page_count(image_pdf) == 1


def test_pdf_info(text_pdf, image_pdf, titled_pdf):
    info = pdf_codec.pdf_info(text_pdf)
    assert info.page_count == 3
    assert info.title is None
    assert not info.has_images

    info = pdf_codec.pdf_info(image_pdf)
    assert info.page_count == 1
    assert info.has_images
    assert info.image_count == 1
    assert info.image_bytes > 0

    info = pdf_codec.pdf_info(titled_pdf)
    assert (info.title, info.author) == ("Quarterly report", "Finance team")


def test_pdf_info_rejects_encrypted(encrypted_pdf):
    with pytest.raises(InvalidInput, match="password"):
        pdf_codec.pdf_info(encrypted_pdf)


def test_resave_strips_metadata_only_when_asked(titled_pdf):
    kept = pdf_codec.resave_structural(titled_pdf)
    stripped = pdf_codec.resave_structural(titled_pdf, strip_metadata=True)

    assert pdf_codec.pdf_info(kept).title == "Quarterly report"
    info = pdf_codec.pdf_info(stripped)
    assert (info.title, info.author) == (None, None)
    assert info.page_count == 3


def test_clear_metadata(titled_pdf):
    cleared = pdf_codec.clear_metadata(titled_pdf)
    info = pdf_codec.pdf_info(cleared)
    assert (info.title, info.author, info.page_count) == (None, None, 3)


def test_downscale_can_strip_metadata(image_pdf):
    output = pdf_codec.downscale_embedded_images(
        image_pdf, scale=0.5, quality=40, strip_metadata=True)
    with pikepdf.open(BytesIO(output)) as pdf:
        assert '/Info' not in pdf.trailer
        assert '/Metadata' not in pdf.Root


def test_downscale_embedded_images_shrinks(image_pdf):
    output = pdf_codec.downscale_embedded_images(image_pdf, scale=0.5, quality=40)
    assert output.startswith(b"%PDF")
    assert len(output) < len(image_pdf) / 2
    assert pdf_codec.page_count(output) == 1


def test_downscale_leaves_text_pdf_readable(text_pdf):
    output = pdf_codec.downscale_embedded_images(text_pdf, scale=0.5, quality=40)
    assert pdf_codec.page_count(output) == 3


def test_downscale_rejects_bad_scale(image_pdf):
    with pytest.raises(ValueError):
        pdf_codec.downscale_embedded_images(image_pdf, scale=1.5, quality=40)


def test_build_ghostscript_command(tmp_path):
    cmd = pdf_codec.build_ghostscript_command(
        "gs", tmp_path / "in.pdf", tmp_path / "out.pdf", dpi=96, jpeg_quality=50,
        compat_level="1.5")

    assert cmd[0] == "gs"
    assert "-sDEVICE=pdfwrite" in cmd
    assert "-dCompatibilityLevel=1.5" in cmd
    assert "-dJPEGQ=50" in cmd
    assert "-dColorImageResolution=96" in cmd
    assert "-dMonoImageResolution=150" in cmd
    assert f"-sOutputFile={tmp_path / 'out.pdf'}" in cmd
    assert cmd[-1] == str(tmp_path / "in.pdf")


def test_runner_missing_binary(text_pdf):
    runner = pdf_codec.GhostscriptRunner(["mediaprocessing-no-such-gs"], timeout=5)
    assert not runner.is_available()
    with pytest.raises(ToolUnavailable):
        runner.run(text_pdf, PRESET)


@posix_only
def test_runner_timeout_cleans_up(tmp_path, private_tmp, text_pdf):
    stub = write_stub(tmp_path / "slow-gs", "exec sleep 10")
    runner = pdf_codec.GhostscriptRunner([stub], timeout=0.5)

    with pytest.raises(ToolTimeout) as excinfo:
        runner.run(text_pdf, PRESET)

    assert excinfo.value.params["preset"] == "medium"
    assert list(private_tmp.iterdir()) == []


@posix_only
def test_runner_nonzero_exit(tmp_path, private_tmp, text_pdf):
    stub = write_stub(tmp_path / "failing-gs", "echo boom >&2; exit 3")
    runner = pdf_codec.GhostscriptRunner([stub], timeout=5)

    with pytest.raises(ToolFailed, match="code 3"):
        runner.run(text_pdf, PRESET)
    assert list(private_tmp.iterdir()) == []


@posix_only
def test_runner_missing_output(tmp_path, private_tmp, text_pdf):
    stub = write_stub(tmp_path / "lazy-gs", "exit 0")
    runner = pdf_codec.GhostscriptRunner([stub], timeout=5)

    with pytest.raises(ToolFailed, match="no output"):
        runner.run(text_pdf, PRESET)


@posix_only
def test_runner_success_reads_output(tmp_path, private_tmp, text_pdf):
    # Copies the input (last argument) to -sOutputFile
    body = (
        'for arg in "$@"; do case "$arg" in -sOutputFile=*) out="${arg#-sOutputFile=}";; esac; '
        'last="$arg"; done; cp "$last" "$out"'
    )
    stub = write_stub(tmp_path / "copy-gs", body)
    runner = pdf_codec.GhostscriptRunner([stub], timeout=5)

    assert runner.run(text_pdf, PRESET) == text_pdf
    assert list(private_tmp.iterdir()) == []


@needs_gs
def test_real_ghostscript_produces_pdf(image_pdf):
    runner = pdf_codec.GhostscriptRunner(["gs", "gswin64c", "gswin32c"], timeout=60)
    output = runner.run(image_pdf, GhostscriptPreset("minimum", 50, 20))
    assert output.startswith(b"%PDF")
    assert len(output) < len(image_pdf)


def test_find_ghostscript_prefers_first_match(monkeypatch):
    found = {"gswin64c": "/opt/gs/gswin64c"}
    monkeypatch.setattr(shutil, "which", lambda name: found.get(name))
    assert pdf_codec.find_ghostscript(["gs", "gswin64c"]) == "/opt/gs/gswin64c"


@posix_only
def test_external_output_metadata_follows_adapter(tmp_path, private_tmp, titled_pdf):
    body = (
        'for arg in "$@"; do case "$arg" in -sOutputFile=*) out="${arg#-sOutputFile=}";; esac; '
        'last="$arg"; done; cp "$last" "$out"'
    )
    runner = pdf_codec.GhostscriptRunner([write_stub(tmp_path / "copy-gs", body)], timeout=5)
    codec = CodecAdapter(runner)

    stripped = codec.encode_pdf_external(titled_pdf, PRESET)
    kept = codec.encode_pdf_external(titled_pdf, PRESET, strip_metadata=False)

    assert pdf_codec.pdf_info(stripped).title is None
    assert kept == titled_pdf
