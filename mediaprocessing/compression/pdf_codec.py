"""PDF re-encoding tiers.

Tier A is a structural resave with pikepdf (qpdf): streams are recompressed,
object streams generated and unreferenced resources dropped. No image is
touched, so the gain is bounded but the pass is cheap.

The downscale pass rebuilds embedded raster images with PyMuPDF at a reduced
resolution and re-encodes them as JPEG.

Tier B shells out to Ghostscript's pdfwrite device with explicit image
resolution and JPEG quality. It is the only real size lever for most PDFs and
also the most expensive one.
"""

import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import fitz  # PyMuPDF
import pikepdf
from PIL import Image, ImageChops, UnidentifiedImageError

from ..config import GhostscriptPreset
from .errors import InvalidInput, ToolFailed, ToolTimeout, ToolUnavailable


# Embedded images below this many bytes are not worth re-encoding
MIN_REENCODE_BYTES = 4096


def _open_pikepdf(data: bytes) -> pikepdf.Pdf:
    try:
        return pikepdf.open(BytesIO(data))
    except pikepdf.PasswordError as e:
        raise InvalidInput("PDF is password-protected") from e
    except pikepdf.PdfError as e:
        raise InvalidInput(f"Cannot open PDF: {e}") from e


def _strip_metadata(pdf: pikepdf.Pdf) -> None:
    """Drop the document info dictionary and the XMP metadata stream."""
    if '/Info' in pdf.trailer:
        del pdf.trailer['/Info']
    if '/Metadata' in pdf.Root:
        del pdf.Root['/Metadata']


def resave_structural(data: bytes, strip_metadata: bool = False) -> bytes:
    """Tier A: lossless structural resave.

    Output is deterministic for identical input (fixed document ID).

    Args:
        data: Source PDF bytes
        strip_metadata: Drop title, author, producer and the other document
            info entries along with the XMP stream

    Returns:
        Resaved PDF bytes

    Raises:
        InvalidInput: If the bytes are not an openable, unencrypted PDF
    """
    pdf = _open_pikepdf(data)
    with pdf:
        try:
            if strip_metadata:
                _strip_metadata(pdf)
            pdf.remove_unreferenced_resources()
            buffer = BytesIO()
            pdf.save(
                buffer,
                compress_streams=True,
                recompress_flate=True,
                stream_decode_level=pikepdf.StreamDecodeLevel.generalized,
                object_stream_mode=pikepdf.ObjectStreamMode.generate,
                deterministic_id=True,
            )
        except pikepdf.PdfError as e:
            raise InvalidInput(f"Cannot rewrite PDF: {e}") from e
    return buffer.getvalue()


def embedded_image_bytes(data: bytes) -> Tuple[int, int]:
    """Measure raster content of a PDF.

    Returns:
        Tuple of (image_count, total_raw_image_stream_bytes)
    """
    pdf = _open_pikepdf(data)
    count = 0
    total = 0
    with pdf:
        for obj in pdf.objects:
            if not isinstance(obj, pikepdf.Stream):
                continue
            if obj.get('/Subtype') != pikepdf.Name.Image:
                continue
            count += 1
            total += len(obj.read_raw_bytes())
    return count, total


def page_count(data: bytes) -> int:
    """Number of pages in a PDF."""
    pdf = _open_pikepdf(data)
    with pdf:
        return len(pdf.pages)


def clear_metadata(data: bytes) -> bytes:
    """Remove document info and XMP metadata, leaving streams untouched."""
    pdf = _open_pikepdf(data)
    with pdf:
        try:
            _strip_metadata(pdf)
            buffer = BytesIO()
            pdf.save(buffer, deterministic_id=True)
        except pikepdf.PdfError as e:
            raise InvalidInput(f"Cannot rewrite PDF: {e}") from e
    return buffer.getvalue()


@dataclass(frozen=True)
class PdfInfo:
    """Summary of a PDF document.

    Attributes:
        page_count: Number of pages
        title: Document info /Title, if set
        author: Document info /Author, if set
        image_count: Embedded raster image streams
        image_bytes: Raw size of those streams
    """
    page_count: int
    title: Optional[str] = None
    author: Optional[str] = None
    image_count: int = 0
    image_bytes: int = 0

    @property
    def has_images(self) -> bool:
        return self.image_count > 0


def _info_text(pdf: pikepdf.Pdf, key: str) -> Optional[str]:
    if '/Info' not in pdf.trailer:
        return None
    value = pdf.trailer.Info.get(key)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def pdf_info(data: bytes) -> PdfInfo:
    """Read page count, title, author and embedded image totals.

    Raises:
        InvalidInput: If the bytes are not an openable, unencrypted PDF
    """
    pdf = _open_pikepdf(data)
    with pdf:
        pages = len(pdf.pages)
        title = _info_text(pdf, '/Title')
        author = _info_text(pdf, '/Author')
    image_count, image_bytes = embedded_image_bytes(data)
    return PdfInfo(
        page_count=pages,
        title=title,
        author=author,
        image_count=image_count,
        image_bytes=image_bytes,
    )


def _to_jpeg_ready(pil_img: Image.Image) -> Image.Image:
    if pil_img.mode == "CMYK":
        # Adobe CMYK JPEGs decode inverted
        return ImageChops.invert(pil_img).convert("RGB")
    if pil_img.mode in ("RGBA", "LA"):
        rgba = pil_img.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[3])
        return background
    if pil_img.mode not in ("RGB", "L"):
        return pil_img.convert("RGB")
    return pil_img


def downscale_embedded_images(
    data: bytes,
    scale: float,
    quality: int,
    strip_metadata: bool = False,
) -> bytes:
    """Resample every embedded raster image by `scale` and re-encode as JPEG.

    Images PIL cannot decode (JBIG2, CCITT, raw masks) and images smaller
    than MIN_REENCODE_BYTES are left as they are. The rebuilt document is
    passed through the structural resave.

    Args:
        data: Source PDF bytes
        scale: Linear scale factor in (0, 1]
        quality: JPEG quality for re-encoded images
        strip_metadata: Passed on to the structural resave

    Returns:
        Rebuilt PDF bytes

    Raises:
        InvalidInput: If the PDF cannot be opened or is encrypted
    """
    if not 0 < scale <= 1:
        raise ValueError(f"scale must be in (0, 1], got {scale}")

    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except (RuntimeError, ValueError) as e:  # FileDataError is a RuntimeError
        raise InvalidInput(f"Cannot open PDF: {e}") from e

    try:
        if doc.needs_pass:
            raise InvalidInput("PDF is password-protected")

        xrefs = set()
        for page in doc:
            for img in page.get_images(full=True):
                xrefs.add(img[0])

        for xref in sorted(xrefs):
            xref_dict = doc.xref_object(xref)
            if "/ImageMask true" in xref_dict:
                continue

            img_info = doc.extract_image(xref)
            if not img_info or not img_info.get("image"):
                continue
            if len(img_info["image"]) < MIN_REENCODE_BYTES:
                continue

            try:
                pil_img = Image.open(BytesIO(img_info["image"]))
                pil_img.load()
            except (UnidentifiedImageError, OSError):
                continue

            new_w = max(1, int(pil_img.width * scale))
            new_h = max(1, int(pil_img.height * scale))
            if (new_w, new_h) != pil_img.size:
                pil_img = pil_img.resize((new_w, new_h), Image.Resampling.LANCZOS)
            pil_img = _to_jpeg_ready(pil_img)

            buffer = BytesIO()
            pil_img.save(buffer, format="JPEG", quality=quality, optimize=True)

            # compress=0 keeps PyMuPDF from wrapping the JPEG stream in zlib
            doc.update_stream(xref, buffer.getvalue(), compress=0)
            doc.xref_set_key(xref, "Filter", "/DCTDecode")
            doc.xref_set_key(xref, "Width", str(new_w))
            doc.xref_set_key(xref, "Height", str(new_h))
            doc.xref_set_key(
                xref, "ColorSpace",
                "/DeviceGray" if pil_img.mode == "L" else "/DeviceRGB")
            doc.xref_set_key(xref, "BitsPerComponent", "8")
            doc.xref_set_key(xref, "DecodeParms", "null")
            doc.xref_set_key(xref, "Decode", "null")

        # deflate=False: JPEG streams must stay DCT-only
        rebuilt = doc.tobytes(garbage=4, deflate=False, no_new_id=True)
    finally:
        doc.close()

    return resave_structural(rebuilt, strip_metadata)


def find_ghostscript(candidates: Sequence[str]) -> Optional[str]:
    """
    Locate Ghostscript executable across platforms.

    Returns:
        Full path or None if not found
    """
    for candidate in candidates:
        path = shutil.which(candidate)
        if path:
            return path
    return None


def build_ghostscript_command(
    binary: str,
    input_path: Path,
    output_path: Path,
    dpi: int,
    jpeg_quality: int,
    compat_level: str = "1.4",
) -> List[str]:
    """Build the pdfwrite command line for one preset."""
    return [
        binary,
        "-sDEVICE=pdfwrite",
        f"-dCompatibilityLevel={compat_level}",
        "-dNOPAUSE",
        "-dQUIET",
        "-dBATCH",
        "-dSAFER",
        "-dDetectDuplicateImages=true",
        "-dCompressFonts=true",
        "-dSubsetFonts=true",
        "-dPassThroughJPEGImages=false",
        "-dAutoFilterColorImages=false",
        "-dAutoFilterGrayImages=false",
        "-sColorImageFilter=/DCTEncode",
        "-sGrayImageFilter=/DCTEncode",
        f"-dJPEGQ={jpeg_quality}",
        "-dDownsampleColorImages=true",
        "-dDownsampleGrayImages=true",
        "-dDownsampleMonoImages=true",
        "-dColorImageDownsampleType=/Bicubic",
        "-dGrayImageDownsampleType=/Bicubic",
        "-dMonoImageDownsampleType=/Subsample",
        f"-dColorImageResolution={dpi}",
        f"-dGrayImageResolution={dpi}",
        f"-dMonoImageResolution={max(dpi, 150)}",
        f"-sOutputFile={output_path}",
        str(input_path),
    ]


class GhostscriptRunner:
    """Tier B: runs Ghostscript on a PDF in a private temp directory.

    Attributes:
        candidates: Executable names/paths tried in order
        timeout: Hard limit in seconds per invocation
        compat_level: PDF compatibility level of the output
    """

    def __init__(
        self,
        candidates: Sequence[str],
        timeout: float,
        compat_level: str = "1.4",
    ):
        self.candidates = list(candidates)
        self.timeout = timeout
        self.compat_level = compat_level

    def resolve_binary(self) -> str:
        """Return the Ghostscript path or raise ToolUnavailable."""
        binary = find_ghostscript(self.candidates)
        if binary is None:
            raise ToolUnavailable(
                f"Ghostscript not found (tried: {', '.join(self.candidates)})")
        return binary

    def is_available(self) -> bool:
        return find_ghostscript(self.candidates) is not None

    def run(self, data: bytes, preset: GhostscriptPreset) -> bytes:
        """Re-encode `data` with one preset.

        The input and output files live in a fresh temporary directory that
        is removed on success, failure and timeout alike.

        Raises:
            ToolUnavailable: Binary missing or not executable
            ToolTimeout: Run exceeded self.timeout
            ToolFailed: Non-zero exit or no output file
        """
        binary = self.resolve_binary()
        params = {"preset": preset.name, "dpi": preset.dpi, "jpeg_quality": preset.jpeg_quality}

        with tempfile.TemporaryDirectory(prefix="mediaprocessing-gs-") as workdir:
            input_path = Path(workdir) / "input.pdf"
            output_path = Path(workdir) / "output.pdf"
            input_path.write_bytes(data)

            cmd = build_ghostscript_command(
                binary, input_path, output_path,
                preset.dpi, preset.jpeg_quality, self.compat_level,
            )
            try:
                proc = subprocess.run(cmd, capture_output=True, timeout=self.timeout)
            except subprocess.TimeoutExpired as e:
                raise ToolTimeout(
                    f"Ghostscript exceeded {self.timeout:g}s", params=params) from e
            except OSError as e:
                raise ToolUnavailable(
                    f"Cannot execute Ghostscript at {binary}: {e}", params=params) from e

            if proc.returncode != 0:
                stderr = proc.stderr.decode(errors="ignore").strip()
                raise ToolFailed(
                    f"Ghostscript exited with code {proc.returncode}: {stderr[:400]}",
                    params=params,
                )
            if not output_path.exists() or output_path.stat().st_size == 0:
                raise ToolFailed("Ghostscript produced no output", params=params)

            return output_path.read_bytes()
