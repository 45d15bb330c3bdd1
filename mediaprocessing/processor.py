"""Batch processing of uploaded files with a bounded worker pool"""

import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from .bundle import make_zip
from .compression.engine import CompressionEngine
from .compression.errors import InvalidInput, ProcessingError, UnsupportedOperation
from .compression.estimate import (
    estimate_compressed_size,
    estimate_converted_size,
    estimate_pdf_size,
    estimate_resized_size,
)
from .compression.result import CompressionRequest, MediaKind, OutputFormat
from .compression.search import CancelCheck, check_cancelled
from .config import Settings, get_settings
from .operations import (
    CompressImage,
    CompressPdf,
    ConvertImage,
    ImagesToPdf,
    Operation,
    RemovePdfPassword,
    ResizeImage,
    WatermarkImage,
)
from .password import remove_password
from .pdf_builder import images_to_pdf
from .transforms import add_watermark, convert_image, resize_image
from .utils import (
    calculate_resize_dimensions,
    detect_media_kind,
    format_size,
    get_image_info,
    is_supported_format,
)

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = 'application/pdf'

ProgressCallback = Callable[[int, int, str], None]


@dataclass
class InputFile:
    """An uploaded file, already extracted from the transport."""
    name: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class ProcessedArtifact:
    """One output of an operation, not yet persisted.

    Attributes:
        original_name: Name of the input file (first input for merged PDFs)
        output_name: <stem>_<suffix>_<id>.<ext>
        data: Output bytes
        original_size: Input size in bytes (sum for merged PDFs)
        processed_size: Output size in bytes
        media_type: MIME type of the output
        metadata: Operation-specific details (quality, strategy, dimensions...)
    """
    original_name: str
    output_name: str
    data: bytes
    original_size: int
    processed_size: int
    media_type: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def compression_ratio(self) -> float:
        """Percentage saved relative to the original."""
        if self.original_size == 0:
            return 0.0
        return (1 - self.processed_size / self.original_size) * 100


@dataclass
class FailedFile:
    name: str
    error: ProcessingError

    @property
    def message(self) -> str:
        return str(self.error)


@dataclass
class BatchResult:
    operation: str
    artifacts: List[ProcessedArtifact] = field(default_factory=list)
    failed: List[FailedFile] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.failed and bool(self.artifacts)

    @property
    def total_original_size(self) -> int:
        return sum(a.original_size for a in self.artifacts)

    @property
    def total_processed_size(self) -> int:
        return sum(a.processed_size for a in self.artifacts)


def _file_id() -> str:
    return uuid.uuid4().hex[:8]


def output_name(original_name: str, suffix: str, extension: str) -> str:
    """
    Build an output file name: <stem>_<suffix>_<8-hex-id>.<ext>

    Args:
        original_name: Input file name
        suffix: Operation marker (compressed, resized_800xauto, ...)
        extension: Extension with or without the leading dot
    """
    stem = Path(original_name).stem or 'file'
    return f"{stem}_{suffix}_{_file_id()}.{extension.lstrip('.')}"


class MediaProcessor:
    """Dispatches operations over uploaded files.

    Per-file work runs in a ThreadPoolExecutor bounded by
    settings.max_workers. Each compression call builds its own search
    state, so files never share mutable data.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        engine: Optional[CompressionEngine] = None,
    ):
        """Initialize processor.

        Args:
            settings: Runtime settings (global settings when omitted)
            engine: Compression engine (built from settings when omitted)
        """
        self.settings = settings or get_settings()
        self.engine = engine or CompressionEngine.from_settings(self.settings)

    def process(
        self,
        files: Sequence[InputFile],
        operation: Operation,
        is_cancelled: Optional[CancelCheck] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> BatchResult:
        """
        Run an operation over a batch of files.

        Failures are collected per file and never stop the rest of the
        batch. ImagesToPdf combines every file into one artifact.

        Args:
            files: Input files in order
            operation: Parsed operation
            is_cancelled: Checked before each file and between encodes
            progress_callback: Optional callback function(current, total, filename)

        Returns:
            BatchResult with artifacts and failures
        """
        result = BatchResult(operation=operation.name)
        if not files:
            return result

        if isinstance(operation, ImagesToPdf):
            try:
                result.artifacts.append(self._images_to_pdf(files, operation, is_cancelled))
            except ProcessingError as e:
                logger.warning("Images to PDF failed: %s", e)
                result.failed.append(FailedFile(files[0].name, e))
            if progress_callback:
                progress_callback(len(files), len(files), files[0].name)
            return result

        total = len(files)
        with ThreadPoolExecutor(max_workers=min(self.settings.max_workers, total)) as pool:
            futures = [
                pool.submit(self._process_guarded, f, operation, is_cancelled)
                for f in files
            ]
            # Collect in input order
            for idx, (f, future) in enumerate(zip(files, futures)):
                artifact, error = future.result()
                if error is not None:
                    result.failed.append(FailedFile(f.name, error))
                else:
                    result.artifacts.append(artifact)
                if progress_callback:
                    label = f.name if error is None else f"ERROR: {f.name} - {error}"
                    progress_callback(idx + 1, total, label)

        logger.info(
            "Batch %s: %d succeeded, %d failed (%s -> %s)",
            operation.name, len(result.artifacts), len(result.failed),
            format_size(result.total_original_size), format_size(result.total_processed_size),
        )
        return result

    def _process_guarded(self, f: InputFile, operation: Operation, is_cancelled):
        try:
            return self.process_one(f, operation, is_cancelled), None
        except ProcessingError as e:
            logger.warning("Processing %s failed: %s", f.name, e)
            return None, e

    def process_one(
        self,
        f: InputFile,
        operation: Operation,
        is_cancelled: Optional[CancelCheck] = None,
    ) -> ProcessedArtifact:
        """
        Run a per-file operation.

        Raises:
            ProcessingError: Any typed failure (InvalidInput, BudgetUnreachable, ...)
        """
        check_cancelled(is_cancelled)
        self._check_extension(f)
        kind = detect_media_kind(f.data, f.name)

        if isinstance(operation, CompressPdf):
            self._require(kind, MediaKind.PDF, f, operation)
            return self._compress(f, kind, operation, OutputFormat.JPEG, is_cancelled)
        if isinstance(operation, RemovePdfPassword):
            self._require(kind, MediaKind.PDF, f, operation)
            return self._unlock(f, operation)

        self._require(kind, MediaKind.IMAGE, f, operation)
        if isinstance(operation, CompressImage):
            return self._compress(f, kind, operation, operation.output_format, is_cancelled)
        if isinstance(operation, ResizeImage):
            return self._resize(f, operation)
        if isinstance(operation, ConvertImage):
            return self._convert(f, operation)
        if isinstance(operation, WatermarkImage):
            return self._watermark(f, operation)
        raise UnsupportedOperation(f"Unsupported operation: {operation.name}")

    @staticmethod
    def _check_extension(f: InputFile):
        if not is_supported_format(f.name):
            raise InvalidInput(f"Unsupported file type: '{f.name}'")

    def _remove_metadata(self, operation: Operation) -> bool:
        """Per-request choice, falling back to settings.strip_metadata."""
        value = getattr(operation, 'remove_metadata', None)
        return self.settings.strip_metadata if value is None else value

    @staticmethod
    def _require(kind: MediaKind, expected: MediaKind, f: InputFile, operation: Operation):
        if kind is not expected:
            raise InvalidInput(
                f"'{f.name}' is {'a PDF' if kind is MediaKind.PDF else 'an image'}; "
                f"'{operation.name}' needs {'a PDF' if expected is MediaKind.PDF else 'an image'}")

    def _compress(self, f, kind, operation, output_format, is_cancelled) -> ProcessedArtifact:
        request = CompressionRequest(
            input=f.data,
            media_kind=kind,
            target_bytes=operation.target_bytes,
            quality=operation.quality,
            output_format=output_format,
            allow_downscale=operation.allow_downscale,
            remove_metadata=self._remove_metadata(operation),
        )
        compressed = self.engine.compress(request, is_cancelled=is_cancelled)

        if kind is MediaKind.PDF:
            extension, media_type = 'pdf', PDF_MIME_TYPE
        else:
            extension, media_type = output_format.extension, output_format.mime_type
        return ProcessedArtifact(
            original_name=f.name,
            output_name=output_name(f.name, 'compressed', extension),
            data=compressed.output_bytes,
            original_size=f.size,
            processed_size=compressed.output_size,
            media_type=media_type,
            metadata={
                'quality': compressed.achieved_quality,
                'strategy': compressed.strategy_used.value,
                'target_bytes': operation.target_bytes,
                'dimensions': compressed.dimensions,
                'preset': compressed.preset,
                'encode_calls': compressed.encode_calls,
                'elapsed_ms': compressed.elapsed_ms,
                'ssim': compressed.ssim_score,
                'message': compressed.message,
            },
        )

    def _resize(self, f: InputFile, operation: ResizeImage) -> ProcessedArtifact:
        data, dimensions = resize_image(f.data, operation, self._remove_metadata(operation))
        suffix = f"resized_{operation.width or 'auto'}x{operation.height or 'auto'}"
        return ProcessedArtifact(
            original_name=f.name,
            output_name=output_name(f.name, suffix, operation.output_format.extension),
            data=data,
            original_size=f.size,
            processed_size=len(data),
            media_type=operation.output_format.mime_type,
            metadata={'dimensions': dimensions, 'format': operation.output_format.value},
        )

    def _convert(self, f: InputFile, operation: ConvertImage) -> ProcessedArtifact:
        data = convert_image(f.data, operation, self._remove_metadata(operation))
        ext = operation.output_format.extension.lstrip('.')
        return ProcessedArtifact(
            original_name=f.name,
            output_name=output_name(f.name, f"converted_to_{ext}", ext),
            data=data,
            original_size=f.size,
            processed_size=len(data),
            media_type=operation.output_format.mime_type,
            metadata={'format': operation.output_format.value, 'quality': operation.quality},
        )

    def _watermark(self, f: InputFile, operation: WatermarkImage) -> ProcessedArtifact:
        data = add_watermark(f.data, operation, self.settings.strip_metadata)
        return ProcessedArtifact(
            original_name=f.name,
            output_name=output_name(f.name, 'watermarked', operation.output_format.extension),
            data=data,
            original_size=f.size,
            processed_size=len(data),
            media_type=operation.output_format.mime_type,
            metadata={'text': operation.text, 'position': operation.position},
        )

    def _unlock(self, f: InputFile, operation: RemovePdfPassword) -> ProcessedArtifact:
        unlocked = remove_password(f.data, operation.password)
        return ProcessedArtifact(
            original_name=f.name,
            output_name=output_name(f.name, 'unlocked', 'pdf'),
            data=unlocked.data,
            original_size=f.size,
            processed_size=len(unlocked.data),
            media_type=PDF_MIME_TYPE,
            metadata={'page_count': unlocked.page_count, 'was_encrypted': unlocked.was_encrypted},
        )

    def _images_to_pdf(
        self,
        files: Sequence[InputFile],
        operation: ImagesToPdf,
        is_cancelled: Optional[CancelCheck],
    ) -> ProcessedArtifact:
        for f in files:
            self._check_extension(f)
            self._require(detect_media_kind(f.data, f.name), MediaKind.IMAGE, f, operation)
        built = images_to_pdf([f.data for f in files], operation, is_cancelled)

        first = files[0].name
        suffix = f"and_{len(files) - 1}_more_combined" if len(files) > 1 else 'combined'
        return ProcessedArtifact(
            original_name=first,
            output_name=output_name(first, suffix, 'pdf'),
            data=built.data,
            original_size=sum(f.size for f in files),
            processed_size=built.output_size,
            media_type=PDF_MIME_TYPE,
            metadata={
                'page_count': built.page_count,
                'page_size': operation.page_size,
                'orientation': operation.orientation,
            },
        )

    def save_artifacts(
        self,
        result: BatchResult,
        output_dir: Optional[Path] = None,
    ) -> List[Path]:
        """
        Write artifacts to the output directory.

        Args:
            result: Batch result to persist
            output_dir: Overrides settings.output_dir

        Returns:
            List of written paths
        """
        output_dir = Path(output_dir or self.settings.output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        written = []
        for artifact in result.artifacts:
            path = output_dir / artifact.output_name
            path.write_bytes(artifact.data)
            written.append(path)
        logger.info("Saved %d artifacts to %s", len(written), output_dir)
        return written

    @staticmethod
    def bundle(result: BatchResult) -> bytes:
        """ZIP all artifacts of a batch."""
        return make_zip((a.output_name, a.data) for a in result.artifacts)

    def estimate(self, data: bytes, name: str, operation: Operation) -> int:
        """
        Predict the output size of an operation without encoding.

        Args:
            data: Input bytes
            name: Input file name
            operation: Parsed operation

        Returns:
            Estimated output size in bytes
        """
        size = len(data)
        if isinstance(operation, CompressImage):
            return estimate_compressed_size(
                size, detect_media_kind(data, name), operation.quality,
                operation.target_bytes, operation.output_format)
        if isinstance(operation, CompressPdf):
            return estimate_compressed_size(
                size, MediaKind.PDF, operation.quality, operation.target_bytes)
        if isinstance(operation, ResizeImage):
            info = get_image_info(data)
            width, height = info['width'], info['height']
            _, final = calculate_resize_dimensions(
                width, height, operation.width, operation.height,
                operation.maintain_aspect_ratio, operation.crop_to_fit)
            return estimate_resized_size(size, (width, height), final)
        if isinstance(operation, ConvertImage):
            return estimate_converted_size(size, operation.output_format, operation.quality)
        if isinstance(operation, ImagesToPdf):
            return estimate_pdf_size([size], operation.quality)
        # Watermark and password removal keep the size
        return size
