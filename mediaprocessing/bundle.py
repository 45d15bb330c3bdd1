"""ZIP bundling of processed artifacts."""

import zipfile
from io import BytesIO
from pathlib import Path, PurePosixPath
from typing import Iterable, Set, Tuple

ZIP_COMPRESSION_LEVEL = 9
BUNDLE_NAME = "processed-images.zip"


def _unique_name(name: str, used: Set[str]) -> str:
    """Strip directories and append -1, -2, ... until the name is unused."""
    clean = PurePosixPath(name.replace("\\", "/")).name or "file"
    candidate = clean
    stem, suffix = Path(clean).stem, Path(clean).suffix
    counter = 1
    while candidate in used:
        candidate = f"{stem}-{counter}{suffix}"
        counter += 1
    used.add(candidate)
    return candidate


def make_zip(files: Iterable[Tuple[str, bytes]]) -> bytes:
    """
    Build an in-memory ZIP of (name, data) pairs.

    Entry names are reduced to their base name; duplicates get a numeric
    suffix so no entry overwrites another.

    Args:
        files: (file name, bytes) pairs in archive order

    Returns:
        ZIP archive bytes
    """
    buffer = BytesIO()
    used: Set[str] = set()
    with zipfile.ZipFile(
        buffer, "w", zipfile.ZIP_DEFLATED, compresslevel=ZIP_COMPRESSION_LEVEL
    ) as zf:
        for name, data in files:
            zf.writestr(_unique_name(name, used), data)
    return buffer.getvalue()


def write_zip(files: Iterable[Tuple[str, bytes]], zip_path: Path) -> Path:
    """Write make_zip() output to disk, creating parent directories."""
    zip_path = Path(zip_path)
    zip_path.parent.mkdir(parents=True, exist_ok=True)
    zip_path.write_bytes(make_zip(files))
    return zip_path
