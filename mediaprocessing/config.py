"""Runtime settings loaded from a JSON file with environment overrides."""

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

# Settings file location (working directory unless MEDIAPROCESSING_CONFIG is set)
CONFIG_FILE = Path.cwd() / "mediaprocessing.json"

ENV_CONFIG = "MEDIAPROCESSING_CONFIG"
ENV_OUTPUT_DIR = "MEDIAPROCESSING_OUTPUT_DIR"
ENV_GS_TIMEOUT = "MEDIAPROCESSING_GS_TIMEOUT"
ENV_MAX_WORKERS = "MEDIAPROCESSING_MAX_WORKERS"
ENV_LOG_LEVEL = "MEDIAPROCESSING_LOG_LEVEL"


@dataclass(frozen=True)
class GhostscriptPreset:
    """One fidelity step for the external PDF re-encoder.

    Attributes:
        name: Preset label reported in results
        dpi: Target resolution for embedded color/gray/mono images
        jpeg_quality: JPEG quality (1-100) for re-encoded embedded images
    """
    name: str
    dpi: int
    jpeg_quality: int

    def __post_init__(self):
        if self.dpi <= 0:
            raise ValueError(f"dpi must be > 0, got {self.dpi}")
        if not 1 <= self.jpeg_quality <= 100:
            raise ValueError(f"jpeg_quality must be 1-100, got {self.jpeg_quality}")


# Descending fidelity, tried in order until one fits the budget
DEFAULT_GHOSTSCRIPT_PRESETS = (
    GhostscriptPreset("high", 150, 80),
    GhostscriptPreset("medium", 120, 65),
    GhostscriptPreset("low", 96, 50),
    GhostscriptPreset("very_low", 72, 35),
    GhostscriptPreset("minimum", 50, 20),
)

DEFAULT_GHOSTSCRIPT_CANDIDATES = ("gs", "gswin64c", "gswin32c")


@dataclass
class Settings:
    """Settings shared by the engine, the PDF tools and the processor.

    Attributes:
        output_dir: Where the processor persists artifacts (core never reads it)
        ghostscript_candidates: Executable names/paths tried in order
        ghostscript_timeout: Hard limit in seconds per Ghostscript run
        pdf_compat_level: PDF compatibility level passed to Ghostscript
        ghostscript_presets: Descending DPI/quality presets
        downscale_safety_margin: Extra shrink applied to the computed scale
        max_workers: Size of the processor's worker pool
        request_deadline: Seconds a single compression call may take (None = no limit)
        log_file: Optional log file path
        log_level: Logging level name
        strip_metadata: Drop EXIF/ICC metadata from image outputs
        calculate_ssim: Attach SSIM scores to image compression results
    """
    output_dir: Path = field(default_factory=lambda: Path.cwd() / "processed")
    ghostscript_candidates: List[str] = field(
        default_factory=lambda: list(DEFAULT_GHOSTSCRIPT_CANDIDATES))
    ghostscript_timeout: float = 45.0
    pdf_compat_level: str = "1.4"
    ghostscript_presets: List[GhostscriptPreset] = field(
        default_factory=lambda: list(DEFAULT_GHOSTSCRIPT_PRESETS))
    downscale_safety_margin: float = 0.9
    max_workers: int = 4
    request_deadline: Optional[float] = None
    log_file: Optional[Path] = None
    log_level: str = "INFO"
    strip_metadata: bool = True
    calculate_ssim: bool = False

    def __post_init__(self):
        """Validate and normalise settings."""
        self.output_dir = Path(self.output_dir)
        if self.log_file is not None:
            self.log_file = Path(self.log_file)
        self.ghostscript_presets = [
            p if isinstance(p, GhostscriptPreset) else GhostscriptPreset(**p)
            for p in self.ghostscript_presets
        ]
        if self.ghostscript_timeout <= 0:
            raise ValueError(f"ghostscript_timeout must be > 0, got {self.ghostscript_timeout}")
        if not 0 < self.downscale_safety_margin <= 1:
            raise ValueError(
                f"downscale_safety_margin must be in (0, 1], got {self.downscale_safety_margin}")
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")
        if self.request_deadline is not None and self.request_deadline <= 0:
            raise ValueError(f"request_deadline must be > 0, got {self.request_deadline}")
        if not self.ghostscript_candidates:
            raise ValueError("ghostscript_candidates must not be empty")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        """Build settings from a mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning("Ignoring unknown settings: %s", ", ".join(unknown))
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> Dict[str, Any]:
        """Serialise to JSON-compatible values."""
        data = asdict(self)
        data["output_dir"] = str(self.output_dir)
        data["log_file"] = str(self.log_file) if self.log_file else None
        return data


def _read_config_file(path: Path) -> Dict[str, Any]:
    """
    Load settings mapping from JSON file.

    Returns:
        Mapping from the file, or an empty dict when missing or unreadable
    """
    if path.exists():
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning("Could not read settings file %s (%s); using defaults", path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Settings file %s does not hold an object; using defaults", path)
            return {}
        return data
    return {}


def _apply_env_overrides(data: Dict[str, Any], environ) -> Dict[str, Any]:
    data = dict(data)
    if environ.get(ENV_OUTPUT_DIR):
        data["output_dir"] = environ[ENV_OUTPUT_DIR]
    if environ.get(ENV_GS_TIMEOUT):
        data["ghostscript_timeout"] = float(environ[ENV_GS_TIMEOUT])
    if environ.get(ENV_MAX_WORKERS):
        data["max_workers"] = int(environ[ENV_MAX_WORKERS])
    if environ.get(ENV_LOG_LEVEL):
        data["log_level"] = environ[ENV_LOG_LEVEL].upper()
    return data


def load_settings(path: Optional[Path] = None, environ=None) -> Settings:
    """
    Load settings from JSON and environment.

    Args:
        path: Settings file; defaults to $MEDIAPROCESSING_CONFIG or CONFIG_FILE
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated Settings
    """
    environ = os.environ if environ is None else environ
    if path is None:
        path = Path(environ[ENV_CONFIG]) if environ.get(ENV_CONFIG) else CONFIG_FILE
    data = _apply_env_overrides(_read_config_file(Path(path)), environ)
    return Settings.from_dict(data)


def save_settings(settings: Settings, path: Path) -> bool:
    """
    Save settings to JSON file.

    Returns:
        True if saved successfully
    """
    try:
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(settings.to_dict(), f, indent=2)
        return True
    except IOError as e:
        logger.warning("Could not save settings to %s: %s", path, e)
        return False


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or load the global settings instance."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached global settings so the next call reloads them."""
    global _settings
    _settings = None
