"""Error taxonomy for compression and PDF operations."""

from enum import Enum
from typing import Any, Dict, List, Optional


class ProcessingError(Exception):
    """Base class for every error raised by mediaprocessing."""


class EncodeError(ProcessingError):
    """Raised by the codec layer.

    Attributes:
        tier: Name of the tier that was running when the error happened
        params: Encoder parameters of the failing call
    """

    def __init__(
        self,
        message: str,
        tier: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.tier = tier
        self.params = dict(params or {})

    def with_context(self, tier: str, **params) -> "EncodeError":
        """Return a copy of this error annotated with tier and parameters."""
        merged = dict(self.params)
        merged.update(params)
        return type(self)(self.message, tier=tier, params=merged)

    def __str__(self) -> str:
        if self.tier is None:
            return self.message
        if self.params:
            args = ", ".join(f"{k}={v}" for k, v in sorted(self.params.items()))
            return f"[{self.tier}] {self.message} ({args})"
        return f"[{self.tier}] {self.message}"


class InvalidInput(EncodeError):
    """Source bytes are malformed or not the declared media kind."""


class ToolUnavailable(EncodeError):
    """Required external binary is not installed in this environment."""


class ToolTimeout(EncodeError):
    """External tool exceeded its deadline."""


class ToolFailed(EncodeError):
    """External tool ran but exited non-zero or produced no output."""


class DiagnosisCause(Enum):
    """Likely reason a size budget could not be met."""
    LOW_COMPRESSIBLE_CONTENT = "low_compressible_content"
    ALREADY_OPTIMIZED = "already_optimized"
    IMAGE_DOMINATED = "image_dominated"


class BudgetUnreachable(ProcessingError):
    """Every tier ran out without producing output under the target size.

    Attributes:
        original_size: Input size in bytes
        target_size: Requested budget in bytes
        best_size: Smallest output actually produced across all attempts
        cause: Classification of the likely cause
        achieved_ratio: best_size / original_size
        suggestions: Actionable hints for the caller
        tiers_tried: Names of tiers that ran (or were skipped) in order
    """

    def __init__(
        self,
        original_size: int,
        target_size: int,
        best_size: int,
        cause: DiagnosisCause,
        diagnosis: str,
        suggestions: Optional[List[str]] = None,
        tiers_tried: Optional[List[str]] = None,
    ):
        self.original_size = original_size
        self.target_size = target_size
        self.best_size = best_size
        self.cause = cause
        self.diagnosis = diagnosis
        self.suggestions = list(suggestions or [])
        self.tiers_tried = list(tiers_tried or [])
        super().__init__(
            f"Cannot reach target of {target_size} bytes; "
            f"smallest achieved was {best_size} bytes. {diagnosis}"
        )

    @property
    def achieved_ratio(self) -> float:
        if self.original_size <= 0:
            return 1.0
        return self.best_size / self.original_size


class PasswordRequired(ProcessingError):
    """PDF is encrypted and no password was supplied."""


class InvalidPassword(ProcessingError):
    """Supplied password does not open the PDF."""


class DeadlineExceeded(ProcessingError):
    """Request deadline passed or the caller cancelled between attempts."""


class UnsupportedOperation(ProcessingError):
    """Operation name or option combination is not recognised."""
