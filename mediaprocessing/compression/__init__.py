"""Size-targeted compression for images and PDFs."""

from .result import (
    CompressionRequest,
    CompressionResult,
    MediaKind,
    OutputFormat,
    Strategy,
    TierOutcome,
    TierStatus,
)
from .errors import (
    BudgetUnreachable,
    DeadlineExceeded,
    DiagnosisCause,
    EncodeError,
    InvalidInput,
    ProcessingError,
    ToolFailed,
    ToolTimeout,
    ToolUnavailable,
)
from .codec import CodecAdapter
from .engine import CompressionEngine, compress
from .encoders import (
    MOZJPEG_AVAILABLE,
    get_encoder,
    get_available_formats,
    calculate_ssim_inmemory,
)
from .pdf_codec import PdfInfo, pdf_info
from .search import SizeTargetSearch
from .fallback import FallbackChain

__all__ = [
    'CompressionRequest',
    'CompressionResult',
    'MediaKind',
    'OutputFormat',
    'Strategy',
    'TierOutcome',
    'TierStatus',
    'BudgetUnreachable',
    'DeadlineExceeded',
    'DiagnosisCause',
    'EncodeError',
    'InvalidInput',
    'ProcessingError',
    'ToolFailed',
    'ToolTimeout',
    'ToolUnavailable',
    'CodecAdapter',
    'CompressionEngine',
    'compress',
    'PdfInfo',
    'pdf_info',
    'SizeTargetSearch',
    'FallbackChain',
    'MOZJPEG_AVAILABLE',
    'get_encoder',
    'get_available_formats',
    'calculate_ssim_inmemory',
]
