"""Image and PDF processing with size-targeted compression"""

from .compression import (
    BudgetUnreachable,
    CompressionEngine,
    CompressionRequest,
    CompressionResult,
    DeadlineExceeded,
    InvalidInput,
    MediaKind,
    OutputFormat,
    PdfInfo,
    ProcessingError,
    Strategy,
    ToolTimeout,
    ToolUnavailable,
    compress,
    pdf_info,
)
from .compression.errors import InvalidPassword, PasswordRequired, UnsupportedOperation
from .config import Settings, get_settings, load_settings, save_settings
from .logger import get_logger, setup_from_settings, setup_logging
from .operations import (
    CompressImage,
    CompressPdf,
    ConvertImage,
    ImagesToPdf,
    RemovePdfPassword,
    ResizeImage,
    WatermarkImage,
    parse_operation,
)
from .processor import BatchResult, InputFile, MediaProcessor, ProcessedArtifact

__version__ = '0.1.0'

__all__ = [
    'BudgetUnreachable',
    'CompressionEngine',
    'CompressionRequest',
    'CompressionResult',
    'DeadlineExceeded',
    'InvalidInput',
    'InvalidPassword',
    'PasswordRequired',
    'UnsupportedOperation',
    'MediaKind',
    'OutputFormat',
    'PdfInfo',
    'ProcessingError',
    'Strategy',
    'ToolTimeout',
    'ToolUnavailable',
    'compress',
    'pdf_info',
    'Settings',
    'get_settings',
    'load_settings',
    'save_settings',
    'get_logger',
    'setup_logging',
    'setup_from_settings',
    'CompressImage',
    'CompressPdf',
    'ConvertImage',
    'ImagesToPdf',
    'RemovePdfPassword',
    'ResizeImage',
    'WatermarkImage',
    'parse_operation',
    'BatchResult',
    'InputFile',
    'MediaProcessor',
    'ProcessedArtifact',
]
