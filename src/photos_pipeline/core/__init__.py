"""Core utilities and shared components for the photos pipeline."""

from .catalog import DEFAULT_CATALOG, DerivativeCatalog, DerivativeSpec, EncodingSpec, SizeSpec
from .exceptions import (
    BatchParseError,
    CompensationError,
    ConfigurationError,
    DatabaseConnectionError,
    DerivationError,
    HierarchyError,
    PhotosPipelineError,
    S3Error,
    UnsupportedFormatError,
    batch_error_handler,
)
from .error_handling import with_error_handling
from .logging_config import get_logger, setup_logger
from .models import (
    BatchResult,
    DeletionResult,
    DerivationResult,
    DerivationStatus,
    MetadataRecord,
    PathIdentity,
    PipelineConfig,
    SourceImageRef,
    WriteRequest,
)
from .paths import artifact_key, decode_key, parse_key

__all__ = [
    "DEFAULT_CATALOG",
    "DerivativeCatalog",
    "DerivativeSpec",
    "EncodingSpec",
    "SizeSpec",
    "BatchParseError",
    "CompensationError",
    "ConfigurationError",
    "DatabaseConnectionError",
    "DerivationError",
    "HierarchyError",
    "PhotosPipelineError",
    "S3Error",
    "UnsupportedFormatError",
    "batch_error_handler",
    "with_error_handling",
    "get_logger",
    "setup_logger",
    "BatchResult",
    "DeletionResult",
    "DerivationResult",
    "DerivationStatus",
    "MetadataRecord",
    "PathIdentity",
    "PipelineConfig",
    "SourceImageRef",
    "WriteRequest",
    "artifact_key",
    "decode_key",
    "parse_key",
]
