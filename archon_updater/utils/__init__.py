"""Utility modules."""

from .logger import setup_logger, get_logger
from .errors import (
    ArchonUpdaterError,
    ERROR_CLASSIFICATION,
    ErrorSeverity,
    ErrorType,
    ParseError,
    SchemaError,
    StoreError,
    ValidationError,
    WriteError,
    is_fatal,
)

__all__ = [
    "ArchonUpdaterError",
    "ERROR_CLASSIFICATION",
    "ErrorSeverity",
    "ErrorType",
    "ParseError",
    "SchemaError",
    "StoreError",
    "ValidationError",
    "WriteError",
    "get_logger",
    "is_fatal",
    "setup_logger",
]
