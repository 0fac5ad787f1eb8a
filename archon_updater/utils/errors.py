"""Error taxonomy for the build updater.

Target-level problems (a page with no data, a failed request) are isolated
and only recorded in the run report. Document-level problems (bad selection,
unreadable or malformed data file, failed write) abort the run before
anything is written.
"""

from enum import Enum, auto
from pathlib import Path
from typing import Dict, List, Optional, Union


class ErrorSeverity(Enum):
    """Error severity levels."""
    ISOLATED = auto()   # Recorded for one target, run continues
    FATAL = auto()      # Aborts the run, nothing is written


class ErrorType(Enum):
    """Kinds of failures a run can encounter."""
    VALIDATION = "validation"         # Bad class/spec/content in selection
    CONFIG = "config"                 # Unreadable settings or selection file
    PARSE = "parse"                   # Data file is not valid Lua
    SCHEMA = "schema"                 # Valid Lua, unexpected shape
    TRANSPORT = "transport"           # Request failed or timed out
    NOT_AVAILABLE = "not_available"   # Page has no build for the target
    WRITE = "write"                   # Final write failed


ERROR_CLASSIFICATION: Dict[ErrorType, ErrorSeverity] = {
    ErrorType.VALIDATION: ErrorSeverity.FATAL,
    ErrorType.CONFIG: ErrorSeverity.FATAL,
    ErrorType.PARSE: ErrorSeverity.FATAL,
    ErrorType.SCHEMA: ErrorSeverity.FATAL,
    ErrorType.WRITE: ErrorSeverity.FATAL,
    ErrorType.TRANSPORT: ErrorSeverity.ISOLATED,
    ErrorType.NOT_AVAILABLE: ErrorSeverity.ISOLATED,
}


def is_fatal(error_type: ErrorType) -> bool:
    """Return True if an error of this type must abort the run."""
    return ERROR_CLASSIFICATION.get(error_type, ErrorSeverity.FATAL) == ErrorSeverity.FATAL


class ArchonUpdaterError(Exception):
    """Base class for run-aborting errors."""

    error_type: ErrorType = ErrorType.VALIDATION

    @property
    def severity(self) -> ErrorSeverity:
        return ERROR_CLASSIFICATION[self.error_type]


class ValidationError(ArchonUpdaterError):
    """Selection contains classes, specs or content that cannot be mapped."""

    error_type = ErrorType.VALIDATION

    def __init__(self, problems: List[str]):
        self.problems = list(problems)
        lines = "\n".join(f"  - {p}" for p in self.problems)
        super().__init__(f"Invalid selection ({len(self.problems)} problem(s)):\n{lines}")


class StoreError(ArchonUpdaterError):
    """Base class for data file errors; always names the file."""

    def __init__(
        self,
        path: Union[str, Path, None],
        message: str,
        cause: Optional[BaseException] = None,
    ):
        self.path = str(path) if path is not None else None
        self.message = message
        self.cause = cause
        text = f"{self.path}: {message}" if self.path else message
        if cause is not None:
            text = f"{text} ({cause})"
        super().__init__(text)


class ParseError(StoreError):
    """Data file could not be read or is not a valid Lua chunk."""
    error_type = ErrorType.PARSE


class SchemaError(StoreError):
    """Data file parsed but does not hold the expected build table."""
    error_type = ErrorType.SCHEMA


class WriteError(StoreError):
    """Serialized document could not be written back."""
    error_type = ErrorType.WRITE
