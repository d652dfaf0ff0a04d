# meter_import/lib/import_core/errors.py
from enum import Enum


class MeterImportError(Exception):
    """Base class for every failure an import attempt can end with."""

    @property
    def message(self) -> str:
        return str(self)


class ValidationErrorKind(Enum):
    INVALID_NAME = "invalid_name"
    INVALID_TYPE = "invalid_type"
    READ_FAILURE = "read_failure"


class ValidationError(MeterImportError):
    """Raised by the payload builder; never reaches the backend."""

    def __init__(self, kind: ValidationErrorKind, message: str):
        super().__init__(message)
        self.kind = kind


class TransportError(MeterImportError):
    """The channel to the backend failed (error, timeout, disconnect)."""


class BackendError(MeterImportError):
    """The backend answered with an error field."""


class ImportInProgressError(MeterImportError):
    """Another import attempt of the same session has not resolved yet."""


class CSVFormatError(ValueError):
    """The uploaded content could not be turned into meter readings."""
