# meter_import/lib/import_core/payload.py
import base64
import os
import re
from typing import Iterable, Optional, Union

from .errors import ValidationError, ValidationErrorKind
from .models import IMPORT_FORMAT, ImportRequest, UtilityType

IMPORT_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")
CSV_MIME_TYPE = "text/csv"


class FileSelection:
    """
    Holds the file the caller picked last.

    A selection event may deliver several files; only the last one is kept
    and any earlier pending selection is replaced. An empty event changes
    nothing.
    """

    def __init__(self):
        self.current = None

    def select(self, files: Iterable) -> Optional[object]:
        files = list(files)
        if files:
            self.current = files[-1]
        return self.current

    def clear(self) -> None:
        self.current = None


def validate_import_name(import_name: Optional[str]) -> str:
    name = (import_name or "").strip()
    if not name:
        raise ValidationError(ValidationErrorKind.INVALID_NAME, "Please enter an import name.")
    if not IMPORT_NAME_PATTERN.match(name):
        raise ValidationError(
            ValidationErrorKind.INVALID_NAME,
            "The import name may only contain letters, digits and underscores.",
        )
    return name


def coerce_utility_type(utility_type: Union[UtilityType, str]) -> UtilityType:
    try:
        return UtilityType(utility_type)
    except ValueError:
        allowed = ", ".join(t.value for t in UtilityType)
        raise ValidationError(
            ValidationErrorKind.INVALID_TYPE,
            f"Unknown utility type {utility_type!r} (expected one of: {allowed}).",
        ) from None


def read_file_bytes(file) -> bytes:
    """
    Read the whole content of a path or a readable file-like object
    (an open file, io.BytesIO, werkzeug FileStorage, ...).
    """
    try:
        if isinstance(file, (str, os.PathLike)):
            with open(file, "rb") as f:
                return f.read()
        data = file.read()
    except (OSError, ValueError) as e:
        raise ValidationError(
            ValidationErrorKind.READ_FAILURE, f"Could not read the file: {e}"
        ) from e
    if isinstance(data, str):
        data = data.encode("utf-8")
    return data


def encode_data_url(data: bytes, mime_type: str = CSV_MIME_TYPE) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def build_import_request(file, utility_type: Union[UtilityType, str], import_name: str) -> ImportRequest:
    """
    Validate the metadata, read the file and produce the request payload.

    The name is checked before the file is touched, so an invalid name never
    causes a read.
    """
    name = validate_import_name(import_name)
    utype = coerce_utility_type(utility_type)
    content = encode_data_url(read_file_bytes(file))
    return ImportRequest(utility_type=utype, import_name=name, content=content, format=IMPORT_FORMAT)


def display_name(file) -> Optional[str]:
    if file is None:
        return None
    if isinstance(file, (str, os.PathLike)):
        return os.path.basename(os.fspath(file))
    return getattr(file, "filename", None) or getattr(file, "name", None)
