# meter_import/lib/import_core/csv_parser.py
import base64
import binascii
import csv
import logging
import re
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from .errors import CSVFormatError
from .models import MeterReading, UtilityType

logger = logging.getLogger(__name__)

SEPARATORS = [";", ",", "|", "\t"]

DATE_HEADERS = ["date", "datum", "zeit", "timestamp", "zeitstempel", "day", "tag", "ablesedatum"]
VALUE_HEADERS = [
    "value", "wert", "reading", "zählerstand", "stand", "verbrauch", "amount", "kwh",
    "m³", "m3", "ablesewert", "wasserstand", "gasstand", "stromstand", "kaltwasser",
    "warmwasser", "energie",
]
# column names used by German meter exports
MEDIA_TERMS = {
    UtilityType.GAS: "gas",
    UtilityType.WATER: "wasser",
    UtilityType.ELECTRICITY: "strom",
    UtilityType.PV: "pv",
}

_LEADING_FLOAT = re.compile(r"^\s*[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?")
_GERMAN_DATE = re.compile(
    r"^(\d{1,2})\.(\d{1,2})\.(\d{2,4})(?:[ T,]+(\d{1,2}):(\d{2})(?::(\d{2}))?)?$"
)
_SLASH_FORMATS = ["%Y/%m/%d", "%Y/%m/%d %H:%M", "%Y/%m/%d %H:%M:%S"]


def decode_content(content: str) -> str:
    """
    Content arrives either as a data URL ('data:text/csv;base64,...') or as
    plain CSV text.
    """
    if content.startswith("data:") and "base64," in content:
        payload = content.split("base64,", 1)[1]
        try:
            raw = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError):
            raise CSVFormatError("The file content is not valid base64.") from None
        try:
            return raw.decode("utf-8-sig")
        except UnicodeDecodeError:
            raise CSVFormatError("The file is not UTF-8 encoded.") from None
    return content


def _leading_float(text: str) -> Optional[float]:
    match = _LEADING_FLOAT.match(text)
    return float(match.group(0)) if match else None


def ensure_number(text: str) -> float:
    """'12,5' -> 12.5, unparsable -> 0.0"""
    if not text:
        return 0.0
    value = _leading_float(text.replace(",", ".", 1))
    return value if value is not None else 0.0


def _naive_utc(ts: datetime) -> datetime:
    if ts.tzinfo is not None:
        return ts.astimezone(timezone.utc).replace(tzinfo=None)
    return ts


def parse_timestamp(text: str) -> Optional[datetime]:
    """
    Accepts ISO 8601 (trailing Z allowed), DD.MM.YYYY [HH:MM[:SS]],
    YYYY/MM/DD [HH:MM[:SS]] and millisecond Unix timestamps.
    Returns a naive UTC datetime or None.
    """
    text = (text or "").strip()
    if not text:
        return None

    match = _GERMAN_DATE.match(text)
    if match:
        day, month, year, hour, minute, second = match.groups()
        year = int(year)
        if year < 100:
            year += 2000
        try:
            return datetime(year, int(month), int(day), int(hour or 0), int(minute or 0), int(second or 0))
        except ValueError:
            return None

    if text.isdigit():
        if len(text) <= 10:
            return None
        try:
            return datetime.fromtimestamp(int(text) / 1000, tz=timezone.utc).replace(tzinfo=None)
        except (OverflowError, OSError, ValueError):
            return None

    try:
        return _naive_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        pass

    for fmt in _SLASH_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def _rows(lines: List[str], separator: str) -> List[List[str]]:
    # quoted fields may contain the separator, e.g. "12,5" in a comma file
    reader = csv.reader(lines, delimiter=separator, skipinitialspace=True)
    return [[c.strip() for c in row] for row in reader]


def detect_separator(lines: List[str]) -> str:
    """Pick the separator producing the most columns over the first five lines."""
    best, best_cols = SEPARATORS[0], 0
    for sep in SEPARATORS:
        total = sum(len(row) for row in _rows(lines[:5], sep))
        if total > best_cols:
            best, best_cols = sep, total
    return best


def find_columns(headers: List[str], utility_type: UtilityType) -> Tuple[int, int]:
    """Return (date_index, value_index) based on the header names."""

    def first_match(terms):
        for i, header in enumerate(headers):
            if any(term in header for term in terms):
                return i
        return -1

    date_idx = first_match(DATE_HEADERS)
    value_idx = first_match(VALUE_HEADERS)
    if value_idx == -1:
        value_idx = first_match([MEDIA_TERMS[utility_type]])

    if date_idx == -1:
        date_idx = 0
    if value_idx == -1:
        value_idx = 1
    return date_idx, value_idx


def _first_line_is_data(headers: List[str], first_cols: List[str], date_idx: int, value_idx: int) -> bool:
    value_text = first_cols[value_idx] if value_idx < len(first_cols) else ""
    date_text = first_cols[date_idx] if date_idx < len(first_cols) else ""
    looks_like_data = _leading_float(value_text) is not None or ":" in date_text
    if not looks_like_data:
        return False
    terms = DATE_HEADERS + VALUE_HEADERS
    has_header_text = any(term in h and len(h) > 2 for h in headers for term in terms)
    return not has_header_text


def parse_readings(csv_text: str, utility_type: UtilityType) -> List[MeterReading]:
    """
    Parse meter export CSV text into readings.

    The separator and the date/value columns are detected from the content.
    Rows without a valid timestamp or with a value <= 0 are dropped.
    """
    lines = [line for line in csv_text.splitlines() if line.strip()]
    if len(lines) < 2:
        raise CSVFormatError("The file is empty or contains too little data.")

    try:
        separator = detect_separator(lines)
        rows = _rows(lines, separator)
    except csv.Error as e:
        raise CSVFormatError(f"The file could not be read as CSV: {e}") from None
    headers = [h.lower() for h in rows[0]]
    date_idx, value_idx = find_columns(headers, utility_type)

    logger.info(
        "Found headers [%s], date column %r (%d), value column %r (%d), separator %r",
        " | ".join(headers),
        headers[date_idx] if date_idx < len(headers) else None, date_idx,
        headers[value_idx] if value_idx < len(headers) else None, value_idx,
        separator,
    )

    start = 1
    if _first_line_is_data(headers, rows[0], date_idx, value_idx):
        logger.info("First line appears to be data, including it")
        start = 0

    readings = []
    for columns in rows[start:]:
        if len(columns) <= max(date_idx, value_idx):
            continue
        timestamp = parse_timestamp(columns[date_idx])
        value = ensure_number(columns[value_idx])
        if timestamp is not None and value > 0:
            readings.append(MeterReading(timestamp=timestamp, value=value))

    if not readings:
        logger.warning("No valid data found. Headers: %s, first data line: %s", "|".join(headers), lines[1])
        raise CSVFormatError(
            "No valid data points found. Make sure the file has a date and a value column."
        )
    return readings
