"""Canonical forms for heterogeneous cell text.

Every function here is total: unparseable input gives ``None`` (or an empty
string for the key-style normalizers), never an exception.
"""

from __future__ import annotations

import math
import re
from typing import NamedTuple, Optional

NUMBER_PATTERN = r"[-+]?\d+(?:[.,]\d+)*(?:[eE][-+]?\d+)?"
NUMBER_RE = re.compile(NUMBER_PATTERN)
DIMENSION_SEPARATOR = r"\s*[×xX*/]\s*"
LENGTH_UNIT = r"(?:(?:mm|cm|dm|m)\b)"
# "L 120 mm x B 80 mm x H 60 mm"
DIMENSION_LABEL = r"(?:[LBHTWD]\s*[:=]?\s*)?"
DIMENSIONS_RE = re.compile(
    rf"({NUMBER_PATTERN})\s*{LENGTH_UNIT}?"
    rf"{DIMENSION_SEPARATOR}{DIMENSION_LABEL}({NUMBER_PATTERN})\s*{LENGTH_UNIT}?"
    rf"(?:{DIMENSION_SEPARATOR}{DIMENSION_LABEL}({NUMBER_PATTERN}))?"
)
LENGTH_UNIT_RE = re.compile(r"(?<![A-Za-z])(mm|cm|dm|m)(?![A-Za-z])")
GROUPED_THOUSANDS_RE = re.compile(r"\d{1,3}(?:\.\d{3})+")
WEIGHT_RE = re.compile(rf"({NUMBER_PATTERN})\s*([^\W\d_]+)?")

WEIGHT_UNITS_TO_KG = {
    "kg": 1.0,
    "kilo": 1.0,
    "kilogramm": 1.0,
    "kilogram": 1.0,
    "g": 0.001,
    "gr": 0.001,
    "gramm": 0.001,
    "gram": 0.001,
    "mg": 0.000001,
    "milligramm": 0.000001,
    "t": 1000.0,
    "tonne": 1000.0,
    "tonnen": 1000.0,
    "lb": 0.45359237,
    "lbs": 0.45359237,
}
LENGTH_UNITS_TO_MM = {"mm": 1, "cm": 10, "dm": 100, "m": 1000}

CLASSIFICATION_NONE_RE = re.compile(r"\b(ohne|keine?|none|nicht\s+klassifiziert|unklassifiziert)\b", re.IGNORECASE)
CLASSIFICATION_CLASS_RE = re.compile(r"\b(?:klasse|class|kat(?:egorie)?|category|stufe|level|k)\s*[-:]?\s*([123])\b", re.IGNORECASE)
CLASSIFICATION_BARE_RE = re.compile(r"^\s*([123])\s*$")


class Dimensions(NamedTuple):
    length: Optional[float]
    width: Optional[float]
    height: Optional[float]

    def member(self, kind: str) -> Optional[float]:
        return getattr(self, kind)


NO_DIMENSIONS = Dimensions(None, None, None)


def _to_float(raw: str) -> Optional[float]:
    cleaned = raw.strip().replace(" ", "").replace("\u00a0", "")
    if not cleaned:
        return None
    if "," in cleaned and "." in cleaned:
        # the right-most separator is the decimal mark
        if cleaned.rfind(",") > cleaned.rfind("."):
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif cleaned.count(",") == 1:
        cleaned = cleaned.replace(",", ".")
    elif cleaned.count(".") > 1:
        cleaned = cleaned.replace(".", "")
    try:
        value = float(cleaned)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def parse_number(value) -> Optional[float]:
    """Parse a decimal-comma or decimal-point number, ``None`` if not a number."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    return _to_float(str(value))


def parse_weight(value) -> Optional[float]:
    """Return the weight in kilograms; bare numbers are taken as kilograms."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return parse_number(value)
    match = WEIGHT_RE.search(str(value))
    if not match:
        return None
    magnitude = _to_float(match.group(1))
    if magnitude is None:
        return None
    factor = WEIGHT_UNITS_TO_KG.get((match.group(2) or "kg").casefold())
    if factor is None:
        # "5 Stück" or an unknown unit must not be read as kilograms
        return None
    return magnitude * factor


def _dimension_float(raw: str, factor: int) -> Optional[float]:
    # millimetre figures use "." only for grouping: "1.200" is 1200
    if factor == 1 and GROUPED_THOUSANDS_RE.fullmatch(raw.strip()):
        raw = raw.replace(".", "")
    return _to_float(raw)


def parse_dimensions(value) -> Dimensions:
    """Split ``L x B x H`` text into a :class:`Dimensions` triple in millimetres.

    The first number is the length, the second the width, the third the
    height. Members that are not present are ``None``. A trailing length unit
    (mm, cm, dm, m) scales all members; without a unit millimetres are assumed.
    Members may carry a one-letter label (``L 120 mm x B 80 mm x H 60 mm``).
    """
    if value is None or isinstance(value, bool):
        return NO_DIMENSIONS
    if isinstance(value, (int, float)):
        return Dimensions(parse_number(value), None, None)
    raw = str(value)
    match = DIMENSIONS_RE.search(raw)
    if match:
        groups = list(match.groups())
        tail = raw[match.start():]
    else:
        single = NUMBER_RE.search(raw)
        if not single:
            return NO_DIMENSIONS
        groups = [single.group(0), None, None]
        tail = raw[single.start():]
    units = LENGTH_UNIT_RE.findall(tail)
    factor = LENGTH_UNITS_TO_MM[units[-1].lower()] if units else 1
    members = [_dimension_float(group, factor) if group else None for group in groups]
    return Dimensions(*(member * factor if member is not None else None for member in members))


def normalize_part_number(value) -> str:
    if value is None:
        return ""
    return "".join(ch for ch in str(value).casefold() if ch.isalnum())


def normalize_composite_code(value) -> str:
    if value is None:
        return ""
    segments = [segment.strip().upper() for segment in str(value).split("/")]
    return "/".join(segments) if any(segments) else ""


def code_segments(value) -> list[str]:
    normalized = normalize_composite_code(value)
    return normalized.split("/") if normalized else []


def map_classification_to_code(value) -> Optional[str]:
    """Map a free-text classification label to a first-segment code value.

    Returns ``None`` when no rule matches.
    """
    if value is None:
        return None
    label = " ".join(str(value).split())
    if not label:
        return None
    if label.upper() == "OHNE" or CLASSIFICATION_NONE_RE.search(label):
        return "OHNE"
    bare = CLASSIFICATION_BARE_RE.match(label)
    if bare:
        return bare.group(1)
    klass = CLASSIFICATION_CLASS_RE.search(label)
    if klass:
        return klass.group(1)
    segments = code_segments(label)
    if len(segments) == 5 and segments[0] in {"OHNE", "1", "2", "3"}:
        return segments[0]
    return None


def normalize_text(value) -> str:
    if value is None:
        return ""
    return " ".join(str(value).split()).casefold()
