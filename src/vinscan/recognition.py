"""
VIN text handling for vinscan.

- Normalization: turn a raw recognizer string into VIN-shaped 17-char tokens
- Check digit: North American (ISO 3779 / NHTSA) position-9 check
- Acceptance policy: strict (check digit) or lenient (shape only) per session
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, Optional, Sequence, Tuple
import logging
import re

from .observation import ScanSource

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# VIN constants
# ---------------------------------------------------------------------------

VIN_LENGTH = 17
CHECK_DIGIT_INDEX = 8  # 9th character

# I, O and Q never appear in a VIN
VIN_ALPHABET = "0123456789ABCDEFGHJKLMNPRSTUVWXYZ"
VIN_PATTERN = re.compile(r"^[A-HJ-NPR-Z0-9]{17}$")
LEGAL_RUN_PATTERN = re.compile(r"[A-HJ-NPR-Z0-9]+")

TRANSLITERATION: Dict[str, int] = {
    "A": 1, "B": 2, "C": 3, "D": 4, "E": 5, "F": 6, "G": 7, "H": 8,
    "J": 1, "K": 2, "L": 3, "M": 4, "N": 5, "P": 7, "R": 9,
    "S": 2, "T": 3, "U": 4, "V": 5, "W": 6, "X": 7, "Y": 8, "Z": 9,
}  # fmt: skip

WEIGHTS: Tuple[int, ...] = (8, 7, 6, 5, 4, 3, 2, 10, 0, 9, 8, 7, 6, 5, 4, 3, 2)


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NormalizedToken:
    """A 17-char window extracted from a raw string."""

    value: str
    repaired: bool  # Cut from a longer run, or a barcode prefix was trimmed
    substituted: bool  # Window originally held I/O/Q


# Confusable letters mapped to the digit they are usually misread for
CONFUSION_MAP = str.maketrans({"O": "0", "I": "1", "Q": "0"})

# Separators OCR and barcode payloads put inside a VIN
_SEPARATORS = re.compile(r"[\s:\-]+")

# "VIN" as a word of its own, or glued directly to a 17-char run
_MARKER_WORD = r"\bVIN(?:\b|(?=[A-HJ-NPR-Z0-9]{17}))"
_MARKER_SEARCH = re.compile(_MARKER_WORD, re.IGNORECASE)

# Marker plus any label text in front of it
_MARKER = re.compile(r"^.*?" + _MARKER_WORD + r"\s*[:#]?", re.IGNORECASE)

# Marker at the very start of a barcode payload
_LEADING_MARKER = re.compile(r"^\s*" + _MARKER_WORD + r"\s*[:#]?", re.IGNORECASE)

# Code 39 VIN labels often prefix the payload with "I" (import)
_BARCODE_PREFIX = "IO"


def has_marker(line: str) -> bool:
    return _MARKER_SEARCH.search(line) is not None


def strip_marker(line: str) -> str:
    """Remove the ``VIN`` / ``VIN:`` marker and the label text before it."""
    return _MARKER.sub("", line, count=1)


def select_label_lines(lines: Sequence[str]) -> List[str]:
    """Prefer lines carrying the VIN marker; fall back to every line."""
    marked = [line for line in lines if has_marker(line)]
    return marked or list(lines)


def _clean(line: str) -> str:
    return _SEPARATORS.sub("", line).upper()


def _windows(cleaned: str, repaired: bool) -> Iterator[NormalizedToken]:
    substituted = cleaned.translate(CONFUSION_MAP)
    for match in LEGAL_RUN_PATTERN.finditer(substituted):
        start, end = match.span()
        run_len = end - start
        if run_len < VIN_LENGTH:
            continue
        for i in range(start, end - VIN_LENGTH + 1):
            original = cleaned[i : i + VIN_LENGTH]
            yield NormalizedToken(
                value=substituted[i : i + VIN_LENGTH],
                repaired=repaired or run_len > VIN_LENGTH,
                substituted=any(c in "IOQ" for c in original),
            )


def normalize_tokens(
    raw: str,
    source: Optional[ScanSource] = None,
) -> Iterator[NormalizedToken]:
    """
    Extract every VIN-shaped window from a raw string.

    Text (OCR, or an untagged string) is split into lines; lines carrying
    the ``VIN`` marker are preferred and everything up to the marker is
    stripped.
    Barcode payloads lose a leading marker, and payloads still longer than
    a VIN lose a leading I/O prefix.  Every window of every maximal legal
    run of 17+ characters is yielded, left to right.

    Args:
        raw: Raw recognizer output
        source: Recognizer family (None is handled as label text)

    Yields:
        NormalizedToken for each 17-char window
    """
    if not raw:
        return

    if source is ScanSource.BARCODE:
        lines = [_LEADING_MARKER.sub("", line, count=1) for line in raw.splitlines()]
    else:
        lines = [strip_marker(line) for line in select_label_lines(raw.splitlines())]

    for line in lines:
        cleaned = _clean(line)
        repaired = False

        if source is ScanSource.BARCODE and len(cleaned) > VIN_LENGTH:
            trimmed = cleaned.lstrip(_BARCODE_PREFIX)
            if trimmed != cleaned and len(trimmed) >= VIN_LENGTH:
                cleaned = trimmed
                repaired = True

        yield from _windows(cleaned, repaired)


def normalize(raw: str, source: Optional[ScanSource] = None) -> Iterator[str]:
    """Yield the 17-char candidate strings found in ``raw``."""
    return (token.value for token in normalize_tokens(raw, source))


# ---------------------------------------------------------------------------
# Check digit validation
# ---------------------------------------------------------------------------


def is_vin_shape(token: str) -> bool:
    """17 characters, all from the VIN alphabet."""
    return bool(token) and VIN_PATTERN.fullmatch(token) is not None


def _char_value(c: str) -> int:
    if c.isdigit():
        return int(c)
    return TRANSLITERATION[c]


def calculate_check_digit(token: str) -> str:
    """
    Compute the expected check character for a VIN-shaped token.

    Raises:
        ValueError: if ``token`` is not VIN-shaped
    """
    if not is_vin_shape(token):
        raise ValueError(f"Not a VIN-shaped token: {token!r}")
    total = sum(_char_value(c) * w for c, w in zip(token, WEIGHTS))
    remainder = total % 11
    return "X" if remainder == 10 else str(remainder)


def validate(token: str) -> bool:
    """Strict check: VIN shape and a matching check digit."""
    if not is_vin_shape(token):
        return False
    return token[CHECK_DIGIT_INDEX] == calculate_check_digit(token)


# ---------------------------------------------------------------------------
# Acceptance policy
# ---------------------------------------------------------------------------


class AcceptancePolicy(Enum):
    """How a session decides whether a normalized token is a candidate."""

    STRICT = "strict"  # Shape and check digit
    LENIENT = "lenient"  # Shape only; unverified


def accepts(policy: AcceptancePolicy, token: str) -> bool:
    if policy is AcceptancePolicy.STRICT:
        return validate(token)
    return is_vin_shape(token)
