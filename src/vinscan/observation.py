"""Observations handed to the engine by external recognizers.

Classes:
    ScanSource      - Which kind of recognizer produced a string
    Symbology       - Recognizer hint (barcode format, or OCR)
    BoundingBox     - Pixel box of a barcode detection
    TextLine        - One OCR line with its corner points
    RawObservation  - A single raw string plus its source tag
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence, Tuple

import numpy as np


class ScanSource(Enum):
    """Recognizer family."""

    BARCODE = "barcode"
    OCR = "ocr"


class Symbology(Enum):
    """Recognizer hint: barcode format, or ``OCR`` for text recognition."""

    CODE_128 = "code128"
    CODE_39 = "code39"
    CODE_93 = "code93"
    PDF417 = "pdf417"
    DATA_MATRIX = "data_matrix"
    QR_CODE = "qr_code"
    EAN_13 = "ean13"
    OCR = "ocr"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned detection box in pixels (x1, y1) - (x2, y2)."""

    x1: int
    y1: int
    x2: int
    y2: int

    @property
    def width(self) -> int:
        return self.x2 - self.x1

    @property
    def height(self) -> int:
        return self.y2 - self.y1


@dataclass(frozen=True)
class TextLine:
    """One line of recognized text.

    Args:
        text: Line text as returned by the recognizer.
        corner_points: Four (x, y) points clockwise from top-left, or None
            when the recognizer did not report geometry.
    """

    text: str
    corner_points: Optional[Tuple[Tuple[float, float], ...]] = None

    # Lines tilted more than this (degrees) are not treated as label text
    MAX_TILT_DEG = 10.0

    def tilt_degrees(self) -> Optional[float]:
        """Angle of the left edge (top-left -> bottom-left) against vertical."""
        if not self.corner_points or len(self.corner_points) < 4:
            return None
        pts = np.asarray(self.corner_points, dtype=float)
        dx, dy = pts[3] - pts[0]
        # 0 for an upright left edge, +/-90 for text running vertically
        return float(np.degrees(np.arctan2(dx, dy)))

    def is_horizontal(self) -> bool:
        """True when the line reads left to right within ``MAX_TILT_DEG``."""
        tilt = self.tilt_degrees()
        if tilt is None:
            return False
        return -self.MAX_TILT_DEG <= tilt <= self.MAX_TILT_DEG


@dataclass(frozen=True)
class RawObservation:
    """A raw string from one recognizer, consumed once by a session.

    ``raw_confidence`` is the recognizer's own score.  It is carried for the
    caller's diagnostics only; confidence is always computed by the scorer.
    """

    text: str
    source: ScanSource
    recognizer_hint: Optional[Symbology] = None
    observed_at: float = field(default_factory=time.monotonic)
    bounding_box: Optional[BoundingBox] = None
    raw_confidence: Optional[float] = None

    @classmethod
    def from_barcode(
        cls,
        text: str,
        symbology: Symbology = Symbology.UNKNOWN,
        bounding_box: Optional[BoundingBox] = None,
        **kwargs,
    ) -> "RawObservation":
        return cls(
            text=text,
            source=ScanSource.BARCODE,
            recognizer_hint=symbology,
            bounding_box=bounding_box,
            **kwargs,
        )

    @classmethod
    def from_text_lines(
        cls,
        lines: Sequence[TextLine],
        **kwargs,
    ) -> "RawObservation":
        """Join the horizontal OCR lines of a frame into one observation.

        Lines without geometry are kept; tilted lines are dropped.
        """
        kept = [
            line.text
            for line in lines
            if line.corner_points is None or line.is_horizontal()
        ]
        return cls(
            text="\n".join(kept),
            source=ScanSource.OCR,
            recognizer_hint=Symbology.OCR,
            **kwargs,
        )
