"""
Confidence scoring for normalized VIN tokens.

A candidate's confidence starts from a base weight for its recognizer
(barcode symbology or OCR) and is scaled by independent surface factors:

- repair: window cut from a longer run, or barcode prefix trimmed
- ambiguity: the window held I/O/Q before substitution
- geometry: barcode bounding box size, when reported
"""

from dataclasses import dataclass, field
from typing import Dict, Optional
import logging

from .observation import BoundingBox, ScanSource, Symbology

log = logging.getLogger(__name__)


@dataclass
class ScoringWeights:
    """Base weights and adjustment factors.

    Args:
        symbology_base: Base confidence per barcode symbology
        default_barcode_base: Base for symbologies not in the table
        ocr_base: Base confidence for OCR-sourced tokens
        repair_factor: Multiplier for repaired tokens
        ambiguity_factor: Multiplier for tokens that needed I/O/Q substitution
        large_box_factor: Multiplier for large, clear barcode detections
        small_box_factor: Multiplier for small, marginal barcode detections
        large_box_min: (width, height) a box must exceed to count as large
        small_box_max: (width, height) below which a box counts as small
    """

    symbology_base: Dict[Symbology, float] = field(
        default_factory=lambda: {
            Symbology.CODE_128: 0.95,
            Symbology.CODE_39: 0.90,
            Symbology.CODE_93: 0.90,
            Symbology.PDF417: 0.90,
            Symbology.DATA_MATRIX: 0.85,
            Symbology.QR_CODE: 0.95,
        }
    )
    default_barcode_base: float = 0.80
    ocr_base: float = 0.80
    repair_factor: float = 0.7
    ambiguity_factor: float = 0.8
    large_box_factor: float = 1.1
    small_box_factor: float = 0.9
    large_box_min: tuple = (200, 50)
    small_box_max: tuple = (100, 25)

    def base(self, source: ScanSource, hint: Optional[Symbology]) -> float:
        if source is ScanSource.OCR or hint is Symbology.OCR:
            return self.ocr_base
        if hint is None:
            return self.default_barcode_base
        return self.symbology_base.get(hint, self.default_barcode_base)

    def geometry_factor(self, box: Optional[BoundingBox]) -> float:
        if box is None:
            return 1.0
        w, h = box.width, box.height
        if w > self.large_box_min[0] and h > self.large_box_min[1]:
            return self.large_box_factor
        if w < self.small_box_max[0] or h < self.small_box_max[1]:
            return self.small_box_factor
        return 1.0


@dataclass(frozen=True)
class SurfaceFeatures:
    """Observable properties of a token beyond its text."""

    repaired: bool = False
    substituted: bool = False
    bounding_box: Optional[BoundingBox] = None


# ---------------------------------------------------------------------------
# Per-source adaptive state
# ---------------------------------------------------------------------------


class SourceBackoff:
    """Zoom backoff for one recognizer, driven by consecutive failures.

    After more than ``max_failures`` failures in a row the suggested zoom
    ratio steps up by ``zoom_step``; once past ``max_zoom`` it wraps back
    to 1.0.  Any scored candidate from the source resets the failure count.
    """

    def __init__(
        self,
        max_failures: int = 5,
        zoom_step: float = 0.2,
        max_zoom: float = 1.5,
    ):
        self.max_failures = max_failures
        self.zoom_step = zoom_step
        self.max_zoom = max_zoom
        self.consecutive_failures = 0
        self.zoom_ratio = 1.0

    def record_failure(self) -> Optional[float]:
        """Count a failed recognition pass.

        Returns:
            New suggested zoom ratio when it changed, None otherwise
        """
        self.consecutive_failures += 1
        if self.consecutive_failures <= self.max_failures:
            return None
        if self.zoom_ratio > self.max_zoom:
            self.zoom_ratio = 1.0
        else:
            self.zoom_ratio = round(self.zoom_ratio + self.zoom_step, 2)
        log.debug(
            "Adjusting zoom to %.1f after %d consecutive failures",
            self.zoom_ratio,
            self.consecutive_failures,
        )
        return self.zoom_ratio

    def record_success(self) -> None:
        self.consecutive_failures = 0


# ---------------------------------------------------------------------------
# Scorer
# ---------------------------------------------------------------------------


class ConfidenceScorer:
    """
    Assigns confidence in (0, 1] to accepted tokens.

    The scorer is stateless apart from one ``SourceBackoff`` per
    ``ScanSource``; use one scorer per session.
    """

    def __init__(self, weights: Optional[ScoringWeights] = None):
        self.weights = weights or ScoringWeights()
        self._backoff: Dict[ScanSource, SourceBackoff] = {
            source: SourceBackoff() for source in ScanSource
        }

    def backoff(self, source: ScanSource) -> SourceBackoff:
        return self._backoff[source]

    def score(
        self,
        token: str,
        source: ScanSource,
        recognizer_hint: Optional[Symbology] = None,
        features: Optional[SurfaceFeatures] = None,
    ) -> float:
        """
        Score a token.

        Args:
            token: Normalized 17-char token
            source: Recognizer family
            recognizer_hint: Barcode symbology, or OCR
            features: Repair/substitution flags and barcode geometry

        Returns:
            Confidence clamped to at most 1.0; 0.0 means reject
        """
        features = features or SurfaceFeatures()
        w = self.weights

        confidence = w.base(source, recognizer_hint)
        if features.repaired:
            confidence *= w.repair_factor
        if features.substituted:
            confidence *= w.ambiguity_factor
        if source is ScanSource.BARCODE:
            confidence *= w.geometry_factor(features.bounding_box)

        confidence = max(0.0, min(1.0, confidence))
        if confidence > 0.0:
            self._backoff[source].record_success()
        log.debug("Scored %s (%s) at %.3f", token, source.value, confidence)
        return confidence


def passes(confidence: float, min_confidence: float) -> bool:
    """Candidates at or below the session threshold are discarded."""
    return confidence > min_confidence
