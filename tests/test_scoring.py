"""Tests for confidence scoring and per-source backoff."""

import pytest

from vinscan.observation import BoundingBox, ScanSource, Symbology
from vinscan.scoring import (
    ConfidenceScorer,
    ScoringWeights,
    SourceBackoff,
    SurfaceFeatures,
    passes,
)

HONDA = "1HGCM82633A004352"

LARGE_BOX = BoundingBox(0, 0, 300, 80)
MEDIUM_BOX = BoundingBox(0, 0, 150, 40)
SMALL_BOX = BoundingBox(0, 0, 90, 40)
SHORT_BOX = BoundingBox(0, 0, 150, 20)


# ---------------------------------------------------------------------------
# ConfidenceScorer Tests
# ---------------------------------------------------------------------------


class TestConfidenceScorer:
    """Tests for ConfidenceScorer."""

    @pytest.fixture
    def scorer(self):
        return ConfidenceScorer()

    @pytest.mark.parametrize(
        "symbology,expected",
        [
            (Symbology.CODE_128, 0.95),
            (Symbology.CODE_39, 0.90),
            (Symbology.PDF417, 0.90),
            (Symbology.DATA_MATRIX, 0.85),
            (Symbology.QR_CODE, 0.95),
            (Symbology.EAN_13, 0.80),
            (None, 0.80),
        ],
    )
    def test_barcode_base(self, scorer, symbology, expected):
        assert scorer.score(HONDA, ScanSource.BARCODE, symbology) == pytest.approx(expected)

    def test_ocr_base(self, scorer):
        assert scorer.score(HONDA, ScanSource.OCR, Symbology.OCR) == pytest.approx(0.80)
        assert scorer.score(HONDA, ScanSource.OCR) == pytest.approx(0.80)

    def test_repair_penalty(self, scorer):
        features = SurfaceFeatures(repaired=True)
        result = scorer.score(HONDA, ScanSource.BARCODE, Symbology.CODE_128, features)
        assert result == pytest.approx(0.95 * 0.7)

    def test_ambiguity_penalty(self, scorer):
        features = SurfaceFeatures(substituted=True)
        result = scorer.score(HONDA, ScanSource.OCR, Symbology.OCR, features)
        assert result == pytest.approx(0.64)

    def test_large_box_boost(self, scorer):
        features = SurfaceFeatures(bounding_box=LARGE_BOX)
        result = scorer.score(HONDA, ScanSource.BARCODE, Symbology.CODE_39, features)
        assert result == pytest.approx(0.99)

    def test_boost_is_clamped(self, scorer):
        features = SurfaceFeatures(bounding_box=LARGE_BOX)
        result = scorer.score(HONDA, ScanSource.BARCODE, Symbology.CODE_128, features)
        assert result == 1.0

    @pytest.mark.parametrize("box", [SMALL_BOX, SHORT_BOX])
    def test_small_box_penalty(self, scorer, box):
        features = SurfaceFeatures(bounding_box=box)
        result = scorer.score(HONDA, ScanSource.BARCODE, Symbology.CODE_39, features)
        assert result == pytest.approx(0.81)

    def test_medium_box_neutral(self, scorer):
        features = SurfaceFeatures(bounding_box=MEDIUM_BOX)
        result = scorer.score(HONDA, ScanSource.BARCODE, Symbology.CODE_39, features)
        assert result == pytest.approx(0.90)

    def test_geometry_ignored_for_ocr(self, scorer):
        features = SurfaceFeatures(bounding_box=SMALL_BOX)
        assert scorer.score(HONDA, ScanSource.OCR, Symbology.OCR, features) == pytest.approx(0.80)

    def test_adjustments_multiply(self, scorer):
        features = SurfaceFeatures(repaired=True, substituted=True, bounding_box=SMALL_BOX)
        result = scorer.score(HONDA, ScanSource.BARCODE, Symbology.CODE_39, features)
        assert result == pytest.approx(0.9 * 0.7 * 0.8 * 0.9)

    def test_custom_weights(self):
        scorer = ConfidenceScorer(ScoringWeights(ocr_base=0.65))
        assert scorer.score(HONDA, ScanSource.OCR) == pytest.approx(0.65)

    def test_zero_weight_scores_zero(self):
        scorer = ConfidenceScorer(ScoringWeights(ocr_base=0.0))
        assert scorer.score(HONDA, ScanSource.OCR) == 0.0


class TestThreshold:
    def test_below_threshold(self):
        assert passes(0.65, 0.7) is False

    def test_at_threshold_is_rejected(self):
        assert passes(0.7, 0.7) is False

    def test_above_threshold(self):
        assert passes(0.71, 0.7) is True


# ---------------------------------------------------------------------------
# SourceBackoff Tests
# ---------------------------------------------------------------------------


class TestSourceBackoff:
    """Tests for SourceBackoff."""

    def test_no_change_until_threshold(self):
        backoff = SourceBackoff()
        for _ in range(5):
            assert backoff.record_failure() is None
        assert backoff.zoom_ratio == 1.0

    def test_zoom_steps_and_wraps(self):
        backoff = SourceBackoff()
        for _ in range(5):
            backoff.record_failure()

        assert backoff.record_failure() == pytest.approx(1.2)
        assert backoff.record_failure() == pytest.approx(1.4)
        assert backoff.record_failure() == pytest.approx(1.6)
        assert backoff.record_failure() == pytest.approx(1.0)

    def test_success_resets(self):
        backoff = SourceBackoff()
        for _ in range(7):
            backoff.record_failure()

        backoff.record_success()

        assert backoff.consecutive_failures == 0
        assert backoff.record_failure() is None

    def test_state_is_per_source(self):
        scorer = ConfidenceScorer()
        barcode = scorer.backoff(ScanSource.BARCODE)
        ocr = scorer.backoff(ScanSource.OCR)
        assert barcode is not ocr

        for _ in range(3):
            barcode.record_failure()
            ocr.record_failure()

        scorer.score(HONDA, ScanSource.BARCODE, Symbology.CODE_128)

        assert barcode.consecutive_failures == 0
        assert ocr.consecutive_failures == 3
