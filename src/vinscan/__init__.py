"""
vinscan - VIN extraction from noisy recognizer output

Validates, normalizes, scores and votes over the raw strings produced by
barcode decoders and OCR, and decides on one check-digit-verified VIN.
"""

__version__ = "0.1.0"

from .exceptions import InvalidConfigurationError, SessionTerminatedError, VinScanError
from .observation import BoundingBox, RawObservation, ScanSource, Symbology, TextLine
from .recognition import (
    AcceptancePolicy,
    accepts,
    calculate_check_digit,
    is_vin_shape,
    normalize,
    normalize_tokens,
    validate,
)
from .scoring import ConfidenceScorer, ScoringWeights, SourceBackoff, SurfaceFeatures
from .session import (
    PRESETS,
    ScanSession,
    SessionConfig,
    SessionState,
    cancel,
    start_session,
    submit,
)
from .voting import Candidate, Decision, SampleAggregator

__all__ = [
    "__version__",
    # Errors
    "VinScanError",
    "InvalidConfigurationError",
    "SessionTerminatedError",
    # Observations
    "BoundingBox",
    "RawObservation",
    "ScanSource",
    "Symbology",
    "TextLine",
    # Recognition
    "AcceptancePolicy",
    "accepts",
    "calculate_check_digit",
    "is_vin_shape",
    "normalize",
    "normalize_tokens",
    "validate",
    # Scoring
    "ConfidenceScorer",
    "ScoringWeights",
    "SourceBackoff",
    "SurfaceFeatures",
    # Voting
    "Candidate",
    "Decision",
    "SampleAggregator",
    # Sessions
    "PRESETS",
    "ScanSession",
    "SessionConfig",
    "SessionState",
    "start_session",
    "submit",
    "cancel",
]
