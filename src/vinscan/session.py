"""Scanning sessions: Normalizer -> policy check -> Scorer -> Aggregator.

A session goes IDLE -> ACTIVE -> TERMINATED exactly once.  It terminates
when the aggregator decides or when the caller cancels; a new session is
needed to scan again.

Classes:
    SessionConfig  - Capacity, acceptance policy, threshold and scoring weights
    SessionState   - IDLE / ACTIVE / TERMINATED
    ScanSession    - Drives observations through the pipeline

Functions:
    start_session  - Create and start a session
    submit         - Feed one observation to a session
    cancel         - Terminate a session without a decision
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from .exceptions import InvalidConfigurationError, SessionTerminatedError, VinScanError
from .observation import RawObservation, ScanSource, Symbology
from .recognition import AcceptancePolicy, accepts, normalize_tokens
from .scoring import ConfidenceScorer, ScoringWeights, SurfaceFeatures, passes
from .voting import Candidate, Decision, SampleAggregator, VoteTally

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass
class SessionConfig:
    """Per-session engine parameters.

    Args:
        capacity: Accepted samples to collect before deciding
        policy: STRICT (check digit) or LENIENT (shape only)
        min_confidence: Candidates scoring at or below this are dropped
        weights: Scoring table and adjustment factors
    """

    capacity: int = 15
    policy: AcceptancePolicy = AcceptancePolicy.STRICT
    min_confidence: float = 0.7
    weights: ScoringWeights = field(default_factory=ScoringWeights)

    def __post_init__(self):
        if isinstance(self.policy, str):
            try:
                self.policy = AcceptancePolicy(self.policy.lower())
            except ValueError:
                raise InvalidConfigurationError(
                    f"Unknown acceptance policy: {self.policy!r}"
                ) from None
        if not isinstance(self.policy, AcceptancePolicy):
            raise InvalidConfigurationError(
                f"policy must be strict or lenient, got {self.policy!r}"
            )
        if isinstance(self.capacity, bool) or not isinstance(self.capacity, int):
            raise InvalidConfigurationError(
                f"capacity must be an integer, got {self.capacity!r}"
            )
        if self.capacity <= 0:
            raise InvalidConfigurationError(
                f"capacity must be positive, got {self.capacity}"
            )
        if isinstance(self.min_confidence, bool) or not isinstance(
            self.min_confidence, (int, float)
        ):
            raise InvalidConfigurationError(
                f"min_confidence must be a number, got {self.min_confidence!r}"
            )
        if not 0.0 < self.min_confidence <= 1.0:
            raise InvalidConfigurationError(
                f"min_confidence must be in (0, 1], got {self.min_confidence}"
            )

    @classmethod
    def from_preset(cls, name: str, **overrides) -> "SessionConfig":
        """Build a config from a named preset, with keyword overrides."""
        try:
            preset = PRESETS[name]
        except (KeyError, TypeError):
            raise InvalidConfigurationError(
                f"Unknown preset {name!r}; choose from {sorted(PRESETS)}"
            ) from None
        return replace(preset, **overrides) if overrides else replace(preset)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionConfig":
        """
        Build a config from a plain mapping (e.g. parsed JSON).

        Recognized keys: ``preset``, ``capacity``, ``policy``,
        ``min_confidence`` and ``weights``.  ``weights`` may override any
        ScoringWeights field; ``symbology_base`` is keyed by symbology value
        (``"code128"``, ``"qr_code"``, ...).
        """
        data = dict(data)
        base = cls.from_preset(data.pop("preset")) if "preset" in data else cls()

        weights = base.weights
        if "weights" in data:
            weights = _weights_from_dict(base.weights, data.pop("weights"))

        known = {f.name for f in fields(cls)} - {"weights"}
        unknown = set(data) - known
        if unknown:
            raise InvalidConfigurationError(f"Unknown config keys: {sorted(unknown)}")

        return replace(base, weights=weights, **data)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "SessionConfig":
        """Load a JSON config file."""
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise InvalidConfigurationError(f"Cannot read config {path}: {e}") from e
        if not isinstance(data, dict):
            raise InvalidConfigurationError(f"Config {path} must hold a JSON object")
        return cls.from_dict(data)


_BOX_KEYS = ("large_box_min", "small_box_max")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _weights_from_dict(base: ScoringWeights, data: Any) -> ScoringWeights:
    if not isinstance(data, dict):
        raise InvalidConfigurationError(f"weights must be an object, got {data!r}")

    unknown = set(data) - {f.name for f in fields(ScoringWeights)}
    if unknown:
        raise InvalidConfigurationError(f"Unknown weight keys: {sorted(unknown)}")

    overrides: Dict[str, Any] = {}
    for key, value in data.items():
        if key == "symbology_base":
            if not isinstance(value, dict):
                raise InvalidConfigurationError(
                    f"symbology_base must be an object, got {value!r}"
                )
            table = dict(base.symbology_base)
            for name, weight in value.items():
                try:
                    symbology = Symbology(name)
                except ValueError:
                    raise InvalidConfigurationError(
                        f"Unknown symbology {name!r}"
                    ) from None
                if not _is_number(weight):
                    raise InvalidConfigurationError(
                        f"Weight for {name} must be a number, got {weight!r}"
                    )
                table[symbology] = float(weight)
            overrides[key] = table
        elif key in _BOX_KEYS:
            if (
                not isinstance(value, (list, tuple))
                or len(value) != 2
                or not all(_is_number(v) for v in value)
            ):
                raise InvalidConfigurationError(
                    f"{key} must be a [width, height] pair, got {value!r}"
                )
            overrides[key] = tuple(value)
        elif _is_number(value):
            overrides[key] = float(value)
        else:
            raise InvalidConfigurationError(f"{key} must be a number, got {value!r}")

    return replace(base, **overrides)


# The scanner variants this engine replaces differ only in these settings
PRESETS: Dict[str, SessionConfig] = {
    # Vote across 15 verified samples
    "vote": SessionConfig(capacity=15, policy=AcceptancePolicy.STRICT, min_confidence=0.7),
    # First verified candidate wins
    "first": SessionConfig(capacity=1, policy=AcceptancePolicy.STRICT, min_confidence=0.5),
    # Label scanning without check digit (older, non-North-American VINs)
    "vote-lenient": SessionConfig(
        capacity=15, policy=AcceptancePolicy.LENIENT, min_confidence=0.7
    ),
    "first-lenient": SessionConfig(
        capacity=1, policy=AcceptancePolicy.LENIENT, min_confidence=0.5
    ),
}


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class SessionState(Enum):
    IDLE = "idle"
    ACTIVE = "active"
    TERMINATED = "terminated"


class ScanSession:
    """
    One bounded scanning attempt.

    Observations may be submitted from several recognizer threads; the
    aggregator serializes buffer updates and the session lock serializes
    state transitions, so at most one Decision is ever produced.

    Args:
        config: Engine parameters (defaults to SessionConfig())
        session_id: Identifier used in logs and the decision log
    """

    def __init__(
        self,
        config: Optional[SessionConfig] = None,
        session_id: Optional[str] = None,
    ):
        self.config = config or SessionConfig()
        self.session_id = session_id or uuid.uuid4().hex[:8]
        self.scorer = ConfidenceScorer(self.config.weights)
        self.aggregator = SampleAggregator(self.config.capacity)
        self.state = SessionState.IDLE
        self.decision: Optional[Decision] = None
        self._lock = threading.Lock()

        # Stats
        self.stats = {
            "observations": 0,
            "tokens": 0,
            "policy_rejected": 0,
            "threshold_rejected": 0,
        }

    # -- lifecycle ---------------------------------------------------------

    def start(self) -> "ScanSession":
        with self._lock:
            if self.state is SessionState.TERMINATED:
                raise SessionTerminatedError(
                    f"Session {self.session_id} already terminated; start a new one",
                    session_id=self.session_id,
                )
            if self.state is SessionState.ACTIVE:
                return self
            self.state = SessionState.ACTIVE

        log.info(
            "Session %s started (capacity=%d, policy=%s, min_confidence=%.2f)",
            self.session_id,
            self.config.capacity,
            self.config.policy.value,
            self.config.min_confidence,
        )
        return self

    def cancel(self) -> bool:
        """Terminate without a decision.

        Returns:
            True if the session was active
        """
        self.aggregator.cancel()
        with self._lock:
            was_active = self.state is SessionState.ACTIVE
            if self.state is not SessionState.TERMINATED:
                self.state = SessionState.TERMINATED
        if was_active:
            log.info("Session %s cancelled", self.session_id)
        return was_active

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.ACTIVE

    # -- pipeline ----------------------------------------------------------

    def candidates(self, observation: RawObservation) -> List[Candidate]:
        """Run one observation through normalization, policy and scoring.

        Rejections are logged at debug level and dropped.
        """
        self._count("observations")
        found: List[Candidate] = []

        for token in normalize_tokens(observation.text, observation.source):
            self._count("tokens")

            if not accepts(self.config.policy, token.value):
                self._count("policy_rejected")
                log.debug(
                    "Rejected %s: fails %s policy", token.value, self.config.policy.value
                )
                continue

            confidence = self.scorer.score(
                token.value,
                observation.source,
                observation.recognizer_hint,
                SurfaceFeatures(
                    repaired=token.repaired,
                    substituted=token.substituted,
                    bounding_box=observation.bounding_box,
                ),
            )
            if not passes(confidence, self.config.min_confidence):
                self._count("threshold_rejected")
                log.debug(
                    "Rejected %s: confidence %.3f <= %.2f",
                    token.value,
                    confidence,
                    self.config.min_confidence,
                )
                continue

            found.append(
                Candidate(
                    vin=token.value,
                    source=observation.source,
                    confidence=confidence,
                    observed_at=observation.observed_at,
                    symbology=observation.recognizer_hint,
                )
            )

        return found

    def _count(self, key: str) -> None:
        with self._lock:
            self.stats[key] += 1

    def _check_active(self) -> None:
        if self.state is SessionState.IDLE:
            raise VinScanError(f"Session {self.session_id} has not been started")
        if self.state is SessionState.TERMINATED:
            raise SessionTerminatedError(
                f"Session {self.session_id} is closed", session_id=self.session_id
            )

    def _offer(self, candidates: Iterable[Candidate]) -> Optional[Decision]:
        for candidate in candidates:
            decision = self.aggregator.accept(candidate)
            if decision is not None:
                with self._lock:
                    self.decision = decision
                    self.state = SessionState.TERMINATED
                return decision
            if not self.aggregator.active:
                break
        return None

    def submit(self, observation: RawObservation) -> Optional[Decision]:
        """
        Feed one observation to the session.

        Returns:
            The Decision if this observation completed the session, else None

        Raises:
            SessionTerminatedError: the session already decided or was cancelled
        """
        self._check_active()
        return self._offer(self.candidates(observation))

    def submit_frame(self, observations: Iterable[RawObservation]) -> Optional[Decision]:
        """
        Feed everything recognized in one camera frame.

        Barcodes win: only the highest-confidence barcode candidate of the
        frame is submitted, and OCR observations are used only when no
        barcode in the frame produced a candidate.
        """
        self._check_active()
        observations = list(observations)

        barcode: List[Candidate] = []
        for obs in observations:
            if obs.source is ScanSource.BARCODE:
                barcode.extend(self.candidates(obs))

        if barcode:
            best = max(barcode, key=lambda c: c.confidence)
            return self._offer([best])

        for obs in observations:
            if obs.source is ScanSource.OCR:
                decision = self._offer(self.candidates(obs))
                if decision is not None or not self.aggregator.active:
                    return decision
        return None

    def report_failure(self, source: ScanSource) -> Optional[float]:
        """Record a recognizer failure; returns a new zoom ratio suggestion, if any."""
        return self.scorer.backoff(source).record_failure()

    def tally(self) -> List[VoteTally]:
        return self.aggregator.tally()

    def get_stats(self) -> Dict[str, int]:
        """Get pipeline statistics."""
        with self._lock:
            stats = dict(self.stats)
        stats["buffered"] = len(self.aggregator)
        return stats


# ---------------------------------------------------------------------------
# Module-level API
# ---------------------------------------------------------------------------


def start_session(
    capacity: int = 15,
    policy: Union[AcceptancePolicy, str] = AcceptancePolicy.STRICT,
    min_confidence: float = 0.7,
    weights: Optional[ScoringWeights] = None,
    session_id: Optional[str] = None,
) -> ScanSession:
    """
    Create and start a session.

    Raises:
        InvalidConfigurationError: capacity <= 0 or min_confidence outside (0, 1]
    """
    config = SessionConfig(
        capacity=capacity,
        policy=policy,
        min_confidence=min_confidence,
        weights=weights or ScoringWeights(),
    )
    return ScanSession(config, session_id=session_id).start()


def submit(handle: ScanSession, observation: RawObservation) -> Optional[Decision]:
    return handle.submit(observation)


def cancel(handle: ScanSession) -> None:
    handle.cancel()
