"""
Multi-sample voting over accepted VIN candidates.

The aggregator keeps a bounded, arrival-ordered buffer.  Filling it is the
only stopping condition: the sample that reaches ``capacity`` triggers the
one and only Decision of the session.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional
import logging
import threading

from .observation import ScanSource, Symbology
from .recognition import is_vin_shape

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Candidate:
    """An accepted, scored VIN sample."""

    vin: str
    source: ScanSource
    confidence: float  # (0, 1]
    observed_at: float
    symbology: Optional[Symbology] = None

    def __post_init__(self):
        if not is_vin_shape(self.vin):
            raise ValueError(f"Candidate VIN is not VIN-shaped: {self.vin!r}")
        if not 0.0 < self.confidence <= 1.0:
            raise ValueError(f"Candidate confidence out of range: {self.confidence}")


@dataclass(frozen=True)
class Decision:
    """Terminal result of a session."""

    vin: str
    evidence_count: int  # Buffered samples agreeing on vin
    mean_confidence: float


@dataclass
class VoteTally:
    """Per-VIN summary of the buffer."""

    vin: str
    count: int
    mean_confidence: float
    first_seen: float

    @property
    def score(self) -> float:
        return self.count * self.mean_confidence


def tally(candidates: List[Candidate]) -> List[VoteTally]:
    """Group candidates by VIN, in order of first arrival."""
    counts: Dict[str, int] = {}
    confidence_sums: Dict[str, float] = {}
    first_seen: Dict[str, float] = {}

    for c in candidates:
        if c.vin not in counts:
            counts[c.vin] = 0
            confidence_sums[c.vin] = 0.0
            first_seen[c.vin] = c.observed_at
        counts[c.vin] += 1
        confidence_sums[c.vin] += c.confidence
        first_seen[c.vin] = min(first_seen[c.vin], c.observed_at)

    return [
        VoteTally(
            vin=vin,
            count=counts[vin],
            mean_confidence=confidence_sums[vin] / counts[vin],
            first_seen=first_seen[vin],
        )
        for vin in counts
    ]


def select_winner(candidates: List[Candidate]) -> Optional[Decision]:
    """
    Pick the VIN with the highest ``count * mean(confidence)``.

    Ties go to the group holding the earliest observation.  Returns None for
    an empty list.
    """
    groups = tally(candidates)
    if not groups:
        return None

    best_score = max(g.score for g in groups)
    tied = [g for g in groups if g.score == best_score]
    winner = min(tied, key=lambda g: g.first_seen)

    return Decision(
        vin=winner.vin,
        evidence_count=winner.count,
        mean_confidence=winner.mean_confidence,
    )


class SampleAggregator:
    """
    Bounded sample buffer with a single stopping condition.

    ``accept`` is serialized with a lock so that two recognizers feeding the
    same session can never overfill the buffer or produce two decisions.

    Args:
        capacity: Samples to collect before deciding (1 = first valid wins)
    """

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self.buffer: List[Candidate] = []
        self.active = True
        self.decision: Optional[Decision] = None
        self._lock = threading.Lock()

    def accept(self, candidate: Candidate) -> Optional[Decision]:
        """
        Add a candidate to the buffer.

        Returns:
            The Decision when this candidate fills the buffer, else None
        """
        # Cancellation fast path, re-checked under the lock
        if not self.active:
            log.debug("Ignoring %s: aggregator inactive", candidate.vin)
            return None

        with self._lock:
            if not self.active:
                log.debug("Ignoring %s: aggregator inactive", candidate.vin)
                return None
            if len(self.buffer) >= self.capacity:
                log.debug("Ignoring %s: buffer full", candidate.vin)
                return None

            self.buffer.append(candidate)
            log.debug(
                "Accepted %s (%s, confidence: %.3f) [%d/%d]",
                candidate.vin,
                candidate.source.value,
                candidate.confidence,
                len(self.buffer),
                self.capacity,
            )

            if len(self.buffer) < self.capacity:
                return None

            self.decision = select_winner(self.buffer)
            self.active = False

        log.info(
            "Final VIN selected: %s (%d/%d samples, mean confidence %.3f)",
            self.decision.vin,
            self.decision.evidence_count,
            self.capacity,
            self.decision.mean_confidence,
        )
        return self.decision

    def cancel(self) -> bool:
        """Stop accepting samples without deciding.

        Returns:
            True if the aggregator was active
        """
        with self._lock:
            was_active = self.active
            self.active = False
        return was_active

    def tally(self) -> List[VoteTally]:
        """Current vote summary, for diagnostics."""
        with self._lock:
            return tally(list(self.buffer))

    def __len__(self) -> int:
        return len(self.buffer)
