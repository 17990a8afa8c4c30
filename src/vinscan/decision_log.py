"""CSV log of session decisions."""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Union

from .session import ScanSession


class DecisionLog:
    """Appends one row per decided session to a CSV file.

    The header is written when the file is new or empty.

    Args:
        path: Output CSV file path.
    """

    HEADER = [
        "session_id",
        "vin",
        "evidence_count",
        "mean_confidence",
        "policy",
        "capacity",
        "buffered",
    ]

    def __init__(self, path: Union[str, Path]):
        path = Path(path)
        write_header = not path.exists() or path.stat().st_size == 0
        self._file = open(path, "a", newline="")
        self._writer = csv.writer(self._file)
        if write_header:
            self._writer.writerow(self.HEADER)

    def write(self, session: ScanSession) -> bool:
        """Write the session's decision.

        Returns:
            False if the session has no decision (cancelled or still active)
        """
        decision = session.decision
        if decision is None:
            return False
        self._writer.writerow(
            [
                session.session_id,
                decision.vin,
                decision.evidence_count,
                f"{decision.mean_confidence:.3f}",
                session.config.policy.value,
                session.config.capacity,
                len(session.aggregator),
            ]
        )
        return True

    def close(self):
        """Flush and close the file."""
        self._file.close()
