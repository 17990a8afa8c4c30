"""Exception hierarchy for vinscan.

Rejected candidates and observations arriving after the sample buffer is
full are not errors: they are logged at debug level and dropped.
"""

from __future__ import annotations


class VinScanError(Exception):
    """Base exception for all vinscan errors."""


class InvalidConfigurationError(VinScanError, ValueError):
    """Session configuration is unusable (bad capacity, threshold, preset or file)."""


class SessionTerminatedError(VinScanError):
    """An observation was submitted to a session that is no longer active.

    The session already produced its decision or was cancelled.  Callers
    should stop feeding it and start a new session to scan again.
    """

    def __init__(self, message: str, *, session_id: str = "") -> None:
        self.session_id = session_id
        super().__init__(message)
