"""
Disconnect cause classification.

Rules:
- Raw status codes are mapped to a cause ONLY in connection.retry.
- The Facade and the status projector never see raw codes.
"""

from __future__ import annotations

from enum import Enum


class DisconnectCause(str, Enum):
    """
    Why a session ended, as far as retry policy is concerned.

    LOGGED_OUT:
        Explicit remote logout. Credentials are purged; fresh pairing.
    BAD_SESSION:
        Credentials rejected as invalid or corrupted. Same handling as
        LOGGED_OUT; kept distinct for observability.
    TRANSIENT:
        Network drop, timeout, generic closure. Retried with backoff.
    UNKNOWN:
        Unclassified. Retried exactly like TRANSIENT, never fatal.
    """

    LOGGED_OUT = "LOGGED_OUT"
    BAD_SESSION = "BAD_SESSION"
    TRANSIENT = "TRANSIENT"
    UNKNOWN = "UNKNOWN"
