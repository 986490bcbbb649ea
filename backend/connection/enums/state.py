"""
Authoritative connection state enumeration.

Rules:
- This enum defines ONLY the lifecycle states.
- No behavior, no helper methods, no side effects.
- Transitions are defined exclusively in the reducer.
"""

from __future__ import annotations

from enum import Enum


class ConnectionState(str, Enum):
    """
    Lifecycle state of the single network session.

    IDLE:
        No session. Either nothing has started yet or a retry is pending.
    CONNECTING:
        A session was constructed and is establishing its link.
    AWAITING_PAIRING:
        The network issued a pairing code; a pairing artifact is published.
    CONNECTED:
        The session is open; connection info is published.
    LOGGED_OUT:
        The account was logged out (remotely or by the operator).
        Credentials have been purged.
    ERRORED:
        The session failed unrecoverably or could not be started.
    """

    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    AWAITING_PAIRING = "AWAITING_PAIRING"
    CONNECTED = "CONNECTED"
    LOGGED_OUT = "LOGGED_OUT"
    ERRORED = "ERRORED"
