"""
Event definitions for the connection reducer.

Rules:
- Events describe facts that have occurred.
- Events carry data only (no behavior).
- All reducer decisions are based on these events.
- No clocks, no timers, no async, no side effects.

Session-scoped events carry the generation of the session that produced
them; the reducer drops any event whose generation is not the current
active one. Timer events carry the token they were scheduled with.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


# =============================================================================
# Event Type Enumeration
# =============================================================================

class EventType(str, Enum):
    """
    Canonical event types understood by the reducer.

    Every (state, event_type) pair must be explicitly handled
    or explicitly ignored by the reducer.
    """

    # ------------------------------------------------------------------
    # Operator / process control
    # ------------------------------------------------------------------
    START = "START"
    RESTART = "RESTART"
    DISCONNECT = "DISCONNECT"
    RESET = "RESET"

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------
    RECONNECT_DUE = "RECONNECT_DUE"

    # ------------------------------------------------------------------
    # Network session lifecycle
    # ------------------------------------------------------------------
    PAIRING_READY = "PAIRING_READY"
    OPENED = "OPENED"
    CLOSED = "CLOSED"
    CREDENTIALS_CHANGED = "CREDENTIALS_CHANGED"
    SESSION_FAILED = "SESSION_FAILED"


# =============================================================================
# Base Event
# =============================================================================

@dataclass(frozen=True)
class Event:
    """
    Base event type.

    All events must specify:
    - event_type: discriminant
    - ts_ms: timestamp provided by the source (or fake in tests)
    """

    event_type: EventType
    ts_ms: int


@dataclass(frozen=True)
class SessionScopedEvent(Event):
    """
    Base class for events produced by one NetworkSession instance.

    The reducer MUST ignore events whose generation does not match the
    current active session.
    """

    generation: int


# =============================================================================
# Operator / process control
# =============================================================================

@dataclass(frozen=True)
class Start(Event):
    """Process boot (or any caller) asks for a session if none is active."""


@dataclass(frozen=True)
class Restart(Event):
    """Operator soft retry: drop the current session, reset attempts, start."""


@dataclass(frozen=True)
class Disconnect(Event):
    """Operator logout: log out, purge credentials, stay logged out."""


@dataclass(frozen=True)
class Reset(Event):
    """Operator hard retry: drop the session and its credentials, pair again."""


# =============================================================================
# Timers
# =============================================================================

@dataclass(frozen=True)
class ReconnectDue(Event):
    """A scheduled reconnect delay elapsed."""
    token: int


# =============================================================================
# Network session lifecycle
# =============================================================================

@dataclass(frozen=True)
class PairingReady(SessionScopedEvent):
    """A pairing code was issued; rendered_image is already prepared."""
    code: str
    rendered_image: str


@dataclass(frozen=True)
class Opened(SessionScopedEvent):
    """The session opened with the given identity."""
    display_name: str
    account_id: str


@dataclass(frozen=True)
class Closed(SessionScopedEvent):
    """The session closed. status_code is unclassified."""
    status_code: int | None
    message: str = ""


@dataclass(frozen=True)
class CredentialsChanged(SessionScopedEvent):
    """The session produced a new credential blob to persist."""
    blob: bytes


@dataclass(frozen=True)
class SessionFailed(SessionScopedEvent):
    """The session could not be constructed or started."""
    reason: str
