"""
Side-effect command definitions for the connection manager.

Rules:
- Commands are declarative requests for side effects.
- Commands are emitted by the reducer and executed by the runtime.
- No behavior, no async, no I/O, no clocks.

Invariant:
    - All concrete Command subclasses MUST be frozen dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


# =============================================================================
# Command Type Enumeration
# =============================================================================

class CommandType(str, Enum):
    """
    Canonical command types emitted by the reducer.

    These are stable discriminants used for logging and runtime dispatch.
    """

    # Session
    START_SESSION = "START_SESSION"
    RETIRE_SESSION = "RETIRE_SESSION"
    LOGOUT_SESSION = "LOGOUT_SESSION"

    # Credentials
    SAVE_CREDENTIALS = "SAVE_CREDENTIALS"
    PURGE_CREDENTIALS = "PURGE_CREDENTIALS"

    # Timers
    SCHEDULE_RECONNECT = "SCHEDULE_RECONNECT"
    CANCEL_RECONNECT = "CANCEL_RECONNECT"

    # Pairing
    SHOW_PAIRING_CODE = "SHOW_PAIRING_CODE"

    # Observability
    LOG_EVENT = "LOG_EVENT"


# =============================================================================
# Base Command
# =============================================================================

class Command:
    """
    Base command type.

    command_type is an explicit discriminant and must never be inferred
    from Python type identity.
    """

    command_type: CommandType


# =============================================================================
# Session Commands
# =============================================================================

@dataclass(frozen=True)
class StartSession(Command):
    """Load credentials and start a NetworkSession tagged with generation."""
    generation: int
    command_type: CommandType = CommandType.START_SESSION


@dataclass(frozen=True)
class RetireSession(Command):
    """Stop pumping the session's events and terminate it (best-effort)."""
    generation: int
    command_type: CommandType = CommandType.RETIRE_SESSION


@dataclass(frozen=True)
class LogoutSession(Command):
    """Ask the session to log out remotely (best-effort, failure swallowed)."""
    generation: int
    command_type: CommandType = CommandType.LOGOUT_SESSION


# =============================================================================
# Credential Commands
# =============================================================================

@dataclass(frozen=True)
class SaveCredentials(Command):
    """Persist the blob before any later event is applied."""
    blob: bytes
    command_type: CommandType = CommandType.SAVE_CREDENTIALS


@dataclass(frozen=True)
class PurgeCredentials(Command):
    """Delete the stored blob so the next session starts empty."""
    reason: str
    command_type: CommandType = CommandType.PURGE_CREDENTIALS


# =============================================================================
# Timer Commands
# =============================================================================

@dataclass(frozen=True)
class ScheduleReconnect(Command):
    """
    Replace any pending reconnect timer with one that emits
    ReconnectDue(token) after delay_ms.
    """
    token: int
    delay_ms: int
    command_type: CommandType = CommandType.SCHEDULE_RECONNECT


@dataclass(frozen=True)
class CancelReconnect(Command):
    """Cancel the pending reconnect timer, if any."""
    command_type: CommandType = CommandType.CANCEL_RECONNECT


# =============================================================================
# Pairing Commands
# =============================================================================

@dataclass(frozen=True)
class ShowPairingCode(Command):
    """Echo a fresh pairing code to the terminal when enabled."""
    code: str
    command_type: CommandType = CommandType.SHOW_PAIRING_CODE


# =============================================================================
# Observability
# =============================================================================

@dataclass(frozen=True)
class LogEvent(Command):
    """Structured log entry, written by the runtime through log_event."""
    event: dict[str, Any]
    command_type: CommandType = CommandType.LOG_EVENT
