"""
Authoritative bridge state container.

Rules:
- This dataclass is a pure data model.
- It contains ALL state the reducer may ever need.
- State, connection info and the pairing artifact live in one snapshot,
  so a reader holding a reference always sees a consistent combination.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from connection.enums.cause import DisconnectCause
from connection.enums.state import ConnectionState
from connection.pairing import PairingCodeCache
from connection.retry import ReconnectPolicy


@dataclass(frozen=True)
class ConnectionInfo:
    """Identity of the connected account."""
    display_name: str
    account_id: str


@dataclass(frozen=True)
class BridgeState:
    """Immutable snapshot of all connection-manager-owned state."""

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    state: ConnectionState = ConnectionState.IDLE

    # Published iff state is AWAITING_PAIRING
    pairing: PairingCodeCache = field(default_factory=PairingCodeCache)

    # Published iff state is CONNECTED
    info: ConnectionInfo | None = None

    # ------------------------------------------------------------------
    # Session versioning
    # ------------------------------------------------------------------
    # Monotonic; bumped on every StartSession, never reused.
    generation: int = 0
    session_active: bool = False

    # ------------------------------------------------------------------
    # Reconnect bookkeeping
    # ------------------------------------------------------------------
    policy: ReconnectPolicy = field(default_factory=ReconnectPolicy)
    reconnect_attempt: int = 0

    # Token of the one pending reconnect timer (None = no timer)
    pending_reconnect: int | None = None
    last_reconnect_token: int = 0

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------
    last_disconnect: DisconnectCause | None = None
    last_error: str | None = None
