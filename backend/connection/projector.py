"""
Read-side projections of the bridge state.

Every projection reads the manager's snapshot reference exactly once,
so it cannot observe a half-applied transition. Nothing here mutates
state, waits, or touches the network.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from connection.enums.state import ConnectionState
from connection.pairing import PairingArtifact
from connection.state_dataclass import BridgeState, ConnectionInfo


@dataclass(frozen=True)
class StatusView:
    state: ConnectionState
    is_connected: bool
    has_pairing_artifact: bool
    reconnect_attempt: int
    info: ConnectionInfo | None
    last_disconnect: str | None
    last_error: str | None
    generation: int

    def to_json(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "connected": self.is_connected,
            "hasPairingArtifact": self.has_pairing_artifact,
            "reconnectAttempt": self.reconnect_attempt,
            "info": (
                {
                    "displayName": self.info.display_name,
                    "accountId": self.info.account_id,
                }
                if self.info is not None
                else None
            ),
            "lastDisconnect": self.last_disconnect,
            "lastError": self.last_error,
        }


@dataclass(frozen=True)
class PairingView:
    """What the pairing endpoint may show for one snapshot."""
    state: ConnectionState
    artifact: PairingArtifact | None

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED


class StatusProjector:
    """
    Pure view over whatever snapshot the getter returns.

    Safe for any number of concurrent callers.
    """

    def __init__(self, get_state: Callable[[], BridgeState]) -> None:
        self._get_state = get_state

    def project(self) -> StatusView:
        snapshot = self._get_state()
        return StatusView(
            state=snapshot.state,
            is_connected=snapshot.state is ConnectionState.CONNECTED,
            has_pairing_artifact=snapshot.pairing.get() is not None,
            reconnect_attempt=snapshot.reconnect_attempt,
            info=snapshot.info,
            last_disconnect=(
                snapshot.last_disconnect.value
                if snapshot.last_disconnect is not None
                else None
            ),
            last_error=snapshot.last_error,
            generation=snapshot.generation,
        )

    def pairing(self) -> PairingView:
        snapshot = self._get_state()
        return PairingView(state=snapshot.state, artifact=snapshot.pairing.get())
