"""
Typed errors surfaced across the session / connection boundary.
"""

from __future__ import annotations

from connection.enums.state import ConnectionState


class BridgeError(Exception):
    """Base class for all bridge errors."""


class NotConnectedError(BridgeError):
    """
    Caller precondition failure: the operation needs an open session.

    Never retried internally. The Facade maps it to HTTP 503 and echoes
    the state back to the caller.
    """

    def __init__(self, state: ConnectionState | None = None) -> None:
        self.state = state
        label = state.value if state is not None else "unknown"
        super().__init__(f"not connected (state={label})")


class GroupFetchError(BridgeError):
    """The network session failed while listing groups."""


class MessageFetchError(BridgeError):
    """The network session failed while fetching messages."""


class EngineProtocolError(BridgeError):
    """The protocol engine sent traffic that could not be understood."""


class EngineCallError(BridgeError):
    """The protocol engine answered an RPC call with an error."""
