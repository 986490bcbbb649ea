"""
Session boundary contracts.

Provides the connection manager with narrow capabilities it consumes
from external collaborators:
- SessionStore: durable storage for the opaque credential blob
- NetworkSession: the wrapped protocol engine

This module contains:
- Wire-level session event types (what a NetworkSession emits)
- Narrow Protocols (capabilities, not implementations)
- Zero lifecycle logic
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator, Callable, Protocol, Union, runtime_checkable


# ---------------------------------------------------------------------
# Session events (emitted by a NetworkSession, in order)
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class PairingCode:
    """The network issued a code that must be scanned to pair."""
    code: str


@dataclass(frozen=True)
class SessionOpened:
    """The session is authenticated and open."""
    display_name: str
    account_id: str


@dataclass(frozen=True)
class SessionClosed:
    """
    The session ended.

    status_code is the engine's raw disconnect code (None when the
    engine did not report one). It is classified by the connection
    manager, never here.
    """
    status_code: int | None
    message: str = ""


@dataclass(frozen=True)
class CredentialsUpdated:
    """The protocol state changed; blob must be persisted."""
    blob: bytes


SessionEvent = Union[PairingCode, SessionOpened, SessionClosed, CredentialsUpdated]


@dataclass(frozen=True)
class GroupSummary:
    """Simplified view of one group conversation."""
    id: str
    name: str
    participant_count: int
    # Epoch seconds, when the network reports it
    created_at: int | None = None
    description: str = ""


@dataclass(frozen=True)
class MessageSummary:
    """One recent message of a conversation."""
    id: str
    body: str
    author: str
    timestamp: int | None
    from_me: bool
    kind: str


# ---------------------------------------------------------------------
# Collaborator protocols
# ---------------------------------------------------------------------

@runtime_checkable
class SessionStore(Protocol):
    def load(self) -> bytes | None:
        """Return the stored blob, or None when nothing is stored."""

    def save(self, blob: bytes) -> None: ...

    def clear(self) -> None:
        """Delete the stored blob. No-op when nothing is stored."""


@runtime_checkable
class NetworkSession(Protocol):
    def events(self) -> AsyncIterator[SessionEvent]:
        """
        Start the session and yield its lifecycle events in order.

        The iterator ends after a SessionClosed event, or when the
        session is terminated.
        """

    async def fetch_groups(self) -> list[GroupSummary]:
        """
        List group conversations.

        Raises:
            NotConnectedError if the session is not open.
        """

    async def fetch_messages(self, chat_id: str, limit: int) -> list[MessageSummary]:
        """
        Fetch up to `limit` recent messages of one conversation, newest last.

        Raises:
            NotConnectedError if the session is not open.
        """

    async def logout(self) -> None: ...

    async def terminate(self) -> None: ...


SessionFactory = Callable[[Union[bytes, None]], NetworkSession]
