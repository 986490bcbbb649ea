"""
Runtime execution shell for the single network session.

Responsibilities:
- Own the authoritative bridge state snapshot
- Consume one ordered inbox (the only writer) and call the pure reducer
- Execute commands with side effects (sessions, credentials, timers)
- Pump NetworkSession events into the inbox, tagged with their generation
- Convert timer expiry into events

Non-responsibilities:
- No transition logic (reducer only)
- No HTTP concerns (server.routes)
"""

from __future__ import annotations

import asyncio
import sys
import time
from typing import Callable

from connection.commands import (
    CancelReconnect,
    Command,
    LogEvent,
    LogoutSession,
    PurgeCredentials,
    RetireSession,
    SaveCredentials,
    ScheduleReconnect,
    ShowPairingCode,
    StartSession,
)
from connection.enums.state import ConnectionState
from connection.events import (
    Closed,
    CredentialsChanged,
    Disconnect,
    Event,
    EventType,
    Opened,
    PairingReady,
    ReconnectDue,
    Reset,
    Restart,
    SessionFailed,
    Start,
)
from connection.pairing import render_pairing_ascii, render_pairing_image
from connection.reducer import reduce
from connection.retry import ReconnectPolicy
from connection.state_dataclass import BridgeState

from constants import (
    DEFAULT_MESSAGE_LIMIT,
    LOGOUT_TIMEOUT_S,
    SESSION_TERMINATE_TIMEOUT_S,
    SHUTDOWN_TERMINATE_TIMEOUT_S,
)

from observability.logger import log_event
from observability.metrics import discard_timer, start_timer, stop_timer, timed

from session.errors import GroupFetchError, MessageFetchError, NotConnectedError
from session.protocols import (
    CredentialsUpdated,
    GroupSummary,
    MessageSummary,
    NetworkSession,
    PairingCode,
    SessionClosed,
    SessionEvent,
    SessionFactory,
    SessionOpened,
    SessionStore,
)


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


_Envelope = tuple[Event, "asyncio.Future[None] | None"]


class ConnectionManager:
    """
    Single owner of the connection lifecycle.

    Architectural role:
    ConnectionManager is the bridge between the pure reducer (immutable
    BridgeState) and the imperative world (network session, credential
    store, timers, logging).

    Guarantees:
    - Exactly one consumer loop applies events, in arrival order
    - The reducer is called exactly once per event
    - State is swapped in one assignment before any side effect runs,
      so readers of `state` always see a consistent snapshot
    - At most one session pump and one reconnect timer exist at a time
    - Read paths (`state`, the `list_groups` and `list_messages`
      preconditions) never wait on the inbox and never start a connection attempt
    """

    def __init__(
        self,
        *,
        store: SessionStore,
        session_factory: SessionFactory,
        policy: ReconnectPolicy | None = None,
        render_pairing: Callable[[str], str] = render_pairing_image,
        print_pairing_code: bool = False,
    ) -> None:
        self._state = BridgeState(policy=policy or ReconnectPolicy())
        self._store = store
        self._session_factory = session_factory
        self._render_pairing = render_pairing
        self._print_pairing_code = print_pairing_code

        self._inbox: asyncio.Queue[_Envelope] = asyncio.Queue()
        self._consumer: asyncio.Task[None] | None = None

        # Current session handle, tagged with the generation that owns it
        self._session: NetworkSession | None = None
        self._session_generation: int = 0
        self._pump: asyncio.Task[None] | None = None

        self._reconnect_timer: asyncio.Task[None] | None = None

        # Best-effort terminations of retired sessions
        self._background: set[asyncio.Task[None]] = set()
        self._closed = False

        # Measures StartSession -> Opened for the current generation
        self._connect_timer: str | None = None

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def state(self) -> BridgeState:
        """
        Return the current immutable bridge state.

        The returned object is a snapshot; it is replaced, never mutated.
        """
        return self._state

    @property
    def active_session(self) -> NetworkSession | None:
        """The session owned by the current generation, if any."""
        if self._session is None or self._session_generation != self._state.generation:
            return None
        return self._session

    async def list_groups(self, limit: int | None = None) -> list[GroupSummary]:
        """
        List group conversations of the connected account.

        Fails fast (no network call, no waiting for a connection) when the
        snapshot is not CONNECTED.

        Raises:
            NotConnectedError: precondition failed
            GroupFetchError: the session failed while listing
        """
        snapshot, session = self._connected_session()

        try:
            with timed(
                "group_fetch_latency",
                generation=snapshot.generation,
                state=snapshot.state.value,
            ):
                groups = await session.fetch_groups()
        except NotConnectedError as exc:
            raise NotConnectedError(self._state.state) from exc
        except Exception as exc:  # pylint: disable=broad-exception-caught
            raise GroupFetchError(str(exc) or type(exc).__name__) from exc

        if limit is not None:
            groups = groups[:limit]
        return groups

    async def list_messages(
        self,
        chat_id: str,
        limit: int = DEFAULT_MESSAGE_LIMIT,
    ) -> list[MessageSummary]:
        """
        Fetch up to `limit` recent messages of one conversation.

        Same fail-fast precondition as `list_groups`.

        Raises:
            NotConnectedError: precondition failed
            MessageFetchError: the session failed while fetching
        """
        snapshot, session = self._connected_session()

        try:
            with timed(
                "message_fetch_latency",
                generation=snapshot.generation,
                state=snapshot.state.value,
            ):
                messages = await session.fetch_messages(chat_id, limit)
        except NotConnectedError as exc:
            raise NotConnectedError(self._state.state) from exc
        except Exception as exc:  # pylint: disable=broad-exception-caught
            raise MessageFetchError(str(exc) or type(exc).__name__) from exc

        return messages[max(len(messages) - limit, 0):]

    def _connected_session(self) -> tuple[BridgeState, NetworkSession]:
        snapshot = self._state
        session = self.active_session
        if snapshot.state is not ConnectionState.CONNECTED or session is None:
            raise NotConnectedError(snapshot.state)
        return snapshot, session

    # ------------------------------------------------------------------
    # Write side (operator / process entry points)
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Idempotent: start a session unless one is already active."""
        await self._submit(Start(event_type=EventType.START, ts_ms=_now_ms()))

    async def restart(self) -> None:
        """Soft retry: retire the current session, reset attempts, start."""
        await self._submit(Restart(event_type=EventType.RESTART, ts_ms=_now_ms()))

    async def disconnect(self) -> None:
        """
        Operator logout. Always succeeds; a failing logout RPC is logged
        and the local state is still forced to LOGGED_OUT.
        """
        await self._submit(Disconnect(event_type=EventType.DISCONNECT, ts_ms=_now_ms()))

    async def reset(self) -> None:
        """Hard retry: retire the session, purge credentials, pair again."""
        await self._submit(Reset(event_type=EventType.RESET, ts_ms=_now_ms()))

    def dispatch(self, event: Event) -> None:
        """Enqueue an event without waiting for it to be applied."""
        if self._closed:
            return
        self._ensure_consumer()
        self._inbox.put_nowait((event, None))

    async def drain(self) -> None:
        """Wait until every queued event (and its follow-ups) is applied."""
        self._ensure_consumer()
        await self._inbox.join()

    async def shutdown(self) -> None:
        """
        Tear down for process exit.

        Stops the consumer, cancels timers and the pump, then gives the
        active session a bounded chance to terminate. A hang is abandoned.
        """
        self._closed = True

        self._cancel_reconnect_timer()
        if self._connect_timer is not None:
            discard_timer(self._connect_timer)
            self._connect_timer = None

        if self._consumer is not None:
            self._consumer.cancel()
            await asyncio.gather(self._consumer, return_exceptions=True)
            self._consumer = None

        # Release callers still waiting on events that will never be applied
        while not self._inbox.empty():
            _, done = self._inbox.get_nowait()
            if done is not None and not done.done():
                done.set_result(None)
            self._inbox.task_done()

        session = self._session
        self._session = None
        await self._stop_pump()

        if session is not None:
            await self._terminate_quietly(session, SHUTDOWN_TERMINATE_TIMEOUT_S)

        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

        log_event({
            "event_type": "CONNECTION_MANAGER_SHUTDOWN",
            "state": self._state.state.value,
            "generation": self._state.generation,
        })

    # ------------------------------------------------------------------
    # Consumer loop
    # ------------------------------------------------------------------

    def _ensure_consumer(self) -> None:
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.create_task(self._consume())

    async def _submit(self, event: Event) -> None:
        if self._closed:
            return
        self._ensure_consumer()
        done: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._inbox.put_nowait((event, done))
        await done

    async def _consume(self) -> None:
        while True:
            event, done = await self._inbox.get()
            try:
                await self._apply(event)
            finally:
                if done is not None and not done.done():
                    done.set_result(None)
                self._inbox.task_done()

    async def _apply(self, event: Event) -> None:
        """
        Process a single event.

        1. Reduce (pure)
        2. Swap in the new snapshot
        3. Execute commands in reducer-emitted order
        """
        old_state = self._state
        try:
            new_state, commands = reduce(old_state, event)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            # State stays as it was; the consumer keeps serving the inbox
            log_event({
                "event_type": "REDUCER_FAILED",
                "input_event_type": event.event_type.value,
                "exception": type(exc).__name__,
                "message": str(exc),
                "state": old_state.state.value,
                "generation": old_state.generation,
            })
            return
        self._state = new_state

        if (
            isinstance(event, Opened)
            and new_state.state is ConnectionState.CONNECTED
            and old_state.state is not ConnectionState.CONNECTED
            and self._connect_timer is not None
        ):
            stop_timer(
                self._connect_timer,
                generation=new_state.generation,
                state=new_state.state.value,
            )
            self._connect_timer = None

        for cmd in commands:
            try:
                await self._execute_command(cmd)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log_event({
                    "event_type": "COMMAND_FAILED",
                    "command_type": cmd.command_type.value,
                    "exception": type(exc).__name__,
                    "message": str(exc),
                    "generation": self._state.generation,
                })

    # ------------------------------------------------------------------
    # Command execution (side effects)
    # ------------------------------------------------------------------

    async def _execute_command(self, cmd: Command) -> None:
        """Execute a single command with side effects."""

        if isinstance(cmd, LogEvent):
            log_event(cmd.event)

        elif isinstance(cmd, StartSession):
            self._start_session(cmd.generation)

        elif isinstance(cmd, RetireSession):
            await self._retire_session(cmd.generation)

        elif isinstance(cmd, LogoutSession):
            await self._logout_session(cmd.generation)

        elif isinstance(cmd, SaveCredentials):
            await asyncio.to_thread(self._store.save, cmd.blob)
            log_event({
                "event_type": "CREDENTIALS_SAVED",
                "bytes": len(cmd.blob),
                "generation": self._state.generation,
            })

        elif isinstance(cmd, PurgeCredentials):
            await asyncio.to_thread(self._store.clear)
            log_event({
                "event_type": "CREDENTIALS_PURGED",
                "reason": cmd.reason,
                "generation": self._state.generation,
            })

        elif isinstance(cmd, ScheduleReconnect):
            self._schedule_reconnect(token=cmd.token, delay_ms=cmd.delay_ms)

        elif isinstance(cmd, CancelReconnect):
            self._cancel_reconnect_timer()

        elif isinstance(cmd, ShowPairingCode):
            if self._print_pairing_code:
                sys.stderr.write(render_pairing_ascii(cmd.code))
                sys.stderr.flush()

        else:
            log_event({
                "event_type": "COMMAND_NOT_IMPLEMENTED",
                "command_type": type(cmd).__name__,
            })

    # ------------------------------------------------------------------
    # Session handling
    # ------------------------------------------------------------------

    def _start_session(self, generation: int) -> None:
        try:
            credentials = self._store.load()
            session = self._session_factory(credentials)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self.dispatch(
                SessionFailed(
                    event_type=EventType.SESSION_FAILED,
                    ts_ms=_now_ms(),
                    generation=generation,
                    reason=f"session construction failed: {exc!r}",
                )
            )
            return

        self._session = session
        self._session_generation = generation
        self._pump = asyncio.create_task(self._pump_events(generation, session))

        if self._connect_timer is not None:
            discard_timer(self._connect_timer)
        self._connect_timer = start_timer("session_connect_latency")

        log_event({
            "event_type": "SESSION_STARTED",
            "generation": generation,
            "has_credentials": credentials is not None,
        })

    async def _retire_session(self, generation: int) -> None:
        if self._session is None or self._session_generation != generation:
            return

        session = self._session
        self._session = None
        await self._stop_pump()

        # Termination may hang; never block the consumer on it
        task = asyncio.create_task(
            self._terminate_quietly(session, SESSION_TERMINATE_TIMEOUT_S)
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

        log_event({
            "event_type": "SESSION_RETIRED",
            "generation": generation,
        })

    async def _logout_session(self, generation: int) -> None:
        if self._session is None or self._session_generation != generation:
            return

        try:
            await asyncio.wait_for(self._session.logout(), LOGOUT_TIMEOUT_S)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "LOGOUT_FAILED",
                "generation": generation,
                "exception": type(exc).__name__,
                "message": str(exc),
            })

    async def _stop_pump(self) -> None:
        pump = self._pump
        self._pump = None
        if pump is None or pump.done():
            return
        pump.cancel()
        await asyncio.gather(pump, return_exceptions=True)

    async def _terminate_quietly(self, session: NetworkSession, timeout_s: float) -> None:
        try:
            await asyncio.wait_for(session.terminate(), timeout_s)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "SESSION_TERMINATE_FAILED",
                "exception": type(exc).__name__,
                "message": str(exc),
            })

    async def _pump_events(self, generation: int, session: NetworkSession) -> None:
        """
        Forward one session's events into the inbox, in order.

        Failure before the first event means the session never came up
        (SessionFailed); failure later is an unclassified closure.
        """
        seen_event = False
        try:
            async for raw in session.events():
                seen_event = True
                self.dispatch(self._translate(generation, raw))
                if isinstance(raw, SessionClosed):
                    return

            self.dispatch(
                Closed(
                    event_type=EventType.CLOSED,
                    ts_ms=_now_ms(),
                    generation=generation,
                    status_code=None,
                    message="event stream ended",
                )
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # pylint: disable=broad-exception-caught
            if seen_event:
                self.dispatch(
                    Closed(
                        event_type=EventType.CLOSED,
                        ts_ms=_now_ms(),
                        generation=generation,
                        status_code=None,
                        message=f"session error: {exc!r}",
                    )
                )
            else:
                self.dispatch(
                    SessionFailed(
                        event_type=EventType.SESSION_FAILED,
                        ts_ms=_now_ms(),
                        generation=generation,
                        reason=f"session start failed: {exc!r}",
                    )
                )

    def _translate(self, generation: int, raw: SessionEvent) -> Event:
        ts = _now_ms()

        if isinstance(raw, PairingCode):
            return PairingReady(
                event_type=EventType.PAIRING_READY,
                ts_ms=ts,
                generation=generation,
                code=raw.code,
                rendered_image=self._render_quietly(raw.code),
            )

        if isinstance(raw, SessionOpened):
            return Opened(
                event_type=EventType.OPENED,
                ts_ms=ts,
                generation=generation,
                display_name=raw.display_name,
                account_id=raw.account_id,
            )

        if isinstance(raw, SessionClosed):
            return Closed(
                event_type=EventType.CLOSED,
                ts_ms=ts,
                generation=generation,
                status_code=raw.status_code,
                message=raw.message,
            )

        if isinstance(raw, CredentialsUpdated):
            return CredentialsChanged(
                event_type=EventType.CREDENTIALS_CHANGED,
                ts_ms=ts,
                generation=generation,
                blob=raw.blob,
            )

        raise TypeError(f"Unknown session event: {type(raw).__name__}")

    def _render_quietly(self, code: str) -> str:
        """Render a pairing image; fall back to the raw code on failure."""
        try:
            return self._render_pairing(code)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "PAIRING_RENDER_FAILED",
                "exception": type(exc).__name__,
                "message": str(exc),
            })
            return code

    # ------------------------------------------------------------------
    # Timer management
    # ------------------------------------------------------------------

    def _schedule_reconnect(self, *, token: int, delay_ms: int) -> None:
        """
        Replace the pending reconnect timer.

        The timer re-enters the inbox with ReconnectDue(token); the reducer
        drops it if the token is no longer the pending one.
        """
        self._cancel_reconnect_timer()

        async def _timer_task() -> None:
            try:
                await asyncio.sleep(delay_ms / 1000.0)
            except asyncio.CancelledError:
                # Timer was cancelled - this is normal
                return
            self.dispatch(
                ReconnectDue(
                    event_type=EventType.RECONNECT_DUE,
                    ts_ms=_now_ms(),
                    token=token,
                )
            )

        self._reconnect_timer = asyncio.create_task(_timer_task())

        log_event({
            "event_type": "RECONNECT_SCHEDULED",
            "token": token,
            "delay_ms": delay_ms,
            "generation": self._state.generation,
        })

    def _cancel_reconnect_timer(self) -> None:
        """Idempotent: safe to call even if no timer exists."""
        task = self._reconnect_timer
        self._reconnect_timer = None
        if task is not None and not task.done():
            task.cancel()
