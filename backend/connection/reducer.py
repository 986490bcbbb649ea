"""
Pure connection reducer.

(state, event) -> (new_state, commands)

Rules:
- Pure: no side effects, no IO, no clocks.
- Deterministic: output depends only on inputs.
- Total: every (state, event) pair is handled or explicitly ignored (logged).
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

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
from connection.enums.cause import DisconnectCause
from connection.enums.state import ConnectionState
from connection.events import (
    Closed,
    CredentialsChanged,
    Disconnect,
    Event,
    Opened,
    PairingReady,
    ReconnectDue,
    Reset,
    Restart,
    SessionFailed,
    SessionScopedEvent,
    Start,
)
from connection.pairing import PairingArtifact
from connection.retry import (
    classify_cause,
    is_retryable,
    next_attempt,
    reset_attempt,
)
from connection.state_dataclass import BridgeState, ConnectionInfo


# =============================================================================
# Invariants
# =============================================================================
# - pairing artifact present  <=> state is AWAITING_PAIRING
# - connection info present   <=> state is CONNECTED
# - generation is bumped ONLY by StartSession and never reused
# - at most one pending reconnect token; scheduling a new one replaces it
# - reconnect_attempt grows only on retryable closures


# =============================================================================
# Small helpers
# =============================================================================

def _log(
    state: BridgeState,
    event: Event,
    decision: str,
    details: dict[str, Any] | None = None,
) -> LogEvent:
    return LogEvent(
        event={
            "ts_ms": event.ts_ms,
            "state": state.state.value,
            "event_type": event.event_type.value,
            "decision": decision,
            "generation": state.generation,
            "session_active": state.session_active,
            "reconnect_attempt": state.reconnect_attempt,
            "details": details or {},
        }
    )


def _logs_last(commands: tuple[Command, ...]) -> tuple[Command, ...]:
    non_logs: list[Command] = []
    logs: list[Command] = []
    state_change_logs: list[Command] = []

    for command in commands:
        if isinstance(command, LogEvent):
            if command.event.get("decision") == "state_changed":
                state_change_logs.append(command)
            else:
                logs.append(command)
        else:
            non_logs.append(command)

    return tuple(non_logs + logs + state_change_logs)


def _ignore(
    state: BridgeState, event: Event, reason: str
) -> tuple[BridgeState, tuple[Command, ...]]:
    return state, (_log(state, event, "ignore", {"reason": reason}),)


def _state_changed(
    old: BridgeState, new: BridgeState, event: Event, source: str
) -> tuple[Command, ...]:
    if old.state is new.state:
        return ()
    return (
        _log(
            new,
            event,
            "state_changed",
            {
                "from_state": old.state.value,
                "to_state": new.state.value,
                "source": source,
            },
        ),
    )


def _enter(
    state: BridgeState,
    target: ConnectionState,
    *,
    artifact: PairingArtifact | None = None,
    info: ConnectionInfo | None = None,
    **changes: Any,
) -> BridgeState:
    """
    Move to target, keeping the artifact/info invariants.

    The artifact is kept only for AWAITING_PAIRING and info only for
    CONNECTED; both are dropped on every other transition.
    """
    if target is ConnectionState.AWAITING_PAIRING:
        if artifact is None:
            raise ValueError("AWAITING_PAIRING requires a pairing artifact")
        pairing = state.pairing.set(artifact)
    else:
        pairing = state.pairing.clear()

    if target is ConnectionState.CONNECTED:
        if info is None:
            raise ValueError("CONNECTED requires connection info")
    else:
        info = None

    return replace(state, state=target, pairing=pairing, info=info, **changes)


def _cancel_pending(state: BridgeState) -> tuple[Command, ...]:
    if state.pending_reconnect is None:
        return ()
    return (CancelReconnect(),)


def _retire_active(state: BridgeState) -> tuple[Command, ...]:
    if not state.session_active:
        return ()
    return (RetireSession(generation=state.generation),)


def _is_stale(state: BridgeState, event: SessionScopedEvent) -> bool:
    return not state.session_active or event.generation != state.generation


# =============================================================================
# Transitions
# =============================================================================

def _start_session(
    state: BridgeState,
    event: Event,
    source: str,
) -> tuple[BridgeState, tuple[Command, ...]]:
    """
    Start a fresh session generation.

    Callers guarantee no session is active (retired beforehand).
    Any pending reconnect is superseded.
    """
    generation = state.generation + 1
    new_state = _enter(
        state,
        ConnectionState.CONNECTING,
        generation=generation,
        session_active=True,
        pending_reconnect=None,
    )

    return new_state, _logs_last(
        _cancel_pending(state)
        + (
            StartSession(generation=generation),
            _log(new_state, event, "start_session", {"source": source}),
        )
        + _state_changed(state, new_state, event, source)
    )


def _schedule(
    state: BridgeState, delay_ms: int
) -> tuple[BridgeState, ScheduleReconnect]:
    token = state.last_reconnect_token + 1
    return (
        replace(state, pending_reconnect=token, last_reconnect_token=token),
        ScheduleReconnect(token=token, delay_ms=delay_ms),
    )


def _purge_and_restart(
    state: BridgeState,
    event: Event,
    cause: DisconnectCause,
    *,
    source: str,
    error: str | None,
) -> tuple[BridgeState, tuple[Command, ...]]:
    """
    Fatal-recoverable path: purge credentials and rebuild from empty state
    after the fixed fresh-restart delay.
    """
    resting = (
        ConnectionState.LOGGED_OUT
        if cause is DisconnectCause.LOGGED_OUT
        else ConnectionState.ERRORED
    )
    new_state = _enter(
        state,
        resting,
        session_active=False,
        reconnect_attempt=reset_attempt(),
        last_disconnect=cause,
        last_error=error,
    )
    new_state, schedule = _schedule(new_state, state.policy.fresh_restart_delay_ms)

    return new_state, _logs_last(
        _retire_active(state)
        + (
            PurgeCredentials(reason=cause.value.lower()),
            schedule,
            _log(
                new_state,
                event,
                "purge_and_restart",
                {
                    "cause": cause.value,
                    "delay_ms": schedule.delay_ms,
                    "token": schedule.token,
                },
            ),
        )
        + _state_changed(state, new_state, event, source)
    )


def _session_ended(
    state: BridgeState,
    event: SessionScopedEvent,
    cause: DisconnectCause,
    *,
    error: str | None = None,
) -> tuple[BridgeState, tuple[Command, ...]]:
    source = "session_failed" if error is not None else "closed"

    if not is_retryable(cause):
        return _purge_and_restart(state, event, cause, source=source, error=error)

    attempt = next_attempt(state.reconnect_attempt)
    if not state.policy.allows(attempt):
        # An exhausted budget is evidence the stored session is unusable
        new_state, cmds = _purge_and_restart(
            state,
            event,
            DisconnectCause.BAD_SESSION,
            source="retry_budget_exhausted",
            error=error or "reconnect attempts exhausted",
        )
        return new_state, _logs_last(
            cmds
            + (
                _log(
                    new_state,
                    event,
                    "retry_budget_exhausted",
                    {
                        "cause": cause.value,
                        "max_attempts": state.policy.max_attempts,
                    },
                ),
            )
        )

    resting = ConnectionState.ERRORED if error is not None else ConnectionState.IDLE
    new_state = _enter(
        state,
        resting,
        session_active=False,
        reconnect_attempt=attempt,
        last_disconnect=cause,
        last_error=error if error is not None else state.last_error,
    )
    new_state, schedule = _schedule(new_state, state.policy.backoff_ms(attempt))

    return new_state, _logs_last(
        _retire_active(state)
        + (
            schedule,
            _log(
                new_state,
                event,
                "retry_scheduled",
                {
                    "cause": cause.value,
                    "attempt": attempt,
                    "max_attempts": state.policy.max_attempts,
                    "delay_ms": schedule.delay_ms,
                    "token": schedule.token,
                },
            ),
        )
        + _state_changed(state, new_state, event, source)
    )


# =============================================================================
# Reducer entrypoint
# =============================================================================

def reduce(  # pylint: disable=too-many-return-statements
    state: BridgeState, event: Event
) -> tuple[BridgeState, tuple[Command, ...]]:
    """
    Pure reducer for the connection lifecycle state machine.

    Given the current bridge state and a single event, returns:
    - the next state
    - a tuple of commands describing required side effects

    Properties:
    - Deterministic: no IO, clocks, or randomness
    - Total: every (state, event) pair is handled or explicitly ignored
    - Version-safe: ignores events from superseded session generations
      and reconnect timers that are no longer pending
    """

    # ------------------------------------------------------------------
    # Operator / process control
    # ------------------------------------------------------------------

    if isinstance(event, Start):
        if state.session_active:
            return _ignore(state, event, "session_already_active")
        return _start_session(state, event, "start")

    if isinstance(event, Restart):
        retired = replace(
            state,
            session_active=False,
            reconnect_attempt=reset_attempt(),
        )
        new_state, cmds = _start_session(retired, event, "operator_restart")
        return new_state, _logs_last(
            _retire_active(state)
            + cmds
            + (
                _log(
                    new_state,
                    event,
                    "operator_restart",
                    {"retired_generation": state.generation if state.session_active else None},
                ),
            )
        )

    if isinstance(event, Disconnect):
        if (
            not state.session_active
            and state.pending_reconnect is None
            and state.state in (ConnectionState.IDLE, ConnectionState.LOGGED_OUT)
        ):
            return _ignore(state, event, "nothing_to_disconnect")

        # Any pending retry or fresh start is cancelled; the account stays out
        new_state = _enter(
            state,
            ConnectionState.LOGGED_OUT,
            session_active=False,
            pending_reconnect=None,
            reconnect_attempt=reset_attempt(),
            last_disconnect=DisconnectCause.LOGGED_OUT,
        )
        session_cmds: tuple[Command, ...] = ()
        if state.session_active:
            session_cmds = (
                LogoutSession(generation=state.generation),
                RetireSession(generation=state.generation),
            )
        return new_state, _logs_last(
            _cancel_pending(state)
            + session_cmds
            + (
                PurgeCredentials(reason="operator_disconnect"),
                _log(
                    new_state,
                    event,
                    "operator_disconnect",
                    {"had_session": state.session_active},
                ),
            )
            + _state_changed(state, new_state, event, "operator_disconnect")
        )

    if isinstance(event, Reset):
        # Purge before StartSession so the new session loads nothing
        retired = replace(
            state,
            session_active=False,
            reconnect_attempt=reset_attempt(),
            last_error=None,
        )
        new_state, cmds = _start_session(retired, event, "operator_reset")
        return new_state, _logs_last(
            _retire_active(state)
            + (PurgeCredentials(reason="operator_reset"),)
            + cmds
            + (
                _log(
                    new_state,
                    event,
                    "operator_reset",
                    {"retired_generation": state.generation if state.session_active else None},
                ),
            )
        )

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    if isinstance(event, ReconnectDue):
        if state.pending_reconnect is None or event.token != state.pending_reconnect:
            return _ignore(state, event, "stale_reconnect_token")
        fired = replace(state, pending_reconnect=None)
        if fired.session_active:
            return _ignore(fired, event, "session_already_active")
        return _start_session(fired, event, "reconnect")

    # ------------------------------------------------------------------
    # Network session lifecycle
    # ------------------------------------------------------------------

    if isinstance(event, SessionScopedEvent) and _is_stale(state, event):
        return _ignore(state, event, "stale_generation")

    if isinstance(event, PairingReady):
        if state.state is ConnectionState.CONNECTED:
            return _ignore(state, event, "pairing_after_open")

        artifact = PairingArtifact(
            code=event.code,
            rendered_image=event.rendered_image,
            issued_at_ms=event.ts_ms,
        )
        new_state = _enter(
            state,
            ConnectionState.AWAITING_PAIRING,
            artifact=artifact,
            reconnect_attempt=reset_attempt(),
        )
        return new_state, _logs_last(
            (
                ShowPairingCode(code=event.code),
                _log(
                    new_state,
                    event,
                    "pairing_published",
                    {"superseded": bool(state.pairing)},
                ),
            )
            + _state_changed(state, new_state, event, "pairing_ready")
        )

    if isinstance(event, Opened):
        new_state = _enter(
            state,
            ConnectionState.CONNECTED,
            info=ConnectionInfo(
                display_name=event.display_name,
                account_id=event.account_id,
            ),
            reconnect_attempt=reset_attempt(),
            pending_reconnect=None,
            last_error=None,
        )
        return new_state, _logs_last(
            _cancel_pending(state)
            + (
                _log(
                    new_state,
                    event,
                    "connected",
                    {"account_id": event.account_id},
                ),
            )
            + _state_changed(state, new_state, event, "opened")
        )

    if isinstance(event, CredentialsChanged):
        return state, (
            SaveCredentials(blob=event.blob),
            _log(state, event, "persist_credentials", {"bytes": len(event.blob)}),
        )

    if isinstance(event, Closed):
        cause = classify_cause(event.status_code)
        new_state, cmds = _session_ended(state, event, cause)
        return new_state, _logs_last(
            cmds
            + (
                _log(
                    new_state,
                    event,
                    "session_closed",
                    {
                        "status_code": event.status_code,
                        "message": event.message,
                        "cause": cause.value,
                    },
                ),
            )
        )

    if isinstance(event, SessionFailed):
        return _session_ended(
            state, event, DisconnectCause.UNKNOWN, error=event.reason
        )

    return _ignore(state, event, "unhandled_event")
