# pylint: disable=missing-module-docstring,missing-function-docstring
import random

from connection.reducer import reduce
from connection.state_dataclass import BridgeState
from connection.retry import ReconnectPolicy
from connection.enums.state import ConnectionState
from connection.enums.cause import DisconnectCause

from connection.events import (
    Event,
    EventType,
    Start,
    Restart,
    Disconnect,
    Reset,
    ReconnectDue,
    PairingReady,
    Opened,
    Closed,
    CredentialsChanged,
    SessionFailed,
)

from connection.commands import (
    Command,
    CancelReconnect,
    LogEvent,
    LogoutSession,
    PurgeCredentials,
    RetireSession,
    SaveCredentials,
    ScheduleReconnect,
    ShowPairingCode,
    StartSession,
)


# ---------------------------------------------------------------------
# Event helpers (mirror manager construction)
# ---------------------------------------------------------------------

def start(ts_ms: int = 0) -> Start:
    return Start(ts_ms=ts_ms, event_type=EventType.START)


def restart(ts_ms: int = 0) -> Restart:
    return Restart(ts_ms=ts_ms, event_type=EventType.RESTART)


def disconnect(ts_ms: int = 0) -> Disconnect:
    return Disconnect(ts_ms=ts_ms, event_type=EventType.DISCONNECT)


def reset(ts_ms: int = 0) -> Reset:
    return Reset(ts_ms=ts_ms, event_type=EventType.RESET)


def reconnect_due(token: int) -> ReconnectDue:
    return ReconnectDue(ts_ms=0, event_type=EventType.RECONNECT_DUE, token=token)


def pairing_ready(generation: int, code: str = "ABC", ts_ms: int = 0) -> PairingReady:
    return PairingReady(
        ts_ms=ts_ms,
        event_type=EventType.PAIRING_READY,
        generation=generation,
        code=code,
        rendered_image=f"img:{code}",
    )


def opened(generation: int, name: str = "Alice", account_id: str = "1") -> Opened:
    return Opened(
        ts_ms=0,
        event_type=EventType.OPENED,
        generation=generation,
        display_name=name,
        account_id=account_id,
    )


def closed(generation: int, status_code: int | None) -> Closed:
    return Closed(
        ts_ms=0,
        event_type=EventType.CLOSED,
        generation=generation,
        status_code=status_code,
    )


def creds(generation: int, blob: bytes = b"blob") -> CredentialsChanged:
    return CredentialsChanged(
        ts_ms=0,
        event_type=EventType.CREDENTIALS_CHANGED,
        generation=generation,
        blob=blob,
    )


def failed(generation: int, reason: str = "boom") -> SessionFailed:
    return SessionFailed(
        ts_ms=0,
        event_type=EventType.SESSION_FAILED,
        generation=generation,
        reason=reason,
    )


def of_type(commands: tuple[Command, ...], cls: type) -> list:
    return [c for c in commands if isinstance(c, cls)]


def started(policy: ReconnectPolicy | None = None) -> BridgeState:
    state, _ = reduce(BridgeState(policy=policy or ReconnectPolicy()), start())
    return state


def assert_invariants(state: BridgeState) -> None:
    assert (state.pairing.get() is not None) == (
        state.state is ConnectionState.AWAITING_PAIRING
    )
    assert (state.info is not None) == (state.state is ConnectionState.CONNECTED)
    assert state.reconnect_attempt <= state.policy.max_attempts


# ---------------------------------------------------------------------
# Start / restart
# ---------------------------------------------------------------------

def test_start_from_idle_starts_generation_one():
    state, commands = reduce(BridgeState(), start())

    assert state.state is ConnectionState.CONNECTING
    assert state.generation == 1
    assert state.session_active
    assert of_type(commands, StartSession) == [StartSession(generation=1)]


def test_start_is_ignored_while_a_session_is_active():
    state = started()

    new_state, commands = reduce(state, start())

    assert new_state == state
    assert not of_type(commands, StartSession)
    assert commands[0].event["details"]["reason"] == "session_already_active"


def test_restart_retires_current_session_and_resets_attempts():
    state = started()
    state, _ = reduce(state, closed(1, 428))
    state, _ = reduce(state, reconnect_due(state.pending_reconnect))
    assert state.reconnect_attempt == 1

    new_state, commands = reduce(state, restart())

    assert new_state.generation == 3
    assert new_state.reconnect_attempt == 0
    assert of_type(commands, RetireSession) == [RetireSession(generation=2)]
    assert of_type(commands, StartSession) == [StartSession(generation=3)]
    # Retire must run before the new session starts
    assert commands.index(RetireSession(generation=2)) < commands.index(
        StartSession(generation=3)
    )


def test_restart_cancels_pending_reconnect():
    state = started()
    state, _ = reduce(state, closed(1, 408))
    assert state.pending_reconnect is not None

    new_state, commands = reduce(state, restart())

    assert new_state.pending_reconnect is None
    assert of_type(commands, CancelReconnect)
    assert not of_type(commands, PurgeCredentials)


def test_two_restarts_leave_one_active_generation():
    state = started()
    state, first = reduce(state, restart())
    state, second = reduce(state, restart())

    assert state.generation == 3
    assert of_type(first, RetireSession) == [RetireSession(generation=1)]
    assert of_type(second, RetireSession) == [RetireSession(generation=2)]


# ---------------------------------------------------------------------
# Pairing
# ---------------------------------------------------------------------

def test_pairing_supersession_keeps_only_latest_code():
    state = started()
    state, _ = reduce(state, pairing_ready(1, "ABC", ts_ms=10))
    state, commands = reduce(state, pairing_ready(1, "XYZ", ts_ms=20))

    artifact = state.pairing.get()
    assert state.state is ConnectionState.AWAITING_PAIRING
    assert artifact is not None
    assert artifact.code == "XYZ"
    assert artifact.issued_at_ms == 20
    assert of_type(commands, ShowPairingCode) == [ShowPairingCode(code="XYZ")]


def test_pairing_ready_after_open_is_ignored():
    state = started()
    state, _ = reduce(state, opened(1))

    new_state, commands = reduce(state, pairing_ready(1, "LATE"))

    assert new_state == state
    assert commands[0].event["details"]["reason"] == "pairing_after_open"


def test_open_clears_pairing_artifact():
    state = started()
    state, _ = reduce(state, pairing_ready(1))
    state, _ = reduce(state, opened(1, "Alice", "1"))

    assert state.state is ConnectionState.CONNECTED
    assert state.pairing.get() is None
    assert state.info is not None
    assert state.info.display_name == "Alice"
    assert state.info.account_id == "1"


# ---------------------------------------------------------------------
# Stale gating
# ---------------------------------------------------------------------

def test_events_from_superseded_generation_are_dropped():
    state = started()
    state, _ = reduce(state, restart())
    assert state.generation == 2

    for stale in (pairing_ready(1), opened(1), closed(1, 401), creds(1), failed(1)):
        new_state, commands = reduce(state, stale)
        assert new_state == state
        assert len(commands) == 1
        assert commands[0].event["details"]["reason"] == "stale_generation"


def test_stale_reconnect_token_is_ignored():
    state = started()
    state, _ = reduce(state, closed(1, 428))
    token = state.pending_reconnect
    state, _ = reduce(state, restart())

    new_state, commands = reduce(state, reconnect_due(token))

    assert new_state == state
    assert commands[0].event["details"]["reason"] == "stale_reconnect_token"


# ---------------------------------------------------------------------
# Closures
# ---------------------------------------------------------------------

def test_transient_closure_schedules_backoff():
    policy = ReconnectPolicy(base_delay_ms=1000, max_delay_ms=60_000)
    state = started(policy)

    state, commands = reduce(state, closed(1, 428))

    assert state.state is ConnectionState.IDLE
    assert state.reconnect_attempt == 1
    assert state.last_disconnect is DisconnectCause.TRANSIENT
    schedule = of_type(commands, ScheduleReconnect)
    assert schedule == [ScheduleReconnect(token=1, delay_ms=1000)]
    assert of_type(commands, RetireSession) == [RetireSession(generation=1)]
    assert not of_type(commands, PurgeCredentials)


def test_unknown_closure_is_retried():
    state = started()

    state, commands = reduce(state, closed(1, 999))

    assert state.last_disconnect is DisconnectCause.UNKNOWN
    assert state.reconnect_attempt == 1
    assert not of_type(commands, PurgeCredentials)


def test_logged_out_purges_and_schedules_fresh_start():
    policy = ReconnectPolicy(fresh_restart_delay_ms=3000)
    state = started(policy)
    state, _ = reduce(state, opened(1))

    state, commands = reduce(state, closed(1, 401))

    assert state.state is ConnectionState.LOGGED_OUT
    assert state.info is None
    assert state.reconnect_attempt == 0
    assert of_type(commands, PurgeCredentials) == [PurgeCredentials(reason="logged_out")]
    assert of_type(commands, ScheduleReconnect)[0].delay_ms == 3000

    # The scheduled fresh start actually starts a new session
    state, commands = reduce(state, reconnect_due(state.pending_reconnect))
    assert state.state is ConnectionState.CONNECTING
    assert of_type(commands, StartSession) == [StartSession(generation=2)]


def test_bad_session_purges_into_errored():
    state = started()

    state, commands = reduce(state, closed(1, 500))

    assert state.state is ConnectionState.ERRORED
    assert state.last_disconnect is DisconnectCause.BAD_SESSION
    assert of_type(commands, PurgeCredentials) == [PurgeCredentials(reason="bad_session")]


def test_budget_exhaustion_escalates_to_purge():
    policy = ReconnectPolicy(max_attempts=2, base_delay_ms=10, max_delay_ms=1000)
    state = started(policy)

    state, c1 = reduce(state, closed(state.generation, 428))
    state, _ = reduce(state, reconnect_due(state.pending_reconnect))
    state, c2 = reduce(state, closed(state.generation, 428))
    state, _ = reduce(state, reconnect_due(state.pending_reconnect))
    state, c3 = reduce(state, closed(state.generation, 428))

    assert [s.delay_ms for s in of_type(c1 + c2, ScheduleReconnect)] == [10, 20]
    assert not of_type(c1 + c2, PurgeCredentials)

    assert of_type(c3, PurgeCredentials)
    assert of_type(c3, ScheduleReconnect)[0].delay_ms == policy.fresh_restart_delay_ms
    assert state.state is ConnectionState.ERRORED
    assert state.reconnect_attempt == 0
    assert state.last_disconnect is DisconnectCause.BAD_SESSION
    assert state.last_error == "reconnect attempts exhausted"


def test_session_failure_rests_in_errored_with_retry():
    state = started()

    state, commands = reduce(state, failed(1, "engine unreachable"))

    assert state.state is ConnectionState.ERRORED
    assert state.last_error == "engine unreachable"
    assert state.reconnect_attempt == 1
    assert of_type(commands, ScheduleReconnect)


def test_open_resets_attempts_and_clears_error():
    state = started()
    state, _ = reduce(state, failed(1))
    state, _ = reduce(state, reconnect_due(state.pending_reconnect))

    state, _ = reduce(state, opened(2))

    assert state.reconnect_attempt == 0
    assert state.last_error is None


# ---------------------------------------------------------------------
# Credentials / disconnect
# ---------------------------------------------------------------------

def test_credentials_change_only_persists():
    state = started()
    state, _ = reduce(state, opened(1))

    new_state, commands = reduce(state, creds(1, b"abc"))

    assert new_state == state
    assert of_type(commands, SaveCredentials) == [SaveCredentials(blob=b"abc")]


def test_disconnect_logs_out_purges_and_stays_logged_out():
    state = started()
    state, _ = reduce(state, opened(1))

    state, commands = reduce(state, disconnect())

    assert state.state is ConnectionState.LOGGED_OUT
    assert state.info is None
    assert not state.session_active
    assert state.pending_reconnect is None
    assert of_type(commands, LogoutSession) == [LogoutSession(generation=1)]
    assert of_type(commands, RetireSession) == [RetireSession(generation=1)]
    assert of_type(commands, PurgeCredentials)
    assert not of_type(commands, ScheduleReconnect)
    # Logout must be attempted before the session is retired
    assert commands.index(LogoutSession(generation=1)) < commands.index(
        RetireSession(generation=1)
    )


def test_disconnect_without_session_is_a_noop():
    state = BridgeState()

    new_state, commands = reduce(state, disconnect())

    assert new_state == state
    assert all(isinstance(c, LogEvent) for c in commands)


def test_disconnect_during_backoff_cancels_retry_and_purges():
    state, _ = reduce(started(), closed(1, 408))
    assert state.pending_reconnect is not None
    assert not state.session_active

    new_state, commands = reduce(state, disconnect())

    assert new_state.state is ConnectionState.LOGGED_OUT
    assert new_state.pending_reconnect is None
    assert new_state.reconnect_attempt == 0
    assert new_state.last_disconnect is DisconnectCause.LOGGED_OUT
    assert of_type(commands, CancelReconnect) == [CancelReconnect()]
    assert len(of_type(commands, PurgeCredentials)) == 1
    assert not of_type(commands, LogoutSession)
    assert not of_type(commands, RetireSession)
    assert commands.index(CancelReconnect()) < commands.index(
        of_type(commands, PurgeCredentials)[0]
    )

    # The superseded timer no longer brings the session back
    after_due, due_commands = reduce(new_state, reconnect_due(state.pending_reconnect))
    assert after_due.state is ConnectionState.LOGGED_OUT
    assert not of_type(due_commands, StartSession)


def test_disconnect_while_errored_purges_into_logged_out():
    state, _ = reduce(started(), failed(1))
    assert state.state is ConnectionState.ERRORED

    new_state, commands = reduce(state, disconnect())

    assert new_state.state is ConnectionState.LOGGED_OUT
    assert new_state.pending_reconnect is None
    assert len(of_type(commands, PurgeCredentials)) == 1
    assert_invariants(new_state)


def test_disconnect_cancels_fresh_start_after_remote_logout():
    state, _ = reduce(started(), closed(1, 401))
    assert state.state is ConnectionState.LOGGED_OUT
    assert state.pending_reconnect is not None

    new_state, commands = reduce(state, disconnect())

    assert new_state.state is ConnectionState.LOGGED_OUT
    assert new_state.pending_reconnect is None
    assert of_type(commands, CancelReconnect) == [CancelReconnect()]


def test_disconnect_when_already_logged_out_is_a_noop():
    state, _ = reduce(started(), disconnect())
    assert state.state is ConnectionState.LOGGED_OUT
    assert state.pending_reconnect is None

    new_state, commands = reduce(state, disconnect())

    assert new_state == state
    assert all(isinstance(c, LogEvent) for c in commands)


# ---------------------------------------------------------------------
# Reset
# ---------------------------------------------------------------------

def test_reset_retires_then_purges_then_starts_new_generation():
    state, _ = reduce(started(), opened(1))

    new_state, commands = reduce(state, reset())

    retire = commands.index(RetireSession(generation=1))
    purge = commands.index(of_type(commands, PurgeCredentials)[0])
    begin = commands.index(StartSession(generation=2))
    assert retire < purge < begin
    assert not of_type(commands, LogoutSession)

    assert new_state.state is ConnectionState.CONNECTING
    assert new_state.generation == 2
    assert new_state.session_active
    assert new_state.info is None
    assert new_state.reconnect_attempt == 0
    assert_invariants(new_state)


def test_reset_during_backoff_cancels_pending_retry():
    state, _ = reduce(started(), closed(1, 408))
    assert state.pending_reconnect is not None

    new_state, commands = reduce(state, reset())

    assert of_type(commands, CancelReconnect) == [CancelReconnect()]
    assert not of_type(commands, RetireSession)
    assert new_state.pending_reconnect is None
    assert new_state.generation == 2
    assert new_state.session_active


def test_reset_from_idle_purges_and_starts():
    new_state, commands = reduce(BridgeState(), reset())

    assert len(of_type(commands, PurgeCredentials)) == 1
    assert of_type(commands, StartSession) == [StartSession(generation=1)]
    assert new_state.state is ConnectionState.CONNECTING


# ---------------------------------------------------------------------
# Logging contract
# ---------------------------------------------------------------------

def test_reducer_emits_logevent_with_required_fields():
    _, commands = reduce(BridgeState(), start(ts_ms=123))

    payload = of_type(commands, LogEvent)[0].event
    for key in ("ts_ms", "state", "event_type", "decision", "generation", "details"):
        assert key in payload
    assert payload["ts_ms"] == 123


def test_state_changed_logs_come_last():
    _, commands = reduce(BridgeState(), start())

    logs = of_type(commands, LogEvent)
    assert logs[-1].event["decision"] == "state_changed"
    assert commands[-1] is logs[-1]


# ---------------------------------------------------------------------
# Invariant fuzz
# ---------------------------------------------------------------------

def _random_event(rng: random.Random, state: BridgeState) -> Event:
    gen = state.generation if rng.random() < 0.8 else max(0, state.generation - 1)
    choice = rng.randrange(11)
    if choice == 0:
        return start()
    if choice == 1:
        return restart()
    if choice == 2:
        return disconnect()
    if choice == 3:
        token = state.pending_reconnect or state.last_reconnect_token
        return reconnect_due(token)
    if choice == 4:
        return pairing_ready(gen, rng.choice(["A", "B", "C"]))
    if choice == 5:
        return opened(gen)
    if choice == 6:
        return creds(gen)
    if choice == 7:
        return failed(gen)
    if choice == 8:
        return reset()
    return closed(gen, rng.choice([None, 401, 408, 428, 440, 500, 503, 515, 999]))


def test_invariants_hold_for_random_event_sequences():
    rng = random.Random(1234)
    policy = ReconnectPolicy(max_attempts=3)

    for _ in range(200):
        state = BridgeState(policy=policy)
        last_generation = 0
        for _ in range(40):
            state, commands = reduce(state, _random_event(rng, state))
            assert_invariants(state)

            assert state.generation >= last_generation
            last_generation = state.generation

            assert len(of_type(commands, StartSession)) <= 1
            assert len(of_type(commands, ScheduleReconnect)) <= 1
