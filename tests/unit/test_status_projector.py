# pylint: disable=missing-module-docstring,missing-function-docstring
from dataclasses import replace

from connection.enums.cause import DisconnectCause
from connection.enums.state import ConnectionState
from connection.pairing import PairingArtifact, PairingCodeCache
from connection.projector import StatusProjector
from connection.state_dataclass import BridgeState, ConnectionInfo


def test_idle_projection():
    view = StatusProjector(BridgeState).project()

    assert view.to_json() == {
        "state": "IDLE",
        "connected": False,
        "hasPairingArtifact": False,
        "reconnectAttempt": 0,
        "info": None,
        "lastDisconnect": None,
        "lastError": None,
    }


def test_connected_projection_carries_info():
    state = BridgeState(
        state=ConnectionState.CONNECTED,
        info=ConnectionInfo(display_name="Alice", account_id="1"),
    )

    payload = StatusProjector(lambda: state).project().to_json()

    assert payload["connected"] is True
    assert payload["info"] == {"displayName": "Alice", "accountId": "1"}


def test_projection_reports_last_disconnect_and_attempt():
    state = BridgeState(
        reconnect_attempt=2,
        last_disconnect=DisconnectCause.TRANSIENT,
    )

    payload = StatusProjector(lambda: state).project().to_json()

    assert payload["reconnectAttempt"] == 2
    assert payload["lastDisconnect"] == "TRANSIENT"


def test_pairing_view_reads_one_snapshot():
    art = PairingArtifact(code="ABC", rendered_image="img", issued_at_ms=5)
    snapshots = [
        BridgeState(
            state=ConnectionState.AWAITING_PAIRING,
            pairing=PairingCodeCache(artifact=art),
        )
    ]

    projector = StatusProjector(lambda: snapshots[0])
    view = projector.pairing()

    # A later swap does not affect a view already taken
    snapshots[0] = replace(snapshots[0], state=ConnectionState.IDLE, pairing=PairingCodeCache())

    assert view.state is ConnectionState.AWAITING_PAIRING
    assert view.artifact == art
    assert not view.is_connected
