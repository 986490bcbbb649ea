"""
NetworkSession backed by a protocol engine sidecar.

The engine owns the messaging protocol (handshake, crypto, multi-device
state). This adapter speaks a small JSON protocol with it over one
WebSocket per session:

    bridge -> engine
        {"type": "hello", "credentials": <base64 | null>}
        {"type": "call", "id": <int>, "method": <str>, "params": {...}}
            methods: fetch_groups, fetch_messages {chatId, limit}, logout

    engine -> bridge
        {"type": "qr", "code": <str>}
        {"type": "open", "user": {"name": <str>, "id": <str>}}
        {"type": "close", "statusCode": <int | null>, "message": <str>}
        {"type": "creds", "blob": <base64>}
        {"type": "result", "id": <int>, "ok": <bool>, "data": ..., "error": <str>}

Design constraints:
- Adapter never classifies disconnects; it reports raw status codes.
- Adapter never touches bridge state; it only yields session events.
- Losing the link is reported as a closure with no status code.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
from typing import Any, AsyncIterator

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed

from constants import ENGINE_CALL_TIMEOUT_S, ENGINE_CONNECT_TIMEOUT_S

from observability.logger import log_event

from session.errors import EngineCallError, EngineProtocolError, NotConnectedError
from session.protocols import (
    CredentialsUpdated,
    GroupSummary,
    MessageSummary,
    PairingCode,
    SessionClosed,
    SessionEvent,
    SessionOpened,
)


def normalize_account_id(raw_id: str) -> str:
    """Drop the device suffix: '15551234:7@host' -> '15551234'."""
    return raw_id.split(":", 1)[0] if raw_id else "Unknown"


def parse_engine_message(data: dict[str, Any]) -> SessionEvent | None:
    """
    Translate one engine lifecycle message into a session event.

    Returns None for message types this adapter does not know.

    Raises:
        EngineProtocolError if a known message is malformed.
    """
    msg_type = data.get("type")

    if msg_type == "qr":
        code = data.get("code")
        if not isinstance(code, str) or not code:
            raise EngineProtocolError("qr message without code")
        return PairingCode(code=code)

    if msg_type == "open":
        user = data.get("user") or {}
        return SessionOpened(
            display_name=user.get("name") or "Unknown",
            account_id=normalize_account_id(user.get("id") or ""),
        )

    if msg_type == "close":
        status_code = data.get("statusCode")
        if status_code is not None and not isinstance(status_code, int):
            raise EngineProtocolError(f"non-integer statusCode: {status_code!r}")
        return SessionClosed(
            status_code=status_code,
            message=str(data.get("message") or ""),
        )

    if msg_type == "creds":
        try:
            blob = base64.b64decode(data.get("blob") or "", validate=True)
        except (binascii.Error, TypeError) as e:
            raise EngineProtocolError(f"undecodable creds blob: {e}") from e
        return CredentialsUpdated(blob=blob)

    return None


def parse_groups(data: Any) -> list[GroupSummary]:
    """Accept either a list of groups or a mapping of id -> group."""
    if isinstance(data, dict):
        data = list(data.values())
    if not isinstance(data, list):
        raise EngineProtocolError(f"unexpected groups payload: {type(data).__name__}")

    groups: list[GroupSummary] = []
    for item in data:
        participants = item.get("participants")
        if isinstance(participants, list):
            count = len(participants)
        else:
            count = int(item.get("participantCount") or 0)

        groups.append(
            GroupSummary(
                id=str(item.get("id")),
                name=item.get("name") or item.get("subject") or "Unknown Group",
                participant_count=count,
                created_at=_optional_int(item.get("creation")),
                description=item.get("desc") or "",
            )
        )
    return groups


def parse_messages(data: Any) -> list[MessageSummary]:
    """Translate an engine message list; text-less messages read as '[Media]'."""
    if not isinstance(data, list):
        raise EngineProtocolError(f"unexpected messages payload: {type(data).__name__}")

    messages: list[MessageSummary] = []
    for item in data:
        if not isinstance(item, dict):
            raise EngineProtocolError("message entry is not an object")
        messages.append(
            MessageSummary(
                id=str(item.get("id") or ""),
                body=item.get("body") or "[Media]",
                author=str(item.get("author") or item.get("remoteJid") or ""),
                timestamp=_optional_int(item.get("timestamp")),
                from_me=bool(item.get("fromMe")),
                kind=str(item.get("type") or "unknown"),
            )
        )
    return messages


def _optional_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class EngineNetworkSession:
    """
    One session == one WebSocket to the engine.

    The event iterator drives the socket: it sends the hello frame,
    routes RPC results to waiting callers and yields lifecycle events.
    """

    def __init__(
        self,
        *,
        url: str,
        credentials: bytes | None,
        token: str | None = None,
    ) -> None:
        self._url = url
        self._credentials = credentials
        self._token = token

        self._ws: ClientConnection | None = None
        self._pending: dict[int, asyncio.Future[Any]] = {}
        self._next_call_id = 0

        self._opened = False
        self._terminated = False

    # ------------------------------------------------------------------
    # Event stream
    # ------------------------------------------------------------------

    async def events(self) -> AsyncIterator[SessionEvent]:
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else None
        self._ws = await connect(
            self._url,
            additional_headers=headers,
            open_timeout=ENGINE_CONNECT_TIMEOUT_S,
            max_size=2**22,
        )
        ws = self._ws

        link_lost: str | None = None
        try:
            await ws.send(json.dumps({
                "type": "hello",
                "credentials": (
                    base64.b64encode(self._credentials).decode("ascii")
                    if self._credentials
                    else None
                ),
            }))

            async for raw in ws:
                try:
                    data = json.loads(raw)
                except (TypeError, ValueError) as e:
                    log_event({
                        "event_type": "ENGINE_BAD_FRAME",
                        "error": str(e),
                        "payload_preview": str(raw)[:100],
                    })
                    continue
                if not isinstance(data, dict):
                    log_event({
                        "event_type": "ENGINE_BAD_FRAME",
                        "error": "frame is not an object",
                        "payload_preview": str(raw)[:100],
                    })
                    continue

                if data.get("type") == "result":
                    self._resolve(data)
                    continue

                event = parse_engine_message(data)
                if event is None:
                    log_event({
                        "event_type": "ENGINE_UNKNOWN_MESSAGE",
                        "msg_type": data.get("type"),
                    })
                    continue

                if isinstance(event, SessionOpened):
                    self._opened = True
                elif isinstance(event, SessionClosed):
                    self._opened = False
                    yield event
                    return

                yield event

            link_lost = "engine link lost"
        except ConnectionClosed as e:
            link_lost = f"engine link lost: {e}"
        finally:
            self._opened = False
            self._fail_pending("session ended")
            await self._close_socket()

        if not self._terminated:
            yield SessionClosed(status_code=None, message=link_lost or "")

    # ------------------------------------------------------------------
    # RPC surface
    # ------------------------------------------------------------------

    async def fetch_groups(self) -> list[GroupSummary]:
        if not self._opened:
            raise NotConnectedError()
        return parse_groups(await self._call("fetch_groups"))

    async def fetch_messages(self, chat_id: str, limit: int) -> list[MessageSummary]:
        if not self._opened:
            raise NotConnectedError()
        data = await self._call("fetch_messages", {"chatId": chat_id, "limit": limit})
        return parse_messages(data)

    async def logout(self) -> None:
        await self._call("logout")

    async def terminate(self) -> None:
        self._terminated = True
        self._opened = False
        self._fail_pending("session terminated")
        await self._close_socket()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _call(self, method: str, params: dict[str, Any] | None = None) -> Any:
        ws = self._ws
        if ws is None or self._terminated:
            raise NotConnectedError()

        self._next_call_id += 1
        call_id = self._next_call_id
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[call_id] = future

        try:
            await ws.send(json.dumps({
                "type": "call",
                "id": call_id,
                "method": method,
                "params": params or {},
            }))
            return await asyncio.wait_for(future, ENGINE_CALL_TIMEOUT_S)
        except ConnectionClosed as e:
            raise NotConnectedError() from e
        finally:
            self._pending.pop(call_id, None)

    def _resolve(self, data: dict[str, Any]) -> None:
        future = self._pending.get(data.get("id"))  # type: ignore[arg-type]
        if future is None or future.done():
            return
        if data.get("ok"):
            future.set_result(data.get("data"))
        else:
            future.set_exception(EngineCallError(str(data.get("error") or "engine call failed")))

    def _fail_pending(self, reason: str) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(NotConnectedError())
        if self._pending:
            log_event({
                "event_type": "ENGINE_CALLS_ABORTED",
                "count": len(self._pending),
                "reason": reason,
            })
        self._pending.clear()

    async def _close_socket(self) -> None:
        ws = self._ws
        self._ws = None
        if ws is None:
            return
        try:
            await ws.close()
        except Exception:  # pylint: disable=broad-exception-caught
            pass


def engine_session_factory(*, url: str, token: str | None = None):
    """Build a SessionFactory bound to one engine endpoint."""

    def _factory(credentials: bytes | None) -> EngineNetworkSession:
        return EngineNetworkSession(url=url, credentials=credentials, token=token)

    return _factory
