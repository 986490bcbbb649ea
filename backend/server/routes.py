"""
Route registration for the bridge API.

Responsibilities:
- Define HTTP endpoints
- Translate bridge errors into status codes
- Pull dependencies from app.state

Read routes only project the current snapshot; they never start or wait
for a connection attempt.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse

from connection.manager import ConnectionManager
from connection.projector import StatusProjector

from observability.logger import log_event

from constants import DEFAULT_MESSAGE_LIMIT

from session.errors import GroupFetchError, MessageFetchError, NotConnectedError


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""

    @app.get("/health")
    async def health(request: Request) -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        view = _projector(request).project()
        return {
            "status": "ok",
            "connected": view.is_connected,
            "uptimeS": int(time.monotonic() - request.app.state.started_at),
        }

    @app.get("/status")
    async def status(request: Request) -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        return _projector(request).project().to_json()

    @app.get("/qr")
    async def qr(request: Request) -> Any: # pyright: ignore[reportUnusedFunction]
        view = _projector(request).pairing()

        if view.is_connected:
            return {"connected": True, "artifact": None}

        if view.artifact is None:
            return JSONResponse(
                status_code=202,
                content={
                    "state": view.state.value,
                    "message": "not ready",
                    "artifact": None,
                },
            )

        return {
            "state": view.state.value,
            "artifact": {
                "code": view.artifact.code,
                "image": view.artifact.rendered_image,
                "issuedAt": view.artifact.issued_at_ms,
            },
        }

    @app.get("/chats")
    async def chats( # pyright: ignore[reportUnusedFunction]
        request: Request,
        limit: int | None = Query(default=None, ge=1),
    ) -> Any:
        manager = _manager(request)
        if limit is None:
            limit = request.app.state.config.chat_list_limit

        try:
            groups = await manager.list_groups(limit=limit)
        except NotConnectedError as exc:
            return _not_connected(exc)
        except GroupFetchError as exc:
            log_event({
                "event_type": "GROUP_FETCH_FAILED",
                "error": str(exc),
                "state": manager.state.state.value,
            })
            return JSONResponse(
                status_code=502,
                content={
                    "error": "group_fetch_failed",
                    "message": str(exc),
                    "state": manager.state.state.value,
                },
            )

        return {
            "count": len(groups),
            "groups": [
                {
                    "id": g.id,
                    "name": g.name,
                    "participantCount": g.participant_count,
                    "creation": g.created_at,
                    "desc": g.description,
                }
                for g in groups
            ],
        }

    @app.get("/chats/{chat_id}/messages")
    async def chat_messages( # pyright: ignore[reportUnusedFunction]
        request: Request,
        chat_id: str,
        limit: int = Query(default=DEFAULT_MESSAGE_LIMIT, ge=1),
    ) -> Any:
        manager = _manager(request)

        try:
            messages = await manager.list_messages(chat_id, limit=limit)
        except NotConnectedError as exc:
            return _not_connected(exc)
        except MessageFetchError as exc:
            log_event({
                "event_type": "MESSAGE_FETCH_FAILED",
                "chat_id": chat_id,
                "error": str(exc),
                "state": manager.state.state.value,
            })
            return JSONResponse(
                status_code=502,
                content={
                    "error": "message_fetch_failed",
                    "message": str(exc),
                    "state": manager.state.state.value,
                },
            )

        return {
            "chatId": chat_id,
            "count": len(messages),
            "messages": [
                {
                    "id": m.id,
                    "body": m.body,
                    "author": m.author,
                    "timestamp": _iso(m.timestamp),
                    "fromMe": m.from_me,
                    "type": m.kind,
                }
                for m in messages
            ],
        }

    @app.post("/disconnect")
    async def disconnect(request: Request) -> dict[str, bool]: # pyright: ignore[reportUnusedFunction]
        await _manager(request).disconnect()
        return {"success": True}

    @app.post("/restart")
    async def restart(request: Request) -> dict[str, bool]: # pyright: ignore[reportUnusedFunction]
        await _manager(request).restart()
        return {"success": True}

    @app.post("/reset")
    async def reset(request: Request) -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        await _manager(request).reset()
        return {"success": True, "message": "resetting connection"}


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _manager(request: Request) -> ConnectionManager:
    return request.app.state.manager


def _projector(request: Request) -> StatusProjector:
    return request.app.state.projector


def _not_connected(exc: NotConnectedError) -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content={
            "error": "not_connected",
            "state": exc.state.value if exc.state is not None else None,
        },
    )


def _iso(epoch_s: int | None) -> str | None:
    if epoch_s is None:
        return None
    return datetime.fromtimestamp(epoch_s, tz=timezone.utc).isoformat()
