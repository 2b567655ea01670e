"""WebSocket event surface mirroring the call signaling endpoints."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict
from uuid import uuid4

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..core.deps import engine_for
from ..core.errors import InvalidState, SignalingError, ValidationError
from ..services.signaling import SignalingEngine

router = APIRouter()

logger = logging.getLogger(__name__)

Reply = dict[str, Any] | None
Handler = Callable[[SignalingEngine, str, dict[str, Any]], Awaitable[Reply]]


def _envelope(event: str, payload: dict[str, Any]) -> dict[str, Any]:
    return {"type": event, "payload": payload}


async def _register(engine: SignalingEngine, connection_id: str, payload: dict[str, Any]) -> Reply:
    user_id = payload.get("userId")
    await engine.register_presence(connection_id, user_id)
    return _envelope("registered", {"userId": engine.owner_of(connection_id)})


async def _call_user(engine: SignalingEngine, connection_id: str, payload: dict[str, Any]) -> Reply:
    caller_id = payload.get("callerId") or engine.owner_of(connection_id)
    started = await engine.start_call(caller_id, payload.get("calleeId"), payload.get("channelName"))
    return _envelope(
        "call-initiated",
        {
            "callId": started.call_id,
            "channelName": started.channel_name,
            "token": started.token.token,
            "expireAt": started.token.expire_at,
        },
    )


async def _accept_call(engine: SignalingEngine, connection_id: str, payload: dict[str, Any]) -> Reply:
    callee_id = payload.get("calleeId") or engine.owner_of(connection_id)
    accepted = await engine.accept_call(payload.get("callId"), callee_id)
    return _envelope(
        "call-accepted",
        {
            "callId": accepted.call_id,
            "channelName": accepted.channel_name,
            "token": accepted.token.token,
            "expireAt": accepted.token.expire_at,
        },
    )


async def _reject_call(engine: SignalingEngine, connection_id: str, payload: dict[str, Any]) -> Reply:
    callee_id = payload.get("calleeId") or engine.owner_of(connection_id)
    await engine.reject_call(payload.get("callId"), callee_id)
    return None


async def _end_call(engine: SignalingEngine, connection_id: str, payload: dict[str, Any]) -> Reply:
    user_id = payload.get("userId") or engine.owner_of(connection_id)
    await engine.end_call(payload.get("callId"), user_id)
    return None


async def _cancel_call(engine: SignalingEngine, connection_id: str, payload: dict[str, Any]) -> Reply:
    caller_id = payload.get("callerId") or engine.owner_of(connection_id)
    await engine.cancel_call(payload.get("callId"), caller_id)
    return None


async def _close_connection(engine: SignalingEngine, connection_id: str) -> None:
    """Unregister a closed socket and cancel any calls its owner left ringing."""

    user_id = await engine.disconnect(connection_id)
    logger.info("Connection %s closed (user=%s)", connection_id, user_id)


HANDLERS: Dict[str, Handler] = {
    "register": _register,
    "call-user": _call_user,
    "accept-call": _accept_call,
    "reject-call": _reject_call,
    "end-call": _end_call,
    "cancel-call": _cancel_call,
}


@router.websocket("/ws")
async def signaling_endpoint(websocket: WebSocket) -> None:
    """Per-connection event loop: register presence, then relay call signaling."""

    engine = engine_for(websocket.app)
    connection_id = websocket.query_params.get("connection_id") or str(uuid4())
    await websocket.accept()
    try:
        await engine.connect(connection_id, websocket.send_json)
    except InvalidState:
        logger.info("Connection id %s already in use; assigning a fresh one", connection_id)
        connection_id = str(uuid4())
        await engine.connect(connection_id, websocket.send_json)
    await websocket.send_json(_envelope("connected", {"connectionId": connection_id}))

    try:
        while True:
            try:
                message = await websocket.receive_json()
            except (ValueError, KeyError):
                # KeyError: a binary frame carries no text
                await websocket.send_json(
                    _envelope("error", {"event": None, "error": "validation_error", "detail": "Malformed JSON"})
                )
                continue
            if not isinstance(message, dict):
                continue

            event = message.get("type")
            payload = message.get("payload", message.get("data", message))
            try:
                handler = HANDLERS.get(event) if isinstance(event, str) else None
                if handler is None:
                    raise ValidationError(f"Unknown event {event!r}")
                if not isinstance(payload, dict):
                    raise ValidationError("Event payload must be an object")
                reply = await handler(engine, connection_id, payload)
            except SignalingError as exc:
                await websocket.send_json(
                    _envelope("error", {"event": event, "error": exc.code, "detail": exc.detail})
                )
                continue
            if reply is not None:
                await websocket.send_json(reply)
    except WebSocketDisconnect:
        pass
    finally:
        await asyncio.shield(_close_connection(engine, connection_id))
