"""WebSocket endpoint for the persistent session channel.

Frames are JSON. Clients send ``{"id": ..., "event": ..., "args": [...]}``
and receive ``{"id": ..., "response": {...}}``. Messages on one connection are
handled in order; separate connections run concurrently.
"""

import json
import logging
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app import database
from app.realtime.handlers import SessionChannelHandlers
from app.realtime.session import ChannelSession, connected_sessions

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])

MALFORMED_MESSAGE = "Malformed message"


class MalformedFrame(ValueError):
    """A client frame that cannot be dispatched."""

    def __init__(self, reason: str, message_id: Any = None):
        super().__init__(reason)
        self.message_id = message_id


def parse_frame(raw: str) -> tuple[Any, str, list[Any]]:
    """Split a client frame into (id, event, args).

    Raises:
        MalformedFrame: If the frame is not a JSON object with a string event
    """
    try:
        frame = json.loads(raw)
    except json.JSONDecodeError as e:
        raise MalformedFrame("Frame is not valid JSON") from e
    if not isinstance(frame, dict):
        raise MalformedFrame("Frame must be a JSON object")
    event = frame.get("event")
    if not isinstance(event, str):
        raise MalformedFrame("Frame has no event name", frame.get("id"))
    args = frame.get("args", [])
    if args is None:
        args = []
    if not isinstance(args, list):
        args = [args]
    return frame.get("id"), event, args


async def handle_frame(session: ChannelSession, raw: str) -> dict[str, Any]:
    """Process one client frame and build the reply frame."""
    try:
        message_id, event, args = parse_frame(raw)
    except MalformedFrame as e:
        logger.debug(f"Malformed channel frame: {e}")
        return {"id": e.message_id, "response": {"ok": False, "msg": MALFORMED_MESSAGE}}

    async with database.db_session() as db:
        handlers = SessionChannelHandlers(db, session)
        response = await handlers.dispatch(event, args)
    return {"id": message_id, "response": response}


@router.websocket("/ws")
async def session_channel(websocket: WebSocket):
    await websocket.accept()
    session = ChannelSession()
    connected_sessions.register(session)
    try:
        while True:
            raw = await websocket.receive_text()
            reply = await handle_frame(session, raw)
            await websocket.send_json(reply)
    except WebSocketDisconnect:
        logger.debug(f"Channel disconnected (user {session.user_id})")
    finally:
        connected_sessions.unregister(session)
