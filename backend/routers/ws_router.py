"""
WebSocket Hub — real-time room connections.

URL: /ws/{room_id}

Connection flow:
  1. Validate the room id (1–64 of [A-Za-z0-9_-]); otherwise close with 4400
  2. Accept, mint a connection id, register an outbound queue + writer task
  3. Room created lazily; Room.join() broadcasts "join" and sends "sync"
  4. Message loop: JSON-decode each text frame and hand it to the room
  5. On disconnect: Room.leave(), and the room is discarded once empty

Sends never await the socket: each connection has its own queue drained by a
writer task, so room handlers stay synchronous and one slow or broken client
cannot hold up the others.
"""
import asyncio
import json
import logging
import re
import uuid
from typing import Callable, Dict, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from agents.game_master import Room
from agents.narrator_agent import get_narrative_generator
from services.deck_service import get_deck_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])

ROOM_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
INVALID_ROOM_CLOSE_CODE = 4400


# ── Connection Manager ─────────────────────────────────────────────────────────

class ConnectionManager:
    """
    Tracks active WebSocket connections per room.
    Safe for asyncio single-threaded event loop (no extra locking needed).
    """

    def __init__(self):
        # {room_id: {connection_id: WebSocket}}
        self._rooms: Dict[str, Dict[str, WebSocket]] = {}
        self._queues: Dict[str, asyncio.Queue] = {}
        self._writers: Dict[str, asyncio.Task] = {}

    # ── Lifecycle ──────────────────────────────────────────────────────────────

    async def connect(self, room_id: str, connection_id: str, ws: WebSocket) -> None:
        await ws.accept()
        self._rooms.setdefault(room_id, {})[connection_id] = ws
        queue: asyncio.Queue = asyncio.Queue()
        self._queues[connection_id] = queue
        self._writers[connection_id] = asyncio.create_task(
            self._writer(room_id, connection_id, ws, queue)
        )
        logger.debug("[%s] %s connected (%d total)", room_id, connection_id, self.count(room_id))

    def disconnect(self, room_id: str, connection_id: str) -> None:
        room_conns = self._rooms.get(room_id, {})
        room_conns.pop(connection_id, None)
        if not room_conns:
            self._rooms.pop(room_id, None)

        queue = self._queues.pop(connection_id, None)
        if queue is not None:
            queue.put_nowait(None)  # stops the writer
        self._writers.pop(connection_id, None)

    def count(self, room_id: str) -> int:
        return len(self._rooms.get(room_id, {}))

    async def _writer(
        self, room_id: str, connection_id: str, ws: WebSocket, queue: asyncio.Queue
    ) -> None:
        while True:
            message = await queue.get()
            if message is None:
                return
            try:
                await ws.send_json(message)
            except Exception as exc:
                logger.warning("[%s] send to %s failed: %s", room_id, connection_id, exc)
                self.disconnect(room_id, connection_id)
                return

    # ── Sending ────────────────────────────────────────────────────────────────

    def send_to(self, room_id: str, connection_id: str, message: Dict) -> None:
        """Queue a private message for a single connection."""
        if connection_id not in self._rooms.get(room_id, {}):
            return
        queue = self._queues.get(connection_id)
        if queue is not None:
            queue.put_nowait(message)

    def broadcast(self, room_id: str, message: Dict, exclude: Optional[str] = None) -> None:
        """Queue a message for every connection in a room."""
        for connection_id in list(self._rooms.get(room_id, {})):
            if connection_id == exclude:
                continue
            self.send_to(room_id, connection_id, message)


manager = ConnectionManager()


class RoomChannel:
    """The delivery interface a Room sees: manager calls bound to one room id."""

    def __init__(self, connections: ConnectionManager, room_id: str):
        self._connections = connections
        self.room_id = room_id

    def send_to(self, connection_id: str, message: Dict) -> None:
        self._connections.send_to(self.room_id, connection_id, message)

    def broadcast(self, message: Dict, exclude: Optional[str] = None) -> None:
        self._connections.broadcast(self.room_id, message, exclude=exclude)


# ── Room registry ──────────────────────────────────────────────────────────────

def _default_room_factory(room_id: str) -> Room:
    return Room(
        room_id,
        RoomChannel(manager, room_id),
        get_deck_service(),
        get_narrative_generator(),
    )


class RoomRegistry:
    """Live rooms keyed by room id. A room exists from first join to last leave."""

    def __init__(self, factory: Callable[[str], Room] = _default_room_factory):
        self._rooms: Dict[str, Room] = {}
        self._factory = factory

    def get(self, room_id: str) -> Optional[Room]:
        return self._rooms.get(room_id)

    def get_or_create(self, room_id: str) -> Room:
        room = self._rooms.get(room_id)
        if room is None:
            room = self._factory(room_id)
            self._rooms[room_id] = room
            logger.info("[%s] Room created", room_id)
        return room

    def release(self, room_id: str) -> None:
        room = self._rooms.get(room_id)
        if room is not None and room.is_empty:
            del self._rooms[room_id]
            room.close()

    def __len__(self) -> int:
        return len(self._rooms)


registry = RoomRegistry()


# ── WebSocket endpoint ─────────────────────────────────────────────────────────

@router.websocket("/ws/{room_id}")
async def websocket_endpoint(ws: WebSocket, room_id: str):
    if not ROOM_ID_PATTERN.match(room_id):
        await ws.close(code=INVALID_ROOM_CLOSE_CODE, reason="Invalid room id")
        return

    connection_id = uuid.uuid4().hex
    await manager.connect(room_id, connection_id, ws)
    room = registry.get_or_create(room_id)
    room.join(connection_id)

    # ── Message loop ───────────────────────────────────────────────────────────
    try:
        while True:
            message = await ws.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            raw = message.get("text")
            if raw is None:
                logger.debug("[%s] Dropped binary frame from %s", room_id, connection_id)
                continue
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                logger.debug("[%s] Dropped non-JSON frame from %s", room_id, connection_id)
                continue
            _handle_message(room, connection_id, data)

    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(room_id, connection_id)
        room.leave(connection_id)
        registry.release(room_id)


# ── Message dispatcher ─────────────────────────────────────────────────────────

def _handle_message(room: Room, connection_id: str, data) -> None:
    try:
        room.handle_message(connection_id, data)
    except Exception:
        frame_type = data.get("type") if isinstance(data, dict) else None
        logger.exception(
            "[%s] Unhandled error in _handle_message (type=%s)", room.room_id, frame_type
        )
