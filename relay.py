import asyncio
import json
import uuid
from typing import Dict, Optional, Set

from constants import RELAY_MAX_MEMBERS, RELAY_OUTBOX_SIZE
from errors import DeliveryFailure, RoomFull
from logging_config import get_logger

logger = get_logger(__name__)


class RelayConnection:
    """One live WebSocket in a relay room.

    Outbound frames go through a bounded queue drained by `run_writer`, so
    handing a frame to a slow connection never blocks the caller.
    """

    def __init__(self, websocket, outbox_size: int = RELAY_OUTBOX_SIZE):
        self.websocket = websocket
        self.connection_id = str(uuid.uuid4())
        self.outbox: asyncio.Queue = asyncio.Queue(maxsize=outbox_size)
        self.closed = False

    def deliver(self, payload: str):
        if self.closed:
            raise DeliveryFailure(f"Connection {self.connection_id} is closed")
        try:
            self.outbox.put_nowait(payload)
        except asyncio.QueueFull:
            raise DeliveryFailure(f"Outbox full for connection {self.connection_id}")

    async def run_writer(self):
        try:
            while True:
                payload = await self.outbox.get()
                await self.websocket.send_text(payload)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.closed = True
            logger.warning(f"Writer for connection {self.connection_id} stopped: {e}")


class BroadcastRelay:
    """Fan-out of chat frames to every other member of a room.

    Rooms exist only while they have members. All methods are synchronous and
    must be called from the event loop that owns the connections.
    """

    def __init__(self, max_members: int = RELAY_MAX_MEMBERS):
        self.max_members = max_members
        self.rooms: Dict[str, Set[RelayConnection]] = {}

    def join(self, room_id: str, connection) -> int:
        members = self.rooms.get(room_id)
        if members is None:
            members = self.rooms[room_id] = set()
            logger.info(f"Relay room {room_id} created")
        if connection in members:
            return len(members)
        if len(members) >= self.max_members:
            logger.warning(f"Relay join rejected: room {room_id} is full ({len(members)}/{self.max_members})")
            raise RoomFull()
        members.add(connection)
        count = len(members)
        logger.info(f"Connection {connection.connection_id} joined relay room {room_id} ({count} members)")
        self._notify(room_id, {"type": "system", "event": "join", "count": count}, exclude=connection)
        return count

    def leave(self, room_id: str, connection):
        members = self.rooms.get(room_id)
        if not members or connection not in members:
            return
        members.discard(connection)
        logger.info(f"Connection {connection.connection_id} left relay room {room_id}")
        if not members:
            del self.rooms[room_id]
            logger.info(f"Relay room {room_id} is empty, deleted")
            return
        self._notify(room_id, {"type": "system", "event": "leave", "count": len(members)})

    def relay(self, room_id: str, sender, payload: str) -> int:
        """Hand `payload` to every member except `sender`. Returns how many accepted it."""
        recipients = [c for c in self.rooms.get(room_id, ()) if c is not sender]
        delivered = 0
        for connection in recipients:
            try:
                connection.deliver(payload)
                delivered += 1
            except DeliveryFailure as e:
                logger.warning(f"Delivery failure in relay room {room_id}: {e.message}")
            except Exception as e:
                logger.warning(f"Delivery failure in relay room {room_id} to {connection.connection_id}: {e}", exc_info=True)
        logger.debug(f"Relayed frame in room {room_id} to {delivered}/{len(recipients)} recipients")
        return delivered

    def _notify(self, room_id: str, message: dict, exclude: Optional[RelayConnection] = None):
        self.relay(room_id, exclude, json.dumps(message))

    def members(self, room_id: str) -> Set[RelayConnection]:
        return set(self.rooms.get(room_id, ()))

    def room_count(self) -> int:
        return len(self.rooms)

    def close(self):
        self.rooms.clear()
