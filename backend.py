import json
import threading
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional, Tuple

import redis

from constants import (
    REDIS_HOST,
    REDIS_PORT,
    REDIS_PASSWORD,
    ROOM_IDLE_TTL_SECONDS,
    SIGNAL_RETENTION_SECONDS,
    STORE_BACKEND,
)
from errors import RoomFull, RoomNotFound
from identifiers import generate_id
from logging_config import get_logger
from redis_keys import REDIS_CLOCK_KEY, REDIS_META_KEY, REDIS_SIGNALS_KEY

logger = get_logger(__name__)

def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class Room:
    room_id: str
    host_id: str
    guest_id: Optional[str] = None
    created_at: int = 0
    last_active: int = 0


@dataclass(frozen=True)
class Signal:
    from_peer: str
    to_peer: str
    type: str
    data: Any
    timestamp: int

    def to_dict(self) -> dict:
        return {
            "from": self.from_peer,
            "to": self.to_peer,
            "type": self.type,
            "data": self.data,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "Signal":
        return cls(
            from_peer=raw["from"],
            to_peer=raw["to"],
            type=raw["type"],
            data=raw.get("data"),
            timestamp=int(raw["timestamp"]),
        )


class _RoomState:
    """A room plus its signal queue. `lock` serializes guest assignment and queue writes."""

    def __init__(self, room: Room):
        self.room = room
        self.lock = threading.Lock()
        self.signals: List[Signal] = []
        self.last_timestamp = 0


class MemoryBackend:
    """In-process room registry and signal queue.

    Rooms live for the lifetime of the process. Each room has its own lock, so
    operations on different rooms never wait on each other; the registry lock is
    held only while a room is inserted or removed.
    """

    def __init__(
        self,
        retention_seconds: int = SIGNAL_RETENTION_SECONDS,
        idle_ttl_seconds: int = ROOM_IDLE_TTL_SECONDS,
        clock: Callable[[], int] = now_ms,
    ):
        self.retention_ms = retention_seconds * 1000
        self.idle_ttl_ms = idle_ttl_seconds * 1000
        self._clock = clock
        self._rooms: Dict[str, _RoomState] = {}
        self._registry_lock = threading.Lock()
        logger.info(f"Initializing MemoryBackend (retention={retention_seconds}s, idle_ttl={idle_ttl_seconds}s)")

    def _state(self, room_id: str) -> _RoomState:
        state = self._rooms.get(room_id)
        if state is None:
            logger.debug(f"Room {room_id} not found")
            raise RoomNotFound()
        return state

    def create_room(self) -> Tuple[str, str]:
        host_id = generate_id()
        now = self._clock()
        with self._registry_lock:
            room_id = generate_id()
            while room_id in self._rooms:
                logger.debug(f"Room id collision on {room_id}, regenerating")
                room_id = generate_id()
            self._rooms[room_id] = _RoomState(
                Room(room_id=room_id, host_id=host_id, created_at=now, last_active=now)
            )
        logger.info(f"Room {room_id} created with host {host_id}")
        return room_id, host_id

    def get_room(self, room_id: str) -> Optional[Room]:
        state = self._rooms.get(room_id)
        if state is None:
            return None
        with state.lock:
            return replace(state.room)

    def join_room(self, room_id: str) -> Tuple[str, str]:
        state = self._state(room_id)
        with state.lock:
            room = state.room
            if room.guest_id is not None:
                logger.warning(f"Join rejected: room {room_id} already has a guest")
                raise RoomFull()
            guest_id = generate_id()
            while guest_id == room.host_id:
                guest_id = generate_id()
            room.guest_id = guest_id
            room.last_active = self._clock()
        logger.info(f"Guest {guest_id} joined room {room_id}")
        return guest_id, room.host_id

    def delete_room(self, room_id: str):
        with self._registry_lock:
            state = self._rooms.pop(room_id, None)
        if state is None:
            raise RoomNotFound()
        logger.info(f"Room {room_id} deleted ({len(state.signals)} pending signals dropped)")

    def post_signal(self, room_id: str, from_peer: str, to_peer: str, signal_type: str, data: Any) -> int:
        state = self._state(room_id)
        with state.lock:
            now = self._clock()
            cutoff = now - self.retention_ms
            kept = [s for s in state.signals if s.timestamp > cutoff]
            pruned = len(state.signals) - len(kept)
            timestamp = max(now, state.last_timestamp + 1)
            kept.append(Signal(from_peer, to_peer, signal_type, data, timestamp))
            state.signals = kept
            state.last_timestamp = timestamp
            state.room.last_active = now
        if pruned:
            logger.debug(f"Pruned {pruned} expired signals from room {room_id}")
        logger.debug(f"Signal {signal_type} {from_peer} -> {to_peer} queued in room {room_id} at {timestamp}")
        return timestamp

    def poll_signals(self, room_id: str, peer_id: Optional[str], since: int) -> List[Signal]:
        state = self._rooms.get(room_id)
        if state is None or not peer_id:
            return []
        cutoff = self._clock() - self.retention_ms
        with state.lock:
            snapshot = state.signals
        matched = [
            s for s in snapshot
            if s.to_peer == peer_id and s.timestamp > since and s.timestamp > cutoff
        ]
        return sorted(matched, key=lambda s: s.timestamp)

    def sweep_idle_rooms(self) -> int:
        cutoff = self._clock() - self.idle_ttl_ms
        with self._registry_lock:
            stale = [room_id for room_id, state in self._rooms.items() if state.room.last_active < cutoff]
            for room_id in stale:
                del self._rooms[room_id]
        if stale:
            logger.info(f"Swept {len(stale)} idle rooms")
        return len(stale)

    def room_count(self) -> int:
        return len(self._rooms)

    def close(self):
        with self._registry_lock:
            dropped = len(self._rooms)
            self._rooms.clear()
        logger.info(f"MemoryBackend closed, dropped {dropped} rooms")


class RedisBackend:
    """Room registry and signal queue kept in Redis so several instances can share rooms.

    Room creation, the guest slot and signal posts each run in a WATCH/MULTI
    transaction watching the room meta key, so a room deleted or expired mid-call
    is never recreated; a signal post also watches the room clock so prune,
    append and timestamp assignment commit together. Idle rooms expire through
    key TTLs.
    """

    def __init__(
        self,
        redis_client: Optional[redis.Redis] = None,
        retention_seconds: int = SIGNAL_RETENTION_SECONDS,
        idle_ttl_seconds: int = ROOM_IDLE_TTL_SECONDS,
        clock: Callable[[], int] = now_ms,
    ):
        if redis_client is None:
            try:
                redis_client = redis.Redis(host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, decode_responses=True)
                redis_client.ping()
                logger.info(f"Redis client connected successfully to {REDIS_HOST}:{REDIS_PORT}")
            except redis.RedisError as e:
                logger.error(f"Failed to connect to Redis at {REDIS_HOST}:{REDIS_PORT}: {e}", exc_info=True)
                raise
        self.redis_client = redis_client
        self.retention_ms = retention_seconds * 1000
        self.idle_ttl_seconds = idle_ttl_seconds
        self._clock = clock

    def _keys(self, room_id: str) -> Tuple[str, str, str]:
        return (
            REDIS_META_KEY.format(slug=room_id),
            REDIS_SIGNALS_KEY.format(slug=room_id),
            REDIS_CLOCK_KEY.format(slug=room_id),
        )

    def create_room(self) -> Tuple[str, str]:
        host_id = generate_id()
        while True:
            room_id = generate_id()
            meta_key = REDIS_META_KEY.format(slug=room_id)

            def claim(pipe) -> bool:
                if pipe.exists(meta_key):
                    return False
                now = self._clock()
                pipe.multi()
                pipe.hset(meta_key, mapping={
                    "room_id": room_id,
                    "host_id": host_id,
                    "created_at": now,
                    "last_active": now,
                })
                pipe.expire(meta_key, self.idle_ttl_seconds)
                return True

            if self.redis_client.transaction(claim, meta_key, value_from_callable=True):
                break
            logger.debug(f"Room id collision on {room_id}, regenerating")
        logger.info(f"Room {room_id} created with host {host_id}")
        return room_id, host_id

    def get_room(self, room_id: str) -> Optional[Room]:
        meta_key = REDIS_META_KEY.format(slug=room_id)
        data = self.redis_client.hgetall(meta_key)
        if not data or "host_id" not in data:
            return None
        return Room(
            room_id=room_id,
            host_id=data["host_id"],
            guest_id=data.get("guest_id"),
            created_at=int(data.get("created_at", 0)),
            last_active=int(data.get("last_active", 0)),
        )

    def join_room(self, room_id: str) -> Tuple[str, str]:
        meta_key = REDIS_META_KEY.format(slug=room_id)

        def claim_guest_slot(pipe) -> Tuple[str, str]:
            host_id, current_guest = pipe.hmget(meta_key, "host_id", "guest_id")
            if not host_id:
                raise RoomNotFound()
            if current_guest:
                logger.warning(f"Join rejected: room {room_id} already has a guest")
                raise RoomFull()
            guest_id = generate_id()
            while guest_id == host_id:
                guest_id = generate_id()
            pipe.multi()
            pipe.hset(meta_key, "guest_id", guest_id)
            self._touch(pipe, room_id)
            return guest_id, host_id

        guest_id, host_id = self.redis_client.transaction(claim_guest_slot, meta_key, value_from_callable=True)
        logger.info(f"Guest {guest_id} joined room {room_id}")
        return guest_id, host_id

    def delete_room(self, room_id: str):
        meta_key, signals_key, clock_key = self._keys(room_id)
        pipe = self.redis_client.pipeline()
        pipe.delete(meta_key)
        pipe.delete(signals_key, clock_key)
        meta_deleted, _ = pipe.execute()
        if not meta_deleted:
            raise RoomNotFound()
        logger.info(f"Room {room_id} deleted")

    def _touch(self, pipe, room_id: str):
        """Queue a last_active refresh and TTL renewal on a pipeline already in MULTI."""
        meta_key, signals_key, clock_key = self._keys(room_id)
        pipe.hset(meta_key, "last_active", self._clock())
        for key in (meta_key, signals_key, clock_key):
            pipe.expire(key, self.idle_ttl_seconds)

    def post_signal(self, room_id: str, from_peer: str, to_peer: str, signal_type: str, data: Any) -> int:
        meta_key, signals_key, clock_key = self._keys(room_id)

        def append(pipe) -> int:
            # meta_key is watched, so a delete or expiry after this check aborts the MULTI
            if not pipe.hexists(meta_key, "host_id"):
                raise RoomNotFound()
            last_timestamp = int(pipe.get(clock_key) or 0)
            now = self._clock()
            timestamp = max(now, last_timestamp + 1)
            member = json.dumps(Signal(from_peer, to_peer, signal_type, data, timestamp).to_dict())
            pipe.multi()
            pipe.zremrangebyscore(signals_key, "-inf", now - self.retention_ms)
            pipe.zadd(signals_key, {member: timestamp})
            pipe.set(clock_key, timestamp)
            self._touch(pipe, room_id)
            return timestamp

        timestamp = self.redis_client.transaction(append, meta_key, clock_key, value_from_callable=True)
        logger.debug(f"Signal {signal_type} {from_peer} -> {to_peer} queued in room {room_id} at {timestamp}")
        return timestamp

    def poll_signals(self, room_id: str, peer_id: Optional[str], since: int) -> List[Signal]:
        if not peer_id:
            return []
        signals_key = REDIS_SIGNALS_KEY.format(slug=room_id)
        low = max(since, self._clock() - self.retention_ms)
        raw = self.redis_client.zrangebyscore(signals_key, f"({low}", "+inf")
        signals = [Signal.from_dict(json.loads(member)) for member in raw]
        return [s for s in signals if s.to_peer == peer_id]

    def sweep_idle_rooms(self) -> int:
        # Key TTLs expire idle rooms
        return 0

    def room_count(self) -> int:
        return sum(1 for _ in self.redis_client.scan_iter(match=REDIS_META_KEY.format(slug="*")))

    def close(self):
        self.redis_client.close()
        logger.info("RedisBackend connection closed")


def create_backend(name: str = STORE_BACKEND):
    if name == "redis":
        return RedisBackend()
    if name == "memory":
        return MemoryBackend()
    raise ValueError(f"Unknown STORE_BACKEND {name!r}, expected 'memory' or 'redis'")
