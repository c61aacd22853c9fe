from fastapi import APIRouter, Depends, Query, Request
from schemas.rooms import (
    CreateRoomResponse,
    DeleteRoomResponse,
    JoinRoomResponse,
    PollSignalsResponse,
    PostSignalResponse,
    RoomDetailsResponse,
    SignalOut,
    SignalRequest,
)
from typing import Optional
from constants import POLL_INTERVAL_MS
from errors import NotRoomHost, RoomNotFound
from logging_config import get_logger

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/room", tags=["rooms"])


def get_backend(request: Request):
    return request.app.state.backend


def parse_watermark(last_ts: Optional[str]) -> Optional[int]:
    """Parse the `lastTs` query value. Missing means 0; garbage means no usable watermark."""
    if last_ts is None or last_ts == "":
        return 0
    try:
        return int(last_ts)
    except ValueError:
        try:
            return int(float(last_ts))
        except (ValueError, OverflowError):
            return None


@rooms_router.post("", response_model=CreateRoomResponse)
def create_room(request: Request, backend=Depends(get_backend)):
    # Response: { "roomId": "k3j9x0ab", "peerId": "p0q8m2zz", "role": "host" }
    client_host = request.client.host if request.client else "unknown"
    logger.info(f"Room creation request from {client_host}")
    room_id, host_id = backend.create_room()
    return CreateRoomResponse(roomId=room_id, peerId=host_id)


@rooms_router.post("/{room_id}/join", response_model=JoinRoomResponse)
def join_room(room_id: str, request: Request, backend=Depends(get_backend)):
    # 404 when the room is unknown, 400 when the guest slot is already taken
    client_host = request.client.host if request.client else "unknown"
    logger.info(f"Join room request for {room_id} from {client_host}")
    guest_id, host_id = backend.join_room(room_id)
    return JoinRoomResponse(roomId=room_id, peerId=guest_id, hostId=host_id)


@rooms_router.get("/{room_id}", response_model=RoomDetailsResponse)
def get_room_details(room_id: str, backend=Depends(get_backend)):
    room = backend.get_room(room_id)
    if room is None:
        logger.warning(f"Room details failed: Room {room_id} not found")
        raise RoomNotFound()
    return RoomDetailsResponse(
        roomId=room.room_id,
        hasGuest=room.guest_id is not None,
        createdAt=room.created_at,
        pollIntervalMs=POLL_INTERVAL_MS,
    )


@rooms_router.delete("/{room_id}", response_model=DeleteRoomResponse)
def delete_room(
    room_id: str,
    peerId: Optional[str] = Query(None, description="Host peer id of the room"),
    backend=Depends(get_backend),
):
    room = backend.get_room(room_id)
    if room is None:
        logger.warning(f"Delete room failed: Room {room_id} not found")
        raise RoomNotFound()
    if room.host_id != peerId:
        logger.warning(f"Delete room failed: {peerId} is not the host of room {room_id}")
        raise NotRoomHost()
    backend.delete_room(room_id)
    return DeleteRoomResponse()


@rooms_router.post("/{room_id}/signal", response_model=PostSignalResponse)
def post_signal(room_id: str, signal: SignalRequest, backend=Depends(get_backend)):
    # Body: { "from": peerId, "to": peerId, "type": "offer" | "answer" | "ice", "data": {...} }
    # `data` is passed through untouched
    timestamp = backend.post_signal(room_id, signal.from_, signal.to, signal.type, signal.data)
    return PostSignalResponse(timestamp=timestamp)


@rooms_router.get("/{room_id}/signal", response_model=PollSignalsResponse)
def poll_signals(
    room_id: str,
    peerId: Optional[str] = Query(None),
    lastTs: Optional[str] = Query(None),
    backend=Depends(get_backend),
):
    """
    Return every pending signal addressed to `peerId` newer than `lastTs`, oldest first.

    Never fails: an unknown room, a missing peer id or an unreadable watermark
    all produce an empty list. Clients poll roughly every 500 ms and keep the
    largest timestamp they have seen as their next `lastTs`.
    """
    since = parse_watermark(lastTs)
    if since is None:
        logger.debug(f"Ignoring unparsable lastTs={lastTs!r} for room {room_id}")
        return PollSignalsResponse(signals=[])
    signals = backend.poll_signals(room_id, peerId, since)
    if signals:
        logger.debug(f"Delivering {len(signals)} signals to {peerId} in room {room_id}")
    return PollSignalsResponse(signals=[SignalOut(**s.to_dict()) for s in signals])
