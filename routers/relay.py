from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from typing import Optional
import asyncio
from errors import RoomFull
from relay import RelayConnection
from schemas.relay import ChatFrame
from logging_config import get_logger

logger = get_logger(__name__)

relay_router = APIRouter(tags=["relay"])


@relay_router.websocket("/ws")
async def relay_endpoint(websocket: WebSocket, roomId: Optional[str] = None):
    """Live chat relay.

    Query parameters:
    - roomId: relay room to join; created on first connect, deleted when the last member leaves

    Every text frame that parses as a JSON object with a string `type` is
    forwarded verbatim to the other members. Anything else is dropped.
    """
    relay = websocket.app.state.relay
    if not roomId:
        logger.info("WebSocket connection rejected: roomId missing")
        await websocket.close(code=1008, reason="roomId is required")
        return

    connection = RelayConnection(websocket)
    try:
        relay.join(roomId, connection)
    except RoomFull as e:
        logger.info(f"WebSocket connection rejected: relay room {roomId} is full")
        await websocket.close(code=1008, reason=e.message)
        return

    writer = None
    try:
        await websocket.accept()
        logger.info(f"WebSocket connection {connection.connection_id} accepted for relay room {roomId}")
        writer = asyncio.create_task(connection.run_writer())

        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.info(f"WebSocket disconnected normally for connection {connection.connection_id} in room {roomId}")
                break
            data = message.get("text")
            if data is None:
                logger.warning(f"Dropping binary frame from {connection.connection_id} in room {roomId}")
                continue
            try:
                ChatFrame.model_validate_json(data)
            except ValidationError as e:
                logger.warning(f"Dropping malformed frame from {connection.connection_id} in room {roomId}: {e.error_count()} errors")
                continue
            relay.relay(roomId, connection, data)
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for connection {connection.connection_id} in room {roomId}")
    except Exception as e:
        logger.error(f"WebSocket error for connection {connection.connection_id} in room {roomId}: {e}", exc_info=True)
    finally:
        relay.leave(roomId, connection)
        connection.closed = True
        if writer is not None:
            writer.cancel()
            try:
                await writer
            except asyncio.CancelledError:
                pass
