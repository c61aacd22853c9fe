from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Literal, Optional


class CreateRoomResponse(BaseModel):
    roomId: str
    peerId: str
    role: Literal["host"] = "host"

class JoinRoomResponse(BaseModel):
    roomId: str
    peerId: str
    role: Literal["guest"] = "guest"
    hostId: str

class RoomDetailsResponse(BaseModel):
    roomId: str
    hasGuest: bool
    createdAt: int
    pollIntervalMs: int

class SignalRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: str = Field(alias="from")
    to: str
    type: Literal["offer", "answer", "ice"]
    data: Any = None

class PostSignalResponse(BaseModel):
    success: bool = True
    timestamp: int

class SignalOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: str = Field(alias="from")
    to: str
    type: str
    data: Any = None
    timestamp: int

class PollSignalsResponse(BaseModel):
    signals: list[SignalOut]

class DeleteRoomResponse(BaseModel):
    success: bool = True
