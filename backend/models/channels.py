from pydantic import BaseModel
from typing import Optional
from enum import Enum


class BroadcastRole(str, Enum):
    BROADCASTER = "broadcaster"
    VIEWER = "viewer"


class BroadcastStatus(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


class BroadcastSnapshot(BaseModel):
    session_id: str
    room_name: str
    status: BroadcastStatus
    viewer_count: int = 0


class BroadcastGrant(BaseModel):
    session_id: str
    room_name: str
    role: BroadcastRole
    token: str
    url: str
    identity: Optional[str] = None


class VoiceStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
