# backend/routes/websocket_routes.py
"""
WebSocket route for the interactive stages
"""
from fastapi import APIRouter, WebSocket, Depends, status

from routes.dependencies import get_artifacts, get_engine, get_voice_factory
from services.stage_engine import StageEngine
from services.stage_websocket import open_stage_socket
from utils.auth import websocket_token_valid
from utils.logger import get_logger

router = APIRouter(prefix="/ws", tags=["WebSocket"])
logger = get_logger("WebSocketRoutes")


@router.websocket("/stage/{session_id}/{stage_order}")
async def stage_websocket(
    websocket: WebSocket,
    session_id: str,
    stage_order: int,
    engine: StageEngine = Depends(get_engine),
    artifacts=Depends(get_artifacts),
    voice_factory=Depends(get_voice_factory),
):
    """
    Drives a timed assessment or live demo.

    Client sends:
    - Recording chunks (bytes)
    - Control messages (JSON): permission, begin/start, answer, next, stop, exit, retry

    Server sends:
    - state snapshots, coaching cues, broadcast grants, agent audio, errors
    """
    if not websocket_token_valid(websocket):
        logger.warning(f"Rejected stage socket for {session_id}: bad token")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    await open_stage_socket(websocket, session_id, stage_order, engine, artifacts,
                            voice_factory=voice_factory)
