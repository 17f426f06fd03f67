"""
Voice agent routes - conversation tokens for a browser-side agent session
"""

from fastapi import APIRouter, HTTPException, Depends

from routes.dependencies import get_engine, http_error
from services.errors import PipelineError
from services.stage_engine import StageEngine
from services.voice_agent import VoiceTokenError, get_token
from utils.auth import verify_api_token
from utils.logger import get_logger

router = APIRouter(prefix="/voice", tags=["Voice Agent"])
logger = get_logger("VoiceRoutes")


@router.post("/{session_id}/token")
async def voice_token(
    session_id: str,
    engine: StageEngine = Depends(get_engine),
    auth: None = Depends(verify_api_token)
):
    try:
        await engine.get_session(session_id)
        return {"token": await get_token(session_id)}
    except PipelineError as e:
        raise http_error(e)
    except VoiceTokenError as e:
        # the demo runs without the agent; the client shows cues only
        logger.warning(f"Voice token unavailable for {session_id}: {e}")
        raise HTTPException(503, "Voice agent unavailable")
