"""
Broadcast routes - viewer tokens, status and LiveKit webhooks for the live demo
"""

from fastapi import APIRouter, HTTPException, Depends, Request

from models.request import ViewerTokenRequest
from routes.dependencies import get_engine, http_error
from services.broadcast_service import BroadcastTokenService, broadcast_registry, room_name_for
from services.errors import PipelineError
from services.stage_engine import StageEngine
from utils.auth import verify_api_token, webhook_auth_header
from utils.logger import get_logger

router = APIRouter(prefix="/broadcast", tags=["Broadcast"])
logger = get_logger("BroadcastRoutes")


@router.post("/{session_id}/viewer-token")
async def viewer_token(
    session_id: str,
    request: ViewerTokenRequest,
    engine: StageEngine = Depends(get_engine),
    auth: None = Depends(verify_api_token)
):
    """
    Subscribe-only token for a management viewer.

    Requires the live-view token issued when the demo started.
    """
    try:
        if not await engine.verify_live_view(session_id, request.live_view_token):
            raise HTTPException(403, "Live view is not available")

        broadcast = broadcast_registry.get(session_id)
        if broadcast is None:
            raise HTTPException(404, "No live demo in progress")

        grant = broadcast.viewer_token(request.viewer_id)
        logger.info(f"Issued viewer token for {request.viewer_id} on {grant.room_name}")
        return grant

    except HTTPException:
        raise
    except PipelineError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Failed to generate viewer token: {e}", exc_info=True)
        raise HTTPException(500, "Failed to generate access token")


@router.get("/{session_id}/status")
async def broadcast_status(
    session_id: str,
    auth: None = Depends(verify_api_token)
):
    broadcast = broadcast_registry.get(session_id)
    if broadcast is None:
        return {"session_id": session_id, "room_name": room_name_for(session_id),
                "status": "idle", "viewer_count": 0}
    await broadcast.refresh_viewer_count()
    return broadcast.snapshot()


@router.post("/webhook")
async def livekit_webhook(request: Request):
    """Participant join/leave events keep the viewer count current"""
    body = await request.body()
    try:
        event = BroadcastTokenService().webhook_receiver().receive(
            body.decode("utf-8"), webhook_auth_header(request)
        )
    except Exception as e:
        logger.warning(f"Rejected LiveKit webhook: {e}")
        raise HTTPException(401, "Invalid webhook signature")

    broadcast = broadcast_registry.by_room(event.room.name) if event.room else None
    if broadcast is None:
        return {"handled": False}

    identity = event.participant.identity if event.participant else None
    if event.event == "participant_joined":
        broadcast.viewer_joined(identity)
    elif event.event == "participant_left":
        broadcast.viewer_left(identity)
    elif event.event == "room_finished":
        broadcast.stop_broadcast()

    return {"handled": True, "viewer_count": broadcast.viewer_count}
