# ========================================
# routes/stages.py - Mock interview stage endpoints
# ========================================

from fastapi import APIRouter, HTTPException, Depends

from models.interview import EvaluationSubmission
from models.request import BookSlotRequest, ContinueRequest, CreateSessionRequest, SubmitStageRequest
from routes.dependencies import get_engine, http_error
from services.errors import PipelineError
from services.stage_catalog import default_catalog
from services.stage_engine import StageEngine
from utils.auth import verify_api_token
from utils.logger import get_logger

router = APIRouter(prefix="/mock-interview", tags=["Mock Interview"])
logger = get_logger("StageRoutes")


@router.post("/sessions")
async def create_session(
    request: CreateSessionRequest,
    engine: StageEngine = Depends(get_engine),
    auth: None = Depends(verify_api_token)
):
    """Start a mock interview for a candidate at stage 1"""
    try:
        session = await engine.create_session(request.candidate_profile, request.job_id)
        return {
            "session_id": session.session_id,
            "current_stage_order": session.current_stage_order,
            "status": session.status,
        }
    except PipelineError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Failed to create session: {e}", exc_info=True)
        raise HTTPException(500, "Failed to create mock interview session")


@router.get("/stages")
async def list_stages(auth: None = Depends(verify_api_token)):
    return {"stages": [s.model_dump() for s in default_catalog.all()]}


@router.get("/{session_id}")
async def get_session(
    session_id: str,
    engine: StageEngine = Depends(get_engine),
    auth: None = Depends(verify_api_token)
):
    try:
        session = await engine.get_session(session_id)
        return session.model_dump(exclude={"live_view_token"})
    except PipelineError as e:
        raise http_error(e)


@router.get("/{session_id}/stages/{stage_order}")
async def load_stage(
    session_id: str,
    stage_order: int,
    engine: StageEngine = Depends(get_engine),
    auth: None = Depends(verify_api_token)
):
    """Stage definition, the view to render and any stored result"""
    try:
        return await engine.load_stage(session_id, stage_order)
    except PipelineError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Failed to load stage {stage_order} of {session_id}: {e}", exc_info=True)
        raise HTTPException(500, "Failed to load stage")


@router.post("/{session_id}/stages/{stage_order}/acknowledge")
async def acknowledge(
    session_id: str,
    stage_order: int,
    engine: StageEngine = Depends(get_engine),
    auth: None = Depends(verify_api_token)
):
    try:
        return await engine.acknowledge(session_id, stage_order)
    except PipelineError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Acknowledge failed: {e}", exc_info=True)
        raise HTTPException(500, "Failed to complete stage")


@router.post("/{session_id}/stages/{stage_order}/book-slot")
async def book_slot(
    session_id: str,
    stage_order: int,
    request: BookSlotRequest,
    engine: StageEngine = Depends(get_engine),
    auth: None = Depends(verify_api_token)
):
    try:
        return await engine.book_slot(session_id, stage_order, request.booking)
    except PipelineError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Slot booking failed: {e}", exc_info=True)
        raise HTTPException(500, "Failed to book slot")


@router.post("/{session_id}/stages/{stage_order}/continue")
async def continue_review(
    session_id: str,
    stage_order: int,
    request: ContinueRequest = ContinueRequest(),
    engine: StageEngine = Depends(get_engine),
    auth: None = Depends(verify_api_token)
):
    """Manual continue for feedback, document review and summary stages"""
    try:
        return await engine.continue_review(session_id, stage_order, request.documents)
    except PipelineError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Continue failed: {e}", exc_info=True)
        raise HTTPException(500, "Failed to complete stage")


@router.post("/{session_id}/stages/{stage_order}/questions")
async def generate_questions(
    session_id: str,
    stage_order: int,
    engine: StageEngine = Depends(get_engine),
    auth: None = Depends(verify_api_token)
):
    try:
        questions = await engine.generate_questions(session_id, stage_order)
        return {"questions": questions}
    except PipelineError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Question generation failed: {e}", exc_info=True)
        raise HTTPException(500, "Failed to generate questions")


@router.post("/{session_id}/stages/{stage_order}/submit")
async def submit_stage(
    session_id: str,
    stage_order: int,
    request: SubmitStageRequest,
    engine: StageEngine = Depends(get_engine),
    auth: None = Depends(verify_api_token)
):
    """Evaluate an assessment or demo whose recording has already been uploaded"""
    try:
        submission = EvaluationSubmission(**request.model_dump())
        return await engine.submit_evaluation(session_id, stage_order, submission)
    except PipelineError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Submission failed: {e}", exc_info=True)
        raise HTTPException(500, "Failed to submit stage")


@router.post("/{session_id}/stages/{stage_order}/invite")
async def send_invitation(
    session_id: str,
    stage_order: int,
    engine: StageEngine = Depends(get_engine),
    auth: None = Depends(verify_api_token)
):
    try:
        sent = await engine.send_stage_invitation(session_id, stage_order)
        return {"sent": sent}
    except PipelineError as e:
        raise http_error(e)


@router.get("/{session_id}/stages/{stage_order}/recording")
async def recording_url(
    session_id: str,
    stage_order: int,
    engine: StageEngine = Depends(get_engine),
    auth: None = Depends(verify_api_token)
):
    try:
        return {"url": await engine.recording_url(session_id, stage_order)}
    except PipelineError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Failed to sign recording URL: {e}", exc_info=True)
        raise HTTPException(500, "Failed to fetch recording")
