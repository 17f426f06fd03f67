# backend/routes/dependencies.py
"""Shared wiring for the routers: the engine, the artifact store, error mapping."""
from functools import lru_cache

from fastapi import HTTPException, status

from services.artifact_store import FirebaseArtifactStore
from services.errors import (
    EvaluationError,
    PermissionDeniedError,
    PipelineError,
    QuestionGenerationError,
    SessionNotFoundError,
    StageKindError,
    StageLockedError,
    StageNotFoundError,
    StageValidationError,
    UploadError,
)
from services.evaluation_service import EvaluationService
from services.notification_service import EmailNotifier
from services.stage_engine import StageEngine
from services.store import RedisStore
from services.voice_agent import VoiceAgentChannel

STATUS_FOR_ERROR = {
    SessionNotFoundError: status.HTTP_404_NOT_FOUND,
    StageNotFoundError: status.HTTP_404_NOT_FOUND,
    StageLockedError: status.HTTP_409_CONFLICT,
    StageKindError: status.HTTP_409_CONFLICT,
    StageValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    PermissionDeniedError: status.HTTP_403_FORBIDDEN,
    EvaluationError: status.HTTP_502_BAD_GATEWAY,
    QuestionGenerationError: status.HTTP_502_BAD_GATEWAY,
    UploadError: status.HTTP_502_BAD_GATEWAY,
}


def http_error(error: PipelineError) -> HTTPException:
    code = STATUS_FOR_ERROR.get(type(error), status.HTTP_500_INTERNAL_SERVER_ERROR)
    return HTTPException(code, detail={"message": error.message, "retry": error.retryable})


@lru_cache
def get_artifacts() -> FirebaseArtifactStore:
    return FirebaseArtifactStore()


def get_voice_factory():
    return VoiceAgentChannel


@lru_cache
def get_engine() -> StageEngine:
    return StageEngine(
        store=RedisStore(),
        evaluator=EvaluationService(),
        notifier=EmailNotifier(),
        artifacts=get_artifacts(),
    )
