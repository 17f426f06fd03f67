# services/errors.py
"""
Error taxonomy for the stage pipeline.

Stage-level failures (recording, upload, oracle, store) are raised to the caller
and leave persisted state untouched. Channel-level failures (broadcast, voice
agent) never come through here; those units log and degrade instead.
"""


class PipelineError(Exception):
    """Base class for every error the stage pipeline raises on purpose."""

    retryable: bool = False

    def __init__(self, message: str, *, session_id: str = None, stage_order: int = None):
        super().__init__(message)
        self.message = message
        self.session_id = session_id
        self.stage_order = stage_order


class SessionNotFoundError(PipelineError):
    pass


class StageNotFoundError(PipelineError):
    pass


class StageLockedError(PipelineError):
    """The candidate has not reached this stage yet."""


class StageKindError(PipelineError):
    """The requested action does not apply to this kind of stage."""


class StageValidationError(PipelineError):
    """Caught before submission; blocks completion without side effects."""


class PermissionDeniedError(PipelineError):
    """Camera/microphone were not granted; the stage cannot be entered."""

    retryable = True


class RecordingError(PipelineError):
    """Fatal to the current attempt. The candidate restarts the stage."""


class UploadError(PipelineError):
    retryable = True


class EvaluationError(PipelineError):
    retryable = True


class QuestionGenerationError(PipelineError):
    retryable = True
