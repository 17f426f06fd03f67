# ========================================
# models/interview.py - Stage, question and result models
# ========================================

from pydantic import BaseModel, Field, field_validator
from typing import Dict, Optional, List
from datetime import datetime, timezone
from enum import Enum


class StageKind(str, Enum):
    INFORMATIONAL = "informational"
    TIMED_ASSESSMENT = "timed_assessment"
    SLOT_BOOKING = "slot_booking"
    LIVE_DEMO = "live_demo"
    FEEDBACK_REVIEW = "feedback_review"
    DOCUMENT_REVIEW = "document_review"
    SUMMARY = "summary"


class SlotForm(str, Enum):
    BASIC = "basic"          # date/time only
    EXTENDED = "extended"    # date/time + location/role


class StageView(str, Enum):
    INSTRUCTIONS = "instructions"
    TIMED_ASSESSMENT = "timed_assessment"
    SLOT_BOOKING = "slot_booking"
    LIVE_DEMO = "live_demo"
    FEEDBACK_REVIEW = "feedback_review"
    DOCUMENT_REVIEW = "document_review"
    SUMMARY = "summary"
    COMPLETED = "completed"
    LOCKED = "locked"


class StageDefinition(BaseModel):
    order: int = Field(..., ge=1)
    name: str
    description: str
    kind: StageKind
    question_count: int = 0
    time_per_question: int = 0  # seconds
    passing_score: int = 0
    requires_slot_booking: bool = False
    auto_progress_after_completion: bool = True
    slot_form: Optional[SlotForm] = None
    reviews_stage_order: Optional[int] = None
    required_documents: List[str] = []

    model_config = {"frozen": True}

    @property
    def is_evaluated(self) -> bool:
        return self.kind in (StageKind.TIMED_ASSESSMENT, StageKind.LIVE_DEMO)


class QuestionType(str, Enum):
    TEXT = "text"
    MULTIPLE_CHOICE = "multiple_choice"
    SCENARIO = "scenario"


class Question(BaseModel):
    question_id: str
    prompt: str
    type: QuestionType = QuestionType.TEXT
    choices: List[str] = []
    category: str = "general"
    expected_points: List[str] = []


class Answer(BaseModel):
    question_id: str
    prompt: str = ""
    response: str = ""
    timed_out: bool = False


class QuestionScore(BaseModel):
    question_id: str
    score: float = Field(..., ge=0, le=100)
    feedback: str = ""


class Evaluation(BaseModel):
    """What the oracle hands back for one stage."""
    score: float = Field(..., ge=0, le=100)
    passed: bool
    feedback: str = ""
    strengths: List[str] = []
    improvements: List[str] = []
    question_scores: List[QuestionScore] = []


class TranscriptRole(str, Enum):
    AGENT = "agent"
    CANDIDATE = "candidate"


class TranscriptMessage(BaseModel):
    role: TranscriptRole
    content: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SlotBooking(BaseModel):
    slot_at: datetime
    timezone: str = "UTC"
    location: Optional[str] = None
    role: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("slot_at")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class StageResult(BaseModel):
    session_id: str
    stage_order: int
    stage_name: str
    score: Optional[float] = None
    passed: Optional[bool] = None
    feedback: str = ""
    strengths: List[str] = []
    improvements: List[str] = []
    question_scores: List[QuestionScore] = []
    answers: List[Answer] = []
    recording_ref: Optional[str] = None
    duration_seconds: Optional[int] = None
    booked_slot: Optional[SlotBooking] = None
    documents: Dict[str, str] = {}
    completed_at: Optional[datetime] = None

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None


class EvaluationSubmission(BaseModel):
    """Everything an interactive stage sends to the oracle in one call."""
    answers: List[Answer]
    recording_ref: Optional[str] = None
    duration_seconds: Optional[int] = None
    transcript: List[TranscriptMessage] = []
    demo_topic: Optional[str] = None
    questions: List[Question] = []


class SessionSummary(BaseModel):
    results: List[StageResult] = []
    overall_score: Optional[float] = None
    scored_stages: int = 0
    passed_stages: int = 0
    total_stages: int = 0


class StageLoad(BaseModel):
    """Everything the client needs to render one stage."""
    session_id: str
    current_stage_order: int
    definition: StageDefinition
    view: StageView
    is_already_completed: bool = False
    result: Optional[StageResult] = None
    review_result: Optional[StageResult] = None
    summary: Optional[SessionSummary] = None
    prior_results: List[StageResult] = []
