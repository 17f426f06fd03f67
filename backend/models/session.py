from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime, timezone
from enum import Enum


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class CandidateProfile(BaseModel):
    candidate_id: str
    full_name: str = "Candidate"
    email: str
    primary_subject: Optional[str] = None
    experience_level: Optional[str] = None
    preferred_role: Optional[str] = None
    skills: List[str] = []
    highest_qualification: Optional[str] = None
    classes_handled: Optional[str] = None
    segment: Optional[str] = None


class InterviewSession(BaseModel):
    session_id: str
    candidate_id: str
    job_id: Optional[str] = None
    candidate_profile: CandidateProfile
    current_stage_order: int = Field(1, ge=1)
    status: SessionStatus = SessionStatus.ACTIVE
    stages_completed: List[str] = []
    live_view_token: Optional[str] = None
    live_view_active: bool = False
    live_stream_started_at: Optional[datetime] = None
    candidate_answers: List[str] = []
    overall_score: Optional[float] = None
    overall_feedback: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
