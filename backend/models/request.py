from pydantic import BaseModel, Field
from typing import Dict, Optional, List

from models.interview import Answer, SlotBooking, TranscriptMessage
from models.session import CandidateProfile


class CreateSessionRequest(BaseModel):
    candidate_profile: CandidateProfile
    job_id: Optional[str] = None


class BookSlotRequest(BaseModel):
    booking: SlotBooking


class ContinueRequest(BaseModel):
    documents: Dict[str, str] = Field(default_factory=dict, description="document type -> uploaded reference")


class SubmitStageRequest(BaseModel):
    answers: List[Answer] = []
    recording_ref: Optional[str] = None
    duration_seconds: Optional[int] = Field(None, ge=0)
    transcript: List[TranscriptMessage] = []
    demo_topic: Optional[str] = None


class ViewerTokenRequest(BaseModel):
    live_view_token: str = Field(..., min_length=1)
    viewer_id: str = Field(..., min_length=1, examples=["manager-42"])
