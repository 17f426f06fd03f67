import os
import sys
from copy import deepcopy
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("API_TOKEN", "test-token")
os.environ.setdefault("SMTP_HOST", "")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from config import get_settings  # noqa: E402
from models.interview import Evaluation, Question, QuestionScore, StageResult  # noqa: E402
from models.session import CandidateProfile, InterviewSession  # noqa: E402
from services.errors import EvaluationError, QuestionGenerationError  # noqa: E402
from services.stage_engine import StageEngine  # noqa: E402


@pytest.fixture(autouse=True)
def _test_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("API_TOKEN", "test-token")
    monkeypatch.setenv("SMTP_HOST", "")
    monkeypatch.setenv("MANAGEMENT_EMAIL", "hiring@example.com")
    monkeypatch.setenv("LIVEKIT_API_KEY", "lk-key")
    monkeypatch.setenv("LIVEKIT_API_SECRET", "lk-secret-that-is-long-enough-for-hs256")
    monkeypatch.setenv("LIVEKIT_URL", "")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class FakeStore:
    """In-memory stand-in for RedisStore with the same overwrite rule."""

    def __init__(self):
        self.sessions: Dict[str, InterviewSession] = {}
        self.results: Dict[Tuple[str, int], StageResult] = {}
        self.writes = 0

    async def get_session(self, session_id):
        session = self.sessions.get(session_id)
        return session.model_copy(deep=True) if session else None

    async def save_session(self, session):
        self.sessions[session.session_id] = session.model_copy(deep=True)
        return session

    async def get_result(self, session_id, stage_order):
        result = self.results.get((session_id, stage_order))
        return result.model_copy(deep=True) if result else None

    async def list_results(self, session_id):
        return [deepcopy(r) for (sid, _), r in sorted(self.results.items()) if sid == session_id]

    async def complete_stage(self, session, result):
        existing = self.results.get((result.session_id, result.stage_order))
        if existing is not None and existing.is_completed:
            return existing.model_copy(deep=True)
        if result.completed_at is None:
            result.completed_at = datetime.now(timezone.utc)
        self.results[(result.session_id, result.stage_order)] = result.model_copy(deep=True)
        self.sessions[session.session_id] = session.model_copy(deep=True)
        self.writes += 1
        return result


class FakeEvaluator:
    def __init__(self):
        self.evaluate_calls: List[tuple] = []
        self.generate_calls: List[tuple] = []
        self.score = 82.0
        self.passed: Optional[bool] = None
        self.fail_evaluation = False
        self.fail_generation = False

    async def generate_questions(self, stage, profile):
        self.generate_calls.append((stage.order, profile))
        if self.fail_generation:
            raise QuestionGenerationError("model unavailable", stage_order=stage.order)
        return [
            Question(question_id=f"s{stage.order}-q{i}", prompt=f"Question {i}?")
            for i in range(1, stage.question_count + 1)
        ]

    async def evaluate(self, stage, submission, profile):
        self.evaluate_calls.append((stage.order, submission))
        if self.fail_evaluation:
            raise EvaluationError("model returned garbage", stage_order=stage.order)
        passed = self.score >= stage.passing_score if self.passed is None else self.passed
        return Evaluation(
            score=self.score,
            passed=passed,
            feedback="Solid work",
            strengths=["clear"],
            improvements=["pace"],
            question_scores=[QuestionScore(question_id="q", score=self.score)],
        )


class FakeNotifier:
    def __init__(self):
        self.stage_invites: List[int] = []
        self.completed: List[str] = []
        self.management: List[str] = []
        self.fail = False

    async def notify_stage(self, session, stage, total_stages):
        if self.fail:
            raise RuntimeError("smtp down")
        self.stage_invites.append(stage.order)
        return True

    async def notify_completed(self, session):
        self.completed.append(session.session_id)
        return True

    async def notify_management(self, event, session, stage=None, result=None):
        self.management.append(event.value)
        return True


class FakeArtifacts:
    def __init__(self, failures: int = 0):
        self.failures = failures
        self.uploads: List[Tuple[str, int, int, str]] = []
        self.attempts = 0

    async def upload_recording(self, session_id, stage_order, data, content_type):
        self.attempts += 1
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("storage unavailable")
        self.uploads.append((session_id, stage_order, len(data), content_type))
        return f"mock-interviews/{session_id}/stage-{stage_order}.webm"

    async def playback_url(self, ref):
        return f"https://storage.example.com/{ref}?signed=1"


async def no_sleep(_seconds):
    return None


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def evaluator():
    return FakeEvaluator()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def artifacts():
    return FakeArtifacts()


@pytest.fixture
def engine(store, evaluator, notifier, artifacts):
    return StageEngine(store=store, evaluator=evaluator, notifier=notifier, artifacts=artifacts)


@pytest.fixture
def profile():
    return CandidateProfile(
        candidate_id="cand-1",
        full_name="Asha Rao",
        email="asha@example.com",
        primary_subject="Physics",
        experience_level="3 years",
    )


@pytest.fixture
def make_session(store, profile):
    async def _make(current_stage_order: int = 1, session_id: str = "sess-1") -> InterviewSession:
        session = InterviewSession(
            session_id=session_id,
            candidate_id=profile.candidate_id,
            candidate_profile=profile,
            current_stage_order=current_stage_order,
        )
        await store.save_session(session)
        return session

    return _make


@pytest.fixture
def flaky_artifacts():
    return FakeArtifacts


@pytest.fixture
def instant_sleep():
    return no_sleep
