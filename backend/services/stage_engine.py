# services/stage_engine.py
"""
Stage Engine - owns the mock-interview state machine.

Loads a session and its results, decides which view a stage gets, completes
stages, and applies the one transition rule:

    after stage N completes, current_stage_order = max(current, N + 1);
    if stage N auto-progresses, the candidate is notified about stage N + 1;
    when there is no N + 1 the session is closed.
"""
import secrets
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from config import get_settings
from models.interview import (
    Answer,
    EvaluationSubmission,
    Question,
    SessionSummary,
    SlotBooking,
    SlotForm,
    StageDefinition,
    StageKind,
    StageLoad,
    StageResult,
    StageView,
    TranscriptRole,
)
from models.session import CandidateProfile, InterviewSession, SessionStatus
from services.errors import (
    SessionNotFoundError,
    StageKindError,
    StageLockedError,
    StageValidationError,
)
from services.notification_service import ManagementEvent
from services.stage_catalog import StageCatalog, default_catalog
from utils.logger import get_logger

logger = get_logger("StageEngine")


VIEW_FOR_KIND: Dict[StageKind, StageView] = {
    StageKind.INFORMATIONAL: StageView.INSTRUCTIONS,
    StageKind.TIMED_ASSESSMENT: StageView.TIMED_ASSESSMENT,
    StageKind.SLOT_BOOKING: StageView.SLOT_BOOKING,
    StageKind.LIVE_DEMO: StageView.LIVE_DEMO,
    StageKind.FEEDBACK_REVIEW: StageView.FEEDBACK_REVIEW,
    StageKind.DOCUMENT_REVIEW: StageView.DOCUMENT_REVIEW,
    StageKind.SUMMARY: StageView.SUMMARY,
}

REVIEW_KINDS = (StageKind.FEEDBACK_REVIEW, StageKind.DOCUMENT_REVIEW, StageKind.SUMMARY)


def overall_score(results: List[StageResult]) -> Optional[float]:
    scores = [r.score for r in results if r.score is not None and r.score > 0]
    if not scores:
        return None
    return round(sum(scores) / len(scores), 2)


def summarize(results: List[StageResult], total_stages: int) -> SessionSummary:
    scored = [r for r in results if r.score is not None]
    return SessionSummary(
        results=results,
        overall_score=overall_score(results),
        scored_stages=len(scored),
        passed_stages=sum(1 for r in scored if r.passed),
        total_stages=total_stages,
    )


class StageEngine:
    def __init__(self, store, evaluator, notifier, artifacts=None, catalog: StageCatalog = default_catalog):
        self.store = store
        self.evaluator = evaluator
        self.notifier = notifier
        self.artifacts = artifacts
        self.catalog = catalog

    # ------------------------------------------------------------------ #
    # Lookups
    # ------------------------------------------------------------------ #
    async def get_session(self, session_id: str) -> InterviewSession:
        session = await self.store.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found", session_id=session_id)
        return session

    def _stage(self, stage_order: int, *kinds: StageKind) -> StageDefinition:
        stage = self.catalog.get(stage_order)
        if kinds and stage.kind not in kinds:
            raise StageKindError(
                f"Stage {stage_order} ({stage.kind.value}) does not support this action",
                stage_order=stage_order,
            )
        return stage

    @staticmethod
    def _ensure_reached(session: InterviewSession, stage: StageDefinition) -> None:
        if stage.order > session.current_stage_order:
            raise StageLockedError(
                f"Stage {stage.order} is locked; complete stage {session.current_stage_order} first",
                session_id=session.session_id,
                stage_order=stage.order,
            )

    # ------------------------------------------------------------------ #
    # Session lifecycle
    # ------------------------------------------------------------------ #
    async def create_session(self, candidate_profile: CandidateProfile, job_id: Optional[str] = None) -> InterviewSession:
        session = InterviewSession(
            session_id=str(uuid.uuid4()),
            candidate_id=candidate_profile.candidate_id,
            job_id=job_id,
            candidate_profile=candidate_profile,
        )
        await self.store.save_session(session)
        logger.info(f"✅ Created mock interview session {session.session_id} for {session.candidate_id}")
        await self._safe(self.notifier.notify_stage(session, self.catalog.get(1), len(self.catalog)),
                         "initial invitation")
        return session

    async def load_stage(self, session_id: str, stage_order: int) -> StageLoad:
        session = await self.get_session(session_id)
        stage = self.catalog.get(stage_order)
        results = await self.store.list_results(session_id)
        by_order = {r.stage_order: r for r in results}
        prior = [r for r in results if r.stage_order < stage_order]

        load = StageLoad(
            session_id=session_id,
            current_stage_order=session.current_stage_order,
            definition=stage,
            view=VIEW_FOR_KIND[stage.kind],
            prior_results=prior,
        )

        stored = by_order.get(stage_order)
        if stored is not None and stored.is_completed:
            load.view = StageView.COMPLETED
            load.is_already_completed = True
            load.result = stored
        elif stage_order > session.current_stage_order:
            load.view = StageView.LOCKED

        if stage.kind == StageKind.FEEDBACK_REVIEW:
            load.review_result = by_order.get(stage.reviews_stage_order)
        elif stage.kind == StageKind.SUMMARY:
            load.summary = summarize(prior, len(self.catalog))

        return load

    # ------------------------------------------------------------------ #
    # Transition rule
    # ------------------------------------------------------------------ #
    async def _complete(self, session: InterviewSession, stage: StageDefinition, result: StageResult) -> StageResult:
        next_stage = self.catalog.next_after(stage.order)

        if stage.name not in session.stages_completed:
            session.stages_completed.append(stage.name)

        if next_stage is not None:
            session.current_stage_order = max(session.current_stage_order, next_stage.order)
        else:
            results = await self.store.list_results(session.session_id)
            self._close(session, [r for r in results if r.stage_order != stage.order] + [result])

        stored = await self.store.complete_stage(session, result)
        if stored is not result:
            # someone else completed it first
            return stored

        logger.info(
            f"➡️ Session {session.session_id}: stage {stage.order} complete, "
            f"current stage now {session.current_stage_order}"
        )

        if next_stage is None:
            await self._safe(self.notifier.notify_completed(session), "completion mail")
        elif stage.auto_progress_after_completion:
            await self._safe(self.notifier.notify_stage(session, next_stage, len(self.catalog)),
                             f"invitation to stage {next_stage.order}")
        return stored

    def _close(self, session: InterviewSession, results: List[StageResult]) -> None:
        summary = summarize(results, len(self.catalog))
        session.status = SessionStatus.COMPLETED
        session.completed_at = datetime.now(timezone.utc)
        session.overall_score = summary.overall_score
        session.overall_feedback = (
            f"Completed all {summary.total_stages} stages; passed {summary.passed_stages} "
            f"of {summary.scored_stages} evaluated stages."
        )
        logger.info(f"🏁 Session {session.session_id} completed with overall score {session.overall_score}")

    @staticmethod
    async def _safe(send, what: str) -> bool:
        try:
            return bool(await send)
        except Exception as e:
            logger.error(f"Notification failed ({what}): {e}", exc_info=True)
            return False

    async def _existing(self, session_id: str, stage_order: int) -> Optional[StageResult]:
        stored = await self.store.get_result(session_id, stage_order)
        return stored if stored is not None and stored.is_completed else None

    # ------------------------------------------------------------------ #
    # Non-evaluated stages
    # ------------------------------------------------------------------ #
    async def acknowledge(self, session_id: str, stage_order: int) -> StageResult:
        session = await self.get_session(session_id)
        stage = self._stage(stage_order, StageKind.INFORMATIONAL)
        existing = await self._existing(session_id, stage_order)
        if existing:
            return existing
        self._ensure_reached(session, stage)

        result = StageResult(session_id=session_id, stage_order=stage.order, stage_name=stage.name,
                             feedback="Instructions acknowledged")
        return await self._complete(session, stage, result)

    async def book_slot(self, session_id: str, stage_order: int, booking: SlotBooking,
                        now: Optional[datetime] = None) -> StageResult:
        session = await self.get_session(session_id)
        stage = self._stage(stage_order, StageKind.SLOT_BOOKING)
        existing = await self._existing(session_id, stage_order)
        if existing:
            return existing
        self._ensure_reached(session, stage)

        now = now or datetime.now(timezone.utc)
        if booking.slot_at <= now:
            raise StageValidationError("Please choose a slot in the future",
                                       session_id=session_id, stage_order=stage_order)
        if stage.slot_form == SlotForm.EXTENDED:
            missing = [f for f in ("location", "role") if not (getattr(booking, f) or "").strip()]
            if missing:
                raise StageValidationError(f"Missing required fields: {', '.join(missing)}",
                                           session_id=session_id, stage_order=stage_order)

        result = StageResult(session_id=session_id, stage_order=stage.order, stage_name=stage.name,
                             booked_slot=booking, feedback="Slot booked")
        stored = await self._complete(session, stage, result)
        await self._safe(
            self.notifier.notify_management(ManagementEvent.SLOT_BOOKED, session, stage, stored),
            "slot booking mail",
        )
        return stored

    async def continue_review(self, session_id: str, stage_order: int,
                              documents: Optional[Dict[str, str]] = None) -> StageResult:
        session = await self.get_session(session_id)
        stage = self._stage(stage_order, *REVIEW_KINDS)
        existing = await self._existing(session_id, stage_order)
        if existing:
            return existing
        self._ensure_reached(session, stage)

        documents = documents or {}
        result = StageResult(session_id=session_id, stage_order=stage.order, stage_name=stage.name)

        if stage.kind == StageKind.FEEDBACK_REVIEW:
            reviewed = await self._existing(session_id, stage.reviews_stage_order)
            if reviewed is None:
                raise StageValidationError(
                    f"Stage {stage.reviews_stage_order} has no result to review",
                    session_id=session_id, stage_order=stage_order,
                )
            result.feedback = f"Reviewed feedback for {reviewed.stage_name}"
        elif stage.kind == StageKind.DOCUMENT_REVIEW:
            missing = [d for d in stage.required_documents if not documents.get(d)]
            if missing:
                raise StageValidationError(f"Missing required documents: {', '.join(missing)}",
                                           session_id=session_id, stage_order=stage_order)
            result.documents = documents
            result.feedback = "Documents submitted for review"
        else:
            result.feedback = "Summary reviewed"

        return await self._complete(session, stage, result)

    # ------------------------------------------------------------------ #
    # Evaluated stages
    # ------------------------------------------------------------------ #
    async def generate_questions(self, session_id: str, stage_order: int) -> List[Question]:
        session = await self.get_session(session_id)
        stage = self._stage(stage_order, StageKind.TIMED_ASSESSMENT)
        if await self._existing(session_id, stage_order):
            raise StageValidationError("Stage already completed", session_id=session_id, stage_order=stage_order)
        self._ensure_reached(session, stage)
        return await self.evaluator.generate_questions(stage, session.candidate_profile)

    async def submit_evaluation(self, session_id: str, stage_order: int,
                                submission: EvaluationSubmission) -> StageResult:
        session = await self.get_session(session_id)
        stage = self._stage(stage_order)
        if not stage.is_evaluated:
            raise StageKindError(
                f"Stage {stage_order} ({stage.kind.value}) is not evaluated",
                session_id=session_id,
                stage_order=stage_order,
            )
        existing = await self._existing(session_id, stage_order)
        if existing:
            logger.info(f"Stage {stage_order} of {session_id} already evaluated; returning stored result")
            return existing
        self._ensure_reached(session, stage)
        self._validate_submission(session_id, stage, submission)

        evaluation = await self.evaluator.evaluate(stage, submission, session.candidate_profile)

        passed = evaluation.score >= stage.passing_score
        if passed != evaluation.passed:
            logger.warning(
                f"Oracle pass flag {evaluation.passed} disagrees with score {evaluation.score} "
                f"vs passing score {stage.passing_score}; using the score"
            )

        answers = list(submission.answers)
        if stage.kind == StageKind.LIVE_DEMO:
            spoken = [m.content for m in submission.transcript if m.role == TranscriptRole.CANDIDATE]
            session.candidate_answers = spoken
            if not answers:
                answers = [Answer(question_id="demo", prompt=submission.demo_topic or "", response=" ".join(spoken))]

        result = StageResult(
            session_id=session_id,
            stage_order=stage.order,
            stage_name=stage.name,
            score=evaluation.score,
            passed=passed,
            feedback=evaluation.feedback,
            strengths=evaluation.strengths,
            improvements=evaluation.improvements,
            question_scores=evaluation.question_scores,
            answers=answers,
            recording_ref=submission.recording_ref,
            duration_seconds=submission.duration_seconds,
        )
        stored = await self._complete(session, stage, result)

        if stage.kind == StageKind.LIVE_DEMO and stored is result:
            await self._safe(
                self.notifier.notify_management(ManagementEvent.DEMO_FEEDBACK, session, stage, stored),
                "demo feedback mail",
            )
        return stored

    @staticmethod
    def _validate_submission(session_id: str, stage: StageDefinition, submission: EvaluationSubmission) -> None:
        def fail(message: str):
            raise StageValidationError(message, session_id=session_id, stage_order=stage.order)

        if not submission.recording_ref:
            fail("A recording must be uploaded before this stage can be evaluated")
        if stage.kind == StageKind.TIMED_ASSESSMENT:
            if not submission.answers:
                fail("At least one answer is required")
            return

        minimum = get_settings().demo_min_duration_seconds
        if (submission.duration_seconds or 0) < minimum:
            fail(f"The demo must run for at least {minimum} seconds")

    # ------------------------------------------------------------------ #
    # Invitations and live view
    # ------------------------------------------------------------------ #
    async def send_stage_invitation(self, session_id: str, stage_order: int) -> bool:
        session = await self.get_session(session_id)
        stage = self._stage(stage_order)
        self._ensure_reached(session, stage)
        return await self._safe(self.notifier.notify_stage(session, stage, len(self.catalog)),
                                f"invitation to stage {stage_order}")

    async def start_live_view(self, session_id: str) -> InterviewSession:
        session = await self.get_session(session_id)
        session.live_view_token = secrets.token_urlsafe(24)
        session.live_view_active = True
        session.live_stream_started_at = datetime.now(timezone.utc)
        await self.store.save_session(session)
        logger.info(f"📡 Live view opened for {session_id}")
        await self._safe(self.notifier.notify_management(ManagementEvent.DEMO_STARTED, session),
                         "demo started mail")
        return session

    async def stop_live_view(self, session_id: str) -> InterviewSession:
        session = await self.get_session(session_id)
        if session.live_view_active or session.live_view_token:
            session.live_view_active = False
            session.live_view_token = None
            await self.store.save_session(session)
            logger.info(f"Live view closed for {session_id}")
        return session

    async def verify_live_view(self, session_id: str, token: str) -> bool:
        session = await self.get_session(session_id)
        if not session.live_view_active or not session.live_view_token:
            return False
        return secrets.compare_digest(session.live_view_token, token)

    async def recording_url(self, session_id: str, stage_order: int) -> str:
        await self.get_session(session_id)
        result = await self._existing(session_id, stage_order)
        if result is None or not result.recording_ref:
            raise StageValidationError("No recording stored for this stage",
                                       session_id=session_id, stage_order=stage_order)
        if self.artifacts is None:
            raise StageValidationError("Recording storage is not configured",
                                       session_id=session_id, stage_order=stage_order)
        return await self.artifacts.playback_url(result.recording_ref)
