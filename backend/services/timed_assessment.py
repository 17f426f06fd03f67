# services/timed_assessment.py
"""
Timed question-and-answer flow as a pure reducer.

    state, effects = step(state, event)

The reducer never touches devices, clocks or the network. The WebSocket
handler feeds it events (client messages, ticks, oracle outcomes) and carries
out the returned effects in order.
"""
from dataclasses import dataclass, replace
from enum import Enum
from typing import List, Optional, Tuple, Union

from models.interview import Answer, Question, StageResult
from services.stage_timer import Tick


class AssessmentPhase(str, Enum):
    NOT_STARTED = "not_started"
    GENERATING = "generating"
    ACTIVE = "active"
    EVALUATING = "evaluating"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


@dataclass(frozen=True)
class AssessmentState:
    time_per_question: int
    question_count: int
    phase: AssessmentPhase = AssessmentPhase.NOT_STARTED
    questions: Tuple[Question, ...] = ()
    index: int = 0
    draft: str = ""
    answers: Tuple[Answer, ...] = ()
    question_started_at: float = 0.0
    last_elapsed: float = 0.0
    result: Optional[StageResult] = None
    error: Optional[str] = None

    @property
    def current_question(self) -> Optional[Question]:
        if self.phase != AssessmentPhase.ACTIVE or self.index >= len(self.questions):
            return None
        return self.questions[self.index]

    @property
    def remaining(self) -> float:
        if self.phase != AssessmentPhase.ACTIVE:
            return 0.0
        used = self.last_elapsed - self.question_started_at
        return max(0.0, self.time_per_question - used)

    @property
    def can_retry(self) -> bool:
        return self.phase == AssessmentPhase.FAILED


# ---- events ----

@dataclass(frozen=True)
class Begin:
    pass


@dataclass(frozen=True)
class QuestionsReady:
    questions: Tuple[Question, ...]


@dataclass(frozen=True)
class GenerationFailed:
    reason: str


@dataclass(frozen=True)
class AnswerChanged:
    text: str


@dataclass(frozen=True)
class Advance:
    pass


@dataclass(frozen=True)
class EvaluationSucceeded:
    result: StageResult


@dataclass(frozen=True)
class EvaluationFailed:
    reason: str


@dataclass(frozen=True)
class Retry:
    pass


@dataclass(frozen=True)
class RecordingFailed:
    reason: str


Event = Union[Begin, QuestionsReady, GenerationFailed, AnswerChanged, Advance, Tick,
              EvaluationSucceeded, EvaluationFailed, Retry, RecordingFailed]


# ---- effects ----

@dataclass(frozen=True)
class GenerateQuestions:
    count: int


@dataclass(frozen=True)
class StartRecording:
    pass


@dataclass(frozen=True)
class ArmTimer:
    question_index: int
    limit: int


@dataclass(frozen=True)
class StopRecording:
    discard: bool = False


@dataclass(frozen=True)
class SubmitForEvaluation:
    answers: Tuple[Answer, ...]


@dataclass(frozen=True)
class ReleaseDevices:
    pass


@dataclass(frozen=True)
class ShowError:
    message: str
    retry: bool = False


Effect = Union[GenerateQuestions, StartRecording, ArmTimer, StopRecording,
               SubmitForEvaluation, ReleaseDevices, ShowError]


def initial_state(question_count: int, time_per_question: int) -> AssessmentState:
    return AssessmentState(time_per_question=time_per_question, question_count=question_count)


def _record_answer(state: AssessmentState, timed_out: bool) -> Tuple[AssessmentState, List[Effect]]:
    question = state.questions[state.index]
    answer = Answer(
        question_id=question.question_id,
        prompt=question.prompt,
        response=state.draft.strip(),
        timed_out=timed_out,
    )
    answers = state.answers + (answer,)
    next_index = state.index + 1

    if next_index >= len(state.questions):
        done = replace(state, phase=AssessmentPhase.EVALUATING, answers=answers,
                       index=next_index, draft="")
        return done, [StopRecording(), SubmitForEvaluation(answers=answers)]

    moved = replace(state, answers=answers, index=next_index, draft="",
                    question_started_at=state.last_elapsed)
    return moved, [ArmTimer(question_index=next_index, limit=state.time_per_question)]


def step(state: AssessmentState, event: Event) -> Tuple[AssessmentState, List[Effect]]:
    phase = state.phase

    if isinstance(event, Begin):
        if phase != AssessmentPhase.NOT_STARTED:
            return state, []
        return replace(state, phase=AssessmentPhase.GENERATING, error=None), [
            GenerateQuestions(count=state.question_count)
        ]

    if isinstance(event, QuestionsReady):
        if phase != AssessmentPhase.GENERATING:
            return state, []
        if not event.questions:
            failed = replace(state, phase=AssessmentPhase.FAILED, error="No questions were generated")
            return failed, [ShowError(failed.error, retry=True)]
        active = replace(
            state,
            phase=AssessmentPhase.ACTIVE,
            questions=tuple(event.questions),
            question_count=len(event.questions),
            index=0,
            draft="",
            answers=(),
            question_started_at=0.0,
            last_elapsed=0.0,
            error=None,
        )
        return active, [StartRecording(), ArmTimer(question_index=0, limit=state.time_per_question)]

    if isinstance(event, GenerationFailed):
        if phase != AssessmentPhase.GENERATING:
            return state, []
        failed = replace(state, phase=AssessmentPhase.FAILED, error=event.reason)
        return failed, [ShowError(event.reason, retry=True)]

    if isinstance(event, AnswerChanged):
        if phase != AssessmentPhase.ACTIVE:
            return state, []
        return replace(state, draft=event.text), []

    if isinstance(event, Advance):
        if phase != AssessmentPhase.ACTIVE:
            return state, []
        if not state.draft.strip():
            return state, [ShowError("Please provide an answer before continuing")]
        return _record_answer(state, timed_out=False)

    if isinstance(event, Tick):
        if phase != AssessmentPhase.ACTIVE or event.elapsed < state.last_elapsed:
            return state, []
        state = replace(state, last_elapsed=event.elapsed)
        if event.elapsed - state.question_started_at < state.time_per_question:
            return state, []
        return _record_answer(state, timed_out=True)

    if isinstance(event, EvaluationSucceeded):
        if phase != AssessmentPhase.EVALUATING:
            return state, []
        return replace(state, phase=AssessmentPhase.COMPLETED, result=event.result, error=None), []

    if isinstance(event, EvaluationFailed):
        if phase != AssessmentPhase.EVALUATING:
            return state, []
        failed = replace(state, phase=AssessmentPhase.FAILED, error=event.reason)
        return failed, [ShowError(event.reason, retry=True)]

    if isinstance(event, Retry):
        if phase != AssessmentPhase.FAILED:
            return state, []
        # answers survive a failed evaluation; only regenerate when there are none
        if state.questions and len(state.answers) == len(state.questions):
            return replace(state, phase=AssessmentPhase.EVALUATING, error=None), [
                SubmitForEvaluation(answers=state.answers)
            ]
        return replace(state, phase=AssessmentPhase.GENERATING, questions=(), answers=(), error=None), [
            GenerateQuestions(count=state.question_count)
        ]

    if isinstance(event, RecordingFailed):
        # nothing is recorded before the first question
        recorded = phase in (AssessmentPhase.ACTIVE, AssessmentPhase.EVALUATING) or (
            phase == AssessmentPhase.FAILED and bool(state.answers)
        )
        if not recorded:
            return state, []
        aborted = replace(state, phase=AssessmentPhase.ABORTED, draft="", error=event.reason)
        return aborted, [StopRecording(discard=True), ReleaseDevices(), ShowError(event.reason)]

    return state, []
