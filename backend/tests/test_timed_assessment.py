from models.interview import Question, StageResult
from services.stage_timer import Tick
from services.timed_assessment import (
    Advance,
    AnswerChanged,
    ArmTimer,
    AssessmentPhase,
    Begin,
    EvaluationFailed,
    EvaluationSucceeded,
    GenerateQuestions,
    GenerationFailed,
    QuestionsReady,
    RecordingFailed,
    ReleaseDevices,
    Retry,
    ShowError,
    StartRecording,
    StopRecording,
    SubmitForEvaluation,
    initial_state,
    step,
)


QUESTIONS = tuple(Question(question_id=f"q{i}", prompt=f"Question {i}?") for i in range(1, 4))


def _active(count=3, tpq=120):
    state, _ = step(initial_state(count, tpq), Begin())
    state, effects = step(state, QuestionsReady(QUESTIONS[:count]))
    return state, effects


def _run(state, *events):
    effects = []
    for event in events:
        state, produced = step(state, event)
        effects.extend(produced)
    return state, effects


def test_begin_requests_questions_then_starts_recording():
    state, effects = step(initial_state(3, 120), Begin())
    assert state.phase == AssessmentPhase.GENERATING
    assert effects == [GenerateQuestions(count=3)]

    state, effects = step(state, QuestionsReady(QUESTIONS))
    assert state.phase == AssessmentPhase.ACTIVE
    assert state.current_question.question_id == "q1"
    assert effects == [StartRecording(), ArmTimer(question_index=0, limit=120)]


def test_empty_answer_cannot_advance():
    state, _ = _active()
    state, _ = step(state, AnswerChanged("   "))
    after, effects = step(state, Advance())
    assert after == state
    assert isinstance(effects[0], ShowError)
    assert after.index == 0


def test_timeout_records_draft_and_submits_once():
    state, _ = _active()
    state, effects = _run(
        state,
        AnswerChanged("Newton's first law"),
        Advance(),
        Tick(40),
        AnswerChanged("F = ma"),
        Advance(),
        Tick(60),
        AnswerChanged("draft text"),
        Tick(159),
        Tick(160),
        Tick(160),
        Tick(161),
    )

    submissions = [e for e in effects if isinstance(e, SubmitForEvaluation)]
    assert len(submissions) == 1
    answers = submissions[0].answers
    assert [a.question_id for a in answers] == ["q1", "q2", "q3"]
    assert answers[2].response == "draft text"
    assert answers[2].timed_out
    assert not answers[0].timed_out
    assert effects.count(StopRecording()) == 1
    assert state.phase == AssessmentPhase.EVALUATING


def test_untouched_question_times_out_with_empty_answer():
    state, _ = _active(count=2, tpq=60)
    state, effects = step(state, Tick(60))
    assert state.index == 1
    assert state.answers[0].response == ""
    assert state.answers[0].timed_out
    assert effects == [ArmTimer(question_index=1, limit=60)]
    # the next question's clock starts at the timeout
    state, _ = step(state, Tick(119))
    assert state.index == 1
    state, _ = step(state, Tick(120))
    assert state.phase == AssessmentPhase.EVALUATING


def test_stale_tick_is_ignored():
    state, _ = _active()
    state, _ = step(state, Tick(50))
    after, effects = step(state, Tick(10))
    assert after == state
    assert effects == []


def test_generation_failure_can_be_retried():
    state, _ = step(initial_state(3, 120), Begin())
    state, effects = step(state, GenerationFailed("model unavailable"))
    assert state.phase == AssessmentPhase.FAILED
    assert effects == [ShowError("model unavailable", retry=True)]

    state, effects = step(state, Retry())
    assert state.phase == AssessmentPhase.GENERATING
    assert effects == [GenerateQuestions(count=3)]


def test_evaluation_failure_keeps_answers_for_retry():
    state, _ = _active(count=1)
    state, _ = _run(state, AnswerChanged("answer"), Advance())
    state, _ = step(state, EvaluationFailed("oracle down"))
    assert state.can_retry
    assert len(state.answers) == 1

    state, effects = step(state, Retry())
    assert state.phase == AssessmentPhase.EVALUATING
    assert effects == [SubmitForEvaluation(answers=state.answers)]

    result = StageResult(session_id="s", stage_order=3, stage_name="Technical Assessment", score=75)
    state, effects = step(state, EvaluationSucceeded(result))
    assert state.phase == AssessmentPhase.COMPLETED
    assert state.result.score == 75
    assert effects == []


def test_recording_failure_aborts_without_evaluation():
    state, _ = _active()
    state, _ = _run(state, AnswerChanged("First law"), Advance())
    state, effects = step(state, RecordingFailed("Recording exceeded 1000 bytes"))

    assert state.phase == AssessmentPhase.ABORTED
    assert effects == [StopRecording(discard=True), ReleaseDevices(),
                       ShowError("Recording exceeded 1000 bytes")]
    assert not state.can_retry

    # the remaining questions cannot be answered into a finished attempt
    state, effects = _run(state, AnswerChanged("Second law"), Advance(), Tick(500), Retry())
    assert state.phase == AssessmentPhase.ABORTED
    assert not any(isinstance(e, SubmitForEvaluation) for e in effects)


def test_recording_failure_during_evaluation_aborts():
    state, _ = _active(count=1)
    state, _ = _run(state, AnswerChanged("Inertia"), Advance())
    assert state.phase == AssessmentPhase.EVALUATING

    state, _ = step(state, RecordingFailed("Cannot stop recording from state failed"))
    assert state.phase == AssessmentPhase.ABORTED

    after, effects = step(state, EvaluationFailed("late"))
    assert after == state
    assert effects == []


def test_recording_failure_before_questions_is_ignored():
    state, _ = step(initial_state(3, 120), Begin())
    after, effects = step(state, RecordingFailed("Recording chunk received while idle"))
    assert after == state
    assert effects == []
