from models.channels import BroadcastStatus, VoiceStatus
from models.interview import StageResult
from services.coaching import CLOSING_MESSAGE
from services.live_demo import (
    BroadcastState,
    CandidateMessage,
    ConnectVoice,
    DemoPhase,
    DisconnectVoice,
    EvaluationFailed,
    EvaluationSucceeded,
    Exit,
    ReleaseDevices,
    RecordingFailed,
    RecordingStarted,
    Retry,
    SendClosingMessage,
    SendContextualUpdate,
    ShowCue,
    ShowError,
    Start,
    StartBroadcast,
    StartRecording,
    Stop,
    StopBroadcast,
    StopRecording,
    SubmitForEvaluation,
    ViewerCount,
    VoiceConnected,
    initial_state,
    step,
)
from services.stage_timer import Tick


def _recording(voice_connected=False):
    state, effects = step(initial_state(), Start("Photosynthesis"))
    assert effects == [StartRecording()]
    state, effects = step(state, RecordingStarted())
    if voice_connected:
        state, _ = step(state, VoiceConnected())
    return state, effects


def _run_events(state, *events):
    effects = []
    for event in events:
        state, produced = step(state, event)
        effects.extend(produced)
    return state, effects


def test_start_requires_a_topic():
    state, effects = step(initial_state(), Start("  "))
    assert state.phase == DemoPhase.READY
    assert isinstance(effects[0], ShowError)


def test_recording_started_opens_channels_and_shows_first_cue():
    state, effects = _recording()
    assert state.phase == DemoPhase.RECORDING
    assert effects[:2] == [StartBroadcast(), ConnectVoice()]
    assert isinstance(effects[2], ShowCue)
    # the agent is still connecting, so nothing is voiced yet
    assert not any(isinstance(e, SendContextualUpdate) for e in effects)


def test_can_end_only_after_minimum_duration():
    state, _ = _recording()
    state, _ = step(state, Tick(29))
    assert not state.can_end

    after, effects = step(state, Stop())
    assert after == state
    assert effects == []

    state, _ = step(state, Tick(30))
    assert state.can_end


def test_stop_at_45_seconds_submits_with_duration():
    state, _ = _recording()
    state, _ = step(state, CandidateMessage("Plants turn light into sugar"))
    state, _ = step(state, Tick(45))
    state, effects = step(state, Stop())

    assert state.phase == DemoPhase.EVALUATING
    assert state.duration_seconds == 45
    assert effects[:2] == [StopRecording(), StopBroadcast()]
    assert DisconnectVoice() in effects
    submit = effects[-1]
    assert isinstance(submit, SubmitForEvaluation)
    assert submit.duration_seconds == 45
    assert submit.topic == "Photosynthesis"
    assert [m.content for m in submit.transcript] == ["Plants turn light into sugar"]


def test_connected_agent_voices_cues_and_says_goodbye():
    state, _ = _recording(voice_connected=True)
    state, effects = step(state, Tick(61))
    assert [type(e) for e in effects] == [ShowCue, SendContextualUpdate, ShowCue, SendContextualUpdate]

    state, effects = step(state, Stop())
    assert SendClosingMessage(CLOSING_MESSAGE) in effects
    assert DisconnectVoice(delay=state.closing_delay) in effects


def test_auto_stop_at_time_limit():
    state, _ = _recording()
    state, _ = step(state, Tick(599))
    assert state.phase == DemoPhase.RECORDING
    state, effects = step(state, Tick(600))
    assert state.phase == DemoPhase.EVALUATING
    assert state.duration_seconds == 600
    assert sum(isinstance(e, SubmitForEvaluation) for e in effects) == 1

    # a late tick after auto-stop changes nothing
    after, effects = step(state, Tick(601))
    assert after == state
    assert effects == []


def test_broadcast_failure_degrades_without_ending_demo():
    state, _ = _recording()
    state, _ = step(state, ViewerCount(2))
    state, _ = step(state, BroadcastState(BroadcastStatus.FAILED))
    assert state.phase == DemoPhase.RECORDING
    assert state.broadcast == BroadcastStatus.FAILED
    assert state.viewer_count == 0

    state, _ = step(state, ViewerCount(-4))
    assert state.viewer_count == 0


def test_recording_failure_mid_demo_tears_down():
    state, _ = _recording()
    state, effects = step(state, RecordingFailed("camera unplugged"))
    assert state.phase == DemoPhase.FAILED
    assert StopRecording(discard=True) in effects
    assert ReleaseDevices() in effects
    assert state.voice == VoiceStatus.DISCONNECTED


def test_recording_lost_after_stop_ends_the_attempt():
    state, _ = _recording()
    state, _ = _run_events(state, Tick(45), Stop())
    assert state.phase == DemoPhase.EVALUATING

    state, effects = step(state, RecordingFailed("Recording exceeded 1000 bytes"))
    assert state.phase == DemoPhase.FAILED
    assert ReleaseDevices() in effects
    assert not any(isinstance(e, SubmitForEvaluation) for e in effects)

    # no retry button that can never succeed
    state, effects = _run_events(state, EvaluationFailed("Cannot stop recording from state failed"), Retry())
    assert state.phase == DemoPhase.FAILED
    assert effects == []


def test_recording_lost_while_evaluation_failed():
    state, _ = _recording()
    state, _ = _run_events(state, Tick(45), Stop(), EvaluationFailed("oracle down"))
    state, effects = step(state, RecordingFailed("gone"))
    assert state.phase == DemoPhase.FAILED
    assert ShowError("gone") in effects


def test_exit_cancels_and_discards():
    state, _ = _recording()
    state, effects = step(state, Exit())
    assert state.phase == DemoPhase.CANCELLED
    assert effects == [StopRecording(discard=True), StopBroadcast(), DisconnectVoice(), ReleaseDevices()]


def test_evaluation_retry_resubmits_same_duration():
    state, _ = _recording()
    state, _ = step(state, Tick(45))
    state, _ = step(state, Stop())
    state, effects = step(state, EvaluationFailed("oracle down"))
    assert state.phase == DemoPhase.EVALUATION_FAILED
    assert effects == [ShowError("oracle down", retry=True)]

    state, effects = step(state, Retry())
    assert effects[0].duration_seconds == 45

    result = StageResult(session_id="s", stage_order=5, stage_name="Demo Round", score=80)
    state, effects = step(state, EvaluationSucceeded(result))
    assert state.phase == DemoPhase.COMPLETED
    assert effects == [ReleaseDevices()]
