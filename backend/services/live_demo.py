# services/live_demo.py
"""
Live teaching demo as a pure reducer.

Recording is the only channel whose failure ends an attempt. Broadcast and
voice agent state changes arrive as events and only ever degrade the demo.
"""
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional, Tuple, Union

from models.channels import BroadcastStatus, VoiceStatus
from models.interview import StageResult, TranscriptMessage, TranscriptRole
from services.coaching import CLOSING_MESSAGE, CoachingSchedule
from services.stage_timer import Tick


class DemoPhase(str, Enum):
    READY = "ready"
    RECORDING = "recording"
    EVALUATING = "evaluating"
    COMPLETED = "completed"
    EVALUATION_FAILED = "evaluation_failed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_PHASES = (DemoPhase.COMPLETED, DemoPhase.FAILED, DemoPhase.CANCELLED)


@dataclass(frozen=True)
class DemoState:
    time_limit: int = 600
    min_duration: int = 30
    closing_delay: float = 5.0
    phase: DemoPhase = DemoPhase.READY
    topic: str = ""
    elapsed: float = 0.0
    schedule: CoachingSchedule = field(default_factory=CoachingSchedule)
    current_cue: Optional[str] = None
    voice: VoiceStatus = VoiceStatus.DISCONNECTED
    agent_speaking: bool = False
    broadcast: BroadcastStatus = BroadcastStatus.IDLE
    viewer_count: int = 0
    transcript: Tuple[TranscriptMessage, ...] = ()
    duration_seconds: Optional[int] = None
    result: Optional[StageResult] = None
    error: Optional[str] = None

    @property
    def can_end(self) -> bool:
        return self.phase == DemoPhase.RECORDING and self.elapsed >= self.min_duration

    @property
    def remaining(self) -> float:
        return max(0.0, self.time_limit - self.elapsed)

    @property
    def candidate_utterances(self) -> List[str]:
        return [m.content for m in self.transcript if m.role == TranscriptRole.CANDIDATE]


# ---- events ----

@dataclass(frozen=True)
class Start:
    topic: str


@dataclass(frozen=True)
class RecordingStarted:
    pass


@dataclass(frozen=True)
class RecordingFailed:
    reason: str
    permission: bool = False


@dataclass(frozen=True)
class VoiceConnecting:
    pass


@dataclass(frozen=True)
class VoiceConnected:
    pass


@dataclass(frozen=True)
class VoiceDisconnected:
    reason: str = ""


@dataclass(frozen=True)
class AgentSpeaking:
    speaking: bool


@dataclass(frozen=True)
class AgentMessage:
    text: str


@dataclass(frozen=True)
class CandidateMessage:
    text: str


@dataclass(frozen=True)
class BroadcastState:
    status: BroadcastStatus


@dataclass(frozen=True)
class ViewerCount:
    count: int


@dataclass(frozen=True)
class Stop:
    pass


@dataclass(frozen=True)
class Exit:
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


Event = Union[Start, RecordingStarted, RecordingFailed, Tick, VoiceConnecting, VoiceConnected,
              VoiceDisconnected, AgentSpeaking, AgentMessage, CandidateMessage, BroadcastState,
              ViewerCount, Stop, Exit, EvaluationSucceeded, EvaluationFailed, Retry]


# ---- effects ----

@dataclass(frozen=True)
class StartRecording:
    pass


@dataclass(frozen=True)
class StartBroadcast:
    pass


@dataclass(frozen=True)
class ConnectVoice:
    pass


@dataclass(frozen=True)
class ShowCue:
    text: str


@dataclass(frozen=True)
class SendContextualUpdate:
    text: str


@dataclass(frozen=True)
class StopRecording:
    discard: bool = False


@dataclass(frozen=True)
class StopBroadcast:
    pass


@dataclass(frozen=True)
class SendClosingMessage:
    text: str


@dataclass(frozen=True)
class DisconnectVoice:
    delay: float = 0.0


@dataclass(frozen=True)
class ReleaseDevices:
    pass


@dataclass(frozen=True)
class SubmitForEvaluation:
    duration_seconds: int
    transcript: Tuple[TranscriptMessage, ...]
    topic: str


@dataclass(frozen=True)
class ShowError:
    message: str
    retry: bool = False


Effect = Union[StartRecording, StartBroadcast, ConnectVoice, ShowCue, SendContextualUpdate,
               StopRecording, StopBroadcast, SendClosingMessage, DisconnectVoice,
               ReleaseDevices, SubmitForEvaluation, ShowError]


def initial_state(time_limit: int = 600, min_duration: int = 30, closing_delay: float = 5.0,
                  schedule: Optional[CoachingSchedule] = None) -> DemoState:
    return DemoState(
        time_limit=time_limit,
        min_duration=min_duration,
        closing_delay=closing_delay,
        schedule=schedule or CoachingSchedule(),
    )


def _deliver_cues(state: DemoState) -> Tuple[DemoState, List[Effect]]:
    schedule, cues = state.schedule.due(state.elapsed)
    if not cues:
        return state, []
    effects: List[Effect] = []
    for cue in cues:
        effects.append(ShowCue(cue.text))
        if state.voice == VoiceStatus.CONNECTED:
            effects.append(SendContextualUpdate(cue.voice))
    return replace(state, schedule=schedule, current_cue=cues[-1].text), effects


def _finish(state: DemoState) -> Tuple[DemoState, List[Effect]]:
    duration = int(state.elapsed)
    effects: List[Effect] = [StopRecording(), StopBroadcast()]
    if state.voice == VoiceStatus.CONNECTED:
        effects.append(SendClosingMessage(CLOSING_MESSAGE))
        effects.append(DisconnectVoice(delay=state.closing_delay))
    else:
        effects.append(DisconnectVoice())
    effects.append(SubmitForEvaluation(duration_seconds=duration, transcript=state.transcript,
                                       topic=state.topic))
    finished = replace(state, phase=DemoPhase.EVALUATING, duration_seconds=duration,
                       broadcast=BroadcastStatus.IDLE, viewer_count=0, error=None)
    return finished, effects


def _teardown(discard: bool) -> List[Effect]:
    return [StopRecording(discard=discard), StopBroadcast(), DisconnectVoice(), ReleaseDevices()]


def step(state: DemoState, event: Event) -> Tuple[DemoState, List[Effect]]:
    phase = state.phase

    if isinstance(event, Start):
        if phase != DemoPhase.READY:
            return state, []
        topic = event.topic.strip()
        if not topic:
            return state, [ShowError("Please enter the topic you will teach")]
        return replace(state, topic=topic, error=None), [StartRecording()]

    if isinstance(event, RecordingStarted):
        if phase != DemoPhase.READY or not state.topic:
            return state, []
        started = replace(state, phase=DemoPhase.RECORDING, elapsed=0.0,
                          broadcast=BroadcastStatus.CONNECTING, voice=VoiceStatus.CONNECTING)
        started, cue_effects = _deliver_cues(started)
        return started, [StartBroadcast(), ConnectVoice()] + cue_effects

    if isinstance(event, RecordingFailed):
        if phase == DemoPhase.READY:
            # permission problems are fixed by granting access and starting again
            return replace(state, error=event.reason), [ShowError(event.reason, retry=event.permission)]
        if phase not in (DemoPhase.RECORDING, DemoPhase.EVALUATING, DemoPhase.EVALUATION_FAILED):
            return state, []
        # without the recording there is nothing left to evaluate
        failed = replace(state, phase=DemoPhase.FAILED, error=event.reason, agent_speaking=False,
                         broadcast=BroadcastStatus.IDLE, viewer_count=0, voice=VoiceStatus.DISCONNECTED)
        return failed, _teardown(discard=True) + [ShowError(event.reason)]

    if isinstance(event, Tick):
        if phase != DemoPhase.RECORDING or event.elapsed < state.elapsed:
            return state, []
        ticked, effects = _deliver_cues(replace(state, elapsed=event.elapsed))
        if ticked.elapsed >= ticked.time_limit:
            finished, stop_effects = _finish(ticked)
            return finished, effects + stop_effects
        return ticked, effects

    if isinstance(event, VoiceConnecting):
        if phase != DemoPhase.RECORDING:
            return state, []
        return replace(state, voice=VoiceStatus.CONNECTING), []

    if isinstance(event, VoiceConnected):
        if phase != DemoPhase.RECORDING:
            return state, []
        return replace(state, voice=VoiceStatus.CONNECTED), []

    if isinstance(event, VoiceDisconnected):
        return replace(state, voice=VoiceStatus.DISCONNECTED, agent_speaking=False), []

    if isinstance(event, AgentSpeaking):
        if state.voice != VoiceStatus.CONNECTED:
            return state, []
        return replace(state, agent_speaking=event.speaking), []

    if isinstance(event, (AgentMessage, CandidateMessage)):
        if phase != DemoPhase.RECORDING or not event.text.strip():
            return state, []
        role = TranscriptRole.AGENT if isinstance(event, AgentMessage) else TranscriptRole.CANDIDATE
        message = TranscriptMessage(role=role, content=event.text.strip())
        return replace(state, transcript=state.transcript + (message,)), []

    if isinstance(event, BroadcastState):
        if phase != DemoPhase.RECORDING:
            return state, []
        viewers = 0 if event.status == BroadcastStatus.FAILED else state.viewer_count
        return replace(state, broadcast=event.status, viewer_count=viewers), []

    if isinstance(event, ViewerCount):
        if phase != DemoPhase.RECORDING:
            return state, []
        return replace(state, viewer_count=max(0, event.count)), []

    if isinstance(event, Stop):
        if phase != DemoPhase.RECORDING:
            return state, []
        if not state.can_end:
            return state, []
        return _finish(state)

    if isinstance(event, Exit):
        if phase in TERMINAL_PHASES:
            return state, []
        cancelled = replace(state, phase=DemoPhase.CANCELLED, broadcast=BroadcastStatus.IDLE,
                            viewer_count=0, voice=VoiceStatus.DISCONNECTED, agent_speaking=False)
        return cancelled, _teardown(discard=phase in (DemoPhase.READY, DemoPhase.RECORDING))

    if isinstance(event, EvaluationSucceeded):
        if phase != DemoPhase.EVALUATING:
            return state, []
        return replace(state, phase=DemoPhase.COMPLETED, result=event.result), [ReleaseDevices()]

    if isinstance(event, EvaluationFailed):
        if phase != DemoPhase.EVALUATING:
            return state, []
        failed = replace(state, phase=DemoPhase.EVALUATION_FAILED, error=event.reason)
        return failed, [ShowError(event.reason, retry=True)]

    if isinstance(event, Retry):
        if phase != DemoPhase.EVALUATION_FAILED:
            return state, []
        return replace(state, phase=DemoPhase.EVALUATING, error=None), [
            SubmitForEvaluation(duration_seconds=state.duration_seconds or 0,
                                transcript=state.transcript, topic=state.topic)
        ]

    return state, []
