# backend/services/stage_websocket.py
"""
WebSocket driver for the interactive stages (timed assessment, live demo).

The browser owns camera/microphone and streams MediaRecorder chunks as binary
frames. Control messages are JSON. Every input (client message, timer tick,
voice agent callback, oracle outcome) becomes an event on one queue, and a
single consumer applies the stage reducer and carries out its effects, so
there is exactly one writer per stage attempt.
"""
import asyncio
import base64
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder

from config import get_settings
from models.interview import EvaluationSubmission, StageDefinition, StageKind, StageView
from services import live_demo as demo
from services import timed_assessment as ta
from services.broadcast_service import LiveBroadcast, broadcast_registry
from services.errors import PermissionDeniedError, PipelineError, RecordingError
from services.media_capture import CaptureState, MediaCapture
from services.stage_engine import StageEngine
from services.stage_timer import StageTimer, Ticker
from services.voice_agent import VoiceAgentChannel
from utils.logger import get_logger

logger = get_logger("StageWebSocket")

SEAL_TIMEOUT_SECONDS = 10.0


class StageWebSocketHandler:
    """Shared plumbing: message loop, event queue, ticker, recording."""

    def __init__(self, websocket: WebSocket, session_id: str, stage: StageDefinition,
                 engine: StageEngine, artifacts, voice_factory=None):
        settings = get_settings()
        self.websocket = websocket
        self.session_id = session_id
        self.stage = stage
        self.engine = engine
        self.artifacts = artifacts
        self.voice_factory = voice_factory or VoiceAgentChannel
        self.tick_interval = settings.tick_interval_seconds

        self.capture = MediaCapture(session_id, stage.order)
        self.state = self.initial_state()
        self.events: asyncio.Queue = asyncio.Queue()
        self.timer: Optional[StageTimer] = None
        self.ticker: Optional[Ticker] = None
        self._sealed = asyncio.Event()
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    # ---- per-stage hooks ----
    def initial_state(self):
        raise NotImplementedError

    def reduce(self, state, event):
        raise NotImplementedError

    def timer_running(self) -> bool:
        raise NotImplementedError

    def finished(self) -> bool:
        raise NotImplementedError

    def event_for(self, msg_type: str, message: Dict[str, Any]):
        raise NotImplementedError

    async def run_effect(self, effect) -> None:
        raise NotImplementedError

    def snapshot(self) -> Dict[str, Any]:
        raise NotImplementedError

    async def release_channels(self) -> None:
        pass

    def timer_limit(self) -> float:
        return 0

    def on_recording_error(self, error: RecordingError) -> None:
        raise NotImplementedError

    # ---- connection ----
    async def handle_connection(self):
        consumer = asyncio.create_task(self._event_loop())
        try:
            await self.send_message({"type": "ready", "stage": self.stage.model_dump(mode="json")})
            await self.send_state()
            await self._message_loop()
        except WebSocketDisconnect:
            logger.info(f"Client disconnected: {self.session_id}/{self.stage.order}")
        except Exception as e:
            logger.error(f"WebSocket error: {e}", exc_info=True)
            await self.send_error(str(e))
        finally:
            consumer.cancel()
            await self.cleanup()

    async def _message_loop(self):
        while not self._closed:
            data = await self.websocket.receive()
            if data.get("type") == "websocket.disconnect":
                break

            if data.get("bytes") is not None:
                self._on_chunk(data["bytes"])
                continue

            text = data.get("text")
            if text is None:
                continue
            try:
                message = json.loads(text)
            except json.JSONDecodeError as e:
                logger.error(f"Invalid JSON: {e}")
                await self.send_error("Invalid message format")
                continue
            await self._handle_message(message)

    async def _handle_message(self, message: Dict[str, Any]):
        msg_type = message.get("type")

        if msg_type == "ping":
            await self.send_message({"type": "pong"})
        elif msg_type == "permission":
            self.capture.grant_permission(bool(message.get("granted")), message.get("reason", ""))
            await self.send_message({"type": "permission", "granted": self.capture.permission_granted})
        elif msg_type == "recording_stopped":
            self._sealed.set()
        elif msg_type == "pause":
            self.capture.pause()
        elif msg_type == "resume":
            self.capture.resume()
        else:
            event = self.event_for(msg_type, message)
            if event is not None:
                await self.events.put(event)
            elif msg_type is not None:
                logger.debug(f"Unhandled message type: {msg_type}")

    def _on_chunk(self, chunk: bytes) -> None:
        if self.capture.state == CaptureState.STOPPED:
            logger.warning(f"Dropping {len(chunk)} bytes that arrived after the recording was sealed")
            return
        try:
            self.capture.append_chunk(chunk)
        except RecordingError as e:
            self.on_recording_error(e)

    def permission_ok(self) -> bool:
        return bool(self.capture.permission_granted)

    # ---- event consumer ----
    async def _event_loop(self):
        while True:
            event = await self.events.get()
            try:
                self.state, effects = self.reduce(self.state, event)
                for effect in effects:
                    await self.run_effect(effect)
                self._sync_ticker()
                await self.send_state()
                if self.finished():
                    await self.close()
                    return
            except Exception as e:
                logger.error(f"Failed to apply {type(event).__name__}: {e}", exc_info=True)
                await self.send_error("Something went wrong; please retry")

    def _sync_ticker(self) -> None:
        if self.timer_running() and self.ticker is None:
            self.timer = StageTimer(self.timer_limit())
            self.ticker = Ticker(self.timer, interval=self.tick_interval)
            self.spawn(self._tick_loop(self.ticker))
        elif not self.timer_running() and self.ticker is not None:
            self.ticker.stop()
            self.ticker = None

    async def _tick_loop(self, ticker: Ticker):
        async for tick in ticker:
            await self.events.put(tick)

    def spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ---- recording ----
    async def start_recording(self) -> None:
        self.capture.start()
        self._sealed.clear()
        await self.send_message({"type": "record", "action": "start"})

    async def request_stop(self, discard: bool = False) -> None:
        await self.send_message({"type": "record", "action": "discard" if discard else "stop"})
        if discard:
            self.capture.release()

    async def seal_and_upload(self) -> str:
        if self.capture.artifact_ref:
            return self.capture.artifact_ref
        try:
            await asyncio.wait_for(self._sealed.wait(), timeout=SEAL_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            logger.warning(f"No final chunk from client for {self.session_id}; sealing what arrived")
        self.capture.stop()
        return await self.capture.upload(self.artifacts)

    # ---- senders ----
    async def send_state(self):
        await self.send_message({"type": "state", **self.snapshot()})

    async def send_error(self, error_message: str, retry: bool = False):
        await self.send_message({
            "type": "error",
            "message": error_message,
            "retry": retry,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    async def send_message(self, message: Dict[str, Any]):
        if self._closed:
            return
        try:
            await self.websocket.send_json(jsonable_encoder(message))
        except Exception as e:
            logger.error(f"Failed to send message: {e}")

    async def close(self):
        if self._closed:
            return
        self._closed = True
        try:
            await self.websocket.close()
        except Exception as e:
            logger.debug(f"Close after disconnect: {e}")

    async def cleanup(self):
        logger.info(f"🧹 Cleaning up stage {self.stage.order} of {self.session_id}")
        self._closed = True
        if self.ticker:
            self.ticker.stop()
        for task in list(self._tasks):
            task.cancel()
        await self.release_channels()
        self.capture.release()


class AssessmentSocketHandler(StageWebSocketHandler):
    def initial_state(self):
        return ta.initial_state(self.stage.question_count, self.stage.time_per_question)

    def reduce(self, state, event):
        return ta.step(state, event)

    def timer_running(self) -> bool:
        return self.state.phase == ta.AssessmentPhase.ACTIVE

    def finished(self) -> bool:
        return self.state.phase in (ta.AssessmentPhase.COMPLETED, ta.AssessmentPhase.ABORTED)

    def on_recording_error(self, error: RecordingError) -> None:
        self.events.put_nowait(ta.RecordingFailed(error.message))

    def event_for(self, msg_type, message):
        if msg_type == "begin":
            if not self.permission_ok():
                self.spawn(self.send_error("Camera and microphone access is required", retry=True))
                return None
            return ta.Begin()
        if msg_type == "answer":
            return ta.AnswerChanged(str(message.get("text", "")))
        if msg_type == "next":
            return ta.Advance()
        if msg_type == "retry":
            return ta.Retry()
        return None

    async def run_effect(self, effect):
        if isinstance(effect, ta.GenerateQuestions):
            self.spawn(self._generate())
        elif isinstance(effect, ta.StartRecording):
            try:
                await self.start_recording()
            except PipelineError as e:
                await self.events.put(ta.RecordingFailed(e.message))
        elif isinstance(effect, ta.ArmTimer):
            await self.send_message({"type": "timer", "question_index": effect.question_index,
                                     "limit": effect.limit})
        elif isinstance(effect, ta.StopRecording):
            await self.request_stop(discard=effect.discard)
        elif isinstance(effect, ta.SubmitForEvaluation):
            self.spawn(self._submit(effect.answers))
        elif isinstance(effect, ta.ReleaseDevices):
            self.capture.release()
            await self.send_message({"type": "release"})
        elif isinstance(effect, ta.ShowError):
            await self.send_error(effect.message, retry=effect.retry)

    async def _generate(self):
        try:
            questions = await self.engine.generate_questions(self.session_id, self.stage.order)
            await self.events.put(ta.QuestionsReady(tuple(questions)))
        except PipelineError as e:
            await self.events.put(ta.GenerationFailed(e.message))

    async def _submit(self, answers):
        try:
            recording_ref = await self.seal_and_upload()
            submission = EvaluationSubmission(
                answers=list(answers),
                questions=list(self.state.questions),
                recording_ref=recording_ref,
            )
            result = await self.engine.submit_evaluation(self.session_id, self.stage.order, submission)
            await self.events.put(ta.EvaluationSucceeded(result))
        except RecordingError as e:
            await self.events.put(ta.RecordingFailed(e.message))
        except PipelineError as e:
            logger.warning(f"Evaluation failed for {self.session_id}/{self.stage.order}: {e.message}")
            await self.events.put(ta.EvaluationFailed(e.message))

    def snapshot(self):
        state = self.state
        question = state.current_question
        return {
            "phase": state.phase.value,
            "index": state.index,
            "total": len(state.questions) or state.question_count,
            "question": question.model_dump() if question else None,
            "remaining": int(state.remaining),
            "answered": len(state.answers),
            "error": state.error,
            "can_retry": state.can_retry,
            "result": state.result.model_dump(mode="json") if state.result else None,
        }


class DemoSocketHandler(StageWebSocketHandler):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.broadcast: Optional[LiveBroadcast] = None
        self.voice: Optional[VoiceAgentChannel] = None

    def initial_state(self):
        settings = get_settings()
        return demo.initial_state(
            time_limit=self.stage.time_per_question,
            min_duration=settings.demo_min_duration_seconds,
            closing_delay=settings.demo_closing_delay_seconds,
        )

    def reduce(self, state, event):
        return demo.step(state, event)

    def timer_running(self) -> bool:
        return self.state.phase == demo.DemoPhase.RECORDING

    def timer_limit(self) -> float:
        return self.state.time_limit

    def finished(self) -> bool:
        return self.state.phase in demo.TERMINAL_PHASES

    def on_recording_error(self, error: RecordingError) -> None:
        self.events.put_nowait(demo.RecordingFailed(error.message))

    def event_for(self, msg_type, message):
        if msg_type == "start":
            if not self.permission_ok():
                self.spawn(self.send_error("Camera and microphone access is required", retry=True))
                return None
            return demo.Start(str(message.get("topic", "")))
        if msg_type == "recording_started":
            return demo.RecordingStarted()
        if msg_type == "recording_error":
            return demo.RecordingFailed(str(message.get("reason", "Recording failed")))
        if msg_type == "stop":
            return demo.Stop()
        if msg_type == "exit":
            return demo.Exit()
        if msg_type == "retry":
            return demo.Retry()
        if msg_type == "broadcast_state" and self.broadcast is not None:
            return demo.BroadcastState(self.broadcast.on_connection_state(str(message.get("state"))))
        if msg_type == "viewer_joined" and self.broadcast is not None:
            self.broadcast.viewer_joined(message.get("identity"))
            return None
        if msg_type == "viewer_left" and self.broadcast is not None:
            self.broadcast.viewer_left(message.get("identity"))
            return None
        if msg_type == "voice_audio" and self.voice is not None:
            self.voice.feed_audio(str(message.get("data", "")))
            return None
        return None

    async def run_effect(self, effect):
        if isinstance(effect, demo.StartRecording):
            try:
                await self.start_recording()
            except PermissionDeniedError as e:
                await self.events.put(demo.RecordingFailed(e.message, permission=True))
            except RecordingError as e:
                await self.events.put(demo.RecordingFailed(e.message))
        elif isinstance(effect, demo.StartBroadcast):
            await self._start_broadcast()
        elif isinstance(effect, demo.ConnectVoice):
            self.voice = self.voice_factory(self.session_id, self.events.put_nowait, self._send_agent_audio)
            self.spawn(self.voice.connect())
        elif isinstance(effect, demo.ShowCue):
            await self.send_message({"type": "cue", "text": effect.text})
        elif isinstance(effect, (demo.SendContextualUpdate, demo.SendClosingMessage)):
            if self.voice is not None:
                self.voice.send_contextual_update(effect.text)
        elif isinstance(effect, demo.StopRecording):
            await self.request_stop(discard=effect.discard)
        elif isinstance(effect, demo.StopBroadcast):
            await self._stop_broadcast()
        elif isinstance(effect, demo.DisconnectVoice):
            if self.voice is not None:
                self.spawn(self.voice.disconnect(effect.delay))
        elif isinstance(effect, demo.ReleaseDevices):
            self.capture.release()
            await self.send_message({"type": "release"})
        elif isinstance(effect, demo.SubmitForEvaluation):
            self.spawn(self._submit(effect))
        elif isinstance(effect, demo.ShowError):
            await self.send_error(effect.message, retry=effect.retry)

    async def _start_broadcast(self):
        self.broadcast = broadcast_registry.open(self.session_id)
        self.broadcast.on_viewers = lambda count: self.events.put_nowait(demo.ViewerCount(count))
        grant = self.broadcast.start_broadcast()
        if grant is None:
            await self.events.put(demo.BroadcastState(self.broadcast.status))
            return
        await self.send_message({"type": "broadcast", "grant": grant.model_dump()})
        try:
            await self.engine.start_live_view(self.session_id)
        except PipelineError as e:
            logger.warning(f"Could not open live view for {self.session_id}: {e.message}")

    async def _stop_broadcast(self):
        if self.broadcast is None:
            return
        self.broadcast.on_viewers = None
        broadcast_registry.close(self.session_id)
        self.broadcast = None
        try:
            await self.engine.stop_live_view(self.session_id)
        except PipelineError as e:
            logger.warning(f"Could not close live view for {self.session_id}: {e.message}")

    async def _send_agent_audio(self, audio: bytes):
        await self.send_message({"type": "agent_audio", "data": base64.b64encode(audio).decode("utf-8")})

    async def _submit(self, effect: demo.SubmitForEvaluation):
        try:
            recording_ref = await self.seal_and_upload()
            submission = EvaluationSubmission(
                answers=[],
                recording_ref=recording_ref,
                duration_seconds=effect.duration_seconds,
                transcript=list(effect.transcript),
                demo_topic=effect.topic,
            )
            result = await self.engine.submit_evaluation(self.session_id, self.stage.order, submission)
            await self.events.put(demo.EvaluationSucceeded(result))
        except RecordingError as e:
            await self.events.put(demo.RecordingFailed(e.message))
        except PipelineError as e:
            logger.warning(f"Demo evaluation failed for {self.session_id}: {e.message}")
            await self.events.put(demo.EvaluationFailed(e.message))

    def snapshot(self):
        state = self.state
        last = state.transcript[-1] if state.transcript else None
        return {
            "phase": state.phase.value,
            "topic": state.topic,
            "elapsed": int(state.elapsed),
            "remaining": int(state.remaining),
            "can_end": state.can_end,
            "cue": state.current_cue,
            "voice": state.voice.value,
            "agent_speaking": state.agent_speaking,
            "broadcast": state.broadcast.value,
            "viewer_count": state.viewer_count,
            "last_message": last.model_dump(mode="json") if last else None,
            "error": state.error,
            "result": state.result.model_dump(mode="json") if state.result else None,
        }

    async def release_channels(self):
        await self._stop_broadcast()
        if self.voice is not None:
            await self.voice.disconnect()


HANDLERS = {
    StageKind.TIMED_ASSESSMENT: AssessmentSocketHandler,
    StageKind.LIVE_DEMO: DemoSocketHandler,
}


async def open_stage_socket(websocket: WebSocket, session_id: str, stage_order: int,
                            engine: StageEngine, artifacts, voice_factory=None) -> None:
    """Accept the socket and hand it to the driver for this stage, if it is interactive."""
    await websocket.accept()
    try:
        load = await engine.load_stage(session_id, stage_order)
    except PipelineError as e:
        await websocket.send_json({"type": "error", "message": e.message, "retry": False})
        await websocket.close()
        return

    if load.view == StageView.COMPLETED:
        await websocket.send_json({"type": "completed", "result": load.result.model_dump(mode="json")})
        await websocket.close()
        return
    if load.view == StageView.LOCKED:
        await websocket.send_json({"type": "error", "message": "This stage is locked", "retry": False})
        await websocket.close()
        return

    handler_cls = HANDLERS.get(load.definition.kind)
    if handler_cls is None:
        await websocket.send_json({"type": "error", "message": "This stage is not interactive", "retry": False})
        await websocket.close()
        return

    handler = handler_cls(websocket, session_id, load.definition, engine, artifacts,
                          voice_factory=voice_factory)
    await handler.handle_connection()
