# services/voice_agent.py
"""
Voice Agent Channel - ElevenLabs conversational agent for the live demo.

Two ways in:
  * get_token(): a short-lived conversation token for a browser-side session.
  * connect(): a server-side conversation whose audio is bridged to the
    candidate's WebSocket.

Every failure ends up as a VoiceDisconnected event. Nothing is raised into
the demo flow; the demo simply continues with on-screen cues only.
"""
import asyncio
import base64
import queue
from typing import Callable, Optional

import httpx
from elevenlabs.client import ElevenLabs
from elevenlabs.conversational_ai.conversation import AudioInterface, Conversation

from config import get_settings
from models.channels import VoiceStatus
from services.live_demo import (
    AgentMessage,
    AgentSpeaking,
    CandidateMessage,
    VoiceConnected,
    VoiceConnecting,
    VoiceDisconnected,
)
from utils.logger import get_logger

logger = get_logger("VoiceAgent")

EventSink = Callable[[object], None]


class VoiceTokenError(Exception):
    pass


async def get_token(session_id: str, client: Optional[httpx.AsyncClient] = None) -> str:
    """Fetch a conversation token for the configured agent."""
    settings = get_settings()
    if not settings.elevenlabs_api_key or not settings.elevenlabs_agent_id:
        raise VoiceTokenError("ElevenLabs agent is not configured")

    url = f"{settings.elevenlabs_api_base}/v1/convai/conversation/token"
    params = {"agent_id": settings.elevenlabs_agent_id}
    headers = {"xi-api-key": settings.elevenlabs_api_key}

    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=15.0)
    try:
        response = await client.get(url, params=params, headers=headers)
        response.raise_for_status()
        token = response.json().get("token")
    except httpx.HTTPError as e:
        raise VoiceTokenError(f"ElevenLabs token request failed: {e}") from e
    finally:
        if owns_client:
            await client.aclose()

    if not token:
        raise VoiceTokenError("ElevenLabs returned no conversation token")
    logger.info(f"🎙️ Issued voice token for session {session_id}")
    return token


class WebSocketAudioBridge(AudioInterface):
    """
    Moves PCM audio between the ElevenLabs SDK (worker thread) and the
    candidate's WebSocket (event loop).

    Inbound: 16-bit PCM mono 16kHz pushed with feed().
    Outbound: agent audio handed to `send_audio` on the loop.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop,
                 send_audio: Callable[[bytes], "asyncio.Future"],
                 on_speaking: Callable[[bool], None]):
        self._loop = loop
        self._send_audio = send_audio
        self._on_speaking = on_speaking
        self._input_callback: Optional[Callable[[bytes], None]] = None
        self._pending: "queue.Queue[bytes]" = queue.Queue()

    def start(self, input_callback: Callable[[bytes], None]):
        self._input_callback = input_callback
        while not self._pending.empty():
            input_callback(self._pending.get_nowait())

    def stop(self):
        self._input_callback = None

    def output(self, audio: bytes):
        self._on_speaking(True)
        asyncio.run_coroutine_threadsafe(self._send_audio(audio), self._loop)

    def interrupt(self):
        self._on_speaking(False)

    def feed(self, pcm: bytes) -> None:
        if self._input_callback is None:
            self._pending.put(pcm)
        else:
            self._input_callback(pcm)


class VoiceAgentChannel:
    """Server-side conversational agent for one demo attempt."""

    def __init__(
        self,
        session_id: str,
        on_event: EventSink,
        send_audio: Callable[[bytes], "asyncio.Future"],
        conversation_factory: Optional[Callable[..., Conversation]] = None,
    ):
        self.session_id = session_id
        self.status = VoiceStatus.DISCONNECTED
        self._on_event = on_event
        self._send_audio = send_audio
        self._factory = conversation_factory or self._default_conversation
        self._conversation: Optional[Conversation] = None
        self._bridge: Optional[WebSocketAudioBridge] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def _emit(self, event) -> None:
        # SDK callbacks fire on its worker thread
        if self._loop is None:
            self._on_event(event)
        else:
            self._loop.call_soon_threadsafe(self._on_event, event)

    def _default_conversation(self, audio_interface: AudioInterface, **callbacks) -> Conversation:
        settings = get_settings()
        client = ElevenLabs(api_key=settings.elevenlabs_api_key)
        return Conversation(
            client,
            settings.elevenlabs_agent_id,
            requires_auth=bool(settings.elevenlabs_api_key),
            audio_interface=audio_interface,
            **callbacks,
        )

    def _on_agent_response(self, text: str) -> None:
        self._emit(AgentMessage(text))

    def _on_user_transcript(self, text: str) -> None:
        self._emit(CandidateMessage(text))

    def _on_speaking(self, speaking: bool) -> None:
        self._emit(AgentSpeaking(speaking))

    def _on_session_end(self, *args) -> None:
        if self.status != VoiceStatus.DISCONNECTED:
            self.status = VoiceStatus.DISCONNECTED
            self._emit(VoiceDisconnected("session ended"))

    async def connect(self) -> bool:
        settings = get_settings()
        self._loop = asyncio.get_running_loop()
        if not settings.elevenlabs_agent_id:
            logger.warning("Voice agent not configured; continuing with text cues only")
            self._on_event(VoiceDisconnected("not configured"))
            return False

        self.status = VoiceStatus.CONNECTING
        self._on_event(VoiceConnecting())
        try:
            self._bridge = WebSocketAudioBridge(self._loop, self._send_audio, self._on_speaking)
            self._conversation = self._factory(
                self._bridge,
                callback_agent_response=self._on_agent_response,
                callback_user_transcript=self._on_user_transcript,
                callback_end_session=self._on_session_end,
            )
            await self._loop.run_in_executor(None, self._conversation.start_session)
        except Exception as e:
            logger.error(f"Voice agent connection failed for {self.session_id}: {e}", exc_info=True)
            self._conversation = None
            self.status = VoiceStatus.DISCONNECTED
            self._on_event(VoiceDisconnected(str(e)))
            return False

        self.status = VoiceStatus.CONNECTED
        self._on_event(VoiceConnected())
        logger.info(f"✅ Voice agent connected: {self.session_id}")
        return True

    def feed_audio(self, encoded: str) -> None:
        if self._bridge is None or self.status != VoiceStatus.CONNECTED:
            return
        try:
            self._bridge.feed(base64.b64decode(encoded))
        except (ValueError, TypeError) as e:
            logger.debug(f"Dropping malformed audio frame: {e}")

    def send_contextual_update(self, text: str) -> bool:
        if self._conversation is None or self.status != VoiceStatus.CONNECTED:
            return False
        try:
            self._conversation.send_contextual_update(text)
            return True
        except Exception as e:
            logger.warning(f"Contextual update failed, dropping voice channel: {e}")
            self.status = VoiceStatus.DISCONNECTED
            self._on_event(VoiceDisconnected(str(e)))
            return False

    async def disconnect(self, delay: float = 0.0) -> None:
        if delay > 0:
            await asyncio.sleep(delay)
        conversation, self._conversation = self._conversation, None
        was_connected = self.status != VoiceStatus.DISCONNECTED
        self.status = VoiceStatus.DISCONNECTED
        if conversation is not None:
            try:
                conversation.end_session()
                await asyncio.get_running_loop().run_in_executor(None, conversation.wait_for_session_end)
            except Exception as e:
                logger.warning(f"Error closing voice session {self.session_id}: {e}")
        if was_connected:
            self._on_event(VoiceDisconnected("closed"))
            logger.info(f"🔌 Voice agent disconnected: {self.session_id}")
