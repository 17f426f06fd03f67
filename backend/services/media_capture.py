# services/media_capture.py
"""
Server side of the candidate's camera/microphone recording.

The browser owns the devices and streams MediaRecorder chunks over the stage
WebSocket. This unit tracks the recording lifecycle, buffers the chunks,
seals them into a RecordingBlob and uploads the blob to the artifact store.
"""
import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Protocol

from config import get_settings
from services.errors import PermissionDeniedError, RecordingError, UploadError
from utils.logger import get_logger

logger = get_logger("MediaCapture")


class CaptureState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PAUSED = "paused"
    STOPPED = "stopped"
    FAILED = "failed"
    RELEASED = "released"


@dataclass(frozen=True)
class RecordingBlob:
    data: bytes
    mime_type: str
    chunk_count: int

    @property
    def size(self) -> int:
        return len(self.data)


class RecordingUploader(Protocol):
    async def upload_recording(self, session_id: str, stage_order: int, data: bytes,
                               content_type: str) -> str: ...


class MediaCapture:
    def __init__(
        self,
        session_id: str,
        stage_order: int,
        max_bytes: Optional[int] = None,
        mime_type: str = "video/webm",
    ):
        settings = get_settings()
        self.session_id = session_id
        self.stage_order = stage_order
        self.max_bytes = max_bytes if max_bytes is not None else settings.max_recording_bytes
        self.mime_type = mime_type
        self.state = CaptureState.IDLE
        self.permission_granted: Optional[bool] = None
        self.failure: Optional[str] = None
        self.artifact_ref: Optional[str] = None
        self._chunks: List[bytes] = []
        self._size = 0
        self._blob: Optional[RecordingBlob] = None

    @property
    def size(self) -> int:
        return self._size

    def grant_permission(self, granted: bool, reason: str = "") -> None:
        self.permission_granted = granted
        if not granted:
            logger.warning(f"🚫 Device permission denied for {self.session_id}/{self.stage_order}: {reason}")

    def start(self, mime_type: Optional[str] = None) -> None:
        if not self.permission_granted:
            raise PermissionDeniedError(
                "Camera and microphone access is required to start this stage",
                session_id=self.session_id,
                stage_order=self.stage_order,
            )
        if self.state != CaptureState.IDLE:
            raise RecordingError(
                f"Cannot start recording from state {self.state.value}",
                session_id=self.session_id,
                stage_order=self.stage_order,
            )
        if mime_type:
            self.mime_type = mime_type
        self.state = CaptureState.RECORDING
        logger.info(f"🎥 Recording started: {self.session_id}/{self.stage_order} ({self.mime_type})")

    def pause(self) -> None:
        if self.state == CaptureState.RECORDING:
            self.state = CaptureState.PAUSED

    def resume(self) -> None:
        if self.state == CaptureState.PAUSED:
            self.state = CaptureState.RECORDING

    def append_chunk(self, chunk: bytes) -> None:
        if self.state == CaptureState.PAUSED or not chunk:
            return
        if self.state != CaptureState.RECORDING:
            raise RecordingError(
                f"Recording chunk received while {self.state.value}",
                session_id=self.session_id,
                stage_order=self.stage_order,
            )
        if self._size + len(chunk) > self.max_bytes:
            self.fail(f"Recording exceeded {self.max_bytes} bytes")
            raise RecordingError(self.failure, session_id=self.session_id, stage_order=self.stage_order)
        self._chunks.append(chunk)
        self._size += len(chunk)

    def fail(self, reason: str) -> None:
        self.state = CaptureState.FAILED
        self.failure = reason
        self._chunks = []
        logger.error(f"❌ Recording failed for {self.session_id}/{self.stage_order}: {reason}")

    def stop(self) -> RecordingBlob:
        if self._blob is not None:
            return self._blob
        if self.state not in (CaptureState.RECORDING, CaptureState.PAUSED):
            raise RecordingError(
                f"Cannot stop recording from state {self.state.value}",
                session_id=self.session_id,
                stage_order=self.stage_order,
            )
        if not self._chunks:
            self.fail("No recording data was received")
            raise RecordingError(self.failure, session_id=self.session_id, stage_order=self.stage_order)
        self._blob = RecordingBlob(data=b"".join(self._chunks), mime_type=self.mime_type,
                                   chunk_count=len(self._chunks))
        self._chunks = []
        self.state = CaptureState.STOPPED
        logger.info(f"⏹️ Recording stopped: {self._blob.size} bytes in {self._blob.chunk_count} chunks")
        return self._blob

    async def upload(
        self,
        uploader: RecordingUploader,
        retries: Optional[int] = None,
        backoff: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> str:
        """Upload the sealed blob, retrying on failure. Returns the artifact reference."""
        if self.artifact_ref:
            return self.artifact_ref
        if self._blob is None:
            raise RecordingError("Recording has not been stopped", session_id=self.session_id,
                                 stage_order=self.stage_order)

        settings = get_settings()
        retries = settings.upload_retries if retries is None else retries
        backoff = settings.upload_retry_backoff_seconds if backoff is None else backoff

        last_error: Optional[Exception] = None
        for attempt in range(retries + 1):
            try:
                self.artifact_ref = await uploader.upload_recording(
                    self.session_id, self.stage_order, self._blob.data, self._blob.mime_type
                )
                logger.info(f"☁️ Recording uploaded: {self.artifact_ref}")
                return self.artifact_ref
            except Exception as e:
                last_error = e
                logger.warning(f"Upload attempt {attempt + 1}/{retries + 1} failed: {e}")
                if attempt < retries:
                    await sleep(backoff * (attempt + 1))

        raise UploadError(
            f"Recording upload failed after {retries + 1} attempts: {last_error}",
            session_id=self.session_id,
            stage_order=self.stage_order,
        )

    def release(self) -> None:
        if self.state in (CaptureState.RECORDING, CaptureState.PAUSED):
            logger.info(f"Discarding in-progress recording for {self.session_id}/{self.stage_order}")
        self._chunks = []
        self._size = 0
        self.state = CaptureState.RELEASED
