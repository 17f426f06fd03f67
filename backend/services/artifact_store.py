# services/artifact_store.py
"""Recording storage on Firebase Storage."""
import asyncio
import datetime
from typing import Any, Callable, Optional

from config import get_settings
from utils.logger import get_logger

logger = get_logger("ArtifactStore")

_EXTENSIONS = {
    "video/webm": "webm",
    "video/mp4": "mp4",
    "audio/webm": "webm",
}


class FirebaseArtifactStore:
    def __init__(self, bucket_factory: Optional[Callable[[], Any]] = None):
        if bucket_factory is None:
            from firebase_config import get_bucket
            bucket_factory = get_bucket
        self._bucket_factory = bucket_factory

    @staticmethod
    def blob_path(session_id: str, stage_order: int, content_type: str) -> str:
        ext = _EXTENSIONS.get(content_type.split(";")[0], "bin")
        stamp = datetime.datetime.now(datetime.timezone.utc).strftime("%Y%m%dT%H%M%S")
        return f"mock-interviews/{session_id}/stage-{stage_order}-{stamp}.{ext}"

    async def upload_recording(self, session_id: str, stage_order: int, data: bytes, content_type: str) -> str:
        path = self.blob_path(session_id, stage_order, content_type)

        def _upload():
            blob = self._bucket_factory().blob(path)
            blob.upload_from_string(data, content_type=content_type)
            return path

        loop = asyncio.get_running_loop()
        ref = await loop.run_in_executor(None, _upload)
        logger.info(f"☁️ Uploaded {len(data)} bytes to {ref}")
        return ref

    async def playback_url(self, ref: str) -> str:
        ttl = datetime.timedelta(minutes=get_settings().recording_url_ttl_minutes)

        def _sign():
            blob = self._bucket_factory().blob(ref)
            return blob.generate_signed_url(expiration=ttl, version="v4")

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, _sign)
