# services/store.py
"""Redis-backed persistence for sessions and stage results."""
import json
from datetime import datetime, timezone
from typing import List, Optional

from fastapi.encoders import jsonable_encoder
from redis.asyncio import Redis

from models.interview import StageResult
from models.session import InterviewSession
from utils.logger import get_logger
from utils.redis_client import get_json, get_redis, set_json

logger = get_logger("SessionStore")

SESSION_KEY = "mock_interview:session:{session_id}"
RESULT_KEY = "mock_interview:result:{session_id}:{order}"
RESULT_INDEX_KEY = "mock_interview:results:{session_id}"


class RedisStore:
    def __init__(self, client: Optional[Redis] = None):
        self._client = client

    @property
    def client(self) -> Redis:
        if self._client is None:
            self._client = get_redis()
        return self._client

    # ---------- sessions ----------
    async def get_session(self, session_id: str) -> Optional[InterviewSession]:
        data = await get_json(self.client, SESSION_KEY.format(session_id=session_id))
        return InterviewSession.model_validate(data) if data else None

    async def save_session(self, session: InterviewSession) -> InterviewSession:
        session.updated_at = datetime.now(timezone.utc)
        await set_json(self.client, SESSION_KEY.format(session_id=session.session_id), session.model_dump())
        return session

    # ---------- results ----------
    async def get_result(self, session_id: str, stage_order: int) -> Optional[StageResult]:
        data = await get_json(self.client, RESULT_KEY.format(session_id=session_id, order=stage_order))
        return StageResult.model_validate(data) if data else None

    async def list_results(self, session_id: str) -> List[StageResult]:
        orders = await self.client.smembers(RESULT_INDEX_KEY.format(session_id=session_id))
        results = []
        for order in sorted(int(o) for o in orders):
            result = await self.get_result(session_id, order)
            if result is not None:
                results.append(result)
        return results

    async def complete_stage(self, session: InterviewSession, result: StageResult) -> StageResult:
        """
        Persist a completed result and the updated session in one transaction.

        A result that is already completed is never overwritten; the stored one
        is returned and the session write is skipped.
        """
        existing = await self.get_result(result.session_id, result.stage_order)
        if existing is not None and existing.is_completed:
            logger.warning(
                f"Stage {result.stage_order} of {result.session_id} already completed; keeping stored result"
            )
            return existing

        if result.completed_at is None:
            result.completed_at = datetime.now(timezone.utc)
        session.updated_at = datetime.now(timezone.utc)

        async with self.client.pipeline(transaction=True) as pipe:
            pipe.set(
                RESULT_KEY.format(session_id=result.session_id, order=result.stage_order),
                json.dumps(jsonable_encoder(result.model_dump())),
            )
            pipe.sadd(RESULT_INDEX_KEY.format(session_id=result.session_id), result.stage_order)
            pipe.set(
                SESSION_KEY.format(session_id=session.session_id),
                json.dumps(jsonable_encoder(session.model_dump())),
            )
            await pipe.execute()

        logger.info(f"💾 Stored result for stage {result.stage_order} of {result.session_id}")
        return result
