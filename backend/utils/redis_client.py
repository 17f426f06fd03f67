import json
from functools import lru_cache
from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from redis.asyncio import Redis

from config import get_settings
from utils.logger import get_logger

log = get_logger(__name__)


# ------------------------------------------------------------------ #
# Redis client init
# ------------------------------------------------------------------ #
@lru_cache
def get_redis() -> Redis:
    cfg = get_settings()
    return Redis(
        host=cfg.redis_host,
        port=cfg.redis_port,
        db=cfg.redis_db,
        password=cfg.redis_password or None,
        decode_responses=True,   # store JSON strings not bytes
        health_check_interval=30,
    )


# ------------------------------------------------------------------ #
# Connection test
# ------------------------------------------------------------------ #
async def test_connection(client: Optional[Redis] = None) -> bool:
    client = client or get_redis()
    try:
        if await client.ping():
            log.info("✅ Redis connection successful!")
            return True
    except Exception as e:
        log.error(f"❌ Redis connection failed: {e}", exc_info=True)
    return False


# ------------------------------------------------------------------ #
# JSON records
# ------------------------------------------------------------------ #
async def get_json(client: Redis, key: str) -> Optional[Any]:
    """Retrieve a record and decode JSON back to python data."""
    raw = await client.get(key)
    if raw is None:
        return None
    return json.loads(raw)


async def set_json(client: Redis, key: str, data: Any, expire_seconds: Optional[int] = None) -> None:
    """Create or overwrite a record (JSON-encoded). Records never expire unless asked to."""
    safe = jsonable_encoder(data)
    await client.set(key, json.dumps(safe), ex=expire_seconds)
