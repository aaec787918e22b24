"""
Idempotency cache: client dedup key -> the response produced the first time the key was seen.
Records are create-if-absent with a TTL; expiry is cleanup, not correctness.
"""
import logging

import redis.asyncio as redis
from pydantic import ValidationError

from handoff.config import settings
from handoff.models import CachedResponse

logger = logging.getLogger(__name__)


class IdempotencyCache:
    def __init__(self, r: redis.Redis, ttl_seconds: int | None = None):
        self._redis = r
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.idempotency_ttl_seconds

    async def lookup(self, key: str) -> CachedResponse | None:
        raw = await self._redis.get(key)
        if raw is None:
            return None
        try:
            return CachedResponse.model_validate_json(raw)
        except ValidationError:
            logger.warning("Unreadable idempotency record at %s, treating as miss", key)
            return None

    async def store(self, key: str, response: CachedResponse, ttl_seconds: int | None = None) -> bool:
        """
        Write once (SET NX EX). Returns False if a record already existed; the first record wins.
        Only called after a commit under the order lock, so a lost race here is benign.
        """
        ttl = ttl_seconds if ttl_seconds is not None else self.ttl_seconds
        was_set = await self._redis.set(key, response.model_dump_json(), nx=True, ex=ttl)
        if not was_set:
            logger.warning("Idempotency record %s already present, keeping the original", key)
        return bool(was_set)
