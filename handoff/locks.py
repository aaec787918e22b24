"""
Per-order mutual exclusion held in Redis.

A lock is a key holding a random token with a TTL. Acquire is SET NX PX; release is a
compare-and-delete Lua script so a slow caller whose lock expired cannot delete a lock
that has since been re-acquired by someone else. The TTL is the only crash recovery:
a holder that dies mid-operation frees the order once the key expires.
"""
import asyncio
import logging
import secrets
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import redis.asyncio as redis

from handoff.config import settings
from handoff.errors import LockBusyError
from handoff.metrics import lock_busy_total, lock_release_mismatch_total
from handoff.redis_client import lock_key

logger = logging.getLogger(__name__)

# KEYS[1]: lock:order:{order_id}
# ARGV[1]: token held by the caller
# Returns 1 if the lock was ours and is now deleted, 0 otherwise.
RELEASE_LOCK_LUA = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
end
return 0
"""


class LockManager:
    def __init__(
        self,
        r: redis.Redis,
        ttl_ms: int | None = None,
        attempts: int | None = None,
        retry_delays_ms: list[int] | None = None,
    ):
        self._redis = r
        self.ttl_ms = ttl_ms if ttl_ms is not None else settings.lock_ttl_ms
        self.attempts = attempts if attempts is not None else settings.lock_acquire_attempts
        self.retry_delays_ms = retry_delays_ms if retry_delays_ms is not None else settings.lock_retry_delays_ms
        self._release_script = r.register_script(RELEASE_LOCK_LUA)

    def _delay_after(self, attempt: int) -> float:
        if not self.retry_delays_ms:
            return 0.0
        return self.retry_delays_ms[min(attempt, len(self.retry_delays_ms) - 1)] / 1000

    async def acquire(self, order_id: str) -> str | None:
        """Return a possession token, or None if the order stayed busy through every attempt."""
        key = lock_key(order_id)
        token = secrets.token_hex(16)
        for attempt in range(self.attempts):
            if await self._redis.set(key, token, nx=True, px=self.ttl_ms):
                return token
            if attempt + 1 < self.attempts:
                delay = self._delay_after(attempt)
                logger.debug("Lock busy for order_id=%s, retrying in %.3fs (attempt %d/%d)", order_id, delay, attempt + 1, self.attempts)
                await asyncio.sleep(delay)
        lock_busy_total.inc()
        logger.info("Lock busy for order_id=%s after %d attempts", order_id, self.attempts)
        return None

    async def release(self, order_id: str, token: str) -> bool:
        """Delete the lock only if it still holds our token. False means it expired or changed hands."""
        released = await self._release_script(keys=[lock_key(order_id)], args=[token])
        if not released:
            lock_release_mismatch_total.inc()
            logger.warning("Lock for order_id=%s expired or was taken over before release", order_id)
            return False
        return True

    @asynccontextmanager
    async def hold(self, order_id: str) -> AsyncIterator[str]:
        """Acquire or raise LockBusyError; release on every exit path once acquired."""
        token = await self.acquire(order_id)
        if token is None:
            raise LockBusyError(order_id)
        try:
            yield token
        finally:
            try:
                await self.release(order_id, token)
            except redis.RedisError:
                # The TTL still frees the order.
                logger.exception("Failed to release lock for order_id=%s", order_id)
