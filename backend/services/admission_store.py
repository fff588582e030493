"""
Admission stores - sliding-window request logs

Two interchangeable backends behind AdmissionStore.hit():

- RedisAdmissionStore: one sorted set per (tier, identity), scores are
  request times in ms. A Lua script does remove-range + count + conditional
  insert in one atomic step, so concurrent API instances never over-admit.
- LocalAdmissionStore: in-process dict of deques guarded by a lock. Used for
  single-instance deployments and as the degraded fallback when Redis is
  unreachable. State is lost on restart, which only loosens limits briefly.

Keys: admission:{tier}:{identity}
"""
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass
from threading import Lock
from typing import Deque, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

KEY_PREFIX = "admission"


def window_key(tier: str, identity: str) -> str:
    return f"{KEY_PREFIX}:{tier}:{identity}"


@dataclass
class WindowState:
    """Result of one hit against a sliding window"""
    allowed: bool
    count: int          # entries in the window before this hit
    oldest: float       # epoch seconds of oldest surviving entry (or now if empty)


class AdmissionStore:
    """Interface: atomic check-and-increment of one sliding window"""

    name = "base"

    async def hit(
        self,
        key: str,
        now: float,
        window_seconds: int,
        max_requests: int,
    ) -> WindowState:
        """
        Drop entries at or before now - window, count the rest, and record
        `now` only if the count is below max_requests.
        """
        raise NotImplementedError(f"{self.__class__.__name__} must implement hit()")

    async def close(self):
        pass


class LocalAdmissionStore(AdmissionStore):
    """Thread-safe in-memory sliding window log"""

    name = "local"

    def __init__(self):
        self._logs: Dict[str, Tuple[Deque[float], int]] = {}
        self.lock = Lock()

    async def hit(self, key, now, window_seconds, max_requests):
        return self.hit_sync(key, now, window_seconds, max_requests)

    def hit_sync(self, key: str, now: float, window_seconds: int, max_requests: int) -> WindowState:
        cutoff = now - window_seconds
        with self.lock:
            entry = self._logs.get(key)
            if entry is None:
                log: Deque[float] = deque()
                self._logs[key] = (log, window_seconds)
            else:
                log = entry[0]

            while log and log[0] <= cutoff:
                log.popleft()

            count = len(log)
            allowed = count < max_requests
            if allowed:
                log.append(now)

            oldest = log[0] if log else now
            return WindowState(allowed=allowed, count=count, oldest=oldest)

    def cleanup_expired(self, now: Optional[float] = None) -> int:
        """Remove logs whose newest entry has left its window. Returns keys removed."""
        now = now if now is not None else time.time()
        removed = 0
        with self.lock:
            for key in list(self._logs):
                log, window_seconds = self._logs[key]
                if not log or log[-1] <= now - window_seconds:
                    del self._logs[key]
                    removed += 1
        return removed

    def clear(self):
        with self.lock:
            self._logs.clear()

    def __len__(self):
        return len(self._logs)


# KEYS[1] = window key
# ARGV = now_ms, window_ms, max_requests, member
SLIDING_WINDOW_LUA = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])

redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)
local count = redis.call('ZCARD', key)
local allowed = 0
if count < limit then
    redis.call('ZADD', key, now, ARGV[4])
    allowed = 1
end
redis.call('PEXPIRE', key, window)

local oldest = now
local first = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
if first[2] then
    oldest = tonumber(first[2])
end
return {allowed, count, string.format('%d', oldest)}
"""


class RedisAdmissionStore(AdmissionStore):
    """
    Shared sliding window log in Redis

    Timeouts are enforced by the caller (AdmissionCounter); connection and
    timeout errors propagate so the caller can switch to degraded mode.
    """

    name = "redis"

    def __init__(self, redis_client):
        self.redis = redis_client
        self._script = redis_client.register_script(SLIDING_WINDOW_LUA)

    async def hit(self, key, now, window_seconds, max_requests):
        now_ms = int(now * 1000)
        member = f"{now_ms}-{uuid.uuid4().hex[:8]}"
        allowed, count, oldest_ms = await self._script(
            keys=[key],
            args=[now_ms, window_seconds * 1000, max_requests, member],
        )
        return WindowState(
            allowed=bool(int(allowed)),
            count=int(count),
            oldest=int(oldest_ms) / 1000,
        )

    async def close(self):
        if self.redis:
            await self.redis.aclose()
