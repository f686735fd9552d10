"""Durable priority queue on Redis.

Layout under the ``namespace`` prefix:

``{ns}:ready``     ZSET of job ids scored ``priority * 1e13 + seq``
``{ns}:jobs``      HASH job id -> JSON encoded :class:`QueuedJob`
``{ns}:inflight``  ZSET of claimed job ids scored by lease deadline (ms)
``{ns}:leases``    HASH job id -> lease token
``{ns}:delayed``   ZSET of job ids waiting for a retry, scored by ready time (ms)
``{ns}:dead``      LIST of JSON encoded :class:`DeadLetter`
``{ns}:seq``       counter giving FIFO order within a class

Every state change runs inside a Lua script so claims and requeues are atomic
across worker processes.
"""

from __future__ import annotations

import asyncio
import json
import time
from uuid import uuid4

import redis.asyncio as redis

from .jobs import DeadLetter, Job, Lease, Priority, QueuedJob, QueueStats

_CLASS_WIDTH = 10**13

_ENQUEUE = """
if redis.call('HEXISTS', KEYS[2], ARGV[1]) == 1 then
  return 0
end
redis.call('HSET', KEYS[2], ARGV[1], ARGV[2])
local seq = redis.call('INCR', KEYS[3])
redis.call('ZADD', KEYS[1], string.format('%.0f', tonumber(ARGV[3]) * tonumber(ARGV[4]) + seq), ARGV[1])
return 1
"""

# KEYS: ready, jobs, inflight, leases, delayed, seq
# ARGV: now_ms, visibility_ms, token, class_width
_CLAIM = """
local now = tonumber(ARGV[1])
local width = tonumber(ARGV[4])
local expired = redis.call('ZRANGEBYSCORE', KEYS[3], '-inf', now)
for i = #expired, 1, -1 do
  local id = expired[i]
  redis.call('ZREM', KEYS[3], id)
  redis.call('HDEL', KEYS[4], id)
  local raw = redis.call('HGET', KEYS[2], id)
  if raw then
    local entry = cjson.decode(raw)
    local seq = redis.call('INCR', KEYS[6])
    redis.call('ZADD', KEYS[1], string.format('%.0f', tonumber(entry['priority']) * width - seq), id)
  end
end
local due = redis.call('ZRANGEBYSCORE', KEYS[5], '-inf', now)
for _, id in ipairs(due) do
  redis.call('ZREM', KEYS[5], id)
  local raw = redis.call('HGET', KEYS[2], id)
  if raw then
    local entry = cjson.decode(raw)
    local seq = redis.call('INCR', KEYS[6])
    redis.call('ZADD', KEYS[1], string.format('%.0f', tonumber(entry['priority']) * width + seq), id)
  end
end
local head = redis.call('ZRANGE', KEYS[1], 0, 0)
if #head == 0 then
  return nil
end
local id = head[1]
redis.call('ZREM', KEYS[1], id)
redis.call('ZADD', KEYS[3], now + tonumber(ARGV[2]), id)
redis.call('HSET', KEYS[4], id, ARGV[3])
return {id, redis.call('HGET', KEYS[2], id)}
"""

# KEYS: inflight, leases, jobs ; ARGV: id, token
_ACK = """
if redis.call('HGET', KEYS[2], ARGV[1]) ~= ARGV[2] then
  return 0
end
redis.call('ZREM', KEYS[1], ARGV[1])
redis.call('HDEL', KEYS[2], ARGV[1])
redis.call('HDEL', KEYS[3], ARGV[1])
return 1
"""

# KEYS: inflight, leases, jobs, delayed ; ARGV: id, token, raw, ready_ms
_RETRY = """
if redis.call('HGET', KEYS[2], ARGV[1]) ~= ARGV[2] then
  return 0
end
redis.call('ZREM', KEYS[1], ARGV[1])
redis.call('HDEL', KEYS[2], ARGV[1])
redis.call('HSET', KEYS[3], ARGV[1], ARGV[3])
redis.call('ZADD', KEYS[4], ARGV[4], ARGV[1])
return 1
"""

# KEYS: inflight, leases, jobs, dead ; ARGV: id, token, dead_letter_json
_DEAD = """
if redis.call('HGET', KEYS[2], ARGV[1]) ~= ARGV[2] then
  return 0
end
redis.call('ZREM', KEYS[1], ARGV[1])
redis.call('HDEL', KEYS[2], ARGV[1])
redis.call('HDEL', KEYS[3], ARGV[1])
redis.call('RPUSH', KEYS[4], ARGV[3])
return 1
"""


def _now_ms() -> int:
    return int(time.time() * 1000)


class RedisJobQueue:
    """Redis implementation of :class:`~autoreply.queue.JobQueue`."""

    def __init__(
        self,
        client: redis.Redis,
        namespace: str = "autoreply",
        visibility_timeout: float = 60.0,
        poll_interval: float = 0.2,
    ) -> None:
        self.redis = client
        self.namespace = namespace
        self.visibility_timeout = visibility_timeout
        self.poll_interval = poll_interval
        self._enqueue = client.register_script(_ENQUEUE)
        self._claim = client.register_script(_CLAIM)
        self._ack = client.register_script(_ACK)
        self._retry = client.register_script(_RETRY)
        self._dead = client.register_script(_DEAD)

    @classmethod
    def from_url(cls, url: str, **kwargs) -> RedisJobQueue:
        return cls(redis.from_url(url, decode_responses=True), **kwargs)

    def _key(self, name: str) -> str:
        return f"{self.namespace}:{name}"

    async def enqueue(self, job: Job) -> bool:
        raw = json.dumps(QueuedJob(job=job).to_dict())
        added = await self._enqueue(
            keys=[self._key("ready"), self._key("jobs"), self._key("seq")],
            args=[job.job_id, raw, int(job.priority), _CLASS_WIDTH],
        )
        return bool(added)

    async def claim_nowait(self) -> Lease | None:
        token = uuid4().hex
        now = _now_ms()
        visibility_ms = int(self.visibility_timeout * 1000)
        result = await self._claim(
            keys=[
                self._key("ready"),
                self._key("jobs"),
                self._key("inflight"),
                self._key("leases"),
                self._key("delayed"),
                self._key("seq"),
            ],
            args=[now, visibility_ms, token, _CLASS_WIDTH],
        )
        if not result:
            return None
        _, raw = result
        queued = QueuedJob.from_dict(json.loads(raw))
        return Lease(
            queued=queued, token=token, deadline=(now + visibility_ms) / 1000.0
        )

    async def claim(self, timeout: float | None = None) -> Lease | None:
        loop = asyncio.get_running_loop()
        give_up = None if timeout is None else loop.time() + timeout
        while True:
            lease = await self.claim_nowait()
            if lease is not None:
                return lease
            if give_up is not None and loop.time() >= give_up:
                return None
            await asyncio.sleep(self.poll_interval)

    async def ack(self, lease: Lease) -> bool:
        done = await self._ack(
            keys=[self._key("inflight"), self._key("leases"), self._key("jobs")],
            args=[lease.job.job_id, lease.token],
        )
        return bool(done)

    async def retry(self, lease: Lease, delay: float, error: str | None = None) -> bool:
        queued = lease.queued.next_attempt(error)
        done = await self._retry(
            keys=[
                self._key("inflight"),
                self._key("leases"),
                self._key("jobs"),
                self._key("delayed"),
            ],
            args=[
                lease.job.job_id,
                lease.token,
                json.dumps(queued.to_dict()),
                _now_ms() + int(max(0.0, delay) * 1000),
            ],
        )
        return bool(done)

    async def dead_letter(self, lease: Lease, error: str) -> bool:
        letter = DeadLetter(
            job=lease.job, attempts=lease.attempt, error=error, failed_at=time.time()
        )
        done = await self._dead(
            keys=[
                self._key("inflight"),
                self._key("leases"),
                self._key("jobs"),
                self._key("dead"),
            ],
            args=[lease.job.job_id, lease.token, json.dumps(letter.to_dict())],
        )
        return bool(done)

    async def dead_letters(self) -> list[DeadLetter]:
        raw_items = await self.redis.lrange(self._key("dead"), 0, -1)
        return [DeadLetter.from_dict(json.loads(item)) for item in raw_items]

    async def stats(self) -> QueueStats:
        ready = self._key("ready")
        half = _CLASS_WIDTH // 2
        async with self.redis.pipeline(transaction=False) as pipe:
            for priority in Priority:
                # front requeues score just below the class base, FIFO just above
                base = int(priority) * _CLASS_WIDTH
                pipe.zcount(ready, base - half, base + half - 1)
            pipe.zcard(self._key("delayed"))
            pipe.zcard(self._key("inflight"))
            pipe.llen(self._key("dead"))
            results = await pipe.execute()
        counts = results[: len(Priority)]
        delayed, in_flight, dead = results[len(Priority):]
        by_priority = {p.name: int(c) for p, c in zip(Priority, counts)}
        return QueueStats(
            waiting=sum(by_priority.values()),
            delayed=int(delayed),
            in_flight=int(in_flight),
            dead=int(dead),
            waiting_by_priority=by_priority,
        )

    async def close(self) -> None:
        await self.redis.aclose()
