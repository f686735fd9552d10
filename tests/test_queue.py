import asyncio
import os
import uuid

import pytest

from autoreply.queue import (
    InMemoryJobQueue,
    Job,
    Priority,
    PrioritySignals,
    RedisJobQueue,
    determine_priority,
    sla_target_ms,
)


def _job(message_id: str, priority: Priority = Priority.NORMAL) -> Job:
    return Job(
        tenant_id=uuid.uuid4(),
        conversation_id=uuid.uuid4(),
        inbound_message_id=uuid.uuid4(),
        customer_address="5511999990001",
        text=f"message {message_id}",
        channel_instance="shop-main",
        channel_message_id=message_id,
        priority=priority,
    )


@pytest.mark.parametrize(
    "signals, expected",
    [
        (PrioritySignals("hello there", is_first_message=True), Priority.URGENT),
        (
            PrioritySignals(
                "this is urgent, my order never arrived and I need it for tonight's trip",
                conversation_length=3,
            ),
            Priority.URGENT,
        ),
        (PrioritySignals("do you ship to Lisbon?", conversation_length=2), Priority.HIGH),
        (
            PrioritySignals(
                "I bought the boots last week and would like to know how to care for the leather",
                conversation_length=4,
            ),
            Priority.NORMAL,
        ),
        (
            PrioritySignals(
                "I bought the boots last week and would like to know how to care for the leather",
                conversation_length=25,
            ),
            Priority.LOW,
        ),
    ],
)
def test_determine_priority(signals, expected):
    assert determine_priority(signals) is expected


def test_urgency_keyword_matches_whole_words_only():
    assert PrioritySignals("please help me with sizing").has_urgency_keyword
    assert not PrioritySignals("the urgently-needed part").has_urgency_keyword


def test_sla_targets_grow_with_priority_class():
    targets = [sla_target_ms(p) for p in Priority]
    assert targets == sorted(targets)
    assert sla_target_ms(Priority.URGENT) == 1500


def test_claims_highest_class_first_and_fifo_within_class(clock):
    queue = InMemoryJobQueue(clock=clock)

    async def scenario():
        for message_id, priority in [
            ("n1", Priority.NORMAL),
            ("l1", Priority.LOW),
            ("n2", Priority.NORMAL),
            ("u1", Priority.URGENT),
            ("h1", Priority.HIGH),
        ]:
            assert await queue.enqueue(_job(message_id, priority))
        claimed = []
        while (lease := await queue.claim(timeout=0)) is not None:
            claimed.append(lease.job.job_id)
        return claimed

    assert asyncio.run(scenario()) == ["u1", "h1", "n1", "n2", "l1"]


def test_duplicate_job_id_is_rejected_while_live(clock):
    queue = InMemoryJobQueue(clock=clock)

    async def scenario():
        assert await queue.enqueue(_job("m1"))
        assert not await queue.enqueue(_job("m1"))
        lease = await queue.claim(timeout=0)
        assert not await queue.enqueue(_job("m1"))
        assert await queue.ack(lease)
        assert await queue.enqueue(_job("m1"))

    asyncio.run(scenario())


def test_expired_lease_is_redelivered_at_front(clock):
    queue = InMemoryJobQueue(visibility_timeout=10, clock=clock)

    async def scenario():
        await queue.enqueue(_job("first"))
        await queue.enqueue(_job("second"))
        stale = await queue.claim(timeout=0)
        assert stale.job.job_id == "first"
        clock.advance(11)
        again = await queue.claim(timeout=0)
        assert again.job.job_id == "first"
        assert again.attempt == 1
        assert not await queue.ack(stale)
        assert await queue.ack(again)

    asyncio.run(scenario())


def test_expired_leases_keep_their_order_within_a_class(clock):
    queue = InMemoryJobQueue(visibility_timeout=10, clock=clock)

    async def scenario():
        for message_id in ("a", "b", "c"):
            await queue.enqueue(_job(message_id))
        await queue.claim(timeout=0)
        await queue.claim(timeout=0)
        clock.advance(11)
        claimed = []
        while (lease := await queue.claim(timeout=0)) is not None:
            claimed.append(lease.job.job_id)
            await queue.ack(lease)
        return claimed

    assert asyncio.run(scenario()) == ["a", "b", "c"]


def test_retry_waits_for_delay_and_counts_attempts(clock):
    queue = InMemoryJobQueue(clock=clock)

    async def scenario():
        await queue.enqueue(_job("m1"))
        lease = await queue.claim(timeout=0)
        assert await queue.retry(lease, 5, "TimeoutError: slow")
        assert await queue.claim(timeout=0) is None
        stats = await queue.stats()
        assert stats.delayed == 1 and stats.waiting == 0
        clock.advance(5)
        retried = await queue.claim(timeout=0)
        assert retried.attempt == 2
        assert retried.queued.last_error == "TimeoutError: slow"

    asyncio.run(scenario())


def test_dead_letter_records_attempts(clock):
    queue = InMemoryJobQueue(clock=clock)

    async def scenario():
        await queue.enqueue(_job("m1", Priority.HIGH))
        lease = await queue.claim(timeout=0)
        await queue.dead_letter(lease, "gave up")
        letters = await queue.dead_letters()
        stats = await queue.stats()
        return letters, stats

    letters, stats = asyncio.run(scenario())
    assert [(d.job.job_id, d.attempts, d.error) for d in letters] == [("m1", 1, "gave up")]
    assert stats.dead == 1 and stats.in_flight == 0
    assert stats.as_dict()["is_healthy"] is True


def test_claim_waits_for_enqueue(clock):
    queue = InMemoryJobQueue(clock=clock)

    async def scenario():
        waiter = asyncio.create_task(queue.claim(timeout=2))
        await asyncio.sleep(0.01)
        await queue.enqueue(_job("late"))
        lease = await waiter
        return lease.job.job_id

    assert asyncio.run(scenario()) == "late"


def _redis_url() -> str:
    url = os.getenv("TEST_REDIS_URL")
    if not url:
        pytest.skip("TEST_REDIS_URL not set")
    return url


def test_redis_queue_priority_retry_and_dead_letter():
    url = _redis_url()
    namespace = f"autoreply-test-{uuid.uuid4().hex}"

    async def scenario():
        queue = RedisJobQueue.from_url(url, namespace=namespace, poll_interval=0.01)
        try:
            await queue.redis.ping()
        except Exception:
            await queue.close()
            pytest.skip("Redis not reachable")
        try:
            assert await queue.enqueue(_job("low", Priority.LOW))
            assert await queue.enqueue(_job("urgent", Priority.URGENT))
            assert not await queue.enqueue(_job("urgent", Priority.URGENT))

            first = await queue.claim(timeout=0)
            assert first.job.job_id == "urgent"
            assert await queue.retry(first, 0, "flaky")
            again = await queue.claim(timeout=1)
            assert again.job.job_id == "urgent" and again.attempt == 2
            assert await queue.dead_letter(again, "gave up")

            low = await queue.claim(timeout=0)
            assert low.job.job_id == "low"
            assert await queue.ack(low)

            letters = await queue.dead_letters()
            assert [(d.job.job_id, d.attempts) for d in letters] == [("urgent", 2)]
            stats = await queue.stats()
            assert stats.waiting == 0 and stats.dead == 1
        finally:
            keys = [k async for k in queue.redis.scan_iter(f"{namespace}:*")]
            if keys:
                await queue.redis.delete(*keys)
            await queue.close()

    asyncio.run(scenario())


def test_redis_queue_requeues_expired_leases_in_claim_order():
    url = _redis_url()
    namespace = f"autoreply-test-{uuid.uuid4().hex}"

    async def scenario():
        queue = RedisJobQueue.from_url(
            url, namespace=namespace, poll_interval=0.01, visibility_timeout=0.05
        )
        try:
            await queue.redis.ping()
        except Exception:
            await queue.close()
            pytest.skip("Redis not reachable")
        try:
            for message_id in ("a", "b", "c"):
                assert await queue.enqueue(_job(message_id))
            await queue.claim(timeout=0)
            await queue.claim(timeout=0)
            await asyncio.sleep(0.1)
            queue.visibility_timeout = 60
            claimed = []
            while (lease := await queue.claim(timeout=0)) is not None:
                claimed.append(lease.job.job_id)
                await queue.ack(lease)
            return claimed
        finally:
            keys = [k async for k in queue.redis.scan_iter(f"{namespace}:*")]
            if keys:
                await queue.redis.delete(*keys)
            await queue.close()

    assert asyncio.run(scenario()) == ["a", "b", "c"]
