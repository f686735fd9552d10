import asyncio
import logging

from autoreply.side_effects import SideEffectRunner


def test_failures_are_logged_and_never_raised(caplog):
    runner = SideEffectRunner()

    async def ok():
        return "done"

    async def broken():
        raise ConnectionError("redis went away")

    async def scenario():
        runner.submit(ok(), name="usage_increment")
        runner.submit(broken(), name="typing_indicator", context={"job_id": "wamid-1"})
        assert runner.pending == 2
        await runner.drain()

    with caplog.at_level(logging.WARNING, logger="autoreply.side_effects"):
        asyncio.run(scenario())

    assert runner.completed == 1
    assert runner.failures == 1
    assert runner.pending == 0
    [record] = caplog.records
    assert "typing_indicator failed: redis went away" in record.getMessage()
    assert record.job_id == "wamid-1"


def test_drain_cancels_work_past_the_timeout():
    runner = SideEffectRunner()

    async def scenario():
        runner.submit(asyncio.sleep(10), name="slow")
        await runner.drain(timeout=0.01)

    asyncio.run(scenario())

    assert runner.pending == 0
    assert runner.completed == 0
    assert runner.failures == 0
