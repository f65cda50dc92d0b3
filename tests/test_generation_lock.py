import asyncio

from utils.generation_lock import GenerationLock


async def test_second_run_attaches_to_in_flight_job():
    lock = GenerationLock("test")
    gate = asyncio.Event()
    calls = []

    async def job():
        calls.append(1)
        await gate.wait()

    first = lock.run(job)
    second = lock.run(job)
    assert first is second
    assert lock.busy

    gate.set()
    await first
    assert calls == [1]
    assert not lock.busy
    assert lock.task is None


async def test_lock_is_reusable_after_completion():
    lock = GenerationLock("test")
    calls = []

    async def job():
        calls.append(1)

    await lock.run(job)
    await lock.run(job)
    assert calls == [1, 1]


async def test_failing_job_is_logged_not_raised(caplog):
    lock = GenerationLock("boom")

    async def job():
        raise RuntimeError("upstream exploded")

    await lock.run(job)
    assert not lock.busy
    assert "Background job 'boom' failed" in caplog.text


async def test_detach_lets_a_new_job_start():
    lock = GenerationLock("test")
    gate = asyncio.Event()

    async def slow():
        await gate.wait()

    async def fast():
        return None

    old = lock.run(slow)
    lock.detach()
    new = lock.run(fast)
    assert new is not old
    await new

    gate.set()
    await old
    assert lock.task is None


async def test_detached_job_is_held_until_it_finishes():
    lock = GenerationLock("test")
    gate = asyncio.Event()

    async def slow():
        await gate.wait()

    old = lock.run(slow)
    lock.detach()
    assert lock.task is None
    assert old in lock._detached

    gate.set()
    await old
    await asyncio.sleep(0)
    assert old not in lock._detached
