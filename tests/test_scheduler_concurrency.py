import asyncio

import pytest

from admission_scheduler import ModelQuotaConfig, QuotaDimension

RPM = QuotaDimension.REQUESTS_PER_MINUTE


@pytest.mark.asyncio
async def test_concurrent_acquires_never_exceed_request_capacity(make_scheduler) -> None:
    scheduler = make_scheduler(
        ModelQuotaConfig("m", 3, 1_000_000, 1000), retry_backoff_seconds=0.05
    )

    tasks = [asyncio.create_task(scheduler.acquire(["m"], 100)) for _ in range(8)]
    done, pending = await asyncio.wait(tasks, timeout=0.3)

    assert len(done) == 3
    assert len(pending) == 5
    assert all(task.result().model_id == "m" for task in done)
    snapshot = (await scheduler.get_quota_snapshot())["m"]
    assert snapshot[RPM].available == 0

    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)

    # Abandoned waits debit nothing
    snapshot = (await scheduler.get_quota_snapshot())["m"]
    assert snapshot[RPM].available == 0
    assert snapshot[QuotaDimension.REQUESTS_PER_DAY].available == 997


@pytest.mark.asyncio
async def test_blocked_acquire_resumes_after_refill_tick(make_scheduler, clock) -> None:
    scheduler = make_scheduler(ModelQuotaConfig("m", 1, 100_000, 1000))

    first = await asyncio.wait_for(scheduler.acquire(["m"], 100), timeout=0.1)
    assert first.model_id == "m"

    second = asyncio.create_task(scheduler.acquire(["m"], 100))
    await asyncio.sleep(1.0)
    assert not second.done()

    clock.advance(60)
    await scheduler.refill()

    result = await asyncio.wait_for(second, timeout=0.6)
    assert result.model_id == "m"
    assert result.tokens_reserved == 1500


@pytest.mark.asyncio
async def test_refill_wakes_waiters_before_backoff_expires(make_scheduler, clock) -> None:
    scheduler = make_scheduler(
        ModelQuotaConfig("m", 1, 100_000, 1000), retry_backoff_seconds=30
    )
    await scheduler.acquire(["m"], 0)

    waiter = asyncio.create_task(scheduler.acquire(["m"], 0))
    await asyncio.sleep(0.1)
    assert not waiter.done()

    clock.advance(60)
    await scheduler.refill()

    assert (await asyncio.wait_for(waiter, timeout=1.0)).model_id == "m"


@pytest.mark.asyncio
async def test_waiter_falls_back_to_any_candidate_that_recovers(
    make_scheduler, clock
) -> None:
    scheduler = make_scheduler(
        ModelQuotaConfig("slow", 1, 100_000, 1000),
        ModelQuotaConfig("fast", 60, 100_000, 1000),
        retry_backoff_seconds=0.05,
    )
    await scheduler.acquire(["slow"], 0)
    for _ in range(60):
        await scheduler.acquire(["fast"], 0)

    waiter = asyncio.create_task(scheduler.acquire(["slow", "fast"], 0))
    await asyncio.sleep(0.1)
    assert not waiter.done()

    # 1 second restores one request on "fast" but only 1/60 on "slow"
    clock.advance(1)

    assert (await asyncio.wait_for(waiter, timeout=1.0)).model_id == "fast"


@pytest.mark.asyncio
async def test_admissions_track_refilled_capacity(make_scheduler, clock) -> None:
    scheduler = make_scheduler(
        ModelQuotaConfig("m", 5, 1_000_000, 1000), retry_backoff_seconds=0.01
    )

    tasks = [asyncio.create_task(scheduler.acquire(["m"], 0)) for _ in range(12)]
    await asyncio.sleep(0.05)
    assert sum(task.done() for task in tasks) == 5

    for step in range(1, 8):
        # 12 seconds at 5 requests/minute restores exactly one request
        clock.advance(12)
        await scheduler.refill()
        await asyncio.sleep(0.05)

        snapshot = (await scheduler.get_quota_snapshot())["m"]
        for bucket in snapshot.values():
            assert 0 <= bucket.available <= bucket.capacity
        assert sum(task.done() for task in tasks) == min(12, 5 + step)

    await asyncio.gather(*tasks)
