import asyncio

import pytest

from admission_scheduler import ModelQuotaConfig, QuotaDimension

RPM = QuotaDimension.REQUESTS_PER_MINUTE
TPM = QuotaDimension.TOKENS_PER_MINUTE
RPD = QuotaDimension.REQUESTS_PER_DAY


async def available(scheduler, model_id: str, dimension: QuotaDimension) -> float:
    return (await scheduler.get_quota_snapshot())[model_id][dimension].available


@pytest.mark.asyncio
async def test_refill_is_proportional_to_elapsed_time(make_scheduler, clock) -> None:
    scheduler = make_scheduler(ModelQuotaConfig("m", 10, 30_000, 1000))
    for _ in range(10):
        await scheduler.acquire(["m"], 0)
    assert await available(scheduler, "m", RPM) == 0
    assert await available(scheduler, "m", TPM) == 15_000

    clock.advance(30)
    await scheduler.refill()

    assert await available(scheduler, "m", RPM) == pytest.approx(5)
    assert await available(scheduler, "m", TPM) == pytest.approx(30_000)


@pytest.mark.asyncio
async def test_refill_is_clamped_to_capacity(make_scheduler, clock) -> None:
    scheduler = make_scheduler(ModelQuotaConfig("m", 10, 30_000, 1000))
    await scheduler.acquire(["m"], 0)

    clock.advance(600)
    await scheduler.refill()

    snapshot = (await scheduler.get_quota_snapshot())["m"]
    assert snapshot[RPM].available == 10
    assert snapshot[TPM].available == 30_000
    assert snapshot[RPD].available == 1000


@pytest.mark.asyncio
async def test_refill_without_elapsed_time_adds_nothing(make_scheduler) -> None:
    scheduler = make_scheduler(ModelQuotaConfig("m", 10, 30_000, 1000))
    await scheduler.acquire(["m"], 0)

    await scheduler.refill()
    await scheduler.refill()

    assert await available(scheduler, "m", RPM) == 9


@pytest.mark.asyncio
async def test_daily_bucket_refills_continuously_between_boundaries(
    make_scheduler, clock
) -> None:
    scheduler = make_scheduler(ModelQuotaConfig("m", 100, 1_000_000, 1440))
    await scheduler.acquire(["m"], 0)

    # One hour later, same UTC day: 1440 / 1440 * 60 = 60 credited, clamped
    clock.advance(3600)
    await scheduler.refill()

    assert await available(scheduler, "m", RPD) == 1440


@pytest.mark.asyncio
async def test_daily_bucket_resets_exactly_at_utc_boundary(make_scheduler, clock) -> None:
    scheduler = make_scheduler(ModelQuotaConfig("m", 100, 1_000_000, 2))
    await scheduler.acquire(["m"], 0)
    await scheduler.acquire(["m"], 0)
    assert await available(scheduler, "m", RPD) == 0

    # Still the same UTC day: only the continuous refill applies
    clock.advance(3600)
    await scheduler.refill()
    partial = await available(scheduler, "m", RPD)
    assert 0 < partial < 2

    # Crosses midnight UTC (clock started at 12:00)
    clock.advance(12 * 3600)
    await scheduler.refill()

    assert await available(scheduler, "m", RPD) == 2


@pytest.mark.asyncio
async def test_daily_reset_ignores_refill_rate(make_scheduler, clock) -> None:
    scheduler = make_scheduler(ModelQuotaConfig("m", 1000, 2_000_000, 1440))
    for _ in range(1000):
        await scheduler.acquire(["m"], 0)
    assert await available(scheduler, "m", RPD) == 440

    # Just past midnight: 12h01m of continuous refill only brings back 721
    clock.advance(12 * 3600 + 60)
    await scheduler.refill()

    assert await available(scheduler, "m", RPD) == 1440


@pytest.mark.asyncio
async def test_explicit_daily_reset(make_scheduler) -> None:
    scheduler = make_scheduler(
        ModelQuotaConfig("a", 100, 1_000_000, 5),
        ModelQuotaConfig("b", 100, 1_000_000, 5),
    )
    await scheduler.acquire(["a"], 0)
    await scheduler.acquire(["b"], 0)

    await scheduler.reset_daily()

    assert await available(scheduler, "a", RPD) == 5
    assert await available(scheduler, "b", RPD) == 5
    # Minute buckets are untouched by the daily reset
    assert await available(scheduler, "a", RPM) == 99


@pytest.mark.asyncio
async def test_background_refill_loop(make_scheduler, clock) -> None:
    scheduler = make_scheduler(
        ModelQuotaConfig("m", 1, 100_000, 1000), refill_interval_seconds=0.05
    )
    await scheduler.acquire(["m"], 0)
    assert await available(scheduler, "m", RPM) == 0

    clock.advance(60)
    async with scheduler:
        assert scheduler.running
        await asyncio.sleep(0.2)

    assert not scheduler.running
    assert await available(scheduler, "m", RPM) == 1


@pytest.mark.asyncio
async def test_start_and_stop_are_idempotent(make_scheduler) -> None:
    scheduler = make_scheduler(ModelQuotaConfig("m", 1, 100_000, 1000))

    await scheduler.stop()
    await scheduler.start()
    await scheduler.start()
    assert scheduler.running
    await scheduler.stop()
    await scheduler.stop()

    assert not scheduler.running
