# tests/test_batch_runner.py
import asyncio
import pytest

from leadflow.batch_runner import BatchRunner, Failed, Skipped, Succeeded
from leadflow.errors import RunCancelled
from leadflow.rate_governor import RateGovernor


async def double_or_fail(n: int) -> int:
    if n % 3 == 0:
        raise ValueError(f"bad item {n}")
    return n * 2


# ═══════════════════════════════════════════════════════════════════
# Failure isolation and ordering
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
async def test_failures_are_isolated_per_item(clock):
    runner = BatchRunner(sleep=clock.sleep)
    items = list(range(1, 11))  # 3, 6, 9 fail

    results = await runner.run(items, double_or_fail, batch_size=4)

    assert len(results) == 10
    failed = [i for i, r in zip(items, results) if isinstance(r, Failed)]
    assert failed == [3, 6, 9]
    assert [r.value for r in results if isinstance(r, Succeeded)] == [2, 4, 8, 10, 14, 16, 20]
    assert isinstance(results[2].error, ValueError)


@pytest.mark.asyncio
async def test_results_keep_input_order_when_completion_order_differs():
    runner = BatchRunner()

    async def slow_first(n):
        await asyncio.sleep(0.01 * (5 - n))
        return n

    results = await runner.run([0, 1, 2, 3, 4], slow_first, batch_size=5)
    assert [r.value for r in results] == [0, 1, 2, 3, 4]


@pytest.mark.asyncio
async def test_empty_input_returns_empty_list(clock):
    runner = BatchRunner(sleep=clock.sleep)
    assert await runner.run([], double_or_fail, batch_size=3, inter_batch_delay=5) == []
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_invalid_batch_size():
    with pytest.raises(ValueError, match="batch_size"):
        await BatchRunner().run([1], double_or_fail, batch_size=0)


def test_outcome_ok_flags():
    assert Succeeded(1).ok is True
    assert Failed(ValueError()).ok is False
    assert Skipped().ok is False


# ═══════════════════════════════════════════════════════════════════
# Grouping and pacing
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
async def test_groups_run_concurrently_within_but_not_across():
    runner = BatchRunner()
    in_flight = 0
    peak_per_group = []
    current_peak = 0

    async def track(n):
        nonlocal in_flight, current_peak
        in_flight += 1
        current_peak = max(current_peak, in_flight)
        await asyncio.sleep(0)
        in_flight -= 1
        if in_flight == 0:
            peak_per_group.append(current_peak)
            current_peak = 0
        return n

    await runner.run(list(range(7)), track, batch_size=3)
    assert peak_per_group == [3, 3, 1]


@pytest.mark.asyncio
async def test_sleeps_between_groups_but_not_after_last(clock):
    runner = BatchRunner(sleep=clock.sleep)
    await runner.run(list(range(7)), double_or_fail, batch_size=3, inter_batch_delay=2.5)
    assert clock.sleeps == [2.5, 2.5]


@pytest.mark.asyncio
async def test_governor_is_acquired_per_item(clock):
    governor = RateGovernor(min_interval=1.0, clock=clock, sleep=clock.sleep)
    runner = BatchRunner(sleep=clock.sleep)

    await runner.run([1, 2, 4, 5], double_or_fail, batch_size=2, inter_batch_delay=10, governor=governor)

    assert governor.total_granted == 4
    # one spacing wait inside each group plus the inter-batch delay
    assert sorted(clock.sleeps) == [1.0, 1.0, 10]


@pytest.mark.asyncio
async def test_on_result_called_for_every_item(clock):
    runner = BatchRunner(sleep=clock.sleep)
    seen = []
    await runner.run([1, 2, 3], double_or_fail, batch_size=2, on_result=lambda item, outcome: seen.append((item, outcome.ok)))
    assert sorted(seen) == [(1, True), (2, True), (3, False)]


# ═══════════════════════════════════════════════════════════════════
# Cancellation and stop condition
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
async def test_cancel_before_first_group():
    event = asyncio.Event()
    event.set()
    calls = []

    async def op(n):
        calls.append(n)
        return n

    with pytest.raises(RunCancelled) as exc_info:
        await BatchRunner().run([1, 2, 3], op, batch_size=2, cancel_event=event)
    assert calls == []
    assert exc_info.value.completed == []


@pytest.mark.asyncio
async def test_cancel_lets_launched_group_finish():
    event = asyncio.Event()
    calls = []

    async def op(n):
        calls.append(n)
        if n == 1:
            event.set()
        await asyncio.sleep(0)
        return n

    with pytest.raises(RunCancelled) as exc_info:
        await BatchRunner().run([1, 2, 3, 4, 5], op, batch_size=2, cancel_event=event)

    # group [1, 2] was already launched when cancel was requested
    assert calls == [1, 2]
    assert [o.value for o in exc_info.value.completed] == [1, 2]


@pytest.mark.asyncio
async def test_stop_when_skips_remaining_groups(clock):
    launched = []

    async def op(n):
        launched.append(n)
        return n

    results = await BatchRunner(sleep=clock.sleep).run(
        [1, 2, 3, 4, 5],
        op,
        batch_size=2,
        inter_batch_delay=30,
        stop_when=lambda: len(launched) >= 2,
    )

    assert launched == [1, 2]
    assert [type(r) for r in results] == [Succeeded, Succeeded, Skipped, Skipped, Skipped]
    # no pointless wait before a group that will never start
    assert clock.sleeps == []
