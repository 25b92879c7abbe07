import asyncio

import pytest

from neon_pr.orchestrator import WorkerOutcome, run_with_concurrency


@pytest.mark.asyncio
async def test_respects_bound_and_runs_each_item_once():
    active = 0
    peak = 0
    calls = []

    async def worker(item, idx):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        calls.append((idx, item))
        await asyncio.sleep(0.01)
        active -= 1

    items = list("abcdefghij")
    result = await run_with_concurrency(items, worker, 3)

    assert peak <= 3
    assert sorted(calls) == list(enumerate(items))
    assert result.total == 10
    assert result.succeeded == 10
    assert result.failed == 0


@pytest.mark.asyncio
async def test_launch_order_follows_input():
    started = []

    async def worker(item, idx):
        started.append(idx)
        await asyncio.sleep(0)

    await run_with_concurrency(range(6), worker, 2)
    assert started == sorted(started)


@pytest.mark.asyncio
async def test_failures_are_isolated():
    done = []

    async def worker(item, idx):
        if item % 3 == 0:
            raise RuntimeError(f"boom {item}")
        await asyncio.sleep(0)
        done.append(item)

    result = await run_with_concurrency(range(9), worker, 4)
    assert sorted(done) == [1, 2, 4, 5, 7, 8]
    assert result.failed == 3
    assert result.succeeded == 6


@pytest.mark.asyncio
async def test_skipped_outcomes_are_counted():
    async def worker(item, idx):
        return WorkerOutcome.SKIPPED if item == "skip" else WorkerOutcome.DONE

    result = await run_with_concurrency(["a", "skip", "b"], worker, 2)
    assert result.skipped == 1
    assert result.succeeded == 2


@pytest.mark.asyncio
async def test_empty_input_and_bad_bound():
    async def worker(item, idx):
        raise AssertionError("should not run")

    result = await run_with_concurrency([], worker, 0)
    assert result.total == 0

    seen = []

    async def record(item, idx):
        seen.append(item)

    await run_with_concurrency([1, 2], record, 0)
    assert seen == [1, 2]
