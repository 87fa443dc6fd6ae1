"""Tests for the async combinators."""

import asyncio

import pytest

from wchconnector.core.concurrency import Outcome, parallel_map, sequential_fold


@pytest.mark.asyncio
class TestParallelMap:
    """Test bounded concurrent mapping."""

    async def test_order_preserved(self):
        """Test that outcomes follow input order, not completion order."""

        async def slow_echo(value):
            await asyncio.sleep(0.01 * (5 - value))
            return value * 10

        outcomes = await parallel_map(slow_echo, [1, 2, 3, 4], limit=4)

        assert [o.item for o in outcomes] == [1, 2, 3, 4]
        assert [o.value for o in outcomes] == [10, 20, 30, 40]

    async def test_limit_respected(self):
        """Test that no more than limit calls run at once."""
        state = {"running": 0, "peak": 0}

        async def tracked(value):
            state["running"] += 1
            state["peak"] = max(state["peak"], state["running"])
            await asyncio.sleep(0.01)
            state["running"] -= 1
            return value

        await parallel_map(tracked, list(range(12)), limit=3)

        assert state["peak"] == 3

    async def test_failure_does_not_stop_others(self):
        """Test that a failing item is settled with its error."""

        async def maybe_fail(value):
            if value == 2:
                raise RuntimeError("boom")
            return value

        outcomes = await parallel_map(maybe_fail, [1, 2, 3], limit=2)

        assert [o.ok for o in outcomes] == [True, False, True]
        assert isinstance(outcomes[1].error, RuntimeError)
        assert outcomes[2].value == 3

    async def test_empty_items(self):
        """Test that no items means no calls."""

        async def never(value):
            raise AssertionError("must not be called")

        assert await parallel_map(never, [], limit=1) == []

    async def test_invalid_limit(self):
        """Test that limit must be positive."""

        async def echo(value):
            return value

        with pytest.raises(ValueError):
            await parallel_map(echo, [1], limit=0)


@pytest.mark.asyncio
class TestSequentialFold:
    """Test sequential folding."""

    async def test_steps_run_in_order(self):
        """Test that each step sees the previous accumulator."""
        seen = []

        async def step(acc, item):
            seen.append(item)
            await asyncio.sleep(0)
            return acc + [item * 2]

        result = await sequential_fold(step, [1, 2, 3], [])

        assert result == [2, 4, 6]
        assert seen == [1, 2, 3]

    async def test_error_stops_fold(self):
        """Test that a failing step propagates."""

        async def step(acc, item):
            if item == 2:
                raise ValueError("stop")
            return acc + item

        with pytest.raises(ValueError):
            await sequential_fold(step, [1, 2, 3], 0)


class TestOutcome:
    """Test the settled outcome."""

    def test_ok(self):
        """Test the ok flag."""
        assert Outcome("a", value=1).ok
        assert not Outcome("a", error=RuntimeError()).ok
