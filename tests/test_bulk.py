"""Tests for the bulk lifecycle operator."""

import asyncio
import math

import pytest

from wchconnector.authoring.bulk import BulkLifecycleOperator
from wchconnector.core.config import ConnectorSettings, Credentials
from wchconnector.core.data_models import BulkBatch
from wchconnector.core.http_client import SessionDispatcher

from conftest import BASE_URL


def _settings(max_sockets):
    return ConnectorSettings(
        endpoint="authoring",
        base_url=BASE_URL,
        credentials=Credentials("editor", "pw"),
        max_sockets=max_sockets,
    )


@pytest.mark.asyncio
class TestBulkLifecycleOperator:
    """Test query-then-mutate bulk operations."""

    async def test_bulk_apply_respects_max_rows(self, hub):
        """Test that only the rows returned by the search are mutated."""
        hub.documents["asset"] = [{"id": f"asset:a{i}"} for i in range(5)]
        mutated = []

        async def mutate(asset_id):
            mutated.append(asset_id)
            return asset_id

        async with SessionDispatcher(_settings(10), transport=hub.transport) as dispatcher:
            outcomes = await BulkLifecycleOperator(dispatcher).bulk_apply(
                "asset", "name:*start*", 2, mutate
            )

        assert mutated == ["a0", "a1"]
        assert [o.id for o in outcomes] == ["a0", "a1"]
        assert all(o.ok for o in outcomes)

        params = hub.calls_to("GET", "/authoring/v1/search")[0][2]
        assert params["q"] == "classification:asset"
        assert params["fq"] == "name:*start*"
        assert params["fl"] == "id"
        assert params["rows"] == "2"

    @pytest.mark.parametrize("max_sockets", [1, 5, 10, 12])
    async def test_concurrency_is_fifth_of_pool(self, hub, max_sockets):
        """Test that at most ceil(max_sockets / 5) mutations run at once."""
        hub.documents["content"] = [{"id": f"content:c{i}"} for i in range(20)]
        state = {"running": 0, "peak": 0}

        async def mutate(item_id):
            state["running"] += 1
            state["peak"] = max(state["peak"], state["running"])
            await asyncio.sleep(0.005)
            state["running"] -= 1

        async with SessionDispatcher(_settings(max_sockets), transport=hub.transport) as dispatcher:
            operator = BulkLifecycleOperator(dispatcher)
            await operator.bulk_apply("content", None, 20, mutate)

        assert operator.concurrency == math.ceil(max_sockets / 5)
        assert state["peak"] <= operator.concurrency

    async def test_empty_selection(self, hub):
        """Test that an empty search never calls the mutation."""

        async def mutate(item_id):
            raise AssertionError("must not be called")

        async with SessionDispatcher(_settings(10), transport=hub.transport) as dispatcher:
            outcomes = await BulkLifecycleOperator(dispatcher).bulk_apply("asset", None, 100, mutate)

        assert outcomes == []

    async def test_failures_are_recorded(self, hub):
        """Test that a failing mutation does not stop the others."""
        hub.documents["asset"] = [{"id": "asset:a1"}, {"id": "asset:a2"}, {"id": "asset:a3"}]

        async def mutate(asset_id):
            if asset_id == "a2":
                raise RuntimeError("locked")
            return asset_id

        async with SessionDispatcher(_settings(10), transport=hub.transport) as dispatcher:
            outcomes = await BulkLifecycleOperator(dispatcher).bulk_apply("asset", None, 10, mutate)

        assert [o.ok for o in outcomes] == [True, False, True]
        assert str(outcomes[1].error) == "locked"

    async def test_apply_chunks(self, hub):
        """Test that every id of a chunk shares the chunk's outcome."""
        calls = []

        async def mutate_chunk(chunk):
            calls.append(tuple(chunk))
            if "c3" in chunk:
                raise RuntimeError("chunk failed")
            return len(chunk)

        async with SessionDispatcher(_settings(10), transport=hub.transport) as dispatcher:
            operator = BulkLifecycleOperator(dispatcher)
            outcomes = await operator.apply_chunks(
                BulkBatch("content", ("c1", "c2", "c3", "c4", "c5")), 2, mutate_chunk
            )

        assert sorted(calls) == [("c1", "c2"), ("c3", "c4"), ("c5",)]
        assert [o.id for o in outcomes] == ["c1", "c2", "c3", "c4", "c5"]
        assert [o.ok for o in outcomes] == [True, True, False, False, True]
