"""Tests for the in-memory document store."""

import pytest

from auditflow.store.base import BatchWrite, NotFoundError, QueryFilter, QueryOrder


class TestQueryFilter:
    def test_rejects_unknown_operator(self):
        with pytest.raises(ValueError):
            QueryFilter("field", "like", "x")


class TestMemoryDocumentStore:
    """Tests for MemoryDocumentStore."""

    @pytest.mark.asyncio
    async def test_set_get(self, store):
        await store.set("c", "1", {"a": 1})
        assert await store.get("c", "1") == {"a": 1}
        assert await store.get("c", "2") is None

    @pytest.mark.asyncio
    async def test_copies_isolate_state(self, store):
        doc = {"nested": {"n": 1}}
        await store.set("c", "1", doc)
        doc["nested"]["n"] = 2

        fetched = await store.get("c", "1")
        fetched["nested"]["n"] = 3
        assert (await store.get("c", "1"))["nested"]["n"] == 1

    @pytest.mark.asyncio
    async def test_update_merges(self, store):
        await store.set("c", "1", {"a": 1, "b": 2})
        await store.update("c", "1", {"b": 3})
        assert await store.get("c", "1") == {"a": 1, "b": 3}

    @pytest.mark.asyncio
    async def test_update_missing(self, store):
        with pytest.raises(NotFoundError) as exc_info:
            await store.update("c", "nope", {"a": 1})
        assert exc_info.value.key == "c/nope"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "flt,expected",
        [
            (QueryFilter("n", "eq", 2), ["2"]),
            (QueryFilter("n", "ne", 2), ["1", "3"]),
            (QueryFilter("n", "gt", 1), ["2", "3"]),
            (QueryFilter("n", "gte", 2), ["2", "3"]),
            (QueryFilter("n", "lt", 2), ["1"]),
            (QueryFilter("n", "lte", 2), ["1", "2"]),
            (QueryFilter("n", "in", [1, 3]), ["1", "3"]),
            (QueryFilter("tags", "contains", "x"), ["1"]),
        ],
    )
    async def test_query_operators(self, store, flt, expected):
        await store.set("c", "1", {"id": "1", "n": 1, "tags": ["x"]})
        await store.set("c", "2", {"id": "2", "n": 2, "tags": []})
        await store.set("c", "3", {"id": "3", "n": 3})

        docs = await store.query("c", filters=[flt], order_by=[QueryOrder("id")])
        assert [d["id"] for d in docs] == expected

    @pytest.mark.asyncio
    async def test_query_order_and_limit(self, store):
        for i, group in enumerate(["b", "a", "b", "a"]):
            await store.set("c", str(i), {"id": str(i), "group": group, "n": i})

        docs = await store.query(
            "c",
            order_by=[QueryOrder("group"), QueryOrder("n", ascending=False)],
            limit=3,
        )
        assert [d["id"] for d in docs] == ["3", "1", "2"]

    @pytest.mark.asyncio
    async def test_batch_atomic(self, store):
        await store.set("c", "1", {"a": 1})
        writes = [
            BatchWrite("c", "2", document={"a": 2}),
            BatchWrite("c", "missing", fields={"a": 3}),
        ]
        with pytest.raises(NotFoundError):
            await store.write_batch(writes)

        assert await store.get("c", "2") is None
        assert store.count("c") == 1

    @pytest.mark.asyncio
    async def test_batch_mixed(self, store):
        await store.set("c", "1", {"a": 1})
        await store.write_batch(
            [
                BatchWrite("c", "1", fields={"b": 2}),
                BatchWrite("tenants/t/c", "1", document={"a": 1}),
            ]
        )
        assert await store.get("c", "1") == {"a": 1, "b": 2}
        assert store.collections() == ["c", "tenants/t/c"]
