"""Tests for the memory and Redis workflow stores."""

from __future__ import annotations

import json
import logging
from unittest.mock import patch

import pytest

from chatops_workflows.core import StoreConfig
from chatops_workflows.workflows import (
    MemoryWorkflowStore,
    RedisWorkflowStore,
    create_workflow_store,
)
from tests.mocks import FakeRedis, make_workflow

NAMESPACE = "test:workflows"


@pytest.fixture
def redis_store(fake_redis: FakeRedis) -> RedisWorkflowStore:
    config = StoreConfig(backend="redis", redis_url="redis://localhost:6379/0", namespace=NAMESPACE)
    return RedisWorkflowStore(config, client=fake_redis)


class TestMemoryWorkflowStore:
    """Tests for the volatile store."""

    def test_set_get_list_delete(self, memory_store: MemoryWorkflowStore) -> None:
        first = make_workflow("a")
        second = make_workflow("b")

        memory_store.set(first)
        memory_store.set(second)

        assert memory_store.get("a") == first
        assert [w.id for w in memory_store.list()] == ["a", "b"]

        memory_store.delete("a")
        assert memory_store.get("a") is None
        assert [w.id for w in memory_store.list()] == ["b"]

    def test_delete_unknown_is_noop(self, memory_store: MemoryWorkflowStore) -> None:
        memory_store.delete("missing")
        assert memory_store.list() == []

    def test_last_write_wins(self, memory_store: MemoryWorkflowStore) -> None:
        memory_store.set(make_workflow("a", name="old"))
        memory_store.set(make_workflow("a", name="new"))
        stored = memory_store.get("a")
        assert stored is not None
        assert stored.name == "new"

    def test_returns_copies(self, memory_store: MemoryWorkflowStore) -> None:
        """Mutating a returned workflow does not change the stored one."""
        memory_store.set(make_workflow("a", name="original"))

        fetched = memory_store.get("a")
        assert fetched is not None
        fetched.name = "mutated"

        again = memory_store.get("a")
        assert again is not None
        assert again.name == "original"


class TestRedisWorkflowStore:
    """Tests for the durable store against a fake Redis client."""

    def test_records_stored_as_json_fields(
        self, redis_store: RedisWorkflowStore, fake_redis: FakeRedis
    ) -> None:
        workflow = make_workflow("a")
        redis_store.set(workflow)

        raw = fake_redis.hashes[NAMESPACE]["a"]
        assert json.loads(raw)["createdAt"].startswith("2024-01-01")
        assert redis_store.get("a") == workflow
        assert redis_store.list() == [workflow]

    def test_delete(self, redis_store: RedisWorkflowStore, fake_redis: FakeRedis) -> None:
        redis_store.set(make_workflow("a"))
        redis_store.delete("a")
        assert redis_store.get("a") is None
        assert fake_redis.hashes[NAMESPACE] == {}

    def test_corrupt_record_skipped(
        self,
        redis_store: RedisWorkflowStore,
        fake_redis: FakeRedis,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """One bad record does not break listing the others."""
        redis_store.set(make_workflow("good"))
        fake_redis.hashes[NAMESPACE]["bad-json"] = "{not json"
        fake_redis.hashes[NAMESPACE]["bad-shape"] = json.dumps({"id": "bad-shape"})

        with caplog.at_level(logging.WARNING):
            workflows = redis_store.list()

        assert [w.id for w in workflows] == ["good"]
        assert redis_store.get("bad-json") is None
        assert "malformed workflow record" in caplog.text

    def test_undecodable_bytes_skipped(
        self, redis_store: RedisWorkflowStore, fake_redis: FakeRedis
    ) -> None:
        """Raw bytes from the client are decoded per record."""
        good = make_workflow("good")
        fake_redis.hashes[NAMESPACE] = {
            b"good": json.dumps(good.to_record()).encode("utf-8"),
            b"bad": b"\xff\xfe{",
        }

        assert redis_store.list() == [good]

    def test_unavailable_backend_degrades(self, caplog: pytest.LogCaptureFixture) -> None:
        """Reads are empty and writes are dropped when Redis is unreachable."""
        client = FakeRedis(fail=True)
        config = StoreConfig(redis_url="redis://unreachable:6379/0")

        with caplog.at_level(logging.WARNING):
            store = RedisWorkflowStore(config, client=client)

        assert store.available is False
        assert "unavailable" in caplog.text

        store.set(make_workflow("a"))
        store.delete("a")
        assert store.list() == []
        assert store.get("a") is None

    def test_recovers_when_backend_returns(self) -> None:
        client = FakeRedis(fail=True)
        store = RedisWorkflowStore(StoreConfig(redis_url="redis://x"), client=client)

        client.fail = False
        store.set(make_workflow("a"))

        assert [w.id for w in store.list()] == ["a"]

    def test_close(self, redis_store: RedisWorkflowStore, fake_redis: FakeRedis) -> None:
        redis_store.close()
        assert fake_redis.closed

    def test_requires_url_without_client(self) -> None:
        with pytest.raises(ValueError, match="redis_url"):
            RedisWorkflowStore(StoreConfig(backend="memory"))


class TestCreateWorkflowStore:
    """Tests for backend selection."""

    def test_memory_backend(self) -> None:
        store = create_workflow_store(StoreConfig(backend="memory", redis_url="redis://x"))
        assert isinstance(store, MemoryWorkflowStore)

    def test_auto_without_url_falls_back_to_memory(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.WARNING):
            store = create_workflow_store(StoreConfig())
        assert isinstance(store, MemoryWorkflowStore)
        assert "Redis not configured" in caplog.text

    def test_url_selects_redis(self, fake_redis: FakeRedis) -> None:
        with patch(
            "chatops_workflows.workflows.store.redis.Redis.from_url", return_value=fake_redis
        ) as from_url:
            store = create_workflow_store(
                StoreConfig(redis_url="redis://cache:6379/1", socket_timeout=2.0)
            )

        assert isinstance(store, RedisWorkflowStore)
        from_url.assert_called_once_with(
            "redis://cache:6379/1",
            socket_timeout=2.0,
            socket_connect_timeout=5.0,
        )
