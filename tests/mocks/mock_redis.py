"""In-memory stand-in for the subset of redis-py used by the workflow store."""

from __future__ import annotations

import redis


class FakeRedis:
    """Hash-only Redis double; set ``fail`` to simulate an unreachable server."""

    def __init__(self, fail: bool = False) -> None:
        self.hashes: dict[str, dict[str, str]] = {}
        self.fail = fail
        self.closed = False

    def _check(self) -> None:
        if self.fail:
            raise redis.ConnectionError("Connection refused")

    def ping(self) -> bool:
        self._check()
        return True

    def hgetall(self, name: str) -> dict[str, str]:
        self._check()
        return dict(self.hashes.get(name, {}))

    def hget(self, name: str, key: str) -> str | None:
        self._check()
        return self.hashes.get(name, {}).get(key)

    def hset(self, name: str, key: str, value: str) -> int:
        self._check()
        bucket = self.hashes.setdefault(name, {})
        created = key not in bucket
        bucket[key] = value
        return int(created)

    def hdel(self, name: str, *keys: str) -> int:
        self._check()
        bucket = self.hashes.get(name, {})
        return sum(1 for key in keys if bucket.pop(key, None) is not None)

    def close(self) -> None:
        self.closed = True
