import fnmatch
from typing import Optional

from msgspec import msgpack

from common.db.redis_db import RedisDB


class InMemoryStore(RedisDB):
    """RedisDB over a dict. Values are kept msgpack-encoded like in Redis."""

    def __init__(self, namespace: str = "test"):
        super().__init__(db=None, namespace=namespace)
        self.data: dict[str, bytes] = {}
        self.indexes: dict[str, dict[str, float]] = {}
        # set to an exception to make every call fail with it
        self.fail_with: Optional[BaseException] = None
        # key substring -> exception raised by transactions writing a matching key
        self.fail_writes: dict[str, BaseException] = {}

    def _check(self):
        if self.fail_with is not None:
            raise self.fail_with

    def _check_writes(self, keys):
        for key in keys:
            for part, error in self.fail_writes.items():
                if part in key:
                    raise error
    async def get(self, key, type):
        self._check()
        raw = self.data.get(key)
        return msgpack.decode(raw, type=type) if raw else None

    async def get_many(self, keys, type):
        self._check()
        return [msgpack.decode(self.data[k], type=type) for k in keys if k in self.data]

    async def exists(self, key):
        self._check()
        return key in self.data

    async def set(self, key, value):
        self._check()
        self.data[key] = msgpack.encode(value)

    async def insert(self, key, value):
        self._check()
        if key in self.data:
            return False
        self.data[key] = msgpack.encode(value)
        return True

    async def put(self, key, value, indexes=None):
        self._check()
        self.data[key] = msgpack.encode(value)
        for index_key, score in (indexes or {}).items():
            self.indexes.setdefault(index_key, {})[key] = score

    async def index(self, index_key):
        self._check()
        members = self.indexes.get(index_key, {})
        return sorted(members, key=members.get, reverse=True)

    async def update(self, key, type, mutate):
        self._check()
        raw = self.data.get(key)
        current = msgpack.decode(raw, type=type) if raw else None
        new_value, extra = mutate(current)
        self._check_writes(([key] if new_value is not None else []) + list(extra))
        if new_value is not None:
            self.data[key] = msgpack.encode(new_value)
        self.data.update(extra)
        return (new_value if new_value is not None else current), new_value is not None

    async def update_many(self, docs, mutate):
        self._check()
        current = {key: msgpack.decode(self.data[key], type=type) if key in self.data else None
                   for key, type in docs.items()}
        writes, extra = mutate(current)
        self._check_writes(list(writes) + list(extra))
        for key, value in writes.items():
            self.data[key] = msgpack.encode(value)
        self.data.update(extra)
        return {**current, **writes}

    async def scan(self, pattern, type):
        self._check()
        keys = sorted(k for k in self.data if fnmatch.fnmatchcase(k, self.key(pattern)))
        return await self.get_many(keys, type)

    async def ping(self):
        self._check()
        return True

    async def close(self):
        pass
