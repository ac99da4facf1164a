import logging
from typing import Callable, Optional, TypeVar

from msgspec import msgpack, Struct
from redis.asyncio import Redis, Sentinel
from redis.exceptions import WatchError

from common.config import ServiceConfig
from common.db.util import retry_db_call

S = TypeVar("S", bound=Struct)

# mutate(current) -> (new value or None to leave the key as is, extra raw writes)
Mutation = Callable[[Optional[S]], tuple[Optional[S], dict[str, bytes]]]
# mutate(current by key) -> (documents to write by key, extra raw writes)
MultiMutation = Callable[[dict[str, Optional[Struct]]], tuple[dict[str, Struct], dict[str, bytes]]]


class RedisDB:
    """Document store over Redis: msgpack-encoded structs, one key per document.

    Updates are atomic through WATCH/MULTI, over one document or several; extra
    keys written alongside (ledger records, for one) share the transaction.
    """

    def __init__(self, db: Redis, namespace: str):
        self.db = db
        self.namespace = namespace

    @classmethod
    def from_config(cls, config: ServiceConfig) -> "RedisDB":
        if config.sentinel_hosts:
            sentinel = Sentinel(config.sentinel_hosts, password=config.redis_password)
            db = sentinel.master_for(
                service_name=config.redis_service_name,
                password=config.redis_password,
                db=config.redis_db,
            )
        else:
            db = Redis(
                host=config.redis_host,
                port=config.redis_port,
                password=config.redis_password,
                db=config.redis_db,
            )
        return cls(db, config.service_name)

    def key(self, *parts: str) -> str:
        return ":".join((self.namespace, *parts))

    async def get(self, key: str, type: type[S]) -> Optional[S]:
        entry: Optional[bytes] = await retry_db_call(self.db.get, key)
        return msgpack.decode(entry, type=type) if entry else None

    async def get_many(self, keys: list[str], type: type[S]) -> list[S]:
        if not keys:
            return []
        entries = await retry_db_call(self.db.mget, keys)
        return [msgpack.decode(entry, type=type) for entry in entries if entry]

    async def exists(self, key: str) -> bool:
        return bool(await retry_db_call(self.db.exists, key))

    async def set(self, key: str, value: Struct):
        await self.db.set(key, msgpack.encode(value))

    async def insert(self, key: str, value: Struct) -> bool:
        """Write-once: False when the key is already present."""
        return bool(await self.db.set(key, msgpack.encode(value), nx=True))

    async def put(self, key: str, value: Struct, indexes: Optional[dict[str, float]] = None):
        async with self.db.pipeline(transaction=True) as pipe:
            pipe.set(key, msgpack.encode(value))
            for index_key, score in (indexes or {}).items():
                pipe.zadd(index_key, {key: score})
            await pipe.execute()

    async def index(self, index_key: str) -> list[str]:
        members = await retry_db_call(self.db.zrevrange, index_key, 0, -1)
        return [m.decode("utf-8") if isinstance(m, bytes) else m for m in members]

    async def update(self, key: str, type: type[S], mutate: Mutation) -> tuple[Optional[S], bool]:
        """Optimistically apply ``mutate`` to one document.

        Returns the resulting document and whether it was written. Exceptions
        raised by ``mutate`` abort the transaction and propagate.
        """
        while True:
            try:
                async with self.db.pipeline() as pipe:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    current = msgpack.decode(raw, type=type) if raw else None
                    new_value, extra = mutate(current)
                    if new_value is None and not extra:
                        await pipe.unwatch()
                        return current, False
                    pipe.multi()
                    if new_value is not None:
                        pipe.set(key, msgpack.encode(new_value))
                    for extra_key, extra_value in extra.items():
                        pipe.set(extra_key, extra_value)
                    await pipe.execute()
                return (new_value if new_value is not None else current), new_value is not None
            except WatchError:
                # If a watched key has been modified, the transaction is aborted
                logging.warning(f"Concurrency conflict detected on {key}. Retrying.")
                continue

    async def update_many(self, docs: dict[str, type], mutate: MultiMutation) -> dict[str, Optional[Struct]]:
        """Optimistically apply ``mutate`` to several documents in one transaction.

        ``docs`` maps each watched key to its document type. ``mutate`` gets the
        current documents by key and returns the documents to write and extra raw
        writes. Returns the documents as they stand after the transaction.
        """
        keys = list(docs)
        while True:
            try:
                async with self.db.pipeline() as pipe:
                    await pipe.watch(*keys)
                    raws = await pipe.mget(keys)
                    current = {key: msgpack.decode(raw, type=docs[key]) if raw else None
                               for key, raw in zip(keys, raws)}
                    writes, extra = mutate(current)
                    if not writes and not extra:
                        await pipe.unwatch()
                        return current
                    pipe.multi()
                    for key, value in writes.items():
                        pipe.set(key, msgpack.encode(value))
                    for extra_key, extra_value in extra.items():
                        pipe.set(extra_key, extra_value)
                    await pipe.execute()
                return {**current, **writes}
            except WatchError:
                logging.warning(f"Concurrency conflict detected on {', '.join(keys)}. Retrying.")
                continue

    async def scan(self, pattern: str, type: type[S]) -> list[S]:
        keys = [k async for k in self.db.scan_iter(match=self.key(pattern))]
        return await self.get_many(sorted(keys), type)

    async def ping(self) -> bool:
        return bool(await self.db.ping())

    async def close(self):
        await self.db.aclose()
