"""Redis-backed document persistence for analysis records."""

import json
import logging
from typing import Any, Protocol

from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

COLLECTION_PREFIX = "social_"


class DocumentStore(Protocol):
    """save/query persistence consumed by the workflow and aggregator."""

    async def save(self, collection: str, records: dict | list[dict]) -> bool: ...

    async def query(
        self,
        collection: str,
        filter: dict | None = None,
        limit: int | None = None,
    ) -> list[dict]: ...


def collection_name(collection: str) -> str:
    """Collections live under the social_ namespace."""
    if collection.startswith(COLLECTION_PREFIX):
        return collection
    return f"{COLLECTION_PREFIX}{collection}"


def _lookup(document: dict, path: str) -> Any:
    value: Any = document
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return None
        value = value[part]
    return value


def matches(document: dict, filter: dict | None) -> bool:
    """Equality match on (dotted) field paths."""
    if not filter:
        return True
    return all(_lookup(document, path) == expected for path, expected in filter.items())


class RedisDocumentStore:
    """Stores JSON documents in per-collection Redis lists.

    Failures are logged and reported through return values so that a
    storage outage never aborts an analysis.
    """

    def __init__(self, redis_client: Redis):
        if redis_client is None:
            raise ValueError("redis_client is required")
        self._redis = redis_client

    def _collection_key(self, collection: str) -> str:
        return f"collection:{collection_name(collection)}"

    async def save(self, collection: str, records: dict | list[dict]) -> bool:
        """Append one or many documents. Returns False on failure."""
        if not collection:
            raise ValueError("collection is required")

        documents = records if isinstance(records, list) else [records]
        if not documents:
            return True

        try:
            payloads = [json.dumps(doc, default=str) for doc in documents]
            await self._redis.rpush(self._collection_key(collection), *payloads)
        except (RedisError, TypeError, ValueError) as e:
            logger.error(f"Error saving to collection {collection}: {e}")
            return False

        logger.debug(f"Saved {len(documents)} documents to {collection_name(collection)}")
        return True

    async def query(
        self,
        collection: str,
        filter: dict | None = None,
        limit: int | None = None,
    ) -> list[dict]:
        """Documents matching filter in insertion order. [] on failure."""
        if not collection:
            raise ValueError("collection is required")
        if limit is not None and limit < 0:
            raise ValueError("limit must be non-negative")

        try:
            items = await self._redis.lrange(self._collection_key(collection), 0, -1)
        except RedisError as e:
            logger.error(f"Error querying collection {collection}: {e}")
            return []

        results = []
        for item in items:
            if isinstance(item, bytes):
                item = item.decode("utf-8")
            try:
                document = json.loads(item)
            except json.JSONDecodeError:
                logger.warning(f"Skipping corrupt document in {collection}")
                continue
            if matches(document, filter):
                results.append(document)
                if limit is not None and len(results) >= limit:
                    break
        return results

    async def count(self, collection: str) -> int:
        try:
            return await self._redis.llen(self._collection_key(collection))
        except RedisError as e:
            logger.error(f"Error counting collection {collection}: {e}")
            return 0
