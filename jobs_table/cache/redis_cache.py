"""
Redis-based cache for lookup responses.
"""
import pickle
from typing import Any, List, Optional

import redis


class RedisCache:
    """
    A cache implementation that uses Redis as the backend.
    Values are pickled, so any lookup result can be stored.
    """

    def __init__(
        self,
        host: str = 'localhost',
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        ttl: int = 300,
        client: Optional[Any] = None,
        prefix: str = "jobs_table:",
    ):
        """
        Initialize the Redis cache.

        Args:
            host: Redis server host.
            port: Redis server port.
            db: Redis database number.
            password: Optional Redis password.
            ttl: Default time-to-live for cache entries in seconds.
            client: Existing redis client to use instead of connecting.
            prefix: Prefix applied to every key this cache writes.
        """
        self.default_ttl = ttl
        self.prefix = prefix
        if client is not None:
            self.client = client
            return

        try:
            # decode_responses=False since values are pickled bytes
            self.client = redis.StrictRedis(host=host, port=port, db=db, password=password, decode_responses=False)
            self.client.ping()
        except redis.exceptions.ConnectionError as e:
            raise ConnectionError(f"Could not connect to Redis at {host}:{port}. Please ensure Redis is running.") from e

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str) -> Optional[Any]:
        cached_value = self.client.get(self._key(key))
        if cached_value is None:
            return None
        try:
            return pickle.loads(cached_value)
        except (pickle.PickleError, EOFError):
            return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None):
        ttl_to_use = ttl if ttl is not None else self.default_ttl
        self.client.set(self._key(key), pickle.dumps(value), ex=ttl_to_use)

    def clear(self):
        """Delete every key written by this cache."""
        for key in self.client.scan_iter(f"{self.prefix}*"):
            self.client.delete(key)

    def delete(self, key: str):
        self.client.delete(self._key(key))

    def get_all_keys(self) -> List[str]:
        keys = []
        for key in self.client.scan_iter(f"{self.prefix}*"):
            if isinstance(key, bytes):
                key = key.decode('utf-8')
            keys.append(key[len(self.prefix):])
        return keys
