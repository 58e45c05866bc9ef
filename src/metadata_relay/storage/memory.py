"""In-memory storage adapter"""

import asyncio
from cachetools import TTLCache

from .base import StorageAdapter
from ..config import Config


class MemoryStorage(StorageAdapter):
    """In-memory TTL key set, lost when the process exits"""

    def __init__(self, config: Config):
        self.config = config
        self.cache: TTLCache[str, bool] = TTLCache(
            maxsize=config.processed_cache_size,
            ttl=config.processed_cache_ttl,
        )
        self._lock = asyncio.Lock()

    async def contains(self, key: str) -> bool:
        async with self._lock:
            return key in self.cache

    async def add(self, key: str) -> None:
        async with self._lock:
            self.cache[key] = True

    async def size(self) -> int:
        async with self._lock:
            return len(self.cache)
