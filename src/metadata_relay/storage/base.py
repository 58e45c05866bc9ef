"""Base storage adapter"""

from abc import ABC, abstractmethod


class StorageAdapter(ABC):
    """Set of keys shared by concurrent project tasks"""

    @abstractmethod
    async def contains(self, key: str) -> bool:
        """True if key is stored"""
        pass

    @abstractmethod
    async def add(self, key: str) -> None:
        """Store key"""
        pass

    @abstractmethod
    async def size(self) -> int:
        """Number of live keys"""
        pass
