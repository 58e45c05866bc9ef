"""Storage for the per-run processed token set"""

from .base import StorageAdapter
from .memory import MemoryStorage

__all__ = ["MemoryStorage", "StorageAdapter"]


def get_storage_adapter(config):
    """Storage adapter for the processed set"""
    return MemoryStorage(config)
