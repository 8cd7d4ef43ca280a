"""Repository package: the storage interface and its two backends."""
from .base import Storage, JsonFileStore
from .memory_storage import MemoryStorage
from .sql_storage import SQLStorage
from .seed import seed_storage

__all__ = [
    'Storage',
    'JsonFileStore',
    'MemoryStorage',
    'SQLStorage',
    'seed_storage',
]
