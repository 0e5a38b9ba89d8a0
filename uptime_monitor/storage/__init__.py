"""存储模块"""

from .base import MonitorStore
from .memory_store import MemoryStore
from .mongo_store import MongoStore

__all__ = ['MonitorStore', 'MemoryStore', 'MongoStore']
