from .base import MeetStore
from .memory import MemoryStore
from .sql import SqlStore

__all__ = ["MeetStore", "MemoryStore", "SqlStore"]
