"""Document store access (directory-backed and in-memory)."""

from .base import DocumentStore
from .directory import DirectoryStore
from .memory import MemoryStore

__all__ = ["DocumentStore", "DirectoryStore", "MemoryStore"]
