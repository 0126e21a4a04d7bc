"""Note store protocol and adapters."""

from bear_core.storage.base import NoteStore
from bear_core.storage.memory_store import InMemoryNoteStore
from bear_core.storage.sql_store import SqlNoteStore

__all__ = ["NoteStore", "InMemoryNoteStore", "SqlNoteStore"]
