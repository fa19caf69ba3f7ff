from anu_companion.memory.events import EventEmitter
from anu_companion.memory.pruning import prune_history
from anu_companion.memory.session_store import SessionStore
from anu_companion.memory.store import MemoryStore

__all__ = [
    "EventEmitter",
    "MemoryStore",
    "SessionStore",
    "prune_history",
]
