import shutil
import unittest
from pathlib import Path
from uuid import uuid4

from anu_companion.memory import EventEmitter, MemoryStore, SessionStore


PROJECT_ROOT = Path(__file__).resolve().parents[2]


class MemoryStoreTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp_dir = PROJECT_ROOT / ".test-artifacts" / f"{self.__class__.__name__.lower()}-{uuid4().hex}"
        self._tmp_dir.mkdir(parents=True, exist_ok=True)
        self._store = MemoryStore(str(self._tmp_dir / "companion.db"))
        self._events = EventEmitter(self._store)
        self._sessions = SessionStore(self._store, self._events)

    def tearDown(self) -> None:
        self._store.close()
        shutil.rmtree(self._tmp_dir, ignore_errors=True)
