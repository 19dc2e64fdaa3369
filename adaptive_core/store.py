"""Session-state storage for the adaptive engine.

``SessionStore`` is the seam the engine talks to; ``InMemorySessionStore``
backs tests and single-process deployments. A distributed cache can slot in
by implementing the same five methods plus ``lock``.

Writers for the same ``(user_id, assessment_id)`` key are serialized through
``lock(key)``; different keys never contend on anything but the short
critical section that hands out per-key locks.
"""
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from .types import SessionState

Key = Tuple[str, str]


class SessionStore:
    def get(self, key: Key) -> Optional[SessionState]:
        raise NotImplementedError

    def put(self, state: SessionState) -> None:
        raise NotImplementedError

    def delete(self, key: Key) -> bool:
        raise NotImplementedError

    def keys(self) -> List[Key]:
        raise NotImplementedError

    def sweep(self, predicate: Callable[[SessionState], bool]) -> int:
        """Remove every state for which ``predicate`` is true; return the count."""
        raise NotImplementedError

    @contextmanager
    def lock(self, key: Key) -> Iterator[None]:
        raise NotImplementedError
        yield  # pragma: no cover


class InMemorySessionStore(SessionStore):
    def __init__(self) -> None:
        self._states: Dict[Key, SessionState] = {}
        # key -> [lock, holders]; an entry lives only while a thread holds or waits on it
        self._locks: Dict[Key, list] = {}
        self._guard = threading.Lock()

    def _acquire_entry(self, key: Key) -> threading.RLock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.RLock(), 0]
                self._locks[key] = entry
            entry[1] += 1
            return entry[0]

    def _release_entry(self, key: Key) -> None:
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    @contextmanager
    def lock(self, key: Key) -> Iterator[None]:
        lk = self._acquire_entry(key)
        try:
            with lk:
                yield
        finally:
            self._release_entry(key)

    def get(self, key: Key) -> Optional[SessionState]:
        with self._guard:
            return self._states.get(key)

    def put(self, state: SessionState) -> None:
        with self._guard:
            self._states[state.key] = state

    def delete(self, key: Key) -> bool:
        with self._guard:
            return self._states.pop(key, None) is not None

    def keys(self) -> List[Key]:
        with self._guard:
            return list(self._states.keys())

    def sweep(self, predicate: Callable[[SessionState], bool]) -> int:
        removed = 0
        for key in self.keys():
            with self.lock(key):
                state = self.get(key)
                if state is not None and predicate(state):
                    self.delete(key)
                    removed += 1
        return removed

    def __len__(self) -> int:
        with self._guard:
            return len(self._states)
