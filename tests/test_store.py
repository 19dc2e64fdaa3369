from __future__ import annotations

import threading

from adaptive_core.store import InMemorySessionStore
from adaptive_core.types import SessionState


def _state(user: str, aid: str, complete: bool = False) -> SessionState:
    return SessionState(user_id=user, assessment_id=aid, is_complete=complete)


def test_put_get_delete_keys():
    store = InMemorySessionStore()
    store.put(_state("u", "a"))
    store.put(_state("u", "b"))
    assert len(store) == 2
    assert store.get(("u", "a")).assessment_id == "a"
    assert store.get(("x", "y")) is None
    assert sorted(store.keys()) == [("u", "a"), ("u", "b")]
    assert store.delete(("u", "a")) is True
    assert store.delete(("u", "a")) is False
    assert store.keys() == [("u", "b")]


def test_sweep_removes_matching_states():
    store = InMemorySessionStore()
    store.put(_state("u", "a", complete=True))
    store.put(_state("u", "b"))
    store.put(_state("v", "c", complete=True))
    removed = store.sweep(lambda st: st.is_complete)
    assert removed == 2
    assert store.keys() == [("u", "b")]


def test_lock_is_reentrant_and_per_key():
    store = InMemorySessionStore()
    with store.lock(("u", "a")):
        with store.lock(("u", "a")):
            store.put(_state("u", "a"))

    entered = threading.Event()
    other_done = threading.Event()

    def other_key():
        with store.lock(("v", "b")):
            other_done.set()

    with store.lock(("u", "a")):
        entered.set()
        th = threading.Thread(target=other_key)
        th.start()
        assert other_done.wait(timeout=2.0)
        th.join()
    assert entered.is_set()


def test_delete_inside_lock_keeps_other_writers_out():
    store = InMemorySessionStore()
    key = ("u", "a")
    store.put(_state("u", "a"))

    waiting = threading.Event()
    entered = threading.Event()

    def second_writer():
        waiting.set()
        with store.lock(key):
            entered.set()

    with store.lock(key):
        store.delete(key)
        th = threading.Thread(target=second_writer)
        th.start()
        assert waiting.wait(timeout=2.0)
        assert not entered.wait(timeout=0.2)
        store.put(_state("u", "a"))
        with store.lock(key):
            assert not entered.is_set()
    assert entered.wait(timeout=2.0)
    th.join()


def test_lock_table_drains_after_release():
    store = InMemorySessionStore()
    for i in range(50):
        with store.lock(("ghost", str(i))):
            assert store.get(("ghost", str(i))) is None
    store.put(_state("u", "a"))
    with store.lock(("u", "a")):
        pass
    assert store.sweep(lambda st: True) == 1
    assert store._locks == {}
