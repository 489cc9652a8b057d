from engines.orchestrator import PracticeOrchestrator
from session_store import InMemorySessionStore


class _Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _state(session_id):
    return PracticeOrchestrator().initialize("alice", "addition", {"addition": 5}, session_id=session_id)


def test_put_get_delete():
    store = InMemorySessionStore()
    state = _state("s1")
    store.put("s1", state)
    assert store.get("s1") is state
    assert len(store) == 1

    store.delete("s1")
    assert store.get("s1") is None
    store.delete("s1")
    assert len(store) == 0


def test_sessions_expire_after_ttl():
    clock = _Clock()
    store = InMemorySessionStore(ttl_seconds=60, clock=clock)
    store.put("s1", _state("s1"))

    clock.now += 59
    assert store.get("s1") is not None

    # writing refreshes the timestamp
    store.put("s1", store.get("s1"))
    clock.now += 59
    assert store.get("s1") is not None

    clock.now += 61
    assert store.get("s1") is None
    assert len(store) == 0


def test_full_store_evicts_least_recently_written():
    store = InMemorySessionStore(max_sessions=2)
    store.put("a", _state("a"))
    store.put("b", _state("b"))
    store.put("a", store.get("a"))
    store.put("c", _state("c"))

    assert store.get("b") is None
    assert store.get("a") is not None
    assert store.get("c") is not None
