"""Tests for the expiring store and the session registry."""

import pytest

from deep_researcher.core.research.errors import NotFoundError
from deep_researcher.core.research.orchestrator import ResearchOrchestrator
from deep_researcher.core.research.sessions import ResearchSession, SessionRegistry
from deep_researcher.core.research.store import InMemoryExpiringStore
from tests.conftest import ScriptedCompletion, ScriptedSearch


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


class TestInMemoryExpiringStore:
    def test_get_within_ttl(self, clock):
        store = InMemoryExpiringStore(clock=clock)
        store.set("k", "v", ttl_seconds=10)

        clock.advance(9)

        assert store.get("k") == "v"

    def test_expires_after_ttl(self, clock):
        store = InMemoryExpiringStore(clock=clock)
        store.set("k", "v", ttl_seconds=10)

        clock.advance(10)

        assert store.get("k") is None
        assert len(store) == 0

    def test_get_slides_expiry(self, clock):
        store = InMemoryExpiringStore(clock=clock)
        store.set("k", "v", ttl_seconds=10)

        clock.advance(8)
        assert store.get("k") == "v"
        clock.advance(8)

        assert store.get("k") == "v"

    def test_purge_expired(self, clock):
        store = InMemoryExpiringStore(clock=clock)
        store.set("old", 1, ttl_seconds=5)
        store.set("new", 2, ttl_seconds=50)

        clock.advance(6)

        assert store.purge_expired() == 1
        assert store.get("new") == 2
        assert len(store) == 1

    def test_delete_returns_value(self, clock):
        store = InMemoryExpiringStore(clock=clock)
        store.set("k", "v", ttl_seconds=10)

        assert store.delete("k") == "v"
        assert store.delete("k") is None

    @pytest.mark.parametrize("ttl", [0, -1])
    def test_rejects_non_positive_ttl(self, ttl):
        with pytest.raises(ValueError):
            InMemoryExpiringStore().set("k", "v", ttl_seconds=ttl)


def make_session(session_id="s1"):
    orchestrator = ResearchOrchestrator(
        "query", ScriptedCompletion(), ScriptedSearch(), session_id=session_id
    )
    return ResearchSession(session_id=session_id, orchestrator=orchestrator)


class TestSessionRegistry:
    def test_get_unknown_raises(self):
        registry = SessionRegistry()

        with pytest.raises(NotFoundError) as exc_info:
            registry.get("missing")
        assert exc_info.value.session_id == "missing"

    def test_add_get_remove(self):
        registry = SessionRegistry()
        session = make_session()

        registry.add(session)

        assert registry.get("s1") is session
        assert registry.remove("s1") is session
        assert registry.remove("s1") is None

    def test_idle_sessions_expire(self, clock):
        registry = SessionRegistry(InMemoryExpiringStore(clock=clock), ttl_seconds=60)
        registry.add(make_session())

        clock.advance(61)

        with pytest.raises(NotFoundError):
            registry.get("s1")

    def test_purge_expired(self, clock):
        registry = SessionRegistry(InMemoryExpiringStore(clock=clock), ttl_seconds=60)
        registry.add(make_session("a"))
        clock.advance(30)
        registry.add(make_session("b"))
        clock.advance(31)

        assert registry.purge_expired() == 1
        assert len(registry) == 1

    def test_new_session_flags(self):
        session = make_session()

        assert session.is_running is False
        assert session.cache_hit is False
