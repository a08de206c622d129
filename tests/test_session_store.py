"""
Unit tests for SessionConversationStore.

Tests transcript seeding, append ordering, length bounding, rollback,
TTL eviction and per-key locking.
"""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from crypto_chat_proxy.agent.llm_client import ROOT_SYSTEM_PROMPT
from crypto_chat_proxy.agent.session_store import SessionConversationStore
from crypto_chat_proxy.agent.state import ChatMessage

# ===== Fixtures =====


@pytest.fixture
def store():
    """Store with a short system prompt"""
    return SessionConversationStore(system_prompt="be terse", max_messages=6)


def user(text: str) -> ChatMessage:
    return ChatMessage(role="user", content=text)


def assistant(text: str) -> ChatMessage:
    return ChatMessage(role="assistant", content=text)


# ===== ChatMessage Tests =====


class TestChatMessage:
    """Test message invariants"""

    def test_to_dict(self):
        assert user("hi").to_dict() == {"role": "user", "content": "hi"}

    def test_rejects_unknown_role(self):
        with pytest.raises(ValueError):
            ChatMessage(role="tool", content="x")

    def test_rejects_empty_content(self):
        with pytest.raises(ValueError):
            ChatMessage(role="user", content="")

    def test_is_immutable(self):
        message = user("hi")
        with pytest.raises(AttributeError):
            message.content = "changed"


# ===== get_or_create Tests =====


class TestGetOrCreate:
    """Test transcript creation"""

    def test_new_session_is_seeded_with_system_message(self, store):
        transcript = store.get_or_create("s1")

        assert len(transcript) == 1
        assert transcript.messages[0].role == "system"
        assert transcript.messages[0].content == "be terse"

    def test_seeded_once(self, store):
        first = store.get_or_create("s1")
        second = store.get_or_create("s1")

        assert first is second
        assert len(second) == 1

    def test_default_prompt(self):
        transcript = SessionConversationStore().get_or_create("s1")
        assert transcript.messages[0].content == ROOT_SYSTEM_PROMPT

    def test_sessions_are_isolated(self, store):
        store.append("a", user("for a"))

        assert len(store.get_or_create("b")) == 1
        assert store.session_count() == 2

    def test_rejects_too_small_bound(self):
        with pytest.raises(ValueError):
            SessionConversationStore(max_messages=1)


# ===== append Tests =====


class TestAppend:
    """Test ordering and bounding"""

    def test_append_preserves_order(self, store):
        store.append("s1", user("balance?"))
        store.append("s1", assistant("0 SOL"))

        roles = [m.role for m in store.get_or_create("s1").messages]
        assert roles == ["system", "user", "assistant"]

    def test_append_to_unknown_session_seeds_it(self, store):
        transcript = store.append("new", user("hello"))

        assert [m.role for m in transcript.messages] == ["system", "user"]

    def test_append_does_not_trim(self, store):
        for i in range(10):
            store.append("s1", user(f"q{i}"))

        assert len(store.get_or_create("s1")) == 11

    def test_append_ignores_lapsed_ttl(self, store):
        store.append("s1", user("slow question"))
        store._access_times["s1"] = datetime.now(UTC) - timedelta(days=1)

        transcript = store.append("s1", assistant("late answer"))

        assert [m.role for m in transcript.messages] == ["system", "user", "assistant"]


# ===== trim Tests =====


class TestTrim:
    """Test length bounding"""

    def test_drops_whole_turns_and_keeps_system_message(self, store):
        for i in range(5):
            store.append("s1", user(f"q{i}"))
            store.append("s1", assistant(f"a{i}"))

        dropped = store.trim("s1")

        messages = store.get_or_create("s1").messages
        assert dropped == 6
        assert messages[0].role == "system"
        assert [m.content for m in messages[1:]] == ["q3", "a3", "q4", "a4"]

    def test_never_starts_with_assistant(self, store):
        for i in range(3):
            store.append("s1", user(f"q{i}"))
            store.append("s1", assistant(f"a{i}"))

        store.trim("s1")

        messages = store.get_or_create("s1").messages
        assert len(messages) <= 6
        assert messages[1].role == "user"

    def test_within_bound_is_noop(self, store):
        store.append("s1", user("q"))
        store.append("s1", assistant("a"))

        assert store.trim("s1") == 0
        assert len(store.get_or_create("s1")) == 3

    def test_unknown_session(self, store):
        assert store.trim("missing") == 0


# ===== remove_last Tests =====


class TestRemoveLast:
    """Test rollback of an unanswered user turn"""

    def test_removes_matching_last_message(self, store):
        message = user("dangling")
        store.append("s1", message)

        assert store.remove_last("s1", message) is True
        assert len(store.get_or_create("s1")) == 1

    def test_ignores_message_that_is_not_last(self, store):
        message = user("q")
        store.append("s1", message)
        store.append("s1", assistant("a"))

        assert store.remove_last("s1", message) is False
        assert len(store.get_or_create("s1")) == 3

    def test_never_removes_system_message(self, store):
        transcript = store.get_or_create("s1")

        assert store.remove_last("s1", transcript.messages[0]) is False
        assert len(transcript) == 1

    def test_unknown_session(self, store):
        assert store.remove_last("missing", user("x")) is False


# ===== Expiry Tests =====


class TestExpiry:
    """Test TTL eviction"""

    def test_expired_session_is_reseeded(self, store):
        store.append("s1", user("old"))
        store._access_times["s1"] = datetime.now(UTC) - timedelta(days=1)

        transcript = store.get_or_create("s1")

        assert len(transcript) == 1

    def test_cleanup_expired(self, store):
        store.get_or_create("stale")
        store.get_or_create("fresh")
        store._access_times["stale"] = datetime.now(UTC) - timedelta(days=1)

        removed = store.cleanup_expired()

        assert removed == 1
        assert store.session_count() == 1

    def test_delete(self, store):
        store.get_or_create("s1")

        assert store.delete("s1") is True
        assert store.delete("s1") is False

    @pytest.mark.asyncio
    async def test_cleanup_skips_locked_session(self, store):
        store.get_or_create("busy")
        store._access_times["busy"] = datetime.now(UTC) - timedelta(days=1)

        async with store.lock("busy"):
            assert store.cleanup_expired() == 0

    @pytest.mark.asyncio
    async def test_start_stop(self, store):
        await store.start()
        assert store._cleanup_task is not None

        await store.stop()
        assert store._cleanup_task is None


# ===== lock Tests =====


class TestLock:
    """Test per-key mutual exclusion"""

    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self, store):
        events: list[str] = []

        async def worker(name: str):
            async with store.lock("s1"):
                events.append(f"{name}-start")
                await asyncio.sleep(0.01)
                events.append(f"{name}-end")

        await asyncio.gather(worker("a"), worker("b"))

        assert events == ["a-start", "a-end", "b-start", "b-end"]

    @pytest.mark.asyncio
    async def test_distinct_keys_do_not_block(self, store):
        async with store.lock("s1"):
            await asyncio.wait_for(self._enter(store, "s2"), timeout=1)

    @staticmethod
    async def _enter(store, key):
        async with store.lock(key):
            return True
