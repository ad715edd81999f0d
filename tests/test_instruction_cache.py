"""Tests for the instruction cache."""

import pytest

from finaudit.cache import (
    GLOBAL_HASH_KEY,
    InstructionCache,
    compute_instruction_hash,
)
from finaudit.models.session import ConversationTurn, TurnRole
from finaudit.services.storage import InMemoryKeyValueStore


def user(content: str) -> ConversationTurn:
    return ConversationTurn(role=TurnRole.USER, content=content)


def model(content: str) -> ConversationTurn:
    return ConversationTurn(role=TurnRole.MODEL, content=content)


async def fill(cache: InstructionCache, provider: str, exchanges: int) -> None:
    for i in range(exchanges):
        await cache.record_turn(provider, user(f"q{i}"))
        await cache.record_turn(provider, model(f"a{i}"))


class TestInstructionHash:
    """Tests for hash computation and invalidation."""

    def test_hash_is_deterministic(self):
        """The same prompt always hashes the same."""
        assert compute_instruction_hash("prompt") == compute_instruction_hash("prompt")
        assert compute_instruction_hash("prompt") != compute_instruction_hash("prompt.")

    def test_hash_covers_scrub_map(self):
        """A renamed entity changes the hash even when the scrubbed prompt does not."""
        before = compute_instruction_hash("Loan 1", [("Navient Student Loan", "Loan 1")])
        after = compute_instruction_hash("Loan 1", [("Sallie Mae Refi", "Loan 1")])

        assert before != after
        assert before == compute_instruction_hash("Loan 1", [("Navient Student Loan", "Loan 1")])

    def test_scrub_map_order_does_not_matter(self):
        pairs = [("Ally", "Bank 1"), ("Chase Sapphire Preferred", "Credit Card 1")]
        assert compute_instruction_hash("p", pairs) == compute_instruction_hash("p", list(reversed(pairs)))

    @pytest.mark.asyncio
    async def test_first_sync_is_not_an_invalidation(self):
        """A fresh provider has nothing to invalidate."""
        store = InMemoryKeyValueStore()
        cache = InstructionCache(store)

        assert await cache.sync_hash("backend", "h1") is False
        assert await cache.stored_hash("backend") == "h1"
        assert await cache.last_instruction_hash() == "h1"

    @pytest.mark.asyncio
    async def test_same_hash_keeps_history(self):
        """An unchanged hash leaves the window alone."""
        cache = InstructionCache(InMemoryKeyValueStore())
        await cache.sync_hash("backend", "h1")
        await fill(cache, "backend", 2)

        assert await cache.sync_hash("backend", "h1") is False
        assert len(await cache.load("backend")) == 4

    @pytest.mark.asyncio
    async def test_changed_hash_clears_history(self):
        """A new hash discards the window and is persisted."""
        store = InMemoryKeyValueStore()
        cache = InstructionCache(store)
        await cache.sync_hash("backend", "h1")
        await fill(cache, "backend", 2)

        assert await cache.sync_hash("backend", "h2") is True
        assert await cache.load("backend") == []
        assert await cache.stored_hash("backend") == "h2"
        assert store.snapshot()[GLOBAL_HASH_KEY] == "h2"

    @pytest.mark.asyncio
    async def test_providers_are_independent(self):
        """Each provider has its own window and hash."""
        cache = InstructionCache(InMemoryKeyValueStore())
        await cache.sync_hash("backend", "h1")
        await cache.sync_hash("openai", "h1")
        await fill(cache, "backend", 1)
        await fill(cache, "openai", 1)

        await cache.sync_hash("openai", "h2")

        assert len(await cache.load("backend")) == 2
        assert await cache.load("openai") == []


class TestConversationWindow:
    """Tests for recording, windowing and trimming."""

    @pytest.mark.asyncio
    async def test_store_limit_keeps_most_recent(self):
        """The stored window never exceeds store_limit and drops the oldest."""
        cache = InstructionCache(InMemoryKeyValueStore(), send_limit=6, store_limit=8)
        await fill(cache, "backend", 6)

        turns = await cache.load("backend")

        assert len(turns) == 8
        assert turns[0].content == "q2"
        assert turns[-1].content == "a5"

    @pytest.mark.asyncio
    async def test_window_caps_at_send_limit(self):
        """Only the most recent send_limit turns are sent."""
        cache = InstructionCache(InMemoryKeyValueStore(), send_limit=6, store_limit=8)
        await fill(cache, "backend", 4)

        window = await cache.window("backend")

        assert [t.content for t in window] == ["q1", "a1", "q2", "a2", "q3", "a3"]

    @pytest.mark.asyncio
    async def test_window_excludes_unanswered_user_turn(self):
        """The message being sent is not part of its own history."""
        cache = InstructionCache(InMemoryKeyValueStore())
        await fill(cache, "backend", 1)
        await cache.record_turn("backend", user("current"))

        window = await cache.window("backend")

        assert [t.content for t in window] == ["q0", "a0"]

    @pytest.mark.asyncio
    async def test_identical_resubmission_is_not_duplicated(self):
        """Recording the same unanswered message twice keeps one copy."""
        cache = InstructionCache(InMemoryKeyValueStore())
        await cache.record_turn("backend", user("snapshot"))
        await cache.record_turn("backend", user("snapshot"))

        assert [t.content for t in await cache.load("backend")] == ["snapshot"]

    @pytest.mark.asyncio
    async def test_new_message_supersedes_unanswered_one(self):
        """A different message replaces an unanswered one."""
        cache = InstructionCache(InMemoryKeyValueStore())
        await cache.record_turn("backend", user("first try"))
        await cache.record_turn("backend", user("edited"))

        assert [t.content for t in await cache.load("backend")] == ["edited"]

    @pytest.mark.asyncio
    async def test_trim_drops_oldest(self):
        """trim keeps the newest turns."""
        cache = InstructionCache(InMemoryKeyValueStore())
        await fill(cache, "backend", 3)

        trimmed = await cache.trim("backend", keep=2)

        assert [t.content for t in trimmed] == ["q2", "a2"]
        assert [t.content for t in await cache.load("backend")] == ["q2", "a2"]

    @pytest.mark.asyncio
    async def test_zero_send_limit_sends_nothing(self):
        """A send limit of zero disables history."""
        cache = InstructionCache(InMemoryKeyValueStore(), send_limit=0)
        await fill(cache, "backend", 2)

        assert await cache.window("backend") == []

    @pytest.mark.asyncio
    async def test_legacy_assistant_role_is_accepted(self):
        """Stored turns written with the 'assistant' role load as model turns."""
        store = InMemoryKeyValueStore({
            "api-history-backend": [
                {"role": "user", "content": "q"},
                {"role": "assistant", "content": "a"},
                {"role": "narrator", "content": "skipped"},
            ]
        })
        cache = InstructionCache(store)

        turns = await cache.load("backend")

        assert [t.role for t in turns] == [TurnRole.USER, TurnRole.MODEL]
