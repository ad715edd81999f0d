"""
Instruction Cache

Per-provider conversation window, keyed to the fingerprint of the system
prompt it was produced under.

CRITICAL: The hash comparison is the only invalidation trigger. There is
no time-based expiry. The system prompt is rendered from the user's
financial configuration, so when that configuration changes the model
must not be primed with answers given under the old instructions.

Storage keys:
- api-history-<provider>       trailing window of turns (real names)
- api-history-hash-<provider>  instruction hash the window belongs to
- instruction-hash             last instruction hash seen by any provider
"""

import hashlib
from typing import Any, Iterable, Optional

import structlog
from pydantic import ValidationError

from finaudit.models.session import ConversationTurn, TurnRole
from finaudit.services.storage.interface import KeyValueStore

logger = structlog.get_logger(__name__)

HISTORY_KEY = "api-history-{provider}"
HASH_KEY = "api-history-hash-{provider}"
GLOBAL_HASH_KEY = "instruction-hash"


def compute_instruction_hash(
    system_prompt: str,
    scrub_map: Iterable[tuple[str, str]] = (),
) -> str:
    """
    Deterministic fingerprint of a rendered, scrubbed system prompt.

    The (real_name, token) pairs are folded in: a renamed entity scrubs to
    the same token, and the stored window still holds the old name, which
    the new catalog no longer hides.
    """
    digest = hashlib.sha256(system_prompt.encode("utf-8"))
    for real_name, token in sorted(scrub_map):
        digest.update(f"\0{token}\0{real_name}".encode("utf-8"))
    return digest.hexdigest()


class InstructionCache:
    """
    Owns the stored conversation window for every provider.

    Only the orchestrator mutates it, through sync_hash, record_turn
    and trim.
    """

    def __init__(
        self,
        store: KeyValueStore,
        send_limit: int = 6,
        store_limit: int = 8,
    ):
        self._store = store
        self.send_limit = send_limit
        self.store_limit = store_limit

    # ------------------------------------------------------------------
    # Hash
    # ------------------------------------------------------------------

    async def stored_hash(self, provider_id: str) -> Optional[str]:
        value = await self._store.get(HASH_KEY.format(provider=provider_id))
        return value if isinstance(value, str) else None

    async def last_instruction_hash(self) -> Optional[str]:
        value = await self._store.get(GLOBAL_HASH_KEY)
        return value if isinstance(value, str) else None

    async def sync_hash(self, provider_id: str, instruction_hash: str) -> bool:
        """
        Compare instruction_hash with the stored one for provider_id.

        On mismatch the stored window is cleared and the new hash persisted.

        Returns:
            True if a previous window was invalidated
        """
        stored = await self.stored_hash(provider_id)
        if stored == instruction_hash:
            return False

        had_history = bool(await self.load(provider_id))
        await self._store.delete(HISTORY_KEY.format(provider=provider_id))
        await self._store.set(HASH_KEY.format(provider=provider_id), instruction_hash)
        await self._store.set(GLOBAL_HASH_KEY, instruction_hash)

        invalidated = stored is not None or had_history
        if invalidated:
            logger.info(
                "instruction_hash_changed",
                provider=provider_id,
                discarded_history=had_history,
            )
        return invalidated

    # ------------------------------------------------------------------
    # Window
    # ------------------------------------------------------------------

    async def load(self, provider_id: str) -> list[ConversationTurn]:
        """The full stored window, oldest first."""
        raw = await self._store.get(HISTORY_KEY.format(provider=provider_id))
        if not isinstance(raw, list):
            return []

        turns = []
        for item in raw:
            try:
                turns.append(ConversationTurn.model_validate(item))
            except ValidationError:
                logger.warning("stored_turn_skipped", provider=provider_id)
        return turns

    async def _save(self, provider_id: str, turns: list[ConversationTurn]) -> None:
        payload: list[dict[str, Any]] = [turn.model_dump(mode="json") for turn in turns]
        await self._store.set(HISTORY_KEY.format(provider=provider_id), payload)

    async def window(self, provider_id: str) -> list[ConversationTurn]:
        """
        Turns to send with the next request.

        A trailing user turn with no answer is the message being sent now
        (or one that failed), so it is left out. At most send_limit turns,
        most recent last.
        """
        turns = await self.load(provider_id)
        if turns and turns[-1].role == TurnRole.USER:
            turns = turns[:-1]
        if self.send_limit <= 0:
            return []
        return turns[-self.send_limit:]

    async def record_turn(self, provider_id: str, turn: ConversationTurn) -> list[ConversationTurn]:
        """
        Append a turn and trim to store_limit.

        A user turn following an unanswered user turn replaces it, and is a
        no-op when the content is identical. Resubmitting after a failure
        therefore never duplicates the message.
        """
        turns = await self.load(provider_id)

        if turn.role == TurnRole.USER and turns and turns[-1].role == TurnRole.USER:
            if turns[-1].content == turn.content:
                return turns
            turns[-1] = turn
        else:
            turns.append(turn)

        turns = self._trimmed(turns, self.store_limit)
        await self._save(provider_id, turns)
        return turns

    async def trim(self, provider_id: str, keep: Optional[int] = None) -> list[ConversationTurn]:
        """Drop the oldest turns so at most `keep` (default store_limit) remain."""
        limit = self.store_limit if keep is None else keep
        turns = await self.load(provider_id)
        trimmed = self._trimmed(turns, limit)
        if len(trimmed) != len(turns):
            await self._save(provider_id, trimmed)
        return trimmed

    async def clear(self, provider_id: str) -> None:
        await self._store.delete(HISTORY_KEY.format(provider=provider_id))

    @staticmethod
    def _trimmed(turns: list[ConversationTurn], limit: int) -> list[ConversationTurn]:
        if limit <= 0:
            return []
        return turns[-limit:]
