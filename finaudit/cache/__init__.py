"""Instruction cache: per-provider conversation window keyed by prompt hash."""

from finaudit.cache.instruction_cache import (
    GLOBAL_HASH_KEY,
    HASH_KEY,
    HISTORY_KEY,
    InstructionCache,
    compute_instruction_hash,
)

__all__ = [
    "GLOBAL_HASH_KEY",
    "HASH_KEY",
    "HISTORY_KEY",
    "InstructionCache",
    "compute_instruction_hash",
]
