"""Validation of model output."""

from finaudit.validation.parser import (
    SNAKE_CASE_KEYS,
    extract_json_object,
    normalize_keys,
    parse_audit,
    strip_fences,
)

__all__ = [
    "SNAKE_CASE_KEYS",
    "extract_json_object",
    "normalize_keys",
    "parse_audit",
    "strip_fences",
]
