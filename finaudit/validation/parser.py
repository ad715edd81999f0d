"""
Audit Result Parser

Turns the (unscrubbed) model output into a ParsedAudit.

Models are asked for a single JSON object but do not always comply: some
wrap it in markdown fences, some add prose before or after, some return a
one-element array, and some answer in snake_case. All of those are
recoverable. A body without a header card is not, and parsing fails.

IMPORTANT: Parsing NEVER invents content. Anything it cannot recover is
reported as a failure (None) for the orchestrator to surface.
"""

import json
import re
from typing import Any, Optional

import structlog

from finaudit.models.session import ParsedAudit

logger = structlog.get_logger(__name__)

_FENCE_OPEN = re.compile(r"```json?\s*", re.IGNORECASE)
_FENCE = "```"

# snake_case keys some models emit, mapped to the canonical camelCase keys
SNAKE_CASE_KEYS = {
    "header_card": "headerCard",
    "health_score": "healthScore",
    "alerts_card": "alertsCard",
    "dashboard_card": "dashboardCard",
    "weekly_moves": "weeklyMoves",
    "long_range_radar": "longRangeRadar",
    "next_action": "nextAction",
}

REQUIRED_KEY = "headerCard"
UNKNOWN_STATUS = "UNKNOWN"


def strip_fences(raw: str) -> str:
    """Remove markdown code fences (```json ... ```) anywhere in the text."""
    return _FENCE_OPEN.sub("", raw).replace(_FENCE, "").strip()


def extract_json_object(text: str) -> Optional[Any]:
    """
    Decode the JSON payload embedded in text.

    Tries, in order: the outermost {...} block, the first element of the
    outermost [...] block, then the whole text.
    """
    start, end = text.find("{"), text.rfind("}")
    try:
        if start >= 0 and end > start:
            return json.loads(text[start:end + 1])

        start, end = text.find("["), text.rfind("]")
        if start >= 0 and end > start:
            items = json.loads(text[start:end + 1])
            if isinstance(items, list) and items:
                return items[0]
            return None

        return json.loads(text)
    except json.JSONDecodeError as e:
        logger.warning("audit_json_decode_failed", error=e.msg, raw_length=len(text))
        return None


def normalize_keys(payload: dict[str, Any]) -> dict[str, Any]:
    """Map snake_case section keys to camelCase when the camelCase form is absent."""
    if payload.get(REQUIRED_KEY) or not payload.get("header_card"):
        return payload

    normalized = dict(payload)
    for snake, camel in SNAKE_CASE_KEYS.items():
        if payload.get(snake):
            normalized[camel] = payload[snake]
    return normalized


def parse_audit(raw: Optional[str]) -> Optional[ParsedAudit]:
    """
    Parse a complete model response.

    Returns:
        ParsedAudit, or None if the text holds no usable audit
    """
    if not raw:
        return None

    payload = extract_json_object(strip_fences(raw))
    if not isinstance(payload, dict):
        logger.warning("audit_payload_not_object", payload_type=type(payload).__name__)
        return None

    payload = normalize_keys(payload)
    header = payload.get(REQUIRED_KEY)
    if not header:
        logger.warning("audit_missing_header_card", keys=sorted(payload)[:20])
        return None

    status = header.get("status") if isinstance(header, dict) else None
    return ParsedAudit(
        raw=raw,
        status=status if isinstance(status, str) and status else UNKNOWN_STATUS,
        health_score=payload.get("healthScore") or None,
        structured=payload,
    )
