"""Redaction helpers for run records and job errors persisted in the store."""

from __future__ import annotations

import re
from collections.abc import Callable
from typing import Any

_MAX_PREVIEW_CHARS = 2_000
_REDACTED = "[redacted]"

_Replacement = str | Callable[[re.Match[str]], str]

_REPLACEMENTS: tuple[tuple[re.Pattern[str], _Replacement], ...] = (
    (
        re.compile(r"(?i)\b(bearer)\s+[a-z0-9._\-~+/=]{8,}"),
        r"\1 [redacted-token]",
    ),
    (
        re.compile(r"(?i)\b((?:sk|pk|rk)[-_](?:ant-|proj-|live_|test_)?[a-z0-9\-_]{8,})\b"),
        "[redacted-token]",
    ),
    (
        re.compile(
            r"(?i)\b(agent_matrix|openai|anthropic|gemini|github|stripe)[a-z0-9_]*_?(api_)?"
            r"(key|token|secret)\b\s*[:=]\s*['\"]?[^'\" \n\r\t]+['\"]?",
        ),
        "[redacted-secret]",
    ),
    (
        re.compile(r"(?i)\b((?:postgres(?:ql)?|mysql|mongodb(?:\+srv)?)://)[^:/\s]+:[^@\s]+@"),
        r"\1[redacted-credentials]@",
    ),
    (
        re.compile(r"(?i)([?&](?:token|key|signature|auth)=[^&\s]+)"),
        lambda match: match.group(1).split("=")[0] + "=[redacted]",
    ),
    (
        re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
        "[redacted-email]",
    ),
)

_SECRET_KEY_PATTERN = re.compile(
    r"(?i)(password|passwd|secret|api[_-]?key|access[_-]?key|private[_-]?key|token|credential)",
)


def sanitize_preview(text: str, *, max_chars: int = _MAX_PREVIEW_CHARS) -> str:
    """Redact obvious secrets/PII and clamp payload size."""

    compact = text.strip()
    if not compact:
        return ""

    redacted = _redact(compact)
    if len(redacted) <= max_chars:
        return redacted
    return redacted[:max_chars]


def _redact(text: str) -> str:
    for pattern, replacement in _REPLACEMENTS:
        text = pattern.sub(replacement, text)
    return text


def redact_payload(value: Any) -> Any:
    """Return a copy of a JSON-like payload with secret-looking values masked.

    Mapping keys that name a credential are masked wholesale; every other
    string gets the same pattern redaction as :func:`sanitize_preview` but is
    neither stripped nor truncated.
    """

    if isinstance(value, dict):
        return {
            key: _REDACTED
            if isinstance(key, str) and _SECRET_KEY_PATTERN.search(key)
            else redact_payload(item)
            for key, item in value.items()
        }
    if isinstance(value, list | tuple):
        return [redact_payload(item) for item in value]
    if isinstance(value, str):
        return _redact(value)
    return value
