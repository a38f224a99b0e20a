"""Deterministic traffic bucketing for canary rollout."""

from __future__ import annotations

import hashlib

BUCKET_COUNT = 100
ANONYMOUS_USER = "anonymous"
DEFAULT_PROJECT = "default"


def bucket_key(user_id: str | None, project_id: str | None, role: str) -> str:
    return f"{user_id or ANONYMOUS_USER}:{project_id or DEFAULT_PROJECT}:{role}"


def compute_bucket(user_id: str | None, project_id: str | None, role: str) -> int:
    """Map ``(user, project, role)`` to a stable bucket in ``[0, 100)``.

    The first 8 bytes of the SHA-256 digest are read as a big-endian unsigned
    integer, so the same identity lands in the same bucket in every process.
    """

    digest = hashlib.sha256(bucket_key(user_id, project_id, role).encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") % BUCKET_COUNT


def in_canary(bucket: int, percentage: float) -> bool:
    return bucket < percentage
