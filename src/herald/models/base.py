"""Base helpers shared by Herald models."""

from __future__ import annotations

from datetime import UTC, datetime
from uuid import uuid4


def generate_id(prefix: str) -> str:
    """Generate a unique ID with the given prefix.

    Examples:
        generate_id("whk") -> "whk_a1b2c3d4e5f6a7b8"
        generate_id("evt") -> "evt_a1b2c3d4e5f6a7b8"
    """
    return f"{prefix}_{uuid4().hex[:16]}"


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)
