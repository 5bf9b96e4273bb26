"""Token estimation for indexed repository files.

Uses a conservative 4 characters per token ratio; the default limit of
600k tokens leaves headroom inside an 800k context window.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

TOKEN_LIMIT = 600_000
CHARS_PER_TOKEN = 4


class SizedFile(Protocol):
    size_bytes: int


@dataclass(frozen=True)
class TokenCountResult:
    total_bytes: int
    estimated_tokens: int
    exceeds_limit: bool
    limit: int


def estimate_tokens(size_bytes: int) -> int:
    return math.ceil(size_bytes / CHARS_PER_TOKEN)


def calculate_token_count(
    files: Iterable[SizedFile],
    *,
    limit: int = TOKEN_LIMIT,
) -> TokenCountResult:
    """Sum file sizes and check the estimate against ``limit``."""
    total_bytes = sum(f.size_bytes for f in files)
    estimated = estimate_tokens(total_bytes)
    return TokenCountResult(
        total_bytes=total_bytes,
        estimated_tokens=estimated,
        exceeds_limit=estimated > limit,
        limit=limit,
    )


def format_token_count(tokens: int) -> str:
    """Human-readable token count: ``500``, ``50k``, ``1.5M``, ``2M``."""
    if tokens >= 1_000_000:
        millions = tokens / 1_000_000
        if millions == int(millions):
            return f"{int(millions)}M"
        return f"{millions:.1f}M"

    if tokens >= 1_000:
        # half-up, not banker's rounding
        return f"{math.floor(tokens / 1_000 + 0.5)}k"

    return str(tokens)


def create_oversized_message(result: TokenCountResult) -> str:
    return (
        f"Repository too large: {format_token_count(result.estimated_tokens)} tokens "
        f"exceeds {format_token_count(result.limit)} limit"
    )
