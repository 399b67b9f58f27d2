"""Approximate token counting for request budgeting.

Budgets only need a stable, monotonic estimate: the same text must always cost
the same, and longer text must never cost less. Four characters per token is
the usual rule of thumb for English prose and source code with both the
Anthropic and OpenAI tokenizers.
"""

from __future__ import annotations

from typing import Callable

TokenCounter = Callable[[str], int]

_CHARS_PER_TOKEN = 4


def count_tokens(text: str) -> int:
    if not text:
        return 0
    return -(-len(text) // _CHARS_PER_TOKEN)
