"""
Context Budget
==============

The completion request has a fixed token budget shared by three inputs
that compete for it:

    total_tokens
      - system_reserve            system prompt allowance
      - retrieved_tokens          knowledge actually retrieved this turn
      - current_message_reserve   the user's new message
      = history allowance         (never below zero)

Token counts are estimates: ceil(characters / 4). estimate_tokens() is the
only place that estimate is made; every component that needs a token
figure imports it from here.
"""

import math
from dataclasses import dataclass

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str | None) -> int:
    """Estimate the token count of a string: ceil(len / 4)."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def allocate(
    total_tokens: int,
    system_reserve: int,
    retrieved_tokens: int,
    current_message_reserve: int
) -> int:
    """
    Compute the history allowance, clamped at zero.

    Example:
        allocate(28000, 2000, 1200, 500)  # -> 24300
    """
    remaining = total_tokens - system_reserve - retrieved_tokens - current_message_reserve
    return max(0, remaining)


@dataclass(frozen=True)
class Budget:
    """
    The fixed part of the token split.

    Attributes:
        total_tokens: Everything the request may use (excluding the answer)
        system_reserve: Allowance for the system prompt
        knowledge_cap: Upper bound on retrieved knowledge
        current_message_reserve: Allowance for the new user message
    """
    total_tokens: int
    system_reserve: int
    knowledge_cap: int
    current_message_reserve: int

    def history_allowance(self, retrieved_tokens: int) -> int:
        """History allowance once `retrieved_tokens` of knowledge are in."""
        return allocate(
            self.total_tokens,
            self.system_reserve,
            retrieved_tokens,
            self.current_message_reserve,
        )
