"""Cheap token estimation."""

import math

# Approximate bytes per token
BYTES_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Estimate the token count of a piece of text.

    A length heuristic, not a tokenizer: one token per four UTF-8 bytes,
    rounded up.
    """
    if not text:
        return 0
    return math.ceil(len(text.encode("utf-8")) / BYTES_PER_TOKEN)
