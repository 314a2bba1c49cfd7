"""
Token Utilities

Counting for budget estimates and prompt truncation for the LLM agents.
Diffs are cut on line boundaries so a truncated prompt never ends inside a
hunk line.
"""

from functools import lru_cache
from typing import Optional, Tuple

import tiktoken

FALLBACK_ENCODING = "o200k_base"
TRUNCATION_MARKER = "\n[... diff truncated to fit the token budget ...]"


@lru_cache(maxsize=None)
def _encoding_for(model: Optional[str]) -> tiktoken.Encoding:
    # Non-OpenAI models (Anthropic, Ollama) have no tiktoken entry; the fallback is close enough for budgeting
    if model:
        try:
            return tiktoken.encoding_for_model(model)
        except KeyError:
            pass
    return tiktoken.get_encoding(FALLBACK_ENCODING)


class TokenCounter:
    """Counts and trims text using the encoding of a model."""

    def __init__(self, model: Optional[str] = None):
        self.model = model
        self._encoding = _encoding_for(model)

    def count_tokens(self, text: str) -> int:
        if not text:
            return 0
        return len(self._encoding.encode(text, disallowed_special=()))

    def truncate_to_tokens(self, text: str, max_tokens: int) -> Tuple[str, int]:
        """
        Keep the leading whole lines of `text` that fit in `max_tokens`.

        A marker line is appended when anything was cut; its tokens count
        against the limit. Returns (text, token count).
        """
        total = self.count_tokens(text)
        if total <= max_tokens:
            return text, total

        budget = max_tokens - self.count_tokens(TRUNCATION_MARKER)
        if budget <= 0:
            return "", 0

        kept = []
        used = 0
        for line in text.splitlines(keepends=True):
            cost = self.count_tokens(line)
            if used + cost > budget:
                break
            kept.append(line)
            used += cost

        truncated = "".join(kept).rstrip("\n") + TRUNCATION_MARKER
        return truncated, self.count_tokens(truncated)


@lru_cache(maxsize=1)
def get_default_counter() -> TokenCounter:
    return TokenCounter()
