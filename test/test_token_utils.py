"""
Unit tests for token counting and prompt truncation.
"""

from conftest import SAMPLE_DIFF
from review_router.utils.token_utils import TRUNCATION_MARKER, TokenCounter, get_default_counter


class TestTokenCounter:

    def setup_method(self):
        self.counter = TokenCounter("gpt-4o-mini")

    def test_count(self):
        assert self.counter.count_tokens("") == 0
        assert self.counter.count_tokens(SAMPLE_DIFF) > 10

    def test_unknown_model_uses_fallback(self):
        counter = TokenCounter("codellama:7b")
        assert counter.count_tokens("def foo(): pass") > 0

    def test_short_text_untouched(self):
        text, tokens = self.counter.truncate_to_tokens(SAMPLE_DIFF, 10_000)

        assert text == SAMPLE_DIFF
        assert tokens == self.counter.count_tokens(SAMPLE_DIFF)

    def test_truncates_on_line_boundary(self):
        text = "".join(f"+line number {i}\n" for i in range(200))

        truncated, tokens = self.counter.truncate_to_tokens(text, 60)

        assert truncated.endswith(TRUNCATION_MARKER)
        body = truncated[: -len(TRUNCATION_MARKER)]
        assert body
        assert all(line.startswith("+line number ") for line in body.split("\n"))
        assert text.startswith(body)

    def test_limit_below_marker(self):
        assert self.counter.truncate_to_tokens("x " * 500, 2) == ("", 0)

    def test_default_counter_is_shared(self):
        assert get_default_counter() is get_default_counter()
