"""
Tests for token-budgeted chunking.

Tests cover:
- Token estimation heuristic
- Single-chunk and multi-chunk splitting
- Lossless reassembly and per-chunk budget bounds
- Configuration edge cases (prompt larger than budget)
- Selection widening and request/response composition
"""

import pytest

from ai_auditor.chunking import (
    chunk_content,
    compose_exchange,
    estimate_tokens,
    extract_highlighted_portion,
)


class TestEstimateTokens:
    """Tests for the ~4 chars per token heuristic."""

    @pytest.mark.parametrize(
        "text,expected",
        [(None, 0), ("", 0), ("a", 1), ("abcd", 1), ("abcde", 2), ("x" * 400, 100)],
    )
    def test_ceil_of_length_over_four(self, text, expected):
        """Estimate is ceil(len / 4)."""
        assert estimate_tokens(text) == expected


class TestChunkContent:
    """Tests for chunk_content()."""

    def test_empty_content_yields_no_chunks(self):
        """Empty or missing content produces an empty sequence."""
        assert chunk_content("", "prompt", 100) == []
        assert chunk_content(None, "prompt", 100) == []

    def test_small_content_is_single_chunk(self):
        """Content within the available budget is emitted whole."""
        chunks = chunk_content("GET / HTTP/1.1", "Find bugs.", 100)

        assert len(chunks) == 1
        assert chunks[0].index == 0
        assert chunks[0].content == "GET / HTTP/1.1"

    def test_content_exactly_at_budget_is_single_chunk(self):
        """40 chars = 10 tokens fits a 10 token budget exactly."""
        chunks = chunk_content("x" * 40, "", 10)

        assert len(chunks) == 1
        assert len(chunks[0]) == 40

    def test_prompt_exhausting_budget_yields_nothing(self):
        """A prompt at or over the budget leaves no room for content."""
        assert chunk_content("content", "x" * 400, 100) == []
        assert chunk_content("content", "x" * 800, 100) == []

    def test_non_positive_budget_yields_nothing(self):
        """A zero or negative budget is a configuration error upstream."""
        assert chunk_content("content", "", 0) == []
        assert chunk_content("content", "", -5) == []

    def test_large_request_scenario(self):
        """40,000 chars with a 400 char prompt and 8192 budget -> 32,368 + 7,632."""
        content = "a" * 40_000
        chunks = chunk_content(content, "p" * 400, 8192)

        assert len(chunks) == 2
        assert len(chunks[0]) == (8192 - 100) * 4
        assert len(chunks[1]) == 7_632

    @pytest.mark.parametrize("length", [41, 99, 100, 101, 1_000, 12_345])
    def test_chunks_reassemble_to_original(self, length):
        """Concatenating chunks in order reproduces the content."""
        content = "".join(chr(ord("a") + i % 26) for i in range(length))
        chunks = chunk_content(content, "Find bugs.", 13)

        assert "".join(c.content for c in chunks) == content
        assert [c.index for c in chunks] == list(range(len(chunks)))

    @pytest.mark.parametrize("budget", [5, 13, 64, 257])
    def test_every_chunk_fits_available_budget(self, budget):
        """Each chunk's estimate stays within budget minus prompt."""
        prompt = "Find bugs."
        available = budget - estimate_tokens(prompt)
        chunks = chunk_content("z" * 5_000, prompt, budget)

        assert chunks
        assert all(estimate_tokens(c.content) <= available for c in chunks)

    def test_calls_are_independent(self):
        """Chunking is stateless: same inputs give the same output."""
        first = chunk_content("q" * 1_000, "", 50)
        second = chunk_content("q" * 1_000, "", 50)

        assert first == second


class TestSelections:
    """Tests for selected-portion scans."""

    def test_selection_widened_to_full_lines(self):
        """A partial selection expands to the lines it touches."""
        content = "line1\nline2\nline3"

        assert extract_highlighted_portion(content, 7, 9) == "line2"
        assert extract_highlighted_portion(content, 3, 8) == "line1\nline2"

    def test_invalid_selection_returns_everything(self):
        """Out-of-range or empty selections fall back to the whole content."""
        content = "line1\nline2"

        assert extract_highlighted_portion(content, -1, 3) == content
        assert extract_highlighted_portion(content, 4, 4) == content
        assert extract_highlighted_portion(content, 2, 99) == content

    def test_compose_exchange(self):
        """Request and response are separated by a blank line."""
        assert compose_exchange("GET / HTTP/1.1", "HTTP/1.1 200 OK") == "GET / HTTP/1.1\n\nHTTP/1.1 200 OK"
        assert compose_exchange("GET / HTTP/1.1", None) == "GET / HTTP/1.1\n\n"
