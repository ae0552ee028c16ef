"""Paragraph splitting and overlapping token-budget windows."""

import re
from collections.abc import Sequence
from dataclasses import dataclass

from bookrag.config import ConfigurationError

PARAGRAPH_SEPARATOR = "\n\n"

_BLANK_LINES = re.compile(r"\n\s*\n+")


@dataclass(frozen=True)
class Window:
    """A run of consecutive paragraphs ``[start, end_exclusive)``."""

    start: int
    end_exclusive: int
    text: str
    approx_tokens: int


def split_paragraphs(text: str) -> list[str]:
    """Split text into trimmed, non-empty paragraphs on blank lines.

    Args:
        text: Raw chapter text with any line-ending convention.

    Returns:
        Ordered list of paragraphs. Empty input yields an empty list.
    """
    normalized = text.replace("\r\n", "\n").replace("\r", "\n")
    paragraphs = (p.strip() for p in _BLANK_LINES.split(normalized))
    return [p for p in paragraphs if p]


def estimate_tokens(text: str) -> int:
    """Estimate token count for a text string.

    Uses whitespace word count as a stable, language-agnostic proxy. This
    is an approximation only and does not match the tokenizer of any
    particular embedding model.

    Args:
        text: The text to estimate tokens for.

    Returns:
        Estimated token count (0 for blank text).
    """
    trimmed = text.strip()
    if not trimmed:
        return 0
    return len(trimmed.split())


def check_window_bounds(max_tokens: int, overlap_tokens: int) -> None:
    """Validate a token budget and overlap target.

    Raises:
        ConfigurationError: If the windows could not advance with these values.
    """
    if max_tokens <= 0:
        raise ConfigurationError("--max-tokens must be > 0")
    if overlap_tokens < 0:
        raise ConfigurationError("--overlap-tokens must be >= 0")
    if overlap_tokens >= max_tokens:
        raise ConfigurationError(
            "--overlap-tokens must be < --max-tokens (otherwise windows cannot advance)"
        )


def next_window_start(
    token_costs: Sequence[int],
    window_start: int,
    window_end: int,
    overlap_tokens: int,
) -> int:
    """Compute where the window after ``[window_start, window_end)`` begins.

    Walks backward from ``window_end`` summing paragraph token costs until
    the sum reaches ``overlap_tokens`` or the walk hits ``window_start``.
    The result is floored at ``window_start + 1``.

    Args:
        token_costs: Estimated tokens of each paragraph.
        window_start: Start index of the window just emitted.
        window_end: Exclusive end index of the window just emitted.
        overlap_tokens: Overlap target in tokens.

    Returns:
        Start index of the next window, always greater than ``window_start``.
    """
    if overlap_tokens == 0:
        next_start = window_end
    else:
        overlap_start = window_end
        accumulated = 0
        while overlap_start > window_start:
            overlap_start -= 1
            accumulated += token_costs[overlap_start]
            if accumulated >= overlap_tokens:
                break
        next_start = max(overlap_start, window_start + 1)

    assert next_start > window_start, "window start must advance"
    return next_start


def build_windows(
    paragraphs: Sequence[str], max_tokens: int, overlap_tokens: int
) -> list[Window]:
    """Greedily pack paragraphs into overlapping windows under a token budget.

    Every window holds at least one paragraph, even when that paragraph
    alone exceeds ``max_tokens``; oversized paragraphs are not split.

    Args:
        paragraphs: Ordered, non-empty paragraphs of one chapter.
        max_tokens: Approximate token budget per window.
        overlap_tokens: Approximate tokens shared by adjacent windows.

    Returns:
        Windows in strictly increasing ``start`` order.

    Raises:
        ConfigurationError: If the bounds are invalid (checked before any work).
    """
    check_window_bounds(max_tokens, overlap_tokens)

    token_costs = [estimate_tokens(p) for p in paragraphs]
    windows: list[Window] = []
    total = len(paragraphs)
    start = 0

    while start < total:
        end = start
        combined = ""

        while end < total:
            candidate = (
                f"{combined}{PARAGRAPH_SEPARATOR}{paragraphs[end]}" if combined else paragraphs[end]
            )
            tokens = estimate_tokens(candidate)

            # Always include at least one paragraph
            if tokens > max_tokens and end > start:
                break

            combined = candidate
            end += 1

            if tokens >= max_tokens:
                break

        windows.append(
            Window(
                start=start,
                end_exclusive=end,
                text=combined,
                approx_tokens=estimate_tokens(combined),
            )
        )

        if end >= total:
            break

        start = next_window_start(token_costs, start, end, overlap_tokens)

    return windows
