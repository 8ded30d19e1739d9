"""
Chunk text extraction for streamed chat completions.

Upstream gateways stream one JSON object per SSE line, but the object shape
depends on which backend is behind the gateway. The extractor tries a fixed,
ordered list of known shapes and returns the text increment of the first one
that matches, so callers never need to know which dialect is in use.

Strategy order:
1. OpenAI delta:            choices[0].delta.content
2. OpenAI full message:     choices[0].message.content
3. Native candidates:       candidates[0].content.parts
4. Message content parts:   message.content.parts
5. Direct text:             text
6. Direct content:          content
7. Breadth-first search for any `text`/`content` string, 4 levels deep
"""

import logging
from collections import deque
from collections.abc import Callable, Sequence
from typing import Any

logger = logging.getLogger(__name__)

# Root counts as level 0, so levels 0-3 are searched
DEEP_SEARCH_MAX_LEVELS = 4
_DEEP_SEARCH_KEYS = ("text", "content")

Strategy = Callable[[Any], str | None]


def _has_text(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _first(value: Any) -> Any:
    if isinstance(value, list) and value:
        return value[0]
    return None


def _get(value: Any, key: str) -> Any:
    if isinstance(value, dict):
        return value.get(key)
    return None


def _join_parts(parts: Any) -> str | None:
    """Join string parts and `{"text": ...}` parts, dropping blank ones"""
    if not isinstance(parts, list) or not parts:
        return None

    texts = []
    for part in parts:
        if isinstance(part, str):
            text = part
        elif isinstance(part, dict) and isinstance(part.get("text"), str):
            text = part["text"]
        else:
            continue
        if text.strip():
            texts.append(text)

    return "".join(texts) if texts else None


def openai_delta_content(chunk: Any) -> str | None:
    return _get(_get(_first(_get(chunk, "choices")), "delta"), "content")


def openai_message_content(chunk: Any) -> str | None:
    return _get(_get(_first(_get(chunk, "choices")), "message"), "content")


def candidate_parts(chunk: Any) -> str | None:
    candidate = _first(_get(chunk, "candidates"))
    return _join_parts(_get(_get(candidate, "content"), "parts"))


def message_content_parts(chunk: Any) -> str | None:
    return _join_parts(_get(_get(_get(chunk, "message"), "content"), "parts"))


def direct_text(chunk: Any) -> str | None:
    return _get(chunk, "text")


def direct_content(chunk: Any) -> str | None:
    return _get(chunk, "content")


def deep_search(chunk: Any, max_levels: int = DEEP_SEARCH_MAX_LEVELS) -> str | None:
    """
    Breadth-first search for a `text` or `content` key holding a non-blank string.

    Nodes are visited level by level; within a dict, keys are checked in
    insertion order and the first match wins. Lists are containers like dicts
    and count as a level of their own.
    """
    queue: deque[tuple[Any, int]] = deque([(chunk, 0)])

    while queue:
        node, level = queue.popleft()

        if isinstance(node, dict):
            children = []
            for key, value in node.items():
                if key in _DEEP_SEARCH_KEYS and _has_text(value):
                    return value
                children.append(value)
        elif isinstance(node, list):
            children = node
        else:
            continue

        if level + 1 < max_levels:
            for child in children:
                if isinstance(child, (dict, list)):
                    queue.append((child, level + 1))

    return None


DEFAULT_STRATEGIES: tuple[tuple[str, Strategy], ...] = (
    ("openai_delta", openai_delta_content),
    ("openai_message", openai_message_content),
    ("candidate_parts", candidate_parts),
    ("message_content_parts", message_content_parts),
    ("direct_text", direct_text),
    ("direct_content", direct_content),
    ("deep_search", deep_search),
)


class ChunkTextExtractor:
    """
    Pull the text increment out of one decoded stream chunk.

    The first strategy returning a non-blank string wins and later strategies
    are not called. Text is returned as-is, including leading whitespace.
    """

    def __init__(self, strategies: Sequence[tuple[str, Strategy]] | None = None):
        self.strategies = tuple(strategies) if strategies is not None else DEFAULT_STRATEGIES

    def extract(self, chunk: Any) -> str:
        """
        Args:
            chunk: A value produced by json.loads on one SSE payload

        Returns:
            The text increment, or "" when the chunk carries no text
        """
        if not isinstance(chunk, (dict, list)):
            return ""

        for name, strategy in self.strategies:
            text = strategy(chunk)
            if _has_text(text):
                if name == "deep_search":
                    logger.debug("[ChunkExtractor] Text found only by deep search")
                return text

        logger.debug(f"[ChunkExtractor] No text in chunk: {str(chunk)[:200]}")
        return ""


_default_extractor = ChunkTextExtractor()


def extract_text(chunk: Any) -> str:
    """Extract text using the default strategy order"""
    return _default_extractor.extract(chunk)
