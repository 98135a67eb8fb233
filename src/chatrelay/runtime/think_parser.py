"""Incremental extraction of ``<think>...</think>`` reasoning spans.

Reasoning models interleave their chain of thought with the answer using
think tags. ``ThinkTagParser`` consumes text chunk by chunk, returns only
the visible part of each chunk, and collects the think spans on a side
channel. Tags may be split across chunk boundaries; a possible partial tag
is held back until the next chunk decides it.

An unterminated think block is not dropped: ``finish()`` hands it back as
trailing visible text.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

OPEN_TAG = "<think>"
CLOSE_TAG = "</think>"
REASONING_SEPARATOR = "\n---\n"


class ThinkState(StrEnum):
    OUTSIDE = "outside"
    INSIDE_THINK = "inside_think"


@dataclass(frozen=True)
class ThinkSplit:
    content: str
    reasoning: str


def _partial_tag_len(buffer: str, tag: str) -> int:
    """Length of the longest buffer suffix that is a proper prefix of ``tag``."""
    for size in range(min(len(tag) - 1, len(buffer)), 0, -1):
        if tag.startswith(buffer[-size:]):
            return size
    return 0


class ThinkTagParser:
    """Two-state parser splitting visible text from think spans."""

    def __init__(self) -> None:
        self._state = ThinkState.OUTSIDE
        self._pending = ""
        self._current_span: list[str] = []
        self._spans: list[str] = []
        self._external: list[str] = []
        self._visible: list[str] = []
        self._unterminated = False
        self._finished = False

    @property
    def state(self) -> ThinkState:
        return self._state

    @property
    def unterminated(self) -> bool:
        """True once ``finish()`` recovered an unclosed think block."""
        return self._unterminated

    @property
    def content(self) -> str:
        return "".join(self._visible)

    @property
    def reasoning(self) -> str:
        parts: list[str] = []
        external = "".join(self._external).strip()
        if external:
            parts.append(external)
        parts.extend(s.strip() for s in self._spans if s.strip())
        return REASONING_SEPARATOR.join(parts)

    def add_reasoning(self, text: str) -> None:
        """Record reasoning the provider already separated from the answer."""
        if text:
            self._external.append(text)

    def feed(self, chunk: str) -> str:
        """Consume a chunk and return the text that is visible now."""
        if self._finished:
            raise RuntimeError("ThinkTagParser.feed() called after finish()")
        if not chunk:
            return ""

        buffer = self._pending + chunk
        self._pending = ""
        emitted: list[str] = []

        while buffer:
            if self._state is ThinkState.OUTSIDE:
                idx = buffer.find(OPEN_TAG)
                if idx >= 0:
                    emitted.append(buffer[:idx])
                    buffer = buffer[idx + len(OPEN_TAG):]
                    self._state = ThinkState.INSIDE_THINK
                    self._current_span = []
                    continue
                hold = _partial_tag_len(buffer, OPEN_TAG)
                emitted.append(buffer[: len(buffer) - hold])
                self._pending = buffer[len(buffer) - hold:]
                break

            idx = buffer.find(CLOSE_TAG)
            if idx >= 0:
                self._current_span.append(buffer[:idx])
                self._spans.append("".join(self._current_span))
                self._current_span = []
                buffer = buffer[idx + len(CLOSE_TAG):]
                self._state = ThinkState.OUTSIDE
                continue
            hold = _partial_tag_len(buffer, CLOSE_TAG)
            self._current_span.append(buffer[: len(buffer) - hold])
            self._pending = buffer[len(buffer) - hold:]
            break

        visible = "".join(emitted)
        if visible:
            self._visible.append(visible)
        return visible

    def finish(self) -> str:
        """Flush held-back text at end of stream and return it."""
        if self._finished:
            return ""
        self._finished = True

        if self._state is ThinkState.OUTSIDE:
            tail = self._pending
        else:
            tail = "".join(self._current_span) + self._pending
            self._current_span = []
            self._state = ThinkState.OUTSIDE
            self._unterminated = bool(tail)
        self._pending = ""

        if tail:
            self._visible.append(tail)
        return tail


def split_reasoning(text: str) -> ThinkSplit:
    """Split a complete response into visible content and reasoning."""
    parser = ThinkTagParser()
    parser.feed(text)
    parser.finish()
    return ThinkSplit(content=parser.content, reasoning=parser.reasoning)
