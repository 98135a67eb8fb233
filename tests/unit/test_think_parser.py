"""Tests for incremental <think> span extraction."""

from __future__ import annotations

import pytest

from chatrelay.runtime.think_parser import (
    REASONING_SEPARATOR,
    ThinkState,
    ThinkTagParser,
    split_reasoning,
)


def _feed_all(chunks: list[str]) -> tuple[list[str], ThinkTagParser]:
    parser = ThinkTagParser()
    emitted = [parser.feed(c) for c in chunks]
    emitted.append(parser.finish())
    return [e for e in emitted if e], parser


class TestSplitReasoning:
    def test_visible_excludes_think_span(self):
        split = split_reasoning("A<think>B</think>C")
        assert split.content == "AC"
        assert split.reasoning == "B"

    def test_plain_text_passes_through(self):
        split = split_reasoning("just an answer")
        assert split.content == "just an answer"
        assert split.reasoning == ""

    def test_multiple_spans_joined_with_separator(self):
        split = split_reasoning("<think>one</think>X<think>two</think>Y")
        assert split.content == "XY"
        assert split.reasoning == f"one{REASONING_SEPARATOR}two"

    def test_blank_span_ignored_in_reasoning(self):
        split = split_reasoning("<think>  </think>answer")
        assert split.content == "answer"
        assert split.reasoning == ""

    def test_unterminated_span_kept_as_trailing_text(self):
        split = split_reasoning("Answer<think>half a thought")
        assert split.content == "Answerhalf a thought"
        assert split.reasoning == ""


class TestIncrementalParsing:
    def test_tag_split_across_chunks(self):
        emitted, parser = _feed_all(["A<thi", "nk>B</th", "ink>C"])
        assert "".join(emitted) == "AC"
        assert parser.reasoning == "B"

    def test_partial_tag_held_back_until_decided(self):
        parser = ThinkTagParser()
        assert parser.feed("Hello <") == "Hello "
        assert parser.feed("b>") == "<b>"

    def test_text_inside_think_never_emitted(self):
        parser = ThinkTagParser()
        assert parser.feed("<think>secret") == ""
        assert parser.state is ThinkState.INSIDE_THINK
        assert parser.feed(" more") == ""
        assert parser.feed("</think>visible") == "visible"
        assert parser.state is ThinkState.OUTSIDE

    def test_chunks_emitted_in_order(self):
        emitted, parser = _feed_all(["Hel", "lo", " world"])
        assert emitted == ["Hel", "lo", " world"]
        assert parser.content == "Hello world"

    def test_unterminated_block_flushed_on_finish(self):
        parser = ThinkTagParser()
        parser.feed("ok <think>never closed")
        tail = parser.finish()
        assert tail == "never closed"
        assert parser.unterminated is True
        assert parser.content == "ok never closed"

    def test_held_partial_tag_flushed_on_finish(self):
        parser = ThinkTagParser()
        assert parser.feed("value <thi") == "value "
        assert parser.finish() == "<thi"
        assert parser.unterminated is False

    def test_finish_is_idempotent(self):
        parser = ThinkTagParser()
        parser.feed("x")
        parser.finish()
        assert parser.finish() == ""

    def test_feed_after_finish_raises(self):
        parser = ThinkTagParser()
        parser.finish()
        with pytest.raises(RuntimeError):
            parser.feed("late")

    def test_external_reasoning_comes_first(self):
        parser = ThinkTagParser()
        parser.add_reasoning("from sdk")
        parser.feed("<think>inline</think>answer")
        parser.finish()
        assert parser.reasoning == f"from sdk{REASONING_SEPARATOR}inline"
