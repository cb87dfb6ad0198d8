"""Tests for inline <think> tag splitting."""

import pytest

from gateway.conversion.think_tags import ThinkTagSplitter, split_think_tags


def _feed_all(chunks):
    splitter = ThinkTagSplitter()
    content, reasoning = [], []
    for chunk in chunks:
        c, r = splitter.feed(chunk)
        content.append(c)
        reasoning.append(r)
    c, r = splitter.flush()
    content.append(c)
    reasoning.append(r)
    return "".join(content), "".join(reasoning)


@pytest.mark.unit
class TestThinkTagSplitter:
    def test_plain_text_passes_through(self):
        assert split_think_tags("hello world") == ("hello world", "")

    def test_complete_message(self):
        assert split_think_tags("<think>plan</think>answer") == ("answer", "plan")

    @pytest.mark.parametrize(
        "chunks",
        [
            ["<thi", "nk>plan</th", "ink>answer"],
            ["<", "t", "h", "i", "n", "k", ">", "plan", "<", "/think>", "answer"],
            ["<think>pl", "an</think", ">ans", "wer"],
        ],
    )
    def test_tags_split_across_chunks(self, chunks):
        assert _feed_all(chunks) == ("answer", "plan")

    def test_partial_tag_is_held_until_decided(self):
        splitter = ThinkTagSplitter()

        assert splitter.feed("a <thi") == ("a ", "")
        assert splitter.feed("s is text") == ("<this is text", "")

    def test_unterminated_reasoning_is_flushed_as_reasoning(self):
        assert _feed_all(["<think>still thinking </th"]) == ("", "still thinking </th")

    def test_lone_angle_bracket_at_end_is_flushed_as_content(self):
        assert _feed_all(["1 <"]) == ("1 <", "")

    def test_multiple_think_blocks(self):
        assert split_think_tags("<think>a</think>x<think>b</think>y") == ("xy", "ab")
