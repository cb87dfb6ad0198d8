"""Split inline ``<think>...</think>`` markers into a reasoning channel.

Some upstreams stream their chain of thought inline in ``delta.content``.
The tags can straddle chunk boundaries (``"<thi"`` then ``"nk>"``), so the
splitter is a two-state machine fed one chunk at a time. A trailing partial
tag is held back until the next chunk decides what it is.
"""

from __future__ import annotations

OPEN_TAG = "<think>"
CLOSE_TAG = "</think>"


def _partial_tag_suffix(text: str, tag: str) -> int:
    """Length of the longest suffix of ``text`` that is a proper prefix of ``tag``."""
    for size in range(min(len(text), len(tag) - 1), 0, -1):
        if text.endswith(tag[:size]):
            return size
    return 0


class ThinkTagSplitter:
    """Stateful splitter. ``inside`` is True between an open and close tag."""

    def __init__(self) -> None:
        self.inside = False
        self._pending = ""

    def feed(self, chunk: str) -> tuple[str, str]:
        """Consume one chunk and return ``(content, reasoning)`` ready to emit."""
        text = self._pending + chunk
        self._pending = ""
        content: list[str] = []
        reasoning: list[str] = []

        while text:
            tag = CLOSE_TAG if self.inside else OPEN_TAG
            target = reasoning if self.inside else content
            idx = text.find(tag)
            if idx >= 0:
                target.append(text[:idx])
                text = text[idx + len(tag) :]
                self.inside = not self.inside
                continue

            held = _partial_tag_suffix(text, tag)
            target.append(text[: len(text) - held])
            self._pending = text[len(text) - held :]
            break

        return "".join(content), "".join(reasoning)

    def flush(self) -> tuple[str, str]:
        """Release any held-back text at end of stream."""
        pending, self._pending = self._pending, ""
        if self.inside:
            return "", pending
        return pending, ""


def split_think_tags(text: str) -> tuple[str, str]:
    """One-shot split of a complete (non-streamed) message."""
    splitter = ThinkTagSplitter()
    content, reasoning = splitter.feed(text)
    tail_content, tail_reasoning = splitter.flush()
    return content + tail_content, reasoning + tail_reasoning
