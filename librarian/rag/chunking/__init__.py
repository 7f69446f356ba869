"""Document chunking.

Splits normalized text into overlapping, retrieval-sized windows. Sizes are
expressed in tokens and converted to characters with a fixed estimate of four
characters per token. Offsets always index the input text, so a chunk's text
is exactly ``text[start_char:end_char]``.
"""

import math
import re
from collections.abc import Iterator
from dataclasses import dataclass, field

CHARS_PER_TOKEN = 4

_SENTENCE_END = re.compile(r"[.!?…][\"'»)\]]*\s+")


def estimate_tokens(text: str) -> int:
    """Rough token count used for sizing decisions."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


@dataclass
class Chunk:
    """A document chunk ready for embedding."""

    index: int
    text: str
    start_char: int
    end_char: int
    token_count: int
    metadata: dict = field(default_factory=dict)


class TokenWindowChunker:
    """Sliding-window chunker with overlap and optional boundary snapping.

    When `preserve_structure` is on, each window end is pulled back to the
    last paragraph break inside the final part of the window, else the last
    sentence end, else the last line break, else the last space. Without a
    boundary (or with the flag off) the window is cut hard.
    """

    def __init__(
        self,
        chunk_size: int = 1000,
        chunk_overlap: int = 200,
        preserve_structure: bool = True,
        boundary_tolerance: float = 0.2,
    ):
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if chunk_overlap < 0:
            raise ValueError(f"chunk_overlap must not be negative, got {chunk_overlap}")
        if chunk_overlap >= chunk_size:
            raise ValueError(
                f"chunk_overlap ({chunk_overlap}) must be smaller than chunk_size ({chunk_size})"
            )

        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.preserve_structure = preserve_structure
        self.size_chars = chunk_size * CHARS_PER_TOKEN
        self.overlap_chars = chunk_overlap * CHARS_PER_TOKEN
        self.tolerance_chars = max(1, int(self.size_chars * boundary_tolerance))

    def iter_chunks(self, text: str, metadata: dict | None = None) -> Iterator[Chunk]:
        """Yield chunks lazily, in order."""
        if not text.strip():
            return

        length = len(text)
        start = 0
        index = 0

        while True:
            end = min(start + self.size_chars, length)
            if self.preserve_structure and end < length:
                end = self._snap_to_boundary(text, start, end)

            chunk_text = text[start:end]
            yield Chunk(
                index=index,
                text=chunk_text,
                start_char=start,
                end_char=end,
                token_count=estimate_tokens(chunk_text),
                metadata=dict(metadata or {}),
            )

            if end >= length:
                break

            start = max(end - self.overlap_chars, start + 1)
            index += 1

    def chunk(self, text: str, metadata: dict | None = None) -> list[Chunk]:
        """Split text into overlapping chunks."""
        return list(self.iter_chunks(text, metadata))

    def _snap_to_boundary(self, text: str, start: int, end: int) -> int:
        # The cut must leave room for the overlap, otherwise the window would
        # barely advance
        search_from = max(end - self.tolerance_chars, start + self.overlap_chars + 1)
        if search_from >= end:
            return end

        pos = text.rfind("\n\n", search_from, end)
        if pos != -1:
            return pos + 2

        last_sentence = None
        for match in _SENTENCE_END.finditer(text, search_from, end):
            last_sentence = match
        if last_sentence is not None:
            return last_sentence.end()

        pos = text.rfind("\n", search_from, end)
        if pos != -1:
            return pos + 1

        pos = text.rfind(" ", search_from, end)
        if pos != -1:
            return pos + 1

        return end


def expected_chunk_count(text_length: int, chunk_size: int, chunk_overlap: int) -> int:
    """Number of chunks hard cuts produce for a text of `text_length` chars."""
    if text_length <= 0:
        return 0
    size = chunk_size * CHARS_PER_TOKEN
    step = (chunk_size - chunk_overlap) * CHARS_PER_TOKEN
    if text_length <= size:
        return 1
    return math.ceil((text_length - chunk_overlap * CHARS_PER_TOKEN) / step)
