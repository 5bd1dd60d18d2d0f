"""
Document chunking for long inputs.

Splits on the coarsest separator that works (paragraphs, lines,
sentences, words) so each chunk stays under a word budget, and records
where every chunk sits in the original document.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_WHITESPACE = re.compile(r"\s+")

SEPARATORS = ("\n\n", "\n", ". ", " ")
DEFAULT_CHUNK_SIZE = 500


def split_into_words(text: str) -> list[str]:
    return [w for w in _WHITESPACE.sub(" ", text).strip().split(" ") if w]


def count_words(text: str) -> int:
    return len(split_into_words(text))


@dataclass(frozen=True)
class Chunk:
    content: str
    start_offset: int
    end_offset: int
    index: int


class RecursiveChunker:
    """Recursive separator-based chunker."""

    name = "recursive"

    def __init__(self, max_chunk_size: int = DEFAULT_CHUNK_SIZE):
        if max_chunk_size < 1:
            raise ValueError("max_chunk_size must be positive")
        self.max_chunk_size = max_chunk_size

    def chunk(self, content: str) -> list[Chunk]:
        chunks: list[Chunk] = []
        cursor = 0
        for piece in self._split(content, 0):
            start = content.find(piece, cursor)
            if start == -1:
                # Force-split pieces have collapsed whitespace
                start = cursor
            end = start + len(piece)
            chunks.append(Chunk(piece, start, end, len(chunks)))
            cursor = end
        return chunks

    def _split(self, text: str, sep_index: int) -> list[str]:
        trimmed = text.strip()
        if count_words(trimmed) <= self.max_chunk_size:
            return [trimmed] if trimmed else []

        if sep_index >= len(SEPARATORS):
            return self._force_split(trimmed)
        separator = SEPARATORS[sep_index]
        if separator not in trimmed:
            return self._split(trimmed, sep_index + 1)

        pieces: list[str] = []
        current = ""
        for part in trimmed.split(separator):
            candidate = f"{current}{separator}{part}" if current else part
            if count_words(candidate) <= self.max_chunk_size:
                current = candidate
            else:
                if current:
                    pieces.append(current.strip())
                current = part
        if current:
            pieces.append(current.strip())

        result: list[str] = []
        for piece in pieces:
            if count_words(piece) > self.max_chunk_size:
                result.extend(self._split(piece, sep_index + 1))
            elif piece:
                result.append(piece)
        return result

    def _force_split(self, text: str) -> list[str]:
        words = split_into_words(text)
        return [
            " ".join(words[i:i + self.max_chunk_size])
            for i in range(0, len(words), self.max_chunk_size)
        ]
