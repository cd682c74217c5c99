import math
from dataclasses import dataclass
from typing import List, Sequence

from ..errors import InvalidInputError

DEFAULT_SEPARATORS = ("\n\n", "\n", ". ", " ", "")


def _split_on(text: str, separator: str) -> List[str]:
    # str.split refuses an empty separator; fall back to single characters
    if separator == "":
        return list(text)
    return text.split(separator)


def _split_recursive(text: str, separators: Sequence[str], chunk_size: int) -> List[str]:
    if not separators or len(text) <= chunk_size:
        return [text]

    separator, remaining = separators[0], separators[1:]
    pieces = _split_on(text, separator)
    if len(pieces) == 1:
        return _split_recursive(text, remaining, chunk_size)

    chunks: List[str] = []
    buf = ""
    for piece in pieces:
        candidate = buf + separator + piece if buf else piece
        if len(candidate) <= chunk_size:
            buf = candidate
            continue

        if buf:
            chunks.append(buf)
        if len(piece) > chunk_size:
            chunks.extend(_split_recursive(piece, remaining, chunk_size))
            buf = ""
        else:
            buf = piece

    if buf:
        chunks.append(buf)
    return chunks


def apply_overlap(chunks: List[str], chunk_overlap: int) -> List[str]:
    """Prefix every chunk but the first with the tail of its predecessor.

    The tail is taken from the predecessor as it was before any overlap was
    added, so overlap never cascades.
    """
    if chunk_overlap <= 0 or len(chunks) <= 1:
        return list(chunks)
    out = [chunks[0]]
    for prev, chunk in zip(chunks, chunks[1:]):
        out.append(prev[-chunk_overlap:] + chunk)
    return out


def split_text(
    text: str,
    chunk_size: int,
    chunk_overlap: int = 0,
    separators: Sequence[str] = DEFAULT_SEPARATORS,
) -> List[str]:
    """Split text into overlapping windows of at most ``chunk_size`` characters.

    Separators are tried in order; a separator that lands on a chunk boundary
    is dropped. Overlap larger than the chunk size is accepted as is.
    """
    if chunk_size <= 0:
        raise InvalidInputError("chunk_size must be positive")
    if chunk_overlap < 0:
        raise InvalidInputError("chunk_overlap must not be negative")
    chunks = _split_recursive(text, tuple(separators), chunk_size)
    return apply_overlap(chunks, chunk_overlap)


@dataclass(frozen=True)
class TextChunker:
    chunk_size: int = 1000
    chunk_overlap: int = 200
    separators: Sequence[str] = DEFAULT_SEPARATORS

    def split(self, text: str) -> List[str]:
        return split_text(text, self.chunk_size, self.chunk_overlap, self.separators)

    def estimate_chunks(self, text: str) -> int:
        step = self.chunk_size - self.chunk_overlap
        if step <= 0:
            raise InvalidInputError("chunk_overlap must be smaller than chunk_size to estimate")
        return math.ceil(len(text) / step)
