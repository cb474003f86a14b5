"""
Deterministic text chunking for document indexing.

Chunking is designed to be:
- Deterministic: Same input always produces same chunks
- Boundary-aware: Splits on paragraphs first, then lines, sentences,
  clauses and words, and only cuts inside a word as a last resort
- Overlap-aware: Consecutive chunks share up to `chunk_overlap` characters
  of trailing context
"""
import re
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)

# Default chunking parameters
DEFAULT_CHUNK_SIZE = 800  # characters
DEFAULT_CHUNK_OVERLAP = 150  # characters of overlap between chunks

# Separators in order of semantic significance. The empty string means
# "split into single characters".
DEFAULT_SEPARATORS = (
    "\n\n",  # Paragraphs
    "\n",    # Lines
    ". ",    # Sentences
    "! ",
    "? ",
    "; ",    # Clauses
    ", ",
    " ",     # Words
    "",      # Characters
)


@dataclass
class TextChunk:
    """A chunk of text with its index."""
    index: int
    text: str
    start_char: int
    end_char: int

    @property
    def char_count(self) -> int:
        return len(self.text)


def normalize_whitespace(text: str) -> str:
    """
    Normalize whitespace in text for consistent chunking.

    - Converts all whitespace sequences to single spaces
    - Preserves paragraph breaks (double newlines)
    - Strips leading/trailing whitespace

    Args:
        text: Raw text input

    Returns:
        Normalized text
    """
    # First, normalize line endings
    text = text.replace('\r\n', '\n').replace('\r', '\n')

    # Preserve paragraph breaks by replacing with placeholder
    text = re.sub(r'\n\s*\n', '\n\n', text)

    # Replace multiple spaces/tabs with single space
    text = re.sub(r'[^\S\n]+', ' ', text)

    # Clean up lines
    lines = text.split('\n')
    lines = [line.strip() for line in lines]
    text = '\n'.join(lines)

    # Remove excessive newlines (more than 2 in a row)
    text = re.sub(r'\n{3,}', '\n\n', text)

    return text.strip()


class RecursiveTextSplitter:
    """
    Splits text recursively along a hierarchy of separators.

    Text is cut at the most significant separator present; pieces that are
    still longer than `chunk_size` are cut again with the next separator.
    Small pieces are then merged back together greedily, carrying the tail
    of each emitted chunk (up to `chunk_overlap` characters) into the next.
    Separators stay attached to the end of the piece they terminate, so
    joining the pieces of a chunk reproduces the source text exactly.
    """

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
        separators: Optional[Sequence[str]] = None,
    ):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if chunk_overlap < 0 or chunk_overlap >= chunk_size:
            raise ValueError("chunk_overlap must be in [0, chunk_size)")

        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.separators = list(separators) if separators else list(DEFAULT_SEPARATORS)

    def split(self, text: str) -> List[str]:
        chunks = [c.strip() for c in self._split(text, self.separators)]
        return [c for c in chunks if c]

    def _split(self, text: str, separators: List[str]) -> List[str]:
        # Use the first separator that actually occurs in this text
        separator = ""
        remaining: List[str] = []
        for i, candidate in enumerate(separators):
            if candidate == "" or candidate in text:
                separator = candidate
                remaining = separators[i + 1:]
                break

        chunks: List[str] = []
        pending: List[str] = []

        for piece in self._split_keeping_separator(text, separator):
            if len(piece) <= self.chunk_size:
                pending.append(piece)
                continue

            if pending:
                chunks.extend(self._merge(pending))
                pending = []

            if remaining:
                chunks.extend(self._split(piece, remaining))
            else:
                chunks.extend(self._merge(list(piece)))

        if pending:
            chunks.extend(self._merge(pending))

        return chunks

    @staticmethod
    def _split_keeping_separator(text: str, separator: str) -> List[str]:
        if separator == "":
            return list(text)

        parts = text.split(separator)
        pieces = [part + separator for part in parts[:-1]]
        pieces.append(parts[-1])
        return [p for p in pieces if p]

    def _merge(self, pieces: List[str]) -> List[str]:
        chunks: List[str] = []
        current: List[str] = []
        total = 0

        for piece in pieces:
            if current and total + len(piece) > self.chunk_size:
                chunks.append("".join(current))

                # Keep only the tail that fits the overlap and leaves room
                # for the incoming piece.
                while current and (
                    total > self.chunk_overlap
                    or total + len(piece) > self.chunk_size
                ):
                    total -= len(current.pop(0))

            current.append(piece)
            total += len(piece)

        if current:
            chunks.append("".join(current))

        return chunks


def split_text(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> List[str]:
    """Split text into overlapping chunk strings (no positions)."""
    return RecursiveTextSplitter(chunk_size, chunk_overlap).split(text)


def chunk_text(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
    normalize: bool = True
) -> List[TextChunk]:
    """
    Split text into overlapping chunks.

    This is a deterministic chunking algorithm that:
    - Normalizes whitespace for consistency
    - Splits on the largest semantic boundary that fits chunk_size
    - Overlaps consecutive chunks by up to chunk_overlap characters
    - Produces stable chunk indices and character offsets

    Args:
        text: The text to chunk
        chunk_size: Maximum size for each chunk in characters
        chunk_overlap: Maximum characters shared by consecutive chunks
        normalize: Whether to normalize whitespace first

    Returns:
        List of TextChunk objects
    """
    if normalize:
        text = normalize_whitespace(text)

    if not text.strip():
        logger.warning("Empty text provided for chunking")
        return []

    chunks = []
    search_from = 0

    for index, piece in enumerate(split_text(text, chunk_size, chunk_overlap)):
        start = text.find(piece, search_from)
        if start < 0:
            # Not expected: every chunk is a substring of the source
            start = search_from
        chunks.append(TextChunk(
            index=index,
            text=piece,
            start_char=start,
            end_char=start + len(piece),
        ))
        search_from = start + 1

    logger.info(f"Created {len(chunks)} chunks from {len(text)} characters")

    return chunks
