"""
Text chunking components for the sfdocpipe pipeline.

This module splits a fetched document into overlapping windows of bounded
size before embedding. Consecutive chunks of a document share exactly
`chunk_overlap` characters, so dropping that prefix from every chunk but the
first gives back the original text.
"""

from abc import ABC, abstractmethod
import logging
from typing import Iterator, List, Optional, Sequence

from ..utils.data_models import Chunk
from ..utils.errors import ConfigError

logger = logging.getLogger(__name__)

# Tried in order; the first one found near the window end wins.
DEFAULT_SEPARATORS = ["\n\n", "\n", ". ", " "]


def validate_window(max_chunk_size: int, overlap: int):
    """Raises ConfigError unless 0 <= overlap < max_chunk_size."""
    if max_chunk_size <= 0:
        raise ConfigError(
            f"max_chunk_size must be positive, got {max_chunk_size}",
            component="chunker",
        )
    if overlap < 0:
        raise ConfigError(
            f"chunk_overlap must not be negative, got {overlap}", component="chunker"
        )
    if overlap >= max_chunk_size:
        raise ConfigError(
            f"chunk_overlap ({overlap}) must be smaller than "
            f"max_chunk_size ({max_chunk_size})",
            component="chunker",
        )


class ChunkSequence:
    """
    A lazy, restartable sequence of chunks.

    Nothing is computed until iteration, and every iteration recomputes the
    chunks from the same input, so iterating twice yields identical chunks.
    """

    def __init__(
        self,
        text: str,
        source_url: str,
        max_chunk_size: int,
        overlap: int,
        boundary_tolerance: float,
        separators: Sequence[str],
    ):
        self.text = text
        self.source_url = source_url
        self.max_chunk_size = max_chunk_size
        self.overlap = overlap
        self.boundary_tolerance = boundary_tolerance
        self.separators = separators

    def __iter__(self) -> Iterator[Chunk]:
        text = self.text
        n = len(text)
        start = 0
        index = 0
        while start < n:
            hard_end = min(start + self.max_chunk_size, n)
            end = hard_end if hard_end == n else self._snap(start, hard_end)
            yield Chunk(
                text=text[start:end],
                source_url=self.source_url,
                sequence_index=index,
                start_offset=start,
            )
            if end >= n:
                break
            start = end - self.overlap
            index += 1

    def __len__(self) -> int:
        return sum(1 for _ in self)

    def _snap(self, start: int, hard_end: int) -> int:
        """
        Moves the window end back to a natural boundary when one is close.

        The returned end always leaves the window longer than the overlap,
        otherwise the next window would not advance.
        """
        tolerance = int(self.max_chunk_size * self.boundary_tolerance)
        min_end = max(start + self.overlap + 1, hard_end - tolerance)
        if min_end > hard_end:
            return hard_end
        for separator in self.separators:
            lo = max(start, min_end - len(separator))
            idx = self.text.rfind(separator, lo, hard_end)
            if idx != -1 and idx + len(separator) >= min_end:
                return idx + len(separator)
        return hard_end


def split_text(
    text: str,
    source_url: str,
    max_chunk_size: int,
    overlap: int,
    boundary_tolerance: float = 0.2,
    separators: Optional[Sequence[str]] = None,
) -> ChunkSequence:
    """
    Splits text into overlapping chunks.

    Args:
        text (str): The document text.
        source_url (str): The URL the text came from; copied onto every chunk.
        max_chunk_size (int): Maximum chunk length in characters.
        overlap (int): Characters shared by consecutive chunks.
        boundary_tolerance (float): Fraction of the window, counted back from
            the hard cut, in which a separator may end the chunk early.
        separators (Sequence[str]): Boundaries to prefer, highest priority first.

    Returns:
        ChunkSequence: The chunks, computed lazily.

    Raises:
        ConfigError: If overlap >= max_chunk_size, whatever the text.
    """
    validate_window(max_chunk_size, overlap)
    return ChunkSequence(
        text=text,
        source_url=source_url,
        max_chunk_size=max_chunk_size,
        overlap=overlap,
        boundary_tolerance=boundary_tolerance,
        separators=list(separators) if separators is not None else DEFAULT_SEPARATORS,
    )


def reconstruct(chunks: Sequence[Chunk], overlap: int) -> str:
    """Joins chunks of one document back into its text."""
    ordered = sorted(chunks, key=lambda c: c.sequence_index)
    if not ordered:
        return ""
    return ordered[0].text + "".join(c.text[overlap:] for c in ordered[1:])


class BaseChunker(ABC):
    """Abstract base class for all chunker components."""

    @abstractmethod
    def split(self, text: str, source_url: str) -> ChunkSequence:
        """
        Splits a document's text into an ordered sequence of chunks.

        Args:
            text (str): The document text.
            source_url (str): The URL of the document.

        Returns:
            ChunkSequence: The chunks in sequence_index order.
        """
        pass


class SlidingWindowChunker(BaseChunker):
    """
    A chunker that slides a fixed-size window over the text.

    The window advances by max_chunk_size - chunk_overlap. When a paragraph,
    line, sentence or word boundary lies close to the hard cut, the chunk ends
    there instead so words are not severed.
    """

    def __init__(
        self,
        max_chunk_size: int = 1500,
        chunk_overlap: int = 200,
        boundary_tolerance: float = 0.2,
        separators: Optional[List[str]] = None,
    ):
        """
        Initializes the chunker with a specific chunk size and overlap.

        Raises:
            ConfigError: If chunk_overlap >= max_chunk_size.
        """
        validate_window(max_chunk_size, chunk_overlap)
        self.max_chunk_size = max_chunk_size
        self.chunk_overlap = chunk_overlap
        self.boundary_tolerance = boundary_tolerance
        self.separators = separators
        logger.debug(
            f"Initialized SlidingWindowChunker with size={max_chunk_size}, overlap={chunk_overlap}"
        )

    def split(self, text: str, source_url: str) -> ChunkSequence:
        if not text:
            logger.warning(f"Document from source '{source_url}' is empty.")
        return split_text(
            text,
            source_url,
            self.max_chunk_size,
            self.chunk_overlap,
            boundary_tolerance=self.boundary_tolerance,
            separators=self.separators,
        )
