"""
Core data models for the sfdocpipe pipeline.

These dataclasses are the packets passed between pipeline stages:
FetchResult -> Chunk -> EnrichedChunk -> (EnrichedChunk, vector) -> StoredDocument,
with FailureRecord and RunSummary describing the outcome of a run.
"""

import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import numpy as np


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def document_id(source_url: str, sequence_index: int) -> str:
    """
    Returns the stable storage key of a chunk.

    The key only depends on the source URL and the chunk's position, so
    re-ingesting an unchanged document overwrites the same rows.
    """
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{source_url}#{sequence_index}"))


@dataclass(frozen=True)
class FetchResult:
    """
    The outcome of fetching a single source URL.

    Exactly one of `text` and `error` is set. Use the `success` and `failure`
    constructors rather than building instances by hand.
    """

    source_url: str
    text: Optional[str] = None
    error: Optional[str] = None
    status_code: Optional[int] = None
    fetched_at: datetime = field(default_factory=utc_now)

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(
        cls, source_url: str, text: str, status_code: Optional[int] = None
    ) -> "FetchResult":
        return cls(source_url=source_url, text=text, status_code=status_code)

    @classmethod
    def failure(
        cls, source_url: str, error: str, status_code: Optional[int] = None
    ) -> "FetchResult":
        return cls(source_url=source_url, error=error, status_code=status_code)


@dataclass(frozen=True)
class Chunk:
    """
    A contiguous slice of a document's text.

    Attributes:
        text (str): The chunk content.
        source_url (str): URL of the document the chunk was cut from.
        sequence_index (int): Zero-based position of the chunk in its document.
        start_offset (int): Character offset of `text` in the document.
    """

    text: str
    source_url: str
    sequence_index: int
    start_offset: int


@dataclass(frozen=True)
class EnrichedChunk:
    """A chunk plus the metadata mapping that is stored alongside it."""

    chunk: Chunk
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return self.chunk.text

    @property
    def source_url(self) -> str:
        return self.chunk.source_url

    @property
    def sequence_index(self) -> int:
        return self.chunk.sequence_index

    @property
    def document_id(self) -> str:
        return document_id(self.chunk.source_url, self.chunk.sequence_index)


@dataclass
class StoredDocument:
    """A row of the vector table."""

    id: str
    content: str
    metadata: Dict[str, Any]
    embedding: np.ndarray


@dataclass
class SearchResult:
    """A stored document returned by a similarity search, with its score."""

    document: StoredDocument
    score: float


@dataclass(frozen=True)
class FailureRecord:
    """Describes why a URL (or one of its embedding batches) failed."""

    source_url: str
    stage: str
    cause: str
    attempts: int = 1
    occurred_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["occurred_at"] = self.occurred_at.isoformat()
        return data


class RunStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class RunSummary:
    """Aggregate counters for one pipeline run. Immutable once built."""

    urls_attempted: int
    urls_succeeded: int
    urls_failed: int
    documents_stored: int
    started_at: datetime
    finished_at: datetime
    status: RunStatus = RunStatus.COMPLETED
    cancelled: bool = False
    urls_skipped: int = 0
    failures: Tuple[FailureRecord, ...] = ()

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "urls_attempted": self.urls_attempted,
            "urls_succeeded": self.urls_succeeded,
            "urls_failed": self.urls_failed,
            "urls_skipped": self.urls_skipped,
            "documents_stored": self.documents_stored,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "duration_seconds": self.duration_seconds,
            "status": self.status.value,
            "cancelled": self.cancelled,
            "failures": [failure.to_dict() for failure in self.failures],
        }
