import pytest

from sfdocpipe.components.chunkers import (
    SlidingWindowChunker,
    reconstruct,
    split_text,
)
from sfdocpipe.utils.errors import ConfigError

URL = "https://developer.salesforce.com/docs/apexcode/"

PROSE = (
    "Apex is a strongly typed, object-oriented programming language.\n\n"
    "It allows developers to execute flow and transaction control statements "
    "on the Salesforce Platform server, in conjunction with calls to the API. "
    "Using syntax that looks like Java and acts like database stored procedures, "
    "Apex enables developers to add business logic to most system events.\n"
    "Apex code can be initiated by Web service requests and from triggers on objects."
) * 3


@pytest.fixture
def sample_text():
    return "This is a test sentence for our amazing chunker. It is a long sentence."


def test_sliding_window_chunker(sample_text):
    """Chunks respect the size limit and prefer word boundaries."""
    chunker = SlidingWindowChunker(max_chunk_size=30, chunk_overlap=5)
    chunks = list(chunker.split(sample_text, "test.txt"))
    assert len(chunks) > 1
    assert chunks[0].text == "This is a test sentence for "
    assert all(len(chunk.text) <= 30 for chunk in chunks)
    assert chunks[0].source_url == "test.txt"
    assert [chunk.sequence_index for chunk in chunks] == list(range(len(chunks)))


@pytest.mark.parametrize(
    "size, overlap",
    [(10, 0), (10, 9), (30, 5), (100, 20), (250, 200), (1500, 200), (7, 3)],
)
def test_reconstruction_is_exact(size, overlap):
    chunks = list(split_text(PROSE, URL, size, overlap))
    assert reconstruct(chunks, overlap) == PROSE


@pytest.mark.parametrize("size, overlap", [(30, 5), (100, 20), (400, 50)])
def test_consecutive_chunks_overlap_by_configured_amount(size, overlap):
    chunks = list(split_text(PROSE, URL, size, overlap))
    for previous, current in zip(chunks, chunks[1:]):
        assert current.start_offset == previous.start_offset + len(previous.text) - overlap
        assert previous.text[-overlap:] == current.text[:overlap]
        assert PROSE[current.start_offset : current.start_offset + len(current.text)] == current.text


@pytest.mark.parametrize("overlap", [30, 31, 100])
@pytest.mark.parametrize("text", ["", "short", PROSE])
def test_overlap_not_smaller_than_size_is_config_error(text, overlap):
    with pytest.raises(ConfigError):
        split_text(text, URL, 30, overlap)


def test_chunker_rejects_invalid_window():
    with pytest.raises(ConfigError):
        SlidingWindowChunker(max_chunk_size=100, chunk_overlap=100)
    with pytest.raises(ConfigError):
        SlidingWindowChunker(max_chunk_size=0, chunk_overlap=0)
    with pytest.raises(ConfigError):
        SlidingWindowChunker(max_chunk_size=10, chunk_overlap=-1)


def test_split_is_lazy_and_restartable():
    sequence = split_text(PROSE, URL, 120, 20)
    first = list(sequence)
    second = list(sequence)
    assert first == second
    assert len(sequence) == len(first)


def test_prefers_paragraph_boundary_near_cut():
    text = "a" * 90 + "\n\n" + "b" * 50
    chunks = list(split_text(text, URL, 100, 10))
    assert chunks[0].text == "a" * 90 + "\n\n"
    assert reconstruct(chunks, 10) == text


def test_hard_cut_without_boundary():
    text = "x" * 250
    chunks = list(split_text(text, URL, 100, 20))
    assert [len(c.text) for c in chunks] == [100, 100, 90]
    assert [c.start_offset for c in chunks] == [0, 80, 160]


def test_empty_text_yields_no_chunks():
    chunker = SlidingWindowChunker(max_chunk_size=100, chunk_overlap=10)
    assert list(chunker.split("", URL)) == []


def test_short_text_is_single_chunk():
    chunks = list(split_text("tiny document", URL, 1500, 200))
    assert len(chunks) == 1
    assert chunks[0].text == "tiny document"
    assert chunks[0].start_offset == 0
