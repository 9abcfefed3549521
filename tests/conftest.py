"""
Configuration file for pytest.

This file adds the project's root directory to the Python path so that
pytest can find the 'sfdocpipe' package without needing to install it,
and provides offline stand-ins for the network-facing components.
"""

import sys
from pathlib import Path

import pytest

# Add the project root directory to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from sfdocpipe.components.fetchers import BaseFetcher
from sfdocpipe.components.embedders import HashEmbedder
from sfdocpipe.components.enrichers import MetadataEnricher
from sfdocpipe.components.chunkers import SlidingWindowChunker
from sfdocpipe.components.reporters import ErrorReporter
from sfdocpipe.components.stores import InMemoryVectorStore
from sfdocpipe.core.pipeline import Pipeline, PipelineComponents
from sfdocpipe.utils.config_models import PipelineSettings
from sfdocpipe.utils.data_models import FetchResult
from sfdocpipe.utils.errors import FetchError

DIMENSIONS = 8

APEX_URL = "https://developer.salesforce.com/docs/atlas.en-us.apexcode.meta/apexcode/"
BAD_URL = "https://bad.invalid/404"


class FakeFetcher(BaseFetcher):
    """Serves pages from a dict; unknown URLs fail with HTTP 404."""

    def __init__(self, pages):
        self.pages = dict(pages)
        self.calls = []

    def fetch_or_raise(self, url):
        self.calls.append(url)
        if url in self.pages:
            return FetchResult.success(url, self.pages[url], status_code=200)
        raise FetchError(f"HTTP 404 for '{url}'", url=url, status_code=404)

    def test_connection(self, url):
        pass


def long_text(words=600, prefix="apex"):
    return " ".join(f"{prefix}{i}" for i in range(words))


@pytest.fixture
def pages():
    return {APEX_URL: long_text()}


@pytest.fixture
def store():
    return InMemoryVectorStore(dimensions=DIMENSIONS)


@pytest.fixture
def make_pipeline(store):
    """Builds a pipeline over fake fetcher, hash embedder and in-memory store."""

    def _make(pages, urls=None, fetcher=None, embedder=None, reporter=None,
              state_manager=None, **settings):
        settings = {
            "max_chunk_size": 300,
            "chunk_overlap": 50,
            "embedding_batch_size": 4,
            "embedding_dimensions": DIMENSIONS,
            "retry_attempts": 3,
            "retry_backoff": 0.0,
            "parallelism": 2,
            **settings,
        }
        pipeline_settings = PipelineSettings(**settings)
        components = PipelineComponents(
            fetcher=fetcher or FakeFetcher(pages),
            chunker=SlidingWindowChunker(
                max_chunk_size=pipeline_settings.max_chunk_size,
                chunk_overlap=pipeline_settings.chunk_overlap,
            ),
            enricher=MetadataEnricher(),
            embedder=embedder
            or HashEmbedder(
                dimensions=DIMENSIONS,
                max_batch_size=pipeline_settings.embedding_batch_size,
            ),
            store=store,
            reporter=reporter or ErrorReporter(),
            state_manager=state_manager,
        )
        return Pipeline(
            urls if urls is not None else list(pages),
            components,
            pipeline_settings,
            sleep=lambda seconds: None,
        )

    return _make
