import pytest
from unittest.mock import patch

from sfdocpipe.core.factory import (
    build_component,
    FETCHER_REGISTRY,
    CHUNKER_REGISTRY,
    EMBEDDER_REGISTRY,
    STORE_REGISTRY,
    NOTIFIER_REGISTRY,
    STATE_REGISTRY,
)
from sfdocpipe.components.fetchers import WebFetcher
from sfdocpipe.components.chunkers import SlidingWindowChunker
from sfdocpipe.components.embedders import HashEmbedder, OpenAIEmbedder
from sfdocpipe.components.stores import ChromaDBStore, InMemoryVectorStore
from sfdocpipe.components.reporters import WebhookNotifier
from sfdocpipe.utils.config_models import ComponentConfig
from sfdocpipe.utils.errors import ConfigError
from sfdocpipe.utils.state_manager import JSONStateManager


def test_build_fetcher_component():
    """Tests if the factory correctly builds a fetcher component."""
    config = {"type": "web", "config": {"timeout": 5}}
    component = build_component(config, FETCHER_REGISTRY)
    assert isinstance(component, WebFetcher)
    assert component.timeout == 5


def test_build_chunker_component():
    """Tests if the factory correctly builds a chunker component."""
    config = {
        "type": "sliding_window",
        "config": {"max_chunk_size": 100, "chunk_overlap": 10},
    }
    component = build_component(config, CHUNKER_REGISTRY)
    assert isinstance(component, SlidingWindowChunker)


def test_build_embedder_component_with_overrides():
    """Overrides such as run-wide settings take precedence over config."""
    config = ComponentConfig(type="hash", config={"dimensions": 4})
    component = build_component(
        config, EMBEDDER_REGISTRY, dimensions=16, max_batch_size=10
    )
    assert isinstance(component, HashEmbedder)
    assert component.dimensions == 16
    assert component.max_batch_size == 10


@patch("sfdocpipe.components.embedders.OpenAI")
def test_build_openai_embedder(mock_openai):
    config = {"type": "openai", "config": {"api_key": "sk-test"}}
    component = build_component(config, EMBEDDER_REGISTRY, dimensions=8)
    assert isinstance(component, OpenAIEmbedder)
    mock_openai.assert_called_once()


def test_build_store_component():
    """Tests if the factory correctly builds a store component."""
    component = build_component({"type": "memory"}, STORE_REGISTRY, dimensions=8)
    assert isinstance(component, InMemoryVectorStore)


@patch("chromadb.PersistentClient")
def test_build_chromadb_store(mock_client):
    config = {"type": "chromadb", "config": {"path": "./chroma_db"}}
    component = build_component(config, STORE_REGISTRY)
    assert isinstance(component, ChromaDBStore)
    mock_client.assert_called_once_with(path="./chroma_db")


def test_build_notifier_and_state(tmp_path):
    notifier = build_component(
        {"type": "webhook", "config": {"url": "https://hooks.example.com"}},
        NOTIFIER_REGISTRY,
    )
    state = build_component(
        {"type": "json", "config": {"path": str(tmp_path / "state.json")}},
        STATE_REGISTRY,
    )
    assert isinstance(notifier, WebhookNotifier)
    assert isinstance(state, JSONStateManager)


def test_invalid_component_type():
    """Tests if the factory raises an error for an invalid component type."""
    config = {"type": "invalid_type", "config": {}}
    with pytest.raises(ConfigError):
        build_component(config, STORE_REGISTRY)


def test_missing_component_type():
    with pytest.raises(ConfigError):
        build_component({"config": {}}, STORE_REGISTRY)


def test_unknown_option_is_config_error():
    config = {"type": "web", "config": {"no_such_option": True}}
    with pytest.raises(ConfigError):
        build_component(config, FETCHER_REGISTRY)
