"""
Component Factory for the sfdocpipe pipeline.

This module implements the factory pattern for creating pipeline components.
It uses registries to map configuration strings (e.g., 'pgvector') to
the actual component classes, so components can be swapped via configuration.
"""

import logging
from ..components.fetchers import WebFetcher
from ..components.chunkers import SlidingWindowChunker
from ..components.embedders import (
    OpenAIEmbedder,
    SentenceTransformerEmbedder,
    HashEmbedder,
)
from ..components.stores import PgVectorStore, ChromaDBStore, InMemoryVectorStore
from ..components.reporters import WebhookNotifier, EmailNotifier
from ..utils.errors import ConfigError
from ..utils.state_manager import JSONStateManager, RedisStateManager

logger = logging.getLogger(__name__)

# A registry mapping 'type' strings to their corresponding Fetcher classes.
FETCHER_REGISTRY = {"web": WebFetcher}

# A registry mapping 'type' strings to their corresponding Chunker classes.
CHUNKER_REGISTRY = {"sliding_window": SlidingWindowChunker}

# A registry mapping 'type' strings to their corresponding Embedder classes.
EMBEDDER_REGISTRY = {
    "openai": OpenAIEmbedder,
    "sentence_transformer": SentenceTransformerEmbedder,
    "hash": HashEmbedder,
}

# A registry mapping 'type' strings to their corresponding vector store classes.
STORE_REGISTRY = {
    "pgvector": PgVectorStore,
    "chromadb": ChromaDBStore,
    "memory": InMemoryVectorStore,
}

# A registry mapping 'type' strings to their corresponding Notifier classes.
NOTIFIER_REGISTRY = {"webhook": WebhookNotifier, "email": EmailNotifier}

# A registry mapping 'type' strings to their corresponding state backends.
STATE_REGISTRY = {"json": JSONStateManager, "redis": RedisStateManager}


def build_component(component_config, registry: dict, **overrides):
    """
    Builds a component instance from a configuration and a registry.

    Looks up the class registered under the config's 'type' and instantiates
    it with the parameters from 'config', updated with `overrides`.

    Args:
        component_config: A ComponentConfig or a dict with 'type' and 'config' keys.
        registry (dict): The registry (e.g., STORE_REGISTRY) to look up the
            component class.
        **overrides: Parameters that take precedence over the config values.

    Returns:
        An instance of the component class.

    Raises:
        ConfigError: If the 'type' is missing or unknown, or the parameters
            do not fit the component.
    """
    if hasattr(component_config, "model_dump"):
        component_config = component_config.model_dump()
    component_type = component_config.get("type", "")
    config = {**component_config.get("config", {}), **overrides}

    if not component_type:
        raise ConfigError("Component 'type' not specified in configuration.")

    component_class = registry.get(component_type)
    if not component_class:
        raise ConfigError(f"'{component_type}' is not a valid component type.")

    logger.debug(
        f"Building component '{component_class.__name__}' with options: {sorted(config)}"
    )
    try:
        return component_class(**config)
    except TypeError as e:
        raise ConfigError(
            f"Invalid options for '{component_type}': {e}", component="factory"
        ) from e
