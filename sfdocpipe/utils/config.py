"""
Configuration loading utility for sfdocpipe.

This module provides functions to safely load, parse and validate a YAML
pipeline configuration file.
"""

import yaml
from pathlib import Path
import logging
from typing import Any, Dict, Union
from pydantic import ValidationError
from dotenv import load_dotenv

from .config_models import PipelineConfig
from .errors import ConfigError

logger = logging.getLogger(__name__)


def parse_config(raw: Dict[str, Any]) -> PipelineConfig:
    """
    Validates an already-parsed configuration mapping.

    Args:
        raw (dict): The configuration mapping, e.g. from yaml.safe_load.

    Returns:
        PipelineConfig: The validated configuration.

    Raises:
        ConfigError: If the mapping is empty or fails validation.
    """
    if not raw:
        raise ConfigError("Configuration is empty.", component="config")
    try:
        return PipelineConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(
            f"Configuration validation failed:\n{e}", component="config"
        ) from e


def load_config(config_path: Union[str, Path]) -> PipelineConfig:
    """
    Loads and validates a YAML configuration file from the specified path.

    Environment variables from a local .env file are loaded first so that
    components can resolve their credentials (OPENAI_API_KEY,
    SUPABASE_DB_URL, ...) without them appearing in the YAML file.

    Args:
        config_path (str): The path to the YAML configuration file.

    Returns:
        PipelineConfig: The validated configuration.

    Raises:
        ConfigError: If the file is missing, unreadable, or invalid.
    """
    load_dotenv()
    path = Path(config_path)
    if not path.is_file():
        raise ConfigError(
            f"Configuration file not found or is not a file: '{path}'",
            component="config",
        )

    logger.debug(f"Attempting to load and validate configuration from: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except (yaml.YAMLError, IOError) as e:
        raise ConfigError(
            f"Error reading or parsing YAML file '{path}': {e}", component="config"
        ) from e

    config = parse_config(raw)
    logger.info(f"Successfully loaded and validated configuration from: '{path}'")
    return config
