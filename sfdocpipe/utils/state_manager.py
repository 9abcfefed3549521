"""
State management for the sfdocpipe pipeline.

This module provides the StateManager class, which remembers a content hash
for every ingested URL together with the summary of the last run. The hash
lets the pipeline skip documents whose text has not changed since they were
last embedded, and `sfdocpipe status` reads the last run summary.
"""

import json
import hashlib
from pathlib import Path
from typing import Any, Dict, Optional
import logging
from datetime import datetime, timezone
from abc import ABC, abstractmethod
import redis

logger = logging.getLogger(__name__)


def empty_state() -> Dict[str, Any]:
    return {"processed_items": {}, "last_run_timestamp": None, "last_run": None}


class BaseStateManager(ABC):
    """
    An abstract base class for all state backends.
    """

    @abstractmethod
    def load_state(self) -> Dict:
        """Load state from storage."""
        pass

    @abstractmethod
    def save_state(self, state: Dict):
        """Saves the given state to storage."""
        pass


class JSONStateManager(BaseStateManager):
    """
    A state backend that stores state in a JSON file.
    """

    def __init__(self, path: str = ".sfdocpipe_state.json"):
        self.state_file_path = Path(path)

    def load_state(self) -> Dict:
        """
        If the JSON file exists, it is read, otherwise a new state is created.
        """
        if not self.state_file_path.exists():
            logger.debug("Creating new state as state file does not exist.")
            return empty_state()

        logger.debug(f"Loading state from '{self.state_file_path}'")
        try:
            with open(self.state_file_path, "r") as f:
                return {**empty_state(), **json.load(f)}
        except (json.JSONDecodeError, IOError):
            logger.error("Error loading state file. Starting fresh.", exc_info=True)
            return empty_state()

    def save_state(self, state: Dict):
        """Save the given state to the JSON file."""
        logger.debug(f"Saving state to '{self.state_file_path}'")
        try:
            with open(self.state_file_path, "w") as f:
                json.dump(state, f, indent=4)
            logger.info(f"Pipeline state saved to '{self.state_file_path}'.")
        except IOError as e:
            logger.error(f"Error saving state file: {e}", exc_info=True)


class RedisStateManager(BaseStateManager):
    """
    A state backend that keeps the state document under a single Redis key.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        state_key: str = "sfdocpipe_state",
    ):
        try:
            self.redis_client = redis.Redis(
                host=host, port=port, db=db, decode_responses=True
            )
            self.state_key = state_key
            self.redis_client.ping()
            logger.info(f"Connected to Redis at {host}:{port}")

        except redis.exceptions.ConnectionError as e:
            logger.error(f"Error connecting to Redis: {e}", exc_info=True)
            raise

    def load_state(self) -> Dict:
        logger.debug(f"Loading state from Redis key '{self.state_key}'")
        try:
            existing_state = self.redis_client.get(self.state_key)
            if existing_state:
                return {**empty_state(), **json.loads(existing_state)}
            else:
                return empty_state()
        except redis.exceptions.RedisError as e:
            logger.error(f"Error loading state from Redis: {e}", exc_info=True)
            return empty_state()

    def save_state(self, state: Dict):
        logger.debug(f"Saving state to Redis key '{self.state_key}'")
        try:
            self.redis_client.set(self.state_key, json.dumps(state))
            logger.info(f"Pipeline state saved to Redis key '{self.state_key}'.")
        except redis.exceptions.RedisError as e:
            logger.error(f"Error saving state to Redis: {e}", exc_info=True)


class InMemoryStateManager(BaseStateManager):
    """Keeps state for the lifetime of the process only."""

    def __init__(self):
        self._state = empty_state()

    def load_state(self) -> Dict:
        return json.loads(json.dumps(self._state))

    def save_state(self, state: Dict):
        self._state = json.loads(json.dumps(state))


class StateManager:
    """
    Inject a backend (such as JSONStateManager) that will handle the actual state saving/loading.
    """

    def __init__(self, backend: Optional[BaseStateManager] = None):
        self.backend = backend or InMemoryStateManager()
        self.state = self.backend.load_state()

    def save(self):
        """Save current state through backend"""
        self.backend.save_state(self.state)

    @staticmethod
    def content_hash(text: str) -> str:
        return hashlib.sha256(text.encode("utf-8")).hexdigest()

    def has_changed(self, item_id: str, new_hash: str) -> bool:
        """
        Checks if an item has changed since the last time it was processed.

        Args:
            item_id (str): The unique identifier of the item, here the source URL.
            new_hash (str): The hash of the item's current content.

        Returns:
            bool: True if the item has changed or is new, False otherwise.
        """
        last_hash = self.state["processed_items"].get(item_id)
        changed = new_hash != last_hash
        if changed:
            logger.debug(f"Change detected for item '{item_id}'.")
        return changed

    def update_item_state(self, item_id: str, new_hash: str):
        """Records the content hash of an item after it has been stored."""
        self.state["processed_items"][item_id] = new_hash
        logger.debug(f"Updated state for item '{item_id}'.")

    def get_last_run_timestamp(self) -> Optional[str]:
        return self.state.get("last_run_timestamp")

    def get_last_run(self) -> Optional[Dict[str, Any]]:
        return self.state.get("last_run")

    def record_run(self, summary: Dict[str, Any]):
        """Stores a run summary (as produced by RunSummary.to_dict)."""
        self.state["last_run"] = summary
        self.state["last_run_timestamp"] = datetime.now(timezone.utc).isoformat()
