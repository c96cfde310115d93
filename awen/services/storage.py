"""
Session-keyed key-value storage for patterns and preference profiles.

Services receive a store explicitly. ``NullStore`` stands in when no storage
is available: reads come back empty and writes are discarded. Write failures
in real stores are logged and swallowed, so a broken store never fails a
message.
"""

import copy
import json
from typing import Any, Dict, Optional

from ..utils.config import AppConfig, config
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchClient, OpenSearchError

logger = get_logger(__name__)


class StorageError(Exception):
    """Custom exception for storage errors."""
    pass


def storage_key(collection: str, session_id: str) -> str:
    return f'{collection}:{session_id}'


class KeyValueStore:
    """Interface of the persisted store: JSON-compatible values keyed by collection and session."""

    available = True

    def get(self, collection: str, session_id: str) -> Optional[Any]:
        raise NotImplementedError

    def put(self, collection: str, session_id: str, value: Any) -> None:
        raise NotImplementedError

    def delete(self, collection: str, session_id: str) -> None:
        raise NotImplementedError

    def health_check(self) -> bool:
        return True


class NullStore(KeyValueStore):
    """Store used when no persistence is available."""

    available = False

    def get(self, collection: str, session_id: str) -> Optional[Any]:
        return None

    def put(self, collection: str, session_id: str, value: Any) -> None:
        return None

    def delete(self, collection: str, session_id: str) -> None:
        return None


class InMemoryStore(KeyValueStore):
    """Process-local store. Values are kept serialized so reads never alias caller objects."""

    def __init__(self):
        self._data: Dict[str, str] = {}

    def get(self, collection: str, session_id: str) -> Optional[Any]:
        raw = self._data.get(storage_key(collection, session_id))
        return json.loads(raw) if raw is not None else None

    def put(self, collection: str, session_id: str, value: Any) -> None:
        try:
            self._data[storage_key(collection, session_id)] = json.dumps(copy.deepcopy(value))
        except (TypeError, ValueError) as e:
            logger.warning(f'Failed to store {collection} for session {session_id}: {e}')

    def delete(self, collection: str, session_id: str) -> None:
        self._data.pop(storage_key(collection, session_id), None)


class OpenSearchStore(KeyValueStore):
    """Store backed by one OpenSearch document per collection and session."""

    def __init__(self, client: OpenSearchClient):
        self.client = client
        try:
            self.client.create_index_if_not_exists()
        except OpenSearchError as e:
            logger.warning(f'Failed to create OpenSearch index: {e}')

    def get(self, collection: str, session_id: str) -> Optional[Any]:
        try:
            return self.client.get_document(storage_key(collection, session_id))
        except OpenSearchError as e:
            logger.warning(f'Failed to load {collection} for session {session_id}: {e}')
            return None

    def put(self, collection: str, session_id: str, value: Any) -> None:
        try:
            self.client.put_document(storage_key(collection, session_id), collection, session_id, value)
        except OpenSearchError as e:
            logger.warning(f'Failed to save {collection} for session {session_id}: {e}')

    def delete(self, collection: str, session_id: str) -> None:
        try:
            self.client.delete_document(storage_key(collection, session_id))
        except OpenSearchError as e:
            logger.warning(f'Failed to delete {collection} for session {session_id}: {e}')

    def health_check(self) -> bool:
        return self.client.health_check()


def build_store(app_config: Optional[AppConfig] = None) -> KeyValueStore:
    """Create the store selected by configuration.

    Args:
        app_config: AppConfig instance, uses default if None

    Returns:
        A KeyValueStore implementation

    Raises:
        StorageError: If the configured backend is unknown
    """
    app_config = app_config or config
    backend = app_config.storage.backend

    if backend == 'none':
        logger.info('Persistence disabled, using NullStore')
        return NullStore()
    if backend == 'memory':
        logger.info('Using in-memory session store')
        return InMemoryStore()
    if backend == 'opensearch':
        return OpenSearchStore(OpenSearchClient(app_config.opensearch))

    raise StorageError(f'Unknown storage backend: {backend}')
