"""
Storage boundary: the key-value operations the memory core consumes.

A store holds flat JSON documents addressed by (category, key), where category
is the partition key and key the sort key, plus schema and secondary-index
definitions. Implementations: LocalStore (in-process) and DynamoDBStore (shared service).
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

KEY_SEPARATOR = '#'


class StorageError(Exception):
    """Custom exception for storage errors."""
    pass


class StorageUnavailableError(StorageError):
    """Raised when the underlying store cannot be reached."""
    pass


class IndexNotFoundError(StorageError):
    """Raised when querying an index that does not exist."""
    pass


def normalize_index_value(value: Any) -> str:
    """Canonical text an index matches on: strings are stripped and case-folded."""
    if isinstance(value, str):
        return value.strip().casefold()
    return json.dumps(value, sort_keys=True)


def key_prefix_of(key: str) -> str:
    """Sort-key prefix used by discovery: the text before the first '#'."""
    return key.split(KEY_SEPARATOR, 1)[0]


class MemoryStore(ABC):
    """Partition/sort-key document store with schema and index administration."""

    # ── Items ─────────────────────────────────────────────────────────────

    @abstractmethod
    def put(self, category: str, key: str, document: Dict[str, Any]) -> None:
        """Create or fully replace the document at (category, key)."""

    @abstractmethod
    def get(self, category: str, key: str) -> Optional[Dict[str, Any]]:
        """Return the document at (category, key), or None."""

    @abstractmethod
    def scan(self, category: str, prefix: Optional[str] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Return documents of a partition in sort-key order, narrowed by a begins_with prefix."""

    @abstractmethod
    def delete(self, category: str, key: str) -> bool:
        """Delete a document. Returns False when it did not exist."""

    @abstractmethod
    def list_partitions(self) -> List[str]:
        """Return every category holding at least one document."""

    @abstractmethod
    def list_prefixes(self, category: str, limit: Optional[int] = None) -> List[str]:
        """Return the distinct sort-key prefixes of a partition."""

    # ── Schemas ───────────────────────────────────────────────────────────

    @abstractmethod
    def create_schema(self, category: str, definition: Dict[str, Any]) -> None:
        """Create or overwrite the schema definition of a category."""

    @abstractmethod
    def describe_schema(self, category: str) -> Optional[Dict[str, Any]]:
        """Return the schema definition of a category, or None."""

    @abstractmethod
    def list_schemas(self) -> List[Dict[str, Any]]:
        """Return all schema definitions."""

    @abstractmethod
    def drop_schema(self, category: str) -> bool:
        """Remove a schema definition. Returns False when none existed."""

    # ── Indexes ───────────────────────────────────────────────────────────

    @abstractmethod
    def create_index(self, name: str, category: str, attribute: str, attr_type: str) -> None:
        """Create (or recreate) a secondary index over one attribute of a category."""

    @abstractmethod
    def describe_index(self, name: str) -> Optional[Dict[str, Any]]:
        """Return an index definition, or None."""

    @abstractmethod
    def list_indexes(self) -> List[Dict[str, Any]]:
        """Return all index definitions."""

    @abstractmethod
    def drop_index(self, name: str) -> bool:
        """Remove an index. Returns False when none existed."""

    @abstractmethod
    def query_index(self, name: str, value: Any, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Return the documents whose indexed attribute equals value.

        Raises:
            IndexNotFoundError: If the index does not exist
        """

    def health_check(self) -> bool:
        """
        Perform a health check on the store.

        Returns:
            True if the store answers, False otherwise
        """
        try:
            self.list_schemas()
            return True
        except StorageError:
            return False


def create_store(storage_config=None) -> MemoryStore:
    """Build the configured transport ('local' file store or 'dynamodb')."""
    if storage_config is None:
        from .config import config as default_config
        storage_config = default_config.storage

    if storage_config.backend == 'dynamodb':
        from .dynamodb_client import DynamoDBStore
        return DynamoDBStore(storage_config)
    if storage_config.backend == 'local':
        from .local_store import LocalStore
        return LocalStore(storage_config.path)
    raise StorageError(f"Unknown storage backend '{storage_config.backend}'. Use 'local' or 'dynamodb'")
