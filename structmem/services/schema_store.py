"""
Schema Store and Index Catalog.

Schemas are persisted one per category through the storage boundary. Index
names are a pure function of (category, attribute), so finding the index for
an attribute is a single describe call, never a catalog scan.
"""

from typing import List, Optional

from ..models.core import Index, Schema, ValidationMode, index_name, split_index_name
from ..utils.logging_config import get_logger
from ..utils.store import MemoryStore

logger = get_logger(__name__)


class IndexCreationError(Exception):
    """Raised when a schema was stored but some of its indexes were not."""

    def __init__(self, category: str, failed: List[str], message: str):
        super().__init__(message)
        self.category = category
        self.failed = failed


class SchemaStore:
    """Create, read and drop per-category schemas together with their indexes."""

    def __init__(self, store: MemoryStore):
        self.store = store

    def has(self, category: str) -> bool:
        return self.store.describe_schema(category) is not None

    def get(self, category: str) -> Optional[Schema]:
        definition = self.store.describe_schema(category)
        if definition is None:
            return None
        return Schema.from_dict(definition)

    def list(self) -> List[Schema]:
        schemas = []
        for definition in self.store.list_schemas():
            try:
                schemas.append(Schema.from_dict(definition))
            except (KeyError, ValueError) as e:
                logger.warning(f'Skipping unreadable schema definition {definition!r}: {e}')
        return schemas

    def create(self, schema: Schema, validate: bool) -> List[str]:
        """Store a schema, overwriting any existing one, then create its indexes.

        The schema is written first so that a failure part-way through index
        creation still leaves a usable, unindexed category. Calling again with the
        same schema retries the missing indexes; names never depend on call order.
        Indexes a previous schema for the category declared and this one does not
        are dropped first. Existing items are not re-validated.

        Args:
            schema: Schema to store
            validate: True for strict validation (explicit definitions), False for permissive

        Returns:
            Names of the indexes created

        Raises:
            IndexCreationError: If one or more indexes could not be created
        """
        schema.validation = ValidationMode.STRICT if validate else ValidationMode.PERMISSIVE
        declared = set(schema.index_names())
        for name in self.registered_indexes(schema.category):
            if name not in declared:
                self.store.drop_index(name)
                logger.info(f'Dropped index {name} no longer declared by {schema.category}')
        self.store.create_schema(schema.category, schema.to_dict())
        logger.info(f'Stored {schema.validation.value} schema for {schema.category} '
                    f'({len(schema.attributes)} attributes)')

        created, failed = [], []
        for attr_name in schema.indexes:
            attr = schema.attribute(attr_name)
            name = index_name(schema.category, attr_name)
            try:
                self.store.create_index(name, schema.category, attr_name, attr.type.value)
                created.append(name)
            except Exception as e:
                logger.warning(f'Failed to create index {name}: {e}')
                failed.append(name)

        if failed:
            raise IndexCreationError(schema.category, failed,
                                     f"Schema for '{schema.category}' stored but indexes failed: {', '.join(failed)}")
        return created

    def drop(self, category: str) -> bool:
        """Drop a schema and every index registered for its category. Items are left in place.

        Returns:
            False if no schema existed
        """
        schema = self.get(category)
        if schema is None:
            return False
        for name in self.registered_indexes(category):
            self.store.drop_index(name)
        dropped = self.store.drop_schema(category)
        logger.info(f'Dropped schema for {category}')
        return dropped

    def registered_indexes(self, category: str) -> List[str]:
        """Names of every index registered for a category, declared by its schema or not."""
        names = []
        for definition in self.store.list_indexes():
            try:
                owner, _ = split_index_name(definition['name'])
            except (KeyError, ValueError):
                continue
            if owner == category:
                names.append(definition['name'])
        return names


class IndexCatalog:
    """Answers which (category, attribute) pairs are index-backed."""

    def __init__(self, store: MemoryStore):
        self.store = store

    @staticmethod
    def name(category: str, attribute: str) -> str:
        return index_name(category, attribute)

    def lookup(self, category: str, attribute: str) -> Optional[Index]:
        definition = self.store.describe_index(index_name(category, attribute))
        if definition is None:
            return None
        return Index.from_dict(definition)

    def has_index(self, category: str, attribute: str) -> bool:
        return self.lookup(category, attribute) is not None

    def for_schema(self, schema: Schema) -> List[Index]:
        """Registered indexes among those the schema declares."""
        indexes = []
        for attr_name in schema.indexes:
            index = self.lookup(schema.category, attr_name)
            if index is not None:
                indexes.append(index)
        return indexes
