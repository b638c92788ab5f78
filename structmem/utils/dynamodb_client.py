"""
Amazon DynamoDB storage client (shared-service mode).

One table, partition key `category`, sort key `key`. Schema and index
definitions live in reserved partitions; index entries are materialized in a
partition per index and kept in step with every put and delete. Point
`endpoint_url` at DynamoDB Local to share one store between processes.
"""

import json
from decimal import Decimal
from functools import wraps
from typing import Any, Dict, Iterator, List, Optional

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import BotoCoreError, ClientError, EndpointConnectionError, NoCredentialsError

from .config import StorageConfig
from .logging_config import get_logger
from .store import (IndexNotFoundError, MemoryStore, StorageError, StorageUnavailableError, key_prefix_of,
                    normalize_index_value)

logger = get_logger(__name__)

SCHEMA_PARTITION = '__schemas__'
INDEX_PARTITION = '__indexes__'
INDEX_ENTRY_PREFIX = '__idx__#'


def wrap_storage_errors(func):
    """Decorator mapping botocore failures onto the storage error taxonomy."""

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except StorageError:
            raise
        except (EndpointConnectionError, NoCredentialsError) as e:
            logger.error(f'DynamoDB unreachable in {func.__name__}: {e}')
            raise StorageUnavailableError(f'DynamoDB unreachable: {e}')
        except (ClientError, BotoCoreError) as e:
            logger.error(f'Error in {func.__name__}: {e}')
            raise StorageError(f'Failed to {func.__name__}: {e}')

    return wrapper


def to_dynamo(document: Dict[str, Any]) -> Dict[str, Any]:
    """Convert a JSON document to DynamoDB attribute values (floats become Decimal)."""
    return json.loads(json.dumps(document), parse_float=Decimal)


def from_dynamo(value: Any) -> Any:
    """Convert DynamoDB attribute values back to plain JSON types."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: from_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_dynamo(v) for v in value]
    return value


def index_partition(name: str) -> str:
    return f'{INDEX_ENTRY_PREFIX}{name}'


def index_entry_key(value: Any, item_key: str) -> str:
    return f'{normalize_index_value(value)}#{item_key}'


class DynamoDBStore(MemoryStore):
    """DynamoDB-backed partition/sort-key store with client-maintained secondary indexes."""

    def __init__(self, config: StorageConfig, session: Optional[boto3.Session] = None):
        """
        Initialize DynamoDB store and make sure the table exists.

        Args:
            config: StorageConfig instance with table and endpoint parameters
            session: Optional boto3 session
        """
        self.config = config
        session = session or boto3.Session()
        self.dynamodb = session.resource('dynamodb', region_name=config.region, endpoint_url=config.endpoint_url)
        self.table = self.dynamodb.Table(config.table_name)
        self.ensure_table()

        logger.info(f'Connected to DynamoDB table {config.table_name}')

    @wrap_storage_errors
    def ensure_table(self) -> None:
        """Create the memories table if it does not exist yet."""
        try:
            self.table.load()
            return
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') != 'ResourceNotFoundException':
                raise

        logger.info(f'Creating DynamoDB table {self.config.table_name}')
        self.table = self.dynamodb.create_table(TableName=self.config.table_name,
                                                KeySchema=[{'AttributeName': 'category', 'KeyType': 'HASH'},
                                                           {'AttributeName': 'key', 'KeyType': 'RANGE'}],
                                                AttributeDefinitions=[{'AttributeName': 'category', 'AttributeType': 'S'},
                                                                      {'AttributeName': 'key', 'AttributeType': 'S'}],
                                                BillingMode='PAY_PER_REQUEST')
        self.table.wait_until_exists()

    # ── Internal helpers ──────────────────────────────────────────────────

    def _query(self, partition: str, prefix: Optional[str] = None, limit: Optional[int] = None) -> Iterator[Dict[str, Any]]:
        condition = Key('category').eq(partition)
        if prefix:
            condition = condition & Key('key').begins_with(prefix)
        kwargs = {'KeyConditionExpression': condition}
        returned = 0
        while True:
            response = self.table.query(**kwargs)
            for item in response.get('Items', []):
                yield item
                returned += 1
                if limit is not None and returned >= limit:
                    return
            last_key = response.get('LastEvaluatedKey')
            if not last_key:
                return
            kwargs['ExclusiveStartKey'] = last_key

    def _category_indexes(self, category: str) -> List[Dict[str, Any]]:
        # Index names are '{category}_{attribute}' and categories never contain '_'
        return [json.loads(item['definition']) for item in self._query(INDEX_PARTITION, f'{category}_')]

    def _write_index_entry(self, writer, index: Dict[str, Any], document: Dict[str, Any]) -> None:
        attribute = index['attribute']
        if document.get(attribute) is None:
            return
        writer.put_item(Item={'category': index_partition(index['name']),
                              'key': index_entry_key(document[attribute], document['key']),
                              'value': normalize_index_value(document[attribute]),
                              'ref_key': document['key']})

    def _remove_index_entry(self, index: Dict[str, Any], document: Dict[str, Any]) -> None:
        attribute = index['attribute']
        if document.get(attribute) is None:
            return
        self.table.delete_item(Key={'category': index_partition(index['name']),
                                    'key': index_entry_key(document[attribute], document['key'])})

    def _purge_index_entries(self, name: str) -> None:
        with self.table.batch_writer() as writer:
            for entry in self._query(index_partition(name)):
                writer.delete_item(Key={'category': entry['category'], 'key': entry['key']})

    # ── Items ─────────────────────────────────────────────────────────────

    @wrap_storage_errors
    def put(self, category: str, key: str, document: Dict[str, Any]) -> None:
        document = dict(document, category=category, key=key)
        previous = self.get(category, key)
        indexes = self._category_indexes(category)

        self.table.put_item(Item=to_dynamo(document))
        if previous is not None:
            for index in indexes:
                self._remove_index_entry(index, previous)
        with self.table.batch_writer() as writer:
            for index in indexes:
                self._write_index_entry(writer, index, document)

    @wrap_storage_errors
    def get(self, category: str, key: str) -> Optional[Dict[str, Any]]:
        item = self.table.get_item(Key={'category': category, 'key': key}).get('Item')
        return from_dynamo(item) if item else None

    @wrap_storage_errors
    def scan(self, category: str, prefix: Optional[str] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        return [from_dynamo(item) for item in self._query(category, prefix, limit)]

    @wrap_storage_errors
    def delete(self, category: str, key: str) -> bool:
        response = self.table.delete_item(Key={'category': category, 'key': key}, ReturnValues='ALL_OLD')
        previous = response.get('Attributes')
        if not previous:
            return False
        previous = from_dynamo(previous)
        for index in self._category_indexes(category):
            self._remove_index_entry(index, previous)
        return True

    @wrap_storage_errors
    def list_partitions(self) -> List[str]:
        categories = set()
        kwargs = {'ProjectionExpression': '#c', 'ExpressionAttributeNames': {'#c': 'category'}}
        while True:
            response = self.table.scan(**kwargs)
            for item in response.get('Items', []):
                if not item['category'].startswith('__'):
                    categories.add(item['category'])
            last_key = response.get('LastEvaluatedKey')
            if not last_key:
                break
            kwargs['ExclusiveStartKey'] = last_key
        return sorted(categories)

    @wrap_storage_errors
    def list_prefixes(self, category: str, limit: Optional[int] = None) -> List[str]:
        prefixes = []
        for item in self._query(category):
            prefix = key_prefix_of(item['key'])
            if prefix not in prefixes:
                prefixes.append(prefix)
            if limit is not None and len(prefixes) >= limit:
                break
        return prefixes

    # ── Schemas ───────────────────────────────────────────────────────────

    @wrap_storage_errors
    def create_schema(self, category: str, definition: Dict[str, Any]) -> None:
        self.table.put_item(Item={'category': SCHEMA_PARTITION, 'key': category, 'definition': json.dumps(definition)})

    @wrap_storage_errors
    def describe_schema(self, category: str) -> Optional[Dict[str, Any]]:
        item = self.table.get_item(Key={'category': SCHEMA_PARTITION, 'key': category}).get('Item')
        return json.loads(item['definition']) if item else None

    @wrap_storage_errors
    def list_schemas(self) -> List[Dict[str, Any]]:
        return [json.loads(item['definition']) for item in self._query(SCHEMA_PARTITION)]

    @wrap_storage_errors
    def drop_schema(self, category: str) -> bool:
        response = self.table.delete_item(Key={'category': SCHEMA_PARTITION, 'key': category}, ReturnValues='ALL_OLD')
        return bool(response.get('Attributes'))

    # ── Indexes ───────────────────────────────────────────────────────────

    @wrap_storage_errors
    def create_index(self, name: str, category: str, attribute: str, attr_type: str) -> None:
        definition = {'name': name, 'category': category, 'attribute': attribute, 'type': attr_type}
        self._purge_index_entries(name)
        self.table.put_item(Item={'category': INDEX_PARTITION, 'key': name, 'definition': json.dumps(definition)})

        # Backfill entries for documents written before the index existed
        with self.table.batch_writer() as writer:
            for item in self._query(category):
                self._write_index_entry(writer, definition, from_dynamo(item))
        logger.debug(f'Created index {name} on {category}.{attribute}')

    @wrap_storage_errors
    def describe_index(self, name: str) -> Optional[Dict[str, Any]]:
        item = self.table.get_item(Key={'category': INDEX_PARTITION, 'key': name}).get('Item')
        return json.loads(item['definition']) if item else None

    @wrap_storage_errors
    def list_indexes(self) -> List[Dict[str, Any]]:
        return [json.loads(item['definition']) for item in self._query(INDEX_PARTITION)]

    @wrap_storage_errors
    def drop_index(self, name: str) -> bool:
        response = self.table.delete_item(Key={'category': INDEX_PARTITION, 'key': name}, ReturnValues='ALL_OLD')
        self._purge_index_entries(name)
        return bool(response.get('Attributes'))

    @wrap_storage_errors
    def query_index(self, name: str, value: Any, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        definition = self.describe_index(name)
        if definition is None:
            raise IndexNotFoundError(f"Index '{name}' not found")

        wanted = normalize_index_value(value)
        results = []
        for entry in self._query(index_partition(name), f'{wanted}#'):
            if entry.get('value') != wanted:
                continue
            document = self.get(definition['category'], entry['ref_key'])
            if document is None:
                continue
            results.append(document)
            if limit is not None and len(results) >= limit:
                break
        return results
