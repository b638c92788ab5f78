"""
Memory Management Service: the command surface over the schema-aware memory core.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from ..models.core import (RESERVED_FIELDS, UNKNOWN_KEY, AttributeDefinition, AttributeType, MemoryItem, Schema,
                           ValidationMode, validate_category)
from ..models.predefined import DEFAULT_CATEGORY, PREDEFINED_SCHEMAS
from ..models.query import ExactLookup, NlIntent, PartitionScan, Recall, Remember, ResolvedQuery, unreachable
from ..utils.bedrock_llm import BedrockLLMError, LazyBedrockLLM, LLMClient
from ..utils.config import MemoryConfig, config
from ..utils.logging_config import get_logger
from ..utils.store import MemoryStore, create_store, key_prefix_of
from ..utils.timestamp_utils import to_rfc3339, utc_now
from .answer_synthesis import AnswerSynthesizer
from .document_parser import DocumentParseError, DocumentParser, enforce_schema
from .execution import QueryExecutor
from .expiry import ExpiryPolicy, filter_expired, parse_ttl, prune_expired
from .intent import IntentClassifier
from .query_resolver import QueryResolver
from .schema_inference import FREE_TEXT_ATTRIBUTE, SchemaInferrer, fallback_schema, schema_from_document
from .schema_store import IndexCatalog, IndexCreationError, SchemaStore

logger = get_logger(__name__)


class MemoryManagementError(Exception):
    """Custom exception for memory management errors."""
    pass


@dataclass
class RecallResult:
    """Items returned by a recall and the plan that produced them (None for direct reads)."""
    items: List[Dict[str, Any]]
    plan: Optional[ResolvedQuery] = None
    fell_back: bool = False
    attempted: List[ResolvedQuery] = field(default_factory=list)


class MemoryManagementService:
    """Unified service for remember, recall, discovery, schema administration and expiry."""

    def __init__(self,
                 store: Optional[MemoryStore] = None,
                 llm: Optional[LLMClient] = None,
                 clock: Callable[[], datetime] = utc_now,
                 memory_config: Optional[MemoryConfig] = None):
        """Initialize the memory management service.

        Args:
            store: Storage boundary (defaults to the configured transport)
            llm: Language-model capability (defaults to Bedrock, created on first use)
            clock: Source of the current instant, used for dates and expiry
            memory_config: Limits, default intent and category TTLs
        """
        self.store = store if store is not None else create_store(config.storage)
        self.llm = llm if llm is not None else LazyBedrockLLM(config.bedrock_llm)
        self.clock = clock
        self.settings = memory_config or config.memory

        self.schemas = SchemaStore(self.store)
        self.catalog = IndexCatalog(self.store)
        self.inferrer = SchemaInferrer(self.llm)
        self.parser = DocumentParser(self.llm)
        self.resolver = QueryResolver(self.llm, self.catalog)
        self.executor = QueryExecutor(self.store, clock)
        self.synthesizer = AnswerSynthesizer(self.llm)
        self.intents = IntentClassifier(self.llm, self.settings.default_intent)
        self.expiry = ExpiryPolicy(self.settings.category_ttls)

        logger.info('Initialized MemoryManagementService')

    # ── Writes ────────────────────────────────────────────────────────────

    def remember(self,
                 content: Union[str, Dict[str, Any]],
                 category: Optional[str] = None,
                 key: Optional[str] = None,
                 ttl: Optional[str] = None) -> MemoryItem:
        """Store a memory from natural-language text or a ready structured document.

        Structured content needs no model: a missing schema is derived from its
        value types. Text goes through schema inference (first write to a
        category) and the document parser, both of which degrade to an
        unstructured document instead of failing.

        Args:
            content: Natural-language text or a dict of attributes
            category: Target category; chosen by the model for text when omitted
            key: Sort key; taken from the parsed document when omitted
            ttl: Explicit time-to-live such as '24h', '7d' or '2w'

        Returns:
            The stored MemoryItem

        Raises:
            MemoryManagementError: If the request is incomplete
            TTLFormatError: If the TTL is malformed
            SchemaValidationError: If a strict schema rejects the document
            LLMUnavailableError: If text input needs the model and no credentials exist
        """
        now = self.clock()
        if ttl:
            parse_ttl(ttl)
        if category is not None:
            category = validate_category(category)

        if isinstance(content, dict):
            if category is None:
                raise MemoryManagementError('A category is required to remember structured content')
            schema = self.schemas.get(category)
            if schema is None:
                schema = schema_from_document(category, content)
                self._create_schema(schema, validate=False)
            document = {name: value for name, value in content.items() if value is not None}
        elif isinstance(content, str):
            text = content.strip()
            if not text:
                raise MemoryManagementError('Nothing to remember: content is empty')
            self.llm.ensure_available()
            self.auto_init()
            if category is None:
                category, document = self._parse_with_category(text, now)
                schema = self._schema_for_write(category, text)
            else:
                schema = self._schema_for_write(category, text)
                document = self._parse(text, schema, now)
        else:
            raise MemoryManagementError(f'Cannot remember content of type {type(content).__name__}')

        parsed_key = document.get('key')
        attributes = {name: value for name, value in document.items() if name not in RESERVED_FIELDS}
        enforce_schema(attributes, schema)

        item = MemoryItem(category=category,
                          key=key or (str(parsed_key) if parsed_key is not None else UNKNOWN_KEY),
                          content=attributes,
                          created_at=to_rfc3339(now),
                          expires_at=self.expiry.expires_at_for(category, attributes, now, ttl))
        self.store.put(category, item.key, item.to_document())
        logger.info(f'Stored {category}/{item.key}' + (f' (expires {item.expires_at})' if item.expires_at else ''))
        return item

    def forget(self, category: str, key: str) -> bool:
        """Delete one memory. Absent keys are not an error.

        Returns:
            True if an item was removed, False if there was nothing to remove
        """
        category = validate_category(category)
        removed = self.store.delete(category, key)
        if removed:
            logger.info(f'Forgot {category}/{key}')
        else:
            logger.debug(f'Nothing to forget at {category}/{key}')
        return removed

    def promote(self, category: str, key: str, to: Optional[str] = None) -> Optional[MemoryItem]:
        """Make a memory long-term.

        Without a target category the TTL is removed in place. With one, the
        content is re-parsed against the target schema, written there without a
        TTL, and the original is deleted afterwards.

        Returns:
            The promoted item, or None if the source does not exist
        """
        category = validate_category(category)
        document = self.store.get(category, key)
        if document is None:
            return None

        now = self.clock()
        source = MemoryItem.from_document(document)
        target = validate_category(to) if to else category

        if target == category:
            promoted = MemoryItem(category=category, key=source.key, content=source.content, created_at=to_rfc3339(now))
            self.store.put(category, promoted.key, promoted.to_document())
            logger.info(f'Promoted {category}/{key} (TTL removed)')
            return promoted

        self.llm.ensure_available()
        self.auto_init()
        text = self._promotion_text(source.content)
        parsed = self._parse(text, self._schema_for_write(target, text), now)
        attributes = {name: value for name, value in parsed.items() if name not in RESERVED_FIELDS}
        promoted = MemoryItem(category=target,
                              key=str(parsed.get('key') or source.key),
                              content=attributes,
                              created_at=to_rfc3339(now))
        self.store.put(target, promoted.key, promoted.to_document())
        self.store.delete(category, key)
        logger.info(f'Promoted {category}/{key} to {target}/{promoted.key}')
        return promoted

    def prune(self, category: Optional[str] = None) -> int:
        """Delete expired memories in one category or all of them.

        Returns:
            Number of items deleted
        """
        categories = [validate_category(category)] if category else self.store.list_partitions()
        return prune_expired(self.store, categories, self.clock())

    # ── Reads ─────────────────────────────────────────────────────────────

    def recall(self,
               category: Optional[str] = None,
               key: Optional[str] = None,
               query: Optional[str] = None,
               prefix: Optional[str] = None,
               limit: Optional[int] = None,
               include_expired: bool = False) -> RecallResult:
        """Retrieve memories precisely (category, key, prefix) or by natural-language query.

        Precise reads run as given. A query is resolved into a plan, which is
        broadened once to a full scan of its category when it finds nothing.
        Expired items are dropped unless include_expired is set.

        Raises:
            MemoryManagementError: If neither a category nor a query is given, or no schemas exist for a query
            QueryResolutionError: If the model's plan is unusable
            LLMUnavailableError: If the query needs the model and no credentials exist
        """
        limit = limit or self.settings.recall_limit
        now = self.clock()
        if category is not None:
            category = validate_category(category)

        if category and key:
            plan = ExactLookup(category=category, key=key)
            items = self.executor.fetch(plan, limit, include_expired, now)
            return RecallResult(items=items, plan=plan, attempted=[plan])
        if category and prefix:
            plan = PartitionScan(category=category, key_prefix=prefix)
            items = self.executor.fetch(plan, limit, include_expired, now)
            return RecallResult(items=items, plan=plan, attempted=[plan])

        if query and query.strip():
            plan = self._resolve(query.strip(), category, now)
        elif category:
            plan = PartitionScan(category=category)
        else:
            raise MemoryManagementError('Either a category or a query is required to recall')

        result = self.executor.execute(plan, limit=limit, include_expired=include_expired, now=now)
        logger.debug(f'Recall returned {len(result.items)} items')
        return RecallResult(items=result.items, plan=result.plan, fell_back=result.fell_back,
                            attempted=result.attempted)

    def answer(self, query: str, items: List[Dict[str, Any]]) -> Optional[str]:
        """Synthesize a short answer from recalled items; None when nothing relevant was found."""
        return self.synthesizer.answer(query, items, self.clock())

    def discover(self, category: Optional[str] = None, limit: Optional[int] = None,
                 include_expired: bool = False) -> Union[Dict[str, Any], List[Dict[str, Any]]]:
        """Browse what is stored.

        Without a category, lists every known category with its description and
        live item count. With one, lists its keys, key prefixes, schema and indexes.
        """
        now = self.clock()
        scan_limit = limit or self.settings.scan_limit

        if category is None:
            schemas = {schema.category: schema for schema in self.schemas.list()}
            names = sorted(set(schemas) | set(self.store.list_partitions()))
            overview = []
            for name in names:
                items = filter_expired(self.store.scan(name, limit=self.settings.scan_limit), now, include_expired)
                schema = schemas.get(name)
                overview.append({
                    'category': name,
                    'description': schema.description if schema else None,
                    'attribute_count': len(schema.attributes) if schema else 0,
                    'index_count': len(self.catalog.for_schema(schema)) if schema else 0,
                    'item_count': len(items),
                })
            return overview

        category = validate_category(category)
        items = filter_expired(self.store.scan(category, limit=scan_limit), now, include_expired)
        schema = self.schemas.get(category)
        keys = [item['key'] for item in items if 'key' in item]
        return {
            'category': category,
            'keys': keys,
            'prefixes': list(dict.fromkeys(key_prefix_of(k) for k in keys)),
            'schema': schema.to_dict() if schema else None,
            'indexes': [index.to_dict() for index in self.catalog.for_schema(schema)] if schema else [],
        }

    # ── Schemas ───────────────────────────────────────────────────────────

    def define(self,
               category: str,
               description: str,
               attributes: Sequence[Union[AttributeDefinition, Dict[str, Any]]],
               auto_index: bool = False) -> Schema:
        """Explicitly define a strict schema, overwriting any existing one.

        Args:
            category: Category name
            description: Human-readable description
            attributes: Attribute definitions or dicts with name, type, required
            auto_index: Index every attribute

        Returns:
            The stored Schema

        Raises:
            MemoryManagementError: If the attribute definitions are invalid
            IndexCreationError: If the schema was stored but some indexes were not
        """
        try:
            definitions = [a if isinstance(a, AttributeDefinition) else AttributeDefinition.from_dict(a) for a in attributes]
            schema = Schema(category=category,
                            description=description,
                            attributes=definitions,
                            indexes=[a.name for a in definitions] if auto_index else [],
                            validation=ValidationMode.STRICT)
        except (AttributeError, TypeError, ValueError) as e:
            raise MemoryManagementError(f'Invalid schema definition: {e}')

        self.schemas.create(schema, validate=True)
        return schema

    def schema(self, category: Optional[str] = None) -> Union[Optional[Schema], List[Schema]]:
        """One category's schema (or None), or every schema when no category is given."""
        if category is None:
            return self.schemas.list()
        return self.schemas.get(validate_category(category))

    def indexes(self, schema: Schema) -> List[Dict[str, Any]]:
        return [index.to_dict() for index in self.catalog.for_schema(schema)]

    def drop(self, category: str) -> bool:
        """Drop a schema and its indexes; items stay in place."""
        return self.schemas.drop(validate_category(category))

    def init(self, force: bool = False) -> List[str]:
        """Create the predefined categories that do not exist yet, or recreate all of them with force.

        Returns:
            Names of the categories created
        """
        created = []
        for predefined in PREDEFINED_SCHEMAS:
            if force:
                self.schemas.drop(predefined.category)
            elif self.schemas.has(predefined.category):
                continue
            self._create_schema(Schema.from_dict(predefined.to_dict()), validate=False)
            created.append(predefined.category)
        if created:
            logger.info(f'Initialized {len(created)} predefined categories')
        return created

    def auto_init(self) -> None:
        """Create the predefined categories on first use of an empty store."""
        if not self.store.list_schemas():
            self.init()

    # ── Natural language ──────────────────────────────────────────────────

    def ask(self, text: str) -> Tuple[NlIntent, Union[MemoryItem, RecallResult]]:
        """Classify a free-form utterance and run the matching operation."""
        if not text or not text.strip():
            raise MemoryManagementError('Nothing to do: input is empty')
        intent = self.intents.classify(text)
        if isinstance(intent, Remember):
            return intent, self.remember(intent.content)
        if isinstance(intent, Recall):
            return intent, self.recall(query=intent.query)
        unreachable(intent)

    # ── Helpers ───────────────────────────────────────────────────────────

    def _create_schema(self, schema: Schema, validate: bool) -> List[str]:
        try:
            return self.schemas.create(schema, validate)
        except IndexCreationError as e:
            logger.warning(f'{e}; continuing with an unindexed category')
            return []

    def _schema_for_write(self, category: str, text: str) -> Schema:
        schema = self.schemas.get(category)
        if schema is not None:
            return schema
        schema = self.inferrer.infer(category, text, self.schemas.list())
        if schema is None:
            logger.warning(f'Schema inference failed for {category}; using a free-text schema')
            schema = fallback_schema(category)
        self._create_schema(schema, validate=False)
        return schema

    def _parse(self, text: str, schema: Schema, now: datetime) -> Dict[str, Any]:
        try:
            return self.parser.parse(text, schema, now)
        except (DocumentParseError, BedrockLLMError) as e:
            logger.warning(f'Document parsing failed for {schema.category}, storing unstructured: {e}')
            return self._unstructured(text, schema)

    def _parse_with_category(self, text: str, now: datetime) -> Tuple[str, Dict[str, Any]]:
        try:
            return self.parser.parse_with_category(text, self.schemas.list(), now)
        except (DocumentParseError, BedrockLLMError) as e:
            logger.warning(f'Document parsing failed, storing unstructured in {DEFAULT_CATEGORY}: {e}')
            return DEFAULT_CATEGORY, self._unstructured(text, self.schemas.get(DEFAULT_CATEGORY))

    @staticmethod
    def _unstructured(text: str, schema: Optional[Schema]) -> Dict[str, Any]:
        if schema is not None and schema.attribute(FREE_TEXT_ATTRIBUTE) is None:
            first_text = next((a.name for a in schema.attributes if a.type is AttributeType.STRING), None)
            if first_text is not None:
                return {first_text: text}
        return {FREE_TEXT_ATTRIBUTE: text}

    @staticmethod
    def _promotion_text(content: Dict[str, Any]) -> str:
        if isinstance(content.get(FREE_TEXT_ATTRIBUTE), str):
            return content[FREE_TEXT_ATTRIBUTE]
        return '; '.join(f'{name}: {value}' for name, value in content.items())

    def _resolve(self, query: str, category: Optional[str], now: datetime) -> ResolvedQuery:
        schemas = self.schemas.list()
        if category is not None:
            schemas = [schema for schema in schemas if schema.category == category]
            if not schemas:
                return PartitionScan(category=category)
        if not schemas:
            raise MemoryManagementError('No schemas defined. Recall by category instead, or define schemas first')

        category_keys = {
            schema.category: self.store.list_prefixes(schema.category, limit=self.settings.sample_key_limit)
            for schema in schemas
        }
        return self.resolver.resolve(query, schemas, category_keys, now)
