"""
Query Resolver: natural-language question to one concrete, cheap query plan.

Plans in order of preference: IndexLookup on a registered index, PartitionScan
narrowed by a sort-key prefix, ExactLookup, and a full PartitionScan as the
least-informed fallback. A question that names an indexed attribute together
with its value is resolved without a model round trip.
"""

import re
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from ..models.core import AttributeType, InvalidCategoryError, Schema, index_name, split_index_name, validate_category
from ..models.query import ExactLookup, IndexLookup, PartitionScan, ResolvedQuery, unreachable
from ..utils.bedrock_llm import LLMClient
from ..utils.json_utils import JSONResponseError, parse_json_response
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import describe_today
from .schema_store import IndexCatalog

logger = get_logger(__name__)

RESOLVE_QUERY_PROMPT = """
You are a query resolver for a structured memory system. Given the available schemas, indexes, existing keys, and a natural language query, determine how to find the data.

Respond with ONLY a JSON object (no markdown, no explanation). Use one of these forms:

For index-based lookup (when the query targets a specific VALUE of an indexed attribute):
{"type": "index", "category": "name", "index_name": "category_attribute", "key_value": "exact_value"}

For partition scan with begins_with prefix (the query names an identifying token such as a person's name):
{"type": "scan", "category": "name", "key_prefix": "prefix"}

For exact item lookup (the query maps to a known key):
{"type": "exact", "category": "name", "key": "item-key"}

For full category scan (when you need all items):
{"type": "scan", "category": "name", "key_prefix": null}

Rules:
- Prefer the most selective plan the query supports, in this order: index, scan with prefix, exact, full scan
- Only use index lookup for attributes listed under Available indexes, and only when the query gives the VALUE (e.g. "who has email toby@example.com")
- You are given the EXISTING KEYS for each category; use them to pick prefixes and exact keys
- key_prefix does a begins_with match on sort keys: "doctor" matches "doctor-appointment", "doctor-checkup"
- Use null key_prefix only when you need ALL items in a category
- Choose the category that best matches what the user is asking about"""

_VALUE_STOPWORDS = {'is', 'are', 'was', 'the', 'a', 'an', 'for', 'of', 'and', 'or', 'to', 'in', 'on', 'at', 'with',
                    'from', 'by'}

# Words that follow an attribute name in ordinary questions but are never its value
_NON_VALUES = _VALUE_STOPWORDS | {
    'i', 'me', 'my', 'mine', 'you', 'your', 'we', 'us', 'our', 'it', 'its', 'he', 'him', 'his', 'she', 'her',
    'they', 'them', 'their', 'this', 'that', 'these', 'those', 'there', 'do', 'does', 'did', 'have', 'has', 'had',
    'be', 'been', 'use', 'used', 'uses', 'not', 'what', 'which', 'who', 'whom', 'where', 'when', 'why', 'how',
}


class QueryResolutionError(Exception):
    """Raised when a query plan cannot be produced from the model response."""
    pass


def _attribute_pattern(attribute: str) -> 're.Pattern':
    words = r'[\s_-]+'.join(re.escape(part) for part in attribute.split('_') if part)
    return re.compile(rf'\b{words}(?P<suffix>d|s|ed)?\b'
                      r'(?P<connector>\s+(?:is|equals)\b|\s*[:=])?\s*'
                      r'(?:(?P<quoted>"[^"]+"|\'[^\']+\')|(?P<rest>[^,;?!"]*))', re.IGNORECASE)


def _is_word_value(token: str) -> bool:
    return token[:1].isupper() and token.lower() not in _NON_VALUES


def _extract_value(match: 're.Match') -> Optional[str]:
    """The value following an attribute mention, or None when its extent is unclear.

    Quoted values are taken whole. An unquoted value is one token, extended by
    the capitalized tokens after it ('Toby Smith'); any other word directly
    after it makes the boundary ambiguous.
    """
    if match.group('quoted'):
        return match.group('quoted')[1:-1].strip() or None

    tokens = [t.rstrip('.') for t in (match.group('rest') or '').split()]
    tokens = [t for t in tokens if t]
    if not tokens or tokens[0].lower() in _NON_VALUES:
        return None

    value = [tokens[0]]
    if _is_word_value(tokens[0]):
        for token in tokens[1:]:
            if not _is_word_value(token):
                break
            value.append(token)
    following = tokens[len(value):]
    if following and following[0].lower() not in _VALUE_STOPWORDS:
        return None
    return ' '.join(value)


def _is_distinctive(value: str) -> bool:
    return '@' in value or any(ch.isdigit() for ch in value)


def _accepts_text(attr_type: AttributeType, value: str) -> bool:
    if attr_type is AttributeType.NUMBER:
        try:
            float(value)
        except ValueError:
            return False
        return True
    if attr_type is AttributeType.BOOLEAN:
        return value.lower() in ('true', 'false', 'yes', 'no')
    return True


def _mentions_category(question: str, category: str) -> bool:
    words = re.escape(category).replace(r'\-', r'[\s-]')
    return re.search(rf'\b{words}s?\b', question, re.IGNORECASE) is not None or (
        category.endswith('s') and re.search(rf'\b{words[:-1]}\b', question, re.IGNORECASE) is not None)


def match_indexed_attribute(question: str, schemas: List[Schema], catalog: IndexCatalog) -> Optional[IndexLookup]:
    """Resolve '<indexed attribute> [is] <value>' questions without the model.

    Matches e.g. 'who is named Toby Smith', 'whose email is toby@example.com' or
    'project with name "Apollo"'. A value counts only when it is quoted, follows
    an explicit 'is', ':', '=' or '<attribute>d', or is distinctive on its own
    (contains '@' or a digit) and agrees with the attribute type. Candidates in
    several categories are narrowed to the category the question names; when
    that still leaves more than one, the question is left to the model.
    """
    candidates = []
    for schema in schemas:
        for attribute in schema.indexes:
            definition = schema.attribute(attribute)
            match = _attribute_pattern(attribute).search(question)
            if definition is None or not match:
                continue
            value = _extract_value(match)
            if value is None:
                continue
            explicit = bool(match.group('quoted') or match.group('connector')
                            or (match.group('suffix') or '').lower() in ('d', 'ed'))
            if not (explicit or _is_distinctive(value)) or not _accepts_text(definition.type, value):
                continue
            if not catalog.has_index(schema.category, attribute):
                continue
            candidates.append((schema.category, attribute, value))

    if len(candidates) > 1:
        named = [c for c in candidates if _mentions_category(question, c[0])]
        candidates = named if named else candidates
    if len(candidates) != 1:
        return None

    category, attribute, value = candidates[0]
    return IndexLookup(category=category, index_name=index_name(category, attribute), key_value=value)


class QueryResolver:
    """Resolve questions into ResolvedQuery plans, consulting the Index Catalog before any index plan."""

    def __init__(self, llm: LLMClient, catalog: IndexCatalog):
        self.llm = llm
        self.catalog = catalog

    def resolve(self, question: str, schemas: List[Schema], category_keys: Optional[Mapping[str, List[str]]] = None,
                now: Optional[datetime] = None) -> ResolvedQuery:
        """Resolve a natural-language question.

        Args:
            question: The question
            schemas: All known schemas
            category_keys: Sample of existing sort-key prefixes per category
            now: Anchor for relative dates in the question

        Returns:
            Exactly one ResolvedQuery variant

        Raises:
            QueryResolutionError: If the model response is not a usable plan
        """
        plan = match_indexed_attribute(question, schemas, self.catalog)
        if plan is not None:
            logger.debug(f'Resolved {question!r} to {plan} without the model')
            return plan

        user_msg = self._describe_context(schemas, category_keys or {}, now) + f'\n\nQuery: {question}'
        response = self.llm.complete(RESOLVE_QUERY_PROMPT, user_msg)
        try:
            data = parse_json_response(response)
        except JSONResponseError as e:
            raise QueryResolutionError(f'Failed to parse resolve response: {e}\nResponse: {response}')
        if not isinstance(data, dict):
            raise QueryResolutionError(f'Expected a JSON object in resolve response\nResponse: {response}')

        plan = self._enforce_policy(self._build_plan(data))
        logger.debug(f'Resolved {question!r} to {plan}')
        return plan

    def _describe_context(self, schemas: List[Schema], category_keys: Mapping[str, List[str]],
                          now: Optional[datetime]) -> str:
        lines = [f"Today's date: {describe_today(now)}", '', 'Available schemas:']
        index_lines = []
        for schema in schemas:
            keys = category_keys.get(schema.category) or []
            attrs = ', '.join(f'{a.name}({a.type.value})' for a in schema.attributes)
            lines.append(f'Category: {schema.category}')
            lines.append(f'  Description: {schema.description}')
            lines.append(f'  Attributes: {attrs}')
            lines.append(f'  Keys: {", ".join(keys) if keys else "(empty)"}')
            for index in self.catalog.for_schema(schema):
                index_lines.append(f'Index: {index.name} (category={index.category}, attribute={index.attribute}, '
                                   f'type={index.type.value})')
        lines.append('')
        lines.append('Available indexes:')
        lines.extend(index_lines or ['(none)'])
        return '\n'.join(lines)

    def _build_plan(self, data: Dict[str, Any]) -> ResolvedQuery:
        query_type = data.get('type')
        category = data.get('category')
        if not isinstance(category, str) or not category.strip():
            raise QueryResolutionError(f"Missing 'category' in {query_type or 'resolve'} response")
        try:
            category = validate_category(category)
        except InvalidCategoryError as e:
            raise QueryResolutionError(str(e))

        if query_type == 'index':
            name = data.get('index_name')
            if not name and data.get('attribute'):
                name = index_name(category, str(data['attribute']))
            value = data.get('key_value')
            if not name or value is None:
                raise QueryResolutionError("Missing 'index_name' or 'key_value' in index lookup")
            return IndexLookup(category=category, index_name=str(name), key_value=str(value))
        if query_type == 'scan':
            prefix = data.get('key_prefix')
            return PartitionScan(category=category, key_prefix=str(prefix) if prefix else None)
        if query_type == 'exact':
            key = data.get('key')
            if not key:
                raise QueryResolutionError("Missing 'key' in exact lookup")
            return ExactLookup(category=category, key=str(key))
        raise QueryResolutionError(f"Unknown query type: {query_type}. Expected 'index', 'scan', or 'exact'")

    def _enforce_policy(self, plan: ResolvedQuery) -> ResolvedQuery:
        """Never hand out an IndexLookup for an index the catalog does not hold."""
        if isinstance(plan, IndexLookup):
            try:
                category, attribute = split_index_name(plan.index_name)
            except ValueError:
                category, attribute = plan.category, plan.index_name
            if category != plan.category or not self.catalog.has_index(category, attribute):
                logger.info(f'No registered index {plan.index_name}; scanning {plan.category} instead')
                return PartitionScan(category=plan.category)
            return plan
        if isinstance(plan, (PartitionScan, ExactLookup)):
            return plan
        unreachable(plan)
