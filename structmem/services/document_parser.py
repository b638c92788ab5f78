"""
Document Parser: natural-language input to a structured document shaped by a schema.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..models.core import RESERVED_FIELDS, AttributeType, InvalidCategoryError, Schema, validate_category
from ..models.predefined import DEFAULT_CATEGORY
from ..utils.bedrock_llm import LLMClient
from ..utils.json_utils import JSONResponseError, parse_json_response
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import describe_today, resolve_relative_date

logger = get_logger(__name__)

_DATE_HINTS = ('date', 'day', 'when', 'deadline', 'due')

_DOCUMENT_RULES = """
Rules:
- "key" must be a short, lowercase, hyphenated identifier (e.g. "toby", "auth-method", "doctor-appointment")
- Extract values for each schema attribute from the input text
- Use null for attributes not mentioned in the input
- For STRING attributes: use plain text values
- For NUMBER attributes: use numeric values
- For BOOLEAN attributes: use true/false
- Keep values concise but complete
- IMPORTANT: Resolve all relative dates and times to absolute values using the provided current date. "tomorrow" -> actual date, "next week" -> actual date, "in 3 days" -> actual date. Use ISO 8601 format (YYYY-MM-DD) for dates and 24h format (HH:MM) for times."""

PARSE_DOCUMENT_PROMPT = """
You are a document parser for a structured memory system. Given a category schema and natural language input, extract a structured JSON document.

Respond with ONLY a JSON object (no markdown, no explanation):
{
  "key": "short-identifier-for-this-item",
  "attribute1": "value1",
  "attribute2": "value2"
}
""" + _DOCUMENT_RULES

PARSE_WITH_CATEGORY_PROMPT = """
You are a document parser for a structured memory system. Given the available categories with their schemas and natural language input, choose the best category and extract a structured JSON document for it.

Respond with ONLY a JSON object (no markdown, no explanation):
{
  "category": "chosen-category",
  "key": "short-identifier-for-this-item",
  "attribute1": "value1"
}
""" + _DOCUMENT_RULES + """
- "category" must be one of the listed categories; use "notes" when nothing fits"""


class DocumentParseError(Exception):
    """Raised when the model response is not a structured document."""
    pass


class SchemaValidationError(Exception):
    """Raised when a document violates a strict schema."""

    def __init__(self, category: str, problems: List[str], expected: str):
        super().__init__(f"Document does not match schema for '{category}': {'; '.join(problems)}\n"
                         f'Expected attributes:\n{expected}')
        self.category = category
        self.problems = problems
        self.expected = expected


def validate_document(document: Dict[str, Any], schema: Schema) -> List[str]:
    """List the ways a document disagrees with a schema (missing required attributes, wrong types)."""
    problems = []
    for attr in schema.attributes:
        value = document.get(attr.name)
        if value is None:
            if attr.required:
                problems.append(f"missing required attribute '{attr.name}'")
            continue
        if not attr.type.accepts(value):
            problems.append(f"attribute '{attr.name}' should be {attr.type.value}, got {type(value).__name__}")
    return problems


def enforce_schema(document: Dict[str, Any], schema: Schema) -> None:
    """Reject the document under strict validation; permissive schemas accept anything.

    Raises:
        SchemaValidationError: If the schema is strict and the document violates it
    """
    if not schema.strict:
        return
    problems = validate_document(document, schema)
    if problems:
        logger.debug(f'Strict validation failed for {schema.category}: {problems}')
        raise SchemaValidationError(schema.category, problems, schema.describe_shape())


def _schema_block(schema: Schema) -> str:
    return f'Category: {schema.category}\nSchema description: {schema.description}\nAttributes:\n{schema.describe_shape()}'


class DocumentParser:
    """Turn free text into a document whose fields are the schema's attributes plus an optional key."""

    def __init__(self, llm: LLMClient):
        self.llm = llm

    def parse(self, text: str, schema: Schema, now: datetime) -> Dict[str, Any]:
        """Parse natural-language input into a document for one category.

        Args:
            text: Natural-language input
            schema: Target schema
            now: Anchor for relative dates, supplied by the caller

        Returns:
            Document with schema attributes and optionally 'key'

        Raises:
            DocumentParseError: If the model response is not a JSON object
        """
        user_msg = f"Today's date: {describe_today(now)}\n{_schema_block(schema)}\n\nInput: {text}"
        data = self._complete(PARSE_DOCUMENT_PROMPT, user_msg)
        return self._shape(data, schema, now)

    def parse_with_category(self, text: str, schemas: List[Schema], now: datetime) -> Tuple[str, Dict[str, Any]]:
        """Choose a category among known schemas and parse the input for it.

        Returns:
            (category, document); the category falls back to 'notes' when the choice is unusable
        """
        blocks = '\n\n'.join(_schema_block(schema) for schema in schemas) or '(none)'
        user_msg = f"Today's date: {describe_today(now)}\n\nAvailable categories:\n{blocks}\n\nInput: {text}"
        data = self._complete(PARSE_WITH_CATEGORY_PROMPT, user_msg)

        category = DEFAULT_CATEGORY
        try:
            category = validate_category(str(data.get('category') or DEFAULT_CATEGORY))
        except InvalidCategoryError as e:
            logger.warning(f'Model chose an unusable category, using {DEFAULT_CATEGORY}: {e}')

        schema = next((s for s in schemas if s.category == category), None)
        return category, self._shape(data, schema, now)

    def _complete(self, system_prompt: str, user_msg: str) -> Dict[str, Any]:
        response = self.llm.complete(system_prompt, user_msg)
        try:
            data = parse_json_response(response)
        except JSONResponseError as e:
            raise DocumentParseError(f'Failed to parse document: {e}\nResponse: {response}')
        if not isinstance(data, dict):
            raise DocumentParseError(f'Expected a JSON object, got {type(data).__name__}\nResponse: {response}')
        return data

    def _shape(self, data: Dict[str, Any], schema: Optional[Schema], now: datetime) -> Dict[str, Any]:
        document: Dict[str, Any] = {}
        key = data.get('key')
        if isinstance(key, (str, int, float)) and str(key).strip():
            document['key'] = str(key).strip()

        allowed = set(schema.attribute_names) if schema and schema.attributes else None
        for name, value in data.items():
            if name in RESERVED_FIELDS or value is None:
                continue
            if allowed is not None and name not in allowed:
                logger.debug(f'Dropping attribute {name!r} not in schema')
                continue
            document[name] = value

        # Relative date phrases the model left unresolved in date-like attributes
        for name, value in list(document.items()):
            if not isinstance(value, str) or not any(hint in name for hint in _DATE_HINTS):
                continue
            attr = schema.attribute(name) if schema else None
            if attr is not None and attr.type is not AttributeType.STRING:
                continue
            resolved = resolve_relative_date(value, now)
            if resolved is not None:
                document[name] = resolved
        return document
