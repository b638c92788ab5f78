"""
Schema inference for categories seen for the first time.
"""

import re
from typing import Any, Dict, List, Optional

from ..models.core import RESERVED_FIELDS, AttributeDefinition, AttributeType, Schema, ValidationMode
from ..utils.bedrock_llm import BedrockLLMError, LLMClient, LLMUnavailableError
from ..utils.json_utils import JSONResponseError, parse_json_response
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

INFER_SCHEMA_PROMPT = """
You are a schema inference engine for a structured memory system. Given a category name and natural language input about what will be stored, infer the schema.

Respond with ONLY a JSON object (no markdown, no explanation):
{
  "description": "Human-readable description of what this category stores",
  "attributes": [
    {"name": "attribute_name", "type": "STRING", "required": true}
  ],
  "suggested_indexes": ["attribute_name_worth_indexing"]
}

Rules:
- Attribute types must be one of: STRING, NUMBER, BOOLEAN
- Mark attributes as required only if they will ALWAYS be present in every item
- Suggest indexes for attributes commonly used in lookups (e.g. email, name)
- Keep attribute names lowercase with underscores
- Include 3-6 relevant DOMAIN attributes based on the category and input
- Do NOT include "category", "key", "created_at", "expires_at" or any metadata attributes; those are handled automatically
- Do NOT include attributes like "category_name", "category_type", "item_type"
- Stay consistent with the existing categories listed, and do not duplicate one of them"""

# System-level names the model sometimes invents.
_SYSTEM_ATTRIBUTES = set(RESERVED_FIELDS) | {'category_name', 'category_type', 'item_type'}

FREE_TEXT_ATTRIBUTE = 'content'


def _normalize_name(name: Any) -> str:
    return re.sub(r'[^a-z0-9]+', '_', str(name).strip().lower()).strip('_')


def fallback_schema(category: str) -> Schema:
    """Minimal permissive schema: one optional free-text attribute, no indexes."""
    return Schema(category=category,
                  description=f'Free-form memories about {category}',
                  attributes=[AttributeDefinition(name=FREE_TEXT_ATTRIBUTE, type=AttributeType.STRING)],
                  validation=ValidationMode.PERMISSIVE)


def schema_from_document(category: str, content: Dict[str, Any]) -> Schema:
    """Derive a permissive schema from the value types of a structured document.

    Used for structured writes, which never need a model round trip.
    """
    attributes = []
    for name, value in content.items():
        if name in RESERVED_FIELDS or value is None:
            continue
        if isinstance(value, bool):
            attr_type = AttributeType.BOOLEAN
        elif isinstance(value, (int, float)):
            attr_type = AttributeType.NUMBER
        else:
            attr_type = AttributeType.STRING
        attributes.append(AttributeDefinition(name=name, type=attr_type, required=False))
    if not attributes:
        return fallback_schema(category)
    return Schema(category=category,
                  description=f'Memories about {category}',
                  attributes=attributes,
                  validation=ValidationMode.PERMISSIVE)


class SchemaInferrer:
    """Propose a permissive schema for a category from its first input."""

    def __init__(self, llm: LLMClient):
        self.llm = llm

    def infer(self, category: str, text: str, known_schemas: Optional[List[Schema]] = None) -> Optional[Schema]:
        """Infer a schema from the first write to a category.

        Args:
            category: Category being created
            text: Natural-language sample of what will be stored
            known_schemas: Other categories' schemas, shown for disambiguation

        Returns:
            A permissive Schema, or None if inference fails (callers fall back to fallback_schema)
        """
        user_msg = f'Category: {category}\n'
        others = [s for s in (known_schemas or []) if s.category != category]
        if others:
            user_msg += 'Existing categories:\n'
            for schema in others:
                user_msg += f'  - {schema.category}: {schema.description} ({", ".join(schema.attribute_names)})\n'
        user_msg += f'Input: {text}'

        try:
            response = self.llm.complete(INFER_SCHEMA_PROMPT, user_msg)
            data = parse_json_response(response)
            schema = self._build_schema(category, data)
            logger.debug(f'Inferred schema for {category}: {schema.attribute_names} indexes={schema.indexes}')
            return schema
        except (LLMUnavailableError, BedrockLLMError) as e:
            logger.warning(f'Schema inference LLM call failed: {e}')
        except (JSONResponseError, ValueError, TypeError, AttributeError) as e:
            logger.warning(f'Failed to parse inferred schema: {e}')
        return None

    def _build_schema(self, category: str, data: Dict[str, Any]) -> Schema:
        if not isinstance(data, dict):
            raise ValueError(f'Expected a JSON object, got {type(data).__name__}')

        attributes: List[AttributeDefinition] = []
        seen = set()
        for raw in data.get('attributes') or []:
            if not isinstance(raw, dict):
                continue
            name = _normalize_name(raw.get('name', ''))
            if not name or name in _SYSTEM_ATTRIBUTES or name in seen:
                continue
            try:
                attr_type = AttributeType.parse(raw.get('type', 'STRING'))
            except ValueError:
                attr_type = AttributeType.STRING
            seen.add(name)
            attributes.append(AttributeDefinition(name=name, type=attr_type, required=bool(raw.get('required', False))))

        if not attributes:
            raise ValueError('Inferred schema has no usable attributes')

        indexes = [name for name in (_normalize_name(n) for n in data.get('suggested_indexes') or []) if name in seen]
        return Schema(category=category,
                      description=str(data.get('description') or f'Memories about {category}'),
                      attributes=attributes,
                      indexes=indexes,
                      validation=ValidationMode.PERMISSIVE)
