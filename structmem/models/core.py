"""
Core data models for the structured memory system.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

UNKNOWN_KEY = 'unknown'

# Attributes every stored document carries outside its content.
RESERVED_FIELDS = ('category', 'key', 'created_at', 'expires_at')


class InvalidCategoryError(ValueError):
    """Raised for category names that cannot be used as a partition."""
    pass


class AttributeType(str, Enum):
    """Scalar types an attribute may hold."""
    STRING = 'STRING'
    NUMBER = 'NUMBER'
    BOOLEAN = 'BOOLEAN'

    @classmethod
    def parse(cls, value: str) -> 'AttributeType':
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(f"Unknown attribute type '{value}'. Use STRING, NUMBER or BOOLEAN")

    def accepts(self, value: Any) -> bool:
        """Check whether a document value agrees with this type."""
        if self is AttributeType.STRING:
            return isinstance(value, str)
        if self is AttributeType.NUMBER:
            return isinstance(value, (int, float)) and not isinstance(value, bool)
        return isinstance(value, bool)


class ValidationMode(str, Enum):
    """How strictly documents are checked against their category schema."""
    STRICT = 'strict'
    PERMISSIVE = 'permissive'


def validate_category(category: str) -> str:
    """Return a normalized category name or raise InvalidCategoryError.

    Categories must not contain '_' so that '{category}_{attribute}' index names
    split back into exactly one pair, nor '#', the sort-key hierarchy separator.
    """
    if not isinstance(category, str) or not category.strip():
        raise InvalidCategoryError('Category must be a non-empty string')
    category = category.strip()
    if '_' in category or '#' in category:
        raise InvalidCategoryError(f"Invalid category '{category}': '_' and '#' are not allowed (use '-')")
    return category


def index_name(category: str, attribute: str) -> str:
    """Name of the secondary index backing (category, attribute)."""
    return f'{category}_{attribute}'


def split_index_name(name: str) -> tuple:
    """Inverse of index_name: returns (category, attribute)."""
    category, sep, attribute = name.partition('_')
    if not sep or not category or not attribute:
        raise ValueError(f"'{name}' is not an index name of the form category_attribute")
    return category, attribute


@dataclass
class AttributeDefinition:
    """A named, typed attribute of a category schema."""
    name: str
    type: AttributeType = AttributeType.STRING
    required: bool = False

    def __post_init__(self):
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValueError('Attribute name must be a non-empty string')
        self.name = self.name.strip()
        if not isinstance(self.type, AttributeType):
            self.type = AttributeType.parse(self.type)
        self.required = bool(self.required)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AttributeDefinition':
        return cls(name=data.get('name', ''), type=data.get('type', 'STRING'), required=data.get('required', False))

    def to_dict(self) -> Dict[str, Any]:
        return {'name': self.name, 'type': self.type.value, 'required': self.required}


@dataclass
class Schema:
    """Typed description of one category.

    `indexes` lists the attribute names that are backed by a secondary index.
    Attribute names are unique and every indexed name refers to an attribute.
    """
    category: str
    description: str
    attributes: List[AttributeDefinition] = field(default_factory=list)
    indexes: List[str] = field(default_factory=list)
    validation: ValidationMode = ValidationMode.PERMISSIVE

    def __post_init__(self):
        self.category = validate_category(self.category)
        if not isinstance(self.validation, ValidationMode):
            self.validation = ValidationMode(str(self.validation).lower())

        seen = set()
        for attr in self.attributes:
            if attr.name in seen:
                raise ValueError(f"Duplicate attribute '{attr.name}' in schema for '{self.category}'")
            seen.add(attr.name)

        unknown = [name for name in self.indexes if name not in seen]
        if unknown:
            raise ValueError(f"Indexed attributes not defined in schema for '{self.category}': {', '.join(unknown)}")
        self.indexes = list(dict.fromkeys(self.indexes))

    @property
    def strict(self) -> bool:
        return self.validation is ValidationMode.STRICT

    @property
    def attribute_names(self) -> List[str]:
        return [attr.name for attr in self.attributes]

    def attribute(self, name: str) -> Optional[AttributeDefinition]:
        for attr in self.attributes:
            if attr.name == name:
                return attr
        return None

    def index_names(self) -> List[str]:
        return [index_name(self.category, name) for name in self.indexes]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'category': self.category,
            'description': self.description,
            'attributes': [attr.to_dict() for attr in self.attributes],
            'indexes': list(self.indexes),
            'validation': self.validation.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Schema':
        return cls(category=data['category'],
                   description=data.get('description', ''),
                   attributes=[AttributeDefinition.from_dict(a) for a in data.get('attributes', [])],
                   indexes=list(data.get('indexes', [])),
                   validation=data.get('validation', ValidationMode.PERMISSIVE.value))

    def describe_shape(self) -> str:
        """One line per attribute, e.g. '  - email (STRING, required)'."""
        lines = []
        for attr in self.attributes:
            suffix = ', required' if attr.required else ''
            lines.append(f'  - {attr.name} ({attr.type.value}{suffix})')
        return '\n'.join(lines)


@dataclass
class Index:
    """A secondary index pairing one category with one attribute."""
    name: str
    category: str
    attribute: str
    type: AttributeType = AttributeType.STRING

    def to_dict(self) -> Dict[str, Any]:
        return {'name': self.name, 'category': self.category, 'attribute': self.attribute, 'type': self.type.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Index':
        return cls(name=data['name'],
                   category=data['category'],
                   attribute=data['attribute'],
                   type=AttributeType.parse(data.get('type', 'STRING')))


@dataclass
class MemoryItem:
    """One stored record. Stored flat: content attributes sit beside the reserved fields."""
    category: str
    key: str
    content: Dict[str, Any]
    created_at: str
    expires_at: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.key, str) or not self.key.strip():
            self.key = UNKNOWN_KEY
        else:
            self.key = self.key.strip()

    def to_document(self) -> Dict[str, Any]:
        document = {'category': self.category, 'key': self.key}
        for name, value in self.content.items():
            if name in RESERVED_FIELDS or value is None:
                continue
            document[name] = value
        document['created_at'] = self.created_at
        if self.expires_at:
            document['expires_at'] = self.expires_at
        return document

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> 'MemoryItem':
        content = {k: v for k, v in document.items() if k not in RESERVED_FIELDS}
        return cls(category=document.get('category', ''),
                   key=document.get('key', UNKNOWN_KEY),
                   content=content,
                   created_at=document.get('created_at', ''),
                   expires_at=document.get('expires_at'))
