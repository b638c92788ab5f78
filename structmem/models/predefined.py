"""
Built-in categories created on first use of an empty store.
"""

from typing import List

from .core import AttributeDefinition, AttributeType, Schema

S = AttributeType.STRING


def _attrs(*specs) -> List[AttributeDefinition]:
    return [AttributeDefinition(name=name, type=attr_type, required=required) for name, attr_type, required in specs]


PREDEFINED_SCHEMAS: List[Schema] = [
    Schema(category='project',
           description='Project context: architecture, conventions, tooling and status',
           attributes=_attrs(('topic', S, True), ('detail', S, False), ('status', S, False)),
           indexes=['topic']),
    Schema(category='decisions',
           description='Decisions taken and the reasoning behind them',
           attributes=_attrs(('decision', S, True), ('rationale', S, False), ('date', S, False), ('status', S, False))),
    Schema(category='contacts',
           description='People: names, roles and contact details',
           attributes=_attrs(('name', S, True), ('email', S, False), ('role', S, False), ('organization', S, False),
                             ('phone', S, False)),
           indexes=['name', 'email']),
    Schema(category='preferences',
           description='Likes, dislikes and preferred ways of working',
           attributes=_attrs(('subject', S, True), ('preference', S, True)),
           indexes=['subject']),
    Schema(category='notes',
           description='Free-form notes that fit no other category',
           attributes=_attrs(('content', S, True), ('topic', S, False))),
    Schema(category='events',
           description='Dated events and appointments; expire at the end of their date',
           attributes=_attrs(('title', S, True), ('date', S, False), ('time', S, False), ('location', S, False),
                             ('description', S, False)),
           indexes=['date']),
    Schema(category='scratchpad',
           description='Short-lived working notes (24h default TTL)',
           attributes=_attrs(('content', S, True))),
    Schema(category='sessions',
           description='Summaries of work sessions (7d default TTL)',
           attributes=_attrs(('summary', S, True), ('outcome', S, False))),
    Schema(category='interactions',
           description='Conversations and exchanges with people (90d default TTL)',
           attributes=_attrs(('person', S, False), ('summary', S, True), ('date', S, False)),
           indexes=['person']),
]

PREDEFINED_CATEGORIES = [schema.category for schema in PREDEFINED_SCHEMAS]

DEFAULT_CATEGORY = 'notes'
