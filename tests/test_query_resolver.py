"""Tests for query resolution into index, scan and exact plans."""

import pytest

from structmem.models.core import AttributeDefinition, Schema
from structmem.models.query import ExactLookup, IndexLookup, PartitionScan
from structmem.services.query_resolver import QueryResolutionError, QueryResolver, match_indexed_attribute
from structmem.services.schema_store import IndexCatalog, SchemaStore

from .conftest import ScriptedLLM


@pytest.fixture()
def schemas(store):
    contacts = Schema(category='contacts', description='People',
                      attributes=[AttributeDefinition('name', 'STRING', True), AttributeDefinition('email'),
                                  AttributeDefinition('role')],
                      indexes=['name', 'email'])
    projects = Schema(category='projects', description='Projects',
                      attributes=[AttributeDefinition('name'), AttributeDefinition('status')],
                      indexes=['name'])
    notes = Schema(category='notes', description='Notes', attributes=[AttributeDefinition('content')])
    store_schemas = SchemaStore(store)
    for schema in (contacts, projects, notes):
        store_schemas.create(schema, validate=False)
    return [contacts, projects, notes]


@pytest.fixture()
def catalog(store):
    return IndexCatalog(store)


# ── Deterministic index match ────────────────────────────────────────────────


def test_named_value_resolves_to_index_without_model(schemas, catalog):
    plan = match_indexed_attribute('which contact is named Toby?', schemas, catalog)
    assert plan == IndexLookup(category='contacts', index_name='contacts_name', key_value='Toby')


def test_attribute_value_pair_resolves_to_index(schemas, catalog):
    plan = match_indexed_attribute('who has email toby@example.com', schemas, catalog)
    assert plan == IndexLookup(category='contacts', index_name='contacts_email', key_value='toby@example.com')


def test_quoted_values_keep_spaces(schemas, catalog):
    plan = match_indexed_attribute('find the project with name "Apollo Launch"', schemas, catalog)
    assert plan == IndexLookup(category='projects', index_name='projects_name', key_value='Apollo Launch')


def test_ambiguous_attribute_across_categories_defers_to_model(schemas, catalog):
    assert match_indexed_attribute('who is named Toby', schemas, catalog) is None


def test_attribute_without_value_does_not_match(schemas, catalog):
    assert match_indexed_attribute("what is the contact's email of the designer", schemas, catalog) is None


def test_unindexed_attribute_does_not_match(schemas, catalog):
    assert match_indexed_attribute('contact with role designer', schemas, catalog) is None


def test_dropped_index_is_not_used(store, schemas, catalog):
    store.drop_index('contacts_email')
    assert match_indexed_attribute('who has email toby@example.com', schemas, catalog) is None


def test_ordinary_words_after_attribute_are_not_values(schemas, catalog):
    assert match_indexed_attribute('which email do I use for work?', schemas, catalog) is None
    assert match_indexed_attribute('which contact has email work', schemas, catalog) is None
    assert match_indexed_attribute('the contact whose email is my work one', schemas, catalog) is None


def test_explicit_connector_accepts_plain_value(schemas, catalog):
    plan = match_indexed_attribute('the contact whose email is tobywork', schemas, catalog)
    assert plan == IndexLookup(category='contacts', index_name='contacts_email', key_value='tobywork')


def test_capitalized_multi_word_value_is_kept_whole(schemas, catalog):
    plan = match_indexed_attribute('which contact is named Toby Smith?', schemas, catalog)
    assert plan == IndexLookup(category='contacts', index_name='contacts_name', key_value='Toby Smith')


def test_value_ends_at_connecting_word(schemas, catalog):
    plan = match_indexed_attribute('contact named Toby at work', schemas, catalog)
    assert plan.key_value == 'Toby'


def test_unclear_value_boundary_defers_to_model(schemas, catalog):
    assert match_indexed_attribute('contact named toby smith', schemas, catalog) is None


def test_value_must_agree_with_attribute_type(store, catalog):
    people = Schema(category='people', description='People',
                    attributes=[AttributeDefinition('age', 'NUMBER')], indexes=['age'])
    SchemaStore(store).create(people, validate=False)

    assert match_indexed_attribute('people with age is unknown', [people], catalog) is None
    assert match_indexed_attribute('people with age is 42', [people], catalog) == IndexLookup('people', 'people_age', '42')


# ── Model-backed resolution ──────────────────────────────────────────────────


def test_index_match_skips_the_model(schemas, catalog):
    llm = ScriptedLLM()
    plan = QueryResolver(llm, catalog).resolve('contact named Toby', schemas)
    assert plan.index_name == 'contacts_name'
    assert llm.calls == []


def test_prompt_lists_schemas_indexes_and_keys(schemas, catalog, now):
    llm = ScriptedLLM({'type': 'scan', 'category': 'contacts', 'key_prefix': 'toby'})
    plan = QueryResolver(llm, catalog).resolve("what does Toby do?", schemas, {'contacts': ['toby', 'alice']}, now)

    assert plan == PartitionScan(category='contacts', key_prefix='toby')
    user_msg = llm.calls[0][1]
    assert 'Keys: toby, alice' in user_msg
    assert 'Index: contacts_email' in user_msg
    assert 'Keys: (empty)' in user_msg
    assert user_msg.endswith("Query: what does Toby do?")


def test_exact_plan(schemas, catalog):
    llm = ScriptedLLM('```json\n{"type": "exact", "category": "notes", "key": "auth-method"}\n```')
    assert QueryResolver(llm, catalog).resolve('the auth-method note', schemas) == ExactLookup('notes', 'auth-method')


def test_null_prefix_is_full_scan(schemas, catalog):
    llm = ScriptedLLM({'type': 'scan', 'category': 'notes', 'key_prefix': None})
    plan = QueryResolver(llm, catalog).resolve('all my notes', schemas)
    assert plan == PartitionScan(category='notes')
    assert plan.is_full_scan


def test_model_index_plan_is_kept_when_registered(schemas, catalog):
    llm = ScriptedLLM({'type': 'index', 'category': 'contacts', 'index_name': 'contacts_email',
                       'key_value': 'toby@example.com'})
    plan = QueryResolver(llm, catalog).resolve("Toby's address toby@example.com", schemas)
    assert plan == IndexLookup('contacts', 'contacts_email', 'toby@example.com')


def test_model_index_plan_on_unregistered_index_becomes_full_scan(schemas, catalog):
    llm = ScriptedLLM({'type': 'index', 'category': 'contacts', 'index_name': 'contacts_role', 'key_value': 'designer'})
    plan = QueryResolver(llm, catalog).resolve('the designers', schemas)
    assert plan == PartitionScan(category='contacts')


def test_model_index_plan_by_attribute_name(schemas, catalog):
    llm = ScriptedLLM({'type': 'index', 'category': 'projects', 'attribute': 'name', 'key_value': 'apollo'})
    plan = QueryResolver(llm, catalog).resolve('status of apollo', schemas)
    assert plan == IndexLookup('projects', 'projects_name', 'apollo')


@pytest.mark.parametrize('response', [
    'no idea',
    '[]',
    '{"type": "scan"}',
    '{"type": "exact", "category": "notes"}',
    '{"type": "search", "category": "notes"}',
    '{"type": "scan", "category": "bad_name"}',
])
def test_unusable_plans_raise(schemas, catalog, response):
    with pytest.raises(QueryResolutionError):
        QueryResolver(ScriptedLLM(response), catalog).resolve('what about it', schemas)
