"""End-to-end behaviour of the memory service over an in-memory store and a scripted model."""

from datetime import timedelta

import pytest

from structmem.models.core import ValidationMode
from structmem.models.predefined import PREDEFINED_CATEGORIES
from structmem.models.query import ExactLookup, IndexLookup, PartitionScan, Recall, Remember
from structmem.services.document_parser import SchemaValidationError
from structmem.services.expiry import TTLFormatError
from structmem.services.memory_management import MemoryManagementError, MemoryManagementService
from structmem.utils.bedrock_llm import LLMUnavailableError
from structmem.utils.timestamp_utils import to_rfc3339

from .conftest import FIXED_NOW, UnavailableLLM

NAME_REQUIRED = [{'name': 'name', 'type': 'STRING', 'required': True}]
EMAIL_REQUIRED = [{'name': 'name', 'type': 'STRING'}, {'name': 'email', 'type': 'STRING', 'required': True}]


@pytest.fixture()
def offline(store, memory_config):
    return MemoryManagementService(store=store, llm=UnavailableLLM(), clock=lambda: FIXED_NOW,
                                   memory_config=memory_config)


# ── Scenario ─────────────────────────────────────────────────────────────────


def test_define_remember_recall_by_indexed_name(service, llm):
    service.define('contacts', 'People I know', NAME_REQUIRED, auto_index=True)
    service.remember({'name': 'Toby'}, category='contacts', key='toby')

    result = service.recall(query='who is named Toby')

    assert result.plan == IndexLookup(category='contacts', index_name='contacts_name', key_value='Toby')
    assert not result.fell_back
    assert [item['key'] for item in result.items] == ['toby']
    assert result.items[0]['name'] == 'Toby'
    assert llm.calls == []


# ── Round trip and forget ────────────────────────────────────────────────────


def test_structured_remember_then_exact_recall(service):
    service.remember({'email': 'toby@example.com'}, category='people', key='toby')
    result = service.recall(category='people', key='toby')

    assert result.plan == ExactLookup('people', 'toby')
    assert result.items[0]['email'] == 'toby@example.com'
    assert result.items[0]['created_at'] == to_rfc3339(FIXED_NOW)


def test_structured_remember_works_without_model(offline):
    item = offline.remember({'email': 'toby@example.com'}, category='people', key='toby')
    assert item.key == 'toby'
    assert offline.schema('people').validation is ValidationMode.PERMISSIVE
    assert offline.recall(category='people', key='toby').items[0]['email'] == 'toby@example.com'


def test_structured_remember_takes_key_from_content(service):
    item = service.remember({'key': 'alice', 'email': 'a@example.com'}, category='people')
    assert item.key == 'alice'
    assert 'key' not in item.content


def test_structured_remember_requires_category(service):
    with pytest.raises(MemoryManagementError):
        service.remember({'email': 'x@example.com'})


def test_forget_is_idempotent(service):
    service.remember({'content': 'x'}, category='notes', key='a')
    assert service.forget('notes', 'a') is True
    assert service.forget('notes', 'a') is False
    assert service.forget('notes', 'a') is False
    assert service.forget('never-existed', 'nope') is False


def test_exact_recall_of_missing_key_is_empty_not_error(service):
    service.remember({'content': 'x'}, category='notes', key='a')
    result = service.recall(category='notes', key='missing')
    assert result.items == []


# ── Fallback ─────────────────────────────────────────────────────────────────


def test_unmatched_index_plan_broadens_to_whole_category(service, llm):
    service.define('people', 'People', [{'name': 'email', 'type': 'STRING'}], auto_index=True)
    service.remember({'email': 'someone@example.com'}, category='people', key='someone')
    llm.queue({'type': 'index', 'category': 'people', 'index_name': 'people_email', 'key_value': 'x@x.com'})

    result = service.recall(query='the person at x@x.com')

    assert result.fell_back
    assert result.plan == PartitionScan('people')
    assert [item['key'] for item in result.items] == ['someone']


def test_question_without_indexed_value_goes_to_model(service, llm):
    service.init()
    service.remember({'subject': 'email', 'preference': 'Use the work address'}, category='preferences',
                     key='email-work')
    llm.queue({'type': 'scan', 'category': 'preferences', 'key_prefix': 'email'})

    result = service.recall(query='which email do I use for work?')

    assert result.attempted == [PartitionScan('preferences', 'email')]
    assert [item['key'] for item in result.items] == ['email-work']
    assert len(llm.calls) == 1


# ── Expiry ───────────────────────────────────────────────────────────────────


def test_expired_items_hidden_until_pruned(service, store):
    service.remember({'content': 'old'}, category='notes', key='old')
    store.put('notes', 'old', dict(store.get('notes', 'old'),
                                   expires_at=to_rfc3339(FIXED_NOW - timedelta(minutes=1))))

    assert service.recall(category='notes', key='old').items == []
    assert [i['key'] for i in service.recall(category='notes', key='old', include_expired=True).items] == ['old']

    assert service.prune() == 1
    assert service.recall(category='notes', key='old', include_expired=True).items == []
    assert service.prune('notes') == 0


def test_explicit_ttl_sets_expiry(service):
    item = service.remember({'content': 'x'}, category='notes', key='a', ttl='2h')
    assert item.expires_at == to_rfc3339(FIXED_NOW + timedelta(hours=2))


def test_category_default_ttl(service):
    item = service.remember({'content': 'x'}, category='scratchpad', key='a')
    assert item.expires_at == to_rfc3339(FIXED_NOW + timedelta(hours=24))


def test_events_expire_at_end_of_date(service):
    item = service.remember({'title': 'Dentist', 'date': '2026-02-04'}, category='events', key='dentist')
    assert item.expires_at == '2026-02-04T23:59:59+00:00'


def test_malformed_ttl_is_rejected_before_writing(service, store):
    with pytest.raises(TTLFormatError):
        service.remember({'content': 'x'}, category='notes', key='a', ttl='soon')
    assert store.get('notes', 'a') is None


def test_discover_hides_expired_keys(service, store):
    service.remember({'content': 'x'}, category='notes', key='live')
    store.put('notes', 'dead', {'content': 'y', 'expires_at': to_rfc3339(FIXED_NOW - timedelta(days=1))})

    assert service.discover('notes')['keys'] == ['live']
    assert service.discover('notes', include_expired=True)['keys'] == ['dead', 'live']


def test_limit_counts_live_items_only(service, store):
    service.remember({'content': 'old'}, category='notes', key='a-dead')
    store.put('notes', 'a-dead', dict(store.get('notes', 'a-dead'),
                                      expires_at=to_rfc3339(FIXED_NOW - timedelta(minutes=1))))
    service.remember({'content': 'new'}, category='notes', key='b-live')

    assert [i['key'] for i in service.recall(category='notes', limit=1).items] == ['b-live']
    assert [i['key'] for i in service.recall(category='notes', prefix='b', limit=1).items] == ['b-live']
    assert [i['key'] for i in service.recall(category='notes', limit=1, include_expired=True).items] == ['a-dead']


# ── Strict vs permissive ─────────────────────────────────────────────────────


def test_defined_schema_rejects_write_missing_required(service, store):
    service.define('people', 'People', EMAIL_REQUIRED)
    with pytest.raises(SchemaValidationError) as excinfo:
        service.remember({'name': 'Toby'}, category='people', key='toby')
    assert 'email' in excinfo.value.expected
    assert store.get('people', 'toby') is None


def test_inferred_schema_accepts_same_write(service, llm):
    llm.queue(
        {'description': 'People', 'attributes': EMAIL_REQUIRED, 'suggested_indexes': []},
        {'key': 'toby', 'name': 'Toby'},
    )
    service.init()
    item = service.remember('Toby is a friend', category='people')

    assert service.schema('people').validation is ValidationMode.PERMISSIVE
    assert item.key == 'toby'
    assert item.content == {'name': 'Toby'}


# ── First write creates schema and indexes ───────────────────────────────────


def test_first_write_creates_one_schema_and_suggested_indexes(service, store, llm):
    service.init()
    llm.queue(
        {
            'description': 'Vendors we buy from',
            'attributes': [{'name': 'name', 'type': 'STRING', 'required': True},
                           {'name': 'email', 'type': 'STRING'},
                           {'name': 'country', 'type': 'STRING'}],
            'suggested_indexes': ['name', 'email'],
        },
        {'key': 'acme', 'name': 'Acme', 'email': 'sales@acme.test', 'country': 'US'},
        {'key': 'globex', 'name': 'Globex'},
    )

    service.remember('Acme sells widgets, sales@acme.test, US based', category='vendors')
    service.remember('Globex sells gadgets', category='vendors')

    vendor_indexes = [index['name'] for index in store.list_indexes() if index['category'] == 'vendors']
    assert sorted(vendor_indexes) == ['vendors_email', 'vendors_name']
    assert [s.category for s in service.schema()].count('vendors') == 1
    assert llm.responses == []


def test_inference_failure_falls_back_to_free_text_schema(service, llm):
    service.init()
    llm.queue('not json', {'content': 'likes jazz'})
    item = service.remember('Toby likes jazz', category='hobbies')

    assert service.schema('hobbies').attribute_names == ['content']
    assert item.key == 'unknown'
    assert item.content == {'content': 'likes jazz'}


def test_parse_failure_stores_unstructured_document(service, llm):
    service.init()
    llm.queue('I refuse')
    item = service.remember('remember standup is at 9', category='notes')
    assert item.content == {'content': 'remember standup is at 9'}


def test_parse_failure_uses_first_text_attribute_when_no_content(service, llm):
    service.init()
    llm.queue('I refuse')
    item = service.remember('Toby from Acme', category='contacts')
    assert item.content == {'name': 'Toby from Acme'}


def test_category_chosen_by_model(service, llm):
    llm.queue({'category': 'contacts', 'key': 'toby', 'name': 'Toby', 'email': 'toby@example.com'})
    item = service.remember("Toby's email is toby@example.com")

    assert item.category == 'contacts'
    assert set(PREDEFINED_CATEGORIES) <= {s.category for s in service.schema()}
    assert service.recall(query='email toby@example.com').items[0]['key'] == 'toby'


def test_relative_dates_resolved_against_clock(service, llm):
    llm.queue({'key': 'dentist', 'title': 'Dentist', 'date': 'tomorrow'})
    item = service.remember('dentist tomorrow', category='events')
    assert item.content['date'] == '2026-02-04'
    assert item.expires_at == '2026-02-04T23:59:59+00:00'


# ── Capability unavailable ───────────────────────────────────────────────────


def test_natural_language_remember_needs_credentials(offline, store):
    with pytest.raises(LLMUnavailableError):
        offline.remember('Toby likes tea', category='people')
    assert store.list_schemas() == []


def test_natural_language_recall_needs_credentials(offline):
    offline.init()
    offline.remember({'content': 'x'}, category='notes', key='a')
    with pytest.raises(LLMUnavailableError):
        offline.recall(query='what did I note?')


def test_precise_operations_work_offline(offline):
    offline.define('people', 'People', EMAIL_REQUIRED)
    offline.remember({'email': 'a@example.com'}, category='people', key='a')
    assert offline.recall(category='people').items[0]['key'] == 'a'
    assert offline.discover()[0]['category'] == 'people'
    assert offline.forget('people', 'a')


# ── Recall requests ──────────────────────────────────────────────────────────


def test_recall_needs_category_or_query(service):
    with pytest.raises(MemoryManagementError):
        service.recall()


def test_query_without_schemas_is_rejected(service):
    with pytest.raises(MemoryManagementError):
        service.recall(query='anything')


def test_query_in_category_without_schema_scans_it(service, store, llm):
    store.put('misc', 'a', {'content': 'x'})
    result = service.recall(category='misc', query='anything there?')
    assert result.plan == PartitionScan('misc')
    assert llm.calls == []


def test_resolver_sees_existing_keys(service, llm):
    service.remember({'content': 'x'}, category='notes', key='doctor#checkup')
    llm.queue({'type': 'scan', 'category': 'notes', 'key_prefix': 'doctor'})
    result = service.recall(query='doctor stuff')

    assert 'Keys: doctor' in llm.calls[0][1]
    assert [item['key'] for item in result.items] == ['doctor#checkup']


def test_answer_sentinel_means_nothing_relevant(service, llm):
    llm.queue('NO_RELEVANT_DATA', 'Toby likes tea.')
    items = [{'key': 'toby', 'likes': 'tea'}]
    assert service.answer('what does Toby like?', items) is None
    assert service.answer('what does Toby like?', items) == 'Toby likes tea.'
    assert service.answer('anything?', []) is None


# ── Schemas ──────────────────────────────────────────────────────────────────


def test_define_auto_index_indexes_every_attribute(service, store):
    schema = service.define('people', 'People', EMAIL_REQUIRED, auto_index=True)
    assert schema.strict
    assert sorted(index['name'] for index in store.list_indexes()) == ['people_email', 'people_name']


def test_define_rejects_bad_attributes(service):
    with pytest.raises(MemoryManagementError):
        service.define('people', 'People', [{'name': 'age', 'type': 'DATE'}])


def test_drop_keeps_items(service):
    service.define('people', 'People', EMAIL_REQUIRED, auto_index=True)
    service.remember({'email': 'a@example.com'}, category='people', key='a')
    assert service.drop('people')
    assert service.schema('people') is None
    assert service.recall(category='people', key='a').items


def test_redefine_replaces_schema_and_drops_undeclared_indexes(service, store, llm):
    service.define('people', 'People', EMAIL_REQUIRED, auto_index=True)
    service.remember({'name': 'Toby', 'email': 'toby@example.com'}, category='people', key='toby')

    service.define('people', 'People by nickname', [{'name': 'name', 'type': 'STRING'},
                                                    {'name': 'nickname', 'type': 'STRING', 'required': True}],
                   auto_index=True)

    assert service.schema('people').attribute_names == ['name', 'nickname']
    assert sorted(index['name'] for index in store.list_indexes()) == ['people_name', 'people_nickname']
    # existing items are kept as written, not re-validated
    assert service.recall(category='people', key='toby').items[0]['email'] == 'toby@example.com'

    llm.queue({'type': 'index', 'category': 'people', 'index_name': 'people_email', 'key_value': 'toby@example.com'})
    result = service.recall(query='the person at toby@example.com')
    assert result.attempted == [PartitionScan('people')]


def test_drop_removes_every_index_of_the_category(service, store):
    service.define('people', 'People', EMAIL_REQUIRED, auto_index=True)
    service.define('people', 'People', EMAIL_REQUIRED)
    store.create_index('people_legacy', 'people', 'legacy', 'STRING')
    store.create_index('projects_name', 'projects', 'name', 'STRING')

    assert store.list_indexes()[0]['name'] == 'people_legacy'
    assert service.drop('people')
    assert [index['name'] for index in store.list_indexes()] == ['projects_name']


def test_init_creates_predefined_once_and_force_recreates(service):
    assert service.init() == PREDEFINED_CATEGORIES
    assert service.init() == []
    service.define('notes', 'Mine', [{'name': 'text', 'type': 'STRING'}])
    assert service.init(force=True) == PREDEFINED_CATEGORIES
    assert service.schema('notes').attribute_names == ['content', 'topic']


# ── Promote ──────────────────────────────────────────────────────────────────


def test_promote_in_place_removes_ttl(service):
    service.remember({'content': 'keep me'}, category='scratchpad', key='idea')
    item = service.promote('scratchpad', 'idea')
    assert item.expires_at is None
    assert 'expires_at' not in service.recall(category='scratchpad', key='idea').items[0]


def test_promote_to_other_category_moves_item(service, llm):
    service.init()
    service.remember({'content': 'use JWT for auth'}, category='scratchpad', key='auth')
    llm.queue({'key': 'auth-method', 'decision': 'use JWT for auth'})

    item = service.promote('scratchpad', 'auth', to='decisions')

    assert (item.category, item.key) == ('decisions', 'auth-method')
    assert 'use JWT for auth' in llm.calls[0][1]
    assert service.recall(category='scratchpad', key='auth').items == []
    assert service.recall(category='decisions', key='auth-method').items[0]['decision'] == 'use JWT for auth'


def test_promote_missing_item_returns_none(service):
    assert service.promote('scratchpad', 'ghost') is None


# ── Ask ──────────────────────────────────────────────────────────────────────


def test_ask_remember(service, llm):
    llm.queue(
        {'intent': 'remember', 'content': 'remember that my favorite food is ramen', 'confidence': 0.9},
        {'category': 'preferences', 'key': 'food', 'subject': 'food', 'preference': 'ramen'},
    )
    intent, item = service.ask('remember that my favorite food is ramen')

    assert intent == Remember('my favorite food is ramen')
    assert (item.category, item.key) == ('preferences', 'food')
    assert 'Input: my favorite food is ramen' in llm.calls[1][1]


def test_ask_recall(service, llm):
    service.init()
    service.remember({'subject': 'food', 'preference': 'ramen'}, category='preferences', key='food')
    llm.queue({'intent': 'recall', 'query': 'subject is food', 'confidence': 0.9})

    intent, result = service.ask("what's my favourite food?")

    assert intent == Recall('subject is food')
    assert result.plan == IndexLookup('preferences', 'preferences_subject', 'food')
    assert result.items[0]['preference'] == 'ramen'


def test_ask_rejects_empty_input(service):
    with pytest.raises(MemoryManagementError):
        service.ask('  ')
