"""Tests for the JSON-file store used in direct mode."""

import json
import os
import threading

import pytest

from structmem.utils.local_store import LocalStore
from structmem.utils.store import IndexNotFoundError, StorageError, create_store, key_prefix_of, normalize_index_value
from structmem.utils.config import StorageConfig

# ── Items ────────────────────────────────────────────────────────────────────


def test_put_get_overwrite(store):
    store.put('notes', 'a', {'content': 'one'})
    store.put('notes', 'a', {'content': 'two'})
    assert store.get('notes', 'a') == {'category': 'notes', 'key': 'a', 'content': 'two'}
    assert store.get('notes', 'missing') is None


def test_returned_documents_are_copies(store):
    store.put('notes', 'a', {'tags': ['x']})
    store.get('notes', 'a')['tags'].append('y')
    assert store.get('notes', 'a')['tags'] == ['x']


def test_scan_is_ordered_and_prefix_filtered(store):
    for key in ('doctor#checkup', 'alpha', 'doctor#appointment'):
        store.put('notes', key, {})
    assert [d['key'] for d in store.scan('notes')] == ['alpha', 'doctor#appointment', 'doctor#checkup']
    assert [d['key'] for d in store.scan('notes', prefix='doctor')] == ['doctor#appointment', 'doctor#checkup']
    assert len(store.scan('notes', limit=2)) == 2
    assert store.scan('nothing') == []


def test_delete_reports_existence(store):
    store.put('notes', 'a', {})
    assert store.delete('notes', 'a')
    assert not store.delete('notes', 'a')
    assert store.list_partitions() == []


def test_partitions_and_prefixes(store):
    store.put('notes', 'doctor#a', {})
    store.put('notes', 'doctor#b', {})
    store.put('notes', 'toby', {})
    store.put('contacts', 'toby', {})
    assert store.list_partitions() == ['contacts', 'notes']
    assert store.list_prefixes('notes') == ['doctor', 'toby']
    assert store.list_prefixes('notes', limit=1) == ['doctor']


# ── Indexes ──────────────────────────────────────────────────────────────────


def test_query_index_matches_normalized_values(store):
    store.create_index('contacts_name', 'contacts', 'name', 'STRING')
    store.put('contacts', 'toby', {'name': 'Toby '})
    store.put('contacts', 'alice', {'name': 'Alice'})
    store.put('contacts', 'nameless', {})
    assert [d['key'] for d in store.query_index('contacts_name', 'toby')] == ['toby']


def test_query_missing_index_raises(store):
    with pytest.raises(IndexNotFoundError):
        store.query_index('contacts_phone', '555')


def test_schema_and_index_administration(store):
    store.create_schema('contacts', {'category': 'contacts'})
    store.create_index('contacts_name', 'contacts', 'name', 'STRING')
    assert store.describe_schema('contacts') == {'category': 'contacts'}
    assert store.describe_index('contacts_name')['attribute'] == 'name'
    assert store.drop_index('contacts_name') and not store.drop_index('contacts_name')
    assert store.drop_schema('contacts') and not store.drop_schema('contacts')
    assert store.list_schemas() == [] and store.list_indexes() == []


# ── Persistence ──────────────────────────────────────────────────────────────


def test_file_store_persists_between_instances(tmp_path):
    path = str(tmp_path / 'nested' / 'memory.json')
    LocalStore(path).put('notes', 'a', {'content': 'x'})
    assert LocalStore(path).get('notes', 'a')['content'] == 'x'
    with open(path, encoding='utf-8') as f:
        assert json.load(f)['items']['notes']['a']['content'] == 'x'


def test_corrupt_file_raises_storage_error(tmp_path):
    path = tmp_path / 'memory.json'
    path.write_text('{not json', encoding='utf-8')
    with pytest.raises(StorageError):
        LocalStore(str(path)).get('notes', 'a')


def test_health_check(store):
    assert store.health_check()


# ── Helpers ──────────────────────────────────────────────────────────────────


def test_normalize_index_value():
    assert normalize_index_value('  Toby ') == 'toby'
    assert normalize_index_value(3) == '3'
    assert normalize_index_value(True) == 'true'


def test_key_prefix_of():
    assert key_prefix_of('doctor#checkup') == 'doctor'
    assert key_prefix_of('toby') == 'toby'


def test_create_store_selects_backend(tmp_path):
    config = StorageConfig(backend='local', path=str(tmp_path / 'm.json'), table_name='t', region='us-east-1')
    assert isinstance(create_store(config), LocalStore)
    with pytest.raises(StorageError):
        create_store(StorageConfig(backend='redis', path='', table_name='t', region='us-east-1'))


def test_separate_instances_do_not_lose_writes(tmp_path):
    path = str(tmp_path / 'memory.json')
    stores = [LocalStore(path), LocalStore(path)]

    def write(store, prefix):
        for n in range(25):
            store.put('notes', f'{prefix}-{n:02d}', {'content': prefix})

    threads = [threading.Thread(target=write, args=(store, prefix)) for store, prefix in zip(stores, 'ab')]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(LocalStore(path).scan('notes')) == 50
    assert os.path.exists(path + '.lock')
