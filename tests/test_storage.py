from dataclasses import replace

import pytest

from awen.services.storage import (InMemoryStore, NullStore, OpenSearchStore, StorageError, build_store, storage_key)
from awen.utils.config import StorageConfig, config
from awen.utils.opensearch_client import OpenSearchError


class BrokenOpenSearchClient:

    def __init__(self):
        self.calls = []

    def create_index_if_not_exists(self):
        raise OpenSearchError('cluster unreachable')

    def get_document(self, key):
        self.calls.append(('get', key))
        raise OpenSearchError('cluster unreachable')

    def put_document(self, key, collection, session_id, payload):
        self.calls.append(('put', key))
        raise OpenSearchError('cluster unreachable')

    def delete_document(self, key):
        self.calls.append(('delete', key))
        raise OpenSearchError('cluster unreachable')

    def health_check(self):
        return False


class DictOpenSearchClient:

    def __init__(self):
        self.documents = {}

    def create_index_if_not_exists(self):
        return True

    def get_document(self, key):
        return self.documents.get(key)

    def put_document(self, key, collection, session_id, payload):
        self.documents[key] = payload
        return True

    def delete_document(self, key):
        return self.documents.pop(key, None) is not None

    def health_check(self):
        return True


def test_storage_key_combines_collection_and_session() -> None:
    assert storage_key('user_preferences', 'abc') == 'user_preferences:abc'


def test_null_store_reads_empty_and_discards_writes() -> None:
    store = NullStore()
    store.put('patterns', 's1', [{'id': 'p'}])

    assert store.available is False
    assert store.get('patterns', 's1') is None


def test_in_memory_store_round_trip_is_isolated() -> None:
    store = InMemoryStore()
    value = [{'id': 'p1', 'examples': ['a']}]
    store.put('patterns', 's1', value)

    loaded = store.get('patterns', 's1')
    loaded[0]['examples'].append('b')
    value[0]['examples'].append('c')

    assert store.get('patterns', 's1') == [{'id': 'p1', 'examples': ['a']}]
    assert store.get('patterns', 's2') is None

    store.delete('patterns', 's1')
    assert store.get('patterns', 's1') is None


def test_in_memory_store_keeps_sessions_apart() -> None:
    store = InMemoryStore()
    store.put('patterns', 'a', [1])
    store.put('patterns', 'b', [2])
    store.put('user_preferences', 'a', {'x': 1})

    assert store.get('patterns', 'a') == [1]
    assert store.get('patterns', 'b') == [2]
    assert store.get('user_preferences', 'a') == {'x': 1}


def test_opensearch_store_swallows_backend_errors() -> None:
    client = BrokenOpenSearchClient()
    store = OpenSearchStore(client)

    store.put('patterns', 's1', [])
    store.delete('patterns', 's1')

    assert store.get('patterns', 's1') is None
    assert client.calls == [('put', 'patterns:s1'), ('delete', 'patterns:s1'), ('get', 'patterns:s1')]
    assert store.health_check() is False


def test_opensearch_store_round_trip() -> None:
    store = OpenSearchStore(DictOpenSearchClient())
    store.put('user_preferences', 's1', {'session_id': 's1'})

    assert store.get('user_preferences', 's1') == {'session_id': 's1'}


@pytest.mark.parametrize('backend, store_type', [('none', NullStore), ('memory', InMemoryStore)])
def test_build_store_selects_backend(backend, store_type) -> None:
    app_config = replace(config, storage=StorageConfig(backend=backend))
    assert isinstance(build_store(app_config), store_type)


def test_build_store_rejects_unknown_backend() -> None:
    with pytest.raises(StorageError):
        build_store(replace(config, storage=StorageConfig(backend='redis')))
