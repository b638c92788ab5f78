"""Persistent JSON-backed memory store (direct, in-process mode).

Reads and writes a single JSON file holding items grouped by category, schema
definitions and index definitions. Without a path the data lives in memory only.

Writes are read-modify-write transactions over the whole file. A thread lock
serializes them within a process and an exclusive lock on `<path>.lock`
serializes them across processes, so concurrent CLI invocations never lose a
confirmed write. Reads need no lock: the file is replaced atomically.
"""

import copy
import json
import os
import platform
import tempfile
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from .logging_config import get_logger
from .store import (IndexNotFoundError, MemoryStore, StorageError, StorageUnavailableError, key_prefix_of,
                    normalize_index_value)

logger = get_logger(__name__)


def _empty() -> Dict[str, Any]:
    return {'items': {}, 'schemas': {}, 'indexes': {}}


def _lock_file(handle) -> None:
    """Block until this process holds the exclusive lock on an open file."""
    if platform.system() == 'Windows':
        import msvcrt
        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_LOCK, 1)
    else:
        import fcntl
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)


def _unlock_file(handle) -> None:
    if platform.system() == 'Windows':
        import msvcrt
        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
    else:
        import fcntl
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


class LocalStore(MemoryStore):
    """Thread-safe, file-backed partition/sort-key store."""

    def __init__(self, path: Optional[str] = None) -> None:
        self.path = path
        self._lock = threading.RLock()
        self._memory = _empty()

        if path:
            try:
                parent = os.path.dirname(os.path.abspath(path))
                os.makedirs(parent, exist_ok=True)
                with self._process_lock():
                    if not os.path.exists(path):
                        self._write(_empty())
            except OSError as e:
                raise StorageUnavailableError(f'Cannot open local store at {path}: {e}')
            logger.debug(f'Opened local store at {path}')

    # ── Internal I/O ──────────────────────────────────────────────────────

    def _read(self) -> Dict[str, Any]:
        if not self.path:
            return self._memory
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except OSError as e:
            raise StorageUnavailableError(f'Cannot read local store at {self.path}: {e}')
        except json.JSONDecodeError as e:
            raise StorageError(f'Corrupt local store at {self.path}: {e}')
        for section, value in _empty().items():
            data.setdefault(section, value)
        return data

    def _write(self, data: Dict[str, Any]) -> None:
        if not self.path:
            self._memory = data
            return
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            fd, tmp_path = tempfile.mkstemp(dir=directory, prefix='.memory-', suffix='.json')
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StorageUnavailableError(f'Cannot write local store at {self.path}: {e}')

    @contextmanager
    def _process_lock(self) -> Iterator[None]:
        if not self.path:
            yield
            return
        try:
            handle = open(f'{self.path}.lock', 'a+', encoding='utf-8')
        except OSError as e:
            raise StorageUnavailableError(f'Cannot open lock file for local store at {self.path}: {e}')
        try:
            _lock_file(handle)
        except OSError as e:
            handle.close()
            raise StorageUnavailableError(f'Cannot lock local store at {self.path}: {e}')
        try:
            yield
        finally:
            _unlock_file(handle)
            handle.close()

    @contextmanager
    def _transaction(self) -> Iterator[Dict[str, Any]]:
        with self._lock, self._process_lock():
            data = self._read()
            yield data
            self._write(data)

    def _snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return self._read()

    # ── Items ─────────────────────────────────────────────────────────────

    def put(self, category: str, key: str, document: Dict[str, Any]) -> None:
        stored = copy.deepcopy(document)
        stored['category'] = category
        stored['key'] = key
        with self._transaction() as data:
            data['items'].setdefault(category, {})[key] = stored

    def get(self, category: str, key: str) -> Optional[Dict[str, Any]]:
        document = self._snapshot()['items'].get(category, {}).get(key)
        return copy.deepcopy(document) if document is not None else None

    def scan(self, category: str, prefix: Optional[str] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        partition = self._snapshot()['items'].get(category, {})
        results = []
        for key in sorted(partition):
            if prefix and not key.startswith(prefix):
                continue
            results.append(copy.deepcopy(partition[key]))
            if limit is not None and len(results) >= limit:
                break
        return results

    def delete(self, category: str, key: str) -> bool:
        with self._transaction() as data:
            partition = data['items'].get(category, {})
            existed = partition.pop(key, None) is not None
            if not partition:
                data['items'].pop(category, None)
        return existed

    def list_partitions(self) -> List[str]:
        return sorted(category for category, items in self._snapshot()['items'].items() if items)

    def list_prefixes(self, category: str, limit: Optional[int] = None) -> List[str]:
        prefixes = []
        for key in sorted(self._snapshot()['items'].get(category, {})):
            prefix = key_prefix_of(key)
            if prefix not in prefixes:
                prefixes.append(prefix)
            if limit is not None and len(prefixes) >= limit:
                break
        return prefixes

    # ── Schemas ───────────────────────────────────────────────────────────

    def create_schema(self, category: str, definition: Dict[str, Any]) -> None:
        with self._transaction() as data:
            data['schemas'][category] = copy.deepcopy(definition)

    def describe_schema(self, category: str) -> Optional[Dict[str, Any]]:
        definition = self._snapshot()['schemas'].get(category)
        return copy.deepcopy(definition) if definition is not None else None

    def list_schemas(self) -> List[Dict[str, Any]]:
        schemas = self._snapshot()['schemas']
        return [copy.deepcopy(schemas[name]) for name in sorted(schemas)]

    def drop_schema(self, category: str) -> bool:
        with self._transaction() as data:
            return data['schemas'].pop(category, None) is not None

    # ── Indexes ───────────────────────────────────────────────────────────

    def create_index(self, name: str, category: str, attribute: str, attr_type: str) -> None:
        with self._transaction() as data:
            data['indexes'][name] = {'name': name, 'category': category, 'attribute': attribute, 'type': attr_type}

    def describe_index(self, name: str) -> Optional[Dict[str, Any]]:
        definition = self._snapshot()['indexes'].get(name)
        return dict(definition) if definition is not None else None

    def list_indexes(self) -> List[Dict[str, Any]]:
        indexes = self._snapshot()['indexes']
        return [dict(indexes[name]) for name in sorted(indexes)]

    def drop_index(self, name: str) -> bool:
        with self._transaction() as data:
            return data['indexes'].pop(name, None) is not None

    def query_index(self, name: str, value: Any, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        data = self._snapshot()
        definition = data['indexes'].get(name)
        if definition is None:
            raise IndexNotFoundError(f"Index '{name}' not found")

        wanted = normalize_index_value(value)
        attribute = definition['attribute']
        partition = data['items'].get(definition['category'], {})
        results = []
        for key in sorted(partition):
            document = partition[key]
            if attribute in document and normalize_index_value(document[attribute]) == wanted:
                results.append(copy.deepcopy(document))
                if limit is not None and len(results) >= limit:
                    break
        return results
