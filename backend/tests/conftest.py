"""
Shared fixtures: in-memory record and blob stores with failure injection,
and the lifecycle components wired on top of them.
"""
import copy
import os
import sys
import threading
from unittest.mock import MagicMock

import pytest

# Add src to path for import
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from speechtasks.cascade import ProjectCascadeDeleter  # noqa: E402
from speechtasks.contributions import ContributionLifecycleManager  # noqa: E402
from speechtasks.exceptions import Conflict, NotFound, StorageFailure, StoreError  # noqa: E402
from speechtasks.integrity import IntegrityChecker  # noqa: E402
from speechtasks.models import ProjectRole, member_key  # noqa: E402
from speechtasks.permissions import PermissionGate  # noqa: E402
from speechtasks.projects import ProjectService  # noqa: E402
from speechtasks.tasks import TaskService  # noqa: E402
from speechtasks.transactions import TransactionCoordinator  # noqa: E402
from speechtasks.upload_sessions import UploadSessionRegistry  # noqa: E402
from speechtasks.uploads import FileUploadPipeline  # noqa: E402
from speechtasks.validation import ValidationWorkflow  # noqa: E402

BUCKET = 'media-test'


def _matches(row, field, value):
    if value is None:
        return row.get(field) is None
    if isinstance(value, (list, tuple, set, frozenset)):
        return row.get(field) in value
    return row.get(field) == value


def _matches_all(row, filters):
    return all(_matches(row, f, v) for f, v in (filters or {}).items())


class InMemoryRecordStore:
    """
    Dict-backed stand-in for RecordStore with the same method contracts.

    Failures are injected per (operation, table):
        store.fail('delete_where', 'tasks')                    # every call
        store.fail('insert', 'contributions', Conflict('dup'))  # custom error
    """

    def __init__(self):
        self.tables = {}
        self.failures = {}
        self.calls = []
        self.transactions = []
        self._lock = threading.Lock()

    # Failure injection ---------------------------------------------------

    def fail(self, op, table, exc=None):
        self.failures[(op, table)] = exc or StoreError(f"injected {op} failure on {table}")

    def clear_failures(self):
        self.failures.clear()

    def _maybe_fail(self, op, table):
        self.calls.append((op, table))
        exc = self.failures.get((op, table))
        if exc is not None:
            raise exc

    def _table(self, name):
        return self.tables.setdefault(name, {})

    # Reads ---------------------------------------------------------------

    def get(self, table, record_id):
        with self._lock:
            self._maybe_fail('get', table)
            row = self._table(table).get(record_id)
            return copy.deepcopy(row)

    def select(self, table, filters=None, any_of=None):
        with self._lock:
            self._maybe_fail('select', table)
            rows = []
            for row in self._table(table).values():
                if not _matches_all(row, filters):
                    continue
                if any_of and not any(_matches_all(row, group) for group in any_of):
                    continue
                rows.append(copy.deepcopy(row))
            return rows

    def count(self, table, filters=None, any_of=None):
        return len(self.select(table, filters, any_of))

    # Writes --------------------------------------------------------------

    def insert(self, table, item):
        with self._lock:
            self._maybe_fail('insert', table)
            rows = self._table(table)
            if item['id'] in rows:
                raise Conflict(f"{table} row {item['id']} already exists")
            rows[item['id']] = copy.deepcopy(item)
            return item

    def insert_many(self, table, items):
        with self._lock:
            self._maybe_fail('insert_many', table)
            for item in items:
                self._table(table)[item['id']] = copy.deepcopy(item)
            return len(items)

    def update(self, table, record_id, values, expected=None):
        with self._lock:
            self._maybe_fail('update', table)
            row = self._table(table).get(record_id)
            if row is None:
                raise NotFound(f"{table} row {record_id} not found")
            if not _matches_all(row, expected):
                raise Conflict(f"{table} row {record_id} was modified concurrently")
            row.update(copy.deepcopy(values))
            return copy.deepcopy(row)

    def delete(self, table, record_id):
        with self._lock:
            self._maybe_fail('delete', table)
            return self._table(table).pop(record_id, None) is not None

    def delete_where(self, table, filters):
        with self._lock:
            self._maybe_fail('delete_where', table)
            rows = self._table(table)
            ids = [rid for rid, row in rows.items() if _matches_all(row, filters)]
            for rid in ids:
                del rows[rid]
            return ids

    # Transaction markers -------------------------------------------------

    def begin_transaction(self):
        self._maybe_fail('begin', '*')
        token = f"tx-{len(self.transactions) + 1}"
        self.transactions.append([token, 'begin'])
        return token

    def commit_transaction(self, token):
        self._maybe_fail('commit', '*')
        self._mark(token, 'commit')

    def rollback_transaction(self, token):
        self._mark(token, 'rollback')

    def _mark(self, token, state):
        for entry in self.transactions:
            if entry[0] == token:
                entry[1] = state

    # Seeding helpers -----------------------------------------------------

    def put(self, table, row):
        self._table(table)[row['id']] = copy.deepcopy(row)
        return row

    def rows(self, table):
        return list(self._table(table).values())


class FakeBlobStore:
    """Blob store double; `upload_failures` makes the next N uploads fail."""

    def __init__(self):
        self.objects = {}
        self.upload_failures = 0
        self.remove_error = None
        self.uploads = []
        self.remove_calls = []

    def upload(self, bucket, path, body, content_type=None):
        self.uploads.append((bucket, path))
        if self.upload_failures:
            self.upload_failures -= 1
            raise StorageFailure('injected upload failure')
        self.objects[(bucket, path)] = body

    def get_public_url(self, bucket, path):
        if not bucket or not path:
            return None
        return f"https://{bucket}.s3.amazonaws.com/{path}"

    def generate_presigned_url(self, bucket, path, expiration=None):
        return f"https://{bucket}.s3.amazonaws.com/{path}?X-Amz-Signature=test"

    def list(self, bucket, prefix=''):
        return [p for (b, p) in self.objects if b == bucket and p.startswith(prefix)]

    def remove(self, bucket, paths):
        self.remove_calls.append((bucket, list(paths)))
        if self.remove_error is not None:
            raise self.remove_error
        removed = 0
        for path in paths:
            if self.objects.pop((bucket, path), None) is not None:
                removed += 1
        return removed


# =============================================================================
# Seed helpers
# =============================================================================

def seed_project(store, project_id='p1', owner='owner', status='active', members=None):
    store.put('projects', {
        'id': project_id, 'name': 'Swahili read speech', 'created_by': owner, 'status': status,
        'source_language': 'sw', 'target_languages': ['en'],
    })
    for user_id, role in (members or {}).items():
        store.put('project_members', {
            'id': member_key(project_id, user_id), 'project_id': project_id, 'user_id': user_id, 'role': role,
        })
    return store.get('projects', project_id)


def seed_task(store, task_id, project_id='p1', task_type='transcription', status='open', **extra):
    task = {
        'id': task_id, 'project_id': project_id, 'type': task_type, 'status': status,
        'priority': 0, 'metadata': {}, 'created_by': 'owner', 'created_at': '2024-01-01T00:00:00+00:00',
    }
    task.update(extra)
    store.put('tasks', task)
    return task


DEFAULT_MEMBERS = {
    'alice': ProjectRole.CONTRIBUTOR,
    'bob': ProjectRole.CONTRIBUTOR,
    'rev': ProjectRole.REVIEWER,
    'mgr': ProjectRole.MANAGER,
}


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def blobs():
    return FakeBlobStore()


@pytest.fixture
def project(store):
    return seed_project(store, members=DEFAULT_MEMBERS)


@pytest.fixture
def gate(store):
    return PermissionGate(store)


@pytest.fixture
def coordinator(store):
    return TransactionCoordinator(store)


@pytest.fixture
def sleep():
    return MagicMock()


@pytest.fixture
def pipeline(store, blobs, coordinator, sleep):
    return FileUploadPipeline(store, blobs, coordinator, sleep=sleep)


@pytest.fixture
def task_service(store, gate, coordinator):
    return TaskService(store, gate, coordinator, max_workers=4)


@pytest.fixture
def manager(store, gate, pipeline, coordinator):
    return ContributionLifecycleManager(store, gate, pipeline, coordinator, bucket=BUCKET)


@pytest.fixture
def workflow(store, gate, coordinator):
    return ValidationWorkflow(store, gate, coordinator, max_workers=4)


@pytest.fixture
def deleter(store, blobs, gate):
    return ProjectCascadeDeleter(store, blobs, gate)


@pytest.fixture
def checker(store):
    return IntegrityChecker(store, max_workers=4)


@pytest.fixture
def project_service(store, gate, coordinator):
    return ProjectService(store, gate, coordinator)


@pytest.fixture
def clock():
    clock = MagicMock()
    clock.return_value = 1_700_000_000
    return clock


@pytest.fixture
def sessions(store, blobs, pipeline, checker, gate, clock):
    return UploadSessionRegistry(store, blobs, pipeline, checker, gate, bucket=BUCKET, ttl_hours=24, clock=clock)


@pytest.fixture
def recording():
    """Bytes that pass every audio rule."""
    return b'RIFF' + b'\x01' * 8000
