from __future__ import annotations

import copy
import sys
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest


def _ensure_package_on_path() -> None:
    here = Path(__file__).resolve()
    root = here.parent.parent.parent
    if str(root) not in sys.path:
        sys.path.insert(0, str(root))


_ensure_package_on_path()


class FakeAPIError(Exception):
    def __init__(self, message, code=None):
        super().__init__(message)
        self.message = message
        self.code = code


class _Result:
    def __init__(self, data=None, count=None):
        self.data = data
        self.count = count


class _AnyOf:
    def __init__(self, values):
        self.values = list(values)

    def __eq__(self, other):
        return other in self.values

    def __repr__(self):
        return f"in{self.values!r}"


def _sort_key(value):
    return (value is None, value)


class _Query:
    def __init__(self, db, table):
        self._db = db
        self._table = table
        self._op = None
        self._payload = None
        self._filters = []
        self._order = []
        self._limit = None
        self._on_conflict = None
        self._ignore_duplicates = False

    def select(self, *_args, **_kwargs):
        if self._op is None:
            self._op = "select"
        return self

    def insert(self, data):
        self._op = "insert"
        self._payload = data
        return self

    def update(self, data):
        self._op = "update"
        self._payload = data
        return self

    def upsert(self, data, on_conflict=None, ignore_duplicates=False, **_kwargs):
        self._op = "upsert"
        self._payload = data
        self._on_conflict = on_conflict
        self._ignore_duplicates = ignore_duplicates
        return self

    def delete(self):
        self._op = "delete"
        return self

    def eq(self, field, value):
        self._filters.append((field, value))
        return self

    def in_(self, field, values):
        self._filters.append((field, _AnyOf(values)))
        return self

    def order(self, column, desc=False, **_kwargs):
        self._order.append((column, desc))
        return self

    def limit(self, n):
        self._limit = n
        return self

    def _matches(self, row):
        return all(row.get(field) == value for field, value in self._filters)

    def execute(self):
        op = self._op or "select"
        self._db.calls.append((self._table, op, copy.deepcopy(self._payload), list(self._filters)))
        failure = self._db.failures.get((self._table, op))
        if failure is not None:
            raise failure
        hook = self._db.before.get((self._table, op))
        if hook is not None:
            self._db.before.pop((self._table, op))
            hook(self._db)

        table = self._db.tables.setdefault(self._table, [])
        if op == "select":
            found = [r for r in table if self._matches(r)]
            for column, desc in reversed(self._order):
                found.sort(key=lambda r: _sort_key(r.get(column)), reverse=desc)
            if self._limit is not None:
                found = found[: self._limit]
            return _Result(copy.deepcopy(found))
        if op == "insert":
            payload = self._payload if isinstance(self._payload, list) else [self._payload]
            return _Result([self._db.insert_row(self._table, row) for row in payload])
        if op == "update":
            updated = []
            for row in table:
                if self._matches(row):
                    row.update(copy.deepcopy(self._payload))
                    updated.append(copy.deepcopy(row))
            return _Result(updated)
        if op == "upsert":
            keys = [k.strip() for k in (self._on_conflict or "id").split(",")]
            existing = [r for r in table if all(r.get(k) == self._payload.get(k) for k in keys)]
            if existing:
                if self._ignore_duplicates:
                    return _Result([])
                existing[0].update(copy.deepcopy(self._payload))
                return _Result([copy.deepcopy(existing[0])])
            return _Result([self._db.insert_row(self._table, self._payload)])
        if op == "delete":
            removed = [r for r in table if self._matches(r)]
            self._db.tables[self._table] = [r for r in table if not self._matches(r)]
            return _Result(copy.deepcopy(removed))
        raise AssertionError(f"unsupported op {op}")


class _Rpc:
    def __init__(self, db, name, params):
        self._db = db
        self._name = name
        self._params = params

    def execute(self):
        self._db.calls.append(("rpc", self._name, self._params, []))
        failure = self._db.failures.get(("rpc", self._name))
        if failure is not None:
            raise failure
        return _Result([])


class FakeSupabase:
    """In-memory stand-in for the supabase-py table API used by the services."""

    def __init__(self):
        self.tables = {}
        self.calls = []
        self.failures = {}
        self.before = {}
        self._seq = 0
        self.unique = {
            "conversation_tags": [(("conversation_id", "tag_id"), None)],
            "contact_tags": [(("contact_id", "tag_id"), None)],
            "pipeline_cards": [(("contact_id", "pipeline_id"), lambda r: r.get("status") == "aberto")],
        }

    def table(self, name):
        return _Query(self, name)

    def rpc(self, name, params=None):
        return _Rpc(self, name, params)

    def seed(self, table, *rows):
        return [self.insert_row(table, row) for row in rows]

    def insert_row(self, table, row):
        row = copy.deepcopy(row)
        self._seq += 1
        row.setdefault("id", str(uuid.uuid4()))
        row.setdefault(
            "created_at",
            (datetime(2026, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=self._seq)).isoformat(),
        )
        rows = self.tables.setdefault(table, [])
        for keys, predicate in self.unique.get(table, []):
            if predicate is not None and not predicate(row):
                continue
            for other in rows:
                if predicate is not None and not predicate(other):
                    continue
                if all(other.get(k) == row.get(k) for k in keys):
                    raise FakeAPIError(
                        f'duplicate key value violates unique constraint on {table}',
                        code="23505",
                    )
        rows.append(row)
        return copy.deepcopy(row)

    def rows(self, table, **filters):
        return [
            copy.deepcopy(r)
            for r in self.tables.get(table, [])
            if all(r.get(k) == v for k, v in filters.items())
        ]

    def fail(self, table, op, exc=None):
        self.failures[(table, op)] = exc or Exception(f"{table} {op} failed")

    def writes(self, table):
        return [c for c in self.calls if c[0] == table and c[1] in {"insert", "update", "upsert", "delete"}]


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def fake_db():
    return FakeSupabase()


@pytest.fixture
def settings():
    from tezeus_crm.config import CrmSettings

    return CrmSettings()


@pytest.fixture
def container(fake_db, settings):
    from tezeus_crm.container import CrmContainer

    return CrmContainer.build(client=fake_db, settings=settings)
