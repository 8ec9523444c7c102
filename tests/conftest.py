"""
Shared fixtures: an in-memory SQLite backend and principal factories.
"""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from biofactor.errors import GatewayError
from biofactor.models import Principal, Session
from biofactor.schema import create_all


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    create_all(eng)
    yield eng
    eng.dispose()


def make_principal(role, department=None, id="u-1"):
    return Principal(
        id=id,
        email=f"{role}@biofactor.test",
        display_name=f"{role} user",
        role=role,
        department=department,
    )


def make_session(role, department=None, id="u-1"):
    return Session(principal=make_principal(role, department, id))


class SyncExecutor:
    """Runs submitted refreshes inline."""
    def __init__(self):
        self.submitted = 0

    def submit(self, fn, *args, **kwargs):
        self.submitted += 1
        fn(*args, **kwargs)


class DeferredExecutor:
    """Holds submitted refreshes until run_all() is called."""
    def __init__(self):
        self.pending = []

    def submit(self, fn, *args, **kwargs):
        self.pending.append((fn, args, kwargs))

    def run_all(self):
        pending, self.pending = self.pending, []
        for fn, args, kwargs in pending:
            fn(*args, **kwargs)

    def shutdown(self, wait=True):
        self.pending = []


class FakeStore:
    """In-memory ResourceStore that records every call."""
    def __init__(self, tables=None):
        self.tables = tables or {}
        self.calls = []
        self.next_id = 100
        self.fail_with = None

    def list(self, table, options):
        self.calls.append(("list", table, options.cache_key()))
        if self.fail_with:
            raise self.fail_with
        rows = [r for r in self.tables.get(table, [])
                if all(r.get(k) == v for k, v in options.effective_filters().items())]
        if options.order_by:
            rows.sort(key=lambda r: r[options.order_by.column], reverse=not options.order_by.ascending)
        return [dict(r) for r in rows[:options.limit]]

    def insert(self, table, row):
        self.calls.append(("insert", table))
        if self.fail_with:
            raise self.fail_with
        self.next_id += 1
        created = dict(row, id=str(self.next_id))
        self.tables.setdefault(table, []).append(created)
        return dict(created)

    def update(self, table, record_id, fields):
        self.calls.append(("update", table))
        if self.fail_with:
            raise self.fail_with
        for row in self.tables.get(table, []):
            if row["id"] == record_id:
                row.update(fields)
                return dict(row)
        raise GatewayError("not found", resource=table)

    def delete(self, table, record_id):
        self.calls.append(("delete", table))
        if self.fail_with:
            raise self.fail_with
        self.tables[table] = [r for r in self.tables.get(table, []) if r["id"] != record_id]

    def list_calls(self, table=None):
        return [c for c in self.calls if c[0] == "list" and (table is None or c[1] == table)]
