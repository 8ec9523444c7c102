"""
Unit tests for the data gateway – caching, coarse invalidation, error mapping.
"""

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from biofactor.errors import ConstraintViolation, GatewayError, NetworkError, PermissionDenied
from biofactor.gateway import DataGateway, translate_error
from biofactor.models import ListOptions, OrderBy

from conftest import DeferredExecutor, FakeStore, SyncExecutor


# ── Helpers ──────────────────────────────────────────────────────────

def seeded_store():
    return FakeStore({
        "dealers": [
            {"id": "d1", "name": "Agro One", "region": "South", "credit_limit": 10},
            {"id": "d2", "name": "Kisan Mart", "region": "North", "credit_limit": 30},
        ],
        "orders": [{"id": "o1", "dealer_id": "d1"}],
    })


def make_gateway(store=None, executor=None, notifier=None):
    return DataGateway(store or seeded_store(), executor=executor or SyncExecutor(), notifier=notifier)


# ── Tests: list / cache ──────────────────────────────────────────────

def test_list_fetches_once_then_serves_cache():
    store = seeded_store()
    gw = make_gateway(store)
    first = gw.list("dealers")
    second = gw.list("dealers")
    assert first == second
    assert len(store.list_calls("dealers")) == 1


def test_list_returns_copies_of_cached_rows():
    gw = make_gateway()
    rows = gw.list("dealers")
    rows[0]["name"] = "mutated"
    assert gw.list("dealers")[0]["name"] != "mutated"


def test_empty_filter_values_are_dropped():
    store = seeded_store()
    gw = make_gateway(store)
    rows = gw.list("dealers", ListOptions(filters={"region": "South", "status": "", "city": None}))
    assert [r["id"] for r in rows] == ["d1"]
    # Same effective query, same cache entry.
    gw.list("dealers", ListOptions(filters={"region": "South"}))
    assert len(store.list_calls("dealers")) == 1


def test_cache_key_depends_on_options():
    store = seeded_store()
    gw = make_gateway(store)
    gw.list("dealers")
    gw.list("dealers", ListOptions(order_by=OrderBy("credit_limit", ascending=True)))
    gw.list("dealers", ListOptions(limit=1))
    assert len(store.list_calls("dealers")) == 3


def test_cache_key_is_canonical():
    a = ListOptions(filters={"a": 1, "b": 2})
    b = ListOptions(filters={"b": 2, "a": 1})
    assert a.cache_key() == b.cache_key()


# ── Tests: invalidation ──────────────────────────────────────────────

def test_create_marks_every_query_of_resource_stale():
    store = seeded_store()
    executor = DeferredExecutor()
    gw = make_gateway(store, executor=executor)
    gw.list("dealers")
    gw.list("dealers", ListOptions(filters={"region": "North"}))
    gw.list("orders")

    gw.create("dealers", {"name": "New", "region": "East"})

    assert gw.peek("dealers").stale is True
    assert gw.peek("dealers", ListOptions(filters={"region": "North"})).stale is True
    assert gw.peek("orders").stale is False


@pytest.mark.parametrize("mutate", [
    lambda gw: gw.create("dealers", {"name": "X"}),
    lambda gw: gw.update("dealers", "d1", {"name": "Y"}),
    lambda gw: gw.remove("dealers", "d2"),
])
def test_any_write_triggers_refetch_on_next_access(mutate):
    store = seeded_store()
    gw = make_gateway(store)
    gw.list("dealers", ListOptions(filters={"region": "South"}))
    gw.list("dealers")
    assert len(store.list_calls("dealers")) == 2

    mutate(gw)
    gw.list("dealers", ListOptions(filters={"region": "South"}))
    gw.list("dealers")
    assert len(store.list_calls("dealers")) == 4


def test_stale_read_serves_old_rows_then_refreshes():
    store = seeded_store()
    executor = DeferredExecutor()
    gw = make_gateway(store, executor=executor)
    assert len(gw.list("dealers")) == 2

    gw.create("dealers", {"name": "Third"})
    # No optimistic update: the stale rows come back first.
    assert len(gw.list("dealers")) == 2
    assert len(executor.pending) == 1
    # A second read while the refresh is queued does not queue another.
    gw.list("dealers")
    assert len(executor.pending) == 1

    executor.run_all()
    assert gw.peek("dealers").stale is False
    assert len(gw.list("dealers")) == 3


def test_write_during_refresh_keeps_entry_stale():
    store = seeded_store()
    executor = DeferredExecutor()
    gw = make_gateway(store, executor=executor)
    gw.list("dealers")
    gw.create("dealers", {"name": "A"})
    gw.list("dealers")                     # queues refresh
    gw.create("dealers", {"name": "B"})    # lands before the refresh runs
    executor.run_all()
    assert gw.peek("dealers").stale is True


def test_failed_refresh_keeps_rows_and_notifies(capsys):
    store = seeded_store()
    messages = []
    gw = make_gateway(store, notifier=lambda level, msg: messages.append((level, msg)))
    gw.list("dealers")
    gw.invalidate("dealers")
    store.fail_with = OperationalError("SELECT", {}, Exception("connection refused"))

    rows = gw.list("dealers")
    assert len(rows) == 2
    assert gw.peek("dealers").stale is True
    assert messages[-1][0] == "error"
    assert "Background refresh of 'dealers' failed" in capsys.readouterr().out


def test_refetch_replaces_cache_synchronously():
    store = seeded_store()
    gw = make_gateway(store)
    gw.list("orders")
    store.tables["orders"].append({"id": "o2", "dealer_id": "d2"})
    assert len(gw.refetch("orders")) == 2
    assert gw.peek("orders").stale is False


# ── Tests: errors / notifications ────────────────────────────────────

def test_translate_error_taxonomy():
    rls = Exception('new row violates row-level security policy for table "dealers"')
    assert isinstance(translate_error(rls), PermissionDenied)
    assert isinstance(translate_error(IntegrityError("INSERT", {}, Exception("UNIQUE"))), ConstraintViolation)
    assert isinstance(translate_error(OperationalError("SELECT", {}, Exception("down"))), NetworkError)
    assert isinstance(translate_error(ConnectionError("reset")), NetworkError)
    assert type(translate_error(RuntimeError("odd"))) is GatewayError


def test_create_permission_denied_has_distinct_message():
    store = seeded_store()
    store.fail_with = Exception("new row violates row-level security policy")
    messages = []
    gw = make_gateway(store, notifier=lambda level, msg: messages.append((level, msg)))
    with pytest.raises(PermissionDenied):
        gw.create("dealers", {"name": "X"})
    assert messages == [("error", "Permission denied by security policy")]


def test_constraint_violation_propagates_with_backend_message():
    store = seeded_store()
    store.fail_with = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: dealers.phone"))
    messages = []
    gw = make_gateway(store, notifier=lambda level, msg: messages.append((level, msg)))
    with pytest.raises(ConstraintViolation):
        gw.create("dealers", {"name": "X"})
    assert messages[0][0] == "error"
    assert "UNIQUE constraint failed" in messages[0][1]


def test_failed_write_does_not_invalidate_and_is_not_retried():
    store = seeded_store()
    gw = make_gateway(store)
    gw.list("dealers")
    store.fail_with = ConnectionError("offline")
    with pytest.raises(NetworkError):
        gw.update("dealers", "d1", {"name": "Z"})
    assert gw.peek("dealers").stale is False
    assert [c for c in store.calls if c[0] == "update"] == [("update", "dealers")]


def test_success_notifications():
    messages = []
    gw = make_gateway(notifier=lambda level, msg: messages.append((level, msg)))
    created = gw.create("dealers", {"name": "N"})
    gw.update("dealers", created["id"], {"name": "M"})
    gw.remove("dealers", created["id"])
    gw.create("dealers", {"name": "quiet"}, notify=False)
    assert messages == [
        ("success", "Record created successfully"),
        ("success", "Record updated successfully"),
        ("success", "Record deleted successfully"),
    ]


def test_read_errors_propagate():
    store = seeded_store()
    store.fail_with = OperationalError("SELECT", {}, Exception("timeout"))
    with pytest.raises(NetworkError):
        make_gateway(store).list("dealers")


def test_os_errors_are_network_errors():
    assert isinstance(translate_error(OSError("Network is unreachable")), NetworkError)
    assert isinstance(translate_error(TimeoutError("slow")), NetworkError)


# ── Tests: write during a synchronous fetch ──────────────────────────

class WriteDuringListStore(FakeStore):
    """Lets another caller create a dealer while the first list is in flight."""
    def __init__(self, tables=None):
        super().__init__(tables)
        self.gateway = None
        self.armed = True

    def list(self, table, options):
        rows = super().list(table, options)
        if self.armed and table == "dealers":
            self.armed = False
            self.gateway.create("dealers", {"name": "Mid-fetch"})
        return rows


def test_write_during_refetch_leaves_entry_stale():
    store = WriteDuringListStore(seeded_store().tables)
    gw = make_gateway(store)
    store.gateway = gw

    rows = gw.refetch("dealers")
    assert len(rows) == 2
    assert gw.peek("dealers").stale is True
    # The next read revalidates and picks up the concurrent write.
    gw.list("dealers")
    assert len(gw.list("dealers")) == 3
    assert gw.peek("dealers").stale is False


def test_write_during_first_read_leaves_entry_stale():
    store = WriteDuringListStore(seeded_store().tables)
    gw = make_gateway(store)
    store.gateway = gw
    gw.list("dealers")
    assert gw.peek("dealers").stale is True


# ── Tests: refresh ───────────────────────────────────────────────────

def test_refresh_one_resource_refetches_its_queries():
    store = seeded_store()
    gw = make_gateway(store)
    gw.list("dealers")
    gw.list("dealers", ListOptions(filters={"region": "North"}))
    gw.list("orders")
    store.tables["dealers"].append({"id": "d3", "name": "Late", "region": "North"})

    assert gw.refresh("dealers") == 2
    assert len(gw.peek("dealers").rows) == 3
    assert len(gw.peek("dealers", ListOptions(filters={"region": "North"})).rows) == 2
    assert len(store.list_calls("orders")) == 1
    assert gw.peek("dealers").stale is False


def test_refresh_everything():
    store = seeded_store()
    gw = make_gateway(store)
    gw.list("dealers")
    gw.list("orders")
    assert gw.refresh() == 2
    assert len(store.list_calls("dealers")) == 2
    assert len(store.list_calls("orders")) == 2


def test_refresh_uncached_resource_is_a_noop():
    store = seeded_store()
    gw = make_gateway(store)
    assert gw.refresh("orders") == 0
    assert store.calls == []


# ── Tests: cache bound ───────────────────────────────────────────────

def test_cache_evicts_least_recently_read_query():
    store = seeded_store()
    gw = DataGateway(store, executor=SyncExecutor(), max_entries=2)
    north = ListOptions(filters={"region": "North"})
    south = ListOptions(filters={"region": "South"})

    gw.list("dealers")
    gw.list("dealers", north)
    gw.list("dealers")              # most recently read now
    gw.list("dealers", south)       # evicts the North query

    assert len(gw) == 2
    assert gw.peek("dealers", north) is None
    assert gw.peek("dealers") is not None
    assert gw.peek("dealers", south) is not None


def test_many_distinct_filters_stay_bounded():
    gw = DataGateway(seeded_store(), executor=SyncExecutor(), max_entries=10)
    for i in range(50):
        gw.list("dealers", ListOptions(filters={"name": f"n{i}"}))
    assert len(gw) == 10
