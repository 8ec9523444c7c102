"""
Data gateway – cached list/create/update/remove over named resources.

Reads are stale-while-revalidate: a cached result is served at once and, when
it has been flagged stale, refreshed on the gateway's executor. Every
successful write flags *all* cached queries of that resource stale, whatever
their filters. There is no optimistic update, so a page may show pre-write
rows until the refresh lands.

The cache holds at most ``CACHE_MAX_ENTRIES`` queries; the least recently
read one is evicted first.
"""

import threading
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError

from biofactor.config import CACHE_MAX_ENTRIES, REFRESH_WORKERS, RLS_ERROR_MARKER
from biofactor.errors import ConstraintViolation, GatewayError, NetworkError, PermissionDenied
from biofactor.models import CacheEntry, ListOptions

Notifier = Callable[[str, str], None]


def translate_error(exc: Exception, resource: Optional[str] = None) -> GatewayError:
    """Map a backend exception onto the gateway's error taxonomy."""
    if isinstance(exc, GatewayError):
        return exc

    message = str(exc)
    if RLS_ERROR_MARKER in message.lower():
        return PermissionDenied(message, resource=resource)
    if isinstance(exc, IntegrityError):
        return ConstraintViolation(message, resource=resource)
    if isinstance(exc, (OperationalError, InterfaceError, OSError)):
        return NetworkError(message, resource=resource)
    return GatewayError(message, resource=resource)


def user_message(exc: GatewayError, fallback: str) -> str:
    if isinstance(exc, PermissionDenied):
        return PermissionDenied.user_message
    return str(exc) or fallback


class DataGateway:
    """Uniform cached access to the resource collections of one ResourceStore."""

    def __init__(self, store, executor=None, notifier: Optional[Notifier] = None,
                 max_entries: int = CACHE_MAX_ENTRIES):
        self.store = store
        self.executor = executor or ThreadPoolExecutor(
            max_workers=REFRESH_WORKERS, thread_name_prefix="gateway-refresh"
        )
        self.notifier = notifier
        self.max_entries = max_entries
        self._cache: "OrderedDict[Tuple[str, str], CacheEntry]" = OrderedDict()
        self._writes: Dict[str, int] = {}   # resource -> successful writes so far
        self._lock = threading.Lock()

    # ── Reads ────────────────────────────────────────────────────────

    def list(self, resource: str, options: Optional[ListOptions] = None) -> List[Dict[str, Any]]:
        options = options or ListOptions()
        key = (resource, options.cache_key())

        with self._lock:
            entry = self._cache.get(key)
            if entry is not None:
                self._cache.move_to_end(key)
                rows = entry.rows
                submit = entry.stale and not entry.refreshing
                if submit:
                    entry.refreshing = True
                    generation = self._writes.get(resource, 0)

        if entry is None:
            return self.refetch(resource, options)

        if submit:
            self.executor.submit(self._refresh, key, options, generation)
        return [dict(r) for r in rows]

    def refetch(self, resource: str, options: Optional[ListOptions] = None) -> List[Dict[str, Any]]:
        """Fetch synchronously, replacing whatever is cached for this query.

        A write that lands while the fetch is in flight leaves the new entry
        stale, so the next read revalidates it.
        """
        options = options or ListOptions()
        key = (resource, options.cache_key())
        with self._lock:
            generation = self._writes.get(resource, 0)
        rows = self._fetch(resource, options)
        with self._lock:
            self._cache[key] = CacheEntry(
                resource=resource, key=key[1], rows=rows, options=options,
                stale=self._writes.get(resource, 0) != generation,
                generation=generation,
            )
            self._cache.move_to_end(key)
            while len(self._cache) > self.max_entries:
                self._cache.popitem(last=False)
        return [dict(r) for r in rows]

    def refresh(self, resource: Optional[str] = None) -> int:
        """Invalidate one resource (or every cached one) and re-fetch its queries now.

        Returns the number of queries re-fetched.
        """
        with self._lock:
            targets = [(entry.resource, entry.options) for entry in self._cache.values()
                       if resource is None or entry.resource == resource]
        for name in {r for r, _ in targets} | ({resource} if resource else set()):
            self.invalidate(name)
        for name, options in targets:
            self.refetch(name, options)
        return len(targets)

    def peek(self, resource: str, options: Optional[ListOptions] = None) -> Optional[CacheEntry]:
        options = options or ListOptions()
        with self._lock:
            return self._cache.get((resource, options.cache_key()))

    def __len__(self):
        return len(self._cache)

    def _fetch(self, resource: str, options: ListOptions) -> List[Dict[str, Any]]:
        try:
            return list(self.store.list(resource, options))
        except Exception as e:
            raise translate_error(e, resource) from e

    def _refresh(self, key: Tuple[str, str], options: ListOptions, generation: int) -> None:
        resource = key[0]
        try:
            rows = self._fetch(resource, options)
        except GatewayError as e:
            print(f"[WARN] Background refresh of '{resource}' failed: {e}")
            self._notify("error", user_message(e, "Failed to load records"))
            with self._lock:
                entry = self._cache.get(key)
                if entry is not None:
                    entry.refreshing = False
            return

        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return
            entry.rows = rows
            entry.fetched_at = datetime.utcnow()
            entry.refreshing = False
            entry.generation = generation
            # A write that landed mid-refresh keeps the entry stale.
            entry.stale = self._writes.get(resource, 0) != generation

    # ── Writes ───────────────────────────────────────────────────────

    def create(self, resource: str, fields: Dict[str, Any], notify: bool = True) -> Dict[str, Any]:
        try:
            record = self.store.insert(resource, dict(fields))
        except Exception as e:
            raise self._failed(e, resource, "Failed to create record", notify) from e
        self.invalidate(resource)
        if notify:
            self._notify("success", "Record created successfully")
        return record

    def update(self, resource: str, record_id: Any, fields: Dict[str, Any],
               notify: bool = True) -> Dict[str, Any]:
        try:
            record = self.store.update(resource, record_id, dict(fields))
        except Exception as e:
            raise self._failed(e, resource, "Failed to update record", notify) from e
        self.invalidate(resource)
        if notify:
            self._notify("success", "Record updated successfully")
        return record

    def remove(self, resource: str, record_id: Any, notify: bool = True) -> None:
        try:
            self.store.delete(resource, record_id)
        except Exception as e:
            raise self._failed(e, resource, "Failed to delete record", notify) from e
        self.invalidate(resource)
        if notify:
            self._notify("success", "Record deleted successfully")

    def invalidate(self, resource: str) -> int:
        """Flag every cached query of ``resource`` stale. Returns how many."""
        count = 0
        with self._lock:
            self._writes[resource] = self._writes.get(resource, 0) + 1
            for (name, _), entry in self._cache.items():
                if name == resource:
                    entry.stale = True
                    count += 1
        return count

    # ── Helpers ──────────────────────────────────────────────────────

    def _failed(self, exc: Exception, resource: str, fallback: str, notify: bool) -> GatewayError:
        err = translate_error(exc, resource)
        print(f"[gateway] {type(err).__name__} on '{resource}': {err}")
        if notify:
            self._notify("error", user_message(err, fallback))
        return err

    def _notify(self, level: str, message: str) -> None:
        if self.notifier is not None:
            self.notifier(level, message)

    def close(self) -> None:
        self.executor.shutdown(wait=True)
