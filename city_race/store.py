"""Document store client.

The engines talk to a key-document database through the async protocol
below. It mirrors what a hosted document store offers: point reads,
predicate queries, real-time subscriptions, partial updates, server
timestamps, and a compare-and-set read-modify-write helper. There are no
cross-document transactions except WriteBatch, which the engines only use
for admin renumbering.

Two implementations are provided:

    MemoryStore    in-process store. Used by tests and by the dev server.
    JsonFileStore  MemoryStore that persists each collection to a JSON
                     file (see json_store.py).

Documents are plain JSON-compatible dicts that always carry their own "id".
Collection names may be paths ("users/u1/location_history") for
subcollections. Field names in `where`, `order_by` and `update` may be
dotted paths into nested maps ("progress.current_quest").
"""

from __future__ import annotations

import copy
import inspect
import logging
import operator
import re
import uuid
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Iterable, Literal, Protocol

from pydantic import BaseModel, Field

from city_race.clock import Clock, SystemClock
from city_race.errors import ConcurrentUpdateConflictError, DocumentNotFoundError

logger = logging.getLogger(__name__)

Where = tuple[str, str, Any]
AtomicFn = Callable[[dict[str, Any]], "dict[str, Any] | None | Awaitable[dict[str, Any] | None]"]
Listener = Callable[["QuerySnapshot"], "Awaitable[None] | None"]

DEFAULT_MAX_ATTEMPTS = 5


class ServerTimestamp:
    """Placeholder replaced with the store's commit time."""

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = ServerTimestamp()


class DocChange(BaseModel):
    type: Literal["added", "modified", "removed"]
    doc: dict[str, Any]


class QuerySnapshot(BaseModel):
    docs: list[dict[str, Any]] = Field(default_factory=list)
    changes: list[DocChange] = Field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.docs)


# ---------------------------------------------------------------------------
# Protocol: every store implementation must match these signatures
# ---------------------------------------------------------------------------

class DocumentStore(Protocol):
    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None: ...

    async def query(
        self,
        collection: str,
        where: Iterable[Where] = (),
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...

    async def subscribe(
        self,
        collection: str,
        listener: Listener,
        where: Iterable[Where] = (),
        order_by: str | None = None,
    ) -> Subscription: ...

    async def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None: ...

    async def set(self, collection: str, doc_id: str, data: dict[str, Any]) -> None: ...

    async def add(self, collection: str, data: dict[str, Any]) -> str: ...

    async def delete(self, collection: str, doc_id: str) -> None: ...

    async def run_atomic_update(
        self,
        collection: str,
        doc_id: str,
        fn: AtomicFn,
        max_attempts: int | None = None,
    ) -> dict[str, Any]: ...

    def server_timestamp(self) -> ServerTimestamp: ...

    def batch(self) -> WriteBatch: ...


# ---------------------------------------------------------------------------
# Field paths and predicates
# ---------------------------------------------------------------------------

_MISSING = object()
_TIMESTAMP_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}")

_COMPARATORS: dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


def get_path(doc: dict[str, Any], path: str, default: Any = None) -> Any:
    node: Any = doc
    for part in path.split("."):
        if not isinstance(node, dict) or part not in node:
            return default
        node = node[part]
    return node


def set_path(doc: dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    node = doc
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[parts[-1]] = value


def _comparable(value: Any) -> Any:
    # Timestamps are stored as ISO strings; compare them as instants so
    # "Z" and "+00:00" spellings order correctly.
    if isinstance(value, str) and _TIMESTAMP_RE.match(value):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return value
    return value


def _matches(doc: dict[str, Any], where: Iterable[Where]) -> bool:
    for field, op, expected in where:
        actual = get_path(doc, field, _MISSING)
        if actual is _MISSING:
            return False
        if op == "in":
            if actual not in expected:
                return False
        elif op == "array_contains":
            if not isinstance(actual, list) or expected not in actual:
                return False
        elif op in _COMPARATORS:
            try:
                if not _COMPARATORS[op](_comparable(actual), _comparable(expected)):
                    return False
            except TypeError:
                return False
        else:
            raise ValueError(f"Unsupported query operator {op!r}")
    return True


# ---------------------------------------------------------------------------
# Subscriptions and batches
# ---------------------------------------------------------------------------

class Subscription:
    """Handle returned by subscribe(). Call unsubscribe() (or the handle) to stop."""

    def __init__(
        self,
        store: MemoryStore,
        collection: str,
        listener: Listener,
        where: tuple[Where, ...],
        order_by: str | None,
    ) -> None:
        self._store = store
        self.collection = collection
        self._listener = listener
        self._where = where
        self._order_by = order_by
        self._last: dict[str, dict[str, Any]] = {}
        self.active = True

    def unsubscribe(self) -> None:
        self.active = False
        self._store._drop_subscription(self)

    __call__ = unsubscribe

    async def _refresh(self, initial: bool = False) -> None:
        if not self.active:
            return
        docs = self._store._run_query(self.collection, self._where, self._order_by, False, None)
        # Snapshot copies; writes mutate the stored dicts in place.
        current = {d["id"]: copy.deepcopy(d) for d in docs}
        changes: list[DocChange] = []
        for doc in docs:
            previous = self._last.get(doc["id"])
            if previous is None:
                changes.append(DocChange(type="added", doc=doc))
            elif previous != doc:
                changes.append(DocChange(type="modified", doc=doc))
        for doc_id, doc in self._last.items():
            if doc_id not in current:
                changes.append(DocChange(type="removed", doc=doc))
        if not changes and not initial:
            return
        self._last = current
        result = self._listener(QuerySnapshot(docs=copy.deepcopy(docs), changes=changes))
        if inspect.isawaitable(result):
            await result


class WriteBatch:
    """Collects set/update/delete writes and commits them together."""

    def __init__(self, store: MemoryStore) -> None:
        self._store = store
        self._ops: list[tuple[str, str, str, dict[str, Any] | None]] = []

    def set(self, collection: str, doc_id: str, data: dict[str, Any]) -> WriteBatch:
        self._ops.append(("set", collection, doc_id, data))
        return self

    def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> WriteBatch:
        self._ops.append(("update", collection, doc_id, fields))
        return self

    def delete(self, collection: str, doc_id: str) -> WriteBatch:
        self._ops.append(("delete", collection, doc_id, None))
        return self

    def __len__(self) -> int:
        return len(self._ops)

    async def commit(self) -> None:
        await self._store._commit_batch(self._ops)
        self._ops = []


# ---------------------------------------------------------------------------
# MemoryStore
# ---------------------------------------------------------------------------

class MemoryStore:
    """In-process document store with per-document versions.

    Args:
        clock:        source for server timestamps. Defaults to SystemClock.
        max_attempts: default retry bound for run_atomic_update.
    """

    def __init__(self, clock: Clock | None = None, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> None:
        self._clock = clock or SystemClock()
        self.max_attempts = max_attempts
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._versions: dict[tuple[str, str], int] = {}
        self._subscriptions: list[Subscription] = []
        self._last_ts: datetime | None = None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        doc = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def query(
        self,
        collection: str,
        where: Iterable[Where] = (),
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        return copy.deepcopy(self._run_query(collection, tuple(where), order_by, descending, limit))

    def _run_query(
        self,
        collection: str,
        where: tuple[Where, ...],
        order_by: str | None,
        descending: bool,
        limit: int | None,
    ) -> list[dict[str, Any]]:
        docs = [d for d in self._collections.get(collection, {}).values() if _matches(d, where)]
        if order_by:
            # Documents without the ordering field are left out, as in hosted stores.
            docs = [d for d in docs if get_path(d, order_by, _MISSING) is not _MISSING]
            docs.sort(key=lambda d: (_comparable(get_path(d, order_by)), d["id"]), reverse=descending)
        else:
            docs.sort(key=lambda d: d["id"], reverse=descending)
        if limit is not None:
            docs = docs[:limit]
        return docs

    def version(self, collection: str, doc_id: str) -> int:
        return self._versions.get((collection, doc_id), 0)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def subscribe(
        self,
        collection: str,
        listener: Listener,
        where: Iterable[Where] = (),
        order_by: str | None = None,
    ) -> Subscription:
        """Register a listener; the initial snapshot is delivered before returning."""
        sub = Subscription(self, collection, listener, tuple(where), order_by)
        self._subscriptions.append(sub)
        await sub._refresh(initial=True)
        return sub

    def _drop_subscription(self, sub: Subscription) -> None:
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)

    async def _notify(self, collections: set[str]) -> None:
        for sub in list(self._subscriptions):
            if sub.active and sub.collection in collections:
                await sub._refresh()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def server_timestamp(self) -> ServerTimestamp:
        return SERVER_TIMESTAMP

    def _commit_time(self) -> datetime:
        ts = self._clock.now()
        if self._last_ts is not None and ts <= self._last_ts:
            ts = self._last_ts + timedelta(microseconds=1)
        self._last_ts = ts
        return ts

    def _resolve(self, value: Any, ts: datetime) -> Any:
        if isinstance(value, ServerTimestamp):
            return ts.isoformat()
        if isinstance(value, dict):
            return {k: self._resolve(v, ts) for k, v in value.items()}
        if isinstance(value, list):
            return [self._resolve(v, ts) for v in value]
        return copy.deepcopy(value)

    def _bump(self, collection: str, doc_id: str) -> None:
        key = (collection, doc_id)
        self._versions[key] = self._versions.get(key, 0) + 1

    def _write_set(self, collection: str, doc_id: str, data: dict[str, Any], ts: datetime) -> None:
        doc = self._resolve(data, ts)
        doc["id"] = doc_id
        self._collections.setdefault(collection, {})[doc_id] = doc
        self._bump(collection, doc_id)

    def _write_update(self, collection: str, doc_id: str, fields: dict[str, Any], ts: datetime) -> None:
        doc = self._collections.get(collection, {}).get(doc_id)
        if doc is None:
            raise DocumentNotFoundError(collection, doc_id)
        for path, value in fields.items():
            if path == "id":
                continue
            set_path(doc, path, self._resolve(value, ts))
        self._bump(collection, doc_id)

    def _write_delete(self, collection: str, doc_id: str) -> bool:
        docs = self._collections.get(collection, {})
        if doc_id not in docs:
            return False
        del docs[doc_id]
        self._bump(collection, doc_id)
        return True

    def _persist(self, collections: set[str]) -> None:
        """Hook for durable subclasses; called after every commit."""

    async def _after_commit(self, collections: set[str]) -> None:
        self._persist(collections)
        await self._notify(collections)

    async def set(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        self._write_set(collection, doc_id, data, self._commit_time())
        await self._after_commit({collection})

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex[:20]
        await self.set(collection, doc_id, data)
        return doc_id

    async def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        self._write_update(collection, doc_id, fields, self._commit_time())
        await self._after_commit({collection})

    async def delete(self, collection: str, doc_id: str) -> None:
        if self._write_delete(collection, doc_id):
            await self._after_commit({collection})

    async def run_atomic_update(
        self,
        collection: str,
        doc_id: str,
        fn: AtomicFn,
        max_attempts: int | None = None,
    ) -> dict[str, Any]:
        """Compare-and-set read-modify-write on one document.

        `fn` receives a private copy of the document and returns the fields
        to change, or None to leave the document untouched. It may be async.
        If the document's version moved while `fn` ran, the whole cycle is
        retried; after `max_attempts` cycles ConcurrentUpdateConflictError
        is raised. Exceptions from `fn` propagate with nothing written.

        Returns the document as committed.
        """
        attempts = max_attempts or self.max_attempts
        for attempt in range(1, attempts + 1):
            current = self._collections.get(collection, {}).get(doc_id)
            if current is None:
                raise DocumentNotFoundError(collection, doc_id)
            version = self.version(collection, doc_id)
            changes = fn(copy.deepcopy(current))
            if inspect.isawaitable(changes):
                changes = await changes
            if self.version(collection, doc_id) != version:
                logger.debug(
                    "atomic update conflict on %s/%s (attempt %d/%d)",
                    collection, doc_id, attempt, attempts,
                )
                continue
            if changes:
                self._write_update(collection, doc_id, changes, self._commit_time())
                await self._after_commit({collection})
            return copy.deepcopy(self._collections[collection][doc_id])
        raise ConcurrentUpdateConflictError(
            f"{collection}/{doc_id} kept changing; gave up after {attempts} attempts"
        )

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    async def _commit_batch(self, ops: list[tuple[str, str, str, dict[str, Any] | None]]) -> None:
        # Validate first so a missing document leaves every write unapplied.
        pending: dict[str, set[str]] = {}
        for kind, collection, doc_id, _ in ops:
            exists = doc_id in self._collections.get(collection, {}) or doc_id in pending.get(collection, set())
            if kind == "update" and not exists:
                raise DocumentNotFoundError(collection, doc_id)
            if kind == "set":
                pending.setdefault(collection, set()).add(doc_id)
        ts = self._commit_time()
        touched: set[str] = set()
        for kind, collection, doc_id, data in ops:
            if kind == "set":
                self._write_set(collection, doc_id, data or {}, ts)
            elif kind == "update":
                self._write_update(collection, doc_id, data or {}, ts)
            else:
                self._write_delete(collection, doc_id)
            touched.add(collection)
        if touched:
            await self._after_commit(touched)
