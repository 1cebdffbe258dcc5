"""
Document Store Interface for Beacon

Defines the abstract async document store the emergency services consume,
the query model used for filtered/ordered/limited observation, and the
observation machinery shared by stores whose writes happen in process.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple


class PersistenceError(Exception):
    """Store unreachable or write rejected"""
    pass


class NotFoundError(PersistenceError):
    """Target document does not exist"""
    pass


class _ServerTimestamp:
    """Placeholder replaced by the store clock when a document is written"""

    def __repr__(self):
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()

# Backoff bounds for re-reading after a failed refresh, in seconds
RETRY_INITIAL_DELAY = 0.05
RETRY_MAX_DELAY = 5.0


@dataclass(frozen=True)
class Document:
    """A stored document and its identifier"""
    id: str
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FieldFilter:
    """Single field comparison used by queries"""
    field: str
    op: str
    value: Any

    OPERATORS = ('==',)

    def __post_init__(self):
        if self.op not in self.OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")

    def matches(self, data: Dict[str, Any]) -> bool:
        return self.field in data and data[self.field] == self.value


@dataclass(frozen=True)
class Query:
    """
    Filter, order and limit applied to one collection.

    Documents missing the ordering field are excluded from ordered results.
    """
    filters: Tuple[FieldFilter, ...] = ()
    order_by: Optional[str] = None
    descending: bool = False
    limit: Optional[int] = None

    def where(self, field_name: str, op: str, value: Any) -> 'Query':
        return replace(self, filters=self.filters + (FieldFilter(field_name, op, value),))

    def order(self, field_name: str, descending: bool = False) -> 'Query':
        return replace(self, order_by=field_name, descending=descending)

    def take(self, limit: int) -> 'Query':
        if limit < 1:
            raise ValueError("Query limit must be at least 1")
        return replace(self, limit=limit)

    def apply(self, documents: Iterable[Document]) -> List[Document]:
        """Evaluate this query against an iterable of documents"""
        results = [
            doc for doc in documents
            if all(f.matches(doc.data) for f in self.filters)
        ]

        if self.order_by is not None:
            results = [doc for doc in results if doc.data.get(self.order_by) is not None]
            results.sort(key=lambda doc: doc.data[self.order_by], reverse=self.descending)

        if self.limit is not None:
            results = results[:self.limit]

        return results


class Subscription:
    """
    Handle for a live observation.

    Calling the handle (or ``cancel()``) stops delivery permanently and
    releases the observation; repeated calls are harmless.
    """

    def __init__(self, on_cancel: Optional[Callable[[], None]] = None):
        self._on_cancel = on_cancel
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        on_cancel, self._on_cancel = self._on_cancel, None
        if on_cancel is not None:
            on_cancel()

    def __call__(self) -> None:
        self.cancel()


class ServerClock:
    """Strictly increasing UTC clock used for server-assigned timestamps"""

    def __init__(self):
        self._last: Optional[datetime] = None

    def now(self) -> datetime:
        now = datetime.now(timezone.utc)
        if self._last is not None and now <= self._last:
            now = self._last + timedelta(microseconds=1)
        self._last = now
        return now


def resolve_server_values(fields: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    """Replace SERVER_TIMESTAMP placeholders with the store clock value"""
    return {
        key: (now if value is SERVER_TIMESTAMP else value)
        for key, value in fields.items()
    }


class DocumentStore(ABC):
    """Abstract async document store"""

    @abstractmethod
    async def create(self, collection: str, fields: Dict[str, Any]) -> str:
        """Create a document with a generated id and return the id"""

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        """Read one document, or None if it does not exist"""

    @abstractmethod
    async def query(self, collection: str, query: Query) -> List[Document]:
        """Run a query once"""

    @abstractmethod
    async def list(self, collection: str) -> List[Document]:
        """Read every document in a collection"""

    @abstractmethod
    async def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        """Merge fields into an existing document; NotFoundError if missing"""

    @abstractmethod
    async def update_if(
        self,
        collection: str,
        doc_id: str,
        fields: Dict[str, Any],
        expected: Dict[str, Any]
    ) -> bool:
        """
        Merge fields only while every expected field still holds its value.

        Returns True if the write was applied, False if the document no
        longer matched. Raises NotFoundError if the document is missing.
        """

    @abstractmethod
    async def upsert(self, collection: str, key: str, fields: Dict[str, Any]) -> None:
        """Create or overwrite the document stored under key"""

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        """Delete a document if it exists"""

    @abstractmethod
    def observe(
        self,
        collection: str,
        doc_id: str,
        callback: Callable[[Optional[Document]], None]
    ) -> Subscription:
        """Deliver the current document now and again after every change"""

    @abstractmethod
    def observe_query(
        self,
        collection: str,
        query: Query,
        callback: Callable[[List[Document]], None]
    ) -> Subscription:
        """Deliver the current query result now and again whenever it changes"""

    async def close(self) -> None:
        """Release any resources held by the store"""


class Watcher:
    """
    Delivers snapshots to one subscriber, skipping unchanged ones.

    A watcher whose refresh failed stays stale and re-reads on a timer
    with exponential backoff until a snapshot gets through or the
    subscription is cancelled.
    """

    _UNSET = object()

    def __init__(self, callback: Callable[[Any], None], logger: logging.Logger):
        self.callback = callback
        self.logger = logger
        self.subscription: Optional[Subscription] = None
        self._last: Any = self._UNSET
        self._retry_handle: Optional[asyncio.TimerHandle] = None
        self._retry_delay = RETRY_INITIAL_DELAY

    @property
    def active(self) -> bool:
        return self.subscription is None or self.subscription.active

    @property
    def retry_pending(self) -> bool:
        return self._retry_handle is not None

    def schedule_retry(self, refresh: Callable[[], None]) -> None:
        """Run ``refresh`` again after the current backoff delay"""
        if not self.active or self._retry_handle is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.logger.debug("No running event loop, retry waits for the next write")
            return

        self._retry_handle = loop.call_later(self._retry_delay, self._fire_retry, refresh)
        self._retry_delay = min(self._retry_delay * 2, RETRY_MAX_DELAY)

    def _fire_retry(self, refresh: Callable[[], None]) -> None:
        self._retry_handle = None
        if self.active:
            refresh()

    def cancel_retry(self) -> None:
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None
        self._retry_delay = RETRY_INITIAL_DELAY

    def deliver(self, snapshot: Any) -> None:
        if not self.active:
            return
        self.cancel_retry()
        if snapshot == self._last:
            return

        self._last = snapshot
        try:
            self.callback(snapshot)
        except Exception:
            # Subscriber bugs must not break the writer that triggered delivery
            self.logger.exception("Subscriber callback failed")


class ObservableDocumentStore(DocumentStore):
    """
    Observation support for stores whose writes go through this process.

    Subclasses implement synchronous ``_read`` and ``_run_query`` and call
    ``_notify`` after every successful write.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self.clock = ServerClock()
        self._point_watchers: Dict[Tuple[str, str], List[Watcher]] = {}
        self._query_watchers: Dict[str, List[Tuple[Query, Watcher]]] = {}

    @abstractmethod
    def _read(self, collection: str, doc_id: str) -> Optional[Document]:
        """Read one document synchronously"""

    @abstractmethod
    def _run_query(self, collection: str, query: Query) -> List[Document]:
        """Evaluate a query synchronously"""

    def observe(self, collection, doc_id, callback):
        key = (collection, doc_id)
        watcher = Watcher(callback, self.logger)
        self._point_watchers.setdefault(key, []).append(watcher)
        watcher.subscription = Subscription(lambda: self._remove_point_watcher(key, watcher))
        self._refresh_point(collection, doc_id, watcher)
        return watcher.subscription

    def observe_query(self, collection, query, callback):
        watcher = Watcher(callback, self.logger)
        entry = (query, watcher)
        self._query_watchers.setdefault(collection, []).append(entry)
        watcher.subscription = Subscription(lambda: self._remove_query_watcher(collection, entry))
        self._refresh_query(collection, query, watcher)
        return watcher.subscription

    @property
    def watcher_count(self) -> int:
        """Number of live observations held by this store"""
        return (
            sum(len(w) for w in self._point_watchers.values())
            + sum(len(w) for w in self._query_watchers.values())
        )

    def _remove_point_watcher(self, key: Tuple[str, str], watcher: Watcher) -> None:
        watchers = self._point_watchers.get(key)
        watcher.cancel_retry()
        if watchers and watcher in watchers:
            watchers.remove(watcher)
            if not watchers:
                del self._point_watchers[key]

    def _remove_query_watcher(self, collection: str, entry: Tuple[Query, Watcher]) -> None:
        entries = self._query_watchers.get(collection)
        entry[1].cancel_retry()
        if entries and entry in entries:
            entries.remove(entry)
            if not entries:
                del self._query_watchers[collection]

    def _refresh_point(self, collection: str, doc_id: str, watcher: Watcher) -> None:
        try:
            snapshot = self._read(collection, doc_id)
        except PersistenceError as e:
            self.logger.warning(f"Could not refresh {collection}/{doc_id} for subscriber: {e}")
            watcher.schedule_retry(lambda: self._refresh_point(collection, doc_id, watcher))
            return
        watcher.deliver(snapshot)

    def _refresh_query(self, collection: str, query: Query, watcher: Watcher) -> None:
        try:
            snapshot = self._run_query(collection, query)
        except PersistenceError as e:
            self.logger.warning(f"Could not refresh query on {collection} for subscriber: {e}")
            watcher.schedule_retry(lambda: self._refresh_query(collection, query, watcher))
            return
        watcher.deliver(snapshot)

    def _notify(self, collection: str, doc_id: str) -> None:
        """Re-evaluate every observation affected by a write"""
        for watcher in list(self._point_watchers.get((collection, doc_id), [])):
            self._refresh_point(collection, doc_id, watcher)

        for query, watcher in list(self._query_watchers.get(collection, [])):
            self._refresh_query(collection, query, watcher)
