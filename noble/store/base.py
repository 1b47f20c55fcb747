import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from noble.errors import StoreUnavailable

logger = logging.getLogger(__name__)

Document = dict[str, Any]
SnapshotCallback = Callable[[list[Document]], Awaitable[None] | None]
ErrorCallback = Callable[[Exception], Awaitable[None] | None]

FilterOp = Literal["==", "!=", "<", "<=", ">", ">=", "in", "array_contains"]


class FieldFilter(BaseModel):
    """A single condition on a top-level document field."""

    model_config = ConfigDict(frozen=True)

    field: str
    op: FilterOp
    value: Any


class OrderBy(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    descending: bool = False


class Query(BaseModel):
    """Filter/sort query over one collection.

    Filters are combined with AND. Results are ordered by a single field,
    documents with equal keys are ordered by insertion: oldest first when
    ascending, newest first when descending.
    """

    model_config = ConfigDict(frozen=True)

    collection: str
    filters: tuple[FieldFilter, ...] = ()
    order_by: OrderBy | None = None
    offset: int = Field(0, ge=0)
    limit: int | None = Field(None, ge=1)

    def where(self, field: str, op: FilterOp, value: Any) -> "Query":
        condition = FieldFilter(field=field, op=op, value=encode_value(value))
        return self.model_copy(update={"filters": (*self.filters, condition)})

    def ordered(self, field: str, descending: bool = False) -> "Query":
        return self.model_copy(
            update={"order_by": OrderBy(field=field, descending=descending)}
        )

    def page(self, offset: int = 0, limit: int | None = None) -> "Query":
        return self.model_copy(update={"offset": offset, "limit": limit})


class Increment(BaseModel):
    """Field update that adds `amount` to the stored number."""

    model_config = ConfigDict(frozen=True)

    amount: int = 1


class Append(BaseModel):
    """Field update that appends `values` to the stored list.

    A missing field counts as an empty list. With `max_length`, the commit
    fails with ValueError if the list would grow past it.
    """

    model_config = ConfigDict(frozen=True)

    values: list[Any]
    max_length: int | None = Field(None, ge=0)


class WriteOp(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["create", "set", "update", "delete"]
    collection: str
    doc_id: str
    data: Document


def encode_value(value: Any) -> Any:
    """Convert a value into the plain form documents are stored in.

    Enums become their values, nested models and containers are converted
    recursively. Datetimes are kept as aware datetime objects.
    """
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, BaseModel):
        return encode_value(value.model_dump())
    if isinstance(value, dict):
        return {str(k): encode_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [encode_value(v) for v in value]
    if isinstance(value, datetime) and value.tzinfo is None:
        raise ValueError("Naive datetimes cannot be stored")
    return value


def _encode_field(value: Any) -> Any:
    if isinstance(value, Increment):
        return value
    if isinstance(value, Append):
        return value.model_copy(update={"values": encode_value(value.values)})
    return encode_value(value)


class WriteBatch:
    """Group of writes committed atomically.

    Either every write in the batch is applied or none is.
    """

    def __init__(self, store: "DocumentStore") -> None:
        self._store = store
        self._ops: list[WriteOp] = []
        self._committed = False

    def create(self, collection: str, doc_id: str, data: Document) -> "WriteBatch":
        """Add a document, failing the commit with Conflict if it exists."""
        return self._add("create", collection, doc_id, data)

    def set(self, collection: str, doc_id: str, data: Document) -> "WriteBatch":
        """Create or fully replace a document."""
        return self._add("set", collection, doc_id, data)

    def update(self, collection: str, doc_id: str, fields: Document) -> "WriteBatch":
        """Merge fields into an existing document, failing with NotFound if absent.

        Values may be `Increment` or `Append` instances.
        """
        return self._add("update", collection, doc_id, fields)

    def delete(self, collection: str, doc_id: str) -> "WriteBatch":
        """Remove a document. Deleting a missing document is not an error."""
        return self._add("delete", collection, doc_id, {})

    def _add(
        self,
        kind: Literal["create", "set", "update", "delete"],
        collection: str,
        doc_id: str,
        data: Document,
    ) -> "WriteBatch":
        if self._committed:
            raise RuntimeError("Batch has already been committed")
        encoded = {key: _encode_field(value) for key, value in data.items()}
        self._ops.append(
            WriteOp(kind=kind, collection=collection, doc_id=doc_id, data=encoded)
        )
        return self

    @property
    def ops(self) -> list[WriteOp]:
        return list(self._ops)

    async def commit(self) -> None:
        if self._committed:
            raise RuntimeError("Batch has already been committed")
        self._committed = True
        if not self._ops:
            return
        await self._store._commit(self._ops)
        self._store._notify({op.collection for op in self._ops})


class Subscription:
    """Handle for a live query.

    Delivers the full result list once on start and again each time it
    changes. The handle must be cancelled to release the listener.
    """

    def __init__(
        self,
        store: "DocumentStore",
        query: Query,
        on_update: SnapshotCallback,
        on_error: ErrorCallback | None = None,
        poll_interval: float | None = None,
    ) -> None:
        self._store = store
        self._query = query
        self._on_update = on_update
        self._on_error = on_error
        self._poll_interval = poll_interval
        self._changed = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._last: list[Document] | None = None

    @property
    def query(self) -> Query:
        return self._query

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is not None:
            raise RuntimeError("Subscription already started")
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.debug("Subscription started on %s", self._query.collection)

    def notify(self) -> None:
        self._changed.set()

    async def cancel(self) -> None:
        """Stop delivering updates and release the listener. Safe to repeat."""
        self._store._unregister(self)
        if self._task is None or self._task.done():
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        logger.debug("Subscription cancelled on %s", self._query.collection)

    async def _run(self) -> None:
        try:
            while True:
                self._changed.clear()
                try:
                    documents = await self._store.query(self._query)
                except StoreUnavailable as e:
                    # Transient, retried on the next change or poll.
                    logger.warning(
                        "Live query on %s failed: %s", self._query.collection, e
                    )
                    await self._call(self._on_error, e)
                else:
                    if documents != self._last:
                        self._last = documents
                        await self._call(self._on_update, documents)
                await self._wait_for_change()
        except Exception as e:
            logger.exception("Live query on %s stopped", self._query.collection)
            self._store._unregister(self)
            try:
                await self._call(self._on_error, e)
            except Exception:
                logger.exception(
                    "Error callback for %s failed", self._query.collection
                )

    async def _wait_for_change(self) -> None:
        if self._poll_interval is None:
            await self._changed.wait()
            return
        try:
            await asyncio.wait_for(self._changed.wait(), timeout=self._poll_interval)
        except TimeoutError:
            pass

    @staticmethod
    async def _call(callback: Callable[[Any], Any] | None, argument: Any) -> None:
        if callback is None:
            return
        result = callback(argument)
        if inspect.isawaitable(result):
            await result


class DocumentStore(ABC):
    """Collection/document store with atomic batches and live queries.

    Implementations provide `get`, `query` and `_commit`. Local commits
    wake the subscriptions watching the touched collections.
    """

    poll_interval: float | None = None

    def __init__(self) -> None:
        self._subscriptions: set[Subscription] = set()

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Document | None:
        """Fetch one document, or None if it does not exist."""

    @abstractmethod
    async def query(self, query: Query) -> list[Document]:
        """Run a query and return the matching documents in order."""

    @abstractmethod
    async def _commit(self, ops: list[WriteOp]) -> None:
        """Apply all writes atomically."""

    async def close(self) -> None:
        for subscription in list(self._subscriptions):
            await subscription.cancel()

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    def watch(
        self,
        query: Query,
        on_update: SnapshotCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        """Start a live query. Must be called from a running event loop."""
        subscription = Subscription(
            self, query, on_update, on_error=on_error, poll_interval=self.poll_interval
        )
        self._subscriptions.add(subscription)
        subscription.start()
        return subscription

    def _notify(self, collections: set[str]) -> None:
        for subscription in self._subscriptions:
            if subscription.query.collection in collections:
                subscription.notify()

    def _unregister(self, subscription: Subscription) -> None:
        self._subscriptions.discard(subscription)
