import copy
import operator
from collections.abc import Callable
from typing import Any

from noble.errors import Conflict, NotFound
from noble.store.base import (
    Append,
    Document,
    DocumentStore,
    FieldFilter,
    Increment,
    Query,
    WriteOp,
)

_MISSING = object()

_COMPARATORS: dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "in": lambda field, value: field in value,
    "array_contains": lambda field, value: isinstance(field, list) and value in field,
}


def _matches(document: Document, condition: FieldFilter) -> bool:
    field = document.get(condition.field, _MISSING)
    if field is _MISSING or field is None:
        # Missing fields never match, as in Cypher null comparisons.
        return False
    try:
        return _COMPARATORS[condition.op](field, condition.value)
    except TypeError:
        return False


class MemoryDocumentStore(DocumentStore):
    """In-process document store used for local development and tests.

    Every method runs without suspending between reading and writing, so a
    commit is atomic with respect to other coroutines on the loop.
    """

    def __init__(self) -> None:
        super().__init__()
        self._collections: dict[str, dict[str, Document]] = {}

    async def get(self, collection: str, doc_id: str) -> Document | None:
        document = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(document) if document is not None else None

    async def query(self, query: Query) -> list[Document]:
        documents = [
            document
            for document in self._collections.get(query.collection, {}).values()
            if all(_matches(document, condition) for condition in query.filters)
        ]
        if query.order_by is not None:
            key = query.order_by.field
            # None sorts last ascending, first descending.
            documents = sorted(
                documents, key=lambda d: (d.get(key) is None, d.get(key))
            )
            if query.order_by.descending:
                documents.reverse()
        end = query.offset + query.limit if query.limit is not None else None
        return copy.deepcopy(documents[query.offset : end])

    async def _commit(self, ops: list[WriteOp]) -> None:
        # Stage against a copy so a failing op leaves the store untouched.
        staged = {
            name: dict(documents) for name, documents in self._collections.items()
        }
        for op in ops:
            documents = staged.setdefault(op.collection, {})
            existing = documents.get(op.doc_id)
            if op.kind == "create":
                if existing is not None:
                    raise Conflict(f"{op.collection}/{op.doc_id} already exists")
                documents[op.doc_id] = copy.deepcopy(op.data)
            elif op.kind == "set":
                documents[op.doc_id] = copy.deepcopy(op.data)
            elif op.kind == "delete":
                documents.pop(op.doc_id, None)
            else:
                if existing is None:
                    raise NotFound(f"{op.collection}/{op.doc_id} not found")
                documents[op.doc_id] = self._merge(existing, op.data)
        self._collections = staged

    @staticmethod
    def _merge(existing: Document, fields: Document) -> Document:
        merged = dict(existing)
        for key, value in fields.items():
            if isinstance(value, Increment):
                merged[key] = (merged.get(key) or 0) + value.amount
            elif isinstance(value, Append):
                items = [*(merged.get(key) or []), *copy.deepcopy(value.values)]
                if value.max_length is not None and len(items) > value.max_length:
                    raise ValueError(f"{key} can hold at most {value.max_length} items")
                merged[key] = items
            else:
                merged[key] = copy.deepcopy(value)
        return merged

    def clear(self) -> None:
        self._collections.clear()
