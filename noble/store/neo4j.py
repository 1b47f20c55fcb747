import json
import logging
import re
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, TypeVar

from neo4j import AsyncManagedTransaction
from neo4j.exceptions import (
    ConstraintError,
    ServiceUnavailable,
    SessionExpired,
    TransientError,
)
from neo4j.time import DateTime as Neo4jDateTime

from noble.db import DatabaseManager
from noble.errors import Conflict, NotFound, StoreUnavailable
from noble.store.base import (
    Append,
    Document,
    DocumentStore,
    Increment,
    Query,
    WriteOp,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_IDENTIFIER = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")
_META_FIELDS = ("_collection", "_id", "_json_fields")

_CONDITIONS = {
    "==": "d[${field}] = ${value}",
    "!=": "d[${field}] <> ${value}",
    "<": "d[${field}] < ${value}",
    "<=": "d[${field}] <= ${value}",
    ">": "d[${field}] > ${value}",
    ">=": "d[${field}] >= ${value}",
    "in": "d[${field}] IN ${value}",
    "array_contains": "${value} IN d[${field}]",
}


def _check_field(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid document field name: {name!r}")
    return name


def _needs_json(value: Any) -> bool:
    if isinstance(value, dict):
        return True
    if isinstance(value, list):
        return any(isinstance(item, (dict, list)) for item in value)
    return False


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Cannot serialize {type(value).__name__}")


def to_properties(data: Document) -> tuple[dict[str, Any], list[str]]:
    """Split a document into node properties.

    Nested maps and lists of maps cannot be stored as Neo4j properties, so
    they are stored as JSON strings and their keys returned separately.

    Returns:
        The property map and the list of JSON encoded keys
    """
    properties: dict[str, Any] = {}
    json_fields: list[str] = []
    for key, value in data.items():
        _check_field(key)
        if _needs_json(value):
            properties[key] = json.dumps(value, default=_json_default)
            json_fields.append(key)
        else:
            properties[key] = value
    return properties, json_fields


def _to_native(value: Any) -> Any:
    if isinstance(value, Neo4jDateTime):
        return value.to_native()
    if isinstance(value, list):
        return [_to_native(item) for item in value]
    return value


def from_properties(properties: dict[str, Any]) -> Document:
    """Rebuild a document from node properties."""
    json_fields = set(properties.get("_json_fields") or [])
    document: Document = {}
    for key, value in properties.items():
        if key in _META_FIELDS:
            continue
        if key in json_fields and isinstance(value, str):
            document[key] = json.loads(value)
        else:
            document[key] = _to_native(value)
    return document


class Neo4jDocumentStore(DocumentStore):
    """Document store persisted as `:Document` nodes in Neo4j.

    Each document is one node keyed by `_collection` and `_id`. A batch is
    applied in a single write transaction. Writes from other processes are
    picked up by subscriptions through polling.
    """

    def __init__(self, db: DatabaseManager, poll_interval: float | None = 2.0) -> None:
        super().__init__()
        self._db = db
        self.poll_interval = poll_interval

    async def ensure_schema(self) -> None:
        """Create the document key constraint and collection index."""
        await self._execute(
            self._create_schema, write=True, description="create schema"
        )

    async def close(self) -> None:
        await super().close()
        await self._db.close()

    async def _create_schema(self, tx: AsyncManagedTransaction) -> None:
        await tx.run(
            """
            CREATE CONSTRAINT document_key IF NOT EXISTS
            FOR (d:Document) REQUIRE (d._collection, d._id) IS UNIQUE
            """
        )

    async def _execute(
        self,
        work: Callable[..., Awaitable[T]],
        *args: Any,
        write: bool = False,
        description: str,
    ) -> T:
        """Run a transaction function, mapping driver failures.

        Raises:
            StoreUnavailable: If the database is unreachable or the
                transaction failed transiently after the driver's retries
            Conflict: If a uniqueness constraint rejected the write
        """
        try:
            async with self._db.driver.session(database=self._db.database) as session:
                if write:
                    return await session.execute_write(work, *args)
                return await session.execute_read(work, *args)
        except ConstraintError as e:
            raise Conflict(f"Failed to {description}: {e}") from e
        except (ServiceUnavailable, SessionExpired, TransientError) as e:
            logger.warning("Neo4j unavailable during %s: %s", description, e)
            raise StoreUnavailable(f"Failed to {description}: {e}") from e

    async def get(self, collection: str, doc_id: str) -> Document | None:
        return await self._execute(
            self._get, collection, doc_id, description=f"get {collection}/{doc_id}"
        )

    async def _get(
        self, tx: AsyncManagedTransaction, collection: str, doc_id: str
    ) -> Document | None:
        result = await tx.run(
            """
            MATCH (d:Document {_collection: $collection, _id: $id})
            RETURN properties(d) AS doc
            """,
            collection=collection,
            id=doc_id,
        )
        if record := await result.single():
            return from_properties(record["doc"])
        return None

    async def query(self, query: Query) -> list[Document]:
        return await self._execute(
            self._query, query, description=f"query {query.collection}"
        )

    @staticmethod
    def build_query(query: Query) -> tuple[str, dict[str, Any]]:
        """Translate a Query into Cypher and its parameters."""
        parameters: dict[str, Any] = {"collection": query.collection}
        conditions = []
        for index, condition in enumerate(query.filters):
            field_param, value_param = f"field_{index}", f"value_{index}"
            parameters[field_param] = _check_field(condition.field)
            parameters[value_param] = condition.value
            conditions.append(
                _CONDITIONS[condition.op]
                .replace("${field}", f"${field_param}")
                .replace("${value}", f"${value_param}")
            )

        lines = ["MATCH (d:Document {_collection: $collection})"]
        if conditions:
            lines.append("WHERE " + " AND ".join(conditions))
        lines.append("WITH d")
        if query.order_by is not None:
            parameters["order_field"] = _check_field(query.order_by.field)
            direction = "DESC" if query.order_by.descending else "ASC"
            lines.append(f"ORDER BY d[$order_field] {direction}")
        if query.offset:
            parameters["offset"] = query.offset
            lines.append("SKIP $offset")
        if query.limit is not None:
            parameters["limit"] = query.limit
            lines.append("LIMIT $limit")
        lines.append("RETURN properties(d) AS doc")
        return "\n".join(lines), parameters

    async def _query(self, tx: AsyncManagedTransaction, query: Query) -> list[Document]:
        cypher, parameters = self.build_query(query)
        result = await tx.run(cypher, parameters)
        return [from_properties(record["doc"]) async for record in result]

    async def _commit(self, ops: list[WriteOp]) -> None:
        await self._execute(
            self._apply_writes,
            ops,
            write=True,
            description=f"commit batch of {len(ops)} writes",
        )

    async def _apply_writes(self, tx: AsyncManagedTransaction, ops: list[WriteOp]) -> None:
        """Apply every write of a batch inside one transaction.

        Raising aborts the transaction, so no write of the batch persists.

        Raises:
            Conflict: If a created document already exists
            NotFound: If an updated document does not exist
        """
        for op in ops:
            if op.kind == "create":
                await self._create(tx, op)
            elif op.kind == "set":
                await self._set(tx, op)
            elif op.kind == "delete":
                await self._delete(tx, op)
            else:
                await self._update(tx, op)

    async def _create(self, tx: AsyncManagedTransaction, op: WriteOp) -> None:
        properties, json_fields = to_properties(op.data)
        result = await tx.run(
            """
            OPTIONAL MATCH (existing:Document {_collection: $collection, _id: $id})
            WITH existing
            WHERE existing IS NULL
            CREATE (d:Document)
            SET d = $properties
            RETURN count(d) AS created
            """,
            collection=op.collection,
            id=op.doc_id,
            properties={
                **properties,
                "_collection": op.collection,
                "_id": op.doc_id,
                "_json_fields": json_fields,
            },
        )
        record = await result.single()
        if not record or not record["created"]:
            raise Conflict(f"{op.collection}/{op.doc_id} already exists")

    async def _set(self, tx: AsyncManagedTransaction, op: WriteOp) -> None:
        properties, json_fields = to_properties(op.data)
        await tx.run(
            """
            MERGE (d:Document {_collection: $collection, _id: $id})
            SET d = $properties
            """,
            collection=op.collection,
            id=op.doc_id,
            properties={
                **properties,
                "_collection": op.collection,
                "_id": op.doc_id,
                "_json_fields": json_fields,
            },
        )

    async def _delete(self, tx: AsyncManagedTransaction, op: WriteOp) -> None:
        await tx.run(
            """
            MATCH (d:Document {_collection: $collection, _id: $id})
            DETACH DELETE d
            """,
            collection=op.collection,
            id=op.doc_id,
        )

    async def _update(self, tx: AsyncManagedTransaction, op: WriteOp) -> None:
        """Merge fields into a document.

        Raises:
            NotFound: If the document does not exist
            ValueError: If an `Append` would grow a list past its max_length
        """
        plain = {
            k: v for k, v in op.data.items() if not isinstance(v, (Increment, Append))
        }
        increments = {k: v for k, v in op.data.items() if isinstance(v, Increment)}
        appends = {k: v for k, v in op.data.items() if isinstance(v, Append)}
        properties, json_fields = to_properties(plain)

        lines = [
            "MATCH (d:Document {_collection: $collection, _id: $id})",
            # Lock the node before reading the fields it rewrites.
            "SET d._lock = true",
            "SET d += $properties",
        ]
        parameters: dict[str, Any] = {
            "collection": op.collection,
            "id": op.doc_id,
            "properties": properties,
            "updated_fields": list(plain),
            "json_fields": json_fields,
        }
        for index, (field, increment) in enumerate(increments.items()):
            name = _check_field(field)
            lines.append(
                f"SET d.`{name}` = coalesce(d.`{name}`, 0) + $increment_{index}"
            )
            parameters[f"increment_{index}"] = increment.amount
        returns = ["count(d) AS updated"]
        for index, (field, append) in enumerate(appends.items()):
            name = _check_field(field)
            if _needs_json(append.values):
                raise ValueError(f"Only plain values can be appended to {name}")
            lines.append(
                f"SET d.`{name}` = coalesce(d.`{name}`, []) + $append_{index}"
            )
            parameters[f"append_{index}"] = append.values
            returns.append(f"size(d.`{name}`) AS length_{index}")
        lines.append(
            "SET d._json_fields = [f IN coalesce(d._json_fields, []) "
            "WHERE NOT f IN $updated_fields] + $json_fields"
        )
        lines.append("REMOVE d._lock")
        lines.append("RETURN " + ", ".join(returns))

        result = await tx.run("\n".join(lines), parameters)
        record = await result.single()
        if not record or not record["updated"]:
            raise NotFound(f"{op.collection}/{op.doc_id} not found")
        for index, (field, append) in enumerate(appends.items()):
            limit = append.max_length
            if limit is not None and record[f"length_{index}"] > limit:
                raise ValueError(f"{field} can hold at most {limit} items")
