"""Document store capability set and an in-memory implementation.

The business logic never talks to a concrete database. It depends on the
small set of operations declared by :class:`DocumentStore`: keyed records
grouped into named collections, insert with a generated id, partial update,
delete, equality queries with optional ordering, and live subscriptions that
re-deliver the full matching result set after every change.

Updates and deletes accept an ``expected`` mapping. The store compares those
fields against the current record inside the same critical section as the
write, which gives callers a compare-and-set primitive without a separate
read. This is what prevents two sessions from selling the same vehicle.

Stores that can apply several writes as one unit set
``supports_atomic_write`` and implement :meth:`DocumentStore.atomic_write`.
:class:`InMemoryStore` deliberately does not, modelling a remote document
database without multi-record transactions.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from . import log
from .constants import Collection
from .errors import ConflictError, NotFoundError, WriteError


Record = Dict[str, Any]
Listener = Callable[[List[Record]], None]


class OperationKind(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class WriteOperation:
    """One step of an :meth:`DocumentStore.atomic_write` batch."""

    kind: OperationKind
    collection: Collection
    record_id: Optional[str] = None
    fields: Mapping[str, Any] = field(default_factory=dict)
    expected: Optional[Mapping[str, Any]] = None

    @classmethod
    def insert(cls, collection: Collection, fields: Mapping[str, Any]) -> "WriteOperation":
        return cls(OperationKind.INSERT, collection, fields=fields)

    @classmethod
    def update(
        cls,
        collection: Collection,
        record_id: str,
        changes: Mapping[str, Any],
        *,
        expected: Optional[Mapping[str, Any]] = None,
    ) -> "WriteOperation":
        return cls(OperationKind.UPDATE, collection, record_id=record_id, fields=changes, expected=expected)

    @classmethod
    def delete(
        cls,
        collection: Collection,
        record_id: str,
        *,
        expected: Optional[Mapping[str, Any]] = None,
    ) -> "WriteOperation":
        return cls(OperationKind.DELETE, collection, record_id=record_id, expected=expected)


def generate_record_id() -> str:
    return uuid.uuid4().hex


def normalize_value(value: Any) -> Any:
    """Bring a field value into a canonical form for equality comparisons.

    Numbers compare as decimals (a workbook hands ``8000`` back as ``8000.0``),
    enums as their values, and datetimes as ISO strings.
    """
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, (int, float, Decimal)):
        try:
            return Decimal(str(value)).normalize()
        except InvalidOperation:
            return value
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(UTC)
        return value.isoformat()
    return value


def values_equal(left: Any, right: Any) -> bool:
    return normalize_value(left) == normalize_value(right)


def matches(record: Mapping[str, Any], where: Optional[Mapping[str, Any]]) -> bool:
    """Return ``True`` when every ``where`` field equals the record's field."""
    if not where:
        return True
    return all(values_equal(record.get(key), value) for key, value in where.items())


def check_expected(
    collection: Collection,
    record_id: str,
    record: Mapping[str, Any],
    expected: Optional[Mapping[str, Any]],
) -> None:
    """Raise :class:`ConflictError` when a write precondition does not hold."""
    if not expected:
        return
    mismatched = {
        key: record.get(key)
        for key, value in expected.items()
        if not values_equal(record.get(key), value)
    }
    if mismatched:
        log.debug(
            "Precondition failed on %s/%s: expected %s, found %s",
            collection.value,
            record_id,
            dict(expected),
            mismatched,
        )
        raise ConflictError(
            f"Record {collection.value}/{record_id} changed concurrently",
            details={"collection": collection.value, "id": record_id, "current": mismatched},
        )


def sort_records(records: List[Record], order_by: Optional[str], descending: bool) -> List[Record]:
    """Order records by a named field. Records missing the field sort last."""
    if order_by is None:
        return records
    present = [record for record in records if record.get(order_by) is not None]
    missing = [record for record in records if record.get(order_by) is None]
    present.sort(key=lambda record: normalize_value(record[order_by]), reverse=descending)
    return present + missing


@dataclass
class Subscription:
    """Handle returned by :meth:`DocumentStore.subscribe`."""

    collection: Collection
    listener: Listener
    where: Optional[Mapping[str, Any]] = None
    order_by: Optional[str] = None
    descending: bool = False
    active: bool = True
    _store: Optional["DocumentStore"] = field(default=None, repr=False)

    def close(self) -> None:
        if not self.active:
            return
        self.active = False
        if self._store is not None:
            self._store._subscriptions.remove(self)


class DocumentStore:
    """Base class for document store adapters.

    Subclasses implement the ``_raw_*`` hooks; this class provides locking,
    preconditions, querying, and subscription delivery on top of them. All
    public methods are coroutines so that adapters for remote stores can
    suspend while I/O is in flight.
    """

    supports_atomic_write = False

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._subscriptions: List[Subscription] = []

    # -- hooks --------------------------------------------------------------

    def _raw_get(self, collection: Collection, record_id: str) -> Optional[Record]:
        raise NotImplementedError

    def _raw_all(self, collection: Collection) -> List[Record]:
        raise NotImplementedError

    def _raw_insert(self, collection: Collection, record_id: str, fields: Mapping[str, Any]) -> None:
        raise NotImplementedError

    def _raw_update(self, collection: Collection, record_id: str, changes: Mapping[str, Any]) -> None:
        raise NotImplementedError

    def _raw_delete(self, collection: Collection, record_id: str) -> None:
        raise NotImplementedError

    def _raw_validate(self, collection: Collection, fields: Mapping[str, Any]) -> None:
        """Reject fields the backing storage cannot hold. Default: accept all."""

    # -- public API ---------------------------------------------------------

    async def get(self, collection: Collection, record_id: str) -> Optional[Record]:
        await asyncio.sleep(0)
        async with self._lock:
            record = self._raw_get(collection, record_id)
            return dict(record) if record is not None else None

    async def query(
        self,
        collection: Collection,
        *,
        where: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[Record]:
        await asyncio.sleep(0)
        async with self._lock:
            return self._select(collection, where, order_by, descending)

    async def insert(self, collection: Collection, fields: Mapping[str, Any]) -> str:
        await asyncio.sleep(0)
        async with self._lock:
            self._raw_validate(collection, fields)
            record_id = generate_record_id()
            self._raw_insert(collection, record_id, dict(fields))
            log.debug("Inserted %s/%s", collection.value, record_id)
        self._notify(collection)
        return record_id

    async def update(
        self,
        collection: Collection,
        record_id: str,
        changes: Mapping[str, Any],
        *,
        expected: Optional[Mapping[str, Any]] = None,
    ) -> None:
        await asyncio.sleep(0)
        async with self._lock:
            current = self._require(collection, record_id)
            check_expected(collection, record_id, current, expected)
            self._raw_validate(collection, changes)
            self._raw_update(collection, record_id, dict(changes))
            log.debug("Updated %s/%s fields=%s", collection.value, record_id, sorted(changes))
        self._notify(collection)

    async def delete(
        self,
        collection: Collection,
        record_id: str,
        *,
        expected: Optional[Mapping[str, Any]] = None,
    ) -> None:
        await asyncio.sleep(0)
        async with self._lock:
            current = self._require(collection, record_id)
            check_expected(collection, record_id, current, expected)
            self._raw_delete(collection, record_id)
            log.debug("Deleted %s/%s", collection.value, record_id)
        self._notify(collection)

    async def atomic_write(self, operations: Sequence[WriteOperation]) -> List[Optional[str]]:
        """Apply ``operations`` as one unit, returning the generated insert ids."""
        raise WriteError(f"{type(self).__name__} does not support atomic multi-record writes")

    def subscribe(
        self,
        collection: Collection,
        listener: Listener,
        *,
        where: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> Subscription:
        """Register ``listener`` and deliver the current result set right away."""
        subscription = Subscription(
            collection=collection,
            listener=listener,
            where=dict(where) if where else None,
            order_by=order_by,
            descending=descending,
            _store=self,
        )
        self._subscriptions.append(subscription)
        self._deliver(subscription)
        return subscription

    # -- internals ----------------------------------------------------------

    async def _apply_batch(self, operations: Sequence[WriteOperation]) -> List[Optional[str]]:
        """Check every precondition, then apply every operation, under one lock.

        Adapters whose raw hooks cannot fail part-way (an in-memory workbook,
        for example) use this to back :meth:`atomic_write`.
        """
        await asyncio.sleep(0)
        touched: List[Collection] = []
        async with self._lock:
            for operation in operations:
                self._raw_validate(operation.collection, operation.fields)
                if operation.kind is OperationKind.INSERT:
                    continue
                current = self._require(operation.collection, operation.record_id)
                check_expected(operation.collection, operation.record_id, current, operation.expected)

            results: List[Optional[str]] = []
            for operation in operations:
                if operation.kind is OperationKind.INSERT:
                    record_id = generate_record_id()
                    self._raw_insert(operation.collection, record_id, dict(operation.fields))
                    results.append(record_id)
                elif operation.kind is OperationKind.UPDATE:
                    self._raw_update(operation.collection, operation.record_id, dict(operation.fields))
                    results.append(operation.record_id)
                else:
                    self._raw_delete(operation.collection, operation.record_id)
                    results.append(None)
                if operation.collection not in touched:
                    touched.append(operation.collection)
            log.debug("Applied atomic batch of %d operations", len(operations))

        for collection in touched:
            self._notify(collection)
        return results

    def _require(self, collection: Collection, record_id: str) -> Record:
        record = self._raw_get(collection, record_id)
        if record is None:
            raise NotFoundError(
                f"Unknown {collection.value} id: {record_id}",
                details={"collection": collection.value, "id": record_id},
            )
        return record

    def _select(
        self,
        collection: Collection,
        where: Optional[Mapping[str, Any]],
        order_by: Optional[str],
        descending: bool,
    ) -> List[Record]:
        selected = [dict(record) for record in self._raw_all(collection) if matches(record, where)]
        return sort_records(selected, order_by, descending)

    def _notify(self, collection: Collection) -> None:
        for subscription in list(self._subscriptions):
            if subscription.active and subscription.collection == collection:
                self._deliver(subscription)

    def _deliver(self, subscription: Subscription) -> None:
        records = self._select(
            subscription.collection,
            subscription.where,
            subscription.order_by,
            subscription.descending,
        )
        try:
            subscription.listener(records)
        except Exception:
            # A faulty listener must not turn a committed write into a failure.
            log.exception("Subscription listener on '%s' raised", subscription.collection.value)


class InMemoryStore(DocumentStore):
    """Process-local store keeping each collection as a ``dict`` of records."""

    def __init__(self) -> None:
        super().__init__()
        self._data: Dict[Collection, Dict[str, Record]] = {member: {} for member in Collection}

    def _raw_get(self, collection: Collection, record_id: str) -> Optional[Record]:
        record = self._data[collection].get(record_id)
        return record

    def _raw_all(self, collection: Collection) -> List[Record]:
        return list(self._data[collection].values())

    def _raw_insert(self, collection: Collection, record_id: str, fields: Mapping[str, Any]) -> None:
        self._data[collection][record_id] = {**fields, "id": record_id}

    def _raw_update(self, collection: Collection, record_id: str, changes: Mapping[str, Any]) -> None:
        self._data[collection][record_id].update(changes)
        self._data[collection][record_id]["id"] = record_id

    def _raw_delete(self, collection: Collection, record_id: str) -> None:
        del self._data[collection][record_id]


__all__ = [
    "DocumentStore",
    "InMemoryStore",
    "OperationKind",
    "Record",
    "Subscription",
    "WriteOperation",
    "check_expected",
    "generate_record_id",
    "matches",
    "normalize_value",
    "sort_records",
    "values_equal",
]
