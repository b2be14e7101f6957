"""Document store on top of SQLModel.

`DocumentStore` offers a small collection/key API (get, set, update,
delete, query), atomic write batches, read-modify-write transactions and
in-process change subscriptions. Records are returned as plain dicts with
the document key under `id`.

Writers are serialized by a re-entrant lock held for the duration of each
commit; every commit runs inside one database transaction so a batch is
applied completely or not at all.
"""

from __future__ import annotations

import json
import logging
import operator
import threading
import uuid
from collections import defaultdict
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from .errors import NotFoundError, StoreError, ValidationError
from .models import Document, utcnow

_LOGGER = logging.getLogger("termbook.store")

Record = Dict[str, Any]
Filter = Tuple[str, str, Any]
Ordering = Tuple[str, str]

_OPS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


def _to_record(doc: Document) -> Record:
    return {**doc.data, "id": doc.key}


def _clean(fields: Dict[str, Any]) -> Dict[str, Any]:
    # the key lives on the row, never inside the JSON blob
    return {k: v for k, v in fields.items() if k != "id"}


def apply_filters(records: Iterable[Record], filters: Sequence[Filter]) -> List[Record]:
    """Return the records matching every `(field, op, value)` filter.

    Records missing a filtered field never match, mirroring how document
    databases treat absent fields in range and equality queries.
    """
    for _field, op, _value in filters:
        if op not in _OPS:
            raise ValidationError(f"unsupported filter operator: {op}")
    out = []
    for rec in records:
        if all(f in rec and _OPS[op](rec[f], v) for f, op, v in filters):
            out.append(rec)
    return out


def apply_ordering(records: Iterable[Record], order_by: Sequence[Ordering]) -> List[Record]:
    """Sort records by several `(field, "asc"|"desc")` pairs.

    Records lacking an ordering field are dropped.
    """
    ordered = [r for r in records if all(f in r for f, _d in order_by)]
    # stable sorts applied from the least significant key upwards
    for field, direction in reversed(list(order_by)):
        if direction not in ("asc", "desc"):
            raise ValidationError(f"unsupported ordering direction: {direction}")
        ordered.sort(key=lambda r: r[field], reverse=direction == "desc")
    return ordered


def locked_select(collection: str, key: str):
    """`SELECT ... FOR UPDATE` for one document.

    Databases with row locks (PostgreSQL, MySQL) hold the row for the rest
    of the transaction; SQLite renders no locking clause and relies on its
    database-level write lock.
    """
    return (
        select(Document)
        .where(Document.collection == collection, Document.key == key)
        .with_for_update()
    )


class Transaction:
    """Reads and writes bound to one open database session."""

    def __init__(self, session: Session):
        self._session = session
        self.touched: set = set()

    def get(self, collection: str, key: str) -> Optional[Record]:
        """Read a document and lock its row until the transaction ends."""
        doc = self._session.exec(locked_select(collection, key)).first()
        return _to_record(doc) if doc else None

    def set(self, collection: str, key: str, fields: Dict[str, Any]) -> None:
        _apply(self._session, ("set", collection, key, fields))
        self.touched.add(collection)

    def update(self, collection: str, key: str, fields: Dict[str, Any]) -> None:
        _apply(self._session, ("update", collection, key, fields))
        self.touched.add(collection)

    def delete(self, collection: str, key: str) -> None:
        _apply(self._session, ("delete", collection, key, None))
        self.touched.add(collection)


def _apply(session: Session, op: tuple) -> None:
    kind, collection, key, fields = op
    doc = session.get(Document, (collection, key))
    if kind == "set":
        if doc is None:
            session.add(Document(collection=collection, key=key, data=_clean(fields)))
        else:
            doc.data = _clean(fields)
            doc.updated_at = utcnow()
            session.add(doc)
    elif kind == "update":
        if doc is None:
            raise NotFoundError(f"no document to update: {collection}/{key}")
        doc.data = {**doc.data, **_clean(fields)}
        doc.updated_at = utcnow()
        session.add(doc)
    elif kind == "delete":
        if doc is not None:
            session.delete(doc)
    else:
        raise ValueError(f"unknown write kind: {kind}")
    # flush so later reads in the same session observe this write
    session.flush()


class WriteBatch:
    """Queued writes committed together by `commit()`."""

    def __init__(self, store: "DocumentStore"):
        self._store = store
        self._ops: List[tuple] = []

    def set(self, collection: str, key: str, fields: Dict[str, Any]) -> "WriteBatch":
        self._ops.append(("set", collection, key, dict(fields)))
        return self

    def update(self, collection: str, key: str, fields: Dict[str, Any]) -> "WriteBatch":
        self._ops.append(("update", collection, key, dict(fields)))
        return self

    def delete(self, collection: str, key: str) -> "WriteBatch":
        self._ops.append(("delete", collection, key, None))
        return self

    def __len__(self) -> int:
        return len(self._ops)

    def commit(self) -> int:
        """Apply every queued write atomically and return how many ran."""
        ops, self._ops = self._ops, []
        self._store._commit(ops)
        return len(ops)


class _Subscription:
    def __init__(self, collection: str, on_change: Callable[[List[Record]], None],
                 filters: Tuple[Filter, ...], order_by: Tuple[Ordering, ...]):
        self.collection = collection
        self.on_change = on_change
        self.filters = filters
        self.order_by = order_by


class DocumentStore:
    """Collection/key document store backed by a SQLAlchemy engine."""

    def __init__(self, engine):
        self.engine = engine
        self._lock = threading.RLock()
        self._subscriptions: Dict[str, List[_Subscription]] = defaultdict(list)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with Session(self.engine) as session:
                yield session
        except SQLAlchemyError as exc:
            _LOGGER.error("store_failed %s", json.dumps({"error": str(exc)}, ensure_ascii=True))
            raise StoreError(str(exc)) from exc

    # reads

    def get(self, collection: str, key: str) -> Optional[Record]:
        """Return the document at `collection/key` or `None`."""
        with self._session() as session:
            doc = session.get(Document, (collection, key))
            return _to_record(doc) if doc else None

    def query(self, collection: str, filters: Sequence[Filter] = (),
              order_by: Sequence[Ordering] = ()) -> List[Record]:
        """Return the documents of `collection` matching `filters`, ordered."""
        with self._session() as session:
            rows = session.exec(select(Document).where(Document.collection == collection)).all()
            records = [_to_record(r) for r in rows]
        return apply_ordering(apply_filters(records, filters), order_by)

    # writes

    def set(self, collection: str, key: str, fields: Dict[str, Any]) -> None:
        """Create or fully replace a document."""
        self._commit([("set", collection, key, dict(fields))])

    def add(self, collection: str, fields: Dict[str, Any]) -> str:
        """Create a document under a generated key and return the key."""
        key = uuid.uuid4().hex
        self.set(collection, key, fields)
        return key

    def update(self, collection: str, key: str, fields: Dict[str, Any]) -> None:
        """Merge `fields` into an existing document."""
        self._commit([("update", collection, key, dict(fields))])

    def delete(self, collection: str, key: str) -> None:
        self._commit([("delete", collection, key, None)])

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        """Run a read-modify-write sequence as one serialized transaction.

        The store lock is held for the whole block so two transactions
        never interleave their reads and writes; the writes land on exit
        or not at all if the block raises.

        The lock only covers this process. Across processes sharing one
        database, `Transaction.get` locks the row it reads, so an existing
        document cannot be overwritten from a stale read. Two processes
        creating the same missing document race on the primary key
        instead: the loser fails with `StoreError` rather than silently
        dropping its write.
        """
        with self._lock:
            with self._session() as session:
                txn = Transaction(session)
                yield txn
                session.commit()
        self._notify(txn.touched)

    def _commit(self, ops: List[tuple]) -> None:
        if not ops:
            return
        with self._lock:
            with self._session() as session:
                for op in ops:
                    _apply(session, op)
                session.commit()
        self._notify({op[1] for op in ops})

    # realtime

    def subscribe(self, collection: str, on_change: Callable[[List[Record]], None],
                  filters: Sequence[Filter] = (), order_by: Sequence[Ordering] = ()) -> Callable[[], None]:
        """Push the current result set now and after every committed change.

        Returns a callable that removes the subscription.
        """
        sub = _Subscription(collection, on_change, tuple(filters), tuple(order_by))
        with self._lock:
            self._subscriptions[collection].append(sub)
        on_change(self.query(collection, sub.filters, sub.order_by))

        def unsubscribe() -> None:
            with self._lock:
                if sub in self._subscriptions[collection]:
                    self._subscriptions[collection].remove(sub)

        return unsubscribe

    def _notify(self, collections: Iterable[str]) -> None:
        for collection in collections:
            with self._lock:
                subs = list(self._subscriptions.get(collection, ()))
            for sub in subs:
                try:
                    sub.on_change(self.query(collection, sub.filters, sub.order_by))
                except Exception:
                    # the write is already committed; a broken listener must not undo it
                    _LOGGER.exception("subscriber_failed %s", json.dumps({"collection": collection}))
