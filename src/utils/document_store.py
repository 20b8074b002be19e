"""Document store adapter.

Documents are JSON objects addressed by slash-separated paths with an even
number of segments (``classes/{classId}/members/{uid}``); the odd-length
prefixes are collections. The store offers single-document reads, queries,
live subscriptions, all-or-nothing batches and optimistic transactions.

Every stored document carries an ETag (``version``) regenerated on each write.
A transaction remembers the ETag (or absence) of everything it read and only
commits if all of them are unchanged; otherwise the whole transaction function
runs again against fresh state. Transaction functions must therefore be free of
side effects outside the transaction object.
"""

import copy
import logging
import random
import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import (
    Any,
    Callable,
    Dict,
    Iterator,
    List,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
)

import pytz
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from config import (
    MAX_BATCH_WRITES,
    TRANSACTION_BACKOFF_BASE,
    TRANSACTION_BACKOFF_MAX,
    TRANSACTION_MAX_ATTEMPTS,
    WATCH_POLL_INTERVAL,
)
from core.exceptions import (
    BatchLimitExceededError,
    ClassroomError,
    ConflictRetryExhaustedError,
    DocumentNotFoundError,
    PartialCascadeIncompleteError,
    TransactionConflict,
)
from models.document import DocumentModel
from utils.field_values import apply_set, apply_update, get_field, has_field

logger = logging.getLogger(__name__)

T = TypeVar("T")


def split_path(path: str) -> Tuple[str, str]:
    """Split a document path into (collection path, document id).

    Raises:
        ValueError: If the path does not address a document.
    """
    parts = path.strip("/").split("/")
    if len(parts) < 2 or len(parts) % 2 or not all(parts):
        raise ValueError(f"Invalid document path: '{path}'")
    return "/".join(parts[:-1]), parts[-1]


def new_id() -> str:
    """Generate a random document id."""
    return uuid.uuid4().hex[:20]


def _now() -> str:
    return datetime.now(pytz.utc).isoformat()


@dataclass
class DocumentSnapshot:
    """Value of one document at read time. ``data`` is None when absent."""

    path: str
    data: Optional[Dict[str, Any]] = None
    version: Optional[str] = None
    create_at: Optional[str] = None
    update_at: Optional[str] = None

    @property
    def exists(self) -> bool:
        return self.data is not None

    @property
    def id(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    def to_dict(self) -> Optional[Dict[str, Any]]:
        return copy.deepcopy(self.data)

    def get(self, field_path: str, default: Any = None) -> Any:
        return copy.deepcopy(get_field(self.data, field_path, default))


def _to_snapshot(path: str, model: Optional[DocumentModel]) -> DocumentSnapshot:
    if model is None:
        return DocumentSnapshot(path=path)
    return DocumentSnapshot(
        path=path,
        data=copy.deepcopy(model.data),
        version=model.version,
        create_at=model.create_at,
        update_at=model.update_at,
    )


@dataclass
class _Write:
    op: str  # "set" | "update" | "delete"
    path: str
    data: Optional[Dict[str, Any]] = None
    merge: bool = False


def _compare(op: str, left: Any, right: Any) -> bool:
    try:
        if op == "==":
            return left == right
        if op == "!=":
            return left != right
        if op == "in":
            return left in right
        if op == "array-contains":
            return isinstance(left, list) and right in left
        if left is None or right is None:
            return False
        if op == "<":
            return left < right
        if op == "<=":
            return left <= right
        if op == ">":
            return left > right
        if op == ">=":
            return left >= right
    except TypeError:
        return False
    raise ValueError(f"Unsupported query operator: '{op}'")


class Query:
    """Immutable query over one collection or every collection with a given id.

    Filtering, ordering and limiting are applied in that order.
    Documents missing an ``order_by`` field are left out.
    """

    OPERATORS = ("==", "!=", "<", "<=", ">", ">=", "in", "array-contains")

    def __init__(
        self,
        store: "DocumentStore",
        collection: Optional[str] = None,
        collection_id: Optional[str] = None,
        filters: Tuple[Tuple[str, str, Any], ...] = (),
        orders: Tuple[Tuple[str, str], ...] = (),
        limit_to: Optional[int] = None,
    ):
        self._store = store
        self.collection = collection
        self.collection_id = collection_id
        self._filters = filters
        self._orders = orders
        self._limit = limit_to

    def _copy(self, **changes: Any) -> "Query":
        params = {
            "collection": self.collection,
            "collection_id": self.collection_id,
            "filters": self._filters,
            "orders": self._orders,
            "limit_to": self._limit,
        }
        params.update(changes)
        return Query(self._store, **params)

    def where(self, field_path: str, op: str, value: Any) -> "Query":
        if op not in self.OPERATORS:
            raise ValueError(f"Unsupported query operator: '{op}'")
        return self._copy(filters=self._filters + ((field_path, op, value),))

    def order_by(self, field_path: str, direction: str = "asc") -> "Query":
        if direction not in ("asc", "desc"):
            raise ValueError("direction must be 'asc' or 'desc'")
        return self._copy(orders=self._orders + ((field_path, direction),))

    def limit(self, count: int) -> "Query":
        if count < 1:
            raise ValueError("limit must be positive")
        return self._copy(limit_to=count)

    def get(self) -> List[DocumentSnapshot]:
        return self._store._run_query(self)

    def apply(self, snapshots: Sequence[DocumentSnapshot]) -> List[DocumentSnapshot]:
        results = [
            snap
            for snap in snapshots
            if all(
                _compare(op, get_field(snap.data, field_path), value)
                for field_path, op, value in self._filters
            )
        ]
        for field_path, _ in self._orders:
            results = [snap for snap in results if has_field(snap.data, field_path)]
        # Stable sorts applied last-key-first give a multi-key ordering
        for field_path, direction in reversed(self._orders):
            try:
                results.sort(
                    key=lambda snap: get_field(snap.data, field_path),
                    reverse=direction == "desc",
                )
            except TypeError:
                results.sort(
                    key=lambda snap: str(get_field(snap.data, field_path)),
                    reverse=direction == "desc",
                )
        if self._limit is not None:
            results = results[: self._limit]
        return results


class Transaction:
    """Read-then-write unit handed to ``DocumentStore.run_transaction``.

    All reads must happen before the first staged write. Reads of the same
    path return the snapshot seen the first time.
    """

    def __init__(self, store: "DocumentStore"):
        self._store = store
        self._snapshots: Dict[str, DocumentSnapshot] = {}
        self._writes: List[_Write] = []

    @property
    def read_versions(self) -> Dict[str, Optional[str]]:
        return {path: snap.version for path, snap in self._snapshots.items()}

    def get(self, path: str) -> DocumentSnapshot:
        if self._writes:
            raise ValueError("Transactions must perform all reads before any writes")
        if path not in self._snapshots:
            self._snapshots[path] = self._store.get(path)
        return self._snapshots[path]

    def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> "Transaction":
        split_path(path)
        self._writes.append(_Write("set", path, data, merge))
        return self

    def update(self, path: str, fields: Dict[str, Any]) -> "Transaction":
        split_path(path)
        self._writes.append(_Write("update", path, fields))
        return self

    def delete(self, path: str) -> "Transaction":
        split_path(path)
        self._writes.append(_Write("delete", path))
        return self


class WriteBatch:
    """All-or-nothing group of blind writes, bounded by ``max_batch_writes``."""

    def __init__(self, store: "DocumentStore"):
        self._store = store
        self._writes: List[_Write] = []
        self._committed = False

    def __len__(self) -> int:
        return len(self._writes)

    def _stage(self, write: _Write) -> "WriteBatch":
        if self._committed:
            raise ValueError("Batch already committed")
        if len(self._writes) >= self._store.max_batch_writes:
            raise BatchLimitExceededError(
                f"A batch may carry at most {self._store.max_batch_writes} writes"
            )
        split_path(write.path)
        self._writes.append(write)
        return self

    def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> "WriteBatch":
        return self._stage(_Write("set", path, data, merge))

    def update(self, path: str, fields: Dict[str, Any]) -> "WriteBatch":
        return self._stage(_Write("update", path, fields))

    def delete(self, path: str) -> "WriteBatch":
        return self._stage(_Write("delete", path))

    def commit(self) -> None:
        if self._committed:
            raise ValueError("Batch already committed")
        self._store._with_retry(lambda: self._store._commit(self._writes, {}))
        self._committed = True


class DocumentStore:
    """SQLAlchemy-backed document store with optimistic transactions."""

    def __init__(
        self,
        engine: Engine,
        max_batch_writes: int = MAX_BATCH_WRITES,
        max_attempts: int = TRANSACTION_MAX_ATTEMPTS,
    ):
        """Initialize DocumentStore.

        Args:
            engine: SQLAlchemy engine (see core.database.create_db_engine).
            max_batch_writes: Maximum staged writes per commit.
            max_attempts: Transaction retry budget.
        """
        self.engine = engine
        self.max_batch_writes = max_batch_writes
        self.max_attempts = max_attempts
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)
        self._changed = threading.Condition()
        self._change_seq = 0

    # --- Reads ---

    def get(self, path: str) -> DocumentSnapshot:
        split_path(path)
        with self._session_factory() as db:
            return _to_snapshot(path, db.get(DocumentModel, path))

    def get_all(self, paths: Sequence[str]) -> List[DocumentSnapshot]:
        """Read several documents, preserving the order of ``paths``."""
        if not paths:
            return []
        with self._session_factory() as db:
            rows = {
                row.path: row
                for row in db.query(DocumentModel)
                .filter(DocumentModel.path.in_(list(paths)))
                .all()
            }
            return [_to_snapshot(path, rows.get(path)) for path in paths]

    def query(self, collection: str) -> Query:
        return Query(self, collection=collection.strip("/"))

    def collection_group(self, collection_id: str) -> Query:
        """Query every collection named ``collection_id`` at any depth."""
        return Query(self, collection_id=collection_id)

    def _run_query(self, query: Query) -> List[DocumentSnapshot]:
        with self._session_factory() as db:
            q = db.query(DocumentModel)
            if query.collection is not None:
                q = q.filter(DocumentModel.collection == query.collection)
            else:
                q = q.filter(DocumentModel.collection_id == query.collection_id)
            snapshots = [
                _to_snapshot(row.path, row)
                for row in q.order_by(DocumentModel.path).all()
            ]
        return query.apply(snapshots)

    # --- Single-document writes ---

    def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> None:
        self.batch().set(path, data, merge=merge).commit()

    def update(self, path: str, fields: Dict[str, Any]) -> None:
        """Update fields of an existing document.

        Raises:
            DocumentNotFoundError: If the document does not exist.
        """
        self.batch().update(path, fields).commit()

    def delete(self, path: str) -> None:
        self.batch().delete(path).commit()

    def add(self, collection: str, data: Dict[str, Any]) -> str:
        doc_id = new_id()
        self.set(f"{collection.strip('/')}/{doc_id}", data)
        return doc_id

    # --- Batches and transactions ---

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    def run_transaction(
        self, fn: Callable[[Transaction], T], max_attempts: Optional[int] = None
    ) -> T:
        """Run ``fn`` inside an optimistic transaction.

        ``fn`` reads through ``tx.get`` and stages writes on ``tx``. If any
        document it read changed before commit, ``fn`` is called again on a
        fresh transaction. Exceptions raised by ``fn`` abort immediately and
        nothing is written.

        Args:
            fn: Transaction body.
            max_attempts: Override of the store retry budget.

        Returns:
            Whatever ``fn`` returned on the attempt that committed.

        Raises:
            ConflictRetryExhaustedError: If every attempt conflicted.
        """

        def attempt() -> T:
            tx = Transaction(self)
            result = fn(tx)
            self._commit(tx._writes, tx.read_versions)
            return result

        return self._with_retry(attempt, max_attempts)

    def _with_retry(self, attempt: Callable[[], T], max_attempts: Optional[int] = None) -> T:
        attempts = max_attempts or self.max_attempts
        for number in range(1, attempts + 1):
            try:
                return attempt()
            except TransactionConflict as exc:
                logger.debug(
                    "Conflict on %s (attempt %d/%d)", exc.path, number, attempts
                )
                if number < attempts:
                    time.sleep(self._backoff(number))
        logger.warning("Transaction gave up after %d conflicting attempts", attempts)
        raise ConflictRetryExhaustedError(attempts)

    @staticmethod
    def _backoff(attempt: int) -> float:
        cap = min(TRANSACTION_BACKOFF_MAX, TRANSACTION_BACKOFF_BASE * 2 ** (attempt - 1))
        return random.uniform(0, cap)

    def _commit(
        self, writes: List[_Write], read_versions: Dict[str, Optional[str]]
    ) -> None:
        if not writes:
            return
        if len(writes) > self.max_batch_writes:
            raise BatchLimitExceededError(
                f"A commit may carry at most {self.max_batch_writes} writes"
            )
        now = _now()
        paths = list(dict.fromkeys(list(read_versions) + [w.path for w in writes]))
        try:
            with self._session_factory() as db, db.begin():
                rows = {
                    row.path: row
                    for row in db.query(DocumentModel)
                    .filter(DocumentModel.path.in_(paths))
                    .all()
                }
                for path, expected in read_versions.items():
                    row = rows.get(path)
                    if (row.version if row is not None else None) != expected:
                        raise TransactionConflict(path)

                pending: Dict[str, Optional[Dict[str, Any]]] = {
                    path: row.data for path, row in rows.items()
                }
                for write in writes:
                    current = pending.get(write.path)
                    if write.op == "delete":
                        pending[write.path] = None
                    elif write.op == "update":
                        if current is None:
                            raise DocumentNotFoundError(write.path)
                        pending[write.path] = apply_update(current, write.data, now)
                    else:
                        pending[write.path] = apply_set(current, write.data, write.merge, now)

                for path in dict.fromkeys(w.path for w in writes):
                    data = pending.get(path)
                    row = rows.get(path)
                    if data is None:
                        if row is not None:
                            db.delete(row)
                    elif row is None:
                        collection, doc_id = split_path(path)
                        db.add(
                            DocumentModel(
                                path=path,
                                collection=collection,
                                collection_id=collection.rsplit("/", 1)[-1],
                                doc_id=doc_id,
                                data=data,
                                version=uuid.uuid4().hex,
                                create_at=now,
                                update_at=now,
                            )
                        )
                    else:
                        row.data = data
                        row.version = uuid.uuid4().hex
                        row.update_at = now
        except OperationalError as exc:
            # Lock wait timed out; treat like any other lost race
            if "locked" in str(exc).lower():
                raise TransactionConflict(paths[0]) from exc
            raise
        self._notify()

    # --- Cascades ---

    def delete_in_chunks(
        self,
        query: Query,
        parent_path: str,
        related: Optional[Callable[[DocumentSnapshot], Sequence[str]]] = None,
        writes_per_doc: int = 1,
    ) -> int:
        """Delete everything ``query`` matches, one bounded batch at a time.

        Fetches up to a batch worth of documents, deletes them (plus any
        ``related`` paths), and repeats until a page comes back empty. Not
        atomic as a whole.

        Args:
            query: Documents to delete.
            parent_path: Document owning the cascade, for error reporting.
            related: Extra paths to delete alongside each document.
            writes_per_doc: Deletes staged per matched document.

        Returns:
            Number of matched documents deleted.

        Raises:
            PartialCascadeIncompleteError: If a chunk fails after earlier
                chunks were committed.
        """
        chunk_size = max(1, self.max_batch_writes // writes_per_doc)
        deleted = 0
        try:
            while True:
                chunk = query.limit(chunk_size).get()
                if not chunk:
                    break
                batch = self.batch()
                for snapshot in chunk:
                    batch.delete(snapshot.path)
                    for path in related(snapshot) if related else ():
                        batch.delete(path)
                batch.commit()
                deleted += len(chunk)
        except (ClassroomError, SQLAlchemyError) as exc:
            logger.error(
                "Cascade delete under %s interrupted after %d deletions: %s",
                parent_path,
                deleted,
                exc,
            )
            raise PartialCascadeIncompleteError(parent_path, deleted) from exc
        return deleted

    # --- Live subscriptions ---

    def _notify(self) -> None:
        with self._changed:
            self._change_seq += 1
            self._changed.notify_all()

    def watch(
        self, path: str, poll_interval: Optional[float] = None
    ) -> Iterator[DocumentSnapshot]:
        """Yield the document now and again after every change to it.

        The sequence is lazy and never ends on its own; call again to restart.
        """
        split_path(path)
        return self._watch(lambda: self.get(path), lambda snap: snap.version, poll_interval)

    def watch_query(
        self, query: Query, poll_interval: Optional[float] = None
    ) -> Iterator[List[DocumentSnapshot]]:
        """Yield the query result now and again after every change to it."""
        return self._watch(
            query.get,
            lambda snaps: tuple((snap.path, snap.version) for snap in snaps),
            poll_interval,
        )

    def _watch(
        self,
        read: Callable[[], Any],
        token_of: Callable[[Any], Any],
        poll_interval: Optional[float],
    ) -> Iterator[Any]:
        interval = WATCH_POLL_INTERVAL if poll_interval is None else poll_interval
        last_token: Any = object()
        while True:
            with self._changed:
                seen = self._change_seq
            value = read()
            token = token_of(value)
            if token != last_token:
                last_token = token
                yield value
                continue
            with self._changed:
                if self._change_seq == seen:
                    self._changed.wait(timeout=interval)
