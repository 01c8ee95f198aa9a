"""
Document store contract plus the in-process backend.

Filters follow one mapping shape for every backend:

    {"role": "patient"}                       equality
    {"assignedTherapist": ("in", ids)}        operator + value
    {"id": ("in", ids)}                       "id" addresses the document id

`order` is a `(field, "asc"|"desc")` pair; `start_after` is a record previously
returned by the same collection (it must carry "id" and the order field).
"""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

IN_QUERY_LIMIT = 10
BATCH_WRITE_LIMIT = 500
DOC_ID = "id"

_OPERATORS = {"==", "!=", "<", "<=", ">", ">=", "in", "not-in", "array-contains"}


class _DeleteField:
    def __repr__(self) -> str:
        return "DELETE_FIELD"


DELETE_FIELD = _DeleteField()


class StoreError(RuntimeError):
    def __init__(self, message: str, code: Optional[str] = None, details: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code
        self.details = details

    def __str__(self) -> str:
        base = super().__str__()
        extra = []
        if self.code is not None:
            extra.append(f"code={self.code}")
        if self.details:
            extra.append(f"details={self.details}")
        if not extra:
            return base
        return f"{base} ({', '.join(extra)})"


class DocumentNotFound(StoreError):
    pass


Predicate = Tuple[str, str, Any]


def normalize_filters(filters: Optional[Dict[str, Any]]) -> List[Predicate]:
    out: List[Predicate] = []
    if not filters:
        return out
    for key, value in filters.items():
        if isinstance(value, tuple) and len(value) == 2 and value[0] in _OPERATORS:
            op, raw_val = value
        else:
            op, raw_val = "==", value
        if op in ("in", "not-in"):
            raw_val = list(raw_val) if isinstance(raw_val, (list, tuple, set)) else [raw_val]
            if not raw_val:
                raise StoreError(f"'{op}' filter on {key} needs at least one value")
            if len(raw_val) > IN_QUERY_LIMIT:
                raise StoreError(
                    f"'{op}' filter on {key} supports at most {IN_QUERY_LIMIT} values",
                    details=f"got {len(raw_val)}",
                )
        out.append((key, op, raw_val))
    return out


def parse_order(order: Optional[Any]) -> Optional[Tuple[str, str]]:
    if not order:
        return None
    if isinstance(order, (tuple, list)) and len(order) == 2:
        field_name, direction = order
    else:
        field_name, direction = str(order), "asc"
    direction = str(direction).lower()
    if direction not in ("asc", "desc"):
        raise StoreError(f"Unsupported order direction: {direction}")
    return str(field_name), direction


class Collection(ABC):
    name: str

    @abstractmethod
    def get(self, doc_id: str, *, columns: Optional[Sequence[str]] = None) -> Optional[Dict[str, Any]]:
        """Return the document (with "id") or None."""

    @abstractmethod
    def select(
        self,
        *,
        filters: Optional[Dict[str, Any]] = None,
        columns: Optional[Sequence[str]] = None,
        order: Optional[Any] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        start_after: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """Run a query; rows always carry "id"."""

    @abstractmethod
    def count(self, *, filters: Optional[Dict[str, Any]] = None) -> int:
        ...

    @abstractmethod
    def insert(self, values: Dict[str, Any], *, doc_id: Optional[str] = None) -> Dict[str, Any]:
        ...

    @abstractmethod
    def update(self, doc_id: str, values: Dict[str, Any]) -> None:
        """Merge `values` into an existing document; raises DocumentNotFound."""

    @abstractmethod
    def delete(self, doc_id: str) -> None:
        ...


class Transaction(ABC):
    """Reads must happen before writes; writes apply when the callback returns."""

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def update(self, collection: str, doc_id: str, values: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> None:
        ...


class WriteBatch(ABC):
    """All-or-nothing group of writes."""

    @abstractmethod
    def update(self, collection: str, doc_id: str, values: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> None:
        ...

    @abstractmethod
    def commit(self) -> None:
        ...

    def __len__(self) -> int:
        return 0


class Store(ABC):
    @abstractmethod
    def collection(self, name: str) -> Collection:
        ...

    @abstractmethod
    def run_transaction(self, fn: Callable[[Transaction], T]) -> T:
        ...

    @abstractmethod
    def batch(self) -> WriteBatch:
        ...

    def ping(self) -> bool:
        return True


# -----------------------------
# In-process backend
# -----------------------------
_MISSING = object()


def _field_value(doc_id: str, doc: Dict[str, Any], field_name: str) -> Any:
    if field_name == DOC_ID:
        return doc_id
    return doc.get(field_name, _MISSING)


def _matches(doc_id: str, doc: Dict[str, Any], predicates: Iterable[Predicate]) -> bool:
    for field_name, op, expected in predicates:
        actual = _field_value(doc_id, doc, field_name)
        if actual is _MISSING:
            return False
        try:
            if op == "==" and not actual == expected:
                return False
            if op == "!=" and not actual != expected:
                return False
            if op == "in" and actual not in expected:
                return False
            if op == "not-in" and actual in expected:
                return False
            if op == "array-contains" and not (isinstance(actual, list) and expected in actual):
                return False
            if op == "<" and not actual < expected:
                return False
            if op == "<=" and not actual <= expected:
                return False
            if op == ">" and not actual > expected:
                return False
            if op == ">=" and not actual >= expected:
                return False
        except TypeError:
            return False
    return True


def _sort_key(value: Any, doc_id: str) -> Tuple[Tuple[int, Any], str]:
    # Nulls sort first, ties break on document id.
    if value is None:
        return (0, 0), doc_id
    return (1, value), doc_id


def _apply_update(doc: Dict[str, Any], values: Dict[str, Any]) -> None:
    for key, value in values.items():
        if key == DOC_ID:
            continue
        if value is DELETE_FIELD:
            doc.pop(key, None)
        else:
            doc[key] = copy.deepcopy(value)


def _project(doc_id: str, doc: Dict[str, Any], columns: Optional[Sequence[str]]) -> Dict[str, Any]:
    if columns:
        row = {col: copy.deepcopy(doc[col]) for col in columns if col in doc}
    else:
        row = copy.deepcopy(doc)
    row[DOC_ID] = doc_id
    return row


class MemoryCollection(Collection):
    def __init__(self, store: "MemoryStore", name: str) -> None:
        self._store = store
        self.name = name

    @property
    def _docs(self) -> Dict[str, Dict[str, Any]]:
        return self._store._data.setdefault(self.name, {})

    def get(self, doc_id: str, *, columns: Optional[Sequence[str]] = None) -> Optional[Dict[str, Any]]:
        with self._store._lock:
            doc = self._docs.get(doc_id)
            if doc is None:
                return None
            return _project(doc_id, doc, columns)

    def select(
        self,
        *,
        filters: Optional[Dict[str, Any]] = None,
        columns: Optional[Sequence[str]] = None,
        order: Optional[Any] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        start_after: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        predicates = normalize_filters(filters)
        ordering = parse_order(order)
        with self._store._lock:
            self._store.reads += 1
            matched = [(doc_id, doc) for doc_id, doc in self._docs.items() if _matches(doc_id, doc, predicates)]

            if ordering:
                field_name, direction = ordering
                # Documents without the order field are not part of an ordered result.
                matched = [(i, d) for i, d in matched if _field_value(i, d, field_name) is not _MISSING]
            else:
                field_name, direction = DOC_ID, "asc"
            keyed = [(_sort_key(_field_value(i, d, field_name), i), i, d) for i, d in matched]
            reverse = direction == "desc"
            try:
                keyed.sort(key=lambda item: item[0], reverse=reverse)
            except TypeError as exc:
                raise StoreError(f"Cannot order {self.name} by {field_name}", details=str(exc)) from exc

            if start_after is not None:
                anchor_id = str(start_after.get(DOC_ID) or "")
                anchor_val = anchor_id if field_name == DOC_ID else start_after.get(field_name)
                anchor = _sort_key(anchor_val, anchor_id)
                try:
                    if reverse:
                        keyed = [item for item in keyed if item[0] < anchor]
                    else:
                        keyed = [item for item in keyed if item[0] > anchor]
                except TypeError as exc:
                    raise StoreError(f"Invalid cursor for {self.name}", details=str(exc)) from exc

            if offset:
                keyed = keyed[int(offset):]
            if limit is not None:
                keyed = keyed[: int(limit)]
            return [_project(doc_id, doc, columns) for _, doc_id, doc in keyed]

    def count(self, *, filters: Optional[Dict[str, Any]] = None) -> int:
        predicates = normalize_filters(filters)
        with self._store._lock:
            self._store.reads += 1
            return sum(1 for doc_id, doc in self._docs.items() if _matches(doc_id, doc, predicates))

    def insert(self, values: Dict[str, Any], *, doc_id: Optional[str] = None) -> Dict[str, Any]:
        new_id = doc_id or uuid.uuid4().hex[:20]
        with self._store._lock:
            if new_id in self._docs:
                raise StoreError(f"Document already exists: {self.name}/{new_id}", code="ALREADY_EXISTS")
            doc: Dict[str, Any] = {}
            _apply_update(doc, values)
            self._docs[new_id] = doc
            return _project(new_id, doc, None)

    def update(self, doc_id: str, values: Dict[str, Any]) -> None:
        with self._store._lock:
            doc = self._docs.get(doc_id)
            if doc is None:
                raise DocumentNotFound(f"No document to update: {self.name}/{doc_id}", code="NOT_FOUND")
            _apply_update(doc, values)

    def delete(self, doc_id: str) -> None:
        with self._store._lock:
            self._docs.pop(doc_id, None)


class MemoryTransaction(Transaction):
    def __init__(self, store: "MemoryStore") -> None:
        self._store = store
        self._writes: List[Tuple[str, str, str, Optional[Dict[str, Any]]]] = []

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        if self._writes:
            raise StoreError("Transactions require all reads to be executed before all writes")
        return self._store.collection(collection).get(doc_id)

    def update(self, collection: str, doc_id: str, values: Dict[str, Any]) -> None:
        self._writes.append(("update", collection, doc_id, dict(values)))

    def delete(self, collection: str, doc_id: str) -> None:
        self._writes.append(("delete", collection, doc_id, None))

    def _commit(self) -> None:
        _commit_writes(self._store, self._writes)


class MemoryWriteBatch(WriteBatch):
    def __init__(self, store: "MemoryStore") -> None:
        self._store = store
        self._writes: List[Tuple[str, str, str, Optional[Dict[str, Any]]]] = []
        self._committed = False

    def update(self, collection: str, doc_id: str, values: Dict[str, Any]) -> None:
        self._writes.append(("update", collection, doc_id, dict(values)))

    def delete(self, collection: str, doc_id: str) -> None:
        self._writes.append(("delete", collection, doc_id, None))

    def commit(self) -> None:
        if self._committed:
            raise StoreError("Batch already committed")
        if len(self._writes) > BATCH_WRITE_LIMIT:
            raise StoreError(f"A batch can contain at most {BATCH_WRITE_LIMIT} writes", details=f"got {len(self._writes)}")
        _commit_writes(self._store, self._writes)
        self._committed = True

    def __len__(self) -> int:
        return len(self._writes)


def _commit_writes(store: "MemoryStore", writes: List[Tuple[str, str, str, Optional[Dict[str, Any]]]]) -> None:
    with store._lock:
        # Validate everything first so a failing write leaves no partial commit.
        for kind, collection, doc_id, _ in writes:
            if kind == "update" and doc_id not in store._data.get(collection, {}):
                raise DocumentNotFound(f"No document to update: {collection}/{doc_id}", code="NOT_FOUND")
        for kind, collection, doc_id, values in writes:
            docs = store._data.setdefault(collection, {})
            if kind == "delete":
                docs.pop(doc_id, None)
            elif doc_id in docs:
                _apply_update(docs[doc_id], values or {})
        store.writes += len(writes)


class MemoryStore(Store):
    """Thread-safe, non-durable store; transactions run serialized under one lock."""

    def __init__(self) -> None:
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self.reads = 0
        self.writes = 0

    def collection(self, name: str) -> MemoryCollection:
        return MemoryCollection(self, name)

    def run_transaction(self, fn: Callable[[Transaction], T]) -> T:
        with self._lock:
            txn = MemoryTransaction(self)
            result = fn(txn)
            txn._commit()
            return result

    def batch(self) -> MemoryWriteBatch:
        return MemoryWriteBatch(self)


_store: Optional[Store] = None


def get_store(config: Any) -> Store:
    global _store
    if _store is not None:
        return _store

    backend = getattr(config, "store_backend", "firestore")
    if backend == "memory":
        logger.warning("Using the in-memory store; data will not survive a restart")
        _store = MemoryStore()
    elif backend == "firestore":
        from mentacare.firestore import FirestoreStore

        _store = FirestoreStore.from_config(config)
    else:
        raise RuntimeError(f"Unknown STORE_BACKEND: {backend}")
    return _store
