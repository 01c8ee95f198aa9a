from __future__ import annotations

import contextlib
import logging
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

import firebase_admin
from firebase_admin import credentials, firestore
from google.api_core import exceptions as google_exceptions
from google.cloud.firestore_v1.base_query import FieldFilter

from mentacare.db import (
    BATCH_WRITE_LIMIT,
    DELETE_FIELD,
    DOC_ID,
    Collection,
    DocumentNotFound,
    Store,
    StoreError,
    T,
    Transaction,
    WriteBatch,
    normalize_filters,
    parse_order,
)

logger = logging.getLogger(__name__)

_OP_NAMES = {"array-contains": "array_contains"}


@contextlib.contextmanager
def _translate_errors(action: str) -> Iterator[None]:
    try:
        yield
    except google_exceptions.NotFound as exc:
        raise DocumentNotFound(f"Firestore {action} failed", code="NOT_FOUND", details=str(exc)) from exc
    except google_exceptions.GoogleAPICallError as exc:
        logger.error("Firestore %s failed: %s", action, exc)
        raise StoreError(f"Firestore {action} failed", code=str(exc.code or ""), details=str(exc)) from exc


def _to_firestore(values: Dict[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, value in values.items():
        if key == DOC_ID:
            continue
        out[key] = firestore.DELETE_FIELD if value is DELETE_FIELD else value
    return out


def _snapshot_to_row(snapshot: Any) -> Dict[str, Any]:
    row = snapshot.to_dict() or {}
    row[DOC_ID] = snapshot.id
    return row


class FirestoreCollection(Collection):
    def __init__(self, client: Any, name: str) -> None:
        self._client = client
        self._ref = client.collection(name)
        self.name = name

    def _build_query(self, filters: Optional[Dict[str, Any]]) -> Any:
        query = self._ref
        for field_name, op, value in normalize_filters(filters):
            if field_name == DOC_ID:
                path = firestore.FieldPath.document_id()
                if isinstance(value, list):
                    value = [self._ref.document(str(v)) for v in value]
                else:
                    value = self._ref.document(str(value))
            else:
                path = field_name
            query = query.where(filter=FieldFilter(path, _OP_NAMES.get(op, op), value))
        return query

    def get(self, doc_id: str, *, columns: Optional[Sequence[str]] = None) -> Optional[Dict[str, Any]]:
        with _translate_errors(f"get {self.name}/{doc_id}"):
            snapshot = self._ref.document(doc_id).get(field_paths=list(columns) if columns else None)
        if not snapshot.exists:
            return None
        return _snapshot_to_row(snapshot)

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
        query = self._build_query(filters)
        ordering = parse_order(order)
        if ordering:
            field_name, direction = ordering
            query = query.order_by(
                field_name,
                direction=firestore.Query.DESCENDING if direction == "desc" else firestore.Query.ASCENDING,
            )
        if columns:
            query = query.select(list(columns))
        with _translate_errors(f"query {self.name}"):
            if start_after is not None:
                # Resume from the snapshot so ties on the order field break on document id.
                anchor = self._ref.document(str(start_after[DOC_ID])).get()
                if anchor.exists:
                    query = query.start_after(anchor)
            if offset:
                query = query.offset(int(offset))
            if limit is not None:
                query = query.limit(int(limit))
            return [_snapshot_to_row(snap) for snap in query.stream()]

    def count(self, *, filters: Optional[Dict[str, Any]] = None) -> int:
        query = self._build_query(filters)
        with _translate_errors(f"count {self.name}"):
            results = query.count(alias="total").get()
        return int(results[0][0].value) if results else 0

    def insert(self, values: Dict[str, Any], *, doc_id: Optional[str] = None) -> Dict[str, Any]:
        payload = _to_firestore(values)
        with _translate_errors(f"insert {self.name}"):
            if doc_id:
                ref = self._ref.document(doc_id)
                ref.create(payload)
            else:
                _, ref = self._ref.add(payload)
            snapshot = ref.get()
        return _snapshot_to_row(snapshot)

    def update(self, doc_id: str, values: Dict[str, Any]) -> None:
        with _translate_errors(f"update {self.name}/{doc_id}"):
            self._ref.document(doc_id).update(_to_firestore(values))

    def delete(self, doc_id: str) -> None:
        with _translate_errors(f"delete {self.name}/{doc_id}"):
            self._ref.document(doc_id).delete()


class FirestoreTransaction(Transaction):
    def __init__(self, client: Any, transaction: Any) -> None:
        self._client = client
        self._txn = transaction

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        snapshot = self._client.collection(collection).document(doc_id).get(transaction=self._txn)
        if not snapshot.exists:
            return None
        return _snapshot_to_row(snapshot)

    def update(self, collection: str, doc_id: str, values: Dict[str, Any]) -> None:
        self._txn.update(self._client.collection(collection).document(doc_id), _to_firestore(values))

    def delete(self, collection: str, doc_id: str) -> None:
        self._txn.delete(self._client.collection(collection).document(doc_id))


class FirestoreWriteBatch(WriteBatch):
    def __init__(self, client: Any) -> None:
        self._client = client
        self._batch = client.batch()
        self._size = 0

    def update(self, collection: str, doc_id: str, values: Dict[str, Any]) -> None:
        self._batch.update(self._client.collection(collection).document(doc_id), _to_firestore(values))
        self._size += 1

    def delete(self, collection: str, doc_id: str) -> None:
        self._batch.delete(self._client.collection(collection).document(doc_id))
        self._size += 1

    def commit(self) -> None:
        if self._size > BATCH_WRITE_LIMIT:
            raise StoreError(f"A batch can contain at most {BATCH_WRITE_LIMIT} writes", details=f"got {self._size}")
        with _translate_errors("batch commit"):
            self._batch.commit()

    def __len__(self) -> int:
        return self._size


class FirestoreStore(Store):
    def __init__(self, client: Any) -> None:
        self._client = client

    @classmethod
    def from_config(cls, config: Any) -> "FirestoreStore":
        try:
            app = firebase_admin.get_app()
        except ValueError:
            cred_path = getattr(config, "firebase_credentials", None)
            cred = credentials.Certificate(cred_path) if cred_path else credentials.ApplicationDefault()
            project_id = getattr(config, "firebase_project_id", None)
            options = {"projectId": project_id} if project_id else None
            app = firebase_admin.initialize_app(cred, options)
            logger.info("Firebase app initialized (project=%s)", project_id or "default")
        return cls(firestore.client(app))

    def collection(self, name: str) -> FirestoreCollection:
        return FirestoreCollection(self._client, name)

    def run_transaction(self, fn: Callable[[Transaction], T]) -> T:
        @firestore.transactional
        def _run(txn: Any) -> T:
            return fn(FirestoreTransaction(self._client, txn))

        with _translate_errors("transaction"):
            return _run(self._client.transaction())

    def batch(self) -> FirestoreWriteBatch:
        return FirestoreWriteBatch(self._client)

    def ping(self) -> bool:
        with _translate_errors("ping"):
            list(self._client.collection("users").limit(1).stream())
        return True
