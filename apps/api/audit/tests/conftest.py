from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import pytest
from google.api_core.exceptions import AlreadyExists, NotFound

from apps.api.audit import sequence


@dataclass
class _Snap:
    id: str
    _data: Optional[Dict[str, Any]]

    @property
    def exists(self) -> bool:
        return self._data is not None

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._data or {})


class _DocRef:
    def __init__(self, col: "_Collection", doc_id: str):
        self._col = col
        self._db = col._db
        self.id = doc_id

    def _check(self, op: str, data: Optional[Dict[str, Any]] = None):
        self._db._maybe_fail(op, self._col._name, self.id, data)

    def get(self, transaction=None):
        _ = transaction
        self._check("get")
        self._db.ops.append(("get", self._col._name, self.id))
        override = self._db.read_overrides.get((self._col._name, self.id))
        if override is not None:
            return _Snap(self.id, dict(override))
        data = self._col._docs.get(self.id)
        return _Snap(self.id, dict(data) if data is not None else None)

    def set(self, data: Dict[str, Any], merge: bool = False):
        self._check("set", data)
        self._db.ops.append(("set", self._col._name, self.id))
        if not merge or self.id not in self._col._docs:
            self._col._docs[self.id] = dict(data)
            return
        merged = dict(self._col._docs[self.id])
        merged.update(dict(data))
        self._col._docs[self.id] = merged

    def create(self, data: Dict[str, Any]):
        self._check("create", data)
        if self.id in self._col._docs:
            raise AlreadyExists(f"{self._col._name}/{self.id} already exists")
        self._db.ops.append(("create", self._col._name, self.id))
        self._col._docs[self.id] = dict(data)

    def update(self, data: Dict[str, Any]):
        self._check("update", data)
        if self.id not in self._col._docs:
            raise NotFound(f"{self._col._name}/{self.id} not found")
        self._db.ops.append(("update", self._col._name, self.id))
        merged = dict(self._col._docs[self.id])
        merged.update(dict(data))
        self._col._docs[self.id] = merged

    def delete(self):
        self._check("delete")
        self._db.ops.append(("delete", self._col._name, self.id))
        self._col._docs.pop(self.id, None)


class _Query:
    def __init__(self, col: "_Collection", filters: List[Tuple[str, str, Any]]):
        self._col = col
        self._filters = filters
        self._limit: Optional[int] = None

    def where(self, field: str, op: str, value: Any):
        return _Query(self._col, [*self._filters, (field, op, value)])

    def limit(self, n: int):
        self._limit = int(n)
        return self

    def stream(self) -> Iterable[_Snap]:
        out: List[_Snap] = []
        for doc_id, data in list(self._col._docs.items()):
            if self._matches(data):
                out.append(_Snap(doc_id, dict(data)))
        if self._limit is not None:
            out = out[: self._limit]
        return out

    def _matches(self, data: Dict[str, Any]) -> bool:
        for field, op, value in self._filters:
            if op != "==":
                raise AssertionError(f"Unsupported op in fake db: {op}")
            if data.get(field) != value:
                return False
        return True


class _Collection(_Query):
    def __init__(self, db: "FakeDB", name: str, docs: Dict[str, Dict[str, Any]]):
        self._db = db
        self._name = name
        self._docs = docs
        super().__init__(self, [])

    def document(self, doc_id: str) -> _DocRef:
        return _DocRef(self, doc_id)

    def add(self, data: Dict[str, Any]):
        self._db._maybe_fail("add", self._name, None, data)
        doc_id = f"auto-{len(self._docs) + 1}"
        self._docs[doc_id] = dict(data)
        self._db.ops.append(("add", self._name, doc_id))
        return None, _DocRef(self, doc_id)


class _FakeTransaction:
    def __init__(self, db: "FakeDB"):
        self._db = db
        self._writes: List[Tuple[_DocRef, Dict[str, Any], bool]] = []

    def set(self, ref: _DocRef, data: Dict[str, Any], merge: bool = False):
        self._writes.append((ref, dict(data), merge))

    def _commit(self):
        self._db._maybe_fail("commit", "transaction", None, None)
        for ref, data, merge in self._writes:
            ref.set(data, merge=merge)
        self._writes = []


class _FakeFirestore:
    """Stands in for firebase_admin.firestore inside the allocator."""

    @staticmethod
    def transactional(fn: Callable[..., Any]):
        def wrapper(txn: _FakeTransaction, *args, **kwargs):
            # Serialize like Firestore's optimistic retry would.
            with txn._db._lock:
                result = fn(txn, *args, **kwargs)
                txn._commit()
            return result

        return wrapper


class FakeDB:
    def __init__(self):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.Lock()
        self._failures: List[Tuple[str, str, Optional[Callable[[Optional[str], Optional[Dict[str, Any]]], bool]], Exception]] = []
        self.read_overrides: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.ops: List[Tuple[str, str, Optional[str]]] = []

    def collection(self, name: str) -> _Collection:
        docs = self._collections.setdefault(name, {})
        return _Collection(self, name, docs)

    def transaction(self) -> _FakeTransaction:
        return _FakeTransaction(self)

    def docs(self, name: str) -> Dict[str, Dict[str, Any]]:
        return self._collections.setdefault(name, {})

    def fail(self, op: str, collection: str, *, when=None, exc: Optional[Exception] = None):
        self._failures.append((op, collection, when, exc or RuntimeError(f"injected {op} failure on {collection}")))

    def _maybe_fail(self, op: str, collection: str, doc_id: Optional[str], data: Optional[Dict[str, Any]]):
        for f_op, f_col, when, exc in self._failures:
            if f_op == op and f_col == collection and (when is None or when(doc_id, data)):
                raise exc


@pytest.fixture()
def fake_db(monkeypatch):
    monkeypatch.setattr(sequence, "firestore", _FakeFirestore)
    return FakeDB()


@pytest.fixture()
def seeded_db(fake_db):
    fake_db.docs("customers")["C1"] = {
        "tenant_id": "T1",
        "name": "Acme Logistics",
        "email": "ops@acme.test",
        "billing_email": "ap@acme.test",
    }
    fake_db.docs("loads")["L1"] = {
        "tenant_id": "T1",
        "load_number": "LD-1001",
        "rate": 2500.0,
        "customer_id": "C1",
        "pickup_city": "Dallas",
        "pickup_state": "TX",
        "delivery_city": "Atlanta",
        "delivery_state": "GA",
        "status": "delivered",
        "financial_status": "pending_invoice",
        "billing_notes": None,
    }
    return fake_db
