from __future__ import annotations

import hashlib
import json
import time
import uuid
from typing import Any, Dict, List, Optional

from google.api_core.exceptions import AlreadyExists

from .models import CustomerSnapshot, InvoiceLoadLink, InvoiceRecord, LoadSnapshot


INVOICES = "invoices"
INVOICE_LOADS = "invoice_loads"
LOADS = "loads"
CUSTOMERS = "customers"
AUDIT_LOGS = "audit_logs"
SAGA_COMPENSATIONS = "saga_compensations"

LOAD_STATUS_FIELDS = ("status", "financial_status", "billing_notes")


class LinkConflictError(Exception):
    """The load already has an invoice link."""


class LoadNotFoundError(LookupError):
    pass


def _now() -> float:
    return float(time.time())


def new_invoice_id() -> str:
    return str(uuid.uuid4())


def link_id_for_load(tenant_id: str, load_id: str) -> str:
    # One link document per (tenant, load); a second insert conflicts.
    # Hashing the JSON pair keeps ids containing separators from colliding.
    key = json.dumps([str(tenant_id), str(load_id)])
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def _invoice_doc_ref(db: Any, invoice_id: str):
    return db.collection(INVOICES).document(str(invoice_id))


def _link_doc_ref(db: Any, link_id: str):
    return db.collection(INVOICE_LOADS).document(str(link_id))


def _load_doc_ref(db: Any, load_id: str):
    return db.collection(LOADS).document(str(load_id))


def _owned_load(db: Any, *, tenant_id: str, load_id: str) -> Dict[str, Any]:
    snap = _load_doc_ref(db, load_id).get()
    if not snap.exists:
        raise LoadNotFoundError(f"Load {load_id} not found")
    d = snap.to_dict() or {}
    if str(d.get("tenant_id") or "") != str(tenant_id):
        # Loads of other tenants are treated as missing.
        raise LoadNotFoundError(f"Load {load_id} not found")
    d.setdefault("id", snap.id)
    return d


def get_customer(db: Any, customer_id: Optional[str]) -> Optional[CustomerSnapshot]:
    if not customer_id:
        return None
    snap = db.collection(CUSTOMERS).document(str(customer_id)).get()
    if not snap.exists:
        return None
    d = snap.to_dict() or {}
    return CustomerSnapshot(
        name=d.get("name"),
        email=d.get("email"),
        billing_email=d.get("billing_email"),
        mc_number=(str(d.get("mc_number")).strip() or None) if d.get("mc_number") else None,
        otr_approval_status=d.get("otr_approval_status"),
        factoring_approval=d.get("factoring_approval"),
    )


def get_load_snapshot(db: Any, *, tenant_id: str, load_id: str) -> Optional[LoadSnapshot]:
    """Return the load joined with its customer, or None when not visible to the tenant."""
    try:
        d = _owned_load(db, tenant_id=tenant_id, load_id=load_id)
    except LoadNotFoundError:
        return None

    rate = d.get("rate")
    return LoadSnapshot(
        id=str(d.get("id") or load_id),
        load_number=str(d.get("load_number") or load_id),
        reference_number=d.get("reference_number"),
        rate=(float(rate) if rate is not None else None),
        customer_id=d.get("customer_id"),
        pickup_city=d.get("pickup_city"),
        pickup_state=d.get("pickup_state"),
        delivery_city=d.get("delivery_city"),
        delivery_state=d.get("delivery_state"),
        customers=get_customer(db, d.get("customer_id")),
        status=d.get("status"),
        financial_status=d.get("financial_status"),
        billing_notes=d.get("billing_notes"),
    )


def insert_invoice(db: Any, record: InvoiceRecord) -> None:
    _invoice_doc_ref(db, record.invoice_id).create(record.model_dump(mode="json"))


def delete_invoice(db: Any, invoice_id: str) -> None:
    _invoice_doc_ref(db, invoice_id).delete()


def insert_invoice_load_link(db: Any, link: InvoiceLoadLink) -> None:
    try:
        _link_doc_ref(db, link.link_id).create(link.model_dump(mode="json"))
    except AlreadyExists as e:
        raise LinkConflictError(f"Load {link.load_id} is already linked to an invoice") from e


def delete_invoice_load_link(db: Any, link_id: str) -> None:
    _link_doc_ref(db, link_id).delete()


def read_load_status(db: Any, *, tenant_id: str, load_id: str) -> Dict[str, Any]:
    d = _owned_load(db, tenant_id=tenant_id, load_id=load_id)
    return {k: d.get(k) for k in LOAD_STATUS_FIELDS}


def update_load_fields(db: Any, *, tenant_id: str, load_id: str, patch: Dict[str, Any]) -> None:
    # Scoped by (id, tenant_id).
    _owned_load(db, tenant_id=tenant_id, load_id=load_id)
    _load_doc_ref(db, load_id).update({**patch, "updated_at": _now()})


def record_pending_compensation(db: Any, payload: Dict[str, Any]) -> str:
    compensation_id = str(uuid.uuid4())
    now = _now()
    db.collection(SAGA_COMPENSATIONS).document(compensation_id).set(
        {
            **payload,
            "compensation_id": compensation_id,
            "status": "pending",
            "attempts": 0,
            "created_at": now,
            "updated_at": now,
        }
    )
    return compensation_id


def list_pending_compensations(db: Any, *, limit: int = 100) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for snap in db.collection(SAGA_COMPENSATIONS).where("status", "==", "pending").limit(int(limit)).stream():
        d = snap.to_dict() or {}
        d.setdefault("compensation_id", snap.id)
        out.append(d)
    out.sort(key=lambda d: float(d.get("created_at") or 0.0))
    return out


def update_compensation(db: Any, compensation_id: str, patch: Dict[str, Any]) -> None:
    db.collection(SAGA_COMPENSATIONS).document(str(compensation_id)).set({**patch, "updated_at": _now()}, merge=True)
