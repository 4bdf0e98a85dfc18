from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

from firebase_admin import firestore

from ..settings import settings
from .errors import AllocationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AllocatedNumber:
    sequence: int
    invoice_number: str


def format_invoice_number(sequence: int, *, prefix: str | None = None, pad: int | None = None) -> str:
    prefix = settings.INVOICE_NUMBER_PREFIX if prefix is None else prefix
    pad = settings.INVOICE_NUMBER_PAD if pad is None else pad
    body = f"{int(sequence):0{int(pad)}d}"
    return f"{prefix}-{body}" if prefix else body


class SequenceAllocator:
    """Per-tenant invoice numbers backed by counters/invoice_number_<tenant>.

    The increment runs inside a Firestore transaction, so concurrent callers
    for the same tenant never observe the same value. Every call consumes a
    number, including calls whose saga later fails.
    """

    def __init__(self, db: Any, *, prefix: str | None = None, pad: int | None = None):
        self.db = db
        self.prefix = prefix
        self.pad = pad

    def _counter_ref(self, tenant_id: str):
        return self.db.collection("counters").document(f"invoice_number_{tenant_id}")

    def allocate(self, tenant_id: str) -> AllocatedNumber:
        tenant_id = str(tenant_id or "").strip()
        if not tenant_id:
            raise AllocationError("tenant_id is required to allocate an invoice number")

        ref = self._counter_ref(tenant_id)

        @firestore.transactional
        def txn_next(txn) -> int:
            snap = ref.get(transaction=txn)
            cur = 0
            if snap.exists:
                d = snap.to_dict() or {}
                cur = int(d.get("value") or 0)
            nxt = cur + 1
            txn.set(ref, {"tenant_id": tenant_id, "value": nxt, "updated_at": float(time.time())}, merge=True)
            return nxt

        try:
            seq = int(txn_next(self.db.transaction()))
        except Exception as e:
            logger.error("Invoice number allocation failed for tenant %s: %s", tenant_id, e)
            raise AllocationError("Could not generate invoice number", cause=e) from e

        number = format_invoice_number(seq, prefix=self.prefix, pad=self.pad)
        logger.info("Allocated invoice number %s for tenant %s", number, tenant_id)
        return AllocatedNumber(sequence=seq, invoice_number=number)
