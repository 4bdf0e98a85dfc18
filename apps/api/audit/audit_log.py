from __future__ import annotations

import json
import logging
import time
from typing import Any, List, Optional

from . import repo
from .errors import AuditLogError
from .models import AuditLogEntry, VerificationItem, VerificationState

logger = logging.getLogger(__name__)


ACTION_CREATE_INVOICE = "audit_create_invoice"
ACTION_CREATE_INVOICE_OVERRIDE = "audit_create_invoice_override"


def build_invoice_entry(
    *,
    tenant_id: str,
    load_id: str,
    invoice_id: str,
    invoice_number: str,
    state: VerificationState,
    override_reason: Optional[str] = None,
    failed: Optional[List[VerificationItem]] = None,
    incomplete: Optional[List[VerificationItem]] = None,
) -> AuditLogEntry:
    is_override = state != VerificationState.ALL_MATCH
    reason = (override_reason or "").strip()

    payload: dict[str, Any] = {
        "invoice_id": invoice_id,
        "invoice_number": invoice_number,
        "verification_state": state.value,
    }
    if is_override:
        payload["failed_items"] = [i.label for i in (failed or [])]
        payload["incomplete_items"] = [i.label for i in (incomplete or [])]
        payload["override_reason"] = reason

    if is_override:
        notes = f"[OVERRIDE] Invoice {invoice_number} created despite verification failures."
        if reason:
            notes += f" Reason: {reason}"
    else:
        notes = f"Invoice {invoice_number} created. All verification checks passed."

    return AuditLogEntry(
        tenant_id=tenant_id,
        entity_type="load",
        entity_id=load_id,
        action=(ACTION_CREATE_INVOICE_OVERRIDE if is_override else ACTION_CREATE_INVOICE),
        new_value=json.dumps(payload),
        notes=notes,
        created_at=float(time.time()),
    )


class AuditLogger:
    """Append-only audit trail. Failures are logged and returned, never raised."""

    def __init__(self, db: Any):
        self.db = db

    def append(self, entry: AuditLogEntry) -> Optional[AuditLogError]:
        try:
            self.db.collection(repo.AUDIT_LOGS).add(entry.model_dump(mode="json"))
        except Exception as e:
            logger.error("Audit log error (non-fatal) for %s %s: %s", entry.entity_type, entry.entity_id, e)
            return AuditLogError("Failed to append audit log entry", cause=e)
        logger.info("Audit log created: %s on %s:%s", entry.action, entry.entity_type, entry.entity_id)
        return None
