import json

from apps.api.audit.audit_log import (
    ACTION_CREATE_INVOICE,
    ACTION_CREATE_INVOICE_OVERRIDE,
    AuditLogger,
    build_invoice_entry,
)
from apps.api.audit.errors import AuditLogError
from apps.api.audit.models import VerificationItem, VerificationState, VerificationStatus


def test_all_match_entry():
    entry = build_invoice_entry(
        tenant_id="T1",
        load_id="L1",
        invoice_id="I1",
        invoice_number="INV-000042",
        state=VerificationState.ALL_MATCH,
        override_reason="ignored",
    )
    assert entry.action == ACTION_CREATE_INVOICE
    assert entry.entity_type == "load"
    assert entry.entity_id == "L1"
    assert json.loads(entry.new_value) == {
        "invoice_id": "I1",
        "invoice_number": "INV-000042",
        "verification_state": "all_match",
    }
    assert entry.notes == "Invoice INV-000042 created. All verification checks passed."


def test_override_entry_lists_items():
    failed = [VerificationItem(id="a", label="Rate matches", status=VerificationStatus.FAIL)]
    incomplete = [VerificationItem(id="b", label="Signature present")]

    entry = build_invoice_entry(
        tenant_id="T1",
        load_id="L1",
        invoice_id="I1",
        invoice_number="INV-000042",
        state=VerificationState.INCOMPLETE,
        override_reason="  Called broker  ",
        failed=failed,
        incomplete=incomplete,
    )

    assert entry.action == ACTION_CREATE_INVOICE_OVERRIDE
    payload = json.loads(entry.new_value)
    assert payload["failed_items"] == ["Rate matches"]
    assert payload["incomplete_items"] == ["Signature present"]
    assert payload["override_reason"] == "Called broker"
    assert entry.notes == (
        "[OVERRIDE] Invoice INV-000042 created despite verification failures. Reason: Called broker"
    )


def _entry():
    return build_invoice_entry(
        tenant_id="T1",
        load_id="L1",
        invoice_id="I1",
        invoice_number="INV-000001",
        state=VerificationState.ALL_MATCH,
    )


def test_append_writes_entry(fake_db):
    assert AuditLogger(fake_db).append(_entry()) is None
    rows = list(fake_db.docs("audit_logs").values())
    assert len(rows) == 1
    assert rows[0]["tenant_id"] == "T1"
    assert rows[0]["action"] == ACTION_CREATE_INVOICE


def test_append_failure_is_returned_not_raised(fake_db):
    fake_db.fail("add", "audit_logs")
    err = AuditLogger(fake_db).append(_entry())
    assert isinstance(err, AuditLogError)
    assert err.cause is not None
    assert fake_db.docs("audit_logs") == {}
