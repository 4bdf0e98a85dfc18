from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Callable, Dict, Optional

from ..settings import settings
from . import repo
from .audit_log import AuditLogger, build_invoice_entry
from .billing import CreditChecker, resolve_billing_method
from .consistency import ConsistencyVerifier
from .errors import (
    LoadAlreadyInvoicedError,
    PersistenceError,
    SagaError,
    SagaPreconditionError,
    StateMutationError,
    VerificationMismatchError,
)
from .models import (
    AuditLogEntry,
    BillingMethod,
    FinancialStatus,
    InvoiceLoadLink,
    InvoiceRecord,
    InvoiceStatus,
    LoadSnapshot,
    LoadStatus,
    VerificationChecklist,
    VerificationState,
)
from .sequence import AllocatedNumber, SequenceAllocator
from .verification import assert_can_proceed, build_final_notes, classify, failed_items, incomplete_items

logger = logging.getLogger(__name__)


AuditDispatch = Callable[..., Any]


@dataclass(frozen=True)
class SagaResult:
    invoice_id: str
    invoice_number: str
    invoice_sequence: int
    verification_state: VerificationState
    billing_method: Optional[BillingMethod] = None

    @property
    def override(self) -> bool:
        return self.verification_state != VerificationState.ALL_MATCH


def _run_inline(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
    fn(*args, **kwargs)


def link_description(load: LoadSnapshot) -> str:
    return (
        f"Load {load.load_number}: {load.pickup_city or ''}, {load.pickup_state or ''}"
        f" → {load.delivery_city or ''}, {load.delivery_state or ''}"
    ).strip()


class SagaCoordinator:
    """Turns an audited load into a draft invoice.

    Steps run strictly in order and none is retried:
      1. allocate the tenant invoice number
      2. insert the draft invoice
      3. insert the invoice <-> load link
      4. mark the load closed / invoiced
      5. re-read the load and check it is invoiced

    A failure at step 3 or later undoes this attempt's writes newest first
    (load status, then link, then invoice) before the error is raised. The
    audit trail entry is appended only after step 5 and can never fail the
    run.
    """

    def __init__(
        self,
        db: Any,
        *,
        allocator: Optional[SequenceAllocator] = None,
        verifier: Optional[ConsistencyVerifier] = None,
        audit_logger: Optional[AuditLogger] = None,
        credit_checker: Optional[CreditChecker] = None,
        audit_dispatch: Optional[AuditDispatch] = None,
        payment_terms: Optional[str] = None,
        due_days: Optional[int] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        self.db = db
        self.allocator = allocator or SequenceAllocator(db)
        self.verifier = verifier or ConsistencyVerifier(db)
        self.audit_logger = audit_logger or AuditLogger(db)
        self.credit_checker = credit_checker
        self.audit_dispatch = audit_dispatch or _run_inline
        self.payment_terms = payment_terms or settings.INVOICE_PAYMENT_TERMS
        self.due_days = int(settings.INVOICE_DUE_DAYS if due_days is None else due_days)
        self._today = today or date.today

    def run(
        self,
        *,
        tenant_id: str,
        load: Optional[LoadSnapshot],
        checklist: VerificationChecklist,
        override_confirmed: bool = False,
        override_reason: str = "",
        audit_notes: Optional[str] = None,
        invoice_date: Optional[date] = None,
        due_date: Optional[date] = None,
    ) -> SagaResult:
        if load is None or not str(tenant_id or "").strip():
            raise SagaPreconditionError("Missing load or tenant context")

        items = checklist.items
        state = classify(items)
        assert_can_proceed(state, override_confirmed, override_reason)

        if str(load.financial_status or "").strip().lower() == FinancialStatus.INVOICED.value:
            raise LoadAlreadyInvoicedError(f"Load {load.load_number} is already invoiced")

        final_notes = build_final_notes(audit_notes, state, override_reason)

        # Step 1. Raises AllocationError; nothing exists yet.
        allocated = self.allocator.allocate(tenant_id)

        billing_method = resolve_billing_method(
            tenant_id=tenant_id,
            customer_id=load.customer_id,
            customer=load.customers,
            checker=self.credit_checker,
        )

        # Step 2
        record = self._build_invoice(
            tenant_id=tenant_id,
            load=load,
            allocated=allocated,
            final_notes=final_notes,
            billing_method=billing_method,
            invoice_date=invoice_date,
            due_date=due_date,
        )
        try:
            repo.insert_invoice(self.db, record)
        except Exception as e:
            logger.error("Invoice creation error for load %s: %s", load.id, e)
            raise PersistenceError(f"Invoice creation failed: {e}", step=2, cause=e) from e

        # Step 3
        link = self._build_link(tenant_id=tenant_id, load=load, invoice_id=record.invoice_id)
        try:
            repo.insert_invoice_load_link(self.db, link)
        except Exception as e:
            logger.error("Invoice-load link error for load %s: %s", load.id, e)
            err = PersistenceError(
                f"Failed to link load: {e}",
                step=3,
                cause=e,
                conflict=isinstance(e, repo.LinkConflictError),
            )
            self._compensate(err, tenant_id=tenant_id, load_id=load.id, invoice_id=record.invoice_id)
            raise err from e

        # Step 4
        previous: Optional[Dict[str, Any]] = None
        patch: Dict[str, Any] = {
            "status": LoadStatus.CLOSED.value,
            "financial_status": FinancialStatus.INVOICED.value,
        }
        if final_notes:
            patch["billing_notes"] = final_notes
        try:
            previous = repo.read_load_status(self.db, tenant_id=tenant_id, load_id=load.id)
            repo.update_load_fields(self.db, tenant_id=tenant_id, load_id=load.id, patch=patch)
        except Exception as e:
            logger.error("Load update error for load %s: %s", load.id, e)
            err = StateMutationError(f"Failed to update load: {e}", cause=e)
            self._compensate(
                err,
                tenant_id=tenant_id,
                load_id=load.id,
                invoice_id=record.invoice_id,
                link_id=link.link_id,
                load_restore=previous,
            )
            raise err from e

        # Step 5
        try:
            self.verifier.verify_load_invoiced(tenant_id=tenant_id, load_id=load.id)
        except VerificationMismatchError as err:
            self._compensate(
                err,
                tenant_id=tenant_id,
                load_id=load.id,
                invoice_id=record.invoice_id,
                link_id=link.link_id,
                load_restore=previous,
            )
            raise

        logger.info(
            "Invoice %s created for load %s (tenant %s, state %s)",
            record.invoice_number,
            load.id,
            tenant_id,
            state.value,
        )

        entry = build_invoice_entry(
            tenant_id=tenant_id,
            load_id=load.id,
            invoice_id=record.invoice_id,
            invoice_number=record.invoice_number,
            state=state,
            override_reason=override_reason,
            failed=failed_items(items),
            incomplete=incomplete_items(items),
        )
        self._dispatch_audit(entry)

        return SagaResult(
            invoice_id=record.invoice_id,
            invoice_number=record.invoice_number,
            invoice_sequence=allocated.sequence,
            verification_state=state,
            billing_method=billing_method,
        )

    def _build_invoice(
        self,
        *,
        tenant_id: str,
        load: LoadSnapshot,
        allocated: AllocatedNumber,
        final_notes: str,
        billing_method: Optional[BillingMethod],
        invoice_date: Optional[date],
        due_date: Optional[date],
    ) -> InvoiceRecord:
        today = self._today()
        customer = load.customers
        amount = float(load.rate or 0)
        return InvoiceRecord(
            invoice_id=repo.new_invoice_id(),
            tenant_id=tenant_id,
            invoice_number=allocated.invoice_number,
            invoice_sequence=allocated.sequence,
            customer_id=load.customer_id,
            customer_name=(customer.name if customer and customer.name else "Unknown"),
            customer_email=((customer.billing_email or customer.email or "") if customer else ""),
            invoice_date=invoice_date or today,
            due_date=due_date or (today + timedelta(days=self.due_days)),
            payment_terms=self.payment_terms,
            status=InvoiceStatus.DRAFT,
            subtotal=amount,
            tax=0.0,
            total_amount=amount,
            amount_paid=0.0,
            balance_due=amount,
            notes=(final_notes or None),
            billing_method=billing_method,
            created_at=float(time.time()),
        )

    def _build_link(self, *, tenant_id: str, load: LoadSnapshot, invoice_id: str) -> InvoiceLoadLink:
        return InvoiceLoadLink(
            link_id=repo.link_id_for_load(tenant_id, load.id),
            tenant_id=tenant_id,
            invoice_id=invoice_id,
            load_id=load.id,
            amount=float(load.rate or 0),
            description=link_description(load),
            created_at=float(time.time()),
        )

    def _compensate(
        self,
        err: SagaError,
        *,
        tenant_id: str,
        load_id: str,
        invoice_id: str,
        link_id: Optional[str] = None,
        load_restore: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Undo this attempt's writes, newest first. Failed undos are queued for the sweep.

        If the load cannot be restored it may still read as invoiced, so the
        link and invoice are kept and the whole undo is queued instead.
        """
        pending: Dict[str, Any] = {}

        if load_restore is not None:
            try:
                repo.update_load_fields(self.db, tenant_id=tenant_id, load_id=load_id, patch=dict(load_restore))
            except Exception as e:
                err.compensation_errors.append(f"restore load {load_id}: {e}")
                pending["load_restore"] = dict(load_restore)
                if link_id:
                    pending["link_id"] = link_id
                pending["invoice_id"] = invoice_id

        if link_id and not pending:
            try:
                repo.delete_invoice_load_link(self.db, link_id)
            except Exception as e:
                err.compensation_errors.append(f"delete link {link_id}: {e}")
                pending["link_id"] = link_id

        if "load_restore" not in pending:
            try:
                repo.delete_invoice(self.db, invoice_id)
            except Exception as e:
                err.compensation_errors.append(f"delete invoice {invoice_id}: {e}")
                pending["invoice_id"] = invoice_id

        if not pending:
            logger.warning("Step %s failed for load %s; rolled back invoice %s", err.step, load_id, invoice_id)
            return

        err.rolled_back = False
        logger.error(
            "Step %s failed for load %s and rollback was incomplete: %s",
            err.step,
            load_id,
            "; ".join(err.compensation_errors),
        )
        payload: Dict[str, Any] = {
            "tenant_id": tenant_id,
            "load_id": load_id,
            "failed_step": err.step,
            "load_restore": pending.get("load_restore"),
            "link_id": pending.get("link_id"),
            "invoice_id": pending.get("invoice_id"),
        }
        try:
            repo.record_pending_compensation(self.db, payload)
        except Exception as e:
            logger.critical("Could not queue compensation for load %s: %s (%s)", load_id, e, payload)

    def _dispatch_audit(self, entry: AuditLogEntry) -> None:
        try:
            self.audit_dispatch(self.audit_logger.append, entry)
        except Exception as e:
            logger.error("Audit log dispatch failed (non-fatal) for load %s: %s", entry.entity_id, e)


def run_invoice_saga(
    db: Any,
    *,
    tenant_id: str,
    load: Optional[LoadSnapshot],
    checklist: VerificationChecklist,
    override_confirmed: bool = False,
    override_reason: str = "",
    audit_notes: Optional[str] = None,
    credit_checker: Optional[CreditChecker] = None,
    audit_dispatch: Optional[AuditDispatch] = None,
) -> SagaResult:
    coordinator = SagaCoordinator(db, credit_checker=credit_checker, audit_dispatch=audit_dispatch)
    return coordinator.run(
        tenant_id=tenant_id,
        load=load,
        checklist=checklist,
        override_confirmed=override_confirmed,
        override_reason=override_reason,
        audit_notes=audit_notes,
    )
