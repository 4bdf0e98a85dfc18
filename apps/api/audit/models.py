from __future__ import annotations

from datetime import date
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class VerificationStatus(str, Enum):
    MATCH = "match"
    FAIL = "fail"


class VerificationState(str, Enum):
    ALL_MATCH = "all_match"
    HAS_FAILURES = "has_failures"
    INCOMPLETE = "incomplete"


class InvoiceStatus(str, Enum):
    # Only drafts are produced here; later states belong to the invoicing workflow.
    DRAFT = "draft"


class LoadStatus(str, Enum):
    CLOSED = "closed"


class FinancialStatus(str, Enum):
    PENDING_INVOICE = "pending_invoice"
    INVOICED = "invoiced"


class BillingMethod(str, Enum):
    OTR = "otr"
    DIRECT_EMAIL = "direct_email"


class VerificationItem(BaseModel):
    id: str
    label: str
    # None means the item has not been checked yet.
    status: Optional[VerificationStatus] = None


class VerificationChecklist(BaseModel):
    rate_confirmation_items: List[VerificationItem] = Field(default_factory=list)
    bill_of_lading_items: List[VerificationItem] = Field(default_factory=list)

    @property
    def items(self) -> List[VerificationItem]:
        return [*self.rate_confirmation_items, *self.bill_of_lading_items]


class CustomerSnapshot(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    billing_email: Optional[str] = None
    mc_number: Optional[str] = None
    otr_approval_status: Optional[str] = None
    factoring_approval: Optional[str] = None


class LoadSnapshot(BaseModel):
    """Read-only view of a load as handed over by the load subsystem."""

    id: str
    load_number: str
    reference_number: Optional[str] = None
    rate: Optional[float] = None
    customer_id: Optional[str] = None
    pickup_city: Optional[str] = None
    pickup_state: Optional[str] = None
    delivery_city: Optional[str] = None
    delivery_state: Optional[str] = None
    customers: Optional[CustomerSnapshot] = None

    # Current status fields, used for the already-invoiced precondition.
    status: Optional[str] = None
    financial_status: Optional[str] = None
    billing_notes: Optional[str] = None


class InvoiceRecord(BaseModel):
    invoice_id: str
    tenant_id: str
    invoice_number: str
    invoice_sequence: int

    customer_id: Optional[str] = None
    customer_name: str
    customer_email: str

    invoice_date: date
    due_date: date
    payment_terms: str

    status: InvoiceStatus = InvoiceStatus.DRAFT

    subtotal: float
    tax: float = 0.0
    total_amount: float
    amount_paid: float = 0.0
    balance_due: float

    notes: Optional[str] = None
    billing_method: Optional[BillingMethod] = None

    created_at: float


class InvoiceLoadLink(BaseModel):
    link_id: str
    tenant_id: str
    invoice_id: str
    load_id: str
    amount: float
    description: str
    created_at: float


class AuditLogEntry(BaseModel):
    tenant_id: str
    entity_type: str = "load"
    entity_id: str
    action: str
    # JSON-encoded payload.
    new_value: str
    notes: Optional[str] = None
    created_at: float


class VerificationEvaluateRequest(BaseModel):
    rate_confirmation_items: List[VerificationItem] = Field(default_factory=list)
    bill_of_lading_items: List[VerificationItem] = Field(default_factory=list)
    override_confirmed: bool = False
    override_reason: str = ""


class VerificationEvaluateResponse(BaseModel):
    state: VerificationState
    can_proceed: bool
    requires_override: bool
    unmet: Optional[str] = None
    message: str
    item_count: int
    failed_items: List[str] = Field(default_factory=list)
    incomplete_items: List[str] = Field(default_factory=list)


class AuditInvoiceRequest(BaseModel):
    rate_confirmation_items: List[VerificationItem] = Field(default_factory=list)
    bill_of_lading_items: List[VerificationItem] = Field(default_factory=list)
    override_confirmed: bool = False
    override_reason: str = ""

    # Free-text notes collected during the audit.
    audit_notes: Optional[str] = None

    # If omitted: today and today + INVOICE_DUE_DAYS.
    invoice_date: Optional[date] = None
    due_date: Optional[date] = None


class AuditInvoiceResponse(BaseModel):
    ok: bool = True
    invoice_id: str
    invoice_number: str
    verification_state: VerificationState
    override: bool
    billing_method: Optional[BillingMethod] = None
    message: str
