from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException

from ..auth import get_current_user, require_invoicing_user
from ..database import get_db
from . import repo
from .billing import BrokerCreditClient, CreditChecker
from .errors import LoadAlreadyInvoicedError, OverrideRequiredError, PersistenceError, SagaError
from .models import (
    AuditInvoiceRequest,
    AuditInvoiceResponse,
    VerificationChecklist,
    VerificationEvaluateRequest,
    VerificationEvaluateResponse,
)
from .saga import SagaCoordinator
from .verification import classify, evaluate_gate, failed_items, incomplete_items

logger = logging.getLogger(__name__)


router = APIRouter(prefix="/audit", tags=["Audit"])


def _db() -> Any:
    return get_db()


def _credit_checker() -> Optional[CreditChecker]:
    client = BrokerCreditClient()
    return client if client.configured else None


def _saga_error_detail(e: SagaError) -> Dict[str, Any]:
    return {
        "step": e.step,
        "step_name": e.step_name,
        "message": e.user_message(),
        "rolled_back": e.rolled_back,
    }


@router.post("/verification/evaluate", response_model=VerificationEvaluateResponse)
async def verification_evaluate(req: VerificationEvaluateRequest, user: Dict[str, Any] = Depends(get_current_user)):
    checklist = VerificationChecklist(
        rate_confirmation_items=req.rate_confirmation_items,
        bill_of_lading_items=req.bill_of_lading_items,
    )
    items = checklist.items
    state = classify(items)
    decision = evaluate_gate(state, req.override_confirmed, req.override_reason)
    return VerificationEvaluateResponse(
        state=state,
        can_proceed=decision.allowed,
        requires_override=decision.requires_override,
        unmet=decision.unmet,
        message=decision.message,
        item_count=len(items),
        failed_items=[i.label for i in failed_items(items)],
        incomplete_items=[i.label for i in incomplete_items(items)],
    )


@router.post("/loads/{load_id}/invoice", response_model=AuditInvoiceResponse)
async def audit_create_invoice(
    load_id: str,
    req: AuditInvoiceRequest,
    background_tasks: BackgroundTasks,
    user: Dict[str, Any] = Depends(require_invoicing_user),
    db: Any = Depends(_db),
    credit_checker: Optional[CreditChecker] = Depends(_credit_checker),
):
    tenant_id = str(user["tenant_id"])

    load = await asyncio.to_thread(repo.get_load_snapshot, db, tenant_id=tenant_id, load_id=load_id)
    if load is None:
        raise HTTPException(status_code=404, detail="Load not found")

    coordinator = SagaCoordinator(db, credit_checker=credit_checker, audit_dispatch=background_tasks.add_task)
    checklist = VerificationChecklist(
        rate_confirmation_items=req.rate_confirmation_items,
        bill_of_lading_items=req.bill_of_lading_items,
    )

    try:
        # Runs to completion (or full rollback) even if the client goes away.
        result = await asyncio.to_thread(
            coordinator.run,
            tenant_id=tenant_id,
            load=load,
            checklist=checklist,
            override_confirmed=req.override_confirmed,
            override_reason=req.override_reason,
            audit_notes=req.audit_notes,
            invoice_date=req.invoice_date,
            due_date=req.due_date,
        )
    except OverrideRequiredError as e:
        raise HTTPException(status_code=422, detail={"unmet": e.unmet, "message": str(e)})
    except LoadAlreadyInvoicedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PersistenceError as e:
        logger.warning("Audit invoice for load %s failed at step %s: %s", load_id, e.step, e)
        raise HTTPException(status_code=(409 if e.conflict else 502), detail=_saga_error_detail(e))
    except SagaError as e:
        logger.warning("Audit invoice for load %s failed at step %s: %s", load_id, e.step, e)
        raise HTTPException(status_code=502, detail=_saga_error_detail(e))

    return AuditInvoiceResponse(
        invoice_id=result.invoice_id,
        invoice_number=result.invoice_number,
        verification_state=result.verification_state,
        override=result.override,
        billing_method=result.billing_method,
        message=f"Invoice {result.invoice_number} created successfully",
    )
