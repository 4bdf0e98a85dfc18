from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

import httpx

from ..settings import settings
from .models import BillingMethod, CustomerSnapshot

logger = logging.getLogger(__name__)


class CreditChecker(Protocol):
    def check(self, *, tenant_id: str, mc_number: str, broker_name: str, customer_id: Optional[str]) -> Optional[str]:
        ...


class BrokerCreditClient:
    """Client for the external broker credit service.

    Returns the fresh approval status, or None when the check did not succeed.
    """

    def __init__(self, base_url: str | None = None, api_key: str | None = None, timeout: float | None = None):
        self.base_url = (base_url if base_url is not None else settings.BROKER_CREDIT_CHECK_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.BROKER_CREDIT_CHECK_API_KEY
        self.timeout = float(timeout if timeout is not None else settings.BROKER_CREDIT_CHECK_TIMEOUT_SECONDS)

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    def _headers(self) -> Dict[str, str]:
        headers: Dict[str, str] = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def check(self, *, tenant_id: str, mc_number: str, broker_name: str, customer_id: Optional[str]) -> Optional[str]:
        if not self.configured:
            return None
        body = {
            "tenant_id": tenant_id,
            "mc_number": mc_number,
            "broker_name": broker_name,
            "customer_id": customer_id,
            "force_check": True,
        }
        try:
            resp = httpx.post(self.base_url, json=body, headers=self._headers(), timeout=self.timeout)
            resp.raise_for_status()
            data: Any = resp.json()
        except Exception as exc:
            logger.warning("Broker credit check failed for MC %s: %s", mc_number, exc)
            return None
        if not isinstance(data, dict) or not data.get("success"):
            logger.warning("Broker credit check unsuccessful for MC %s: %s", mc_number, data)
            return None
        return str(data.get("approval_status") or "")


def _method_for(approval: Optional[str]) -> BillingMethod:
    return BillingMethod.OTR if str(approval or "").strip().lower() == "approved" else BillingMethod.DIRECT_EMAIL


def resolve_billing_method(
    *,
    tenant_id: str,
    customer_id: Optional[str],
    customer: Optional[CustomerSnapshot],
    checker: Optional[CreditChecker] = None,
) -> BillingMethod:
    """Pick OTR factoring or direct email billing for a new invoice.

    Prefers a fresh credit check, then the customer's stored approval.
    Customers without an MC number are always billed by email.
    """
    customer = customer or CustomerSnapshot()
    mc_number = (customer.mc_number or "").strip()
    if not mc_number:
        return BillingMethod.DIRECT_EMAIL

    fresh: Optional[str] = None
    if checker is not None:
        try:
            fresh = checker.check(
                tenant_id=tenant_id,
                mc_number=mc_number,
                broker_name=customer.name or "Unknown",
                customer_id=customer_id,
            )
        except Exception as exc:
            logger.warning("Broker credit check raised for MC %s, using stored status: %s", mc_number, exc)
            fresh = None

    if fresh is not None:
        logger.info("Fresh broker credit status for MC %s: %s", mc_number, fresh)
        return _method_for(fresh)
    return _method_for(customer.otr_approval_status or customer.factoring_approval)
