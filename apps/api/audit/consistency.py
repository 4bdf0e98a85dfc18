from __future__ import annotations

import logging
from typing import Any

from . import repo
from .errors import VerificationMismatchError
from .models import FinancialStatus

logger = logging.getLogger(__name__)


class ConsistencyVerifier:
    """Read-after-write check for the load mutation.

    Firestore reads served after a write are not guaranteed to reflect it on
    every path (emulators, multi-region reads, rejected writes). A read that
    fails, a missing load and a stale status all raise the same error.
    """

    def __init__(self, db: Any):
        self.db = db

    def verify_load_invoiced(self, *, tenant_id: str, load_id: str) -> None:
        try:
            current = repo.read_load_status(self.db, tenant_id=tenant_id, load_id=load_id)
        except Exception as e:
            logger.error("Load verification read failed for %s: %s", load_id, e)
            raise VerificationMismatchError("Load financial_status could not be read back", cause=e) from e

        observed = current.get("financial_status")
        if observed != FinancialStatus.INVOICED.value:
            logger.error("Load %s verification mismatch: financial_status=%r", load_id, observed)
            raise VerificationMismatchError(
                f"Load financial_status was not updated correctly (observed {observed!r})"
            )
