from __future__ import annotations

from typing import List, Optional


STEP_NAMES = {
    1: "allocate_invoice_number",
    2: "create_invoice",
    3: "link_load",
    4: "update_load",
    5: "verify_load",
}

_STEP_FAILURE_TEXT = {
    1: "Could not generate invoice number",
    2: "Could not create invoice record",
    3: "Could not link load to invoice",
    4: "Could not update load status",
    5: "Load status verification failed",
}


class SagaError(Exception):
    """A saga step failed; whatever this attempt committed has been compensated.

    `rolled_back` is False only when a compensating delete itself failed; the
    leftovers are then queued for the compensation sweep.
    """

    step: int = 0

    def __init__(self, message: str, *, cause: Optional[BaseException] = None, step: Optional[int] = None):
        super().__init__(message)
        if step is not None:
            self.step = int(step)
        self.cause = cause
        self.rolled_back = True
        self.compensation_errors: List[str] = []

    @property
    def step_name(self) -> str:
        return STEP_NAMES.get(self.step, "unknown")

    @property
    def compensated(self) -> bool:
        # Step 1 and 2 failures leave nothing behind to undo.
        return self.step >= 3

    def user_message(self) -> str:
        text = f"Step {self.step} failed: {_STEP_FAILURE_TEXT.get(self.step, str(self))}"
        if self.compensated:
            text += " (rolled back)" if self.rolled_back else " (rollback pending)"
        return text


class AllocationError(SagaError):
    step = 1


class PersistenceError(SagaError):
    def __init__(self, message: str, *, step: int, cause: Optional[BaseException] = None, conflict: bool = False):
        if step not in (2, 3):
            raise ValueError("PersistenceError only applies to steps 2 and 3")
        super().__init__(message, cause=cause, step=step)
        # True when the insert lost against an existing row (one link per load).
        self.conflict = conflict


class StateMutationError(SagaError):
    step = 4


class VerificationMismatchError(SagaError):
    step = 5


class AuditLogError(Exception):
    """Audit trail append failed. Never changes the saga outcome."""

    def __init__(self, message: str, *, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class SagaPreconditionError(ValueError):
    pass


class OverrideRequiredError(SagaPreconditionError):
    def __init__(self, message: str, *, unmet: str):
        super().__init__(message)
        self.unmet = unmet


class LoadAlreadyInvoicedError(SagaPreconditionError):
    pass
