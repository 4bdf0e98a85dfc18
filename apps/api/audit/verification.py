from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional

from .errors import OverrideRequiredError
from .models import VerificationItem, VerificationState, VerificationStatus


OVERRIDE_MARKER = "[OVERRIDE]"

UNMET_OVERRIDE_NOT_CONFIRMED = "override_not_confirmed"
UNMET_OVERRIDE_REASON_REQUIRED = "override_reason_required"


@dataclass(frozen=True)
class GateDecision:
    state: VerificationState
    allowed: bool
    unmet: Optional[str] = None
    message: str = ""

    @property
    def requires_override(self) -> bool:
        return self.state != VerificationState.ALL_MATCH


def classify(items: Iterable[VerificationItem]) -> VerificationState:
    """Derive the verification state from checklist items.

    Unchecked items win over failures: a checklist with both is incomplete.
    """
    items = list(items)
    if not items:
        return VerificationState.INCOMPLETE
    if any(item.status is None for item in items):
        return VerificationState.INCOMPLETE
    if any(item.status == VerificationStatus.FAIL for item in items):
        return VerificationState.HAS_FAILURES
    return VerificationState.ALL_MATCH


def failed_items(items: Iterable[VerificationItem]) -> List[VerificationItem]:
    return [i for i in items if i.status == VerificationStatus.FAIL]


def incomplete_items(items: Iterable[VerificationItem]) -> List[VerificationItem]:
    return [i for i in items if i.status is None]


def can_proceed(state: VerificationState, override_confirmed: bool, override_reason: Optional[str]) -> bool:
    return evaluate_gate(state, override_confirmed, override_reason).allowed


def evaluate_gate(state: VerificationState, override_confirmed: bool, override_reason: Optional[str]) -> GateDecision:
    if state == VerificationState.ALL_MATCH:
        return GateDecision(state=state, allowed=True, message="All verification checks passed")
    if not override_confirmed:
        return GateDecision(
            state=state,
            allowed=False,
            unmet=UNMET_OVERRIDE_NOT_CONFIRMED,
            message="Confirm you manually verified this load to override",
        )
    if not (override_reason or "").strip():
        return GateDecision(
            state=state,
            allowed=False,
            unmet=UNMET_OVERRIDE_REASON_REQUIRED,
            message="An override reason is required",
        )
    return GateDecision(state=state, allowed=True, message="Override confirmed")


def assert_can_proceed(state: VerificationState, override_confirmed: bool, override_reason: Optional[str]) -> GateDecision:
    decision = evaluate_gate(state, override_confirmed, override_reason)
    if not decision.allowed:
        raise OverrideRequiredError(decision.message, unmet=decision.unmet or UNMET_OVERRIDE_NOT_CONFIRMED)
    return decision


def build_final_notes(existing_notes: Optional[str], state: VerificationState, override_reason: Optional[str]) -> str:
    """Combine audit notes with the override justification.

    Existing notes come first, the override note second, separated by a blank line.
    """
    final_notes = existing_notes or ""
    reason = (override_reason or "").strip()
    if state != VerificationState.ALL_MATCH and reason:
        override_note = f"{OVERRIDE_MARKER} {reason}"
        final_notes = f"{final_notes}\n\n{override_note}" if final_notes else override_note
    return final_notes
