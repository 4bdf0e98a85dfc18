from __future__ import annotations

from ..scheduler import SchedulerWrapper
from ..settings import settings
from .compensation import replay_pending_compensations


def init_audit_scheduler(scheduler: SchedulerWrapper):
    # Best-effort cleanup of rollbacks that failed mid-saga.
    if not settings.ENABLE_COMPENSATION_SWEEP:
        return
    scheduler.add_interval_job(
        replay_pending_compensations,
        minutes=int(settings.AUDIT_COMPENSATION_SWEEP_MINUTES),
        id="audit_compensation_sweep",
    )
