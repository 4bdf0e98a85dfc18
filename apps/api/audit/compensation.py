from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from ..settings import settings
from . import repo

logger = logging.getLogger(__name__)


def _replay_one(db: Any, item: Dict[str, Any]) -> Optional[str]:
    """Re-run the undo actions still owed by a failed saga. Returns an error text or None."""
    tenant_id = str(item.get("tenant_id") or "")
    load_id = str(item.get("load_id") or "")

    load_restore = item.get("load_restore")
    if isinstance(load_restore, dict) and load_restore:
        try:
            repo.update_load_fields(db, tenant_id=tenant_id, load_id=load_id, patch=dict(load_restore))
        except repo.LoadNotFoundError:
            # Nothing left to restore.
            pass
        except Exception as e:
            return f"restore load {load_id}: {e}"

    link_id = item.get("link_id")
    if link_id:
        try:
            repo.delete_invoice_load_link(db, str(link_id))
        except Exception as e:
            return f"delete link {link_id}: {e}"

    invoice_id = item.get("invoice_id")
    if invoice_id:
        try:
            repo.delete_invoice(db, str(invoice_id))
        except Exception as e:
            return f"delete invoice {invoice_id}: {e}"
    return None


def replay_pending_compensations(db: Any = None, *, limit: int = 100) -> Dict[str, int]:
    """Finish rollbacks that could not complete while the saga was running."""
    if db is None:
        from ..database import get_db

        db = get_db()

    max_attempts = int(settings.AUDIT_COMPENSATION_MAX_ATTEMPTS)
    done = failed = abandoned = 0

    try:
        pending = repo.list_pending_compensations(db, limit=limit)
    except Exception as e:
        logger.error("Could not list pending compensations: %s", e)
        return {"done": 0, "failed": 0, "abandoned": 0}

    for item in pending:
        compensation_id = str(item.get("compensation_id"))
        error = _replay_one(db, item)
        if error is None:
            repo.update_compensation(db, compensation_id, {"status": "done", "last_error": None})
            logger.info("Compensation %s completed for load %s", compensation_id, item.get("load_id"))
            done += 1
            continue

        attempts = int(item.get("attempts") or 0) + 1
        status = "pending"
        if attempts >= max_attempts:
            status = "abandoned"
            abandoned += 1
            logger.critical("Compensation %s abandoned after %s attempts: %s", compensation_id, attempts, error)
        else:
            failed += 1
            logger.warning("Compensation %s attempt %s failed: %s", compensation_id, attempts, error)
        repo.update_compensation(db, compensation_id, {"status": status, "attempts": attempts, "last_error": error})

    return {"done": done, "failed": failed, "abandoned": abandoned}
