from .router import router
from .scheduler import init_audit_scheduler

__all__ = ["router", "init_audit_scheduler"]
