from __future__ import annotations

# File: apps/api/main.py
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# --- Local Imports ---
from .settings import settings
from .scheduler import SchedulerWrapper
from .audit import router as audit_router, init_audit_scheduler

logging.basicConfig(
    level=getattr(logging, str(settings.LOG_LEVEL).upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


app = FastAPI(title="Freight Audit Invoicing API")

app.add_middleware(
    CORSMiddleware,
    # Explicit origins are required when using credentials (Authorization headers).
    # FRONTEND_BASE_URL is configurable via apps/.env.
    allow_origins=list({
        settings.FRONTEND_BASE_URL,
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    }),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

scheduler = SchedulerWrapper()


@app.get("/health")
async def health():
    return {"status": "ok", "scheduler": scheduler.started}


# Register Routers at the end to keep clean separation
app.include_router(audit_router)


@app.on_event("startup")
def startup_events():
    scheduler.start()
    init_audit_scheduler(scheduler)
    logger.info(
        "Audit compensation sweep enabled=%s every=%smin",
        settings.ENABLE_COMPENSATION_SWEEP,
        settings.AUDIT_COMPENSATION_SWEEP_MINUTES,
    )


@app.on_event("shutdown")
def shutdown_events():
    scheduler.shutdown()
