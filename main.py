"""
Khairat Payments - Application Entry Point
===========================================
FastAPI app initialization, shared HTTP client, scheduler, and router registration.
"""

import logging
import time as _time
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from apscheduler.schedulers.background import BackgroundScheduler

from config import settings
from config.database import SessionLocal, Base, engine

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
scheduler_logger = logging.getLogger("khairat.scheduler")
request_logger = logging.getLogger("khairat.request")

# ==========================================
# Import ALL models so Alembic/Base can see them
# ==========================================
from modules.payment_provider.models import PaymentProvider  # noqa: F401, E402
from modules.contribution.models import KhairatContribution  # noqa: F401, E402

# ==========================================
# Import routers
# ==========================================
from modules.payment.routes import router as payment_router  # noqa: E402
from modules.payment.service import PaymentService  # noqa: E402


# ==========================================
# Background Scheduler: Pending Bill Reconciliation
# ==========================================
def _reconcile_pending_bills(app):
    """Background job: ask the gateways about bills whose callback never arrived."""
    db = SessionLocal()
    try:
        service = PaymentService(app.state.http_client)
        count = service.reconcile_pending_bills(db, older_than_minutes=settings.RECONCILE_MIN_AGE_MINUTES)
        if count:
            scheduler_logger.info(f"Reconciled {count} pending contributions from gateway bill queries")
    except Exception as e:
        db.rollback()
        scheduler_logger.error(f"Reconciliation error: {e}")
    finally:
        db.close()


scheduler = BackgroundScheduler()


@asynccontextmanager
async def lifespan(app):
    # Auto-create any missing tables (safe for existing tables)
    Base.metadata.create_all(bind=engine)

    app.state.http_client = httpx.Client(
        timeout=settings.GATEWAY_TIMEOUT,
        headers={"User-Agent": "khairat-payments/1.0"},
    )

    if settings.RECONCILE_ENABLED:
        scheduler.add_job(
            _reconcile_pending_bills, 'interval',
            minutes=settings.RECONCILE_INTERVAL_MINUTES, args=[app], id='reconcile_bills',
        )
        scheduler.start()
        scheduler_logger.info(
            f"Background scheduler started (reconcile: {settings.RECONCILE_INTERVAL_MINUTES}m)"
        )
    yield
    if scheduler.running:
        scheduler.shutdown()
        scheduler_logger.info("Background scheduler stopped")
    app.state.http_client.close()


# ==========================================
# Create App
# ==========================================
app = FastAPI(
    title="Khairat Payments",
    description="Mosque khairat contributions: gateway billing and webhook reconciliation",
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url=None,
    lifespan=lifespan,
)


# ==========================================
# Middleware: Request Log
# ==========================================
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log method/path/status/latency; bodies are never logged (they carry signatures)."""
    start = _time.time()
    response = await call_next(request)
    elapsed_ms = int((_time.time() - start) * 1000)
    request_logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms}ms)")
    return response


# ==========================================
# Register Routers
# ==========================================
app.include_router(payment_router)


# ==========================================
# Health check
# ==========================================
@app.get("/health")
async def health():
    return {"status": "ok", "version": "1.0.0"}
