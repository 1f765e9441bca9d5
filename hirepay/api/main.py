"""FastAPI application factory"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from hirepay.api.middleware import RequestIDMiddleware, MetricsMiddleware
from hirepay.api.v1 import admin, callbacks, contracts, payments, preapprovals
from hirepay.infrastructure.database.session import SessionLocal
from hirepay.infrastructure.observability.logging import setup_logging
from hirepay.services.scheduler import PaymentScheduler
from hirepay.config import settings

# Setup structured logging
setup_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is None:
        scheduler = PaymentScheduler(SessionLocal)
        app.state.scheduler = scheduler

    # Manual runs (/v1/admin/...) work even when the timers are off
    if settings.scheduler_enabled:
        scheduler.start()
    try:
        yield
    finally:
        await scheduler.stop()


def create_app(scheduler: PaymentScheduler | None = None) -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="HirePay Payments",
        description="Hire-purchase payment reconciliation and retry engine",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.scheduler = scheduler

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(contracts.router, prefix="/v1", tags=["contracts"])
    app.include_router(payments.router, prefix="/v1", tags=["payments"])
    app.include_router(callbacks.router, prefix="/v1", tags=["callbacks"])
    app.include_router(preapprovals.router, prefix="/v1", tags=["preapprovals"])
    app.include_router(admin.router, prefix="/v1", tags=["admin"])

    return app


app = create_app()
