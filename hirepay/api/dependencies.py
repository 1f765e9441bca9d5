"""Dependency injection for FastAPI endpoints"""

from fastapi import HTTPException, Request
from hirepay.infrastructure.clients.hubtel import HubtelClient
from hirepay.services.audit import AuditContext
from hirepay.services.notifications import PaymentNotifier
from hirepay.services.scheduler import PaymentScheduler


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_hubtel_client() -> HubtelClient:
    """Provide Hubtel gateway client instance"""
    return HubtelClient()


def get_notifier() -> PaymentNotifier:
    """Provide payment failure notifier"""
    return PaymentNotifier()


def get_scheduler(request: Request) -> PaymentScheduler:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Scheduler not available")
    return scheduler


def get_audit_context(request: Request) -> AuditContext:
    """Who is calling, for the audit trail (authentication lives upstream)"""
    return AuditContext(
        user_id=request.headers.get("X-User-ID"),
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("User-Agent"),
    )
