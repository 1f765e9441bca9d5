"""Audit trail - immutable records of payment outcomes and admin actions"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from hirepay.infrastructure.database.repositories import AuditLogRepository

logger = logging.getLogger(__name__)

INITIATE_PAYMENT = "INITIATE_PAYMENT"
PAYMENT_SETTLED = "PAYMENT_SETTLED"
PAYMENT_FAILED = "PAYMENT_FAILED"
RECORD_MANUAL_PAYMENT = "RECORD_MANUAL_PAYMENT"
PAYMENT_RETRY = "PAYMENT_RETRY"
UNAPPLIED_FUNDS = "UNAPPLIED_FUNDS"
POSSIBLE_DOUBLE_CHARGE = "POSSIBLE_DOUBLE_CHARGE"
UPDATE_RETRY_SETTINGS = "UPDATE_RETRY_SETTINGS"
OVERDUE_SWEEP = "OVERDUE_SWEEP"
INITIATE_PREAPPROVAL = "INITIATE_PREAPPROVAL"
CANCEL_PREAPPROVAL = "CANCEL_PREAPPROVAL"
CREATE_CONTRACT = "CREATE_CONTRACT"


@dataclass
class AuditContext:
    """Who triggered an action; empty for the scheduler and webhooks"""

    user_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


SYSTEM = AuditContext(user_id="system")


def _jsonable(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def record_audit(
    db: Session,
    action: str,
    entity: str,
    entity_id: str | None = None,
    old_values: Dict[str, Any] | None = None,
    new_values: Dict[str, Any] | None = None,
    context: AuditContext | None = None,
) -> bool:
    """
    Write one audit entry in its own commit.

    Must be called after the business change has been committed: a failed
    audit write is rolled back and logged, never raised.
    """
    context = context or SYSTEM
    try:
        AuditLogRepository(db).create(
            action=action,
            entity=entity,
            entity_id=entity_id,
            old_values=_jsonable(old_values) if old_values is not None else None,
            new_values=_jsonable(new_values) if new_values is not None else None,
            user_id=context.user_id,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
        )
        db.commit()
        return True
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Audit write failed: {e}", extra={"action": action, "entity_id": entity_id})
        return False
