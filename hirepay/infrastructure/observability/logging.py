"""Structured JSON logging for production observability"""

import logging
import sys
from typing import Any, Dict
from pythonjsonlogger import jsonlogger
from hirepay.config import settings
from hirepay.utils.date_utils import utcnow


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = utcnow().isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_payment_event(
    event: str,
    transaction_ref: str,
    payment_id: str | None = None,
    contract_id: str | None = None,
    status: str | None = None,
    amount_pesewas: int | None = None,
    **context: Any,
) -> None:
    """Log one structured line per payment outcome for analysis"""
    logging.getLogger("hirepay.payments").info(
        event,
        extra={
            "step": event,
            "transaction_ref": transaction_ref,
            "payment_id": payment_id,
            "contract_id": contract_id,
            "payment_status": status,
            "amount_pesewas": amount_pesewas,
            **context,
        },
    )
