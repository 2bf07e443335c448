"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict
from pythonjsonlogger import jsonlogger

from microloan_gateway.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
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


def log_transition(loan_id: str, from_status: str | None, to_status: str, actor_id: str | None) -> None:
    """Log a loan status change for audit trails"""
    logging.info(
        "Loan status changed",
        extra={
            "loan_id": loan_id,
            "step": "loan_transition",
            "from_status": from_status,
            "to_status": to_status,
            "actor_id": actor_id,
        },
    )


def log_reconciliation(
    transaction_id: str,
    status: str,
    duplicate: bool,
    points_awarded: int,
    outstanding_amount: float | None,
    duration_ms: float,
) -> None:
    """Log structured reconciliation outcome for analysis"""
    logging.info(
        "Reconciliation completed",
        extra={
            "transaction_id": transaction_id,
            "step": "reconciliation_complete",
            "status": status,
            "duplicate": duplicate,
            "points_awarded": points_awarded,
            "outstanding_amount": outstanding_amount,
            "duration_ms": duration_ms,
        },
    )
