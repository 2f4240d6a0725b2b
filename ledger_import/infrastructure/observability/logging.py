"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict
from pythonjsonlogger import jsonlogger
from ledger_import.config import settings


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


def log_import(
    request_id: str,
    user_id: str,
    account_id: int,
    imported_expenses: int,
    imported_income: int,
    skipped_duplicates: int,
    duration_ms: float,
) -> None:
    """Log structured import outcome for analysis"""
    logging.info(
        "Import completed",
        extra={
            "request_id": request_id,
            "user_id": user_id,
            "account_id": account_id,
            "step": "import_complete",
            "imported_expenses": imported_expenses,
            "imported_income": imported_income,
            "skipped_duplicates": skipped_duplicates,
            "duration_ms": duration_ms,
        },
    )
