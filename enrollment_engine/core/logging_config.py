"""
Logging setup. Called once from create_app(); modules use logging.getLogger(__name__).
"""

import logging
import logging.config
from typing import Any, Dict

from pythonjsonlogger.json import JsonFormatter

from enrollment_engine.core.config import settings


class RolloverJsonFormatter(JsonFormatter):
    """JSON formatter that always carries level/logger and the school/year context when present."""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        for key in ("school_id", "current_year_id", "next_year_id", "academic_year_id"):
            if hasattr(record, key):
                log_record[key] = str(getattr(record, key))


def build_logging_config(level: str, as_json: bool) -> Dict[str, Any]:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            },
            "json": {
                "()": RolloverJsonFormatter,
                "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "json" if as_json else "standard",
            },
        },
        "loggers": {
            "enrollment_engine": {"level": level.upper(), "handlers": ["console"], "propagate": False},
            "sqlalchemy.engine": {"level": "WARNING", "handlers": ["console"], "propagate": False},
        },
        "root": {"level": "WARNING", "handlers": ["console"]},
    }


def configure_logging() -> None:
    logging.config.dictConfig(build_logging_config(settings.log_level, settings.log_json))
