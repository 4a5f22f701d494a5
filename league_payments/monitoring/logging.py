"""
Structured logging configuration.

structlog renders every event as one JSON string and hands it to stdlib
logging, where python-json-logger wraps each record (structlog events
included, as the escaped "message" field) in a JSON line with timestamp,
level and logger name. Request ids bound by the API middleware are merged
from contextvars.
"""
import logging
import sys
from typing import Any

import structlog
from pythonjsonlogger import jsonlogger

from league_payments import __version__
from league_payments.config import get_settings

# Never written to logs; a client secret lets its holder confirm the payment
REDACTED_KEYS = frozenset({"client_secret", "stripe_secret_key", "webhook_secret", "card"})

NOISY_LOGGERS = {
    "urllib3": logging.WARNING,
    "stripe": logging.INFO,
    "aio_pika": logging.WARNING,
    "aiormq": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
}


def add_service_context(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    settings = get_settings()
    event_dict.setdefault("service", settings.app_name)
    event_dict.setdefault("env", settings.app_env)
    event_dict.setdefault("version", __version__)
    return event_dict


def redact_secrets(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Mask values of keys that must not leave the process."""
    for key in REDACTED_KEYS.intersection(event_dict):
        event_dict[key] = "***"
    return event_dict


def setup_logging() -> None:
    """
    Configure structlog and the root stdlib logger.

    Safe to call more than once; the root handlers are replaced each time.
    """
    settings = get_settings()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            add_service_context,
            redact_secrets,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level", "name": "logger"},
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(settings.log_level)

    for name, level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

    structlog.get_logger(__name__).info(
        "logging_configured", log_level=settings.log_level, version=__version__
    )
