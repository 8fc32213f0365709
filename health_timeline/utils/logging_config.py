"""
Structured Logging Configuration
=================================
JSON-formatted logging for the OAuth flows and the API.

All logs include:
- Timestamp (ISO 8601)
- Log level
- Logger name
- Message
- Extra context (when provided)

Security: token values and client secrets are masked before a record is emitted.
"""

import logging
import re
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

from health_timeline.config import get_settings


class TokenMaskingFilter(logging.Filter):
    """
    Filter that masks sensitive token values in log messages.

    Prevents accidental exposure of provider access/refresh tokens,
    authorization codes and client secrets in logs.
    """

    SENSITIVE_KEYS = ("access_token", "refresh_token", "client_secret", "code")

    # key=value, key: value and "key": "value" forms
    _KEY_VALUE = re.compile(
        r"""(["']?\b(?:%s)\b["']?\s*[:=]\s*["']?)([^"'\s,&}]+)""" % "|".join(SENSITIVE_KEYS)
    )
    _BEARER = re.compile(r"(?i)(bearer\s+)([^\s\"',]+)")
    # Opaque tokens are long alphanumeric runs
    _LONG_TOKEN = re.compile(r"\b([a-zA-Z0-9]{40,})\b")

    def filter(self, record: logging.LogRecord) -> bool:
        """Mask sensitive data in log record."""
        if record.msg:
            record.msg = self.mask(str(record.msg))

        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    k: self.mask(v) if isinstance(v, str) else v
                    for k, v in record.args.items()
                }
            elif isinstance(record.args, tuple):
                record.args = tuple(
                    self.mask(arg) if isinstance(arg, str) else arg
                    for arg in record.args
                )

        return True

    @classmethod
    def mask(cls, text: str) -> str:
        text = cls._KEY_VALUE.sub(lambda m: f"{m.group(1)}[MASKED]", text)
        text = cls._BEARER.sub(lambda m: f"{m.group(1)}[MASKED]", text)
        return cls._LONG_TOKEN.sub(lambda m: f"token_*****{m.group(1)[-3:]}", text)


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    Custom JSON formatter with additional context fields.
    """

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any]
    ):
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = datetime.now(timezone.utc).isoformat()
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['service'] = 'health-timeline'
        log_record['environment'] = get_settings().ENVIRONMENT

        log_record.pop('levelname', None)
        log_record.pop('name', None)


def setup_logging(
    level: Optional[str] = None,
    json_format: bool = True
) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to the LOG_LEVEL setting.
        json_format: Whether to use JSON format. Text is always used in development.
    """
    settings = get_settings()
    log_level = (level or settings.LOG_LEVEL).upper()
    use_json = json_format and not settings.is_development

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level, logging.INFO))
    root_logger.handlers = []

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, log_level, logging.INFO))

    if use_json:
        formatter = CustomJsonFormatter(
            '%(timestamp)s %(level)s %(logger)s %(message)s'
        )
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    handler.setFormatter(formatter)
    handler.addFilter(TokenMaskingFilter())
    root_logger.addHandler(handler)

    # Reduce noise from third-party libraries
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('httpcore').setLevel(logging.WARNING)
    logging.getLogger('aiosqlite').setLevel(logging.WARNING)
    logging.getLogger('uvicorn').setLevel(logging.INFO)
    logging.getLogger('uvicorn.access').setLevel(logging.WARNING)

    logging.info(
        f"Logging configured: level={log_level}, format={'json' if use_json else 'text'}"
    )


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the token masking filter.

    Used by code that can run outside the app (scripts), where
    setup_logging may not have installed the handler filter.
    """
    logger = logging.getLogger(name)
    if not any(isinstance(f, TokenMaskingFilter) for f in logger.filters):
        logger.addFilter(TokenMaskingFilter())
    return logger
