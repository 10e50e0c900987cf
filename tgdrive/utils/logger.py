"""Structured logging setup using structlog"""

import logging
import os
import sys
from typing import Any

import structlog

from tgdrive.config import settings


def configure_third_party_loggers(log_level: int):
    """Configure third-party library loggers to reduce verbosity - ERROR only in production"""

    error_level = logging.ERROR

    # Uvicorn - ERROR only
    logging.getLogger("uvicorn.access").setLevel(error_level)
    logging.getLogger("uvicorn.error").setLevel(error_level)

    # Aiogram - ERROR only (dispatcher/event chatter)
    logging.getLogger("aiogram").setLevel(error_level)
    logging.getLogger("aiogram.event").setLevel(error_level)

    # Aiohttp - ERROR only
    logging.getLogger("aiohttp").setLevel(error_level)
    logging.getLogger("aiohttp.client").setLevel(error_level)
    logging.getLogger("aiohttp.server").setLevel(error_level)

    # SQLAlchemy - ERROR only
    logging.getLogger("sqlalchemy").setLevel(error_level)
    logging.getLogger("sqlalchemy.engine").setLevel(error_level)
    logging.getLogger("sqlalchemy.pool").setLevel(error_level)

    # Redis - ERROR only
    logging.getLogger("redis").setLevel(error_level)
    logging.getLogger("redis.client").setLevel(error_level)

    # Other common libraries - ERROR only
    logging.getLogger("asyncio").setLevel(error_level)
    logging.getLogger("multipart").setLevel(error_level)


def configure_logging():
    """Configure structured logging with environment-aware settings - ERROR only in production"""

    if settings.environment == "production" and not os.getenv("LOG_LEVEL"):
        # Force ERROR in production unless explicitly set
        log_level = logging.ERROR
    else:
        log_level = getattr(logging, settings.log_level.upper(), logging.ERROR)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    configure_third_party_loggers(log_level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> Any:
    """Get a logger instance"""
    return structlog.get_logger(name)


def mask_secret(value: str, visible: int = 4) -> str:
    """
    Mask a secret for logging, keeping only a short prefix.

    Bot tokens look like "123456:ABC-DEF..." - the numeric bot id before the
    colon is not secret and helps telling bots apart, so it is kept.

    Args:
        value: Secret to mask
        visible: Number of leading characters kept when there is no bot id

    Returns:
        Masked representation (e.g. "123456:[REDACTED]")
    """
    if not value:
        return "[NOT_SET]"
    if ":" in value:
        bot_id = value.split(":", 1)[0]
        if bot_id.isdigit():
            return f"{bot_id}:[REDACTED]"
    if len(value) <= visible * 2:
        return "[REDACTED]"
    return f"{value[:visible]}...[REDACTED]"


def log_storage_config(logger: Any, config: Any) -> None:
    """
    Log storage configuration safely without exposing credentials.

    Args:
        logger: Logger instance
        config: Settings object with storage configuration
    """
    logger.info(
        "storage_config_loaded",
        chat_id=config.telegram_chat_id if config.telegram_chat_id else "[NOT_SET]",
        bot_token=mask_secret(config.telegram_bot_token),
        kv_backend=config.kv_backend,
        redis_url=config.redis_url.split("@")[-1] if config.redis_url else "[NOT_SET]",
        redis_token="[REDACTED]" if config.redis_token else "[NOT_SET]",
        file_record_ttl=config.file_record_ttl,
        sync_history_limit=config.sync_history_limit,
        delete_max_retries=config.delete_queue_max_retries,
        delete_retry_delay=config.delete_queue_retry_delay,
        network_check_interval=config.network_check_interval,
    )


# Configure logging on import
configure_logging()
