"""structlog setup for the settlement service.

Development gets the colored console renderer, production gets one JSON
object per line. Both go through the stdlib root logger so uvicorn and
SQLAlchemy output share the same handler.

Log lines carry whatever is bound in contextvars (the middleware binds
``request_id``), and proof inputs never reach the output: values under
``private_input``-style keys are masked before rendering.

Usage:
    from property_settlement.logging_config import setup_logging, get_logger
    setup_logging(log_level="INFO", json_logs=True)
    logger = get_logger(__name__)
    logger.info("settlement.transfer_succeeded", offer_id="offer-abc123", tx_id="tx-1")
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import MutableMapping

# Keys whose values are secret proof witnesses (net worth, country of residence).
REDACTED_KEYS = frozenset({"private_input", "net_worth", "country_code"})
REDACTED = "***"

_THIRD_PARTY_LOGGERS = (
    "uvicorn.access",
    "sqlalchemy.engine",
    "aiosqlite",
    "asyncpg",
    "httpx",
    "httpcore",
)


def redact_private_inputs(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Mask proof witnesses, including one level down inside dict values."""
    for key, value in list(event_dict.items()):
        if key in REDACTED_KEYS:
            event_dict[key] = REDACTED
        elif isinstance(value, dict) and REDACTED_KEYS.intersection(value):
            event_dict[key] = {
                k: (REDACTED if k in REDACTED_KEYS else v) for k, v in value.items()
            }
    return event_dict


def setup_logging(log_level: str = "DEBUG", json_logs: bool = False) -> None:
    """Route structlog through the stdlib root logger.

    Args:
        log_level: Level name for the root logger; unknown names fall back to INFO.
        json_logs: JSON lines when True, colored console output otherwise.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_private_inputs,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    final_processors: list[structlog.types.Processor] = [
        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
    ]
    if json_logs:
        final_processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        final_processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=final_processors,
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    level = logging.getLevelName(log_level.upper())
    root.setLevel(level if isinstance(level, int) else logging.INFO)

    for name in _THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger, conventionally ``get_logger(__name__)``."""
    return structlog.get_logger(name)
