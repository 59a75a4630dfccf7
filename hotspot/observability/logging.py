"""
Structured logging for the gateway.

Events are snake_case names with key/value context. Payer phone numbers
are masked before rendering; MACs, IPs and payment references are kept
because operators search logs by them.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from hotspot.config import Settings, settings

PHONE_KEYS = frozenset({"phone", "phone_number", "msisdn"})


def mask_phone(value: Any) -> str:
    """254712345678 -> ********5678."""
    text = str(value)
    if len(text) <= 4:
        return "*" * len(text)
    return "*" * (len(text) - 4) + text[-4:]


def mask_phone_numbers(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    for key in PHONE_KEYS & event_dict.keys():
        if event_dict[key] is not None:
            event_dict[key] = mask_phone(event_dict[key])
    return event_dict


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Stamp every entry with the service name and version."""
    event_dict["service"] = settings.service_name
    event_dict["version"] = settings.api_version
    return event_dict


def build_processors(config: Settings) -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_app_context,
        mask_phone_numbers,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if config.log_level.upper() == "DEBUG":
        processors.append(structlog.processors.ExceptionRenderer())
    else:
        processors.append(structlog.processors.format_exc_info)

    if config.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    return processors


def setup_logging(config: Settings | None = None) -> None:
    """
    Configure structlog on top of the stdlib root logger.

    A JSON line looks like:
    {
        "event": "access_activated",
        "level": "info",
        "timestamp": "2025-01-08T12:00:00.123456Z",
        "logger": "hotspot.services.reconciliation",
        "service": "hotspot-access-gateway",
        "version": "0.1.0",
        "reference": "9F2C41AB",
        "mac": "aa:bb:cc:dd:ee:ff"
    }
    """
    config = config or settings
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, config.log_level.upper()),
    )

    structlog.configure(
        processors=build_processors(config),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)  # type: ignore[no-any-return]


class log_context:
    """
    Bind key/value pairs to every log entry emitted inside the block.

        with log_context(reference="9F2C41AB"):
            await orchestrator.grant(...)
    """

    def __init__(self, **kwargs: Any) -> None:
        self.context = kwargs

    def __enter__(self) -> None:
        structlog.contextvars.bind_contextvars(**self.context)

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        structlog.contextvars.unbind_contextvars(*self.context.keys())
