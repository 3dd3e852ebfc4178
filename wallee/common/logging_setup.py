"""
Structured Logging Setup

Consistent logging configuration across all services.
Uses JSON format for structured logs in production.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

# LogRecord attributes that are not user-supplied extras
_RESERVED_ATTRS = frozenset((
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "service",
    "message", "taskName",
))


class JsonFormatter(logging.Formatter):
    """JSON log formatter for structured logging"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "service": getattr(record, "service", "unknown"),
            "message": record.getMessage(),
            "logger": record.name,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


class ServiceLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds service name to all logs"""

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        extra = dict(kwargs.get("extra") or {})
        extra["service"] = self.extra.get("service", "unknown")
        kwargs["extra"] = extra
        return msg, kwargs


def setup_logging(
    service_name: str,
    log_level: str = "INFO",
    json_format: bool = True,
) -> logging.Logger:
    """
    Set up structured logging for a service.

    Args:
        service_name: Name of the service (e.g., "control", "price")
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format (True for production, False for dev)

    Returns:
        Configured logger instance
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger(f"wallee.{service_name}" if service_name else "wallee")
    logger.setLevel(numeric_level)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)

    if json_format:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler.setFormatter(formatter)
    logger.addHandler(handler)

    # Don't propagate to root logger
    logger.propagate = False

    return logger


def get_service_logger(service_name: str) -> ServiceLoggerAdapter:
    """
    Get a logger adapter with service context.

    Child loggers (e.g. "control.policy") propagate to the handler that
    setup_logging() installed on "wallee".

    Args:
        service_name: Name of the service

    Returns:
        Logger adapter with service name in all logs
    """
    logger = logging.getLogger(f"wallee.{service_name}")
    return ServiceLoggerAdapter(logger, {"service": service_name})


def configure_from_env(
    log_level: str = "INFO",
    json_format: bool = True,
) -> logging.Logger:
    """
    Configure the root "wallee" logger, letting environment variables win.

    WALLEE_LOG_LEVEL and WALLEE_LOG_FORMAT ("json" or "text") override the
    values coming from the configuration file.
    """
    log_level = os.environ.get("WALLEE_LOG_LEVEL", log_level)
    env_format = os.environ.get("WALLEE_LOG_FORMAT")
    if env_format is not None:
        json_format = env_format.lower() == "json"

    logger = setup_logging("", log_level, json_format)
    return logger


def log_control_iteration(
    logger: logging.LoggerAdapter,
    level: int,
    result: Any,
) -> None:
    """Log one control loop iteration with its full context"""
    logger.log(
        level,
        "Control loop update.\n"
        f"- charging parameters: {result.parameters}\n"
        f"- current price: {result.price}\n"
        f"- charging station data: {result.station_data}\n"
        f"- meter data: {result.meter_data}\n"
        f"- next current limit setpoint: {result.setpoint_ampere:.2f}A\n"
        f"- control message: {result.message}",
        extra={
            "binding_limit_a": result.binding_limit_ampere,
            "setpoint_a": result.setpoint_ampere,
            "fallback": result.fallback,
            "execution_time_ms": round(result.execution_time_ms, 1),
        },
    )
