"""
Logging configuration for the EIP-712 forwarder.

Provides console and optional file logging, plain or JSON formatted, with
credential redaction on every handler.
"""

import copy
import logging
import logging.config
from typing import Any, Optional

LOGGER_NAMESPACE = "eip712_forwarder"

DEFAULT_LOGGING_CONFIG: dict[str, Any] = {
    "version": 1,
    "disable_existing_loggers": False,
    "filters": {
        "redact": {
            "()": "eip712_forwarder.utils.structured_logging.CredentialRedactionFilter"
        }
    },
    "formatters": {
        "standard": {
            "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S"
        },
        "detailed": {
            "format": (
                "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d "
                "- %(message)s (%(funcName)s)"
            ),
            "datefmt": "%Y-%m-%d %H:%M:%S"
        },
        "json": {
            "()": "pythonjsonlogger.json.JsonFormatter",
            "format": "%(asctime)s %(name)s %(levelname)s %(message)s"
        },
        "structured": {
            "()": "eip712_forwarder.utils.structured_logging.StructuredFormatter"
        }
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "level": "DEBUG",
            "formatter": "standard",
            "filters": ["redact"],
            "stream": "ext://sys.stdout"
        }
    },
    "loggers": {
        LOGGER_NAMESPACE: {
            "level": "INFO",
            "handlers": ["console"],
            "propagate": False
        }
    },
    "root": {
        "level": "WARNING",
        "handlers": ["console"]
    }
}


def build_logging_config(
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    json_format: bool = False,
    structured: bool = False
) -> dict[str, Any]:
    """
    Build a dictConfig for the given options.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file path (rotating, 10MB x 5)
        json_format: Use JSON formatting
        structured: One JSON object per event, with correlation id and event
            fields at the top level (takes precedence over json_format)

    Returns:
        Logging config dict
    """
    config = copy.deepcopy(DEFAULT_LOGGING_CONFIG)
    logger_config = config["loggers"][LOGGER_NAMESPACE]

    if level:
        logger_config["level"] = level.upper()

    if log_file:
        config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": "DEBUG",
            "formatter": "detailed",
            "filters": ["redact"],
            "filename": log_file,
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5
        }
        logger_config["handlers"].append("file")

    formatter = "structured" if structured else "json" if json_format else None
    if formatter:
        for handler in config["handlers"].values():
            handler["formatter"] = formatter

    return config


def setup_logging(
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    json_format: bool = False,
    structured: bool = False
) -> None:
    """
    Setup logging configuration.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file path
        json_format: Use JSON formatting
        structured: Use the structured event formatter
    """
    logging.config.dictConfig(build_logging_config(level, log_file, json_format, structured))


def setup_logging_from_settings(settings) -> None:
    """Apply the logging options of a ForwarderSettings instance."""
    setup_logging(
        level=settings.log_level,
        log_file=settings.log_file,
        json_format=settings.log_json,
        structured=settings.log_structured
    )


def get_logger(name: str) -> logging.Logger:
    """
    Get logger instance under the package namespace.

    Args:
        name: Logger name

    Returns:
        Logger instance
    """
    if name == LOGGER_NAMESPACE or name.startswith(f"{LOGGER_NAMESPACE}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")
