"""
Logging setup for the FundOps importer.

Configures the root logger from ``LOG_*`` settings so module-level loggers
(``logging.getLogger(__name__)``) and ``app.logger`` share handlers. Records
are rendered by structlog: JSON lines in production, a console layout
otherwise. Context passed through ``extra={...}`` is kept in both.
"""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler

import structlog
from flask.logging import default_handler

_HANDLER_MARKER = "_fundops_handler"


def _app_name_adder(app_name: str | None):
    def add_app_name(logger, method_name, event_dict):
        if app_name:
            event_dict.setdefault("app", app_name)
        return event_dict

    return add_app_name


def _shared_processors(app_name: str | None) -> list:
    return [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.ExtraAdder(),
        _app_name_adder(app_name),
    ]


def json_formatter(app_name: str | None = None) -> structlog.stdlib.ProcessorFormatter:
    """One JSON object per line, with the rendered message under ``message``."""

    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_shared_processors(app_name),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.EventRenamer("message"),
            structlog.processors.JSONRenderer(default=str),
        ],
    )


def console_formatter(app_name: str | None = None) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_shared_processors(app_name),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
    )


def _build_formatter(app) -> logging.Formatter:
    app_name = app.config.get("APP_NAME")
    if str(app.config.get("LOG_FORMAT", "text")).lower() == "json":
        return json_formatter(app_name)
    return console_formatter(app_name)


def _remove_owned_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            logger.removeHandler(handler)
            handler.close()


def setup_logging(app) -> None:
    """
    Configure application logging from the app config.

    Safe to call more than once; handlers installed by a previous call are
    replaced rather than duplicated.
    """
    level_name = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    formatter = _build_formatter(app)

    # structlog loggers hand their event dicts to the stdlib handlers below.
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    _remove_owned_handlers(root_logger)
    root_logger.setLevel(level)

    if app.config.get("ENABLE_CONSOLE_LOGGING", True):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        console_handler.setLevel(level)
        setattr(console_handler, _HANDLER_MARKER, True)
        root_logger.addHandler(console_handler)

    if app.config.get("ENABLE_FILE_LOGGING", False):
        log_dir = app.config.get("LOG_DIR", "logs")
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, "importer.log"),
            maxBytes=int(app.config.get("LOG_FILE_MAX_BYTES", 10485760)),
            backupCount=int(app.config.get("LOG_FILE_BACKUP_COUNT", 10)),
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        file_handler.setLevel(level)
        setattr(file_handler, _HANDLER_MARKER, True)
        root_logger.addHandler(file_handler)

    app.logger.setLevel(level)
    # Let app.logger records reach the root handlers instead of Flask's default one.
    app.logger.removeHandler(default_handler)
    app.logger.propagate = True
    app.logger.debug("Logging configured (level=%s, format=%s)", level_name, app.config.get("LOG_FORMAT"))
