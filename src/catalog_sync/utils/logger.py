"""
Logging configuration for Catalog Sync.

Every line carries the tenant whose sync is running, taken from a context
variable set by ``tenant_context``. Worker processes interleave runs for
many tenants, so a line without its tenant is hard to attribute.

Handlers live on the ``catalog_sync`` logger: colored console output and a
rotating file. LOG_LEVEL, LOG_DIR and DEBUG_MODE are read from the
environment because configuration loading itself logs.
"""

import logging
import logging.handlers
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Iterator, Optional

import colorlog


ROOT_LOGGER_NAME = "catalog_sync"
NO_TENANT = "-"

_current_tenant: ContextVar[Optional[str]] = ContextVar("catalog_sync_tenant", default=None)

_log_colors = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "red,bg_white",
}


def current_tenant_id() -> Optional[str]:
    """Tenant bound to the running context, if any."""
    return _current_tenant.get()


@contextmanager
def tenant_context(tenant_id: str) -> Iterator[str]:
    """
    Bind a tenant id to every log line emitted inside the block.

    Nested blocks restore the outer tenant on exit.
    """
    token = _current_tenant.set(tenant_id)
    try:
        yield tenant_id
    finally:
        _current_tenant.reset(token)


class TenantContextFilter(logging.Filter):
    """Adds ``record.tenant`` for the format strings."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.tenant = _current_tenant.get() or NO_TENANT
        return True


class CatalogSyncLogger:
    """Configures the ``catalog_sync`` logger hierarchy."""

    def __init__(self, name: str = ROOT_LOGGER_NAME):
        self.name = name
        self.logger = logging.getLogger(name)
        self._setup_logger()

    def _setup_logger(self) -> None:
        log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        log_dir = os.getenv("LOG_DIR", "./logs")
        debug_mode = os.getenv("DEBUG_MODE", "false").lower() == "true"

        Path(log_dir).mkdir(parents=True, exist_ok=True)
        self.logger.setLevel(getattr(logging, log_level, logging.INFO))

        # Re-running setup must not stack handlers
        self.logger.handlers.clear()

        # Debug lines point at the call site
        location = "%(name)s.%(funcName)s:%(lineno)d" if debug_mode else "%(name)s"
        line_format = f"%(asctime)s [%(levelname)8s] [tenant=%(tenant)s] {location} - %(message)s"

        console_handler = colorlog.StreamHandler(sys.stdout)
        console_handler.setFormatter(colorlog.ColoredFormatter(
            f"%(log_color)s{line_format}",
            datefmt="%Y-%m-%d %H:%M:%S",
            log_colors=_log_colors,
        ))
        self._add_handler(console_handler)

        # 5MB per file, 5 backups
        file_handler = logging.handlers.RotatingFileHandler(
            os.path.join(log_dir, f"{self.name}.log"),
            maxBytes=5 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
            delay=True,
        )
        file_handler.setFormatter(logging.Formatter(line_format, datefmt="%Y-%m-%d %H:%M:%S"))
        self._add_handler(file_handler)

    def _add_handler(self, handler: logging.Handler) -> None:
        # Filter on the handler so records from child loggers get the field too
        handler.addFilter(TenantContextFilter())
        self.logger.addHandler(handler)

    def get_logger(self) -> logging.Logger:
        return self.logger


_root: Optional[CatalogSyncLogger] = None


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Get a logger instance for the given name.

    Handlers live on the ``catalog_sync`` logger only; module loggers
    propagate to it, so each record is emitted once.

    Args:
        name: Logger name. If None, uses the caller's module name.

    Returns:
        Configured logger instance.
    """
    global _root

    if name is None:
        frame = sys._getframe(1)
        name = frame.f_globals.get("__name__", ROOT_LOGGER_NAME)

    if _root is None:
        _root = CatalogSyncLogger(ROOT_LOGGER_NAME)

    return logging.getLogger(name)


def setup_logging() -> None:
    """
    (Re)configure logging at process startup (CLI, Celery worker).

    Re-reads LOG_LEVEL / LOG_DIR / DEBUG_MODE.
    """
    global _root
    _root = CatalogSyncLogger(ROOT_LOGGER_NAME)

    logger = _root.get_logger()
    logger.debug(f"Logging initialized at level {logging.getLevelName(logger.level)}")
