"""
Shared helpers.
"""
import logging
import sys

from tenant_rbac.core import config


_configured = False


def configure_logging(level: str = config.LOG_LEVEL) -> None:
    """
    Install a single stdout handler on the root logger.

    In production you would route this to files and/or a log aggregator.
    """
    global _configured
    root = logging.getLogger()
    root.setLevel(level.upper())

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(fmt="%(asctime)s %(levelname)s %(name)s %(message)s"))

    # Replace existing handlers
    root.handlers = [handler]
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a module logger, configuring logging on first use."""
    if not _configured:
        configure_logging()
    return logging.getLogger(name)
