"""Shared logging utilities for FastAPI applications."""

import logging

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'


class HealthCheckFilter(logging.Filter):
    """Filter out health check requests from uvicorn access logs."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Return False to suppress health check log entries."""
        return '/health' not in record.getMessage()


def configure_logging(level: str | int = logging.INFO) -> None:
    """Configure root logging and suppress health check access entries.

    Safe to call more than once: ``basicConfig`` is a no-op when the root
    logger already has handlers, and the filter is only installed once.
    """
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger().setLevel(level)
    access = logging.getLogger('uvicorn.access')
    if not any(isinstance(f, HealthCheckFilter) for f in access.filters):
        access.addFilter(HealthCheckFilter())
