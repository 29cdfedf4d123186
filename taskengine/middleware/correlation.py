# taskengine/middleware/correlation.py
"""
Correlation ID support for logging.

Every HTTP request and every task execution attempt runs under a correlation
ID so that all log lines belonging to one unit of work can be grouped:

    [2026-01-01T00:00:00] [corr-id:task-42-1f3a9c0b] [INFO] taskengine.executor: ...
"""

import os
import uuid
import logging
import logging.config
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# Context variable for correlation ID (safe across asyncio tasks)
correlation_id_var: ContextVar[str] = ContextVar('correlation_id', default='no-corr-id')


def get_correlation_id() -> str:
    """Get current correlation ID from context"""
    return correlation_id_var.get()


def generate_correlation_id(prefix: str = "corr") -> str:
    """Generate a new correlation ID"""
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


@contextmanager
def bind_correlation_id(corr_id: Optional[str] = None) -> Iterator[str]:
    """Bind a correlation ID for the duration of the block"""
    corr_id = corr_id or generate_correlation_id()
    token = correlation_id_var.set(corr_id)
    try:
        yield corr_id
    finally:
        correlation_id_var.reset(token)


class CorrelationIdFilter(logging.Filter):
    """Logging filter to inject correlation ID into log records"""

    def filter(self, record):
        record.correlation_id = get_correlation_id()
        return True


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Ensures every request/response carries an X-Correlation-ID header."""

    HEADER_NAME = "X-Correlation-ID"

    async def dispatch(self, request: Request, call_next) -> Response:
        corr_id = request.headers.get(self.HEADER_NAME) or generate_correlation_id()

        with bind_correlation_id(corr_id):
            response = await call_next(request)
            response.headers[self.HEADER_NAME] = corr_id
            return response


def configure_logging(settings) -> None:
    """Apply the settings logging configuration (creates LOG_DIR if needed)"""
    os.makedirs(settings.LOG_DIR, exist_ok=True)
    logging.config.dictConfig(settings.get_log_config())
