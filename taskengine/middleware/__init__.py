# Task Engine Middleware Package
from .correlation import (
    CorrelationIdMiddleware,
    CorrelationIdFilter,
    bind_correlation_id,
    configure_logging,
    generate_correlation_id,
    get_correlation_id,
)

__all__ = [
    "CorrelationIdMiddleware",
    "CorrelationIdFilter",
    "bind_correlation_id",
    "configure_logging",
    "generate_correlation_id",
    "get_correlation_id",
]
