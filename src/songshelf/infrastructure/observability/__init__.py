"""Observability infrastructure for structured logging."""

from songshelf.infrastructure.observability.logging import (
    configure_logging,
    correlation_scope,
    get_correlation_id,
    log_operation,
)

__all__ = [
    "configure_logging",
    "correlation_scope",
    "get_correlation_id",
    "log_operation",
]
