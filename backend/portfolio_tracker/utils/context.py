# backend/portfolio_tracker/utils/context.py
"""
Execution context for the portfolio tracker.

Holds the correlation ID of the current unit of work (a batch run, a job
invocation) in a ContextVar, so every log line emitted while it runs can be
tagged with the same ID by the logging filter.

Usage:
    from portfolio_tracker.utils.context import correlation_scope

    with correlation_scope("batch"):
        ...  # log lines carry "batch-1a2b3c4d"
"""

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

# =============================================================================
# CONTEXT VARIABLES
# =============================================================================

_correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)


# =============================================================================
# CORRELATION ID
# =============================================================================

def get_correlation_id() -> str | None:
    """Return the current correlation ID, or None if not set."""
    return _correlation_id_var.get()


def set_correlation_id(correlation_id: str) -> None:
    """Set the correlation ID for the current context."""
    _correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    """Clear the correlation ID."""
    _correlation_id_var.set(None)


def new_correlation_id(prefix: str) -> str:
    """Build a short unique ID such as 'batch-1a2b3c4d'."""
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


@contextmanager
def correlation_scope(prefix: str) -> Iterator[str]:
    """
    Tag everything run inside the block with a fresh correlation ID.

    An ID already set by an outer scope is kept, so a job that runs several
    batches logs them all under the job's ID.

    Yields:
        The active correlation ID
    """
    existing = _correlation_id_var.get()
    if existing is not None:
        yield existing
        return

    token = _correlation_id_var.set(new_correlation_id(prefix))
    try:
        yield _correlation_id_var.get()
    finally:
        _correlation_id_var.reset(token)
