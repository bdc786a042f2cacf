"""
Run ID Utility for Feed Reconciliation

Provides utilities for generating and managing the run ID that ties together
every log line, metric push and report produced by one reconciliation run.
"""

import uuid
import contextvars
from typing import Optional
import logging

logger = logging.getLogger(__name__)

# Context variable for run ID
_run_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    'run_id',
    default=None
)


def generate_run_id() -> str:
    """
    Generate a new run ID using UUID4.

    Returns:
        String representation of a UUID4
    """
    run_id = str(uuid.uuid4())
    logger.debug(f"Generated run ID: {run_id}")
    return run_id


def get_run_id() -> Optional[str]:
    """
    Get the current run ID from context.

    Returns:
        Current run ID or None if not set
    """
    return _run_id.get()


def set_run_id(run_id: str) -> None:
    """
    Set the run ID in the current context.

    Args:
        run_id: Run ID to set

    Raises:
        ValueError: If run_id is empty or invalid
    """
    if not run_id or not isinstance(run_id, str):
        raise ValueError("Run ID must be a non-empty string")

    _run_id.set(run_id)
    logger.debug(f"Set run ID: {run_id}")


def get_or_create_run_id() -> str:
    """
    Get the current run ID or create a new one if not set.

    Returns:
        Current or newly created run ID
    """
    run_id = get_run_id()

    if not run_id:
        run_id = generate_run_id()
        set_run_id(run_id)

    return run_id


def clear_run_id() -> None:
    """Clear the run ID from context."""
    _run_id.set(None)


class RunContext:
    """
    Context manager for run ID management.

    Sets a run ID for the duration of a block and restores the previous one
    on exit. Tasks created inside the block inherit the ID.
    """

    def __init__(self, run_id: Optional[str] = None):
        """
        Initialize run context.

        Args:
            run_id: Optional run ID to use. If not provided, a new one is
                generated.
        """
        self.run_id = run_id
        self.previous_id = None

    def __enter__(self) -> str:
        self.previous_id = get_run_id()

        if not self.run_id:
            self.run_id = generate_run_id()
        set_run_id(self.run_id)

        logger.debug(f"Entered run context: {self.run_id}")
        return self.run_id

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.previous_id:
            set_run_id(self.previous_id)
        else:
            clear_run_id()
        logger.debug(f"Left run context: {self.run_id}")


def run_id_filter(record):
    """
    Logging filter to add the run ID to log records.

    Args:
        record: Log record to augment

    Returns:
        True (always allow record)
    """
    record.run_id = get_run_id() or "N/A"
    return True


def setup_run_logging(handler: logging.Handler) -> None:
    """
    Configure a handler to stamp records with the run ID.

    Args:
        handler: Handler to configure
    """
    handler.addFilter(run_id_filter)
