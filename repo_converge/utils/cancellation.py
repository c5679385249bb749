"""Cooperative cancellation between remote calls."""

import asyncio

from repo_converge.exceptions import OperationCancelledError


def raise_if_cancelled(cancel_event: asyncio.Event | None) -> None:
    """Raise OperationCancelledError once ``cancel_event`` is set."""
    if cancel_event is not None and cancel_event.is_set():
        raise OperationCancelledError("Operation cancelled")
