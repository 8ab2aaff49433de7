"""Exceptions raised by the queue service."""
from typing import Optional


class StoreError(Exception):
    """The queue store could not be read or written."""


class EntryNotFoundError(StoreError):
    """No queue entry exists with the requested id."""

    def __init__(self, entry_id):
        self.entry_id = entry_id
        super().__init__(f"Queue entry not found: {entry_id}")


class ValidationError(Exception):
    """Input rejected before it reaches the store."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.message = message
        self.field = field
        super().__init__(self.message)


class InvalidTransitionError(ValidationError):
    """A status change the state machine does not allow."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move queue entry from '{current}' to '{target}'", field="status")
