"""
Failure taxonomy for task persistence.

Adapters raise SyncFault subclasses; BoardController catches them and
reports a notice instead of letting them reach the rendering path.
"""


class SyncFault(Exception):
    """Base class for a persistence operation that did not complete."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class StorageFault(SyncFault):
    """Local snapshot could not be serialized, read or written."""
    pass


class NetworkFault(SyncFault):
    """Remote round-trip failed (timeout, connectivity, server error)."""
    pass


class ValidationFault(SyncFault):
    """Payload rejected, either before submission or by the backend."""
    pass


class DuplicateTaskError(ValueError):
    """TaskStore.insert() was given an id that is already present."""
    pass
