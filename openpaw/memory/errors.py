"""
Memory errors.

Missing files and unparseable blocks are not errors at all (they degrade to
empty results); filesystem failures propagate as plain OSError.
"""


class MemoryStoreError(Exception):
    """Base class for memory subsystem errors."""


class MemoryNotReadyError(MemoryStoreError, RuntimeError):
    """Operation called before init() or after close()."""


class InvalidEntryError(MemoryStoreError, ValueError):
    """Entry cannot be persisted (empty content, unknown kind...)."""


class ImmutableEntryError(MemoryStoreError):
    """Attempt to update a daily-log entry."""
