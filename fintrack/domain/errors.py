"""
Typed errors raised by the ledger core.

The HTTP layer maps them to status codes; callers inside the process catch
the specific class they can handle.
"""


class LedgerError(Exception):
    """Base class for all ledger core errors"""
    pass


class ValidationError(LedgerError, ValueError):
    """Malformed input: non-positive amount, missing or foreign reference"""
    pass


class NotFoundError(LedgerError, LookupError):
    """Operation on an id that does not exist for the owner"""
    pass


class ConflictError(LedgerError):
    """Concurrent update detected (lost compare-and-set, duplicate idempotency key)"""
    pass


class StorageError(LedgerError):
    """Record store unavailable or write rejected; nothing was committed"""
    pass
