"""
Error taxonomy.

Access-path errors (Unauthenticated, MalformedToken, AccessDenied) stop the
operation. Integrity findings are never raised: they are recorded as
Violation entries, and unsafe repairs are recorded as skipped outcomes.
"""

from __future__ import annotations


class ScopeguardError(Exception):
    """Base class for all scopeguard errors."""


class Unauthenticated(ScopeguardError):
    """No principal could be derived from the request."""


class MalformedToken(ScopeguardError):
    """The presented token is structurally invalid."""


class AccessDenied(ScopeguardError):
    """A resolved principal was denied by the access policy.

    The message is always generic; rule and violation detail stay in logs.
    """

    def __init__(self, message: str = "not permitted"):
        super().__init__(message)


class UnknownOperation(ScopeguardError, ValueError):
    """An operation name outside the known set was passed to decide()."""


class ConfigurationError(ScopeguardError):
    """Catalog, policy or settings reference something that does not exist."""


class StoreError(ScopeguardError):
    """The document store could not be read or written."""


class RunLocked(ScopeguardError):
    """Another batch run already holds the lock for this scope."""


class RepairCancelled(ScopeguardError):
    """The operator cancelled a repair during the pre-execute countdown."""
