"""Exception hierarchy shared across dohguard modules."""


class DohGuardError(Exception):
    """Base class for dohguard errors."""


class TransportError(DohGuardError):
    """
    Brief: Upstream DNS-over-HTTPS transport failure.

    Inputs:
    - message: Description of the error (unreachable, non-2xx, timeout)

    Outputs:
    - Exception instance
    """


class CacheError(DohGuardError):
    """Brief: Cache store fault (corrupt entry); callers treat it as a miss."""
