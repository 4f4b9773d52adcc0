"""
Referral network exceptions.

Structural errors (bad level, malformed address, negative amount) are
raised before any store access. Data-consistency gaps are reported with
InconsistentError and handled by the event adapter.
"""


class NetworkError(Exception):
    """Base class for referral network errors."""


class NotFoundError(NetworkError):
    """Address or ledger entry unknown to the store."""


class ConflictError(NetworkError):
    """Write conflicts with existing state (duplicate tx id, referrer change)."""


class InvalidRangeError(NetworkError, ValueError):
    """Level outside the supported depth range."""


class InvalidAddressError(NetworkError, ValueError):
    """Malformed wallet address."""


class InvalidAmountError(NetworkError, ValueError):
    """Negative or non-numeric amount."""


class InconsistentError(NetworkError):
    """Event references a relationship that is not materialized."""
