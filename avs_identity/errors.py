"""
Exception types for identity source provisioning and diagnostics.

Provisioning operations raise these and abort; the diagnostic sweep catches
them per probe and keeps going.
"""


class IdentitySourceError(Exception):
    """Base exception for identity source operations."""
    pass


class MalformedInputError(IdentitySourceError):
    """Raised when a URL, DN, domain name or credential is malformed."""
    pass


class DuplicateResourceError(IdentitySourceError):
    """Raised when an identity source for the domain is already registered."""
    pass


class NotFoundError(IdentitySourceError):
    """Raised when a domain, identity source or group cannot be found."""
    pass


class AmbiguousMatchError(IdentitySourceError):
    """Raised when a group name matches in more than one domain."""
    pass


class TransportError(IdentitySourceError):
    """Raised when a download, remote command or API call fails in transit."""
    pass


class ExpiredTrustMaterialError(IdentitySourceError):
    """Raised when a certificate is expired or not yet valid."""
    pass


class UnsupportedOperationError(IdentitySourceError):
    """Raised when an operation targets a protected or system object."""
    pass
