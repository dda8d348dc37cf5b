"""
Directory server URL validation.

Parses ldap:// and ldaps:// URLs into a normalized scheme://host:port form
and rejects anything vCenter SSO cannot use as an Active Directory endpoint.
"""

import logging
import ipaddress
from urllib.parse import urlsplit
from typing import Optional

from avs_identity.errors import MalformedInputError

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = ('ldap', 'ldaps')
ALLOWED_PORTS = (389, 636, 3268, 3269)

# Ports each scheme normally uses; other allowed pairings only warn
CANONICAL_PORTS = {
    'ldap': (389, 3268),
    'ldaps': (636, 3269),
}

DEFAULT_PORTS = {
    'ldap': 389,
    'ldaps': 636,
}


class DirectoryServerURL:
    """A validated directory server endpoint."""

    def __init__(self, scheme: str, host: str, port: int):
        self.scheme = scheme
        self.host = host
        self.port = port

    @property
    def authority(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}"

    @property
    def is_secure(self) -> bool:
        return self.scheme == 'ldaps'

    @property
    def first_label(self) -> str:
        """First DNS label of the host, used to name harvested certificate files."""
        return self.host.split('.')[0]

    def __str__(self):
        return self.authority

    def __repr__(self):
        return f"DirectoryServerURL({self.authority!r})"

    def __eq__(self, other):
        if not isinstance(other, DirectoryServerURL):
            return NotImplemented
        return self.authority == other.authority

    def __hash__(self):
        return hash(self.authority)


def _is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
        return True
    except ValueError:
        return False


def validate_ldap_url(url: Optional[str]) -> DirectoryServerURL:
    """
    Validate a directory server URL.

    A URL without an explicit port gets the scheme's default (389 or 636).
    The scheme must be lowercase ldap or ldaps; the host is lowercased.
    Non-canonical scheme/port pairings such as ldap on 636 are logged as
    warnings and accepted.

    Args:
        url: URL string such as 'ldaps://dc1.example.local:636'

    Returns:
        Normalized DirectoryServerURL

    Raises:
        MalformedInputError: If the URL cannot be used as a directory endpoint
    """
    if not url or not url.strip():
        raise MalformedInputError("Directory server URL is empty")

    raw = url.strip()
    try:
        parts = urlsplit(raw)
        port = parts.port
    except ValueError as e:
        raise MalformedInputError(f"Malformed directory server URL '{raw}': {e}")

    scheme = parts.scheme.lower()
    if not scheme or '://' not in raw:
        raise MalformedInputError(f"Directory server URL '{raw}' is not an absolute URI")

    if scheme not in ALLOWED_SCHEMES:
        raise MalformedInputError(
            f"Unsupported scheme '{scheme}' in '{raw}'; expected one of {', '.join(ALLOWED_SCHEMES)}")

    if not raw.startswith(f"{scheme}://"):
        raise MalformedInputError(f"Scheme in '{raw}' must be written exactly as '{scheme}'")

    host = parts.hostname
    if not host:
        raise MalformedInputError(f"Directory server URL '{raw}' has no host")

    if port is None:
        port = DEFAULT_PORTS[scheme]
        logger.debug(f"No port in '{raw}', using default {port} for {scheme}")

    if port not in ALLOWED_PORTS:
        raise MalformedInputError(
            f"Port {port} in '{raw}' is not allowed; expected one of {', '.join(str(p) for p in ALLOWED_PORTS)}")

    if scheme == 'ldaps' and _is_ip_literal(host):
        raise MalformedInputError(
            f"LDAPS URL '{raw}' uses an IP address; use the server's fully qualified domain name "
            f"so it matches the certificate")

    if port not in CANONICAL_PORTS[scheme]:
        logger.warning(f"Non-standard combination of scheme '{scheme}' and port {port} in '{raw}'")

    if parts.path not in ('', '/') or parts.query:
        logger.debug(f"Ignoring path and query in '{raw}'")

    return DirectoryServerURL(scheme, host, port)
