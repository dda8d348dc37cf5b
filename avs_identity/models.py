"""
Records exchanged between the orchestrator, the registrar and the SSO client.
"""

import re
from typing import List, NamedTuple, Optional

from ldap3.core.exceptions import LDAPInvalidDnError
from ldap3.utils.dn import parse_dn

from avs_identity.errors import MalformedInputError
from avs_identity.url_validator import DirectoryServerURL

SERVER_TYPE_ACTIVE_DIRECTORY = 'ActiveDirectory'

DOMAIN_NAME_PATTERN = re.compile(r'^(?=.{1,253}$)([A-Za-z0-9-]{1,63}\.)+[A-Za-z0-9-]{1,63}$')


def normalize_domain(domain_name: Optional[str]) -> str:
    """Domain names compare case-insensitively with surrounding whitespace ignored."""
    return (domain_name or '').strip().lower()


class Credential(NamedTuple):
    username: str
    password: str

    def __repr__(self):
        return f"Credential(username={self.username!r})"


class GroupRecord(NamedTuple):
    name: str
    domain: str

    def matches(self, other: 'GroupRecord') -> bool:
        return (self.name.strip().lower() == other.name.strip().lower()
                and normalize_domain(self.domain) == normalize_domain(other.domain))

    def __str__(self):
        return f"{self.name}@{self.domain}"


class IdentitySourceRecord(NamedTuple):
    """An identity source as registered in SSO."""
    name: str
    domain_name: str
    alias: Optional[str] = None
    primary_url: Optional[str] = None
    failover_url: Optional[str] = None
    type: str = SERVER_TYPE_ACTIVE_DIRECTORY
    username: Optional[str] = None

    @property
    def urls(self) -> List[str]:
        return [url for url in (self.primary_url, self.failover_url) if url]


class IdentitySourceSpec:
    """Parameters for registering an Active Directory identity source."""

    def __init__(self, name: str, domain_name: str, domain_alias: str,
                 primary_url: DirectoryServerURL, base_dn_users: str, base_dn_groups: str,
                 credential: Credential, secondary_url: Optional[DirectoryServerURL] = None,
                 group_name: Optional[str] = None):
        self.name = name
        self.domain_name = domain_name.strip() if domain_name else domain_name
        self.domain_alias = domain_alias.strip() if domain_alias else domain_alias
        self.primary_url = primary_url
        self.secondary_url = secondary_url
        self.base_dn_users = base_dn_users
        self.base_dn_groups = base_dn_groups
        self.credential = credential
        self.group_name = group_name

    @property
    def is_secure(self) -> bool:
        return self.primary_url.is_secure

    @property
    def urls(self) -> List[DirectoryServerURL]:
        return [url for url in (self.primary_url, self.secondary_url) if url]

    def validate(self) -> None:
        """
        Check the shape of every field.

        Raises:
            MalformedInputError: Listing every problem found
        """
        errors = []

        if not self.name or not self.name.strip():
            errors.append("Name is required")

        if not self.domain_name or not DOMAIN_NAME_PATTERN.match(self.domain_name):
            errors.append(f"Domain name '{self.domain_name}' is not a dotted DNS name")

        if not self.domain_alias or not self.domain_alias.strip():
            errors.append("Domain alias is required")

        for label, dn in (('BaseDNUsers', self.base_dn_users), ('BaseDNGroups', self.base_dn_groups)):
            problem = _dn_problem(dn)
            if problem:
                errors.append(f"{label} {problem}")

        if not self.credential or not (self.credential.username or '').strip():
            errors.append("Credential username is required")
        if not self.credential or not self.credential.password:
            errors.append("Credential password is required")

        if self.secondary_url and self.secondary_url.scheme != self.primary_url.scheme:
            errors.append(f"Secondary URL scheme '{self.secondary_url.scheme}' does not match "
                          f"primary URL scheme '{self.primary_url.scheme}'")

        if errors:
            raise MalformedInputError("Invalid identity source parameters:\n" + "\n".join(f"  - {e}" for e in errors))

    def __repr__(self):
        return (f"IdentitySourceSpec(name={self.name!r}, domain_name={self.domain_name!r}, "
                f"primary_url={self.primary_url}, secondary_url={self.secondary_url})")


def _dn_problem(dn: Optional[str]) -> Optional[str]:
    if not dn or not dn.strip():
        return "is required"
    try:
        components = parse_dn(dn)
    except LDAPInvalidDnError as e:
        return f"'{dn}' is not a valid distinguished name: {e}"
    if not components:
        return f"'{dn}' is not a valid distinguished name"
    return None
