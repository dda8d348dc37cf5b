"""
Identity source registration against the SSO registry.

Every mutating operation reads the current external identity sources first,
so duplicates are refused and updates only touch sources that exist.
"""

import logging
from typing import List, Optional, Iterable

from avs_identity.certificates import CertificateBundle
from avs_identity.errors import (
    DuplicateResourceError,
    MalformedInputError,
    NotFoundError,
    UnsupportedOperationError,
)
from avs_identity.logging_setup import security_logger
from avs_identity.models import (
    SERVER_TYPE_ACTIVE_DIRECTORY,
    Credential,
    IdentitySourceRecord,
    IdentitySourceSpec,
    normalize_domain,
)
from avs_identity.sso.base import SSOClientBase

logger = logging.getLogger(__name__)

PROTECTED_DOMAINS = ('vsphere.local', 'localos')


class IdentitySourceRegistrar:
    """Adds, updates, removes and lists external identity sources."""

    def __init__(self, sso_client: SSOClientBase, protected_domains: Optional[Iterable[str]] = None):
        self.sso = sso_client
        protected = set(PROTECTED_DOMAINS)
        protected.update(protected_domains or [])
        self.protected_domains = {normalize_domain(d) for d in protected}

    def check_not_protected(self, domain_name: str) -> None:
        """
        Raises:
            UnsupportedOperationError: If the domain belongs to the platform itself
        """
        if normalize_domain(domain_name) in self.protected_domains:
            security_logger.log_security_event('protected domain rejected', domain_name.strip())
            raise UnsupportedOperationError(
                f"Domain '{domain_name.strip()}' is a system domain and cannot be modified")

    def list_sources(self) -> List[IdentitySourceRecord]:
        """Return every external identity source, logging an explicit notice when there are none."""
        sources = self.sso.list_external_sources()
        if not sources:
            logger.info("No external identity sources found")
        return sources

    def find_source(self, domain_name: str) -> Optional[IdentitySourceRecord]:
        wanted = normalize_domain(domain_name)
        for source in self.sso.list_external_sources():
            if normalize_domain(source.domain_name) == wanted:
                return source
        return None

    def get_source(self, domain_name: str) -> IdentitySourceRecord:
        """
        Raises:
            NotFoundError: If no external identity source has this domain name
        """
        source = self.find_source(domain_name)
        if source is None:
            raise NotFoundError(f"No external identity source found for domain '{domain_name.strip()}'")
        return source

    def ensure_not_registered(self, domain_name: str) -> None:
        """
        Raises:
            DuplicateResourceError: If the domain already has an identity source
        """
        if self.find_source(domain_name) is not None:
            raise DuplicateResourceError(
                f"An identity source for domain '{domain_name.strip()}' already exists. "
                f"Use Update-IdentitySourceCredential or Update-IdentitySourceCertificates "
                f"to change it, or remove it first")

    def add(self, spec: IdentitySourceSpec,
            certificates: Optional[CertificateBundle] = None) -> IdentitySourceRecord:
        """
        Register a new Active Directory identity source.

        LDAPS sources are registered with their certificate bundle; LDAP
        sources without one. The server type is ActiveDirectory either way.

        Raises:
            UnsupportedOperationError: If the domain is protected
            DuplicateResourceError: If the domain is already registered
            MalformedInputError: If an LDAPS source has no certificates
        """
        self.check_not_protected(spec.domain_name)
        self.ensure_not_registered(spec.domain_name)

        pem_chain = None
        if spec.is_secure:
            if not certificates or len(certificates) == 0:
                raise MalformedInputError("An LDAPS identity source requires at least one certificate")
            pem_chain = certificates.pem_chain()

        logger.info(f"Adding identity source {spec.name} for domain {spec.domain_name} "
                    f"({spec.primary_url}{', ' + str(spec.secondary_url) if spec.secondary_url else ''})")
        try:
            record = self.sso.add_source(spec, SERVER_TYPE_ACTIVE_DIRECTORY, pem_chain)
        except Exception:
            security_logger.log_identity_source_operation('add', spec.domain_name, False)
            raise

        security_logger.log_identity_source_operation('add', spec.domain_name, True)
        logger.info(f"Identity source for domain {spec.domain_name} added")
        return record

    def update_certificates(self, source: IdentitySourceRecord, certificates: CertificateBundle) -> None:
        """Replace the certificates of an existing source."""
        self.check_not_protected(source.domain_name)
        if len(certificates) == 0:
            raise MalformedInputError("At least one certificate is required")

        try:
            self.sso.update_certificates(source, certificates.pem_chain())
        except Exception:
            security_logger.log_identity_source_operation('certificate update', source.domain_name, False)
            raise

        security_logger.log_identity_source_operation('certificate update', source.domain_name, True)
        logger.info(f"Certificates updated for identity source {source.domain_name}")

    def update_credential(self, domain_name: str, credential: Credential) -> IdentitySourceRecord:
        """
        Replace the bind credential of an existing source.

        Raises:
            NotFoundError: If the domain is not registered
        """
        self.check_not_protected(domain_name)
        if not credential.username or not credential.username.strip() or not credential.password:
            raise MalformedInputError("Credential username and password are required")

        source = self.get_source(domain_name)
        try:
            self.sso.update_credential(source, credential)
        except Exception:
            security_logger.log_identity_source_operation('credential update', source.domain_name, False)
            raise

        security_logger.log_identity_source_operation('credential update', source.domain_name, True)
        logger.info(f"Credential updated for identity source {source.domain_name}")
        return source

    def remove(self, domain_name: Optional[str] = None) -> List[IdentitySourceRecord]:
        """
        Remove external identity sources.

        Args:
            domain_name: Domain to remove; None removes every external source

        Returns:
            The removed sources; empty when nothing matched
        """
        if domain_name:
            self.check_not_protected(domain_name)

        sources = self.sso.list_external_sources()
        if domain_name:
            wanted = normalize_domain(domain_name)
            sources = [s for s in sources if normalize_domain(s.domain_name) == wanted]

        if not sources:
            logger.info(f"No external identity source matched "
                        f"{repr(domain_name.strip()) if domain_name else 'the request'}; nothing removed")
            return []

        removed = []
        for source in sources:
            try:
                self.sso.remove_source(source)
            except Exception:
                security_logger.log_identity_source_operation('remove', source.domain_name, False)
                raise
            security_logger.log_identity_source_operation('remove', source.domain_name, True)
            logger.info(f"Removed identity source {source.name} ({source.domain_name})")
            removed.append(source)

        return removed
