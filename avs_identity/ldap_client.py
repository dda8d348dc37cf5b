"""
LDAP client used to verify identity source parameters before registration.

Binds to the directory with the credential that SSO will use and, for LDAPS,
trusts only the certificates acquired for the identity source. A successful
bind shows the credential, the URL and the trust material all work together.
"""

import ssl
import logging
from typing import List, Optional
from ldap3 import Server, Connection, Tls, BASE
from ldap3.core.exceptions import LDAPException, LDAPBindError

from avs_identity.errors import TransportError, MalformedInputError
from avs_identity.models import Credential
from avs_identity.url_validator import DirectoryServerURL

logger = logging.getLogger(__name__)


class LDAPConnectionError(TransportError):
    """Raised when the directory cannot be reached or the bind fails."""
    pass


class LDAPClient:
    """
    Minimal LDAP client for bind verification.
    """

    def __init__(self, server_url: DirectoryServerURL, credential: Credential,
                 ca_certificates: Optional[List[str]] = None, connection_timeout: int = 10):
        """
        Initialize LDAP client.

        Args:
            server_url: Validated directory server URL
            credential: Bind username and password
            ca_certificates: PEM certificates to trust for LDAPS
            connection_timeout: Seconds allowed for the TCP connect
        """
        self.server_url = server_url
        self.credential = credential
        self.ca_certificates = ca_certificates or []
        self.connection_timeout = connection_timeout
        self.use_ssl = server_url.is_secure

        self.server = None
        self.connection = None
        self._connected = False

    def _create_tls_config(self) -> Optional[Tls]:
        """
        Create TLS configuration trusting the acquired certificates.

        Returns:
            Tls configuration object or None for plain LDAP
        """
        if not self.use_ssl:
            return None

        if not self.ca_certificates:
            raise MalformedInputError("LDAPS bind verification requires at least one certificate")

        try:
            return Tls(validate=ssl.CERT_REQUIRED, ca_certs_data='\n'.join(self.ca_certificates))
        except Exception as e:
            raise LDAPConnectionError(f"Failed to create TLS configuration: {e}")

    def connect(self) -> bool:
        """
        Open a connection and bind.

        Returns:
            True if the bind succeeded

        Raises:
            LDAPConnectionError: If the connection or bind fails
        """
        tls_config = self._create_tls_config()

        self.server = Server(
            self.server_url.host,
            port=self.server_url.port,
            use_ssl=self.use_ssl,
            tls=tls_config,
            connect_timeout=self.connection_timeout
        )
        logger.debug(f"Created LDAP server object for {self.server_url} (SSL: {self.use_ssl})")

        try:
            self.connection = Connection(
                self.server,
                user=self.credential.username,
                password=self.credential.password,
                auto_bind=False,
                receive_timeout=self.connection_timeout
            )

            # open() returns nothing; socket failures surface as LDAPSocketOpenError
            self.connection.open()
            if self.connection.closed:
                raise LDAPConnectionError(f"Failed to open connection to {self.server_url}")

            if not self.connection.bind():
                raise LDAPBindError(f"Bind failed: {self.connection.result}")

        except LDAPConnectionError:
            self._drop_connection()
            raise
        except LDAPException as e:
            self._drop_connection()
            raise LDAPConnectionError(f"LDAP bind to {self.server_url} as {self.credential.username} failed: {e}")

        self._connected = True
        logger.info(f"Successfully bound to {self.server_url} as {self.credential.username}")
        return True

    def _drop_connection(self):
        if self.connection:
            try:
                self.connection.unbind()
            except LDAPException:
                logger.debug("Unbind after failed connect raised, ignoring")
            self.connection = None

    def base_dn_exists(self, base_dn: str) -> bool:
        """Check that a base DN can be read with the bound credential."""
        if not self._connected:
            raise LDAPConnectionError("Not connected to LDAP server")

        try:
            success = self.connection.search(
                search_base=base_dn,
                search_filter='(objectClass=*)',
                search_scope=BASE,
                attributes=['objectClass'],
                size_limit=1
            )
        except LDAPException as e:
            logger.warning(f"Failed to read base DN {base_dn}: {e}")
            return False

        if success and self.connection.entries:
            logger.debug(f"Base DN validated: {base_dn}")
            return True
        logger.warning(f"Base DN not found or inaccessible: {base_dn}")
        return False

    def disconnect(self):
        """Close LDAP connection."""
        if self.connection and self._connected:
            try:
                self.connection.unbind()
                logger.debug("LDAP connection closed")
            except LDAPException as e:
                logger.warning(f"Error closing LDAP connection: {e}")
            finally:
                self._connected = False
                self.connection = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()


def verify_bind(server_url: DirectoryServerURL, credential: Credential,
                base_dns: List[str], ca_certificates: Optional[List[str]] = None) -> None:
    """
    Bind to the directory and confirm each base DN is readable.

    Raises:
        LDAPConnectionError: If the bind fails
        MalformedInputError: If a base DN cannot be read
    """
    with LDAPClient(server_url, credential, ca_certificates) as client:
        client.connect()
        missing = [dn for dn in base_dns if not client.base_dn_exists(dn)]
        if missing:
            raise MalformedInputError(f"Base DN not readable with the supplied credential: {', '.join(missing)}")
