"""
Base SSO client interface and common HTTP functionality.

This module defines the abstract base class for clients of the single-sign-on
identity-source registry and group-membership service, along with the shared
HTTP client, SSL and session authentication handling.
"""

import json
import ssl
import base64
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Any, Optional, Union
from http.client import HTTPSConnection, HTTPConnection

from avs_identity.errors import TransportError
from avs_identity.models import (
    Credential,
    GroupRecord,
    IdentitySourceRecord,
    IdentitySourceSpec,
)

logger = logging.getLogger(__name__)


class SSOAPIError(TransportError):
    """Base exception for SSO API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SSOAuthenticationError(SSOAPIError):
    """Raised when authentication to the SSO API fails."""
    pass


class SSOClientBase(ABC):
    """
    Abstract base class for SSO clients.

    Subclasses implement the registry and group-membership operations on top
    of request(), which handles connections, session tokens and JSON.
    """

    SESSION_PATH = '/api/session'
    SESSION_HEADER = 'vmware-api-session-id'

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize SSO client.

        Args:
            config: sso configuration dictionary
        """
        self.config = config
        self.host = config['server']
        self.username = config['username']
        self.password = config['password']
        self.api_base = config.get('api_base', '/api/sso').rstrip('/')
        self.verify_ssl = config.get('verify_ssl', True)
        self.ca_cert_file = config.get('ca_cert_file')
        self.timeout = config.get('timeout', 30)
        self.local_domain = config.get('local_domain', 'vsphere.local')
        self.admin_group = config.get('admin_group', 'CloudAdmins')

        self.connection = None
        self.ssl_context = None
        self.auth_headers = {}
        self.authenticated = False

        self._setup_ssl_context()

    @property
    def admin_group_record(self) -> GroupRecord:
        return GroupRecord(self.admin_group, self.local_domain)

    def _setup_ssl_context(self):
        """Set up SSL context based on configuration."""
        if not self.verify_ssl:
            self.ssl_context = ssl._create_unverified_context()
            logger.warning(f"SSL verification disabled for SSO endpoint {self.host}")
            return

        self.ssl_context = ssl.create_default_context()
        if self.ca_cert_file:
            try:
                self.ssl_context.load_verify_locations(cafile=self.ca_cert_file)
                logger.debug(f"Loaded CA certificate file: {self.ca_cert_file}")
            except (OSError, ssl.SSLError) as e:
                raise SSOAPIError(f"Failed to load CA certificate file {self.ca_cert_file}: {e}")

    def _get_connection(self) -> Union[HTTPSConnection, HTTPConnection]:
        """Get or create HTTPS connection."""
        if self.connection:
            return self.connection

        self.connection = HTTPSConnection(self.host, context=self.ssl_context, timeout=self.timeout)
        return self.connection

    def authenticate(self) -> bool:
        """
        Create an API session with basic credentials.

        Returns:
            True if a session token was obtained

        Raises:
            SSOAuthenticationError: If the credentials are rejected
        """
        credentials = base64.b64encode(f"{self.username}:{self.password}".encode()).decode()
        headers = {'Authorization': f"Basic {credentials}", 'Accept': 'application/json'}

        response = self._send('POST', self.SESSION_PATH, None, headers)
        token = response if isinstance(response, str) else response.get('value')
        if not token:
            raise SSOAuthenticationError(f"SSO session response from {self.host} carried no token")

        self.auth_headers = {self.SESSION_HEADER: token}
        self.authenticated = True
        logger.info(f"Authenticated to SSO endpoint {self.host} as {self.username}")
        return True

    def request(self, method: str, path: str, body: Optional[Dict] = None,
                params: Optional[Dict[str, str]] = None) -> Any:
        """
        Make an authenticated JSON request below api_base.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE)
            path: Endpoint path relative to api_base
            body: Request body data
            params: Query string parameters

        Returns:
            Parsed response data

        Raises:
            SSOAPIError: If the request fails
        """
        if not self.authenticated:
            self.authenticate()

        full_path = f"{self.api_base}/{path.lstrip('/')}"
        if params:
            from urllib.parse import urlencode
            full_path += '?' + urlencode(params)

        headers = dict(self.auth_headers)
        headers['Accept'] = 'application/json'
        return self._send(method, full_path, body, headers)

    def _send(self, method: str, full_path: str, body: Optional[Dict], headers: Dict[str, str]) -> Any:
        request_body = None
        if body is not None:
            request_body = json.dumps(body)
            headers['Content-Type'] = 'application/json'

        try:
            conn = self._get_connection()
            logger.debug(f"Making {method} request to {self.host}{full_path}")
            conn.request(method, full_path, request_body, headers)

            response = conn.getresponse()
            response_data = response.read().decode('utf-8')
            logger.debug(f"Response status: {response.status} {response.reason}")
        except (ConnectionError, OSError) as e:
            self.close_connection()
            raise SSOAPIError(f"Connection error to {self.host}: {e}")

        if response.status == 401:
            self.authenticated = False
            raise SSOAuthenticationError(f"Authentication failed for {self.host}", 401)
        if response.status >= 400:
            detail = self._error_detail(response_data)
            raise SSOAPIError(f"HTTP {response.status} {response.reason} for {method} {full_path}{detail}",
                              response.status)

        try:
            return json.loads(response_data) if response_data else {}
        except json.JSONDecodeError as e:
            raise SSOAPIError(f"Invalid JSON response from {self.host}: {e}")

    def _error_detail(self, response_data: str) -> str:
        try:
            data = json.loads(response_data)
        except (json.JSONDecodeError, TypeError):
            return ''
        if isinstance(data, dict):
            messages = data.get('messages') or []
            texts = [m.get('default_message', '') for m in messages if isinstance(m, dict)]
            if texts:
                return ': ' + '; '.join(t for t in texts if t)
            if data.get('error_type'):
                return f": {data['error_type']}"
        return ''

    def close_connection(self):
        """Close HTTP connection."""
        if self.connection:
            try:
                self.connection.close()
            except OSError as e:
                logger.warning(f"Error closing connection to {self.host}: {e}")
            finally:
                self.connection = None

    # Identity source registry

    @abstractmethod
    def list_external_sources(self) -> List[IdentitySourceRecord]:
        """Return every external identity source registered in SSO."""
        pass

    @abstractmethod
    def add_source(self, spec: IdentitySourceSpec, server_type: str,
                   certificates: Optional[List[str]] = None) -> IdentitySourceRecord:
        """
        Register an identity source.

        Args:
            spec: Identity source parameters
            server_type: SSO server type, always ActiveDirectory here
            certificates: PEM certificates for LDAPS, None for LDAP
        """
        pass

    @abstractmethod
    def update_certificates(self, source: IdentitySourceRecord, certificates: List[str]) -> None:
        """Replace the trusted certificates of a registered source."""
        pass

    @abstractmethod
    def update_credential(self, source: IdentitySourceRecord, credential: Credential) -> None:
        """Replace the bind credential of a registered source."""
        pass

    @abstractmethod
    def remove_source(self, source: IdentitySourceRecord) -> None:
        """Unregister an identity source."""
        pass

    # Group membership

    @abstractmethod
    def find_group(self, name: str, domain: str) -> Optional[GroupRecord]:
        """Look up a group by name within one domain; None if absent."""
        pass

    @abstractmethod
    def list_group_members(self, group: GroupRecord) -> List[GroupRecord]:
        """Return the groups that are members of a group."""
        pass

    @abstractmethod
    def add_to_group(self, group: GroupRecord, target_group: GroupRecord) -> None:
        """Make group a member of target_group."""
        pass

    @abstractmethod
    def remove_from_group(self, group: GroupRecord, target_group: GroupRecord) -> None:
        """Remove group from target_group."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close_connection()
