"""
Certificate acquisition and validation for LDAPS identity sources.

Certificates come either from signed (SAS) download URLs supplied by the
caller or from a live TLS handshake run on the management endpoint against
each directory server. Every certificate's validity window is checked before
anything is registered.
"""

import os
import re
import ssl
import logging
from datetime import datetime, timezone
from http.client import HTTPSConnection, HTTPConnection
from typing import Dict, Any, List, Optional
from urllib.parse import urlsplit

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization

from avs_identity.errors import (
    ExpiredTrustMaterialError,
    MalformedInputError,
    TransportError,
)
from avs_identity.remote import RemoteCommandChannel, quote
from avs_identity.url_validator import DirectoryServerURL

logger = logging.getLogger(__name__)

PEM_BLOCK_PATTERN = re.compile(
    r'-----BEGIN CERTIFICATE-----\s.+?\s-----END CERTIFICATE-----', re.DOTALL)


class CertificateBundle:
    """Ordered certificate files acquired for one identity source."""

    def __init__(self, paths: Optional[List[str]] = None):
        self.paths = list(paths or [])

    def __len__(self):
        return len(self.paths)

    def __iter__(self):
        return iter(self.paths)

    def load_certificates(self) -> List[x509.Certificate]:
        """Parse every file in the bundle."""
        return [load_certificate_file(path) for path in self.paths]

    def pem_chain(self) -> List[str]:
        """PEM text of every certificate, in bundle order."""
        return [
            cert.public_bytes(serialization.Encoding.PEM).decode('ascii')
            for cert in self.load_certificates()
        ]


def load_certificate_file(path: str) -> x509.Certificate:
    """
    Load a PEM or DER encoded certificate.

    Raises:
        MalformedInputError: If the file is missing or not a certificate
    """
    try:
        with open(path, 'rb') as f:
            data = f.read()
    except OSError as e:
        raise MalformedInputError(f"Cannot read certificate file {path}: {e}")

    try:
        if b'-----BEGIN CERTIFICATE-----' in data:
            return x509.load_pem_x509_certificate(data)
        return x509.load_der_x509_certificate(data)
    except ValueError as e:
        raise MalformedInputError(f"File {path} is not a valid X.509 certificate: {e}")


def describe_certificate(cert: x509.Certificate) -> Dict[str, Any]:
    """Summary fields an operator needs to recognize a certificate."""
    return {
        'subject': cert.subject.rfc4514_string(),
        'issuer': cert.issuer.rfc4514_string(),
        'not_before': cert.not_valid_before_utc,
        'not_after': cert.not_valid_after_utc,
        'sha256_fingerprint': cert.fingerprint(hashes.SHA256()).hex(':').upper(),
    }


def validate_certificates(bundle: CertificateBundle, now: Optional[datetime] = None) -> None:
    """
    Check that every certificate in the bundle is currently valid.

    Args:
        bundle: Certificates to check
        now: Reference time (UTC); defaults to the current time

    Raises:
        ExpiredTrustMaterialError: If any certificate is expired or not yet valid
        MalformedInputError: If a file is not a certificate
    """
    now = now or datetime.now(timezone.utc)

    for path, cert in zip(bundle.paths, bundle.load_certificates()):
        info = describe_certificate(cert)
        logger.info(f"Certificate {os.path.basename(path)}: subject={info['subject']}, "
                    f"issuer={info['issuer']}, valid {info['not_before']} to {info['not_after']}, "
                    f"SHA256 {info['sha256_fingerprint']}")

        if now < info['not_before']:
            raise ExpiredTrustMaterialError(
                f"Certificate {path} ({info['subject']}) is not valid until {info['not_before']}")
        if now > info['not_after']:
            raise ExpiredTrustMaterialError(
                f"Certificate {path} ({info['subject']}) expired on {info['not_after']}")


def parse_signed_urls(sas_urls: Optional[str]) -> List[str]:
    """Split a comma-separated list of signed URLs, dropping blanks."""
    return [url.strip() for url in (sas_urls or '').split(',') if url.strip()]


class CertificateAcquirer:
    """Downloads or harvests certificates into local working storage."""

    def __init__(self, config: Dict[str, Any], tls_timeout: int = 10):
        """
        Initialize acquirer.

        Args:
            config: certificates configuration dictionary
            tls_timeout: Seconds allowed for each remote TLS handshake
        """
        self.download_dir = config.get('download_dir', 'certs')
        self.download_timeout = config.get('download_timeout', 30)
        self.verify_ssl = config.get('verify_ssl', True)
        self.tls_timeout = tls_timeout

    def _ensure_download_dir(self):
        try:
            os.makedirs(self.download_dir, exist_ok=True)
        except OSError as e:
            raise TransportError(f"Cannot create certificate directory {self.download_dir}: {e}")

    def from_signed_urls(self, sas_urls: str, secondary_url_bound: bool = False) -> CertificateBundle:
        """
        Download certificates from signed URLs.

        Files are named cert1.cer, cert2.cer, ... in the order given. Any
        failed download fails the whole acquisition.

        Args:
            sas_urls: Comma-separated signed URLs
            secondary_url_bound: Whether the identity source has a secondary server

        Returns:
            CertificateBundle with one file per URL

        Raises:
            MalformedInputError: If too few URLs are supplied
            TransportError: If a download fails
        """
        urls = parse_signed_urls(sas_urls)

        if not urls:
            raise MalformedInputError("At least one certificate URL is required for an LDAPS identity source")
        if secondary_url_bound and len(urls) < 2:
            raise MalformedInputError(
                "A secondary server URL was given, so at least two certificate URLs are required "
                "(one per server)")

        self._ensure_download_dir()
        paths = []
        for index, url in enumerate(urls, start=1):
            destination = os.path.join(self.download_dir, f"cert{index}.cer")
            try:
                self._download(url, destination)
            except TransportError as e:
                raise TransportError(f"Failed to download certificate {index}: {e}")
            paths.append(destination)
            logger.info(f"Downloaded certificate {index} to {destination}")

        return CertificateBundle(paths)

    def _download(self, url: str, destination: str) -> None:
        parts = urlsplit(url)
        if parts.scheme not in ('http', 'https') or not parts.netloc:
            raise TransportError(f"Unsupported certificate URL: {url}")

        path = parts.path or '/'
        if parts.query:
            path += '?' + parts.query

        if parts.scheme == 'https':
            context = ssl.create_default_context() if self.verify_ssl else ssl._create_unverified_context()
            conn = HTTPSConnection(parts.netloc, context=context, timeout=self.download_timeout)
        else:
            conn = HTTPConnection(parts.netloc, timeout=self.download_timeout)

        try:
            conn.request('GET', path)
            response = conn.getresponse()
            body = response.read()
            if response.status != 200:
                raise TransportError(f"HTTP {response.status}: {response.reason}")
        except (ConnectionError, OSError) as e:
            raise TransportError(f"Connection error: {e}")
        finally:
            conn.close()

        try:
            with open(destination, 'wb') as f:
                f.write(body)
        except OSError as e:
            raise TransportError(f"Cannot write {destination}: {e}")

    def harvest(self, channel: RemoteCommandChannel, servers: List[DirectoryServerURL]) -> CertificateBundle:
        """
        Capture each server's certificate from a TLS handshake on the management endpoint.

        Only the first PEM block in the handshake output is kept, so a
        presented chain yields its leaf certificate.

        Args:
            channel: Session to the management endpoint
            servers: Directory servers to contact

        Returns:
            CertificateBundle with one <first DNS label>.cer file per server;
            a label already taken falls back to <host>_<port>.cer

        Raises:
            TransportError: If the handshake command fails
            MalformedInputError: If the output holds no certificate
        """
        self._ensure_download_dir()
        paths = []
        seen = set()
        for server in servers:
            if server.authority in seen:
                raise MalformedInputError(f"Server {server.authority} is listed more than once")
            seen.add(server.authority)

            output = self._handshake(channel, server)

            match = PEM_BLOCK_PATTERN.search(output)
            if not match:
                raise MalformedInputError(
                    f"No certificate found in TLS handshake output from {server.host}:{server.port}")

            destination = os.path.join(self.download_dir, f"{server.first_label}.cer")
            if destination in paths:
                # Same first label in another domain; keep both files
                fallback = os.path.join(self.download_dir, f"{server.host.lower()}_{server.port}.cer")
                logger.warning(f"{destination} already holds another server's certificate, "
                               f"writing {server.host} to {fallback}")
                destination = fallback
            try:
                with open(destination, 'w') as f:
                    f.write(match.group(0) + '\n')
            except OSError as e:
                raise TransportError(f"Cannot write {destination}: {e}")

            paths.append(destination)
            logger.info(f"Captured certificate from {server.host}:{server.port} to {destination}")

        return CertificateBundle(paths)

    def _handshake(self, channel: RemoteCommandChannel, server: DirectoryServerURL) -> str:
        result = channel.run(tls_handshake_command(server, self.tls_timeout),
                             timeout=self.tls_timeout + 5)
        if not result.ok:
            raise TransportError(
                f"TLS handshake with {server.host}:{server.port} failed "
                f"(exit {result.exit_status}): {result.output}")
        return result.stdout


def tls_handshake_command(server: DirectoryServerURL, timeout: int) -> str:
    """openssl s_client invocation that prints the presented certificates and exits."""
    host = quote(server.host)
    return (f"echo | timeout {int(timeout)} openssl s_client -connect {host}:{server.port} "
            f"-servername {host} -showcerts 2>&1")
