"""
Network diagnostics for LDAP/LDAPS identity sources.

Probes run on the management endpoint, which is where SSO itself connects
from. Two flavours live here:

- connectivity_precheck() is fail-fast and gates LDAPS registration.
- NetworkDiagnosticRunner is a best-effort sweep: every probe is wrapped on
  its own and a failure is reported without stopping the remaining probes,
  URLs or sources.
"""

import re
import logging
from typing import Callable, Dict, Any, List, NamedTuple, Optional
from urllib.parse import urlsplit

from avs_identity.certificates import tls_handshake_command
from avs_identity.errors import MalformedInputError, NotFoundError, TransportError
from avs_identity.models import IdentitySourceRecord
from avs_identity.remote import CommandResult, RemoteCommandChannel, quote
from avs_identity.url_validator import DirectoryServerURL, DEFAULT_PORTS, validate_ldap_url

logger = logging.getLogger(__name__)

PACKET_LOSS_PATTERN = re.compile(r'(\d+(?:\.\d+)?)% packet loss')
ADDRESS_PATTERN = re.compile(r'^\s*Address(?:es)?:\s*(\S+)')
REVERSE_NAME_PATTERN = re.compile(r'name\s*=\s*(\S+?)\.?\s*$')


class DiagnosticResult(NamedTuple):
    probe: str
    url: str
    success: bool
    summary: str
    output: str = ''


def parse_nslookup_addresses(output: str) -> List[str]:
    """Addresses from the answer section of nslookup output, skipping the resolver's own address."""
    addresses = []
    in_answer = False
    for line in output.splitlines():
        if line.strip().startswith('Name:'):
            in_answer = True
            continue
        if in_answer:
            match = ADDRESS_PATTERN.match(line)
            if match:
                addresses.append(match.group(1))
    return addresses


def parse_packet_loss(output: str) -> Optional[float]:
    match = PACKET_LOSS_PATTERN.search(output)
    return float(match.group(1)) if match else None


def hosts_lookup_command(host: str) -> str:
    return f"grep -i -w -- {quote(host)} /etc/hosts"


def dns_lookup_command(name: str) -> str:
    return f"nslookup {quote(name)}"


def port_probe_command(host: str, port: int, timeout: int) -> str:
    return f"nc -z -w {int(timeout)} {quote(host)} {int(port)}"


def ping_command(host: str, count: int) -> str:
    return f"ping -c {int(count)} {quote(host)}"


def traceroute_command(host: str) -> str:
    return f"traceroute {quote(host)}"


def connectivity_precheck(channel: RemoteCommandChannel, server: DirectoryServerURL,
                          port_timeout: int = 5) -> List[str]:
    """
    Confirm the management endpoint can reach a directory server.

    Forward DNS and the port check must pass; a missing reverse DNS record
    only logs a warning.

    Returns:
        Addresses the host name resolved to

    Raises:
        NotFoundError: If the host name does not resolve
        TransportError: If the port is unreachable
    """
    logger.info(f"Checking connectivity to {server.authority}")

    forward = channel.run(dns_lookup_command(server.host))
    addresses = parse_nslookup_addresses(forward.stdout) if forward.ok else []
    if not addresses:
        raise NotFoundError(f"DNS lookup for {server.host} failed: {forward.output or 'no address returned'}")
    logger.info(f"{server.host} resolves to {', '.join(addresses)}")

    for address in addresses:
        try:
            reverse = channel.run(dns_lookup_command(address))
        except TransportError as e:
            logger.warning(f"Reverse DNS lookup for {address} could not run: {e}")
            continue
        names = [m.group(1) for m in map(REVERSE_NAME_PATTERN.search, reverse.stdout.splitlines()) if m]
        if not reverse.ok or not names:
            logger.warning(f"Reverse DNS lookup for {address} returned no name; "
                           f"certificate validation may fail if the directory relies on it")
        elif not any(name.lower() == server.host.lower() for name in names):
            logger.warning(f"Reverse DNS for {address} returns {', '.join(names)}, not {server.host}")

    port = channel.run(port_probe_command(server.host, server.port, port_timeout))
    if not port.ok:
        raise TransportError(f"Port {server.port} on {server.host} is not reachable from the management endpoint: "
                             f"{port.output or 'connection failed'}")
    logger.info(f"Port {server.port} on {server.host} is reachable")
    return addresses


class NetworkDiagnosticRunner:
    """
    Best-effort diagnostic sweep over the URLs of LDAP/LDAPS identity sources.
    """

    def __init__(self, channel: RemoteCommandChannel, config: Optional[Dict[str, Any]] = None):
        """
        Initialize runner.

        Args:
            channel: Session to the management endpoint
            config: diagnostics configuration dictionary
        """
        config = config or {}
        self.channel = channel
        self.port_timeout = config.get('port_timeout', 5)
        self.ping_count = config.get('ping_count', 4)
        self.tls_timeout = config.get('tls_timeout', 10)

    def run(self, sources: List[IdentitySourceRecord]) -> List[DiagnosticResult]:
        """Diagnose every URL of every source."""
        results = []
        if not sources:
            logger.info("No external LDAP/LDAPS identity sources found to diagnose")
            return results

        for source in sources:
            logger.info(f"=== Identity source {source.name} ({source.domain_name}) ===")
            if not source.urls:
                logger.warning(f"Identity source {source.domain_name} has no server URLs")
            for url in source.urls:
                results.extend(self.run_url(url))
        return results

    def _step(self, results: List[DiagnosticResult], probe: str, url: str,
              func: Callable[[], DiagnosticResult]) -> Optional[DiagnosticResult]:
        try:
            result = func()
        except Exception as e:
            result = DiagnosticResult(probe, url, False, f"{probe} could not run: {e}")
            logger.error(f"[{probe}] {url}: {result.summary}")
        results.append(result)
        return result

    def run_url(self, url: str) -> List[DiagnosticResult]:
        """Run the probe sequence against one URL."""
        results = []
        logger.info(f"--- Diagnosing {url} ---")

        server = self._parse(url, results)
        if server is None:
            return results

        self._step(results, 'hosts', url, lambda: self._hosts_lookup(url, server))
        self._step(results, 'dns', url, lambda: self._dns_lookup(url, server))
        port = self._step(results, 'port', url, lambda: self._port_probe(url, server))

        if not port.success:
            ping = self._step(results, 'ping', url, lambda: self._ping(url, server))
            loss = parse_packet_loss(ping.output) if ping else None
            if loss is not None and loss >= 100:
                self._step(results, 'traceroute', url, lambda: self._traceroute(url, server))
        elif server.is_secure:
            self._step(results, 'tls', url, lambda: self._tls_handshake(url, server))

        return results

    def _parse(self, url: str, results: List[DiagnosticResult]) -> Optional[DirectoryServerURL]:
        try:
            server = validate_ldap_url(url)
            results.append(DiagnosticResult('url', url, True, f"Parsed as {server.authority}"))
            logger.info(f"[url] {url}: valid ({server.authority})")
            return server
        except MalformedInputError as e:
            results.append(DiagnosticResult('url', url, False, str(e)))
            logger.error(f"[url] {url}: {e}")

        # Keep probing with whatever host and port can be read from the URL
        try:
            parts = urlsplit(url.strip())
            scheme = parts.scheme.lower()
            port = parts.port or DEFAULT_PORTS.get(scheme)
        except ValueError:
            return None
        if not parts.hostname or not port:
            logger.error(f"[url] {url}: no host or port to probe, skipping")
            return None
        return DirectoryServerURL(scheme, parts.hostname, port)

    def _report(self, result: DiagnosticResult, level: int = logging.INFO) -> DiagnosticResult:
        logger.log(level, f"[{result.probe}] {result.url}: {result.summary}")
        if result.output:
            for line in result.output.splitlines():
                logger.log(level, f"    {line}")
        return result

    def _hosts_lookup(self, url: str, server: DirectoryServerURL) -> DiagnosticResult:
        result = self.channel.run(hosts_lookup_command(server.host))
        if result.ok:
            return self._report(DiagnosticResult('hosts', url, True,
                                                 f"{server.host} found in /etc/hosts", result.output))
        return self._report(DiagnosticResult('hosts', url, True, f"{server.host} not present in /etc/hosts"))

    def _dns_lookup(self, url: str, server: DirectoryServerURL) -> DiagnosticResult:
        result = self.channel.run(dns_lookup_command(server.host))
        addresses = parse_nslookup_addresses(result.stdout)
        if result.ok and addresses:
            return self._report(DiagnosticResult('dns', url, True,
                                                 f"{server.host} resolves to {', '.join(addresses)}", result.output))
        return self._report(DiagnosticResult('dns', url, False,
                                             f"DNS lookup for {server.host} failed", result.output), logging.WARNING)

    def _port_probe(self, url: str, server: DirectoryServerURL) -> DiagnosticResult:
        result = self.channel.run(port_probe_command(server.host, server.port, self.port_timeout))
        if result.ok:
            return self._report(DiagnosticResult('port', url, True,
                                                 f"Port {server.port} on {server.host} is open"))
        return self._report(DiagnosticResult('port', url, False,
                                             f"Port {server.port} on {server.host} is not reachable "
                                             f"(exit {result.exit_status})", result.output), logging.ERROR)

    def _ping(self, url: str, server: DirectoryServerURL) -> DiagnosticResult:
        result = self.channel.run(ping_command(server.host, self.ping_count),
                                  timeout=self.ping_count * 2 + 10)
        return self._report(*interpret_ping(url, server.host, result))

    def _traceroute(self, url: str, server: DirectoryServerURL) -> DiagnosticResult:
        result = self.channel.run(traceroute_command(server.host), timeout=120)
        return self._report(DiagnosticResult('traceroute', url, result.ok,
                                             f"Traceroute to {server.host}", result.output))

    def _tls_handshake(self, url: str, server: DirectoryServerURL) -> DiagnosticResult:
        result = self.channel.run(tls_handshake_command(server, self.tls_timeout), timeout=self.tls_timeout + 5)
        if result.ok:
            return self._report(DiagnosticResult('tls', url, True,
                                                 f"TLS handshake with {server.host}:{server.port}", result.output))
        return self._report(DiagnosticResult('tls', url, False,
                                             f"TLS handshake with {server.host}:{server.port} failed "
                                             f"(exit {result.exit_status})", result.output), logging.ERROR)


def interpret_ping(url: str, host: str, result: CommandResult):
    """
    Classify ping output by packet loss.

    Returns:
        (DiagnosticResult, log level) tuple
    """
    output = result.output
    loss = parse_packet_loss(output)
    if loss is None:
        return DiagnosticResult('ping', url, False,
                                f"Unable to interpret ping output for {host}", output), logging.WARNING
    if loss == 0:
        return DiagnosticResult('ping', url, True,
                                f"{host} answers ping with 0% packet loss although the port is unreachable; "
                                f"check the directory service and any firewall between them", output), logging.WARNING
    if loss >= 100:
        return DiagnosticResult('ping', url, False,
                                f"{host} did not answer ping (100% packet loss)", output), logging.ERROR
    return DiagnosticResult('ping', url, False,
                            f"Warning: partial packet loss ({loss:g}%) to {host}", output), logging.WARNING
