"""
Orchestrator and command line entry points for AVS Identity.

Each entry point is a linear pipeline that stops at the first fatal error,
except the diagnostic sweep, which reports every failure and keeps going.
"""

import os
import sys
import getpass
import logging
import importlib
from typing import Dict, Any, List, Optional

from avs_identity.certificates import CertificateAcquirer, CertificateBundle, validate_certificates
from avs_identity.config import load_config, ConfigurationError
from avs_identity.diagnostics import DiagnosticResult, NetworkDiagnosticRunner, connectivity_precheck
from avs_identity.errors import IdentitySourceError, MalformedInputError, TransportError
from avs_identity.group_bridge import GroupBridge
from avs_identity.ldap_client import verify_bind
from avs_identity.logging_setup import setup_logging
from avs_identity.models import Credential, IdentitySourceRecord, IdentitySourceSpec
from avs_identity.registrar import IdentitySourceRegistrar
from avs_identity.remote import RemoteCommandChannel
from avs_identity.sso.base import SSOClientBase
from avs_identity.url_validator import validate_ldap_url

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_OPERATION_FAILED = 1
EXIT_CONFIGURATION_ERROR = 2
EXIT_TRANSPORT_FAILURE = 3
EXIT_UNEXPECTED_ERROR = 4


class IdentitySourceOrchestrator:
    """
    Sequences validation, certificate handling, registration, group bridging
    and diagnostics for external identity sources.
    """

    def __init__(self, config_path: Optional[str] = None, config: Optional[Dict[str, Any]] = None,
                 sso_client: Optional[SSOClientBase] = None,
                 channel: Optional[RemoteCommandChannel] = None):
        """
        Initialize orchestrator.

        Args:
            config_path: Path to configuration file
            config: Already loaded configuration; skips loading from file
            sso_client: SSO client to use instead of loading one from config
            channel: Management endpoint session to use instead of opening one
        """
        self.config_path = config_path
        self.config = config
        self._sso_client = sso_client
        self._channel = channel

    def _load_configuration(self):
        """Load and validate configuration."""
        if self.config is not None:
            return
        self.config = load_config(self.config_path)

    def _setup_logging(self):
        setup_logging(self.config.get('logging', {}))

    def prepare(self):
        """Load configuration and configure logging."""
        self._load_configuration()
        self._setup_logging()

    @property
    def sso(self) -> SSOClientBase:
        if self._sso_client is None:
            self._sso_client = self._load_sso_module(self.config['sso'])
        return self._sso_client

    @property
    def channel(self) -> RemoteCommandChannel:
        if self._channel is None:
            self._channel = RemoteCommandChannel(self.config['management'])
        return self._channel

    @property
    def registrar(self) -> IdentitySourceRegistrar:
        return IdentitySourceRegistrar(self.sso, [self.config.get('sso', {}).get('local_domain', 'vsphere.local')])

    @property
    def group_bridge(self) -> GroupBridge:
        return GroupBridge(self.sso, self.registrar)

    def _acquirer(self) -> CertificateAcquirer:
        return CertificateAcquirer(self.config.get('certificates', {}),
                                   tls_timeout=self.config.get('diagnostics', {}).get('tls_timeout', 10))

    def _load_sso_module(self, sso_config: Dict[str, Any]) -> SSOClientBase:
        """Dynamically load the SSO client module and create the client."""
        module_name = sso_config.get('module', 'rest_client')

        try:
            sso_module = importlib.import_module(f"avs_identity.sso.{module_name}")
        except ImportError as e:
            raise ConfigurationError(f"Failed to import SSO client module {module_name}: {e}")

        client_class = None
        for attr_name in dir(sso_module):
            attr = getattr(sso_module, attr_name)
            if isinstance(attr, type) and issubclass(attr, SSOClientBase) and attr is not SSOClientBase:
                client_class = attr
                break

        if not client_class:
            raise ConfigurationError(f"No SSOClientBase subclass found in module {module_name}")

        return client_class(sso_config)

    # Entry points

    def new_ldap_identity_source(self, spec: IdentitySourceSpec) -> IdentitySourceRecord:
        """Register an insecure LDAP identity source."""
        spec.validate()
        if spec.is_secure:
            raise MalformedInputError(
                f"{spec.primary_url} is an LDAPS URL; use New-LDAPSIdentitySource for secure sources")

        registrar = self.registrar
        registrar.check_not_protected(spec.domain_name)
        registrar.ensure_not_registered(spec.domain_name)

        self._verify_bind(spec, None)
        record = registrar.add(spec)
        self._bridge_group(spec)
        return record

    def new_ldaps_identity_source(self, spec: IdentitySourceSpec,
                                  sas_urls: Optional[str] = None) -> IdentitySourceRecord:
        """
        Register a secure LDAPS identity source.

        Certificates come from the signed URLs when given, otherwise they are
        captured from each server.
        """
        spec.validate()
        if not spec.is_secure:
            raise MalformedInputError(
                f"{spec.primary_url} is not an LDAPS URL; use New-LDAPIdentitySource for insecure sources")

        registrar = self.registrar
        registrar.check_not_protected(spec.domain_name)
        registrar.ensure_not_registered(spec.domain_name)

        port_timeout = self.config.get('diagnostics', {}).get('port_timeout', 5)
        for server in spec.urls:
            connectivity_precheck(self.channel, server, port_timeout)

        acquirer = self._acquirer()
        if sas_urls:
            bundle = acquirer.from_signed_urls(sas_urls, secondary_url_bound=spec.secondary_url is not None)
        else:
            bundle = acquirer.harvest(self.channel, spec.urls)

        validate_certificates(bundle)
        self._verify_bind(spec, bundle)

        record = registrar.add(spec, bundle)
        self._bridge_group(spec)
        return record

    def update_identity_source_certificates(self, domain_name: str,
                                            sas_urls: Optional[str] = None) -> CertificateBundle:
        """Replace the certificates of a registered LDAPS source."""
        registrar = self.registrar
        registrar.check_not_protected(domain_name)
        source = registrar.get_source(domain_name)

        acquirer = self._acquirer()
        if sas_urls:
            bundle = acquirer.from_signed_urls(sas_urls, secondary_url_bound=bool(source.failover_url))
        else:
            servers = [validate_ldap_url(url) for url in source.urls]
            if not servers or not all(server.is_secure for server in servers):
                raise MalformedInputError(
                    f"Identity source {source.domain_name} has no LDAPS URLs to capture certificates from")
            bundle = acquirer.harvest(self.channel, servers)

        validate_certificates(bundle)
        registrar.update_certificates(source, bundle)
        return bundle

    def update_identity_source_credential(self, domain_name: str, credential: Credential) -> IdentitySourceRecord:
        return self.registrar.update_credential(domain_name, credential)

    def get_external_identity_sources(self) -> List[IdentitySourceRecord]:
        return self.registrar.list_sources()

    def remove_external_identity_sources(self, domain_name: Optional[str] = None) -> List[IdentitySourceRecord]:
        return self.registrar.remove(domain_name)

    def add_group_to_cloud_admins(self, group_name: str, domain: Optional[str] = None):
        return self.group_bridge.add(group_name, domain)

    def remove_group_from_cloud_admins(self, group_name: str, domain: Optional[str] = None) -> bool:
        return self.group_bridge.remove(group_name, domain)

    def debug_ldaps_identity_sources(self) -> List[DiagnosticResult]:
        """Run the diagnostic sweep over every LDAP/LDAPS source."""
        sources = [
            source for source in self.registrar.list_sources()
            if any(url.strip().lower().startswith(('ldap://', 'ldaps://')) for url in source.urls)
        ]
        runner = NetworkDiagnosticRunner(self.channel, self.config.get('diagnostics', {}))
        results = runner.run(sources)

        failed = [r for r in results if not r.success]
        logger.info(f"Diagnostics complete: {len(results)} probes run, {len(failed)} reported problems")
        return results

    def _verify_bind(self, spec: IdentitySourceSpec, bundle: Optional[CertificateBundle]):
        if not self.config.get('precheck', {}).get('verify_bind', False):
            return
        ca_certificates = bundle.pem_chain() if bundle else None
        verify_bind(spec.primary_url, spec.credential, [spec.base_dn_users, spec.base_dn_groups], ca_certificates)

    def _bridge_group(self, spec: IdentitySourceSpec):
        if spec.group_name:
            logger.info(f"Adding group {spec.group_name} from {spec.domain_name} to administrators")
            self.group_bridge.add(spec.group_name, spec.domain_name)

    def cleanup(self):
        """Close the SSO connection and the management session."""
        if self._channel is not None:
            self._channel.close()
        if self._sso_client is not None:
            self._sso_client.close_connection()


def _read_credential(username: str) -> Credential:
    password = os.getenv('LDAP_BIND_PASSWORD')
    if not password:
        password = getpass.getpass(f"Password for {username}: ")
    return Credential(username, password)


def _build_spec(args) -> IdentitySourceSpec:
    return IdentitySourceSpec(
        name=args.name,
        domain_name=args.domain_name,
        domain_alias=args.domain_alias,
        primary_url=validate_ldap_url(args.primary_url),
        secondary_url=validate_ldap_url(args.secondary_url) if args.secondary_url else None,
        base_dn_users=args.base_dn_users,
        base_dn_groups=args.base_dn_groups,
        credential=_read_credential(args.username),
        group_name=args.group_name,
    )


def _print_sources(sources: List[IdentitySourceRecord]):
    if not sources:
        print("No external identity sources found")
        return
    for source in sources:
        print(f"{source.name}: domain={source.domain_name} alias={source.alias or '-'} type={source.type}")
        print(f"    primary:  {source.primary_url or '-'}")
        print(f"    failover: {source.failover_url or '-'}")


def _build_parser():
    import argparse

    parser = argparse.ArgumentParser(description='Manage external identity sources for AVS vCenter SSO')
    parser.add_argument('--config', '-c', help='Path to configuration file')
    commands = parser.add_subparsers(dest='command', required=True)

    for command, help_text in (('new-ldap', 'Add an LDAP identity source'),
                               ('new-ldaps', 'Add an LDAPS identity source')):
        sub = commands.add_parser(command, help=help_text)
        sub.add_argument('--name', required=True, help='Friendly name of the identity source')
        sub.add_argument('--domain-name', required=True, help='Domain name, e.g. example.local')
        sub.add_argument('--domain-alias', required=True, help='NetBIOS alias, e.g. EXAMPLE')
        sub.add_argument('--primary-url', required=True, help='Primary server URL')
        sub.add_argument('--secondary-url', help='Secondary server URL')
        sub.add_argument('--base-dn-users', required=True, help='Base DN for users')
        sub.add_argument('--base-dn-groups', required=True, help='Base DN for groups')
        sub.add_argument('--username', required=True, help='Bind username; password from LDAP_BIND_PASSWORD or prompt')
        sub.add_argument('--group-name', help='Group to add to CloudAdmins after registration')
        if command == 'new-ldaps':
            sub.add_argument('--certificate-urls', help='Comma-separated signed URLs of the certificates')

    sub = commands.add_parser('update-certificates', help='Replace the certificates of an LDAPS source')
    sub.add_argument('--domain-name', required=True)
    sub.add_argument('--certificate-urls', help='Comma-separated signed URLs of the certificates')

    sub = commands.add_parser('update-credential', help='Replace the bind credential of a source')
    sub.add_argument('--domain-name', required=True)
    sub.add_argument('--username', required=True)

    commands.add_parser('list', help='List external identity sources')

    sub = commands.add_parser('remove', help='Remove external identity sources')
    sub.add_argument('--domain-name', help='Domain to remove; all external sources when omitted')

    for command, help_text in (('add-group', 'Add a directory group to CloudAdmins'),
                               ('remove-group', 'Remove a directory group from CloudAdmins')):
        sub = commands.add_parser(command, help=help_text)
        sub.add_argument('--group-name', required=True)
        sub.add_argument('--domain', help='Domain of the group; searched across all sources when omitted')

    commands.add_parser('debug', help='Run network diagnostics against every LDAP/LDAPS source')

    return parser


def run_command(orchestrator: IdentitySourceOrchestrator, args) -> int:
    """
    Run one CLI command.

    Returns:
        Exit code
    """
    try:
        orchestrator.prepare()

        if args.command == 'new-ldap':
            orchestrator.new_ldap_identity_source(_build_spec(args))
        elif args.command == 'new-ldaps':
            orchestrator.new_ldaps_identity_source(_build_spec(args), args.certificate_urls)
        elif args.command == 'update-certificates':
            orchestrator.update_identity_source_certificates(args.domain_name, args.certificate_urls)
        elif args.command == 'update-credential':
            orchestrator.update_identity_source_credential(args.domain_name, _read_credential(args.username))
        elif args.command == 'list':
            _print_sources(orchestrator.get_external_identity_sources())
        elif args.command == 'remove':
            orchestrator.remove_external_identity_sources(args.domain_name)
        elif args.command == 'add-group':
            orchestrator.add_group_to_cloud_admins(args.group_name, args.domain)
        elif args.command == 'remove-group':
            if not orchestrator.remove_group_from_cloud_admins(args.group_name, args.domain):
                return EXIT_OPERATION_FAILED
        elif args.command == 'debug':
            orchestrator.debug_ldaps_identity_sources()

        return EXIT_SUCCESS

    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIGURATION_ERROR
    except TransportError as e:
        logger.error(f"Transport failure: {e}")
        return EXIT_TRANSPORT_FAILURE
    except IdentitySourceError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return EXIT_OPERATION_FAILED
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        return EXIT_UNEXPECTED_ERROR
    finally:
        orchestrator.cleanup()


def main(argv: Optional[List[str]] = None):
    """Main entry point for the application."""
    args = _build_parser().parse_args(argv)
    orchestrator = IdentitySourceOrchestrator(config_path=args.config)
    sys.exit(run_command(orchestrator, args))


if __name__ == "__main__":
    main()
